"""
Step acquisition and reconciliation.

Providers produce step deltas (real-time) or query results (historical);
the controller reconciles them into the persisted :class:`StepRecord`.
"""

from .controller import ControllerState, StepController
from .models import (
    BridgeAvailability,
    ProviderKind,
    StepQueryResult,
    StepRecord,
    StepSource,
)
from .records import StepPersistentData

__all__ = [
    "BridgeAvailability",
    "ControllerState",
    "ProviderKind",
    "StepController",
    "StepPersistentData",
    "StepQueryResult",
    "StepRecord",
    "StepSource",
]
