"""Step acquisition backends."""

from .base import QueryCallback, StepProvider
from .historical import HealthBridge, HistoricalStepProvider
from .pedometer import MotionPermission, PedometerProvider, SessionCounters, StepCounterSensor

__all__ = [
    "HealthBridge",
    "HistoricalStepProvider",
    "MotionPermission",
    "PedometerProvider",
    "QueryCallback",
    "SessionCounters",
    "StepCounterSensor",
    "StepProvider",
]
