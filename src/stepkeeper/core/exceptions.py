"""
stepkeeper exception hierarchy.

All stepkeeper exceptions inherit from StepKeeperError, making it easy for
consumers to catch library-level errors while still distinguishing specific
failure modes.  Provider failures are *reported*, not raised: they travel
through callbacks as failed results tagged with a :class:`FailureKind`.
"""

from enum import StrEnum


class FailureKind(StrEnum):
    """Why an acquisition step did not produce steps."""

    UNAVAILABLE = "unavailable"
    UNAUTHORIZED = "unauthorized"
    TIMEOUT = "timeout"
    QUERY_FAILED = "query_failed"
    DESERIALIZATION_FAILED = "deserialization_failed"


class StepKeeperError(Exception):
    """Base exception class for all stepkeeper errors."""


class ConfigurationError(StepKeeperError):
    """Raised for configuration errors (missing keys, invalid values)."""


class PersistenceError(StepKeeperError):
    """Raised for record persistence errors."""


class DeserializationError(PersistenceError):
    """Raised when a persisted payload cannot be decoded into a record."""


class ProviderError(StepKeeperError):
    """Raised for step provider / bridge errors."""
