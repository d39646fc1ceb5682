"""Tests for stepkeeper.core.exceptions."""

from stepkeeper.core.exceptions import (
    ConfigurationError,
    DeserializationError,
    FailureKind,
    PersistenceError,
    ProviderError,
    StepKeeperError,
)


def test_hierarchy():
    """All exceptions should inherit from StepKeeperError."""
    for exc_cls in [ConfigurationError, PersistenceError, DeserializationError, ProviderError]:
        assert issubclass(exc_cls, StepKeeperError)


def test_deserialization_error_is_persistence_error():
    assert issubclass(DeserializationError, PersistenceError)


def test_exception_message():
    err = ConfigurationError("reset.hour out of range")
    assert "reset.hour" in str(err)


def test_catch_base():
    try:
        raise ProviderError("bridge gone")
    except StepKeeperError as e:
        assert "bridge" in str(e)


def test_failure_kind_values():
    assert FailureKind.TIMEOUT == "timeout"
    assert {k.value for k in FailureKind} == {
        "unavailable",
        "unauthorized",
        "timeout",
        "query_failed",
        "deserialization_failed",
    }
