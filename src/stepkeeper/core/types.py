"""Shared type aliases used across stepkeeper."""

from collections.abc import Callable

# Callback shapes used at the provider boundary
AuthCallback = Callable[[bool], None]
StepListener = Callable[[int], None]
ResetHandler = Callable[[], None]
