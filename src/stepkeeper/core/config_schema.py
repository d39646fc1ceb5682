"""Pydantic models for config validation.

Opt-in schema validation for ``Config.config_data``.  Call
``Config.validated()`` to obtain a typed, validated ``StepKeeperConfig``
instance.  Existing dict-based access continues to work unchanged.
Environment overrides arrive as strings; pydantic coerces them here.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PathsConfig(BaseModel):
    """File-system paths used by the application."""

    data_dir: Path
    store_dir: Path | None = None
    log_dir: Path | None = None

    @field_validator("data_dir", "store_dir", "log_dir", mode="before")
    @classmethod
    def _expand_user(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        if isinstance(v, Path):
            return v.expanduser()
        return v


class TrackingConfig(BaseModel):
    """Step acquisition knobs."""

    auth_timeout_seconds: float = Field(default=10.0, gt=0)
    tick_seconds: float = Field(default=0.1, gt=0)
    auto_start: bool = True
    save_on_reconcile: bool = True


class ResetConfig(BaseModel):
    """Daily reset boundary (local time-of-day)."""

    hour: int = Field(default=4, ge=0, le=23)
    minute: int = Field(default=0, ge=0, le=59)
    timezone: str | None = None
    cron_enabled: bool = False


class LoggingConfig(BaseModel):
    """Loguru sinks.  A relative ``file`` is placed under ``paths.log_dir``."""

    level: str = "WARNING"
    file: str | None = None
    rotation: str = "10 MB"
    retention: str = "7 days"

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"TRACE", "DEBUG", "INFO", "SUCCESS", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"unknown log level {v!r}")
        return level


class StepKeeperConfig(BaseModel):
    """Root configuration model.

    Uses ``extra="allow"`` so consumers can bolt on custom sections
    without touching this schema.
    """

    model_config = ConfigDict(extra="allow")

    paths: PathsConfig = PathsConfig(data_dir=Path("~/.stepkeeper-data"))
    tracking: TrackingConfig = TrackingConfig()
    reset: ResetConfig = ResetConfig()
    logging: LoggingConfig = LoggingConfig()
