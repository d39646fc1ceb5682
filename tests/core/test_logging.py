"""Tests for stepkeeper.core.utils.logging."""

import os
from pathlib import Path

from loguru import logger

from stepkeeper.core.config_schema import StepKeeperConfig
from stepkeeper.core.utils.logging import resolve_log_file, setup_logging


def _settings(tmp_dir, **logging):
    return StepKeeperConfig(
        paths={"data_dir": os.path.join(tmp_dir, "data"), "log_dir": os.path.join(tmp_dir, "logs")},
        logging=logging,
    )


def test_setup_logging_writes_file_under_log_dir(tmp_dir):
    settings = _settings(tmp_dir, level="info", file="stepkeeper.log")
    try:
        log_file = setup_logging(settings)
        logger.info("[StepController] Initialization complete")
        logger.debug("hidden below INFO")
        logger.complete()
    finally:
        logger.remove()

    assert log_file == Path(tmp_dir) / "logs" / "stepkeeper.log"
    content = log_file.read_text()
    assert "Initialization complete" in content
    assert "hidden below INFO" not in content


def test_no_file_means_stderr_only(tmp_dir):
    try:
        assert setup_logging(_settings(tmp_dir)) is None
    finally:
        logger.remove()
    assert not os.path.exists(os.path.join(tmp_dir, "logs"))


def test_absolute_file_ignores_log_dir(tmp_dir):
    target = os.path.join(tmp_dir, "elsewhere", "app.log")
    assert resolve_log_file(_settings(tmp_dir, file=target)) == Path(target)


def test_relative_file_falls_back_to_data_dir_logs(tmp_dir):
    settings = StepKeeperConfig(paths={"data_dir": tmp_dir}, logging={"file": "app.log"})
    assert resolve_log_file(settings) == Path(tmp_dir) / "logs" / "app.log"


def test_rotation_and_retention_defaults():
    settings = StepKeeperConfig()
    assert settings.logging.rotation == "10 MB"
    assert settings.logging.retention == "7 days"


def test_rotation_from_config_reaches_the_sink(tmp_dir, monkeypatch):
    seen: dict = {}
    real_add = logger.add

    def recording_add(sink, **kwargs):
        if isinstance(sink, str):
            seen.update(kwargs)
        return real_add(sink, **kwargs)

    monkeypatch.setattr(logger, "add", recording_add)
    try:
        setup_logging(_settings(tmp_dir, file="s.log", rotation="1 MB", retention="2 days"))
    finally:
        logger.remove()

    assert seen["rotation"] == "1 MB"
    assert seen["retention"] == "2 days"
