"""
Loguru sinks for stepkeeper.

Console output always goes to stderr.  When ``logging.file`` is set a
rotating file sink is added; a relative file name lands in
``paths.log_dir`` (``<data_dir>/logs`` when that is unset).
"""

import sys
from pathlib import Path

from loguru import logger

from stepkeeper.core.config_schema import StepKeeperConfig

CONSOLE_FORMAT = "<level>[{level.name}]</level> {message}"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level} | {name}:{function} | {message}"


def resolve_log_file(settings: StepKeeperConfig) -> Path | None:
    if not settings.logging.file:
        return None
    path = Path(settings.logging.file).expanduser()
    if path.is_absolute():
        return path
    log_dir = settings.paths.log_dir or settings.paths.data_dir / "logs"
    return log_dir / path


def setup_logging(settings: StepKeeperConfig) -> Path | None:
    """
    Replace loguru's sinks with the ones described by *settings*.

    Returns the log file path, or None when only stderr is configured.
    """
    level = settings.logging.level
    logger.remove()
    logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)

    log_file = resolve_log_file(settings)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            str(log_file),
            level=level,
            format=FILE_FORMAT,
            rotation=settings.logging.rotation,
            retention=settings.logging.retention,
        )
        logger.debug(f"[Logging] Writing {level} and above to {log_file}")
    return log_file
