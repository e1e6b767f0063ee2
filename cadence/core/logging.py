"""
Logging setup — console plus one dated log file per day under ~/.cadence/logs.

Files are named cadence_YYYYMMDD.log after the clock's date. With a
retention period, files whose date stamp is older than that many days are
deleted each time logging is configured, so a long-running deployment
does not fill the log directory.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from pathlib import Path

from cadence.core.clock import Clock, SystemClock
from cadence.core.config import LoggingConfig
from cadence.core.errors import ConfigError

LOG_FILE_PREFIX = "cadence_"
_STAMP = "%Y%m%d"


def configure_logging(
    config: LoggingConfig, verbose: bool = False, clock: Clock | None = None
) -> logging.Logger:
    """Apply a LoggingConfig. `verbose` forces DEBUG on the console."""
    return setup_logging(
        log_dir=Path(config.dir),
        console_level=logging.DEBUG if verbose else config.console_level,
        file_level=config.file_level,
        retention_days=config.retention_days,
        clock=clock,
    )


def setup_logging(
    log_dir: Path | None = None,
    console_level: int | str = logging.WARNING,
    file_level: int | str = logging.DEBUG,
    retention_days: int = 0,
    clock: Clock | None = None,
) -> logging.Logger:
    """
    Setup Cadence logging.

    Args:
        log_dir: Directory for log files (default: ~/.cadence/logs)
        console_level: Minimum level for console output (int or level name)
        file_level: Minimum level for file output (int or level name)
        retention_days: Delete dated log files older than this; 0 keeps all
        clock: Source of today's date for the file name and retention

    Returns:
        The configured "cadence" logger

    Raises:
        ConfigError: a level name is not a logging level.
    """
    log_dir = (log_dir or (Path.home() / ".cadence" / "logs")).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)
    today = (clock or SystemClock()).now().date()

    logger = logging.getLogger("cadence")
    logger.setLevel(logging.DEBUG)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(_level(console_level))
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    log_file = log_dir / f"{LOG_FILE_PREFIX}{today.strftime(_STAMP)}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setLevel(_level(file_level))
    file_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(file_handler)

    removed = prune_logs(log_dir, today, retention_days)
    logger.info(f"Logging to {log_file}")
    if removed:
        logger.debug(f"Removed {len(removed)} log file(s) older than {retention_days} days")

    return logger


def prune_logs(log_dir: Path, today: date, retention_days: int) -> list[Path]:
    """Delete cadence_YYYYMMDD.log files dated before today - retention_days."""
    if retention_days <= 0:
        return []
    cutoff = today - timedelta(days=retention_days)
    removed: list[Path] = []
    for path in sorted(log_dir.glob(f"{LOG_FILE_PREFIX}*.log")):
        try:
            stamp = datetime.strptime(path.stem[len(LOG_FILE_PREFIX):], _STAMP).date()
        except ValueError:
            continue  # not a dated cadence log
        if stamp < cutoff:
            path.unlink()
            removed.append(path)
    return removed


def _level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ConfigError(f"Unknown log level '{value}'", {"level": value})
    return level
