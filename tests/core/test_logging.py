"""Tests for cadence/core/logging.py"""

import logging
from datetime import date, datetime, timezone

import pytest

from cadence.core.clock import FrozenClock
from cadence.core.config import LoggingConfig
from cadence.core.errors import ConfigError
from cadence.core.logging import configure_logging, prune_logs, setup_logging

START = datetime(2024, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def reset_cadence_logger():
    yield
    logger = logging.getLogger("cadence")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def _touch(log_dir, *names):
    log_dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        (log_dir / name).write_text("", encoding="utf-8")


def test_setup_logging_writes_dated_file(tmp_path):
    logger = setup_logging(
        log_dir=tmp_path / "logs", console_level="ERROR", clock=FrozenClock(START)
    )
    logger.info("hello from test")
    for handler in logger.handlers:
        handler.flush()

    log_file = tmp_path / "logs" / "cadence_20240101.log"
    assert "hello from test" in log_file.read_text(encoding="utf-8")
    assert logger.handlers[0].level == logging.ERROR


def test_configure_logging_uses_config_levels(tmp_path):
    config = LoggingConfig(dir=str(tmp_path), console_level="INFO", file_level="WARNING")
    logger = configure_logging(config, clock=FrozenClock(START))
    console, file = logger.handlers
    assert console.level == logging.INFO
    assert file.level == logging.WARNING


def test_verbose_forces_debug_console(tmp_path):
    config = LoggingConfig(dir=str(tmp_path), console_level="ERROR")
    logger = configure_logging(config, verbose=True, clock=FrozenClock(START))
    assert logger.handlers[0].level == logging.DEBUG


def test_reconfiguring_replaces_handlers(tmp_path):
    config = LoggingConfig(dir=str(tmp_path))
    configure_logging(config, clock=FrozenClock(START))
    logger = configure_logging(config, clock=FrozenClock(START))
    assert len(logger.handlers) == 2


def test_unknown_level_raises_config_error(tmp_path):
    with pytest.raises(ConfigError, match="Unknown log level"):
        setup_logging(log_dir=tmp_path, console_level="chatty")


def test_configure_logging_prunes_old_files(tmp_path):
    _touch(tmp_path, "cadence_20231201.log", "cadence_20231225.log", "notes.log")
    config = LoggingConfig(dir=str(tmp_path), retention_days=14)

    configure_logging(config, clock=FrozenClock(START))

    names = sorted(p.name for p in tmp_path.iterdir())
    assert names == ["cadence_20231225.log", "cadence_20240101.log", "notes.log"]


class TestPruneLogs:
    def test_removes_files_before_cutoff(self, tmp_path):
        _touch(tmp_path, "cadence_20231230.log", "cadence_20231231.log", "cadence_20240101.log")

        removed = prune_logs(tmp_path, date(2024, 1, 1), retention_days=1)

        assert [p.name for p in removed] == ["cadence_20231230.log"]
        assert not (tmp_path / "cadence_20231230.log").exists()
        assert (tmp_path / "cadence_20231231.log").exists()

    def test_zero_retention_keeps_everything(self, tmp_path):
        _touch(tmp_path, "cadence_20200101.log")
        assert prune_logs(tmp_path, date(2024, 1, 1), retention_days=0) == []
        assert (tmp_path / "cadence_20200101.log").exists()

    def test_skips_undated_names(self, tmp_path):
        _touch(tmp_path, "cadence_debug.log", "cadence_2020.log")
        assert prune_logs(tmp_path, date(2024, 1, 1), retention_days=1) == []
        assert len(list(tmp_path.iterdir())) == 2
