"""
Tests for the logging utilities.

Tests environment-driven levels, handler setup, log retention and the
dedicated matching logger.
"""

import logging
import os
import time

import pytest

import spond_sync.utils.logging as sync_logging
from spond_sync.utils.logging import (
    ENV_DEBUG,
    ENV_LOG_FILE,
    ENV_LOG_LEVEL,
    MATCHING_LOGGER_NAME,
    ColoredFormatter,
    cleanup_old_logs,
    get_log_file_path,
    get_log_level_from_env,
    get_logger,
    setup_logging,
    setup_matching_logger,
)


@pytest.fixture(autouse=True)
def restore_loggers():
    """Drop handlers added by a test so files are closed and state is reset."""
    yield
    for name in ("spond_sync", MATCHING_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.propagate = True
        logger.setLevel(logging.NOTSET)
    sync_logging._configured_log_dir = None


class TestLogLevelFromEnv:
    """Tests for get_log_level_from_env."""

    def test_default_is_info(self, monkeypatch):
        monkeypatch.delenv(ENV_LOG_LEVEL, raising=False)
        monkeypatch.delenv(ENV_DEBUG, raising=False)
        assert get_log_level_from_env() == logging.INFO

    @pytest.mark.parametrize(
        "value,level",
        [("debug", logging.DEBUG), ("WARN", logging.WARNING), ("bogus", logging.INFO)],
    )
    def test_level_names(self, monkeypatch, value, level):
        monkeypatch.delenv(ENV_DEBUG, raising=False)
        monkeypatch.setenv(ENV_LOG_LEVEL, value)
        assert get_log_level_from_env() == level

    def test_debug_flag_wins(self, monkeypatch):
        monkeypatch.setenv(ENV_LOG_LEVEL, "ERROR")
        monkeypatch.setenv(ENV_DEBUG, "true")
        assert get_log_level_from_env() == logging.DEBUG


class TestLogFilePath:
    """Tests for get_log_file_path."""

    def test_env_path(self, monkeypatch, tmp_path):
        monkeypatch.setenv(ENV_LOG_FILE, str(tmp_path / "sync.log"))
        assert get_log_file_path() == tmp_path / "sync.log"

    @pytest.mark.parametrize("value", ["none", "disabled", ""])
    def test_disabled(self, monkeypatch, value):
        monkeypatch.setenv(ENV_LOG_FILE, value)
        assert get_log_file_path() is None

    def test_default_daily_name(self, monkeypatch, tmp_path):
        monkeypatch.delenv(ENV_LOG_FILE, raising=False)
        monkeypatch.setenv("SPOND_SYNC_CONFIG_DIR", str(tmp_path))
        path = get_log_file_path()
        assert path.parent == tmp_path.resolve() / "logs"
        assert path.name.startswith("spond_sync_")

    def test_explicit_log_dir(self, monkeypatch, tmp_path):
        monkeypatch.delenv(ENV_LOG_FILE, raising=False)
        assert get_log_file_path(tmp_path).parent == tmp_path


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_console_only(self):
        logger = setup_logging(level=logging.WARNING, enable_file_logging=False)

        assert logger.name == "spond_sync"
        assert logger.level == logging.WARNING
        assert not logger.propagate
        assert len(logger.handlers) == 1

    def test_verbose_forces_debug(self):
        logger = setup_logging(level=logging.ERROR, verbose=True, enable_file_logging=False)
        assert logger.level == logging.DEBUG

    def test_file_handler_in_log_dir(self, tmp_path):
        logger = setup_logging(log_dir=tmp_path / "logs", use_colors=False)
        logger.info("hello")

        files = list((tmp_path / "logs").glob("spond_sync_*.log"))
        assert len(files) == 1
        file_handlers = [h for h in logger.handlers if isinstance(h, logging.FileHandler)]
        assert file_handlers[0].level == logging.DEBUG

    def test_repeated_setup_does_not_duplicate_handlers(self):
        setup_logging(enable_file_logging=False)
        logger = setup_logging(enable_file_logging=False)
        assert len(logger.handlers) == 1

    def test_file_captures_debug_when_console_is_quiet(self, tmp_path):
        logger = setup_logging(level=logging.ERROR, log_file=tmp_path / "x.log")
        logger.debug("detail")

        levels = {type(h): h.level for h in logger.handlers}
        assert levels[logging.StreamHandler] == logging.ERROR
        assert levels[logging.FileHandler] == logging.DEBUG
        for handler in logger.handlers:
            handler.flush()
        assert "detail" in (tmp_path / "x.log").read_text()


class TestGetLogger:
    """Tests for get_logger."""

    def test_prefixes_name(self):
        assert get_logger("custom").name == "spond_sync.custom"

    def test_keeps_package_name(self):
        assert get_logger("spond_sync.sync.engine").name == "spond_sync.sync.engine"


class TestColoredFormatter:
    """Tests for ColoredFormatter."""

    def test_no_colors_when_disabled(self):
        formatter = ColoredFormatter("%(levelname)s: %(message)s", use_colors=False)
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, None)
        assert formatter.format(record) == "ERROR: failed"

    def test_colors_only_level_name(self):
        formatter = ColoredFormatter("%(levelname)s: %(message)s")
        formatter.use_colors = True
        record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", None, None)

        output = formatter.format(record)

        assert output.startswith("\033[31mERROR")
        assert output.endswith(": failed")
        assert record.levelname == "ERROR"


class TestCleanupOldLogs:
    """Tests for cleanup_old_logs."""

    def _touch(self, path, age):
        path.write_text("x")
        stamp = time.time() - age
        os.utime(path, (stamp, stamp))

    def test_keeps_newest_of_each_kind(self, tmp_path):
        for i in range(4):
            self._touch(tmp_path / f"spond_sync_2026010{i}.log", age=i * 100)
            self._touch(tmp_path / f"matching_2026010{i}.log", age=i * 100)

        deleted = cleanup_old_logs(tmp_path, keep_count=2)

        assert deleted == 4
        assert sorted(p.name for p in tmp_path.iterdir()) == [
            "matching_20260100.log",
            "matching_20260101.log",
            "spond_sync_20260100.log",
            "spond_sync_20260101.log",
        ]

    def test_zero_keep_count_disables_cleanup(self, tmp_path):
        self._touch(tmp_path / "spond_sync_1.log", age=0)
        assert cleanup_old_logs(tmp_path, keep_count=0) == 0

    def test_missing_directory(self, tmp_path):
        assert cleanup_old_logs(tmp_path / "nope") == 0


class TestMatchingLogger:
    """Tests for the matching decision log."""

    def test_writes_to_file(self, tmp_path):
        log_file = tmp_path / "matching.log"
        logger = setup_matching_logger(log_file)
        logger.debug("candidate score=92 band=high")

        for handler in logger.handlers:
            handler.flush()
        assert "band=high" in log_file.read_text()
        assert logger.name == MATCHING_LOGGER_NAME
        assert not logger.propagate

    def test_default_file_follows_main_log_dir(self, tmp_path):
        setup_logging(log_dir=tmp_path, use_colors=False)
        setup_matching_logger()
        assert len(list(tmp_path.glob("matching_*.log"))) == 1

    def test_explicit_log_dir(self, tmp_path):
        setup_matching_logger(log_dir=tmp_path / "m")
        assert len(list((tmp_path / "m").glob("matching_*.log"))) == 1
