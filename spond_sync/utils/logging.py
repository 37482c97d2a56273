"""
Logging setup for spond_sync.

Console output goes to stderr; a daily file in the log directory
(``<config dir>/logs`` unless configured otherwise) always captures
DEBUG. Fuzzy-match decisions can additionally be written to their own
per-run file via setup_matching_logger().

Environment overrides:
    SPOND_SYNC_LOG_LEVEL  level name for the console (default INFO)
    SPOND_SYNC_DEBUG      "1"/"true"/"yes" forces DEBUG
    SPOND_SYNC_LOG_FILE   explicit log file, or "none" to disable it
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from pathlib import Path

from spond_sync.utils.paths import default_log_dir

CONSOLE_FORMAT = "%(levelname)s: %(message)s"
VERBOSE_FORMAT = (
    "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
)
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# One line per match decision, millisecond timestamps
MATCHING_LOG_FORMAT = "%(asctime)s.%(msecs)03d - %(levelname)s - %(message)s"

ENV_LOG_LEVEL = "SPOND_SYNC_LOG_LEVEL"
ENV_DEBUG = "SPOND_SYNC_DEBUG"
ENV_LOG_FILE = "SPOND_SYNC_LOG_FILE"

ROOT_LOGGER_NAME = "spond_sync"
MATCHING_LOGGER_NAME = "spond_sync.matching"

# Where setup_logging() last put its file; the matching log follows it
_configured_log_dir: Path | None = None


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name when writing to a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }
    RESET = "\033[0m"

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        use_colors: bool = True,
    ):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors and _terminal_supports_color()

    def format(self, record: logging.LogRecord) -> str:
        if not self.use_colors or record.levelname not in self.COLORS:
            return super().format(record)
        # Work on a copy so file handlers see the plain level name
        colored = logging.makeLogRecord(record.__dict__)
        colored.levelname = f"{self.COLORS[record.levelname]}{record.levelname}{self.RESET}"
        return super().format(colored)


def _terminal_supports_color() -> bool:
    if not getattr(sys.stderr, "isatty", None) or not sys.stderr.isatty():
        return False
    # https://no-color.org/
    if os.environ.get("NO_COLOR"):
        return False
    return os.environ.get("TERM", "") != "dumb"


def get_log_level_from_env() -> int:
    """
    Read the console level from the environment.

    SPOND_SYNC_DEBUG wins over SPOND_SYNC_LOG_LEVEL. Unknown level
    names fall back to INFO.
    """
    if os.environ.get(ENV_DEBUG, "").lower() in ("1", "true", "yes"):
        return logging.DEBUG

    name = os.environ.get(ENV_LOG_LEVEL, "INFO").upper()
    if name == "WARN":
        name = "WARNING"
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _daily_log_name() -> str:
    return f"spond_sync_{datetime.now().strftime('%Y%m%d')}.log"


def get_log_file_path(log_dir: Path | None = None) -> Path | None:
    """
    Work out where the main log file goes.

    SPOND_SYNC_LOG_FILE takes precedence; "none", "disabled" or an empty
    value turn file logging off. Otherwise a daily file is used in
    log_dir, or in the default log directory when log_dir is None.
    """
    log_file = os.environ.get(ENV_LOG_FILE)
    if log_file is not None:
        if log_file.lower() in ("none", "disabled", ""):
            return None
        return Path(log_file)

    return (log_dir or default_log_dir()) / _daily_log_name()


def setup_logging(
    level: int | None = None,
    verbose: bool = False,
    log_dir: Path | None = None,
    log_file: Path | None = None,
    enable_file_logging: bool = True,
    use_colors: bool = True,
) -> logging.Logger:
    """
    Configure the spond_sync logger hierarchy.

    Calling it again replaces the handlers of the previous call.

    Args:
        level: Console level. Read from the environment when None.
        verbose: Force DEBUG and use the detailed console format.
        log_dir: Directory for the daily log file.
        log_file: Exact log file path; wins over log_dir.
        enable_file_logging: Set False for console output only.
        use_colors: Color level names when stderr is a terminal.

    Returns:
        The "spond_sync" logger
    """
    global _configured_log_dir

    if level is None:
        level = get_log_level_from_env()
    if verbose:
        level = logging.DEBUG

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    console_format = VERBOSE_FORMAT if verbose else CONSOLE_FORMAT
    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(
        ColoredFormatter(console_format, DATE_FORMAT, use_colors=use_colors)
    )
    logger.addHandler(console_handler)

    file_path = None
    if enable_file_logging:
        file_path = log_file or get_log_file_path(log_dir)

    if file_path:
        try:
            file_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(file_path, encoding="utf-8")
        except OSError as e:
            logger.warning(f"Could not create log file {file_path}: {e}")
        else:
            # The console level applies only to the console
            logger.setLevel(logging.DEBUG)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(VERBOSE_FORMAT, DATE_FORMAT))
            logger.addHandler(file_handler)
            logger.debug(f"Log file: {file_path}")

    _configured_log_dir = file_path.parent if file_path else log_dir
    return logger


def cleanup_old_logs(log_dir: Path | None = None, keep_count: int = 10) -> int:
    """
    Delete all but the newest keep_count main logs and matching logs.

    Each kind is counted separately. keep_count <= 0 keeps everything.

    Returns:
        Number of files deleted.
    """
    if keep_count <= 0:
        return 0

    logs_dir = log_dir or _configured_log_dir or default_log_dir()
    if not logs_dir.exists():
        return 0

    deleted = 0
    for pattern in ("spond_sync_*.log", "matching_*.log"):
        files = sorted(
            logs_dir.glob(pattern), key=lambda p: p.stat().st_mtime, reverse=True
        )
        for old_log in files[keep_count:]:
            try:
                old_log.unlink()
                deleted += 1
            except OSError as e:
                logging.getLogger(ROOT_LOGGER_NAME).debug(
                    f"Could not delete old log {old_log}: {e}"
                )
    return deleted


def get_logger(name: str) -> logging.Logger:
    """Return a logger inside the spond_sync hierarchy."""
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def setup_matching_logger(
    log_file: Path | None = None, log_dir: Path | None = None
) -> logging.Logger:
    """
    Send match decisions to a file of their own.

    The matcher logs each comparison (score, band and reasons) to the
    "spond_sync.matching" logger. Without this call those records go to
    the main log at DEBUG; with it they go to ``matching_<timestamp>.log``
    only. If the file cannot be opened they go to stderr instead.
    """
    logger = logging.getLogger(MATCHING_LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    logger.propagate = False

    if log_file is None:
        logs_dir = log_dir or _configured_log_dir or default_log_dir()
        log_file = logs_dir / f"matching_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"

    formatter = logging.Formatter(MATCHING_LOG_FORMAT, DATE_FORMAT)
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    except OSError as e:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.warning(f"Could not create matching log {log_file}, using stderr: {e}")
        return logger

    handler.setFormatter(formatter)
    logger.addHandler(handler)
    logger.info(f"Matching log opened at {datetime.now().isoformat()}")
    return logger


__all__ = [
    "setup_logging",
    "setup_matching_logger",
    "get_logger",
    "get_log_level_from_env",
    "get_log_file_path",
    "cleanup_old_logs",
    "ColoredFormatter",
    "CONSOLE_FORMAT",
    "VERBOSE_FORMAT",
    "DATE_FORMAT",
    "MATCHING_LOG_FORMAT",
    "MATCHING_LOGGER_NAME",
]
