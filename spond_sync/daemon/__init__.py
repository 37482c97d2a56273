"""
spond_sync.daemon - Automatic sync scheduling

Interval parsing, the PID-file guarded scheduler, and its signal handling.
"""

import re

_INTERVAL_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_interval(interval: str | int) -> int:
    """Parse an interval such as "30s", "15m", "1h", "1d" or 3600 into seconds.

    Raises:
        ValueError: If the interval is malformed or not positive.
    """
    if isinstance(interval, bool):
        raise ValueError("Interval must be a number of seconds or a string like '1h'")

    if isinstance(interval, int):
        seconds = interval
    elif isinstance(interval, str):
        text = interval.lower().strip()
        if text.isdigit():
            seconds = int(text)
        else:
            match = re.match(r"^(\d+)\s*([smhd])$", text)
            if not match:
                raise ValueError(
                    f"Invalid interval format: '{interval}'. "
                    "Use format like '30s', '5m', '1h', or '1d'."
                )
            seconds = int(match.group(1)) * _INTERVAL_UNITS[match.group(2)]
    else:
        raise ValueError(
            f"Invalid interval type: {type(interval).__name__}. Expected str or int."
        )

    if seconds < 1:
        raise ValueError(f"Interval must be positive, got '{interval}'")
    return seconds


# Imports after parse_interval to avoid circular dependencies
from spond_sync.daemon.scheduler import (  # noqa: E402
    DaemonAlreadyRunningError,
    DaemonError,
    DaemonScheduler,
    DaemonStats,
    PIDFileError,
    PIDFileManager,
    default_pid_file,
)

__all__ = [
    "parse_interval",
    "DaemonScheduler",
    "DaemonStats",
    "DaemonError",
    "PIDFileError",
    "DaemonAlreadyRunningError",
    "PIDFileManager",
    "default_pid_file",
]
