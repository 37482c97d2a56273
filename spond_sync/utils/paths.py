"""
Path utilities for configuration directory resolution.

Provides consistent path resolution for the spond-sync configuration
directory across all modules.
"""

from __future__ import annotations

import os
from pathlib import Path

# Default configuration directory
DEFAULT_CONFIG_DIR = Path.home() / ".spond-sync"

# Environment variable for overriding config directory
CONFIG_DIR_ENV_VAR = "SPOND_SYNC_CONFIG_DIR"

# Default database file name inside the config directory
DEFAULT_DATABASE_FILE = "spond_sync.db"

# Log directory name inside the config directory
DEFAULT_LOG_DIR_NAME = "logs"


def resolve_config_dir(config_dir: Path | str | None = None) -> Path:
    """
    Resolve the configuration directory path.

    Priority:
        1. Explicit config_dir parameter (if provided)
        2. SPOND_SYNC_CONFIG_DIR environment variable
        3. Default directory (~/.spond-sync)

    Args:
        config_dir: Optional explicit configuration directory path.
                   Can be a Path object or string.

    Returns:
        Resolved Path to the configuration directory (expanduser and resolve applied)
    """
    if config_dir is not None:
        return Path(config_dir).expanduser().resolve()

    env_dir = os.environ.get(CONFIG_DIR_ENV_VAR)
    if env_dir:
        return Path(env_dir).expanduser().resolve()

    return DEFAULT_CONFIG_DIR.expanduser().resolve()


def default_database_path(config_dir: Path | str | None = None) -> Path:
    """Return the database location inside the resolved config directory."""
    return resolve_config_dir(config_dir) / DEFAULT_DATABASE_FILE


def default_log_dir(config_dir: Path | str | None = None) -> Path:
    """Return the log directory inside the resolved config directory."""
    return resolve_config_dir(config_dir) / DEFAULT_LOG_DIR_NAME
