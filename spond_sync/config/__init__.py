"""
spond_sync.config - Configuration management module

Contains YAML configuration loading, validation, and typed settings.
"""

from spond_sync.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigError,
    ConfigLoader,
)
from spond_sync.config.settings import AppSettings

__all__ = [
    "AppSettings",
    "ConfigError",
    "ConfigLoader",
    "DEFAULT_CONFIG_FILE",
]
