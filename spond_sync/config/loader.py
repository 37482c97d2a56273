"""
Configuration loader module for Spond synchronization.

Provides YAML-based configuration file loading with support for:
- Loading configuration from default or custom paths
- Graceful handling of missing configuration files
- Type and range validation of known keys
"""

import logging
import os
from pathlib import Path
from typing import Any

import yaml

from spond_sync.daemon import parse_interval
from spond_sync.utils.paths import resolve_config_dir

# Default configuration file name
DEFAULT_CONFIG_FILE = "config.yaml"

# Environment variable overriding the configuration file path
CONFIG_FILE_ENV_VAR = "SPOND_SYNC_CONFIG_FILE"

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration loading or validation fails."""

    pass


class ConfigLoader:
    """
    YAML configuration file loader.

    Attributes:
        config_dir: Directory containing the configuration file
        config_file: Name of the configuration file

    Usage:
        loader = ConfigLoader()
        config = loader.load_and_validate()

        # With custom path
        loader = ConfigLoader(config_dir=Path("/custom/path"))
        config = loader.load()

        # Load from specific file
        config = loader.load_from_file("/path/to/config.yaml")
    """

    def __init__(
        self, config_dir: Path | None = None, config_file: str | None = None
    ):
        """
        Initialize the configuration loader.

        Args:
            config_dir: Directory containing the configuration file.
                       Defaults to ~/.spond-sync/ or $SPOND_SYNC_CONFIG_DIR
            config_file: File name or path of the configuration file.
                        Defaults to $SPOND_SYNC_CONFIG_FILE or config.yaml
        """
        self.config_dir = resolve_config_dir(config_dir)
        self.config_file = (
            config_file or os.environ.get(CONFIG_FILE_ENV_VAR) or DEFAULT_CONFIG_FILE
        )

    def _get_config_path(self) -> Path:
        # An absolute config_file wins over the directory
        return self.config_dir / self.config_file

    def load(self) -> dict[str, Any]:
        """
        Load configuration from the configuration file.

        Returns an empty dict if the file doesn't exist.

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        return self.load_from_file(self._get_config_path())

    def load_from_file(self, path: Path | str) -> dict[str, Any]:
        """
        Load configuration from a specific file.

        Args:
            path: Path to the configuration file

        Returns:
            Dictionary containing configuration values, or empty dict if file
            doesn't exist

        Raises:
            ConfigError: If the configuration file exists but cannot be parsed
        """
        path = Path(path)

        if not path.exists():
            logger.debug(f"Configuration file not found: {path}")
            return {}

        try:
            with open(path, encoding="utf-8") as f:
                config = yaml.safe_load(f)

            if config is None:
                logger.debug(f"Configuration file is empty: {path}")
                return {}

            if not isinstance(config, dict):
                raise ConfigError(
                    f"Configuration file must contain a YAML dictionary, "
                    f"got {type(config).__name__}"
                )

            logger.debug(f"Loaded configuration from {path}")
            return config

        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse YAML configuration file: {e}") from e
        except OSError as e:
            raise ConfigError(f"Failed to read configuration file: {e}") from e

    def validate(self, config: dict[str, Any]) -> None:
        """
        Validate configuration structure and values.

        Unknown keys are ignored.

        Raises:
            ConfigError: If configuration is invalid
        """
        if not isinstance(config, dict):
            raise ConfigError(
                f"Configuration must be a dictionary, got {type(config).__name__}"
            )

        valid_keys: dict[str, type[Any] | tuple[type[Any], ...]] = {
            # Storage and logging
            "database_path": str,
            "log_dir": str,
            "log_retention_count": int,
            "verbose": bool,
            # Spond API
            "api_base_url": str,
            "api_timeout": (int, float),
            "api_max_events": int,
            # Sync window
            "days_ahead": int,
            "days_behind": int,
            # Matching
            "match_time_window_minutes": int,
            "match_floor": int,
            # HTTP server
            "api_tokens": list,
            "host": str,
            "port": int,
            # Daemon
            "daemon_interval": str,
        }

        for key, value in config.items():
            if key not in valid_keys:
                continue
            expected_type = valid_keys[key]
            # bool is an int subclass; never accept it for numeric keys
            is_bool_for_number = isinstance(value, bool) and expected_type is not bool
            if is_bool_for_number or not isinstance(value, expected_type):
                if isinstance(expected_type, tuple):
                    type_name = " or ".join(t.__name__ for t in expected_type)
                else:
                    type_name = expected_type.__name__
                raise ConfigError(
                    f"Invalid type for '{key}': expected {type_name}, "
                    f"got {type(value).__name__}"
                )

        if "api_tokens" in config:
            if not all(isinstance(t, str) and t for t in config["api_tokens"]):
                raise ConfigError("api_tokens must be a list of non-empty strings")

        # Non-negative integer values
        for key in ["log_retention_count", "days_ahead", "days_behind"]:
            if key in config and config[key] < 0:
                raise ConfigError(f"{key} must be >= 0, got {config[key]}")

        if "api_max_events" in config and config["api_max_events"] < 1:
            raise ConfigError(
                f"api_max_events must be >= 1, got {config['api_max_events']}"
            )

        if "api_timeout" in config and config["api_timeout"] <= 0:
            raise ConfigError(f"api_timeout must be > 0, got {config['api_timeout']}")

        if "match_time_window_minutes" in config:
            window = config["match_time_window_minutes"]
            if window <= 30:
                raise ConfigError(
                    f"match_time_window_minutes must be > 30, got {window}"
                )

        if "match_floor" in config:
            floor = config["match_floor"]
            if not (0 <= floor <= 100):
                raise ConfigError(f"match_floor must be between 0 and 100, got {floor}")

        if "port" in config and not (1 <= config["port"] <= 65535):
            raise ConfigError(f"port must be between 1 and 65535, got {config['port']}")

        if "daemon_interval" in config:
            try:
                parse_interval(config["daemon_interval"])
            except ValueError as e:
                raise ConfigError(f"Invalid daemon_interval: {e}") from e

    def load_and_validate(self) -> dict[str, Any]:
        """
        Load configuration and validate it.

        Raises:
            ConfigError: If configuration cannot be loaded or is invalid
        """
        config = self.load()
        if config:
            self.validate(config)
        return config
