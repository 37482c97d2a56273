"""
Typed application settings.

AppSettings is built from a validated configuration dictionary (see
ConfigLoader) and carries defaults for every key. Spond credentials are
not part of it; they are stored in the database by ``configure``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from spond_sync.api.spond_api import (
    DEFAULT_BASE_URL,
    DEFAULT_MAX_EVENTS,
    DEFAULT_TIMEOUT,
)
from spond_sync.config.loader import ConfigLoader
from spond_sync.sync.matcher import (
    DEFAULT_MATCH_FLOOR,
    DEFAULT_TIME_WINDOW_MINUTES,
    MatchConfig,
)
from spond_sync.sync.report import DEFAULT_DAYS_AHEAD, DEFAULT_DAYS_BEHIND
from spond_sync.utils.paths import default_database_path, resolve_config_dir

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8000
DEFAULT_DAEMON_INTERVAL = "1h"
DEFAULT_LOG_RETENTION = 10


@dataclass
class AppSettings:
    """
    Settings shared by the CLI, the HTTP server and the daemon.

    Usage:
        settings = AppSettings.load()
        settings = AppSettings.from_dict({"days_ahead": 30})
    """

    config_dir: Path = field(default_factory=resolve_config_dir)
    database_path: str | None = None
    log_dir: str | None = None
    log_retention_count: int = DEFAULT_LOG_RETENTION
    verbose: bool = False
    api_base_url: str = DEFAULT_BASE_URL
    api_timeout: float = DEFAULT_TIMEOUT
    api_max_events: int = DEFAULT_MAX_EVENTS
    days_ahead: int = DEFAULT_DAYS_AHEAD
    days_behind: int = DEFAULT_DAYS_BEHIND
    match_time_window_minutes: int = DEFAULT_TIME_WINDOW_MINUTES
    match_floor: int = DEFAULT_MATCH_FLOOR
    api_tokens: list[str] = field(default_factory=list)
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    daemon_interval: str = DEFAULT_DAEMON_INTERVAL

    def __post_init__(self) -> None:
        if self.database_path is None:
            self.database_path = str(default_database_path(self.config_dir))

    @property
    def match_config(self) -> MatchConfig:
        return MatchConfig(
            time_window_minutes=self.match_time_window_minutes,
            floor=self.match_floor,
        )

    @classmethod
    def from_dict(
        cls, data: dict[str, Any], config_dir: Path | None = None
    ) -> AppSettings:
        """
        Create settings from a validated configuration dictionary.

        Unknown keys are ignored; missing keys take their defaults.
        """
        known = {
            name: data[name]
            for name in cls.__dataclass_fields__
            if name != "config_dir" and name in data
        }
        if "api_tokens" in known:
            known["api_tokens"] = list(known["api_tokens"])
        if "api_timeout" in known:
            known["api_timeout"] = float(known["api_timeout"])
        return cls(config_dir=resolve_config_dir(config_dir), **known)

    @classmethod
    def load(
        cls, config_dir: Path | None = None, config_file: str | None = None
    ) -> AppSettings:
        """
        Load and validate the YAML configuration file.

        Raises:
            ConfigError: If the file cannot be parsed or is invalid
        """
        loader = ConfigLoader(config_dir=config_dir, config_file=config_file)
        return cls.from_dict(loader.load_and_validate(), config_dir=loader.config_dir)
