"""Tests for path utilities."""

from pathlib import Path

from spond_sync.utils.paths import (
    CONFIG_DIR_ENV_VAR,
    DEFAULT_CONFIG_DIR,
    DEFAULT_DATABASE_FILE,
    default_database_path,
    default_log_dir,
    resolve_config_dir,
)


class TestResolveConfigDir:
    """Test resolve_config_dir precedence."""

    def test_default_is_in_home(self):
        assert Path.home() / ".spond-sync" == DEFAULT_CONFIG_DIR

    def test_explicit_path(self, tmp_path):
        assert resolve_config_dir(str(tmp_path)) == tmp_path.resolve()

    def test_explicit_path_with_tilde(self):
        assert resolve_config_dir("~/club-sync") == Path.home().resolve() / "club-sync"

    def test_env_var_used_without_explicit_path(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert resolve_config_dir() == tmp_path.resolve()

    def test_explicit_overrides_env_var(self, tmp_path, monkeypatch):
        """An explicit directory wins over SPOND_SYNC_CONFIG_DIR."""
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path / "env"))
        assert resolve_config_dir(tmp_path / "cli") == (tmp_path / "cli").resolve()

    def test_default_without_env(self, monkeypatch):
        monkeypatch.delenv(CONFIG_DIR_ENV_VAR, raising=False)
        assert resolve_config_dir() == DEFAULT_CONFIG_DIR.resolve()

    def test_relative_path_is_made_absolute(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        assert resolve_config_dir("relative-dir").is_absolute()


class TestDefaultDatabasePath:
    """Test the default database location."""

    def test_inside_config_dir(self, tmp_path):
        assert default_database_path(tmp_path) == tmp_path.resolve() / DEFAULT_DATABASE_FILE
        assert DEFAULT_DATABASE_FILE == "spond_sync.db"


class TestDefaultLogDir:
    """Test the default log location."""

    def test_inside_config_dir(self, tmp_path):
        assert default_log_dir(tmp_path) == tmp_path.resolve() / "logs"

    def test_follows_env_var(self, tmp_path, monkeypatch):
        monkeypatch.setenv(CONFIG_DIR_ENV_VAR, str(tmp_path))
        assert default_log_dir() == tmp_path.resolve() / "logs"
