"""Tests for configuration system."""

from pathlib import Path

import pytest

import data_manager.config as config_module
from data_manager.config import (
    Settings,
    get_settings,
    override_settings,
    reset_settings,
)


class TestSettings:
    """Tests for Settings class."""

    def test_default_values(self) -> None:
        """Test default configuration values."""
        s = Settings()
        assert s.container_name == "Model"
        assert s.store_path == Path("./data/Model.sqlite")
        assert s.scratch_path is None
        assert s.log_level == "INFO"
        assert s.filelock_enabled is True

    def test_custom_values(self) -> None:
        """Test custom configuration values."""
        s = Settings(
            container_name="Notes",
            store_path="/custom/Notes.sqlite",
            scratch_path="/custom/scratch",
        )
        assert s.container_name == "Notes"
        assert s.store_path == Path("/custom/Notes.sqlite")
        assert s.scratch_path == Path("/custom/scratch")

    def test_log_level_is_normalized(self) -> None:
        assert Settings(log_level="debug").log_level == "DEBUG"

    def test_unknown_log_level_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(log_level="chatty")

    def test_empty_container_name_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(container_name="")

    def test_unknown_setting_rejected(self) -> None:
        """Migration concurrency is fixed, so there is no worker setting."""
        with pytest.raises(ValueError):
            Settings(migration_workers=4)

    def test_environment_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test values are read from DATA_MANAGER_* variables."""
        monkeypatch.setenv("DATA_MANAGER_CONTAINER_NAME", "Journal")
        monkeypatch.setenv("DATA_MANAGER_FILELOCK_ENABLED", "false")
        monkeypatch.setenv("DATA_MANAGER_FILELOCK_TIMEOUT", "2.5")

        s = Settings()
        assert s.container_name == "Journal"
        assert s.filelock_enabled is False
        assert s.filelock_timeout == 2.5


class TestSettingsInjection:
    """Tests for settings dependency injection."""

    def test_get_settings_returns_singleton(self) -> None:
        """Test that get_settings returns same instance."""
        reset_settings()
        s1 = get_settings()
        s2 = get_settings()
        assert s1 is s2

    def test_override_settings(self) -> None:
        """Test settings override for testing."""
        reset_settings()
        original = get_settings()

        custom = Settings(store_path="/override/Model.sqlite")
        override_settings(custom)

        current = get_settings()
        assert current.store_path == Path("/override/Model.sqlite")
        assert current is custom
        assert current is not original

        reset_settings()

    def test_reset_forces_reload(self) -> None:
        override_settings(Settings(container_name="Journal"))

        reset_settings()

        assert get_settings().container_name == "Model"
        reset_settings()

    def test_settings_only_reachable_through_accessor(self) -> None:
        assert not hasattr(config_module, "settings")
