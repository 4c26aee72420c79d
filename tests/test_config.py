"""Tests for configuration system."""

from pathlib import Path

import pytest

from reach_lifecycle.config import (
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
        assert s.storage_path == Path("./.reach-data")
        assert s.upload_dir == Path("./cdn")
        assert s.fast_tick_seconds == 60
        assert s.slow_tick_seconds == 6 * 3600
        assert s.default_plan == "hobby"
        assert s.log_level == "INFO"
        assert s.log_format == "text"
        assert s.filelock_enabled is True

    def test_custom_values(self) -> None:
        """Test custom configuration values."""
        s = Settings(
            storage_path="/custom/store",
            upload_dir="/srv/cdn",
            fast_tick_seconds=5,
            default_plan="pro",
        )
        # Use Path comparison to handle platform differences
        assert s.storage_path == Path("/custom/store")
        assert s.upload_dir == Path("/srv/cdn")
        assert s.fast_tick_seconds == 5
        assert s.default_plan == "pro"

    def test_temp_dir_derived_from_upload_dir(self) -> None:
        """The janitor's directory is the 'temp' child of the upload dir."""
        s = Settings(upload_dir="/srv/cdn")
        assert s.temp_dir == Path("/srv/cdn/temp")

    def test_interval_bounds(self) -> None:
        """Test tick interval bounds."""
        with pytest.raises(ValueError):
            Settings(fast_tick_seconds=0)

        with pytest.raises(ValueError):
            Settings(slow_tick_seconds=30)

    def test_unknown_plan_rejected(self) -> None:
        with pytest.raises(ValueError):
            Settings(default_plan="enterprise")

    def test_env_prefix(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Settings are read from REACH_* environment variables."""
        monkeypatch.setenv("REACH_UPLOAD_DIR", "/env/cdn")
        monkeypatch.setenv("REACH_FAST_TICK_SECONDS", "15")
        monkeypatch.setenv("REACH_LOG_FORMAT", "json")

        s = Settings()
        assert s.upload_dir == Path("/env/cdn")
        assert s.fast_tick_seconds == 15
        assert s.log_format == "json"


class TestSettingsInjection:
    """Tests for settings dependency injection."""

    def test_get_settings_returns_singleton(self) -> None:
        """Test that get_settings returns same instance."""
        reset_settings()
        s1 = get_settings()
        s2 = get_settings()
        assert s1 is s2
        reset_settings()

    def test_override_settings(self) -> None:
        """Test settings override for testing."""
        reset_settings()
        original = get_settings()

        custom = Settings(storage_path="/override/path")
        override_settings(custom)

        current = get_settings()
        assert current.storage_path == Path("/override/path")
        assert current is custom
        assert current is not original

        reset_settings()
