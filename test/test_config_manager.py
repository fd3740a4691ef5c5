"""
Unit tests for ConfigManager.
"""

from pathlib import Path

import pytest

from tunebox.config_manager import CONFIG_GROUPS, MIN_FREE_SPACE_MARGIN, ConfigManager


@pytest.fixture
def config_manager(temp_db):
    """Create a ConfigManager instance for testing."""
    return ConfigManager(temp_db)


def test_get_default(config_manager):
    """Test getting default configuration values."""
    assert config_manager.get("cache_retention_days") == "7"
    assert config_manager.get("max_concurrent_downloads") == "2"
    assert config_manager.get("status_check_attempts") == "3"
    assert config_manager.get("audio_sink") in ("alsasink", "autoaudiosink")


def test_set_and_get(config_manager):
    """Test setting and getting configuration values."""
    config_manager.set("cache_retention_days", "14")
    assert config_manager.get("cache_retention_days") == "14"

    config_manager.set("test_key", "test_value")
    assert config_manager.get("test_key") == "test_value"


def test_get_int(config_manager):
    """Test getting integer configuration values."""
    config_manager.set("test_int", "42")
    assert config_manager.get_int("test_int") == 42
    assert config_manager.get_int("test_int", default=0) == 42

    assert config_manager.get_int("nonexistent", default=10) == 10

    config_manager.set("invalid_int", "not_a_number")
    assert config_manager.get_int("invalid_int", default=0) == 0


def test_get_float(config_manager):
    """Test getting float configuration values."""
    config_manager.set("test_float", "3.14")
    assert config_manager.get_float("test_float") == 3.14

    assert config_manager.get_float("nonexistent", default=1.0) == 1.0

    config_manager.set("invalid_float", "not_a_number")
    assert config_manager.get_float("invalid_float", default=0.0) == 0.0


def test_get_bool(config_manager):
    """Test getting boolean configuration values."""
    config_manager.set("test_bool", "true")
    assert config_manager.get_bool("test_bool") is True

    config_manager.set("test_bool", "0")
    assert config_manager.get_bool("test_bool") is False

    assert config_manager.get_bool("nonexistent", default=True) is True


def test_get_all(config_manager):
    """Test getting all configuration values."""
    config_manager.set("cache_retention_days", "30")
    config_manager.set("custom_key", "custom_value")

    all_config = config_manager.get_all()

    assert "stream_base_url" in all_config
    assert "near_end_threshold_seconds" in all_config
    assert all_config["cache_retention_days"] == "30"
    assert all_config["custom_key"] == "custom_value"


def test_config_persistence(temp_db):
    """Test that configuration persists across ConfigManager instances."""
    cm1 = ConfigManager(temp_db)
    cm1.set("cache_retention_days", "3")

    cm2 = ConfigManager(temp_db)
    assert cm2.get("cache_retention_days") == "3"


def test_cache_directory_default(config_manager):
    assert config_manager.get_cache_directory() == Path.home() / ".tunebox" / "songs"


def test_cache_directory_expands_user(config_manager):
    config_manager.set("cache_directory", "~/music-cache")
    assert config_manager.get_cache_directory() == Path.home() / "music-cache"


def test_free_space_margin_clamped(config_manager):
    """The safety margin can be raised but never lowered below 1.5x."""
    assert config_manager.get_free_space_margin() == MIN_FREE_SPACE_MARGIN

    config_manager.set("free_space_margin", "1.1")
    assert config_manager.get_free_space_margin() == MIN_FREE_SPACE_MARGIN

    config_manager.set("free_space_margin", "2.5")
    assert config_manager.get_free_space_margin() == 2.5


def test_full_config(config_manager):
    full = config_manager.get_full_config()
    assert set(full) == {"values", "schema", "groups"}
    for key_def in full["schema"].values():
        assert key_def["group"] in CONFIG_GROUPS

    # Returned schema is a copy
    full["schema"]["cache_directory"]["label"] = "changed"
    assert config_manager.get_config_schema()["cache_directory"]["label"] != "changed"
