"""
Configuration management using database storage.

Provides access to configuration values with defaults and type conversion.
The CONFIG_SCHEMA provides metadata for building configuration UIs.
"""

import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from .database import ConfigRepository, Database

# Configuration groups define the logical sections in the config UI
CONFIG_GROUPS = {
    "cache": {"label": "Offline Cache", "order": 1},
    "network": {"label": "Streaming", "order": 2},
    "playback": {"label": "Playback", "order": 3},
}

# Schema defining metadata for each editable configuration key
CONFIG_SCHEMA = {
    # Offline Cache
    "cache_directory": {
        "group": "cache",
        "label": "Cache Directory",
        "description": "Where downloaded songs are stored. Leave empty for default (~/.tunebox/songs).",
        "control": "text",
        "placeholder": "~/.tunebox/songs",
    },
    "cache_retention_days": {
        "group": "cache",
        "label": "Keep Songs For",
        "description": "Downloaded songs not played within this many days are removed.",
        "control": "slider",
        "min": 1,
        "max": 90,
        "step": 1,
        "display_format": "days",
    },
    "max_concurrent_downloads": {
        "group": "cache",
        "label": "Parallel Downloads",
        "description": "How many songs may download in the background at once.",
        "control": "slider",
        "min": 1,
        "max": 4,
        "step": 1,
    },
    # Streaming
    "stream_base_url": {
        "group": "network",
        "label": "Song Server",
        "description": "Base URL songs are streamed and downloaded from.",
        "control": "text",
        "placeholder": "http://localhost:8080",
    },
    "http_timeout_seconds": {
        "group": "network",
        "label": "Network Timeout",
        "description": "Seconds to wait for the song server before giving up.",
        "control": "slider",
        "min": 5,
        "max": 120,
        "step": 5,
        "display_format": "seconds",
    },
    # Playback
    "audio_sink": {
        "group": "playback",
        "label": "Audio Output",
        "description": "GStreamer sink element used for audio output.",
        "control": "text",
    },
    "up_next_display_limit": {
        "group": "playback",
        "label": "Up Next Length",
        "description": "Maximum number of upcoming songs shown in the queue.",
        "control": "slider",
        "min": 5,
        "max": 100,
        "step": 5,
    },
}

# Never download unless free space covers at least this multiple of the file size
MIN_FREE_SPACE_MARGIN = 1.5


class ConfigManager:
    """Manages configuration stored in database."""

    @staticmethod
    def _get_platform_defaults():
        """Get platform-specific default values."""
        if sys.platform == "linux":
            return {"audio_sink": "alsasink"}
        return {"audio_sink": "autoaudiosink"}

    DEFAULTS = {
        "cache_directory": None,  # Will default to ~/.tunebox/songs
        "cache_retention_days": "7",
        "cache_cleanup_interval_seconds": "3600",
        "free_space_margin": str(MIN_FREE_SPACE_MARGIN),
        "max_concurrent_downloads": "2",
        "download_chunk_bytes": "65536",
        "stream_base_url": "http://localhost:8080",
        "http_timeout_seconds": "30",
        "status_check_attempts": "3",
        "status_check_delay_seconds": "0.5",
        "near_end_threshold_seconds": "0.5",
        "near_end_poll_interval_seconds": "1.0",
        "audio_sink": None,  # Overridden by platform defaults
        "up_next_display_limit": "25",
    }

    def __init__(self, database: Database):
        """
        Initialize ConfigManager.

        Args:
            database: Database instance
        """
        self.database = database
        self.repository = ConfigRepository(database)
        self.logger = logging.getLogger(__name__)
        self._merged_defaults = {**self.DEFAULTS, **self._get_platform_defaults()}
        self.repository.initialize_defaults(self._merged_defaults)

    def get(self, key: str, default: Any = None) -> Optional[str]:
        """
        Get a configuration value.

        Args:
            key: Configuration key
            default: Default value if not found (uses merged defaults if None)

        Returns:
            Configuration value as string, or None if not found
        """
        if default is None:
            default = self._merged_defaults.get(key)

        entry = self.repository.get(key)
        if entry:
            return entry.value if entry.value else default
        return default

    def get_int(self, key: str, default: Optional[int] = None) -> Optional[int]:
        """Get configuration value as integer."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except ValueError:
            self.logger.warning("Invalid integer value for %s: %s", key, value)
            return default

    def get_float(self, key: str, default: Optional[float] = None) -> Optional[float]:
        """Get configuration value as float."""
        value = self.get(key)
        if value is None or value == "":
            return default
        try:
            return float(value)
        except ValueError:
            self.logger.warning("Invalid float value for %s: %s", key, value)
            return default

    def get_bool(self, key: str, default: Optional[bool] = None) -> Optional[bool]:
        """Get configuration value as boolean."""
        value = self.get(key)
        if value is None or value == "":
            return default
        return value.lower() in ("true", "1", "yes", "on")

    def set(self, key: str, value: Any) -> bool:
        """
        Set a configuration value.

        Args:
            key: Configuration key
            value: Value to set (will be converted to string)

        Returns:
            True if successful
        """
        return self.repository.set(key, str(value))

    def get_cache_directory(self) -> Path:
        """Resolve the cache directory (expanding ~), without creating it."""
        cache_dir = self.get("cache_directory")
        if not cache_dir:
            return Path.home() / ".tunebox" / "songs"
        return Path(cache_dir).expanduser()

    def get_free_space_margin(self) -> float:
        """Free-space safety margin, clamped to the minimum of 1.5x."""
        margin = self.get_float("free_space_margin", MIN_FREE_SPACE_MARGIN)
        if margin is None or margin < MIN_FREE_SPACE_MARGIN:
            self.logger.warning(
                "free_space_margin %s below minimum, using %.1f", margin, MIN_FREE_SPACE_MARGIN
            )
            return MIN_FREE_SPACE_MARGIN
        return margin

    def get_all(self) -> dict:
        """
        Get all configuration values.

        Returns:
            Dictionary of all configuration key-value pairs
        """
        entries = self.repository.get_all()
        config = {entry.key: entry.value for entry in entries}

        result = self._merged_defaults.copy()
        result.update(config)
        return result

    def get_config_schema(self) -> Dict[str, dict]:
        """Get the configuration schema (a copy, safe to mutate)."""
        return {key: dict(key_def) for key, key_def in CONFIG_SCHEMA.items()}

    def get_config_groups(self) -> Dict[str, dict]:
        """Get the configuration group definitions."""
        return CONFIG_GROUPS.copy()

    def get_full_config(self) -> dict:
        """
        Get complete configuration data for the UI.

        Returns:
            Dictionary with 'values', 'schema', and 'groups' keys.
        """
        return {
            "values": self.get_all(),
            "schema": self.get_config_schema(),
            "groups": self.get_config_groups(),
        }
