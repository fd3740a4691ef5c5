"""
Database module for tunebox.

Handles SQLite database initialization, schema creation, and the small
repositories built on top of it (configuration and key-value blobs).
"""

import logging
import sqlite3
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional

from .models import ConfigEntry


class Database:
    """Manages SQLite database connection and schema."""

    def __init__(self, db_path: Optional[str] = None):
        """
        Initialize database connection.

        Args:
            db_path: Path to SQLite database file. If None, uses ~/.tunebox/tunebox.db
        """
        self.logger = logging.getLogger(__name__)

        if db_path is None:
            tunebox_dir = Path.home() / ".tunebox"
            tunebox_dir.mkdir(exist_ok=True)
            db_path = str(tunebox_dir / "tunebox.db")

        self.db_path = db_path
        self._ensure_schema()
        self.logger.info("Database initialized at %s", self.db_path)

    def _ensure_schema(self):
        """Ensure database schema exists."""
        conn = self.get_connection()
        try:
            cursor = conn.cursor()

            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS config (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            # Opaque serialized blobs (cache index, etc.)
            cursor.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                )
                """
            )

            conn.commit()
        finally:
            conn.close()
        self.logger.debug("Database schema created/verified")

    def get_connection(self):
        """
        Get a new database connection.

        Each caller gets its own connection and is responsible for closing it.
        """
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def close(self):
        """Close database connection (no-op since connections are per-call)."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()


class ConfigRepository:
    """Reads and writes rows of the config table."""

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    def initialize_defaults(self, defaults: Dict[str, Optional[str]]) -> None:
        """Insert default values for keys that are not yet stored."""
        conn = self.database.get_connection()
        try:
            for key, value in defaults.items():
                if value is None:
                    continue
                conn.execute(
                    "INSERT OR IGNORE INTO config (key, value) VALUES (?, ?)",
                    (key, str(value)),
                )
            conn.commit()
        finally:
            conn.close()

    def get(self, key: str) -> Optional[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            row = conn.execute(
                "SELECT key, value, updated_at FROM config WHERE key = ?", (key,)
            ).fetchone()
        finally:
            conn.close()
        return self._row_to_entry(row) if row else None

    def set(self, key: str, value: str) -> bool:
        conn = self.database.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO config (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()
            return True
        except sqlite3.Error as e:
            self.logger.error("Failed to set config %s: %s", key, e)
            return False
        finally:
            conn.close()

    def get_all(self) -> List[ConfigEntry]:
        conn = self.database.get_connection()
        try:
            rows = conn.execute("SELECT key, value, updated_at FROM config ORDER BY key").fetchall()
        finally:
            conn.close()
        return [self._row_to_entry(row) for row in rows]

    @staticmethod
    def _row_to_entry(row) -> ConfigEntry:
        updated_at = row["updated_at"]
        if isinstance(updated_at, str):
            try:
                updated_at = datetime.fromisoformat(updated_at)
            except ValueError:
                updated_at = None
        return ConfigEntry(key=row["key"], value=row["value"], updated_at=updated_at)


class KeyValueStore:
    """
    Small blob persistence (get/set/remove of serialized values).

    Values are stored as text; callers own the serialization format.
    """

    def __init__(self, database: Database):
        self.database = database
        self.logger = logging.getLogger(__name__)

    def get(self, key: str) -> Optional[str]:
        conn = self.database.get_connection()
        try:
            row = conn.execute("SELECT value FROM kv_store WHERE key = ?", (key,)).fetchone()
        finally:
            conn.close()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        conn = self.database.get_connection()
        try:
            conn.execute(
                """
                INSERT INTO kv_store (key, value, updated_at) VALUES (?, ?, CURRENT_TIMESTAMP)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value,
                                               updated_at = CURRENT_TIMESTAMP
                """,
                (key, value),
            )
            conn.commit()
        finally:
            conn.close()
        self.logger.debug("Stored %s (%d bytes)", key, len(value))

    def remove(self, key: str) -> bool:
        conn = self.database.get_connection()
        try:
            cursor = conn.execute("DELETE FROM kv_store WHERE key = ?", (key,))
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()
