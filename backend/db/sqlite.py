"""
SQLite Storage
Persistent key/value store for alerts, alert logs and analysis settings.

Responsibilities:
- Read/write string values by key
- Handle schema

NOT responsible for:
- Serialisation (callers store JSON strings)
- Validation of stored records (done by the owners of each key)
"""

import sqlite3
from pathlib import Path
from typing import List, Optional


class SQLiteStorage:
    """
    SQLite-backed ConfigStore.

    Tables:
        - kv: key -> value with last update time
    """

    def __init__(self, db_path: str = "data/signals.db"):
        self.db_path = db_path
        self._ensure_directory()
        self._init_schema()

    def _ensure_directory(self):
        """Create data directory"""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

    def _init_schema(self):
        """Initialize database schema"""
        with sqlite3.connect(self.db_path) as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS kv (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT DEFAULT CURRENT_TIMESTAMP
                );
            """)

    # =========================================================================
    # ConfigStore
    # =========================================================================

    def get(self, key: str) -> Optional[str]:
        with sqlite3.connect(self.db_path) as conn:
            row = conn.execute("SELECT value FROM kv WHERE key = ?", [key]).fetchone()
        return row[0] if row else None

    def set(self, key: str, value: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute(
                """INSERT INTO kv (key, value, updated_at)
                   VALUES (?, ?, CURRENT_TIMESTAMP)
                   ON CONFLICT(key) DO UPDATE SET
                       value = excluded.value,
                       updated_at = excluded.updated_at""",
                [key, value],
            )

    def delete(self, key: str) -> None:
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("DELETE FROM kv WHERE key = ?", [key])

    # =========================================================================
    # Management
    # =========================================================================

    def keys(self, prefix: str = "") -> List[str]:
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT key FROM kv WHERE substr(key, 1, ?) = ? ORDER BY key",
                [len(prefix), prefix],
            )
            return [row[0] for row in cursor.fetchall()]

    def get_stats(self) -> dict:
        """Get storage statistics"""
        with sqlite3.connect(self.db_path) as conn:
            count = conn.execute("SELECT COUNT(*) FROM kv").fetchone()[0]
        return {"keys": count, "db_path": self.db_path}

    def clear(self, prefix: str = None):
        """Delete every key, or every key under a prefix"""
        with sqlite3.connect(self.db_path) as conn:
            if prefix:
                conn.execute("DELETE FROM kv WHERE substr(key, 1, ?) = ?", [len(prefix), prefix])
            else:
                conn.execute("DELETE FROM kv")


# =============================================================================
# Singleton
# =============================================================================

_storage: Optional[SQLiteStorage] = None


def get_storage(db_path: str = "data/signals.db") -> SQLiteStorage:
    """Get singleton storage instance"""
    global _storage
    if _storage is None:
        _storage = SQLiteStorage(db_path)
    return _storage
