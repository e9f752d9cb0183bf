"""
SQLite Store - local durable fallback for Supabase.

Table:
    bot_kv:
        - key: TEXT (primary key)
        - value: TEXT (JSON)
        - expires_at: TEXT (ISO timestamp, NULL = never)
"""

import json
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Optional

from mentionbot.storage.base import KeyValueStore, expiry_from, is_expired

logger = logging.getLogger(__name__)

DEFAULT_DB_PATH = Path("data/mentionbot.db")


class SQLiteStore(KeyValueStore):
    """Key-value store backed by a local SQLite file."""

    name = "sqlite"

    def __init__(self, db_path: Path = DEFAULT_DB_PATH, table: str = "bot_kv"):
        """Open (or create) the database file and its table."""
        self.db_path = Path(db_path)
        self.table = table
        self.conn: Optional[sqlite3.Connection] = None

        self._connect()
        self._create_tables()
        logger.info(f"SQLite store initialized: {self.db_path}")

    def _connect(self) -> None:
        """Establish database connection."""
        if str(self.db_path) != ":memory:":
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.conn = sqlite3.connect(str(self.db_path), check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
        except sqlite3.Error as e:
            logger.error(f"Failed to connect to SQLite: {e}")
            raise

    def _create_tables(self) -> None:
        self.conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL,
                expires_at TEXT
            )
        """)
        self.conn.commit()

    async def get(self, key: str) -> Optional[Any]:
        row = self.conn.execute(
            f"SELECT value, expires_at FROM {self.table} WHERE key = ?", (key,)
        ).fetchone()
        if row is None:
            return None
        expires_at = datetime.fromisoformat(row["expires_at"]) if row["expires_at"] else None
        if is_expired(expires_at):
            await self.delete(key)
            return None
        return json.loads(row["value"])

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        expires_at = expiry_from(ttl)
        self.conn.execute(
            f"INSERT OR REPLACE INTO {self.table} (key, value, expires_at) VALUES (?, ?, ?)",
            (key, json.dumps(value), expires_at.isoformat() if expires_at else None),
        )
        self.conn.commit()

    async def delete(self, key: str) -> None:
        self.conn.execute(f"DELETE FROM {self.table} WHERE key = ?", (key,))
        self.conn.commit()

    async def health_check(self) -> bool:
        try:
            self.conn.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"SQLite health check failed: {e}")
            return False

    def close(self) -> None:
        if self.conn is not None:
            self.conn.close()
            self.conn = None
