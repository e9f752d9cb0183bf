"""
Persistence for the bot's checkpoint and caches.

Store selection (first healthy wins):
    1. Supabase  (SUPABASE_URL + SUPABASE_KEY)
    2. SQLite    (SQLITE_PATH)
    3. Memory    (process-local, lost on restart)
"""

import logging
from pathlib import Path

from mentionbot.storage.base import KeyValueStore, MemoryStore
from mentionbot.storage.sqlite_store import SQLiteStore
from mentionbot.storage.state import BotStateStore, StateUnavailableError
from mentionbot.storage.supabase_store import SupabaseStore

logger = logging.getLogger(__name__)

__all__ = [
    "KeyValueStore",
    "MemoryStore",
    "SQLiteStore",
    "SupabaseStore",
    "BotStateStore",
    "StateUnavailableError",
    "create_store",
]


async def create_store(settings) -> KeyValueStore:
    """Return the first available store for the configured backends."""
    if settings.supabase_url and settings.supabase_key:
        try:
            store = SupabaseStore(
                settings.supabase_url, settings.supabase_key, table=settings.state_table
            )
            if await store.health_check():
                return store
            logger.warning("Supabase unavailable, falling back to SQLite")
        except Exception as e:
            logger.warning(f"Supabase connection failed ({e}), falling back to SQLite")

    if settings.sqlite_path:
        try:
            return SQLiteStore(Path(settings.sqlite_path), table=settings.state_table)
        except Exception as e:
            logger.warning(f"SQLite unavailable ({e}), falling back to memory")

    logger.warning("Using in-memory state: checkpoint will not survive a restart")
    return MemoryStore()
