"""
Supabase Store - durable key-value persistence.

SQL Setup (run in Supabase SQL Editor):
    CREATE TABLE bot_kv (
        key TEXT PRIMARY KEY,
        value JSONB NOT NULL,
        expires_at TIMESTAMP
    );
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from supabase import Client, create_client

from mentionbot.storage.base import KeyValueStore, expiry_from, is_expired

logger = logging.getLogger(__name__)


class SupabaseStore(KeyValueStore):
    """Key-value store backed by a Supabase table."""

    name = "supabase"

    def __init__(self, url: str, key: str, table: str = "bot_kv", client: Optional[Client] = None):
        """
        Initialize the store.

        Args:
            url: Supabase project URL.
            key: Supabase service key.
            table: Table holding key/value/expires_at rows.
            client: Pre-built client (tests).
        """
        self.table = table
        if client is None:
            logger.info(f"Connecting to Supabase at: {url.rstrip('/')}")
            client = create_client(url.rstrip("/"), key)
        self.client = client
        logger.info("Supabase store initialized")

    async def get(self, key: str) -> Optional[Any]:
        result = (
            self.client.table(self.table)
            .select("value, expires_at")
            .eq("key", key)
            .limit(1)
            .execute()
        )
        if not result.data:
            return None
        row = result.data[0]
        expires_at = row.get("expires_at")
        if expires_at and is_expired(datetime.fromisoformat(expires_at)):
            await self.delete(key)
            return None
        return row["value"]

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        expires_at = expiry_from(ttl)
        self.client.table(self.table).upsert(
            {
                "key": key,
                "value": value,
                "expires_at": expires_at.isoformat() if expires_at else None,
            }
        ).execute()

    async def delete(self, key: str) -> None:
        self.client.table(self.table).delete().eq("key", key).execute()

    async def health_check(self) -> bool:
        try:
            self.client.table(self.table).select("key").limit(1).execute()
            logger.debug("Supabase health check: OK")
            return True
        except Exception as e:
            logger.error(f"Supabase health check failed: {e}")
            return False
