"""
Key-value store interface and the process-local implementation.

Values are JSON-serializable objects. A TTL makes an entry invisible once it
expires; expired entries are dropped lazily on access.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Optional

logger = logging.getLogger(__name__)


class KeyValueStore(ABC):
    """Minimal persistence capability used by the bot."""

    name = "store"

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """Return the stored value, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        """Store a value, optionally expiring after ``ttl``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove a key (no error if it does not exist)."""

    @abstractmethod
    async def health_check(self) -> bool:
        """Return True if the store is usable."""


def expiry_from(ttl: Optional[timedelta]) -> Optional[datetime]:
    return datetime.now() + ttl if ttl is not None else None


def is_expired(expires_at: Optional[datetime]) -> bool:
    return expires_at is not None and expires_at <= datetime.now()


class MemoryStore(KeyValueStore):
    """In-process dictionary store; contents are lost on restart."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, tuple[Any, Optional[datetime]]] = {}

    async def get(self, key: str) -> Optional[Any]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if is_expired(expires_at):
            del self._data[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        self._data[key] = (value, expiry_from(ttl))

    async def delete(self, key: str) -> None:
        self._data.pop(key, None)

    async def health_check(self) -> bool:
        return True

    def __len__(self) -> int:
        return len(self._data)
