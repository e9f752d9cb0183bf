"""
Bot state persistence on top of a KeyValueStore.

Keys (``<ns>`` = settings.state_namespace):
    <ns>:state             checkpoint + stats, no expiry
    <ns>:answered:<id>     dedup marker for a handled mention (TTL)
    <ns>:mention:<id>      cached mention record (TTL)

If the configured store fails, the state switches to a process-local
MemoryStore for the rest of the run: persistence degrades, the bot keeps
working. The fallback is seeded with the last checkpoint and the dedup
markers seen by this process, so the checkpoint never moves backwards and
mentions answered during the run are not answered again. If the store fails
before any checkpoint was read or written, loading the checkpoint raises
StateUnavailableError instead of starting over from nothing.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Optional

from mentionbot.models import BotCheckpoint, Mention
from mentionbot.storage.base import KeyValueStore, MemoryStore

logger = logging.getLogger(__name__)


class StateUnavailableError(RuntimeError):
    """Raised when the checkpoint was lost with the store that held it."""


class BotStateStore:
    """Checkpoint, dedup cache and mention cache of one bot identity."""

    def __init__(
        self,
        store: KeyValueStore,
        namespace: str = "mentionbot",
        mention_ttl: timedelta = timedelta(hours=24),
    ):
        self.store = store
        self.namespace = namespace
        self.mention_ttl = mention_ttl
        self.degraded = isinstance(store, MemoryStore)

        # Last checkpoint read from or written to the store
        self._checkpoint: Optional[dict] = None
        self._checkpoint_known = False
        self._checkpoint_lost = False
        # Dedup markers written by this process: id -> (outcome, marked at)
        self._answered: dict[str, tuple[str, datetime]] = {}

    def _key(self, *parts: str) -> str:
        return ":".join((self.namespace,) + parts)

    @property
    def _state_key(self) -> str:
        return self._key("state")

    def _remember_checkpoint(self, data: Optional[dict]) -> None:
        self._checkpoint = data
        self._checkpoint_known = True
        self._checkpoint_lost = False

    async def _degrade(self, operation: str, error: Exception) -> None:
        logger.error(
            f"{self.store.name} store failed during {operation}: {error}. "
            f"Falling back to in-memory state"
        )
        self.store = MemoryStore()
        self.degraded = True

        if self._checkpoint_known:
            if self._checkpoint is not None:
                await self.store.set(self._state_key, self._checkpoint)
        else:
            self._checkpoint_lost = True
            logger.error("No checkpoint known for this run; it cannot be recovered in memory")

        now = datetime.now()
        for mention_id, (outcome, marked_at) in list(self._answered.items()):
            remaining = marked_at + self.mention_ttl - now
            if remaining <= timedelta(0):
                del self._answered[mention_id]
                continue
            await self.store.set(self._key("answered", mention_id), {"outcome": outcome}, remaining)
        logger.warning(
            f"In-memory state seeded with checkpoint "
            f"{(self._checkpoint or {}).get('last_mention_id')} and "
            f"{len(self._answered)} answered mention(s)"
        )

    async def _get(self, key: str) -> Optional[Any]:
        try:
            value = await self.store.get(key)
        except Exception as e:
            await self._degrade(f"get {key}", e)
            return await self.store.get(key)
        if key == self._state_key and not self._checkpoint_lost:
            self._remember_checkpoint(value)
        return value

    async def _set(self, key: str, value: Any, ttl: Optional[timedelta] = None) -> None:
        try:
            await self.store.set(key, value, ttl)
        except Exception as e:
            await self._degrade(f"set {key}", e)
            await self.store.set(key, value, ttl)
        if key == self._state_key:
            self._remember_checkpoint(value)

    # =========================================================================
    # Checkpoint
    # =========================================================================

    async def load_checkpoint(self) -> BotCheckpoint:
        """
        Load the checkpoint and stats.

        Raises:
            StateUnavailableError: If the store failed before the checkpoint
                was ever read, so the in-memory fallback has no copy of it.
        """
        data = await self._get(self._state_key)
        if self._checkpoint_lost:
            raise StateUnavailableError(
                f"Checkpoint lost: {self.namespace} state store failed before it was loaded"
            )
        checkpoint = BotCheckpoint.from_dict(data)
        logger.debug(f"Loaded checkpoint: {checkpoint.last_mention_id}")
        return checkpoint

    async def save_checkpoint(self, checkpoint: BotCheckpoint) -> None:
        """Overwrite the stored checkpoint and stats in a single write."""
        await self._set(self._state_key, checkpoint.to_dict())
        logger.debug(f"Saved checkpoint: {checkpoint.last_mention_id}")

    # =========================================================================
    # Dedup cache
    # =========================================================================

    async def is_answered(self, mention_id: str) -> bool:
        return await self._get(self._key("answered", mention_id)) is not None

    async def mark_answered(self, mention_id: str, outcome: str) -> None:
        """Remember that a mention was handled (replied, rejected or failed)."""
        self._answered[mention_id] = (outcome, datetime.now())
        await self._set(self._key("answered", mention_id), {"outcome": outcome}, self.mention_ttl)

    async def cache_mention(self, mention: Mention) -> None:
        await self._set(self._key("mention", mention.id), mention.to_dict(), self.mention_ttl)

    async def get_cached_mention(self, mention_id: str) -> Optional[Mention]:
        data = await self._get(self._key("mention", mention_id))
        return Mention.from_dict(data) if data else None
