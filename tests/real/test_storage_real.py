"""
Real Functionality Tests - State persistence.

Tests actual persistence behavior:
- SQLite store round trips, TTL expiry and persistence across reopen
- BotStateStore checkpoint, dedup cache and mention cache
- Degradation to in-memory state when the store breaks
- Store selection order

Mocks: Time (using freezegun), failing store
Real: SQLite (tmp_path), MemoryStore, BotStateStore
"""

from datetime import datetime, timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from freezegun import freeze_time

from mentionbot.models import BotCheckpoint, BotStats
from mentionbot.storage import (
    BotStateStore,
    KeyValueStore,
    MemoryStore,
    SQLiteStore,
    StateUnavailableError,
    SupabaseStore,
    create_store,
)


class FlakyStore(KeyValueStore):
    """Working store whose reads start failing once ``broken`` is set."""

    name = "flaky"

    def __init__(self):
        self.inner = MemoryStore()
        self.broken = False

    async def get(self, key):
        if self.broken:
            raise OSError("connection reset by peer")
        return await self.inner.get(key)

    async def set(self, key, value, ttl=None):
        await self.inner.set(key, value, ttl)

    async def delete(self, key):
        await self.inner.delete(key)

    async def health_check(self):
        return not self.broken


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteStore(tmp_path / "state" / "bot.db")
    yield store
    store.close()


@pytest.mark.real
@pytest.mark.asyncio
class TestKeyValueStoresReal:
    """Real functionality tests for the stores."""

    async def test_sqlite_round_trip(self, sqlite_store):
        await sqlite_store.set("k", {"a": [1, 2], "b": None})
        assert await sqlite_store.get("k") == {"a": [1, 2], "b": None}

        await sqlite_store.delete("k")
        assert await sqlite_store.get("k") is None
        assert await sqlite_store.health_check() is True

    async def test_sqlite_survives_reopen(self, tmp_path):
        path = tmp_path / "bot.db"
        first = SQLiteStore(path)
        await first.set("checkpoint", {"last_mention_id": "42"})
        first.close()

        second = SQLiteStore(path)
        assert await second.get("checkpoint") == {"last_mention_id": "42"}
        second.close()

    @pytest.mark.parametrize("factory", ["memory", "sqlite"])
    async def test_ttl_expiry(self, factory, tmp_path):
        store = MemoryStore() if factory == "memory" else SQLiteStore(tmp_path / "ttl.db")

        with freeze_time("2025-11-26 10:00:00") as frozen:
            await store.set("answered:1", {"outcome": "replied"}, ttl=timedelta(hours=24))
            frozen.tick(timedelta(hours=23, minutes=59))
            assert await store.get("answered:1") is not None
            frozen.tick(timedelta(minutes=1))
            assert await store.get("answered:1") is None


@pytest.mark.real
@pytest.mark.asyncio
class TestBotStateStoreReal:
    """Checkpoint and cache semantics on top of a store."""

    async def test_fresh_checkpoint(self):
        state = BotStateStore(MemoryStore())
        checkpoint = await state.load_checkpoint()
        assert checkpoint.last_mention_id is None
        assert state.degraded is True

    async def test_checkpoint_round_trip(self, sqlite_store):
        state = BotStateStore(sqlite_store, namespace="bot")
        checkpoint = BotCheckpoint(
            last_mention_id="1003",
            stats=BotStats(mentions_processed=3, responses_generated=2, errors=1,
                           last_run=datetime(2025, 11, 26, 14, 30)),
        )
        await state.save_checkpoint(checkpoint)

        reloaded = await BotStateStore(sqlite_store, namespace="bot").load_checkpoint()
        assert reloaded == checkpoint
        assert state.degraded is False

    async def test_namespaces_are_isolated(self, sqlite_store):
        await BotStateStore(sqlite_store, namespace="a").save_checkpoint(
            BotCheckpoint(last_mention_id="1")
        )
        other = await BotStateStore(sqlite_store, namespace="b").load_checkpoint()
        assert other.last_mention_id is None

    async def test_dedup_and_mention_cache(self, sample_mention):
        state = BotStateStore(MemoryStore(), mention_ttl=timedelta(hours=1))

        assert await state.is_answered(sample_mention.id) is False
        sample_mention.processed = True
        await state.mark_answered(sample_mention.id, "replied")
        await state.cache_mention(sample_mention)

        assert await state.is_answered(sample_mention.id) is True
        cached = await state.get_cached_mention(sample_mention.id)
        assert cached.processed is True
        assert cached.text == sample_mention.text

    async def test_degrades_to_memory_on_store_failure(self):
        broken = AsyncMock()
        broken.name = "broken"
        broken.get.side_effect = OSError("disk gone")
        broken.set.side_effect = OSError("disk gone")
        state = BotStateStore(broken)

        await state.save_checkpoint(BotCheckpoint(last_mention_id="7"))
        checkpoint = await state.load_checkpoint()

        assert state.degraded is True
        assert isinstance(state.store, MemoryStore)
        assert checkpoint.last_mention_id == "7"

    async def test_read_failure_keeps_checkpoint_and_dedup(self):
        """A read failure after a save must not rewind the checkpoint."""
        store = FlakyStore()
        state = BotStateStore(store)
        await state.save_checkpoint(BotCheckpoint(last_mention_id="500"))
        await state.mark_answered("499", "replied")

        store.broken = True
        checkpoint = await state.load_checkpoint()

        assert state.degraded is True
        assert isinstance(state.store, MemoryStore)
        assert checkpoint.last_mention_id == "500"
        assert await state.is_answered("499") is True

    async def test_read_failure_after_load_keeps_checkpoint(self):
        store = FlakyStore()
        await store.set("mentionbot:state", BotCheckpoint(last_mention_id="800").to_dict())
        state = BotStateStore(store)
        assert (await state.load_checkpoint()).last_mention_id == "800"

        store.broken = True
        assert await state.is_answered("1") is False
        assert (await state.load_checkpoint()).last_mention_id == "800"

    async def test_checkpoint_never_read_is_unavailable(self):
        store = FlakyStore()
        store.broken = True
        state = BotStateStore(store)

        with pytest.raises(StateUnavailableError):
            await state.load_checkpoint()
        with pytest.raises(StateUnavailableError):
            await state.load_checkpoint()

    async def test_seeded_dedup_markers_keep_ttl(self):
        store = FlakyStore()
        state = BotStateStore(store, mention_ttl=timedelta(hours=1))

        with freeze_time("2025-11-26 10:00:00") as frozen:
            await state.save_checkpoint(BotCheckpoint(last_mention_id="10"))
            await state.mark_answered("9", "replied")
            frozen.tick(timedelta(minutes=30))
            store.broken = True
            assert await state.is_answered("9") is True

            frozen.tick(timedelta(minutes=30))
            assert await state.is_answered("9") is False


@pytest.mark.real
@pytest.mark.asyncio
class TestStoreSelection:
    """create_store fallbacks."""

    async def test_sqlite_when_no_supabase(self, mock_settings, tmp_path):
        mock_settings.sqlite_path = str(tmp_path / "bot.db")
        store = await create_store(mock_settings)
        assert store.name == "sqlite"
        store.close()

    async def test_memory_when_nothing_configured(self, mock_settings):
        store = await create_store(mock_settings)
        assert store.name == "memory"

    async def test_supabase_store_with_client(self):
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.limit.return_value
        query.execute.return_value = MagicMock(data=[{"value": {"x": 1}, "expires_at": None}])
        store = SupabaseStore("https://test.supabase.co", "key", client=client)

        assert await store.get("k") == {"x": 1}
        client.table.assert_called_with("bot_kv")

        await store.set("k", {"x": 2})
        upserted = client.table.return_value.upsert.call_args.args[0]
        assert upserted == {"key": "k", "value": {"x": 2}, "expires_at": None}
