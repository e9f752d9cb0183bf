"""
Tests for MentionFetcher.

Mocks: TwitterClient (AsyncMock)
Real: ledger, retrying caller (fake sleep), normalization
"""

from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from config.settings import ConfigurationError
from mentionbot.mention_fetcher import MentionFetcher
from mentionbot.models import Mention
from mentionbot.rate_limiter import API_CALL, RateLimitExceeded, RateLimitLedger, RateWindow
from mentionbot.retry import RetryExhaustedError, RetryingCaller
from mentionbot.twitter_client import PlatformApiError


@pytest.fixture
def ledger():
    ledger = RateLimitLedger()
    ledger.configure(API_CALL, [RateWindow("15min", timedelta(minutes=15), 3)])
    return ledger


@pytest.fixture
def caller(fake_sleep):
    return RetryingCaller(interval=0, max_attempts=3, base_delay=1.0, sleep=fake_sleep)


@pytest.mark.asyncio
class TestMentionFetcher:

    async def test_fetch_since_checkpoint(self, ledger, caller, mention_payload):
        client = AsyncMock()
        client.get_mentions.return_value = mention_payload
        fetcher = MentionFetcher(client, ledger, caller, "999")

        mentions = await fetcher.fetch_since("1000", max_count=10)

        assert [m.id for m in mentions] == ["1003", "1002", "1001"]
        client.get_mentions.assert_awaited_once_with("999", since_id="1000", max_results=10)
        assert ledger.stats(API_CALL)["windows"]["15min"]["used"] == 1

    async def test_max_count_applied(self, ledger, caller, mention_payload):
        client = AsyncMock()
        client.get_mentions.return_value = mention_payload
        fetcher = MentionFetcher(client, ledger, caller, "999")

        mentions = await fetcher.fetch_since(None, max_count=2)

        assert [m.id for m in mentions] == ["1003", "1002"]

    async def test_missing_bot_id(self, ledger, caller):
        client = AsyncMock()
        fetcher = MentionFetcher(client, ledger, caller, "")

        with pytest.raises(ConfigurationError):
            await fetcher.fetch_since(None)
        client.get_mentions.assert_not_awaited()

    async def test_budget_exhausted_no_request(self, ledger, caller):
        client = AsyncMock()
        fetcher = MentionFetcher(client, ledger, caller, "999")
        for _ in range(3):
            ledger.record(API_CALL)

        with pytest.raises(RateLimitExceeded) as exc_info:
            await fetcher.fetch_since(None)

        assert exc_info.value.resource == API_CALL
        assert exc_info.value.wait_time > 0
        client.get_mentions.assert_not_awaited()

    async def test_every_attempt_recorded(self, ledger, caller, fake_sleep):
        client = AsyncMock()
        client.get_mentions.side_effect = [
            PlatformApiError("unavailable", status_code=503, retryable=True),
            {"data": [], "meta": {"result_count": 0}},
        ]
        fetcher = MentionFetcher(client, ledger, caller, "999")

        assert await fetcher.fetch_since(None) == []
        assert ledger.stats(API_CALL)["windows"]["15min"]["used"] == 2
        assert fake_sleep.delays == [1.0]

    async def test_exhausted_retries(self, ledger, caller):
        client = AsyncMock()
        client.get_mentions.side_effect = PlatformApiError(
            "unavailable", status_code=503, retryable=True
        )
        fetcher = MentionFetcher(client, ledger, caller, "999")

        with pytest.raises(RetryExhaustedError):
            await fetcher.fetch_since(None)
        assert client.get_mentions.await_count == 3

    async def test_fetch_tweet_not_found(self, ledger, caller):
        client = AsyncMock()
        client.get_tweet.return_value = {"errors": [{"detail": "Could not find tweet"}]}
        fetcher = MentionFetcher(client, ledger, caller, "999")

        with pytest.raises(PlatformApiError) as exc_info:
            await fetcher.fetch_tweet("123")
        assert exc_info.value.status_code == 404

    async def test_fetch_tweet(self, ledger, caller, payload_factory):
        client = AsyncMock()
        client.get_tweet.return_value = {
            "data": payload_factory.tweet("123", "@answerbot hi there"),
            "includes": {"users": [payload_factory.user("100", "curious")]},
        }
        fetcher = MentionFetcher(client, ledger, caller, "999")

        mention = await fetcher.fetch_tweet("123")

        assert mention.id == "123"
        assert mention.author_username == "curious"

    async def test_fetch_user(self, ledger, caller, payload_factory):
        client = AsyncMock()
        client.get_user.return_value = {"data": payload_factory.user("100", "curious")}
        fetcher = MentionFetcher(client, ledger, caller, "999")

        author = await fetcher.fetch_user("100")

        assert author.username == "curious"
        assert author.followers_count == 10
        client.get_user.assert_awaited_once_with("100")
        assert ledger.stats(API_CALL)["windows"]["15min"]["used"] == 1

    async def test_fetch_user_not_found(self, ledger, caller):
        client = AsyncMock()
        client.get_user.return_value = {"errors": [{"detail": "Could not find user"}]}
        fetcher = MentionFetcher(client, ledger, caller, "999")

        with pytest.raises(PlatformApiError) as exc_info:
            await fetcher.fetch_user("100")
        assert exc_info.value.status_code == 404


def search_client(payload=None, exhausted=False) -> AsyncMock:
    client = AsyncMock()
    client.search_conversation.return_value = payload or {"data": []}
    client.is_rate_limited = MagicMock(return_value=exhausted)
    client.time_until_reset = MagicMock(return_value=120.0)
    return client


def reply_mention() -> Mention:
    return Mention(id="1010", text="@answerbot is that right?", author_id="102", conversation_id="400")


@pytest.mark.asyncio
class TestConversationFetch:

    async def test_turns_oldest_first_before_mention(self, ledger, caller, payload_factory):
        client = search_client(
            payload_factory.payload(
                tweets=[
                    payload_factory.tweet("1011", "later reply", "103", conversation_id="400"),
                    payload_factory.tweet("1010", "@answerbot is that right?", "102", conversation_id="400"),
                    payload_factory.tweet("405", "third", "101", conversation_id="400"),
                    payload_factory.tweet("402", "second", "100", conversation_id="400"),
                    payload_factory.tweet("400", "first", "101", conversation_id="400"),
                ],
                users=[payload_factory.user("100", "satoshi_fan"), payload_factory.user("101", "curious")],
            )
        )
        fetcher = MentionFetcher(client, ledger, caller, "999")

        turns = await fetcher.fetch_conversation(reply_mention(), max_turns=2)

        assert [(t.author, t.text) for t in turns] == [("satoshi_fan", "second"), ("curious", "third")]
        client.search_conversation.assert_awaited_once_with("400", max_results=10)
        assert ledger.stats(API_CALL)["windows"]["15min"]["used"] == 1

    async def test_unknown_author(self, ledger, caller, payload_factory):
        client = search_client(
            payload_factory.payload([payload_factory.tweet("400", "first", "555", conversation_id="400")])
        )
        fetcher = MentionFetcher(client, ledger, caller, "999")

        turns = await fetcher.fetch_conversation(reply_mention())

        assert turns[0].author == "unknown"

    async def test_conversation_root_needs_no_request(self, ledger, caller):
        client = search_client()
        fetcher = MentionFetcher(client, ledger, caller, "999")
        root = Mention(id="400", text="@answerbot hi", author_id="101", conversation_id="400")

        assert await fetcher.fetch_conversation(root) == []
        client.search_conversation.assert_not_awaited()

    async def test_search_quota_exhausted(self, ledger, caller):
        client = search_client(exhausted=True)
        fetcher = MentionFetcher(client, ledger, caller, "999")

        with pytest.raises(RateLimitExceeded) as exc_info:
            await fetcher.fetch_conversation(reply_mention())

        assert exc_info.value.resource == "search"
        assert exc_info.value.wait_time == 120.0
        client.search_conversation.assert_not_awaited()
        assert ledger.stats(API_CALL)["total_events"] == 0
