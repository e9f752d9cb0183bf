"""
Pytest fixtures and configuration.

This module provides shared fixtures for all tests:
- Mock settings for testing without real credentials
- X API v2 payload builders (mentions, includes, users)
- Fake sleep / clock so pacing and backoff never wait for real
- Time control with freezegun
- Fakes for the platform client and answer engines

Usage:
    def test_something(mock_settings, mention_payload):
        # fixtures are automatically injected
        pass
"""

from datetime import datetime, timedelta
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from freezegun import freeze_time

from mentionbot.models import AnswerEngineResponse, Mention
from mentionbot.mention_fetcher import normalize_mentions


# =============================================================================
# Pytest Configuration
# =============================================================================

def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers",
        "real: mark test as a real functionality test (not mock-based)"
    )
    config.addinivalue_line(
        "markers",
        "integration: mark test as integration test requiring multiple components"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow (>1s execution time)"
    )


# =============================================================================
# Settings Fixtures
# =============================================================================

@pytest.fixture
def mock_settings():
    """
    Provide mock settings for testing.

    Returns a MagicMock with all required settings attributes.
    """
    settings = MagicMock()

    # X API settings
    settings.twitter_bearer_token = "test-bearer"
    settings.twitter_api_key = "test-key"
    settings.twitter_api_secret = "test-secret"
    settings.twitter_access_token = "test-access"
    settings.twitter_access_secret = "test-access-secret"
    settings.twitter_bot_username = "answerbot"
    settings.twitter_bot_user_id = "999"
    settings.twitter_api_plan = "basic"

    # Answer engine settings
    settings.answer_engine = "openai"
    settings.ai_api_key = "test-api-key"
    settings.ai_base_url = "https://api.test.com/v1"
    settings.ai_model = "test-model"
    settings.ai_timeout = 5.0
    settings.ai_max_tokens = 500
    settings.ai_temperature = 0.7
    settings.perplexity_api_key = "test-pplx-key"
    settings.perplexity_base_url = "https://pplx.test.com"
    settings.perplexity_model = "sonar"

    # Persistence settings
    settings.supabase_url = ""
    settings.supabase_key = ""
    settings.state_table = "bot_kv"
    settings.sqlite_path = ""
    settings.state_namespace = "test"
    settings.mention_cache_ttl_hours = 24

    # Reply settings
    settings.max_mentions_per_batch = 10
    settings.max_tweet_length = 280
    settings.enable_thread_responses = True
    settings.max_thread_length = 5
    settings.thread_part_delay_seconds = 0.0
    settings.dry_run = False
    settings.debug = False
    settings.continuous_interval_minutes = 5.0

    # Chaos settings
    settings.chaos_enabled = False
    settings.chaos_seed = 42
    settings.chaos_signature = ""
    settings.chaos_truncate_at_sentence = True

    # Rate limiter settings
    settings.max_posts_per_hour = 15
    settings.max_posts_per_day = 50
    settings.rate_limit_warning_threshold = 0.8
    settings.api_max_attempts = 3
    settings.retry_base_delay = 0.0
    settings.retry_max_delay = 60.0

    # Moderation / enrichment settings
    settings.moderation_enabled = True
    settings.moderation_blocked_authors = []
    settings.moderation_max_links = 3
    settings.moderation_max_hashtags = 5
    settings.feature_user_profile_context = True
    settings.feature_quote_tweet_context = True
    settings.feature_link_expansion = False
    settings.feature_conversation_context = False
    settings.max_conversation_turns = 5
    settings.link_fetch_timeout = 1.0
    settings.max_links_per_mention = 2

    settings.log_level = "INFO"
    return settings


# =============================================================================
# Payload Fixtures
# =============================================================================

def make_user(user_id: str, username: str, **extra) -> dict:
    user = {
        "id": user_id,
        "username": username,
        "name": username.title(),
        "description": f"bio of {username}",
        "verified": False,
        "public_metrics": {"followers_count": 10},
    }
    user.update(extra)
    return user


def make_tweet(tweet_id: str, text: str, author_id: str = "100", **extra) -> dict:
    tweet = {
        "id": tweet_id,
        "text": text,
        "author_id": author_id,
        "conversation_id": tweet_id,
        "created_at": "2025-11-26T14:00:00.000Z",
    }
    tweet.update(extra)
    return tweet


def make_payload(
    tweets: list[dict],
    users: Optional[list[dict]] = None,
    included_tweets: Optional[list[dict]] = None,
) -> dict:
    """Build an X API v2 response body; ``tweets`` newest first."""
    payload = {"data": tweets, "meta": {"result_count": len(tweets)}}
    if tweets:
        payload["meta"]["newest_id"] = tweets[0]["id"]
        payload["meta"]["oldest_id"] = tweets[-1]["id"]
    includes = {}
    if users:
        includes["users"] = users
    if included_tweets:
        includes["tweets"] = included_tweets
    if includes:
        payload["includes"] = includes
    return payload


@pytest.fixture
def payload_factory():
    """Provide the payload builders as one namespace."""
    class Factory:
        user = staticmethod(make_user)
        tweet = staticmethod(make_tweet)
        payload = staticmethod(make_payload)
    return Factory


@pytest.fixture
def mention_payload():
    """Three mentions (newest first) with a quoted and a replied-to tweet resolved."""
    return make_payload(
        tweets=[
            make_tweet("1003", "@answerbot what is a bitcoin halving?", "100"),
            make_tweet(
                "1002",
                "@answerbot is this true?",
                "101",
                referenced_tweets=[{"type": "quoted", "id": "500"}],
            ),
            make_tweet(
                "1001",
                "@alice @answerbot explain this",
                "102",
                referenced_tweets=[{"type": "replied_to", "id": "501"}],
                entities={"mentions": [{"username": "alice"}, {"username": "answerbot"}]},
            ),
        ],
        users=[
            make_user("100", "satoshi_fan"),
            make_user("101", "curious"),
            make_user("102", "learner"),
            make_user("103", "alice"),
        ],
        included_tweets=[
            make_tweet("500", "ETH will flip BTC this year", "103"),
            make_tweet("501", "Rates went up again", "103"),
        ],
    )


@pytest.fixture
def sample_mention(mention_payload) -> Mention:
    """Oldest mention of ``mention_payload`` (a reply in a conversation)."""
    return normalize_mentions(mention_payload)[-1]


# =============================================================================
# Time Fixtures
# =============================================================================

@pytest.fixture
def frozen_time():
    """Freeze time at a specific datetime for testing."""
    with freeze_time("2025-11-26 14:30:00"):
        yield datetime(2025, 11, 26, 14, 30, 0)


@pytest.fixture
def time_controller():
    """
    Provide time control for tests.

    Returns a controller that can freeze and advance time.
    """
    class TimeController:
        def __init__(self):
            self.frozen_datetime = None
            self.freezer = None

        def freeze(self, dt: datetime):
            """Freeze time at specific datetime."""
            if self.freezer:
                self.freezer.stop()
            self.frozen_datetime = dt
            self.freezer = freeze_time(dt)
            self.freezer.start()
            return dt

        def advance(self, **kwargs):
            """Advance frozen time by specified delta."""
            if not self.frozen_datetime:
                raise RuntimeError("Time not frozen")
            self.frozen_datetime += timedelta(**kwargs)
            self.freezer.stop()
            self.freezer = freeze_time(self.frozen_datetime)
            self.freezer.start()
            return self.frozen_datetime

        def stop(self):
            """Unfreeze time."""
            if self.freezer:
                self.freezer.stop()
                self.freezer = None
                self.frozen_datetime = None

    controller = TimeController()
    yield controller
    controller.stop()


@pytest.fixture
def fake_sleep():
    """
    Provide an awaitable sleep that records delays instead of waiting.

    ``fake_sleep.delays`` lists every requested delay in order.
    """
    class FakeSleep:
        def __init__(self):
            self.delays: list[float] = []

        async def __call__(self, seconds: float) -> None:
            self.delays.append(seconds)

    return FakeSleep()


@pytest.fixture
def fake_clock():
    """
    Provide a monotonic clock driven by a FakeSleep.

    ``clock.sleep`` advances ``clock.now`` by the requested delay.
    """
    class FakeClock:
        def __init__(self):
            self.now = 1000.0
            self.delays: list[float] = []

        def __call__(self) -> float:
            return self.now

        async def sleep(self, seconds: float) -> None:
            self.delays.append(seconds)
            self.now += seconds

    return FakeClock()


# =============================================================================
# Client / Engine Fakes
# =============================================================================

@pytest.fixture
def mock_twitter_client():
    """Provide a mock TwitterClient returning sequential tweet IDs."""
    client = AsyncMock()
    counter = iter(range(2000, 3000))
    client.create_tweet.side_effect = lambda text, in_reply_to_tweet_id=None: str(next(counter))
    client.get_mentions.return_value = {"data": [], "meta": {"result_count": 0}}
    return client


@pytest.fixture
def static_engine():
    """Provide an answer engine that always returns the same short answer."""
    engine = AsyncMock()
    engine.name = "static"
    engine.generate.return_value = AnswerEngineResponse(text="Halving cuts the block reward in half.")
    return engine
