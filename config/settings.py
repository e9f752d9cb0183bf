"""
Centralized configuration for the mention bot.

This module uses Pydantic Settings to load and validate environment variables.
All bot configuration is centralized here to avoid scattered config files.

Every field has a default so the module can always be imported; values that
are required to actually run the bot (platform credentials, bot identity,
engine API keys) are checked by ``MentionBot._validate_config`` at startup
and reported as a ``ConfigurationError``.

Usage:
    from config import settings
    print(settings.twitter_api_plan)

Environment Variables:
    Field names map to upper-case environment variables
    (e.g. ``TWITTER_BEARER_TOKEN``, ``ANSWER_ENGINE``, ``DRY_RUN``).
"""

import logging
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

ApiPlan = Literal["basic", "pro", "enterprise"]


class ConfigurationError(ValueError):
    """Raised when the bot cannot run because of missing or invalid configuration.

    Never retried: the process reports it and exits non-zero.
    """


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # =========================================================================
    # X/Twitter API v2
    # =========================================================================
    twitter_bearer_token: str = ""
    twitter_api_key: str = ""
    twitter_api_secret: str = ""
    twitter_access_token: str = ""
    twitter_access_secret: str = ""
    twitter_bot_username: str = ""
    twitter_bot_user_id: str = ""
    # Plan tier drives the request pacing interval and daily tweet cap
    twitter_api_plan: ApiPlan = "basic"

    # =========================================================================
    # Answer Engine
    # =========================================================================
    # One of: openai, perplexity, hybrid
    answer_engine: str = "hybrid"

    # OpenAI-compatible provider (OpenRouter by default)
    ai_api_key: str = ""
    ai_base_url: str = "https://openrouter.ai/api/v1"
    ai_model: str = "openai/gpt-4o-mini"
    ai_timeout: float = 30.0
    ai_max_tokens: int = 1000
    ai_temperature: float = 0.8

    # Perplexity (web search + citations)
    perplexity_api_key: str = ""
    perplexity_base_url: str = "https://api.perplexity.ai"
    perplexity_model: str = "sonar"

    # =========================================================================
    # Persistence (Supabase -> SQLite -> memory)
    # =========================================================================
    supabase_url: str = ""
    supabase_key: str = ""
    state_table: str = "bot_kv"
    sqlite_path: str = "data/mentionbot.db"
    state_namespace: str = "mentionbot"
    mention_cache_ttl_hours: int = 24

    # =========================================================================
    # Bot Behaviour
    # =========================================================================
    max_mentions_per_batch: int = 10
    max_tweet_length: int = 280
    enable_thread_responses: bool = True
    max_thread_length: int = 5
    thread_part_delay_seconds: float = 2.0
    dry_run: bool = False
    debug: bool = False
    continuous_interval_minutes: float = 5.0

    # =========================================================================
    # Chaos Voice
    # =========================================================================
    chaos_enabled: bool = True
    chaos_seed: Optional[int] = None
    chaos_signature: str = ""
    # False = hard cut at the limit, True = keep whole sentences when possible
    chaos_truncate_at_sentence: bool = True

    # =========================================================================
    # Rate Limiting
    # =========================================================================
    max_posts_per_hour: int = 15
    max_posts_per_day: int = 50
    rate_limit_warning_threshold: float = 0.8  # Warn at 80%

    # =========================================================================
    # Retry
    # =========================================================================
    api_max_attempts: int = 3
    retry_base_delay: float = 1.0  # seconds
    retry_max_delay: float = 60.0  # seconds

    # =========================================================================
    # Moderation
    # =========================================================================
    moderation_enabled: bool = True
    moderation_blocked_authors: list[str] = []
    moderation_max_links: int = 3
    moderation_max_hashtags: int = 5

    # =========================================================================
    # Feature Flags (context enrichment)
    # =========================================================================
    feature_user_profile_context: bool = True
    feature_quote_tweet_context: bool = True
    feature_link_expansion: bool = True
    # Searches the conversation for earlier turns; costs one api call per mention
    feature_conversation_context: bool = False
    max_conversation_turns: int = 5
    link_fetch_timeout: float = 5.0
    max_links_per_mention: int = 2

    # =========================================================================
    # Logging
    # =========================================================================
    log_level: str = "INFO"

    @field_validator("answer_engine", "log_level")
    @classmethod
    def _normalize_name(cls, value: str) -> str:
        return value.strip()

    @field_validator(
        "max_tweet_length",
        "max_thread_length",
        "api_max_attempts",
        "max_posts_per_hour",
        "max_posts_per_day",
    )
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be at least 1")
        return value


# Singleton instance for global settings
settings = Settings()
