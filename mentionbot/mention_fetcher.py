"""
Mention Fetcher - pull new mentions since a checkpoint.

One paced, retried request per fetch:

    ┌─────────────────────────────────────────────────────────────┐
    │  ledger.can_act("api-call")?  no -> RateLimitExceeded        │
    │        │ yes                                                 │
    │  RetryingCaller ─► record("api-call") ─► GET mentions        │
    │        │           (author + referenced tweets expanded)     │
    │  normalize: data + includes -> Mention[] (no extra calls)    │
    └─────────────────────────────────────────────────────────────┘

The batch keeps the platform's reverse-chronological order; the bot decides
the processing order and the next checkpoint.

Enrichment lookups (author profile, earlier conversation turns) go through
the same ledger and caller, so they are paced and counted like any other
request.
"""

import logging
from typing import Optional

from config.settings import ConfigurationError
from mentionbot.models import (
    AuthorProfile,
    ConversationTurn,
    Mention,
    id_sort_key,
    is_newer_id,
)
from mentionbot.rate_limiter import API_CALL, RateLimitExceeded, RateLimitLedger
from mentionbot.retry import RetryingCaller
from mentionbot.twitter_client import PlatformApiError, TwitterClient

logger = logging.getLogger(__name__)


def normalize_mentions(payload: dict) -> list[Mention]:
    """
    Map an X API v2 response into Mentions.

    Quoted and replied-to tweets and author profiles are resolved from
    ``includes`` only; unresolved references stay unset. Duplicate IDs
    are dropped, keeping the first occurrence.
    """
    includes = payload.get("includes") or {}
    users = {str(u["id"]): u for u in includes.get("users", []) if "id" in u}
    tweets = {str(t["id"]): t for t in includes.get("tweets", []) if "id" in t}

    data = payload.get("data") or []
    if isinstance(data, dict):
        data = [data]

    mentions = []
    seen = set()
    for tweet in data:
        tweet_id = str(tweet.get("id", ""))
        if not tweet_id or tweet_id in seen:
            continue
        seen.add(tweet_id)
        mentions.append(Mention.from_api(tweet, users, tweets))
    return mentions


class MentionFetcher:
    """Fetches mentions of the bot account through the shared ledger and caller."""

    def __init__(
        self,
        client: TwitterClient,
        ledger: RateLimitLedger,
        caller: RetryingCaller,
        bot_user_id: Optional[str],
    ):
        self.client = client
        self.ledger = ledger
        self.caller = caller
        self.bot_user_id = bot_user_id

    def _admit(self) -> None:
        if not self.ledger.can_act(API_CALL):
            wait = self.ledger.time_until_next_slot(API_CALL)
            quota = self.ledger.remote_quota(API_CALL)
            raise RateLimitExceeded(API_CALL, wait, quota.reset if quota else None)

    async def _call(self, description: str, request):
        async def attempt():
            # Every attempt is an API call against the quota
            self.ledger.record(API_CALL)
            return await request()

        return await self.caller.call(attempt, description)

    async def fetch_since(
        self, checkpoint_id: Optional[str], max_count: int = 10
    ) -> list[Mention]:
        """
        Fetch mentions newer than ``checkpoint_id``.

        Args:
            checkpoint_id: Last processed mention ID (None for a first run).
            max_count: Maximum mentions to return.

        Returns:
            Mentions in reverse-chronological order (may be empty).

        Raises:
            ConfigurationError: If the bot user ID is not configured.
            RateLimitExceeded: If the api-call ledger has no free slot.
            RetryExhaustedError / PlatformApiError: On remote failure.
        """
        if not self.bot_user_id:
            raise ConfigurationError(
                "Bot user ID is not configured (TWITTER_BOT_USER_ID)"
            )
        self._admit()

        logger.info(
            f"Fetching up to {max_count} mentions since {checkpoint_id or 'the beginning'}"
        )
        payload = await self._call(
            "fetch mentions",
            lambda: self.client.get_mentions(
                self.bot_user_id, since_id=checkpoint_id, max_results=max_count
            ),
        )
        mentions = normalize_mentions(payload)[:max_count]

        meta = payload.get("meta") or {}
        logger.info(
            f"Fetched {len(mentions)} mention(s) (newest: {meta.get('newest_id', 'n/a')})"
        )
        return mentions

    async def fetch_tweet(self, tweet_id: str) -> Mention:
        """
        Fetch a single tweet as a Mention (debug mode for specific tweets).

        Raises:
            RateLimitExceeded: If the api-call ledger has no free slot.
            PlatformApiError: If the tweet does not exist.
        """
        self._admit()
        payload = await self._call(
            f"fetch tweet {tweet_id}",
            lambda: self.client.get_tweet(tweet_id),
        )
        mentions = normalize_mentions(payload)
        if not mentions:
            raise PlatformApiError(
                f"Tweet {tweet_id} not found", status_code=404, endpoint="tweet"
            )
        return mentions[0]

    async def fetch_user(self, user_id: str) -> AuthorProfile:
        """
        Look up an author profile missing from a response's ``includes``.

        Raises:
            RateLimitExceeded: If the api-call ledger has no free slot.
            PlatformApiError: If the user does not exist.
        """
        self._admit()
        payload = await self._call(
            f"fetch user {user_id}",
            lambda: self.client.get_user(user_id),
        )
        data = payload.get("data")
        if not data:
            raise PlatformApiError(
                f"User {user_id} not found", status_code=404, endpoint="user"
            )
        return AuthorProfile.from_api(data)

    async def fetch_conversation(
        self, mention: Mention, max_turns: int = 5
    ) -> list[ConversationTurn]:
        """
        Fetch the tweets before ``mention`` in its conversation, oldest first.

        Uses recent search, whose quota is tracked per endpoint by the client
        rather than by the ledger, so a reported exhaustion is checked here.

        Returns:
            Up to ``max_turns`` turns (empty if the mention starts the thread).

        Raises:
            RateLimitExceeded: If the ledger or the search quota is exhausted.
        """
        if not mention.conversation_id or mention.conversation_id == mention.id:
            return []
        if self.client.is_rate_limited("search"):
            raise RateLimitExceeded("search", self.client.time_until_reset("search"))
        self._admit()

        payload = await self._call(
            f"fetch conversation {mention.conversation_id}",
            lambda: self.client.search_conversation(
                mention.conversation_id, max_results=max(10, max_turns * 2)
            ),
        )
        users = {
            str(u["id"]): u.get("username", "")
            for u in (payload.get("includes") or {}).get("users", [])
            if "id" in u
        }
        earlier = [
            tweet
            for tweet in payload.get("data") or []
            if is_newer_id(mention.id, str(tweet.get("id", "")))
        ]
        earlier.sort(key=lambda t: id_sort_key(str(t["id"])))

        turns = [
            ConversationTurn(
                author=users.get(str(t.get("author_id", ""))) or "unknown",
                text=t.get("text", ""),
            )
            for t in earlier[-max_turns:]
        ]
        logger.debug(f"Fetched {len(turns)} conversation turn(s) for mention {mention.id}")
        return turns
