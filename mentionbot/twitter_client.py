"""
X API v2 client.

Thin async wrapper around ``tweepy.Client`` that:
    - runs the blocking SDK calls in a worker thread (asyncio.to_thread)
    - returns raw JSON payloads (data / includes / meta)
    - reads the x-rate-limit-* headers of every response and keeps the
      latest remaining/reset pair per endpoint
    - converts tweepy and requests failures into PlatformApiError, flagged
      retryable for 429, 5xx, timeouts and connection errors

Endpoint quotas are forwarded to an optional listener (the rate limit
ledger) for the endpoints that govern a ledger resource:

    mentions      -> "api-call"
    create_tweet  -> "tweet"

Usage:
    client = TwitterClient.from_settings(settings, quota_listener=ledger.observe_remote)
    payload = await client.get_mentions(bot_user_id, since_id="123", max_results=10)
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

import requests
import tweepy

from mentionbot.rate_limiter import API_CALL, TWEET, RemoteQuota

logger = logging.getLogger(__name__)

# Fields requested with every tweet lookup so references resolve without extra calls
MENTION_EXPANSIONS = [
    "author_id",
    "referenced_tweets.id",
    "referenced_tweets.id.author_id",
    "entities.mentions.username",
]
TWEET_FIELDS = [
    "author_id",
    "conversation_id",
    "created_at",
    "entities",
    "in_reply_to_user_id",
    "referenced_tweets",
    "public_metrics",
]
USER_FIELDS = ["name", "username", "description", "verified", "public_metrics"]

MIN_MENTION_RESULTS = 5
MAX_MENTION_RESULTS = 100

# Used when a 429 arrives without rate limit headers
DEFAULT_RATE_LIMIT_RESET = timedelta(minutes=15)

ENDPOINT_RESOURCES = {
    "mentions": API_CALL,
    "create_tweet": TWEET,
}


class PlatformApiError(Exception):
    """Raised when a platform API request fails."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        rate_limit: Optional[RemoteQuota] = None,
        retryable: bool = False,
        endpoint: str = "",
    ):
        self.status_code = status_code
        self.rate_limit = rate_limit
        self.retryable = retryable
        self.endpoint = endpoint
        super().__init__(message)

    @property
    def reset_at(self) -> Optional[datetime]:
        return self.rate_limit.reset if self.rate_limit else None

    @property
    def is_rate_limit(self) -> bool:
        return self.status_code == 429


def parse_rate_limit(headers) -> Optional[RemoteQuota]:
    """Build a RemoteQuota from x-rate-limit-* response headers."""
    if headers is None:
        return None
    try:
        limit = headers.get("x-rate-limit-limit")
        remaining = headers.get("x-rate-limit-remaining")
        reset = headers.get("x-rate-limit-reset")
        if limit is None or remaining is None or reset is None:
            return None
        return RemoteQuota(
            limit=int(limit),
            remaining=int(remaining),
            reset=datetime.fromtimestamp(int(reset)),
        )
    except (TypeError, ValueError) as e:
        logger.debug(f"Ignoring malformed rate limit headers: {e}")
        return None


class TwitterClient:
    """
    Async X API v2 client returning JSON payloads.

    Attributes:
        rate_limits: Latest RemoteQuota per endpoint name.
    """

    def __init__(
        self,
        client: tweepy.Client,
        quota_listener: Optional[Callable[[str, RemoteQuota], None]] = None,
        user_auth: bool = False,
    ):
        """
        Initialize the client.

        Args:
            client: tweepy.Client created with ``return_type=requests.Response``.
            quota_listener: Called with (resource, quota) for ledger-governed endpoints.
            user_auth: Use OAuth 1.0a user context for read endpoints.
        """
        self._client = client
        self._quota_listener = quota_listener
        self._user_auth = user_auth
        self.rate_limits: dict[str, RemoteQuota] = {}

    @classmethod
    def from_settings(
        cls,
        settings,
        quota_listener: Optional[Callable[[str, RemoteQuota], None]] = None,
    ) -> "TwitterClient":
        client = tweepy.Client(
            bearer_token=settings.twitter_bearer_token or None,
            consumer_key=settings.twitter_api_key or None,
            consumer_secret=settings.twitter_api_secret or None,
            access_token=settings.twitter_access_token or None,
            access_token_secret=settings.twitter_access_secret or None,
            return_type=requests.Response,
            wait_on_rate_limit=False,
        )
        logger.info(
            f"X API client initialized for @{settings.twitter_bot_username or 'unknown'} "
            f"({settings.twitter_api_plan} plan)"
        )
        return cls(
            client,
            quota_listener=quota_listener,
            user_auth=not settings.twitter_bearer_token,
        )

    # =========================================================================
    # Request plumbing
    # =========================================================================

    def _observe(self, endpoint: str, headers) -> Optional[RemoteQuota]:
        quota = parse_rate_limit(headers)
        if quota is None:
            return None
        self.rate_limits[endpoint] = quota
        resource = ENDPOINT_RESOURCES.get(endpoint)
        if resource and self._quota_listener:
            self._quota_listener(resource, quota)
        logger.debug(
            f"{endpoint} quota: {quota.remaining}/{quota.limit}, resets {quota.reset.isoformat()}"
        )
        return quota

    async def _request(self, endpoint: str, method: Callable[..., Any], **kwargs) -> dict:
        """
        Run one SDK call in a worker thread and return its JSON body.

        Raises:
            PlatformApiError: On any HTTP or network failure.
        """
        try:
            response = await asyncio.to_thread(method, **kwargs)
        except tweepy.errors.TooManyRequests as e:
            quota = self._observe(endpoint, e.response.headers)
            if quota is None:
                quota = RemoteQuota(
                    limit=0,
                    remaining=0,
                    reset=datetime.now() + DEFAULT_RATE_LIMIT_RESET,
                )
            raise PlatformApiError(
                f"{endpoint}: rate limited by platform",
                status_code=429,
                rate_limit=quota,
                retryable=True,
                endpoint=endpoint,
            ) from e
        except tweepy.errors.TwitterServerError as e:
            raise PlatformApiError(
                f"{endpoint}: server error {e.response.status_code}",
                status_code=e.response.status_code,
                rate_limit=self._observe(endpoint, e.response.headers),
                retryable=True,
                endpoint=endpoint,
            ) from e
        except tweepy.errors.HTTPException as e:
            # 400 / 401 / 403 / 404 and other client errors
            status = e.response.status_code if e.response is not None else None
            details = "; ".join(e.api_messages) or str(e)
            raise PlatformApiError(
                f"{endpoint}: HTTP {status}: {details}",
                status_code=status,
                rate_limit=self._observe(endpoint, getattr(e.response, "headers", None)),
                retryable=False,
                endpoint=endpoint,
            ) from e
        except (requests.exceptions.Timeout, requests.exceptions.ConnectionError) as e:
            raise PlatformApiError(
                f"{endpoint}: network error: {e}",
                retryable=True,
                endpoint=endpoint,
            ) from e
        except tweepy.errors.TweepyException as e:
            raise PlatformApiError(f"{endpoint}: {e}", endpoint=endpoint) from e

        self._observe(endpoint, response.headers)
        try:
            payload = response.json()
        except ValueError as e:
            raise PlatformApiError(
                f"{endpoint}: invalid JSON response",
                status_code=response.status_code,
                retryable=True,
                endpoint=endpoint,
            ) from e

        for error in payload.get("errors", []):
            logger.debug(f"{endpoint} partial error: {error.get('detail') or error}")
        return payload

    # =========================================================================
    # Read endpoints
    # =========================================================================

    async def get_mentions(
        self,
        user_id: str,
        since_id: Optional[str] = None,
        max_results: int = 10,
    ) -> dict:
        """Fetch mentions of ``user_id`` newer than ``since_id`` with expansions."""
        kwargs = dict(
            id=user_id,
            max_results=max(MIN_MENTION_RESULTS, min(MAX_MENTION_RESULTS, max_results)),
            expansions=MENTION_EXPANSIONS,
            tweet_fields=TWEET_FIELDS,
            user_fields=USER_FIELDS,
            user_auth=self._user_auth,
        )
        if since_id:
            kwargs["since_id"] = since_id
        return await self._request("mentions", self._client.get_users_mentions, **kwargs)

    async def get_tweet(self, tweet_id: str) -> dict:
        """Fetch a single tweet with the same expansions as mentions."""
        return await self._request(
            "tweet",
            self._client.get_tweet,
            id=tweet_id,
            expansions=MENTION_EXPANSIONS,
            tweet_fields=TWEET_FIELDS,
            user_fields=USER_FIELDS,
            user_auth=self._user_auth,
        )

    async def get_user(self, user_id: str) -> dict:
        return await self._request(
            "user",
            self._client.get_user,
            id=user_id,
            user_fields=USER_FIELDS,
            user_auth=self._user_auth,
        )

    async def search_conversation(self, conversation_id: str, max_results: int = 10) -> dict:
        """Fetch recent tweets of a conversation thread."""
        return await self._request(
            "search",
            self._client.search_recent_tweets,
            query=f"conversation_id:{conversation_id}",
            max_results=max(10, min(100, max_results)),
            expansions=["author_id"],
            tweet_fields=TWEET_FIELDS,
            user_fields=USER_FIELDS,
            user_auth=self._user_auth,
        )

    # =========================================================================
    # Write endpoints
    # =========================================================================

    async def create_tweet(self, text: str, in_reply_to_tweet_id: Optional[str] = None) -> str:
        """
        Publish a tweet, optionally as a reply.

        Returns:
            ID of the created tweet.
        """
        kwargs = {"text": text, "user_auth": True}
        if in_reply_to_tweet_id:
            kwargs["in_reply_to_tweet_id"] = in_reply_to_tweet_id
        payload = await self._request("create_tweet", self._client.create_tweet, **kwargs)
        data = payload.get("data") or {}
        if "id" not in data:
            raise PlatformApiError(
                "create_tweet: response has no tweet id", endpoint="create_tweet"
            )
        return str(data["id"])

    # =========================================================================
    # Quota helpers
    # =========================================================================

    def is_rate_limited(self, endpoint: str) -> bool:
        quota = self.rate_limits.get(endpoint)
        return quota is not None and quota.is_exhausted(datetime.now())

    def time_until_reset(self, endpoint: str) -> float:
        """Seconds until the endpoint's reported quota resets (0 if unknown)."""
        quota = self.rate_limits.get(endpoint)
        if quota is None:
            return 0.0
        return max(0.0, (quota.reset - datetime.now()).total_seconds())
