"""
Poster - publish replies and threads within the tweet budget.

    ┌─────────────────────────────────────────────────────────────┐
    │  capacity("tweet") < parts?      -> DEFERRED (wait_time)     │
    │  for each part (in order):                                  │
    │      RetryingCaller ─► create_tweet(reply to previous id)   │
    │      record("tweet")                                        │
    │      fixed pause before the next part                       │
    │  a part fails -> stop; PARTIAL (ids so far) or FAILED       │
    └─────────────────────────────────────────────────────────────┘

Dry run returns synthetic ``dry-run-<hex>`` IDs with the same result shape
and never touches the platform or the ledger.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from mentionbot.rate_limiter import TWEET, RateLimitLedger
from mentionbot.retry import RetryingCaller
from mentionbot.twitter_client import TwitterClient

logger = logging.getLogger(__name__)


class PostStatus(Enum):
    """Outcome of a publish attempt."""
    POSTED = "posted"
    PARTIAL = "partial"
    FAILED = "failed"
    DEFERRED = "deferred"


@dataclass
class PostResult:
    """
    Result of posting a reply or thread.

    Attributes:
        posted_ids: IDs of the parts that were published, in order.
        failed_index: Index of the part that failed (None if none failed).
        wait_time: Seconds until the ledger admits the post (DEFERRED only).
    """
    status: PostStatus
    posted_ids: list[str] = field(default_factory=list)
    failed_index: Optional[int] = None
    error: Optional[str] = None
    wait_time: float = 0.0

    @property
    def first_id(self) -> Optional[str]:
        return self.posted_ids[0] if self.posted_ids else None


class Poster:
    """Publishes messages through the shared ledger and caller."""

    def __init__(
        self,
        client: Optional[TwitterClient],
        ledger: RateLimitLedger,
        caller: RetryingCaller,
        part_delay: float = 2.0,
        dry_run: bool = False,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.client = client
        self.ledger = ledger
        self.caller = caller
        self.part_delay = part_delay
        self.dry_run = dry_run
        self._sleep = sleep

    async def post_reply(self, text: str, reply_to_id: str) -> PostResult:
        """Publish a single reply to ``reply_to_id``."""
        return await self.post_thread([text], reply_to_id)

    def _deferral(self, count: int) -> Optional[PostResult]:
        """Return a DEFERRED/FAILED result if ``count`` posts cannot go out now."""
        largest = self.ledger.max_capacity(TWEET)
        if largest is not None and count > largest:
            return PostResult(
                status=PostStatus.FAILED,
                failed_index=0,
                error=f"{count} parts exceed the tweet limit of {largest}",
            )

        capacity = self.ledger.capacity(TWEET)
        blocked = not self.ledger.can_act(TWEET) or (capacity is not None and capacity < count)
        if blocked:
            wait = self.ledger.time_until_capacity(TWEET, count)
            logger.info(
                f"Tweet budget exhausted ({capacity} free, {count} needed), "
                f"deferring; next slot in {wait:.0f}s"
            )
            return PostResult(status=PostStatus.DEFERRED, wait_time=wait)
        return None

    async def _publish(self, text: str, reply_to: Optional[str]) -> str:
        return await self.caller.call(
            lambda: self.client.create_tweet(text, in_reply_to_tweet_id=reply_to),
            f"post reply to {reply_to or 'timeline'}",
        )

    async def post_thread(
        self, parts: list[str], reply_to_id: Optional[str] = None
    ) -> PostResult:
        """
        Publish ``parts`` in order, each replying to the previous one.

        Args:
            parts: Message texts (a single element posts a plain reply).
            reply_to_id: Tweet the first part replies to.

        Returns:
            PostResult: POSTED, PARTIAL, FAILED or DEFERRED.
        """
        if not parts:
            return PostResult(status=PostStatus.FAILED, error="nothing to post")

        if self.dry_run:
            ids = []
            for index, part in enumerate(parts):
                ids.append(f"dry-run-{uuid.uuid4().hex[:12]}")
                logger.info(
                    f"[DRY RUN] Would post part {index + 1}/{len(parts)} "
                    f"(reply to {ids[-2] if index else reply_to_id}): {part!r}"
                )
            return PostResult(status=PostStatus.POSTED, posted_ids=ids)

        deferred = self._deferral(len(parts))
        if deferred is not None:
            return deferred

        posted: list[str] = []
        previous = reply_to_id
        for index, part in enumerate(parts):
            if index:
                await self._sleep(self.part_delay)
            try:
                tweet_id = await self._publish(part, previous)
            except Exception as e:
                status = PostStatus.PARTIAL if posted else PostStatus.FAILED
                logger.error(
                    f"Posting part {index + 1}/{len(parts)} failed ({status.value}); "
                    f"posted so far: {posted or 'none'}: {e}"
                )
                return PostResult(
                    status=status,
                    posted_ids=posted,
                    failed_index=index,
                    error=str(e),
                )

            self.ledger.record(TWEET)
            posted.append(tweet_id)
            previous = tweet_id
            logger.info(f"Posted part {index + 1}/{len(parts)}: {tweet_id}")

        return PostResult(status=PostStatus.POSTED, posted_ids=posted)
