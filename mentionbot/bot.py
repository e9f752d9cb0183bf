"""
Main orchestrator for the mention bot.

This module composes the fetcher, the response pipeline and the poster into
cycles, persists progress and runs once or forever.

Cycle:
    ┌─────────────────────────────────────────────────────────────┐
    │  1. Load checkpoint (last_mention_id + stats)               │
    │  2. Fetch mentions since the checkpoint                     │
    │  3. Process oldest-first: dedup cache -> pipeline -> poster │
    │  4. Stop the batch at the first deferred post               │
    │  5. Advance checkpoint over the handled prefix              │
    │  6. Save checkpoint + stats (always the last action)        │
    └─────────────────────────────────────────────────────────────┘

A crash before step 6 re-fetches the same mentions next time; the dedup
cache then skips the ones already answered (at-least-once).

Entry Point:
    python -m mentionbot
"""

import asyncio
import logging
import random
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from config import settings as default_settings
from config.settings import ConfigurationError
from mentionbot.chaos import ChaosTransformer
from mentionbot.engines import create_answer_engine
from mentionbot.enrichment import ContextBuilder
from mentionbot.formatter import ReplyFormatter
from mentionbot.mention_fetcher import MentionFetcher
from mentionbot.models import (
    BotCheckpoint,
    CycleReport,
    Mention,
    id_sort_key,
    is_newer_id,
)
from mentionbot.moderation import MentionValidator
from mentionbot.pipeline import ResponsePipeline
from mentionbot.poster import Poster, PostStatus
from mentionbot.rate_limiter import (
    API_CALL,
    TWEET,
    RateLimitExceeded,
    RateLimitLedger,
    build_ledger,
    calculate_request_delay,
)
from mentionbot.retry import RetryingCaller, reset_time_of
from mentionbot.storage import BotStateStore, create_store
from mentionbot.twitter_client import TwitterClient

logger = logging.getLogger(__name__)

# Outcomes stored in the dedup cache
OUTCOME_REPLIED = "replied"
OUTCOME_PARTIAL = "partial"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"


@dataclass
class RunOptions:
    """Per-run overrides of the settings (usually from the command line)."""
    answer_engine: Optional[str] = None
    dry_run: Optional[bool] = None
    max_mentions: Optional[int] = None
    since_mention_id: Optional[str] = None
    early_exit: bool = False
    force_reply: bool = False


class MentionBot:
    """
    Orchestrates fetch -> pipeline -> post cycles for one bot identity.

    Components can be injected (tests); anything left out is built from
    settings by ``initialize``.
    """

    def __init__(
        self,
        settings=None,
        options: Optional[RunOptions] = None,
        *,
        state: Optional[BotStateStore] = None,
        ledger: Optional[RateLimitLedger] = None,
        fetcher: Optional[MentionFetcher] = None,
        pipeline: Optional[ResponsePipeline] = None,
        poster: Optional[Poster] = None,
    ) -> None:
        self.settings = settings or default_settings
        self.options = options or RunOptions()
        self.state = state
        self.ledger = ledger
        self.fetcher = fetcher
        self.pipeline = pipeline
        self.poster = poster

        self._running = False
        self._stop_event = asyncio.Event()

    @property
    def dry_run(self) -> bool:
        if self.options.dry_run is not None:
            return self.options.dry_run
        return self.settings.dry_run

    @property
    def max_mentions(self) -> int:
        return self.options.max_mentions or self.settings.max_mentions_per_batch

    # =========================================================================
    # Setup
    # =========================================================================

    def _validate_config(self) -> None:
        """
        Validate required configuration at startup.

        Raises:
            ConfigurationError: If required configuration is missing.
        """
        s = self.settings
        missing = []
        if not s.twitter_bot_user_id:
            missing.append("TWITTER_BOT_USER_ID")

        has_user_auth = all(
            [s.twitter_api_key, s.twitter_api_secret, s.twitter_access_token, s.twitter_access_secret]
        )
        if not s.twitter_bearer_token and not has_user_auth:
            missing.append("TWITTER_BEARER_TOKEN (or OAuth 1.0a keys)")
        if not self.dry_run and not has_user_auth:
            missing.append(
                "TWITTER_API_KEY/TWITTER_API_SECRET/TWITTER_ACCESS_TOKEN/TWITTER_ACCESS_SECRET"
            )

        if missing:
            raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")
        logger.info("Configuration validation passed")

    async def initialize(self) -> None:
        """
        Build every component not injected at construction.

        Raises:
            ConfigurationError: On missing configuration or unknown engine.
        """
        logger.info("Initializing components...")
        s = self.settings

        if self.fetcher is None or self.poster is None:
            self._validate_config()

        if self.state is None:
            store = await create_store(s)
            self.state = BotStateStore(
                store,
                namespace=s.state_namespace,
                mention_ttl=timedelta(hours=s.mention_cache_ttl_hours),
            )
            logger.info(f"State store: {store.name}")

        if self.ledger is None:
            self.ledger = build_ledger(s)

        if self.fetcher is None or self.poster is None:
            caller = RetryingCaller(
                interval=calculate_request_delay(s.twitter_api_plan),
                max_attempts=s.api_max_attempts,
                base_delay=s.retry_base_delay,
                max_delay=s.retry_max_delay,
            )
            client = TwitterClient.from_settings(s, quota_listener=self.ledger.observe_remote)
            if self.fetcher is None:
                self.fetcher = MentionFetcher(client, self.ledger, caller, s.twitter_bot_user_id)
            if self.poster is None:
                self.poster = Poster(
                    client,
                    self.ledger,
                    caller,
                    part_delay=s.thread_part_delay_seconds,
                    dry_run=self.dry_run,
                )

        if self.pipeline is None:
            engine = create_answer_engine(self.options.answer_engine or s.answer_engine, s)
            chaos = None
            if s.chaos_enabled:
                chaos = ChaosTransformer(
                    random.Random(s.chaos_seed),
                    truncate_at_sentence=s.chaos_truncate_at_sentence,
                    signature=s.chaos_signature,
                )
            self.pipeline = ResponsePipeline(
                validator=MentionValidator.from_settings(s),
                context_builder=ContextBuilder.from_settings(s, fetcher=self.fetcher),
                engine=engine,
                formatter=ReplyFormatter(
                    max_length=s.max_tweet_length,
                    enable_threads=s.enable_thread_responses,
                    max_thread_length=s.max_thread_length,
                    chaos=chaos,
                    truncate_at_sentence=s.chaos_truncate_at_sentence,
                ),
                retry_delay=s.retry_base_delay,
            )

        logger.info(f"Bot initialized (dry run: {'yes' if self.dry_run else 'no'})")

    # =========================================================================
    # Cycle
    # =========================================================================

    def _check_order(self, mentions: list[Mention], checkpoint: BotCheckpoint) -> list[Mention]:
        """
        Return mentions oldest-first, dropping any not newer than the checkpoint.

        The platform promises increasing IDs and reverse-chronological
        batches; violations are logged so a changed ID scheme is noticed.
        """
        ids = [m.id for m in mentions]
        if ids != sorted(ids, key=id_sort_key, reverse=True):
            logger.warning(f"Mention batch is not in reverse-chronological order: {ids}")

        ordered = []
        for mention in sorted(mentions, key=lambda m: id_sort_key(m.id)):
            if not is_newer_id(mention.id, checkpoint.last_mention_id):
                logger.warning(
                    f"Mention {mention.id} is not newer than checkpoint "
                    f"{checkpoint.last_mention_id}, skipping"
                )
                continue
            ordered.append(mention)
        return ordered

    async def _finish(
        self,
        mention: Mention,
        outcome: str,
        response: Optional[str] = None,
        response_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Record the single processing outcome of a mention."""
        mention.processed = True
        mention.response = response
        mention.response_id = response_id
        mention.error = error
        await self.state.mark_answered(mention.id, outcome)
        await self.state.cache_mention(mention)

    async def _handle(self, mention: Mention, checkpoint: BotCheckpoint, report: CycleReport) -> bool:
        """
        Process one mention.

        Returns:
            False if the reply was deferred (mention left untouched), else True.
        """
        stats = checkpoint.stats
        result = await self.pipeline.process(mention)

        if not result.ready:
            stats.mentions_processed += 1
            if result.rejected:
                report.skipped += 1
                await self._finish(mention, OUTCOME_REJECTED, error=result.reason)
            else:
                report.failed += 1
                stats.errors += 1
                await self._finish(mention, OUTCOME_FAILED, error=result.reason)
            return True

        post = await self.poster.post_thread(result.parts, reply_to_id=mention.id)
        if post.status is PostStatus.DEFERRED:
            logger.info(f"Reply to {mention.id} deferred for {post.wait_time:.0f}s")
            return False

        stats.mentions_processed += 1
        response = "\n\n".join(result.parts)
        if post.status is PostStatus.POSTED:
            report.responded += 1
            stats.responses_generated += 1
            await self._finish(mention, OUTCOME_REPLIED, response, post.first_id)
        elif post.status is PostStatus.PARTIAL:
            report.responded += 1
            report.failed += 1
            stats.responses_generated += 1
            stats.errors += 1
            await self._finish(
                mention,
                OUTCOME_PARTIAL,
                response,
                post.first_id,
                error=(
                    f"partial thread: posted {post.posted_ids}, part "
                    f"{post.failed_index + 1}/{len(result.parts)} failed: {post.error}"
                ),
            )
        else:
            report.failed += 1
            stats.errors += 1
            await self._finish(mention, OUTCOME_FAILED, response, error=f"post failed: {post.error}")
        return True

    async def run_cycle(self) -> CycleReport:
        """
        Run one fetch -> process -> persist cycle.

        Raises:
            ConfigurationError: If the bot identity is missing.
            RateLimitExceeded: If the api-call budget is exhausted.
            RetryExhaustedError / PlatformApiError: If fetching failed.
        """
        report = CycleReport()
        checkpoint = await self.state.load_checkpoint()
        since = self.options.since_mention_id or checkpoint.last_mention_id

        try:
            mentions = await self.fetcher.fetch_since(since, self.max_mentions)
        except (ConfigurationError, RateLimitExceeded):
            raise
        except Exception as e:
            logger.error(f"Fetching mentions failed: {e}")
            checkpoint.stats.errors += 1
            checkpoint.stats.last_run = datetime.now()
            await self.state.save_checkpoint(checkpoint)
            raise

        report.fetched = len(mentions)
        if self.options.early_exit:
            for mention in mentions:
                logger.info(f"[EARLY EXIT] {mention.id} @{mention.author_username}: {mention.text!r}")
            logger.info(f"Early exit after fetching {len(mentions)} mention(s)")
            report.checkpoint = checkpoint.last_mention_id
            return report

        handled_up_to: Optional[str] = None
        ordered = self._check_order(mentions, checkpoint)
        for index, mention in enumerate(ordered):
            if not self.options.force_reply and await self.state.is_answered(mention.id):
                logger.info(f"Mention {mention.id} already handled, skipping")
                report.skipped += 1
                handled_up_to = mention.id
                continue

            if not await self._handle(mention, checkpoint, report):
                report.deferred = len(ordered) - index
                break
            report.processed += 1
            handled_up_to = mention.id

        if checkpoint.advance(handled_up_to):
            logger.info(f"Checkpoint advanced to {checkpoint.last_mention_id}")
        checkpoint.stats.last_run = datetime.now()
        report.checkpoint = checkpoint.last_mention_id

        await self.state.save_checkpoint(checkpoint)
        logger.info(
            f"Cycle done: fetched={report.fetched} processed={report.processed} "
            f"responded={report.responded} skipped={report.skipped} "
            f"failed={report.failed} deferred={report.deferred}"
        )
        return report

    async def process_tweets(self, tweet_ids: list[str]) -> CycleReport:
        """
        Debug mode: run specific tweets through the pipeline.

        The checkpoint is not moved; stats are updated and saved.
        """
        report = CycleReport()
        checkpoint = await self.state.load_checkpoint()
        for tweet_id in tweet_ids:
            mention = await self.fetcher.fetch_tweet(tweet_id)
            report.fetched += 1
            if not self.options.force_reply and await self.state.is_answered(mention.id):
                logger.info(f"Tweet {tweet_id} already handled, use --force-reply to answer again")
                report.skipped += 1
                continue
            if not await self._handle(mention, checkpoint, report):
                report.deferred += 1
                break
            report.processed += 1

        checkpoint.stats.last_run = datetime.now()
        await self.state.save_checkpoint(checkpoint)
        report.checkpoint = checkpoint.last_mention_id
        return report

    # =========================================================================
    # Run modes
    # =========================================================================

    def request_stop(self) -> None:
        """Stop after the current cycle; never interrupts a cycle."""
        if self._running:
            logger.info("Stop requested, finishing current cycle")
        self._running = False
        self._stop_event.set()

    async def _wait(self, seconds: float) -> None:
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def run_forever(self, interval_minutes: Optional[float] = None) -> None:
        """
        Run cycles until ``request_stop`` is called.

        Rate limits are waited out; other failures are logged and the next
        cycle tries again. Configuration errors stop the loop.
        """
        interval = 60 * (interval_minutes or self.settings.continuous_interval_minutes)
        self._running = True
        self._stop_event.clear()
        logger.info(f"Continuous mode: one cycle every {interval:.0f}s")

        while self._running:
            wait = interval
            try:
                await self.run_cycle()
            except ConfigurationError:
                raise
            except RateLimitExceeded as e:
                wait = max(interval, e.wait_time)
                logger.warning(f"{e} Sleeping {wait:.0f}s")
            except Exception as e:
                reset_at = reset_time_of(getattr(e, "cause", e))
                if reset_at is not None:
                    wait = max(interval, (reset_at - datetime.now()).total_seconds())
                logger.error(f"Cycle failed: {e}. Next cycle in {wait:.0f}s")

            if not self._running:
                break
            await self._wait(wait)

        logger.info("Continuous mode stopped")

    def status(self) -> dict:
        """Rate limit snapshot for logging and health checks."""
        return {
            API_CALL: self.ledger.stats(API_CALL),
            TWEET: self.ledger.stats(TWEET),
        }


async def main(
    options: Optional[RunOptions] = None,
    continuous: bool = False,
    interval_minutes: Optional[float] = None,
    tweet_ids: Optional[list[str]] = None,
) -> int:
    """
    Run the bot and return the process exit code.

    Exit codes:
        0 - Normal completion or graceful shutdown
        1 - Configuration error, fetch failure or rate limit (single run)
    """
    bot = MentionBot(options=options)
    logger.info("=" * 60)
    logger.info(f"Starting mention bot for @{bot.settings.twitter_bot_username or 'unknown'}")
    logger.info(f"Mode: {'continuous' if continuous else 'single run'}")
    logger.info("=" * 60)

    try:
        await bot.initialize()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, bot.request_stop)
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        if tweet_ids:
            await bot.process_tweets(tweet_ids)
        elif continuous:
            await bot.run_forever(interval_minutes)
        else:
            await bot.run_cycle()
    except ConfigurationError as e:
        logger.error(f"Configuration error: {e}")
        return 1
    except RateLimitExceeded as e:
        logger.error(f"{e} Exiting (single run)")
        return 1
    except Exception as e:
        logger.error(f"Bot run failed: {e}")
        return 1

    logger.info("Bot shutdown complete")
    return 0
