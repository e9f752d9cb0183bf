"""
Response Pipeline - one mention in, platform-ready messages out.

Flow:
    ┌─────────────────────────────────────────────────────────────┐
    │  fetched ─► validated ─► enriched ─► generated ─► formatted  │
    │     │           │            (never fails)    │         │    │
    │     └──── failed(reason) ◄──────────────────────────────┘    │
    │                                                  ─► ready    │
    └─────────────────────────────────────────────────────────────┘

Validation runs strictly before generation so rejected mentions never cost
an engine call. Generation gets one extra attempt on transient failures.
Failure reasons are for logs and the mention record only; they are never
posted.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_fixed,
)

from mentionbot.engines.base import (
    BaseAnswerEngine,
    EngineAuthError,
    EngineError,
    is_transient_engine_error,
)
from mentionbot.enrichment import ContextBuilder
from mentionbot.formatter import ReplyFormatter
from mentionbot.models import (
    AnswerContext,
    AnswerEngineResponse,
    Mention,
    PipelineResult,
    PipelineStage,
)
from mentionbot.moderation import Moderator

logger = logging.getLogger(__name__)


class ResponsePipeline:
    """Validates, enriches, answers and formats a single mention."""

    def __init__(
        self,
        validator: Moderator,
        context_builder: ContextBuilder,
        engine: BaseAnswerEngine,
        formatter: ReplyFormatter,
        generation_attempts: int = 2,
        retry_delay: float = 2.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.validator = validator
        self.context_builder = context_builder
        self.engine = engine
        self.formatter = formatter
        self.generation_attempts = generation_attempts
        self.retry_delay = retry_delay
        self._sleep = sleep

    def _failed(self, mention: Mention, reason: str, rejected: bool = False) -> PipelineResult:
        log = logger.info if rejected else logger.warning
        log(f"Mention {mention.id} failed: {reason}")
        return PipelineResult(
            mention_id=mention.id,
            stage=PipelineStage.FAILED,
            reason=reason,
            rejected=rejected,
        )

    async def _enrich(self, mention: Mention) -> AnswerContext:
        try:
            return await self.context_builder.build(mention)
        except Exception as e:
            logger.warning(f"Enrichment failed for mention {mention.id}, answering without context: {e}")
            return AnswerContext(question=mention.question or mention.text)

    async def _generate(self, context: AnswerContext) -> AnswerEngineResponse:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(self.generation_attempts),
            wait=wait_fixed(self.retry_delay),
            retry=retry_if_exception(is_transient_engine_error),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        ):
            with attempt:
                return await self.engine.generate(context)

    async def process(
        self, mention: Mention, allow_threads: Optional[bool] = None
    ) -> PipelineResult:
        """
        Run a mention through every stage.

        Args:
            mention: Normalized mention.
            allow_threads: Override the formatter's threading policy.

        Returns:
            PipelineResult in stage READY with the messages to post, or
            FAILED with a reason.
        """
        stage = PipelineStage.FETCHED
        logger.debug(f"Mention {mention.id}: {stage.value}")

        try:
            validation = self.validator.validate(mention)
        except Exception as e:
            logger.exception(f"Validation crashed for mention {mention.id}")
            return self._failed(mention, f"validation error: {e}")
        if not validation.is_valid:
            return self._failed(mention, f"rejected: {validation.reason}", rejected=True)
        stage = PipelineStage.VALIDATED

        context = await self._enrich(mention)
        stage = PipelineStage.ENRICHED

        try:
            response = await self._generate(context)
        except EngineAuthError as e:
            return self._failed(mention, f"engine authentication failed: {e}")
        except EngineError as e:
            return self._failed(mention, f"engine error: {e}")
        except Exception as e:
            logger.exception(f"Unexpected engine failure for mention {mention.id}")
            return self._failed(mention, f"engine failure: {type(e).__name__}")
        stage = PipelineStage.GENERATED

        try:
            reply = self.formatter.format(response, allow_threads=allow_threads)
        except Exception as e:
            logger.exception(f"Formatting crashed for mention {mention.id}")
            return self._failed(mention, f"formatting error: {e}")
        if not reply.parts:
            return self._failed(mention, "empty answer after formatting")
        stage = PipelineStage.FORMATTED

        logger.info(
            f"Mention {mention.id} ready: {len(reply.parts)} message(s)"
            f"{' (thread)' if reply.is_thread else ''}"
        )
        stage = PipelineStage.READY
        return PipelineResult(
            mention_id=mention.id,
            stage=stage,
            parts=reply.parts,
            is_thread=reply.is_thread,
            citations=response.citations,
        )
