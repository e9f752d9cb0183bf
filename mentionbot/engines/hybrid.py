"""
Hybrid answer engine.

    ┌──────────────────────────────────────────────────────────┐
    │ Perplexity (research prompt) ─► facts + citations         │
    │ OpenAI-compatible model      ─► facts rewritten in voice  │
    │ rewrite failed (non-auth)    ─► facts used as the answer  │
    └──────────────────────────────────────────────────────────┘
"""

import logging

from config.prompts import REWRITE_TEMPLATE
from mentionbot.engines.base import BaseAnswerEngine, EngineAuthError, EngineError
from mentionbot.engines.openai_engine import OpenAICompatibleEngine
from mentionbot.engines.perplexity import PerplexityEngine
from mentionbot.models import AnswerContext, AnswerEngineResponse

logger = logging.getLogger(__name__)


class HybridEngine(BaseAnswerEngine):
    """Researches with Perplexity, then restyles with a chat model."""

    name = "hybrid"

    def __init__(self, research: PerplexityEngine, writer: OpenAICompatibleEngine):
        super().__init__(
            api_key="",
            base_url=writer.base_url,
            model=f"{research.model}+{writer.model}",
            max_length=writer.max_length,
        )
        self.research = research
        self.writer = writer

    async def generate(self, context: AnswerContext) -> AnswerEngineResponse:
        facts = await self.research.generate(context)

        prompt = REWRITE_TEMPLATE.format(question=context.question, facts=facts.text)
        try:
            text, data = await self.writer.complete(prompt)
            usage = data.get("usage")
        except EngineAuthError:
            raise
        except EngineError as e:
            logger.warning(f"Hybrid rewrite failed, using researched answer: {e}")
            text, usage = facts.text, None

        return self._response(
            text,
            confidence=facts.confidence,
            citations=facts.citations,
            metadata={
                "model": self.model,
                "research_usage": facts.metadata.get("usage"),
                "rewrite_usage": usage,
            },
        )
