"""
Perplexity answer engine - web search backed answers with citations.
"""

import logging
import re
from typing import Optional

from config.prompts import RESEARCH_SUFFIX, SYSTEM_PROMPT
from mentionbot.engines.base import BaseAnswerEngine
from mentionbot.models import AnswerContext, AnswerEngineResponse

logger = logging.getLogger(__name__)

_CITATION_NUMBERS = re.compile(r"\s*\[\d+\]")


def extract_citations(data: dict) -> list[str]:
    """Source URLs from a Perplexity response body."""
    citations = data.get("citations")
    if citations:
        return [str(c) for c in citations]
    return [r["url"] for r in data.get("search_results") or [] if r.get("url")]


class PerplexityEngine(BaseAnswerEngine):
    """Answers using Perplexity's online models."""

    name = "perplexity"

    def __init__(self, *args, system_prompt: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.system_prompt = system_prompt or SYSTEM_PROMPT

    async def generate(self, context: AnswerContext) -> AnswerEngineResponse:
        prompt = self.build_prompt(context) + RESEARCH_SUFFIX
        data = await self._chat(
            [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ]
        )
        text = _CITATION_NUMBERS.sub("", self._content(data)).strip()
        citations = extract_citations(data)
        logger.info(
            f"Perplexity answer generated: {len(text)} chars, {len(citations)} citation(s)"
        )
        return self._response(
            text,
            confidence=0.9,
            citations=citations,
            metadata={"model": self.model, "usage": data.get("usage")},
        )
