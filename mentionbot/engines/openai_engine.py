"""
OpenAI-compatible answer engine (OpenRouter by default).

Configuration:
    AI_BASE_URL=https://openrouter.ai/api/v1
    AI_API_KEY=sk-or-v1-xxx
    AI_MODEL=openai/gpt-4o-mini
"""

import logging
from typing import Optional

from config.prompts import SYSTEM_PROMPT
from mentionbot.engines.base import BaseAnswerEngine
from mentionbot.models import AnswerContext, AnswerEngineResponse

logger = logging.getLogger(__name__)


class OpenAICompatibleEngine(BaseAnswerEngine):
    """Answers with any chat-completions model in the bot's own voice."""

    name = "openai"

    def __init__(self, *args, system_prompt: Optional[str] = None, **kwargs):
        super().__init__(*args, **kwargs)
        self.system_prompt = system_prompt or SYSTEM_PROMPT
        logger.info(f"OpenAI-compatible engine initialized: {self.base_url} / {self.model}")

    async def complete(self, prompt: str) -> tuple[str, dict]:
        """Send one user prompt with the system prompt; returns (text, raw body)."""
        data = await self._chat(
            [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ]
        )
        return self._content(data), data

    async def generate(self, context: AnswerContext) -> AnswerEngineResponse:
        prompt = self.build_prompt(context)
        logger.debug(f"Generating answer with {self.model} ({len(prompt)} char prompt)")
        text, data = await self.complete(prompt)
        logger.info(f"Answer generated by {self.model}: {len(text)} chars")
        return self._response(
            text,
            metadata={"model": self.model, "usage": data.get("usage")},
        )
