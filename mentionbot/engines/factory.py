"""
Answer engine factory.

The engine is chosen once at startup from ``settings.answer_engine``.
Creating an engine performs no network access.
"""

import logging

from config.prompts import RESEARCH_SYSTEM_PROMPT
from config.settings import ConfigurationError
from mentionbot.engines.base import BaseAnswerEngine
from mentionbot.engines.hybrid import HybridEngine
from mentionbot.engines.openai_engine import OpenAICompatibleEngine
from mentionbot.engines.perplexity import PerplexityEngine

logger = logging.getLogger(__name__)

ENGINE_TYPES = ("openai", "perplexity", "hybrid")


def _openai(settings, transport=None) -> OpenAICompatibleEngine:
    if not settings.ai_api_key:
        raise ConfigurationError("AI_API_KEY is required for the openai engine")
    return OpenAICompatibleEngine(
        api_key=settings.ai_api_key,
        base_url=settings.ai_base_url,
        model=settings.ai_model,
        max_tokens=settings.ai_max_tokens,
        temperature=settings.ai_temperature,
        timeout=settings.ai_timeout,
        max_length=settings.max_tweet_length,
        transport=transport,
    )


def _perplexity(settings, transport=None, system_prompt=None) -> PerplexityEngine:
    if not settings.perplexity_api_key:
        raise ConfigurationError("PERPLEXITY_API_KEY is required for the perplexity engine")
    return PerplexityEngine(
        api_key=settings.perplexity_api_key,
        base_url=settings.perplexity_base_url,
        model=settings.perplexity_model,
        max_tokens=settings.ai_max_tokens,
        temperature=settings.ai_temperature,
        timeout=settings.ai_timeout,
        max_length=settings.max_tweet_length,
        transport=transport,
        system_prompt=system_prompt,
    )


def create_answer_engine(engine_type: str, settings, transport=None) -> BaseAnswerEngine:
    """
    Create the answer engine named by ``engine_type``.

    Args:
        engine_type: One of ENGINE_TYPES (case-insensitive).
        settings: Settings providing keys, models and limits.
        transport: Optional httpx transport (tests).

    Raises:
        ConfigurationError: Unknown engine type or missing API key.
    """
    kind = (engine_type or "").strip().lower()
    if kind == "openai":
        engine = _openai(settings, transport)
    elif kind == "perplexity":
        engine = _perplexity(settings, transport)
    elif kind == "hybrid":
        engine = HybridEngine(
            research=_perplexity(settings, transport, system_prompt=RESEARCH_SYSTEM_PROMPT),
            writer=_openai(settings, transport),
        )
    else:
        raise ConfigurationError(
            f"Unknown answer engine '{engine_type}' (expected one of: {', '.join(ENGINE_TYPES)})"
        )

    logger.info(f"Answer engine selected: {engine.name} ({engine.model})")
    return engine
