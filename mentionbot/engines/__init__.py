"""
Answer engines.

Modules:
    base: BaseAnswerEngine and engine errors
    openai_engine: OpenAI-compatible chat completions (OpenRouter)
    perplexity: Perplexity web-search answers with citations
    hybrid: Perplexity research restyled by a chat model
    factory: create_answer_engine(engine_type, settings)
"""

from mentionbot.engines.base import (
    BaseAnswerEngine,
    EngineAuthError,
    EngineError,
    EngineResponseError,
    is_transient_engine_error,
)
from mentionbot.engines.factory import ENGINE_TYPES, create_answer_engine

__all__ = [
    "BaseAnswerEngine",
    "EngineError",
    "EngineAuthError",
    "EngineResponseError",
    "is_transient_engine_error",
    "ENGINE_TYPES",
    "create_answer_engine",
]
