"""
Base class and errors shared by all answer engines.

An engine turns an AnswerContext into an AnswerEngineResponse. The bot only
cares about the shape of the answer and how a failure should be treated:

    EngineAuthError      401/403, bad key  -> mention fails, never retried
    EngineError(transient=True)  429, 5xx, timeout, network -> one retry
    EngineResponseError  malformed or empty body -> mention fails
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from config.prompts import CONTEXT_LABELS
from mentionbot.formatter import split_for_thread
from mentionbot.models import AnswerContext, AnswerEngineResponse

logger = logging.getLogger(__name__)

# Room left for thread markers when an engine pre-splits its answer
THREAD_RESERVE = 10


class EngineError(Exception):
    """Raised when an answer engine request fails."""

    def __init__(self, message: str, status_code: Optional[int] = None, transient: bool = False):
        self.status_code = status_code
        self.transient = transient
        super().__init__(message)


class EngineAuthError(EngineError):
    """Invalid or missing credentials for the provider."""


class EngineResponseError(EngineError):
    """The provider answered, but not with anything usable."""


def is_transient_engine_error(error: BaseException) -> bool:
    """Check if an engine failure is worth a second attempt."""
    if isinstance(error, EngineError):
        return error.transient
    return isinstance(error, (httpx.TimeoutException, httpx.TransportError))


class BaseAnswerEngine(ABC):
    """
    Common plumbing for chat-completions style providers.

    Subclasses implement ``generate``; they share prompt building, the HTTP
    call with error classification and reply cleanup.
    """

    name = "base"

    def __init__(
        self,
        api_key: str,
        base_url: str,
        model: str,
        max_tokens: int = 1000,
        temperature: float = 0.7,
        timeout: float = 30.0,
        max_length: int = 280,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.max_length = max_length
        self._transport = transport

    @abstractmethod
    async def generate(self, context: AnswerContext) -> AnswerEngineResponse:
        """Answer the question in ``context``."""

    # =========================================================================
    # Prompt
    # =========================================================================

    def build_prompt(self, context: AnswerContext) -> str:
        """Render the context as a plain-text prompt."""
        lines = [f"{CONTEXT_LABELS['question']}: {context.question}", ""]

        if context.author:
            asked_by = f"{CONTEXT_LABELS['author']}: @{context.author.username}"
            if context.author.bio:
                asked_by += f" ({context.author.bio})"
            lines += [asked_by, ""]

        if context.conversation:
            lines.append(f"{CONTEXT_LABELS['conversation']}:")
            lines += [f"- @{turn.author}: {turn.text}" for turn in context.conversation]
            lines.append("")

        if context.quoted_tweet:
            lines += [
                f'{CONTEXT_LABELS["quoted"]} @{context.quoted_tweet.author}: '
                f'"{context.quoted_tweet.text}"',
                "",
            ]

        if context.mentioned_users:
            lines.append(f"{CONTEXT_LABELS['mentioned']}:")
            for user in context.mentioned_users:
                lines.append(f"- @{user.username}: {user.bio}" if user.bio else f"- @{user.username}")
            lines.append("")

        if context.links:
            lines.append(f"{CONTEXT_LABELS['links']}:")
            for link in context.links:
                entry = f"- {link.title or link.url}"
                if link.description:
                    entry += f": {link.description}"
                lines.append(entry)
            lines.append("")

        return "\n".join(lines).strip() + "\n"

    # =========================================================================
    # HTTP
    # =========================================================================

    async def _chat(self, messages: list[dict]) -> dict:
        """
        POST a chat-completions request and return the decoded body.

        Raises:
            EngineAuthError: On 401/403.
            EngineError: On other HTTP or network failures (transient for 429/5xx).
            EngineResponseError: If the body is not JSON.
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    url=f"{self.base_url}/chat/completions",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "model": self.model,
                        "messages": messages,
                        "max_tokens": self.max_tokens,
                        "temperature": self.temperature,
                    },
                )
        except (httpx.TimeoutException, httpx.TransportError) as e:
            raise EngineError(f"{self.name}: network error: {e}", transient=True) from e

        status = response.status_code
        if status in (401, 403):
            raise EngineAuthError(f"{self.name}: authentication failed (HTTP {status})", status)
        if status == 429 or status >= 500:
            raise EngineError(f"{self.name}: HTTP {status}", status, transient=True)
        if status >= 400:
            raise EngineError(f"{self.name}: HTTP {status}: {response.text[:200]}", status)

        try:
            return response.json()
        except ValueError as e:
            raise EngineResponseError(f"{self.name}: invalid JSON response") from e

    def _content(self, data: dict) -> str:
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            logger.error(f"Unexpected {self.name} response structure: {e}")
            raise EngineResponseError(f"{self.name}: unexpected response structure") from e
        reply = self.clean_reply(content or "")
        if not reply:
            raise EngineResponseError(f"{self.name}: empty answer")
        return reply

    @staticmethod
    def clean_reply(reply: str) -> str:
        """Remove surrounding quotes models sometimes add. Does NOT truncate."""
        reply = reply.strip()
        if len(reply) > 1 and reply[0] == reply[-1] and reply[0] in "\"'":
            reply = reply[1:-1]
        return reply.strip()

    def _response(
        self,
        text: str,
        confidence: Optional[float] = None,
        citations: Optional[list[str]] = None,
        metadata: Optional[dict] = None,
    ) -> AnswerEngineResponse:
        """Wrap an answer, pre-splitting it when it exceeds one message."""
        should_thread = len(text) > self.max_length
        parts = split_for_thread(text, self.max_length - THREAD_RESERVE) if should_thread else []
        return AnswerEngineResponse(
            text=text,
            confidence=confidence,
            citations=citations or [],
            metadata=metadata or {},
            should_thread=should_thread and bool(parts),
            thread_parts=parts,
        )
