"""
Reply Formatter - turn an engine answer into platform-safe messages.

Decision flow:

    ┌──────────────────────────────────────────────────────────────┐
    │ threads allowed AND (engine asked to thread OR text > limit)? │
    │   yes -> split by sentences/words, cap at max_thread_length,  │
    │          chaos each part, citation, 🧵 / /thread markers      │
    │   no  -> single message, chaos, truncate with "..."           │
    │ every message is checked against the limit after all edits    │
    └──────────────────────────────────────────────────────────────┘
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from mentionbot.chaos import ELLIPSIS, ChaosTransformer, enforce_limit
from mentionbot.models import AnswerEngineResponse

logger = logging.getLogger(__name__)

THREAD_START_MARKER = "\n\n🧵"
THREAD_END_MARKER = "\n\n/thread"
CITATION_PREFIX = "\n\nsources: "
MAX_CITATIONS = 2

_SENTENCES = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


def truncate_with_ellipsis(text: str, limit: int) -> str:
    """Hard-cut ``text`` so that it fits ``limit`` including the ellipsis."""
    if len(text) <= limit:
        return text
    return text[: max(0, limit - len(ELLIPSIS))].rstrip() + ELLIPSIS


def _split_words(sentence: str, limit: int) -> list[str]:
    chunks = []
    current = ""
    for word in sentence.split(" "):
        while len(word) > limit:
            if current:
                chunks.append(current)
                current = ""
            chunks.append(word[:limit])
            word = word[limit:]
        if not word:
            continue
        if current and len(current) + 1 + len(word) > limit:
            chunks.append(current)
            current = word
        else:
            current = f"{current} {word}" if current else word
    if current:
        chunks.append(current)
    return chunks


def split_for_thread(text: str, limit: int) -> list[str]:
    """
    Split ``text`` into parts of at most ``limit`` characters.

    Breaks at sentence boundaries where possible, falls back to word
    boundaries for long sentences and to hard cuts for long words.
    """
    cleaned = re.sub(r"\s+", " ", text).strip()
    if len(cleaned) <= limit:
        return [cleaned] if cleaned else []

    parts = []
    current = ""
    for match in _SENTENCES.findall(cleaned):
        sentence = match.strip()
        if not sentence:
            continue
        if current and len(current) + 1 + len(sentence) <= limit:
            current = f"{current} {sentence}"
            continue
        if current:
            parts.append(current)
            current = ""
        if len(sentence) <= limit:
            current = sentence
        else:
            chunks = _split_words(sentence, limit)
            parts.extend(chunks[:-1])
            current = chunks[-1]
    if current:
        parts.append(current)
    return parts


def citation_text(citations: list[str]) -> str:
    if not citations:
        return ""
    return CITATION_PREFIX + ", ".join(citations[:MAX_CITATIONS])


def append_citation(parts: list[str], citations: list[str], budgets: list[int]) -> bool:
    """
    Append the citation footer to the last part, else the first, if it fits.

    Args:
        parts: Message texts, modified in place.
        citations: Source URLs.
        budgets: Per-part character budget (limit minus markers).

    Returns:
        True if the footer was appended.
    """
    footer = citation_text(citations)
    if not footer or not parts:
        return False
    for index in dict.fromkeys([len(parts) - 1, 0]):
        if len(parts[index]) + len(footer) <= budgets[index]:
            parts[index] += footer
            return True
    logger.debug(f"Citation footer ({len(footer)} chars) does not fit, dropped")
    return False


@dataclass
class FormattedReply:
    """Final messages ready for the poster."""
    parts: list[str] = field(default_factory=list)
    is_thread: bool = False
    truncated: bool = False
    citation_included: bool = False


class ReplyFormatter:
    """Applies threading policy, voice transform and length limits."""

    def __init__(
        self,
        max_length: int = 280,
        enable_threads: bool = True,
        max_thread_length: int = 5,
        chaos: Optional[ChaosTransformer] = None,
        truncate_at_sentence: bool = True,
    ):
        self.max_length = max_length
        self.enable_threads = enable_threads
        self.max_thread_length = max_thread_length
        self.chaos = chaos
        self.truncate_at_sentence = truncate_at_sentence

    def _transform(self, text: str, limit: int) -> str:
        if self.chaos is not None:
            text = self.chaos.transform(text, limit)
        else:
            text = enforce_limit(
                re.sub(r"\s+", " ", text).strip(), limit, self.truncate_at_sentence
            )
        # Last resort: never hand back more than the limit
        return truncate_with_ellipsis(text, limit)

    def format(
        self,
        response: AnswerEngineResponse,
        allow_threads: Optional[bool] = None,
    ) -> FormattedReply:
        """
        Format an engine response into one message or an ordered thread.

        Args:
            response: Engine answer.
            allow_threads: Override the configured threading policy.

        Returns:
            FormattedReply whose parts are each at most ``max_length`` chars.
        """
        threads = self.enable_threads if allow_threads is None else allow_threads
        wants_thread = response.should_thread or len(response.text) > self.max_length

        if threads and wants_thread and self.max_thread_length > 1:
            reply = self._format_thread(response)
            if reply.is_thread:
                return reply

        text = self._transform(response.text, self.max_length)
        parts = [text] if text else []
        included = append_citation(parts, response.citations, [self.max_length])
        return FormattedReply(
            parts=parts,
            is_thread=False,
            truncated=len(response.text) > self.max_length,
            citation_included=included,
        )

    def _part_budget(self, index: int, count: int) -> int:
        """Characters left for part ``index`` of ``count`` after its thread marker."""
        if index == count - 1:
            return self.max_length - len(THREAD_END_MARKER)
        if index == 0:
            return self.max_length - len(THREAD_START_MARKER)
        return self.max_length

    def _format_thread(self, response: AnswerEngineResponse) -> FormattedReply:
        reserve = max(len(THREAD_START_MARKER), len(THREAD_END_MARKER)) + 1
        split_limit = self.max_length - reserve

        sources = response.thread_parts if response.should_thread else [response.text]
        raw_parts = []
        for source in sources:
            raw_parts.extend(split_for_thread(source, split_limit))

        truncated = len(raw_parts) > self.max_thread_length
        if truncated:
            logger.info(
                f"Thread has {len(raw_parts)} parts, keeping the first {self.max_thread_length}"
            )
            raw_parts = raw_parts[: self.max_thread_length]

        count = len(raw_parts)
        if count < 2:
            return FormattedReply(is_thread=False)

        parts = [
            self._transform(raw, self._part_budget(index, count))
            for index, raw in enumerate(raw_parts)
        ]
        # Parts emptied by the transform (e.g. only hashtags) are dropped
        # before the markers are placed
        parts = [p for p in parts if p]
        count = len(parts)
        if count < 2:
            return FormattedReply(is_thread=False)

        budgets = [self._part_budget(index, count) for index in range(count)]
        parts = [truncate_with_ellipsis(p, b) for p, b in zip(parts, budgets)]
        if truncated and not parts[-1].endswith(ELLIPSIS):
            last = truncate_with_ellipsis(parts[-1], budgets[-1] - len(ELLIPSIS))
            parts[-1] = last if last.endswith(ELLIPSIS) else last + ELLIPSIS

        included = append_citation(parts, response.citations, budgets)
        parts[0] += THREAD_START_MARKER
        parts[-1] += THREAD_END_MARKER
        for index, part in enumerate(parts):
            parts[index] = truncate_with_ellipsis(part, self.max_length)

        return FormattedReply(
            parts=parts,
            is_thread=True,
            truncated=truncated,
            citation_included=included,
        )
