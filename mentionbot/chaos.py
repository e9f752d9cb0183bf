"""
Chaos Voice - light-touch informal rewrite of engine answers.

Removes the obvious tells of machine-written text and sprinkles a little
internet slang on top, then enforces the platform length limit.

Every random decision is drawn from the ``random.Random`` instance passed to
the transformer, so a fixed seed yields the same output for the same input.

Usage:
    chaos = ChaosTransformer(random.Random(42))
    tweet = chaos.transform("However, Bitcoin is very volatile.", limit=280)
"""

import logging
import random
import re
from typing import Optional

logger = logging.getLogger(__name__)

ELLIPSIS = "..."

# Slang swaps, each applied with REPLACEMENT_CHANCE
REPLACEMENTS: dict[str, list[str]] = {
    "bitcoin": ["bitcoin", "btc", "corn"],
    "ethereum": ["ethereum", "eth"],
    "increase": ["pump", "go up", "moon"],
    "decrease": ["dump", "tank", "nuke"],
    "very": ["very", "hella", "super", "mega"],
    "good": ["good", "based", "solid", "fire"],
    "bad": ["bad", "trash", "mid", "L"],
    "yes": ["yes", "yep", "yeah", "yuh"],
    "no": ["no", "nah", "nope"],
    "money": ["money", "cash", "bags", "bread"],
    "people": ["people", "folks", "humans", "degens"],
    "however": ["but", "though", "anyway"],
    "therefore": ["so", "thus", "basically"],
    "furthermore": ["also", "plus", "and"],
    "regarding": ["about", "re:", "on"],
}

INJECTIONS = ["tbh", "ngl", "fr", "lol", "lmao", "imo", "idk", "btw", "fwiw"]

ENDINGS = ["probably", "i guess", "or whatever", "idk tho", "just saying", "but yeah"]

AI_PHRASES = [
    "it's worth noting that",
    "it is worth noting",
    "let me explain",
    "allow me to",
    "i'd be happy to",
    "i would be happy to",
    "certainly",
    "undoubtedly",
    "in conclusion",
    "in summary",
    "to summarize",
]

REPLACEMENT_CHANCE = 0.3
INJECTION_CHANCE = 0.2
INJECTION_MIN_SENTENCE = 50
EMPHASIS_CHANCE = 0.01
EMPHASIS_MIN_WORD = 4
COMMA_SPLICE_CHANCE = 0.1
ENDING_CHANCE = 0.25
SIGNATURE_CHANCE = 0.02

_CITATION_MARKERS = re.compile(r"\[\d+\]|\[\d+/\d+\]|\(\d+/\d+\)")
_SENTENCE_BREAK = re.compile(r"(?<=[.!?])\s+")
_SENTENCES = re.compile(r"[^.!?]+[.!?]+")


def remove_ai_tells(text: str) -> str:
    """Drop em dashes, semicolons and stock assistant phrases."""
    text = text.replace("—", ",").replace("–", "-").replace(";", ",")
    for phrase in AI_PHRASES:
        text = re.sub(re.escape(phrase), "", text, flags=re.IGNORECASE)
    return text


def clean_punctuation(text: str) -> str:
    """Collapse whitespace and tidy spacing around punctuation."""
    text = re.sub(r"\s+", " ", text)
    text = re.sub(r"\s+([,.!?])", r"\1", text)
    text = re.sub(r"([,.!?])\s*([,.!?])", r"\1\2", text)
    return text.strip()


def enforce_limit(text: str, limit: int, at_sentence: bool = True) -> str:
    """
    Truncate ``text`` to ``limit`` characters ending in an ellipsis.

    With ``at_sentence`` whole sentences are kept while they fit; otherwise
    (or if not even the first sentence fits) the text is cut hard.
    """
    if len(text) <= limit:
        return text
    budget = max(0, limit - len(ELLIPSIS))

    result = ""
    if at_sentence:
        for sentence in _SENTENCES.findall(text):
            if len(result + sentence) > budget:
                break
            result += sentence
        result = result.strip()

    if not result:
        result = text[:budget].rstrip()
    return result + ELLIPSIS


class ChaosTransformer:
    """Seeded rewrite of engine answers into the bot's informal voice."""

    def __init__(
        self,
        rng: Optional[random.Random] = None,
        truncate_at_sentence: bool = True,
        signature: str = "",
    ):
        """
        Initialize the transformer.

        Args:
            rng: Random source; pass a seeded instance for reproducible output.
            truncate_at_sentence: Prefer whole sentences when shortening.
            signature: Brand tag kept when stripping hashtags and rarely
                appended as ``$signature``. Empty disables both.
        """
        self.rng = rng or random.Random()
        self.truncate_at_sentence = truncate_at_sentence
        self.signature = signature.lower().lstrip("#$")

    def _strip_markers(self, text: str) -> str:
        text = _CITATION_MARKERS.sub("", text)
        if self.signature:
            return re.sub(rf"#(?!{re.escape(self.signature)}\b)\w+", "", text)
        return re.sub(r"#\w+", "", text)

    def _replace_words(self, text: str) -> str:
        for formal, informal in REPLACEMENTS.items():
            if self.rng.random() < REPLACEMENT_CHANCE:
                replacement = self.rng.choice(informal)
                text = re.sub(
                    rf"\b{formal}\b", lambda _: replacement, text, flags=re.IGNORECASE
                )
        return text

    def _inject(self, text: str) -> str:
        sentences = []
        for sentence in _SENTENCE_BREAK.split(text):
            if self.rng.random() < INJECTION_CHANCE and len(sentence) > INJECTION_MIN_SENTENCE:
                sentence = f"{sentence} {self.rng.choice(INJECTIONS)}"
            sentences.append(sentence)
        return " ".join(sentences)

    def _emphasize(self, text: str) -> str:
        words = []
        for word in text.split(" "):
            if (
                self.rng.random() < EMPHASIS_CHANCE
                and len(word) > EMPHASIS_MIN_WORD
                and "http" not in word
            ):
                word = word.upper()
            words.append(word)
        return " ".join(words)

    def _splice(self, text: str) -> str:
        return re.sub(
            r"\. ",
            lambda m: ", " if self.rng.random() < COMMA_SPLICE_CHANCE else m.group(0),
            text,
        )

    def transform(self, text: str, limit: int = 280) -> str:
        """
        Rewrite ``text`` in the chaos voice and fit it into ``limit`` characters.

        Args:
            text: Engine answer (or one thread part of it).
            limit: Hard character limit of the result.

        Returns:
            Transformed text, never longer than ``limit``.
        """
        chaotic = remove_ai_tells(text.lower())
        chaotic = self._strip_markers(chaotic)
        chaotic = self._replace_words(chaotic)
        chaotic = self._inject(chaotic)
        chaotic = self._emphasize(chaotic)
        chaotic = self._splice(chaotic)

        if self.rng.random() < ENDING_CHANCE:
            ending = self.rng.choice(ENDINGS)
            chaotic = chaotic.rstrip()
            separator = " " if chaotic.endswith((".", "!", "?")) else ". "
            chaotic = f"{chaotic}{separator}{ending}"

        if self.signature and self.rng.random() < SIGNATURE_CHANCE:
            chaotic += f" ${self.signature}"

        chaotic = clean_punctuation(chaotic)
        if len(chaotic) > limit:
            logger.debug(f"Chaos text is {len(chaotic)} chars, truncating to {limit}")
            chaotic = enforce_limit(chaotic, limit, self.truncate_at_sentence)
        return chaotic
