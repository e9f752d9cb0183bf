"""
Mention Validator - cheap rule-based gate before any engine call.

Rejects mentions that should never cost an answer engine request:

    - the bot's own tweets (self-replies)
    - retweets of something that mentioned the bot
    - accounts that look like bots or are on the block list
    - spam: nothing left to answer, link/hashtag floods, stock spam phrases

Usage:
    validator = MentionValidator.from_settings(settings)
    result = validator.validate(mention)

    if not result.is_valid:
        logger.info(f"Skipping {mention.id}: {result.reason}")
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Iterable, Optional, Protocol

from mentionbot.models import Mention

logger = logging.getLogger(__name__)

SPAM_PHRASES = [
    "airdrop",
    "claim your",
    "dm me",
    "free giveaway",
    "check my bio",
    "follow back",
    "send me",
    "100x gem",
]

_BOT_NAME = re.compile(r"(bot|_bot|bot_)\d*$", re.IGNORECASE)
_URL = re.compile(r"https?://\S+")
_HANDLE = re.compile(r"@\w+")


@dataclass
class ValidationFlags:
    is_self: bool = False
    is_retweet: bool = False
    is_bot: bool = False
    is_spam: bool = False
    has_links: bool = False
    has_media: bool = False


@dataclass
class ValidationResult:
    """Result of validating one mention."""
    is_valid: bool
    reason: Optional[str] = None
    flags: ValidationFlags = field(default_factory=ValidationFlags)


class Moderator(Protocol):
    def validate(self, mention: Mention) -> ValidationResult: ...


class MentionValidator:
    """Rule-based moderation of inbound mentions."""

    def __init__(
        self,
        bot_user_id: str = "",
        bot_username: str = "",
        blocked_authors: Iterable[str] = (),
        max_links: int = 3,
        max_hashtags: int = 5,
        enabled: bool = True,
    ):
        self.bot_user_id = bot_user_id
        self.bot_username = bot_username.lower().lstrip("@")
        self.blocked_authors = {a.lower().lstrip("@") for a in blocked_authors}
        self.max_links = max_links
        self.max_hashtags = max_hashtags
        self.enabled = enabled

    @classmethod
    def from_settings(cls, settings) -> "MentionValidator":
        return cls(
            bot_user_id=settings.twitter_bot_user_id,
            bot_username=settings.twitter_bot_username,
            blocked_authors=settings.moderation_blocked_authors,
            max_links=settings.moderation_max_links,
            max_hashtags=settings.moderation_max_hashtags,
            enabled=settings.moderation_enabled,
        )

    def _is_bot_account(self, username: str) -> bool:
        return username in self.blocked_authors or bool(_BOT_NAME.search(username))

    def _spam_reason(self, mention: Mention, text: str) -> Optional[str]:
        question = _URL.sub("", _HANDLE.sub("", text)).strip()
        if not question:
            return "nothing to answer"
        link_count = max(len(mention.urls), len(_URL.findall(text)))
        if link_count > self.max_links:
            return f"too many links ({link_count})"
        hashtag_count = max(len(mention.hashtags), text.count("#"))
        if hashtag_count > self.max_hashtags:
            return f"too many hashtags ({hashtag_count})"
        lowered = text.lower()
        for phrase in SPAM_PHRASES:
            if phrase in lowered:
                return f"spam phrase '{phrase}'"
        return None

    def validate(self, mention: Mention) -> ValidationResult:
        """
        Decide whether a mention deserves an answer.

        Returns:
            ValidationResult with the first rejection reason, if any.
        """
        username = (mention.author_username or "").lower()
        flags = ValidationFlags(
            is_retweet=mention.is_retweet,
            has_links=bool(mention.urls) or bool(_URL.search(mention.text)),
            has_media=mention.has_media,
        )

        if self.bot_user_id and mention.author_id == self.bot_user_id:
            flags.is_self = True
        elif self.bot_username and username == self.bot_username:
            flags.is_self = True
        if flags.is_self:
            return ValidationResult(False, "self-reply", flags)

        if not self.enabled:
            return ValidationResult(True, flags=flags)

        if flags.is_retweet:
            return ValidationResult(False, "retweet", flags)

        if username and self._is_bot_account(username):
            flags.is_bot = True
            return ValidationResult(False, f"bot or blocked account @{username}", flags)

        reason = self._spam_reason(mention, mention.text)
        if reason:
            flags.is_spam = True
            return ValidationResult(False, f"spam: {reason}", flags)

        return ValidationResult(True, flags=flags)
