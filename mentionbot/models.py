"""
Data models shared by the mention pipeline.

Mentions are normalized from X API v2 payloads into plain dataclasses so
validation, enrichment and formatting never touch raw API objects.
"""

import logging
import re
from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Iterable, Optional

logger = logging.getLogger(__name__)

_LEADING_MENTIONS = re.compile(r"^(?:\s*@\w+)+\s*")


# =============================================================================
# Tweet IDs
# =============================================================================

def id_sort_key(tweet_id: str) -> tuple:
    """
    Ordering key for platform IDs.

    Snowflake IDs are compared numerically; anything else falls back to
    length-then-lexical order, which matches numeric order for digit strings.
    """
    if tweet_id.isdigit():
        return (0, int(tweet_id), "")
    return (1, len(tweet_id), tweet_id)


def is_newer_id(candidate: str, reference: Optional[str]) -> bool:
    """True if ``candidate`` sorts strictly after ``reference`` (or there is none)."""
    if reference is None:
        return True
    return id_sort_key(candidate) > id_sort_key(reference)


def newest_id(ids: Iterable[str]) -> Optional[str]:
    """Return the most recent ID of an iterable, or None if it is empty."""
    ids = list(ids)
    return max(ids, key=id_sort_key) if ids else None


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an X API timestamp (e.g. ``2024-05-01T12:00:00.000Z``)."""
    if not value:
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.debug(f"Unparseable timestamp: {value}")
        return None


# =============================================================================
# Mentions
# =============================================================================

class ReferenceType(Enum):
    """How a mention relates to another tweet."""
    RETWEETED = "retweeted"
    QUOTED = "quoted"
    REPLIED_TO = "replied_to"


@dataclass
class ReferencedTweet:
    type: ReferenceType
    id: str


@dataclass
class AuthorProfile:
    """Public profile of a tweet author."""
    id: str
    username: str
    name: str = ""
    bio: str = ""
    verified: bool = False
    followers_count: int = 0

    @classmethod
    def from_api(cls, user: dict) -> "AuthorProfile":
        metrics = user.get("public_metrics") or {}
        return cls(
            id=str(user.get("id", "")),
            username=user.get("username", ""),
            name=user.get("name", ""),
            bio=user.get("description", "") or "",
            verified=bool(user.get("verified", False)),
            followers_count=int(metrics.get("followers_count", 0) or 0),
        )


@dataclass
class TweetRef:
    """A tweet referenced by a mention, resolved from the expansion payload."""
    id: str
    text: str
    author_id: str = ""
    author_username: str = ""


@dataclass
class Mention:
    """
    A normalized inbound mention.

    The ID and content never change after fetch. Enrichment fields may stay
    empty when references cannot be resolved. Processing fields are written
    once by the bot after the pipeline and poster ran.
    """
    id: str
    text: str
    author_id: str
    author_username: Optional[str] = None
    created_at: Optional[datetime] = None
    conversation_id: Optional[str] = None
    in_reply_to_user_id: Optional[str] = None
    referenced_tweets: list[ReferencedTweet] = field(default_factory=list)
    entities: Optional[dict] = None

    # Enrichment
    author: Optional[AuthorProfile] = None
    quoted_tweet: Optional[TweetRef] = None
    replied_to_tweet: Optional[TweetRef] = None

    # Processing
    processed: bool = False
    response: Optional[str] = None
    response_id: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_api(
        cls,
        tweet: dict,
        users: dict[str, dict],
        tweets: dict[str, dict],
    ) -> "Mention":
        """
        Create a Mention from an X API v2 tweet object.

        Args:
            tweet: Tweet object from the response ``data``.
            users: ``includes.users`` indexed by user ID.
            tweets: ``includes.tweets`` indexed by tweet ID.

        Returns:
            Normalized Mention with references resolved from the includes only.
        """
        author_id = str(tweet.get("author_id", ""))
        author_data = users.get(author_id)
        author = AuthorProfile.from_api(author_data) if author_data else None

        references = []
        for ref in tweet.get("referenced_tweets") or []:
            try:
                references.append(ReferencedTweet(ReferenceType(ref["type"]), str(ref["id"])))
            except (KeyError, ValueError):
                logger.debug(f"Ignoring unknown tweet reference {ref} on {tweet.get('id')}")

        mention = cls(
            id=str(tweet["id"]),
            text=tweet.get("text", ""),
            author_id=author_id,
            author_username=author.username if author else None,
            created_at=parse_timestamp(tweet.get("created_at")),
            conversation_id=tweet.get("conversation_id"),
            in_reply_to_user_id=tweet.get("in_reply_to_user_id"),
            referenced_tweets=references,
            entities=tweet.get("entities"),
            author=author,
        )

        for ref in references:
            resolved = _resolve_ref(ref.id, users, tweets)
            if resolved is None:
                continue
            if ref.type is ReferenceType.QUOTED:
                mention.quoted_tweet = resolved
            elif ref.type is ReferenceType.REPLIED_TO:
                mention.replied_to_tweet = resolved
        return mention

    # -------------------------------------------------------------------------
    # Derived views
    # -------------------------------------------------------------------------

    @property
    def is_retweet(self) -> bool:
        return any(r.type is ReferenceType.RETWEETED for r in self.referenced_tweets)

    @property
    def is_reply(self) -> bool:
        return any(r.type is ReferenceType.REPLIED_TO for r in self.referenced_tweets)

    @property
    def question(self) -> str:
        """Mention text without the leading @handles of the reply chain."""
        return _LEADING_MENTIONS.sub("", self.text).strip()

    @property
    def mentioned_usernames(self) -> list[str]:
        entities = self.entities or {}
        return [m.get("username", "") for m in entities.get("mentions", []) if m.get("username")]

    @property
    def urls(self) -> list[dict]:
        entities = self.entities or {}
        return list(entities.get("urls", []))

    @property
    def hashtags(self) -> list[str]:
        entities = self.entities or {}
        return [h.get("tag", "") for h in entities.get("hashtags", [])]

    @property
    def has_media(self) -> bool:
        return any(u.get("media_key") for u in self.urls)

    # -------------------------------------------------------------------------
    # Serialization (mention cache)
    # -------------------------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        data["referenced_tweets"] = [
            {"type": r.type.value, "id": r.id} for r in self.referenced_tweets
        ]
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Mention":
        data = dict(data)
        data["created_at"] = parse_timestamp(data.get("created_at"))
        data["referenced_tweets"] = [
            ReferencedTweet(ReferenceType(r["type"]), r["id"])
            for r in data.get("referenced_tweets") or []
        ]
        if data.get("author"):
            data["author"] = AuthorProfile(**data["author"])
        for key in ("quoted_tweet", "replied_to_tweet"):
            if data.get(key):
                data[key] = TweetRef(**data[key])
        return cls(**data)


def _resolve_ref(
    tweet_id: str, users: dict[str, dict], tweets: dict[str, dict]
) -> Optional[TweetRef]:
    data = tweets.get(tweet_id)
    if data is None:
        return None
    author_id = str(data.get("author_id", ""))
    author = users.get(author_id) or {}
    return TweetRef(
        id=tweet_id,
        text=data.get("text", ""),
        author_id=author_id,
        author_username=author.get("username", ""),
    )


# =============================================================================
# Checkpoint
# =============================================================================

@dataclass
class BotStats:
    mentions_processed: int = 0
    responses_generated: int = 0
    errors: int = 0
    last_run: Optional[datetime] = None


@dataclass
class BotCheckpoint:
    """
    Persistent progress marker of the bot.

    ``last_mention_id`` only ever moves forward; ``advance`` ignores IDs that
    are not strictly newer than the current one.
    """
    last_mention_id: Optional[str] = None
    stats: BotStats = field(default_factory=BotStats)

    def advance(self, mention_id: Optional[str]) -> bool:
        """Move the checkpoint to ``mention_id`` if it is newer. Returns True if moved."""
        if mention_id is None or not is_newer_id(mention_id, self.last_mention_id):
            return False
        self.last_mention_id = mention_id
        return True

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_mention_id": self.last_mention_id,
            "stats": {
                "mentions_processed": self.stats.mentions_processed,
                "responses_generated": self.stats.responses_generated,
                "errors": self.stats.errors,
                "last_run": self.stats.last_run.isoformat() if self.stats.last_run else None,
            },
        }

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> "BotCheckpoint":
        if not data:
            return cls()
        stats = data.get("stats") or {}
        last_run = stats.get("last_run")
        return cls(
            last_mention_id=data.get("last_mention_id"),
            stats=BotStats(
                mentions_processed=int(stats.get("mentions_processed", 0)),
                responses_generated=int(stats.get("responses_generated", 0)),
                errors=int(stats.get("errors", 0)),
                last_run=datetime.fromisoformat(last_run) if last_run else None,
            ),
        )


# =============================================================================
# Answer engine request / response
# =============================================================================

@dataclass
class ConversationTurn:
    author: str
    text: str


@dataclass
class QuotedTweet:
    text: str
    author: str


@dataclass
class MentionedUser:
    username: str
    name: str = ""
    bio: str = ""


@dataclass
class LinkContext:
    url: str
    title: str = ""
    description: str = ""


@dataclass
class AnswerContext:
    """Everything an answer engine may use to answer one mention."""
    question: str
    author: Optional[AuthorProfile] = None
    conversation: list[ConversationTurn] = field(default_factory=list)
    quoted_tweet: Optional[QuotedTweet] = None
    mentioned_users: list[MentionedUser] = field(default_factory=list)
    links: list[LinkContext] = field(default_factory=list)
    media: list[str] = field(default_factory=list)


@dataclass
class AnswerEngineResponse:
    """
    Answer produced by an engine.

    If ``should_thread`` is set, ``thread_parts`` must hold the split answer.
    """
    text: str
    confidence: Optional[float] = None
    citations: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    should_thread: bool = False
    thread_parts: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.should_thread and not self.thread_parts:
            raise ValueError("should_thread requires non-empty thread_parts")


# =============================================================================
# Pipeline and cycle results
# =============================================================================

class PipelineStage(Enum):
    """Stages a mention moves through before posting."""
    FETCHED = "fetched"
    VALIDATED = "validated"
    ENRICHED = "enriched"
    GENERATED = "generated"
    FORMATTED = "formatted"
    READY = "ready"
    FAILED = "failed"


@dataclass
class PipelineResult:
    """Outcome of running one mention through the response pipeline."""
    mention_id: str
    stage: PipelineStage
    parts: list[str] = field(default_factory=list)
    is_thread: bool = False
    reason: Optional[str] = None
    citations: list[str] = field(default_factory=list)
    # Reached only after validation; lets the bot tell rejected from broken
    rejected: bool = False

    @property
    def ready(self) -> bool:
        return self.stage is PipelineStage.READY


@dataclass
class CycleReport:
    """Summary of one bot cycle."""
    fetched: int = 0
    processed: int = 0
    responded: int = 0
    skipped: int = 0
    failed: int = 0
    deferred: int = 0
    checkpoint: Optional[str] = None
