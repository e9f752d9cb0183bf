"""
Context enrichment for answer engines.

Builds an AnswerContext from a normalized mention. Most of it was already
returned by the mentions request (author profile, quoted and replied-to
tweets, url entities). Extra network access is limited to:

- link previews for urls the platform did not describe
- an author profile lookup when the response did not include the author
- earlier conversation turns (feature_conversation_context, off by default)

The platform lookups go through the MentionFetcher, so they share the
ledger and the paced caller with every other request.

Enrichment never fails a mention: any step that breaks is logged and
skipped, and the answer is generated with whatever context succeeded.
"""

import html
import logging
import re
from typing import Optional
from urllib.parse import urlparse

import httpx

from mentionbot.models import (
    AnswerContext,
    AuthorProfile,
    ConversationTurn,
    LinkContext,
    Mention,
    MentionedUser,
    QuotedTweet,
)

logger = logging.getLogger(__name__)

PLATFORM_HOSTS = {"twitter.com", "x.com", "t.co", "www.twitter.com", "www.x.com"}
MAX_PREVIEW_BYTES = 200_000

_TITLE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
_DESCRIPTION = re.compile(
    r"<meta[^>]+(?:name|property)=[\"'](?:og:)?description[\"'][^>]*"
    r"content=[\"']([^\"']*)[\"']",
    re.IGNORECASE,
)


class LinkResolver:
    """Fetches title and description of a web page."""

    def __init__(self, timeout: float = 5.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self._transport = transport

    async def resolve(self, url: str) -> Optional[LinkContext]:
        """
        Fetch a page preview.

        Returns:
            LinkContext with whatever was found, or None if the fetch failed.
        """
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            ) as client:
                response = await client.get(url, headers={"User-Agent": "mentionbot/0.1"})
                response.raise_for_status()
        except httpx.HTTPError as e:
            logger.debug(f"Link preview failed for {url}: {e}")
            return None

        if "html" not in response.headers.get("content-type", "html"):
            return LinkContext(url=url)

        body = response.text[:MAX_PREVIEW_BYTES]
        title = _TITLE.search(body)
        description = _DESCRIPTION.search(body)
        return LinkContext(
            url=url,
            title=html.unescape(title.group(1).strip()) if title else "",
            description=html.unescape(description.group(1).strip()) if description else "",
        )


class ContextBuilder:
    """Assembles AnswerContext objects according to the feature flags."""

    def __init__(
        self,
        bot_username: str = "",
        user_profile_context: bool = True,
        quote_tweet_context: bool = True,
        link_expansion: bool = True,
        max_links: int = 2,
        link_resolver: Optional[LinkResolver] = None,
        conversation_context: bool = False,
        max_conversation_turns: int = 5,
        fetcher=None,
    ):
        self.bot_username = bot_username.lower().lstrip("@")
        self.user_profile_context = user_profile_context
        self.quote_tweet_context = quote_tweet_context
        self.link_expansion = link_expansion
        self.max_links = max_links
        self.link_resolver = link_resolver
        self.conversation_context = conversation_context
        self.max_conversation_turns = max_conversation_turns
        # Any object with fetch_user / fetch_conversation (a MentionFetcher)
        self.fetcher = fetcher

    @classmethod
    def from_settings(cls, settings, fetcher=None) -> "ContextBuilder":
        return cls(
            bot_username=settings.twitter_bot_username,
            user_profile_context=settings.feature_user_profile_context,
            quote_tweet_context=settings.feature_quote_tweet_context,
            link_expansion=settings.feature_link_expansion,
            max_links=settings.max_links_per_mention,
            link_resolver=LinkResolver(timeout=settings.link_fetch_timeout),
            conversation_context=settings.feature_conversation_context,
            max_conversation_turns=settings.max_conversation_turns,
            fetcher=fetcher,
        )

    async def build(self, mention: Mention) -> AnswerContext:
        """Build the engine context for one mention."""
        context = AnswerContext(question=mention.question or mention.text)

        if self.user_profile_context:
            context.author = mention.author or await self._lookup_author(mention)

        if self.conversation_context and self.fetcher is not None:
            context.conversation = await self._conversation(mention)
        if not context.conversation and mention.replied_to_tweet:
            context.conversation.append(
                ConversationTurn(
                    author=mention.replied_to_tweet.author_username or "unknown",
                    text=mention.replied_to_tweet.text,
                )
            )

        if self.quote_tweet_context and mention.quoted_tweet:
            context.quoted_tweet = QuotedTweet(
                text=mention.quoted_tweet.text,
                author=mention.quoted_tweet.author_username or "unknown",
            )

        context.mentioned_users = [
            MentionedUser(username=name)
            for name in mention.mentioned_usernames
            if name.lower() != self.bot_username
        ]

        for entity in mention.urls:
            if entity.get("media_key"):
                context.media.append(entity.get("expanded_url") or entity.get("url", ""))

        if self.link_expansion:
            try:
                context.links = await self._links(mention)
            except Exception as e:
                logger.warning(f"Link enrichment failed for mention {mention.id}: {e}")

        logger.debug(
            f"Context for {mention.id}: author={bool(context.author)}, "
            f"quoted={bool(context.quoted_tweet)}, links={len(context.links)}"
        )
        return context

    async def _links(self, mention: Mention) -> list[LinkContext]:
        links = []
        for entity in mention.urls:
            if len(links) >= self.max_links:
                break
            if entity.get("media_key"):
                continue
            url = entity.get("unwound_url") or entity.get("expanded_url") or entity.get("url")
            if not url or urlparse(url).hostname in PLATFORM_HOSTS:
                continue

            if entity.get("title") or entity.get("description"):
                links.append(
                    LinkContext(
                        url=url,
                        title=entity.get("title", ""),
                        description=entity.get("description", ""),
                    )
                )
                continue

            resolved = await self.link_resolver.resolve(url) if self.link_resolver else None
            links.append(resolved or LinkContext(url=url))
        return links

    async def _lookup_author(self, mention: Mention) -> Optional[AuthorProfile]:
        if self.fetcher is None or not mention.author_id:
            return None
        try:
            return await self.fetcher.fetch_user(mention.author_id)
        except Exception as e:
            logger.warning(f"Author lookup failed for mention {mention.id}: {e}")
            return None

    async def _conversation(self, mention: Mention) -> list[ConversationTurn]:
        try:
            return await self.fetcher.fetch_conversation(mention, self.max_conversation_turns)
        except Exception as e:
            logger.warning(f"Conversation lookup failed for mention {mention.id}: {e}")
            return []
