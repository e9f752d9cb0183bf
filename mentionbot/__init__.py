"""
Mention bot - answers X/Twitter mentions within the platform's rate limits.

Modules:
    - bot: Orchestrator (fetch -> pipeline -> post cycles, checkpointing)
    - rate_limiter: Sliding-window ledger for api calls and posts
    - retry: Paced, retrying caller for platform requests
    - twitter_client: Platform API wrapper (tweepy)
    - mention_fetcher: Budget-aware mention fetching and normalization
    - moderation: Mention validation (self, retweets, bots, spam)
    - enrichment: Answer context (author, conversation, quotes, links)
    - engines: Answer engines (OpenAI-compatible, Perplexity, hybrid)
    - chaos: Casual voice transformation
    - formatter: Length limits, threads and citations
    - pipeline: validate -> enrich -> generate -> format
    - poster: Budget-aware posting of replies and threads
    - storage: Checkpoint and dedup cache persistence
    - cli: Command line entry point
"""

__version__ = "0.1.0"
