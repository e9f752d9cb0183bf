"""
Command line entry point.

Usage:
    mentionbot                       # one cycle with settings from .env
    mentionbot -a perplexity -d      # research engine, dry run
    mentionbot -c -i 10              # continuous, one cycle every 10 min
    mentionbot -t 1790000000000 -f   # debug a specific tweet, reply again
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from config import settings
from mentionbot.bot import RunOptions, main
from mentionbot.engines import ENGINE_TYPES

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Third-party loggers that are too chatty at INFO
NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "tweepy")


def setup_logging(debug: bool = False, level: Optional[str] = None) -> None:
    """Configure root logging; --debug wins over LOG_LEVEL."""
    resolved = logging.DEBUG if debug else getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(level=resolved, format=LOG_FORMAT, force=True)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def positive_int(value: str) -> int:
    number = int(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive integer, got {value}")
    return number


def positive_float(value: str) -> float:
    number = float(value)
    if number <= 0:
        raise argparse.ArgumentTypeError(f"must be a positive number, got {value}")
    return number


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="mentionbot",
        description="Answer X/Twitter mentions within the platform's rate limits.",
    )
    parser.add_argument(
        "-a", "--answer-engine", choices=ENGINE_TYPES, default=None,
        help=f"answer engine (default: {settings.answer_engine})",
    )
    parser.add_argument(
        "-d", "--dry-run", action="store_true", default=None,
        help="generate replies but never post them",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    parser.add_argument(
        "-n", "--max-mentions", type=positive_int, default=None,
        help=f"mentions to fetch per cycle (default: {settings.max_mentions_per_batch})",
    )
    parser.add_argument(
        "-s", "--since-mention-id", default=None,
        help="fetch mentions newer than this ID instead of the checkpoint",
    )
    parser.add_argument(
        "-e", "--early-exit", action="store_true",
        help="fetch and print mentions, then exit without replying",
    )
    parser.add_argument(
        "-f", "--force-reply", action="store_true",
        help="reply even to mentions already answered",
    )
    parser.add_argument(
        "-c", "--continuous", action="store_true",
        help="run cycles until interrupted",
    )
    parser.add_argument(
        "-i", "--interval", type=positive_float, default=None,
        help=f"minutes between cycles (default: {settings.continuous_interval_minutes})",
    )
    parser.add_argument(
        "-t", "--tweet-id", action="append", dest="tweet_ids", default=None,
        help="process a specific tweet (repeatable), skips the mention fetch",
    )
    return parser


def options_from_args(args: argparse.Namespace) -> RunOptions:
    return RunOptions(
        answer_engine=args.answer_engine,
        dry_run=args.dry_run,
        max_mentions=args.max_mentions,
        since_mention_id=args.since_mention_id,
        early_exit=args.early_exit,
        force_reply=args.force_reply,
    )


def run(argv: Optional[list[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug or settings.debug, settings.log_level)
    exit_code = asyncio.run(
        main(
            options_from_args(args),
            continuous=args.continuous,
            interval_minutes=args.interval,
            tweet_ids=args.tweet_ids,
        )
    )
    sys.exit(exit_code)


if __name__ == "__main__":
    run()
