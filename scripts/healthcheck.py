#!/usr/bin/env python3
"""
Docker health check script for the mention bot.

Checks, in order:
1. Bot identity and platform credentials are configured
2. The configured answer engine can be built (known type, API key present)
3. The state store answers (Supabase, SQLite or in-memory fallback)

Exit codes:
    0 - Healthy
    1 - Unhealthy

Usage:
    python scripts/healthcheck.py
"""

import asyncio
import sys

from config import settings
from config.settings import ConfigurationError
from mentionbot.engines import create_answer_engine
from mentionbot.rate_limiter import calculate_request_delay
from mentionbot.storage import create_store


async def check_health() -> bool:
    """
    Perform health checks on bot components.

    Returns:
        True if all checks pass, False otherwise.
    """
    if not settings.twitter_bot_user_id:
        print("UNHEALTHY: TWITTER_BOT_USER_ID is not set")
        return False
    if not (settings.twitter_bearer_token or settings.twitter_access_token):
        print("UNHEALTHY: No X API credentials configured")
        return False

    try:
        engine = create_answer_engine(settings.answer_engine, settings)
    except ConfigurationError as e:
        print(f"UNHEALTHY: Answer engine - {e}")
        return False

    store = None
    try:
        store = await create_store(settings)
        store_ok = await store.health_check()
    except Exception as e:
        print(f"UNHEALTHY: State store failed - {e}")
        return False
    finally:
        # Only the SQLite store holds a connection
        if hasattr(store, "close"):
            store.close()

    if not store_ok:
        print(f"UNHEALTHY: {store.name} store health check failed")
        return False

    print(
        f"HEALTHY: engine={type(engine).__name__} store={store.name} "
        f"plan={settings.twitter_api_plan} "
        f"(request gap {calculate_request_delay(settings.twitter_api_plan):.2f}s)"
    )
    return True


if __name__ == "__main__":
    healthy = asyncio.run(check_health())
    sys.exit(0 if healthy else 1)
