"""
Rate limit ledger for platform API calls and published posts.

This module implements sliding window admission control for named resources
so the bot stays under the X API quotas of its plan tier.

Features:
    - Sliding windows per resource (tracks actual timestamps)
    - Several AND-ed windows per resource (e.g. 15/hour and 50/day)
    - Platform-reported quota (remaining/reset headers) refines predictions
    - Warning alerts when usage reaches the configured threshold
    - Plan tier table (basic / pro / enterprise) and request pacing interval

Resources:
    API_CALL ("api-call"): every read request sent to the platform API
    TWEET ("tweet"): every reply or thread part published

Usage:
    ledger = build_ledger(settings)

    if ledger.can_act(TWEET):
        # Post tweet
        ledger.record(TWEET)
    else:
        wait_time = ledger.time_until_next_slot(TWEET)
        print(f"Rate limited. Wait {wait_time:.0f}s")
"""

import logging
import math
from collections import deque
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Deque, Optional

logger = logging.getLogger(__name__)

API_CALL = "api-call"
TWEET = "tweet"

# Entries are kept at least this long, even if every window is shorter
RETENTION = timedelta(hours=24)

FIFTEEN_MINUTES = timedelta(minutes=15)
ONE_HOUR = timedelta(hours=1)
ONE_DAY = timedelta(days=1)


@dataclass(frozen=True)
class PlanLimits:
    """Published quota of an X API plan tier."""

    tweets_per_day: int
    requests_per_15_min: int


PLAN_LIMITS: dict[str, PlanLimits] = {
    "basic": PlanLimits(tweets_per_day=50, requests_per_15_min=15),
    "pro": PlanLimits(tweets_per_day=100, requests_per_15_min=75),
    "enterprise": PlanLimits(tweets_per_day=300, requests_per_15_min=300),
}


def get_plan_limits(plan: str) -> PlanLimits:
    """Return the limits of a plan tier, falling back to basic."""
    limits = PLAN_LIMITS.get(plan)
    if limits is None:
        logger.warning(f"Unknown API plan '{plan}', using basic limits")
        return PLAN_LIMITS["basic"]
    return limits


def calculate_request_delay(plan: str) -> float:
    """
    Minimum gap in seconds between two request starts for a plan tier.

    Spreads 80% of the 15-minute request quota evenly over the window:
    basic -> 75s, pro -> 15s, enterprise -> 3.75s.
    """
    limits = get_plan_limits(plan)
    delay_ms = math.ceil(900_000 / (limits.requests_per_15_min * 0.8))
    return delay_ms / 1000


class RateLimitExceeded(Exception):
    """Raised when a resource has no free slot and the caller must wait."""

    def __init__(
        self,
        resource: str,
        wait_time: float,
        reset_at: Optional[datetime] = None,
    ):
        self.resource = resource
        self.wait_time = wait_time
        self.reset_at = reset_at
        super().__init__(
            f"Rate limit exceeded ({resource}). "
            f"Wait {wait_time:.0f} seconds before next attempt."
        )


@dataclass(frozen=True)
class RateWindow:
    """A trailing time span within which at most ``limit`` events may occur."""

    name: str
    length: timedelta
    limit: int


@dataclass(frozen=True)
class RemoteQuota:
    """Quota reported by the platform alongside a response."""

    limit: int
    remaining: int
    reset: datetime

    def is_exhausted(self, now: datetime) -> bool:
        return self.remaining <= 0 and self.reset > now


class RateLimitLedger:
    """
    Sliding window admission control per named resource.

    Every configured window of a resource must have room for an action to be
    admitted. Resources without windows or recorded data are never limited.
    The ledger never raises; callers decide whether to wait or defer.
    """

    def __init__(self, warning_threshold: float = 0.8):
        """
        Initialize an empty ledger.

        Args:
            warning_threshold: Usage ratio that triggers warnings (default: 0.8 = 80%)
        """
        self.warning_threshold = warning_threshold
        self._windows: dict[str, list[RateWindow]] = {}
        self._events: dict[str, Deque[datetime]] = {}
        self._remote: dict[str, RemoteQuota] = {}

    def configure(self, resource: str, windows: list[RateWindow]) -> None:
        """Set the windows governing a resource (replaces any previous ones)."""
        self._windows[resource] = list(windows)
        self._events.setdefault(resource, deque())
        summary = ", ".join(
            f"{w.limit}/{w.name}" for w in windows
        )
        logger.info(f"Rate limits for '{resource}': {summary}")

    def windows(self, resource: str) -> list[RateWindow]:
        return list(self._windows.get(resource, []))

    # =========================================================================
    # Internal helpers (read-only unless stated otherwise)
    # =========================================================================

    def _retention(self, resource: str) -> timedelta:
        lengths = [w.length for w in self._windows.get(resource, [])]
        return max([RETENTION] + lengths)

    def _prune(self, resource: str, now: datetime) -> None:
        """Drop entries older than the retention span. Mutates state."""
        events = self._events.get(resource)
        if not events:
            return
        cutoff = now - self._retention(resource)
        while events and events[0] <= cutoff:
            events.popleft()

    def _in_window(
        self, resource: str, window: RateWindow, now: datetime
    ) -> list[datetime]:
        start = now - window.length
        return [ts for ts in self._events.get(resource, ()) if ts > start]

    def _blocked_remote(self, resource: str, now: datetime) -> Optional[RemoteQuota]:
        quota = self._remote.get(resource)
        if quota is not None and quota.is_exhausted(now):
            return quota
        return None

    def _wait_seconds(self, resource: str, now: datetime, count: int = 1) -> float:
        waits = []
        for window in self._windows.get(resource, []):
            if window.limit < count:
                # Never fits (a zero-limit window never admits anything)
                waits.append(window.length.total_seconds())
                continue
            entries = self._in_window(resource, window, now)
            excess = len(entries) + count - window.limit
            if excess > 0:
                # The last entry that has to leave the window to free ``count`` slots
                binding = entries[excess - 1]
                waits.append((binding + window.length - now).total_seconds())

        quota = self._remote.get(resource)
        if quota is not None and quota.reset > now and quota.remaining < count:
            waits.append((quota.reset - now).total_seconds())

        return max(0.0, max(waits)) if waits else 0.0

    # =========================================================================
    # Admission control
    # =========================================================================

    def can_act(self, resource: str) -> bool:
        """
        Check whether an action on ``resource`` is admitted right now.

        Prunes expired entries first, then requires every window count to be
        strictly below its limit.

        Returns:
            True if within limits, False if rate limited.
        """
        now = datetime.now()
        self._prune(resource, now)

        allowed = True
        for window in self._windows.get(resource, []):
            used = len(self._in_window(resource, window, now))
            if used >= window.limit:
                logger.debug(
                    f"Rate limit reached for '{resource}' ({window.name}): "
                    f"{used}/{window.limit}"
                )
                allowed = False
            elif window.limit and used / window.limit >= self.warning_threshold:
                logger.warning(
                    f"Approaching {window.name} limit for '{resource}': "
                    f"{used}/{window.limit} ({used / window.limit:.0%})"
                )

        quota = self._blocked_remote(resource, now)
        if quota is not None:
            logger.debug(
                f"Platform quota exhausted for '{resource}' until {quota.reset.isoformat()}"
            )
            allowed = False

        return allowed

    def record(self, resource: str) -> None:
        """
        Record one attempted action.

        Call exactly once per action actually sent, never speculatively.
        """
        now = datetime.now()
        self._prune(resource, now)
        events = self._events.setdefault(resource, deque())
        events.append(now)

        usage = ", ".join(
            f"{len(self._in_window(resource, w, now))}/{w.limit} {w.name}"
            for w in self._windows.get(resource, [])
        )
        logger.debug(f"Recorded '{resource}' event. Usage: {usage or 'unlimited'}")

    def time_until_next_slot(self, resource: str) -> float:
        """
        Seconds until ``resource`` admits an action again.

        Returns 0 exactly when ``can_act`` would return True. When several
        windows are exhausted the longest wait wins, since all must clear.
        Read-only.
        """
        return self._wait_seconds(resource, datetime.now())

    def time_until_capacity(self, resource: str, count: int) -> float:
        """
        Seconds until ``count`` actions on ``resource`` fit at once.

        Equals ``time_until_next_slot`` for ``count=1``. Read-only.
        """
        return self._wait_seconds(resource, datetime.now(), count)

    def capacity(self, resource: str) -> Optional[int]:
        """
        Free slots left in the most constrained window.

        Returns:
            Number of actions admitted right now, or None if unlimited.
        """
        now = datetime.now()
        free = [
            max(0, w.limit - len(self._in_window(resource, w, now)))
            for w in self._windows.get(resource, [])
        ]
        quota = self._remote.get(resource)
        if quota is not None and quota.reset > now:
            free.append(max(0, quota.remaining))
        return min(free) if free else None

    def max_capacity(self, resource: str) -> Optional[int]:
        """Smallest window limit, i.e. the largest burst that can ever fit."""
        limits = [w.limit for w in self._windows.get(resource, [])]
        return min(limits) if limits else None

    def observe_remote(self, resource: str, quota: RemoteQuota) -> None:
        """Retain the platform-reported remaining/reset pair for a resource."""
        self._remote[resource] = quota
        if quota.remaining <= 0:
            logger.warning(
                f"Platform reports '{resource}' quota exhausted "
                f"(limit {quota.limit}), resets at {quota.reset.isoformat()}"
            )

    def remote_quota(self, resource: str) -> Optional[RemoteQuota]:
        return self._remote.get(resource)

    def stats(self, resource: str) -> dict:
        """
        Get a read-only snapshot of a resource's usage.

        Returns:
            Dictionary with usage statistics:
            {
                'resource': str,
                'can_act': bool,
                'wait_time_seconds': float,
                'total_events': int,
                'windows': {
                    name: {'used', 'limit', 'remaining', 'percentage'},
                },
                'remote': {'limit', 'remaining', 'reset'} or None,
            }
        """
        now = datetime.now()
        windows = {}
        for window in self._windows.get(resource, []):
            used = len(self._in_window(resource, window, now))
            windows[window.name] = {
                "used": used,
                "limit": window.limit,
                "remaining": max(0, window.limit - used),
                "percentage": (used / window.limit) * 100 if window.limit else 100.0,
            }

        quota = self._remote.get(resource)
        wait = self._wait_seconds(resource, now)
        return {
            "resource": resource,
            "can_act": wait == 0,
            "wait_time_seconds": wait,
            "total_events": len(self._events.get(resource, ())),
            "windows": windows,
            "remote": (
                {
                    "limit": quota.limit,
                    "remaining": quota.remaining,
                    "reset": quota.reset.isoformat(),
                }
                if quota
                else None
            ),
        }

    def reset(self, resource: str) -> None:
        """
        Clear every recorded event and remote quota for a resource.

        Administrative escape hatch; never called by the bot itself.
        """
        dropped = len(self._events.get(resource, ()))
        self._events[resource] = deque()
        self._remote.pop(resource, None)
        logger.warning(f"Rate limit ledger reset for '{resource}' ({dropped} events dropped)")


def build_ledger(settings) -> RateLimitLedger:
    """
    Create the process-wide ledger from settings.

    api-call: requests per 15 minutes of the plan tier.
    tweet: hourly limit from settings, daily limit capped by the plan tier.
    """
    plan = get_plan_limits(settings.twitter_api_plan)
    ledger = RateLimitLedger(warning_threshold=settings.rate_limit_warning_threshold)
    ledger.configure(
        API_CALL,
        [RateWindow("15min", FIFTEEN_MINUTES, plan.requests_per_15_min)],
    )
    ledger.configure(
        TWEET,
        [
            RateWindow("hourly", ONE_HOUR, settings.max_posts_per_hour),
            RateWindow(
                "daily", ONE_DAY, min(settings.max_posts_per_day, plan.tweets_per_day)
            ),
        ],
    )
    return ledger
