"""Daily/weekly action quotas backed by persistent counters.

Counters live in the database rather than in memory because the dashboard
process and the scheduler both consume the same quota. ``check`` followed by
``record`` is not atomic, so a quota can be overshot by concurrent writers;
this is a soft limit.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from pathlib import Path
from typing import Callable, Optional, Union

import structlog

from recruiter.core.config import RateLimitConfig, resolve_timezone
from recruiter.core.db import DEFAULT_DB_PATH, get_counter, increment_counter, utcnow

log = structlog.get_logger()

# action kind -> limit key counted against
QUOTA_KEYS = {
    "connection_request": "connection_request",
    "message": "message",
    "follow_up": "message",
    "inmail": "message",
    "discovery": "discovery",
}


@dataclass
class QuotaStatus:
    action: str
    allowed: bool
    used: int
    limit: Optional[int]

    @property
    def remaining(self) -> Optional[int]:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


class RateLimiter:
    """Per-action quotas with day windows (and a weekly cap for connection requests)."""

    def __init__(
        self,
        config: RateLimitConfig,
        db_path: Path = DEFAULT_DB_PATH,
        timezone: Union[str, tzinfo] = "UTC",
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config
        self.db_path = db_path
        self.tz = timezone if isinstance(timezone, tzinfo) else resolve_timezone(timezone)
        self.clock = clock

    def _limits(self, key: str) -> list[tuple[str, int]]:
        """(window, limit) pairs that apply to a limit key."""
        if key == "connection_request":
            return [("day", self.config.daily_connection_requests),
                    ("week", self.config.weekly_connection_cap)]
        if key == "message":
            return [("day", self.config.daily_messages)]
        if key == "discovery":
            return [("day", self.config.daily_discovery)]
        return []

    def _window_start(self, window: str) -> str:
        today = self.clock().astimezone(self.tz).date()
        if window == "week":
            today = today - timedelta(days=today.weekday())
        return f"{window}:{today.isoformat()}"

    def check(self, action: str) -> QuotaStatus:
        """Report whether another ``action`` fits within every applicable quota."""
        key = QUOTA_KEYS.get(action)
        limits = self._limits(key) if key else []
        if not limits:
            return QuotaStatus(action=action, allowed=True, used=0, limit=None)

        tightest = None
        for window, limit in limits:
            used = get_counter(self.db_path, key, self._window_start(window))
            status = QuotaStatus(action=action, allowed=used < limit, used=used, limit=limit)
            if not status.allowed:
                log.info("rate_limit_reached", action=action, window=window, used=used, limit=limit)
                return status
            if tightest is None or status.remaining < tightest.remaining:
                tightest = status
        return tightest

    def record(self, action: str) -> None:
        """Count one successful ``action`` in every window it is limited by."""
        key = QUOTA_KEYS.get(action)
        if not key:
            return
        for window, _ in self._limits(key):
            increment_counter(self.db_path, key, self._window_start(window))
