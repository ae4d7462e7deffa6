# =============================================================================
# lib/rate_limiter.py - Redis Fixed-Window Rate Limiter
# =============================================================================
# Counts requests per (action, identifier) in fixed time windows.
#
# Usage:
#   from lib.rate_limiter import get_rate_limiter
#   get_rate_limiter().check("signin", client_ip)   # raises when exceeded
# =============================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from functools import lru_cache

import redis

from app.config import settings
from app.exceptions import RateLimitExceededError

logger = logging.getLogger(__name__)


# (max requests, window seconds) per action
RATE_LIMITS: dict[str, tuple[int, int]] = {
    "signup": (5, 3600),
    "signin": (10, 300),
    "two_factor": (5, 300),
    "forgot_password": (3, 900),
    "reset_password": (5, 900),
    "email_change": (3, 3600),
    "account_deletion": (3, 3600),
    "password_check": (10, 300),
    "create_case": (20, 60),
    "update_case": (30, 60),
    "upload": (60, 60),
    "save_detections": (30, 60),
    "analysis": (10, 60),
    "export": (10, 600),
    "weather": (30, 60),
}

DEFAULT_LIMIT = (60, 60)


@dataclass
class RateLimitResult:
    """Outcome of counting one request."""
    allowed: bool
    limit: int
    remaining: int
    retry_after: int


class RateLimiter:
    """
    Fixed-window limiter backed by Redis INCR + EXPIRE.

    Each window gets its own key, so counters reset without any cleanup.
    """

    def __init__(self, client: redis.Redis | None = None, enabled: bool | None = None):
        self._client = client
        self.enabled = settings.RATE_LIMIT_ENABLED if enabled is None else enabled

    @property
    def client(self) -> redis.Redis:
        if self._client is None:
            self._client = redis.Redis.from_url(settings.REDIS_URL)
        return self._client

    def hit(self, action: str, identifier: str) -> RateLimitResult:
        """
        Count a request and report whether it is within budget.

        Args:
            action: Name of the limited action (see RATE_LIMITS)
            identifier: User id or client IP

        Returns:
            RateLimitResult for this request
        """
        limit, window = RATE_LIMITS.get(action, DEFAULT_LIMIT)

        if not self.enabled:
            return RateLimitResult(allowed=True, limit=limit, remaining=limit, retry_after=0)

        now = time.time()
        window_index = int(now // window)
        key = f"ratelimit:{action}:{identifier}:{window_index}"

        pipe = self.client.pipeline()
        pipe.incr(key)
        pipe.expire(key, window)
        count, _ = pipe.execute()

        retry_after = max(1, int(window - (now % window)))
        return RateLimitResult(
            allowed=count <= limit,
            limit=limit,
            remaining=max(0, limit - count),
            retry_after=retry_after,
        )

    def check(self, action: str, identifier: str) -> None:
        """
        Count a request and raise once the budget is spent.

        Raises:
            RateLimitExceededError: If the caller is over the limit
        """
        try:
            result = self.hit(action, identifier)
        except redis.RedisError as e:
            # Limiter outage must not take the API down with it
            logger.warning(f"Rate limiter unavailable for {action}: {e}")
            return

        if not result.allowed:
            logger.warning(f"Rate limit exceeded: action={action} identifier={identifier}")
            raise RateLimitExceededError(action, result.retry_after)


@lru_cache
def get_rate_limiter() -> RateLimiter:
    """Process-wide limiter instance."""
    return RateLimiter()
