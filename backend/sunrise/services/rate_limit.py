"""In-process sliding-window rate limiters keyed by client IP."""

import logging
import math
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable

from fastapi import Request

from sunrise.errors import RateLimitError
from sunrise.utils.ip import get_client_ip

logger = logging.getLogger(__name__)

MINUTE = 60
MAX_UNIQUE_TOKENS = 500


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: int  # epoch seconds

    @property
    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


class RateLimiter:
    """
    Sliding window of request timestamps per key.

    At most ``max_tokens`` keys are tracked; the least recently used key is
    evicted first.
    """

    def __init__(self, name: str, interval: int, max_requests: int, max_tokens: int = MAX_UNIQUE_TOKENS):
        self.name = name
        self.interval = interval
        self.max_requests = max_requests
        self.max_tokens = max_tokens
        self._windows: OrderedDict[str, list[float]] = OrderedDict()

    def _window(self, key: str, now: float) -> list[float]:
        start = now - self.interval
        return [t for t in self._windows.get(key, []) if t > start]

    def _reset_at(self, now: float) -> int:
        return math.ceil(now + self.interval)

    def check(self, key: str) -> RateLimitResult:
        now = time.time()
        window = self._window(key, now)
        success = len(window) < self.max_requests
        remaining = max(0, self.max_requests - len(window) - (1 if success else 0))

        if success:
            window.append(now)
            self._windows[key] = window
            self._windows.move_to_end(key)
            while len(self._windows) > self.max_tokens:
                self._windows.popitem(last=False)

        return RateLimitResult(success, self.max_requests, remaining, self._reset_at(now))

    def clear(self) -> None:
        self._windows.clear()


auth_limiter = RateLimiter("auth", MINUTE, 5)
api_limiter = RateLimiter("api", MINUTE, 100)
admin_limiter = RateLimiter("admin", MINUTE, 30)
password_reset_limiter = RateLimiter("password_reset", 15 * MINUTE, 3)
verification_email_limiter = RateLimiter("verification_email", 15 * MINUTE, 3)
accept_invite_limiter = RateLimiter("accept_invite", MINUTE, 5)
invite_limiter = RateLimiter("invite", 15 * MINUTE, 10)

ALL_LIMITERS = (
    auth_limiter,
    api_limiter,
    admin_limiter,
    password_reset_limiter,
    verification_email_limiter,
    accept_invite_limiter,
    invite_limiter,
)


def enforce(limiter: RateLimiter, request: Request) -> RateLimitResult:
    ip = get_client_ip(request)
    result = limiter.check(ip)
    if not result.success:
        logger.warning("Rate limit '%s' exceeded for %s", limiter.name, ip)
        retry_after = max(1, result.reset - int(time.time()))
        raise RateLimitError(headers={"Retry-After": str(retry_after), **result.headers})
    return result


def rate_limit(limiter: RateLimiter) -> Callable:
    """Dependency factory that applies ``limiter`` to the caller's IP."""
    async def limiter_dependency(request: Request) -> RateLimitResult:
        return enforce(limiter, request)
    return limiter_dependency
