"""Per-caller request allowance checked before a turn starts."""

from __future__ import annotations

import time
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from search_agent.config import RateLimitConfig
from search_agent.errors import RateLimitExceeded

logger = structlog.get_logger(__name__)


@dataclass(slots=True, frozen=True)
class RateLimitDecision:
    allowed: bool
    remaining: int
    reset_after_seconds: float


class RateLimiter(Protocol):
    async def hit(self, identity: str) -> RateLimitDecision: ...


class RedisRateLimiter:
    """Fixed-window counter shared by every worker through Redis.

    Each window gets its own key, incremented atomically with INCR. The key
    expires after two windows, so idle callers leave nothing behind. If Redis
    is unreachable the request is allowed through and the error is logged.
    """

    def __init__(
        self,
        client: redis.Redis,
        config: RateLimitConfig | None = None,
        *,
        key_prefix: str = "ratelimit:user",
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.client = client
        self.config = config or RateLimitConfig()
        self.key_prefix = key_prefix
        self._clock = clock

    async def hit(self, identity: str) -> RateLimitDecision:
        window_seconds = self.config.window_seconds
        now = self._clock()
        window = int(now // window_seconds)
        reset_after = window_seconds - (now % window_seconds)
        key = f"{self.key_prefix}:{identity}:{window}"

        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, int(window_seconds * 2))
        except RedisError:
            logger.exception("rate_limit.redis_error", identity=identity)
            return RateLimitDecision(
                allowed=True,
                remaining=self.config.max_requests,
                reset_after_seconds=reset_after,
            )

        if count > self.config.max_requests:
            logger.warning(
                "rate_limit.exceeded",
                identity=identity,
                count=count,
                limit=self.config.max_requests,
            )
            return RateLimitDecision(allowed=False, remaining=0, reset_after_seconds=reset_after)

        logger.debug("rate_limit.check", identity=identity, count=count, limit=self.config.max_requests)
        return RateLimitDecision(
            allowed=True,
            remaining=self.config.max_requests - count,
            reset_after_seconds=reset_after,
        )


class FixedWindowRateLimiter:
    """In-process fixed-window counter for single-worker runs and tests.

    Windows are kept in start order, so expired ones are dropped from the
    front on every hit.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._windows: OrderedDict[str, tuple[float, int]] = OrderedDict()

    async def hit(self, identity: str) -> RateLimitDecision:
        now = self._clock()
        self._evict_expired(now)

        window_start, count = self._windows.get(identity, (now, 0))
        reset_after = self.config.window_seconds - (now - window_start)
        if count >= self.config.max_requests:
            return RateLimitDecision(allowed=False, remaining=0, reset_after_seconds=reset_after)

        count += 1
        self._windows[identity] = (window_start, count)
        return RateLimitDecision(
            allowed=True,
            remaining=self.config.max_requests - count,
            reset_after_seconds=reset_after,
        )

    def _evict_expired(self, now: float) -> None:
        while self._windows:
            identity, (window_start, _) = next(iter(self._windows.items()))
            if now - window_start < self.config.window_seconds:
                return
            del self._windows[identity]


async def enforce(limiter: RateLimiter, identity: str) -> RateLimitDecision:
    decision = await limiter.hit(identity)
    if not decision.allowed:
        raise RateLimitExceeded(identity, decision.reset_after_seconds)
    return decision
