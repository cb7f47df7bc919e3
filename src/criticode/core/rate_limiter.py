# Author: Bradley R. Kinnard — the bouncer

"""
Fixed-window rate limiter. Protects the LLM bill from abuse.

Counters live behind CounterStore: in-process dict by default, redis when
more than one instance shares the limits. The admit decision never changes
with the backend.
"""

import asyncio
import logging
import math
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from src.criticode.adapters.metrics_client import rate_limit_hit_total
from src.criticode.adapters.redis_client import get_redis
from src.criticode.config import settings
from src.criticode.core.errors import AppError, ErrorKind
from src.criticode.core.models import Identity

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """One admission class: its own window, limit and counter space."""
    category: str
    window: int  # seconds
    limit: int
    error: str
    message: str
    exempt_paths: frozenset[str] = field(default_factory=frozenset)
    extra: dict[str, str] = field(default_factory=dict)  # deterrents, upsell text


AUTH = RateLimitPolicy(
    category="auth",
    window=60,
    limit=5,
    error="Too many authentication attempts",
    message="You have exceeded the maximum number of login attempts. Please wait a minute before trying again.",
    exempt_paths=frozenset({settings.health_path}),
    extra={"securityNote": "This limit helps protect against abuse and ensures system security."},
)

ANONYMOUS_REVIEW = RateLimitPolicy(
    category="anonymous_review",
    window=3600,
    limit=5,
    error="Anonymous review limit exceeded",
    message="You have reached the limit for anonymous code reviews. Create an account to get higher limits and save your review history.",
    extra={"suggestion": "Sign up for a free account to get 30 reviews per hour!"},
)

AUTHENTICATED_REVIEW = RateLimitPolicy(
    category="authenticated_review",
    window=3600,
    limit=30,
    error="Review limit exceeded",
    message="You have reached your hourly limit of 30 code reviews. This limit resets every hour.",
)

GENERAL = RateLimitPolicy(
    category="general",
    window=900,
    limit=100,
    error="Rate limit exceeded",
    message="You have made too many requests. Please wait before making more API calls.",
    exempt_paths=frozenset({settings.health_path}),
)


def ip_key(addr: str | None) -> str:
    return f"ip:{addr or 'unknown'}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"


def review_admission(identity: Identity | None, client_ip: str | None) -> tuple[RateLimitPolicy, str]:
    """
    Pick the review class for this caller. Anonymous class never sees a known
    identity and the authenticated class never sees an anonymous one.
    """
    if identity is not None:
        return AUTHENTICATED_REVIEW, user_key(identity.id)
    return ANONYMOUS_REVIEW, ip_key(client_ip)


@dataclass
class RateLimitRecord:
    key: str
    window_start: float
    count: int
    limit: int
    window_ms: int

    def expired(self, now: float) -> bool:
        return now - self.window_start >= self.window_ms / 1000


class RateLimitResult:
    """what happened when we checked the limit"""
    def __init__(self, allowed: bool, count: int, limit: int, retry_after: int = 0, skipped: bool = False):
        self.allowed = allowed
        self.count = count
        self.limit = limit
        self.retry_after = retry_after  # seconds until window resets
        self.skipped = skipped
        self.reset_at = time.time() + retry_after

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)

    @property
    def reset_time(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def headers(self) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.retry_after),
        }


class CounterStore(ABC):
    """Per-key fixed-window counter. hit() must be atomic per key."""

    @abstractmethod
    async def hit(self, key: str, limit: int, window: int) -> tuple[int, float]:
        """count this event. returns (count in current window, seconds until reset)"""

    async def reset(self, key: str | None = None) -> None:
        """drop one key or everything. tests mostly."""


class MemoryCounterStore(CounterStore):
    """Single-process counters. Good for one instance, wrong for a fleet."""

    def __init__(self, clock: Callable[[], float] = time.monotonic, sweep_interval: float = 60.0):
        self._clock = clock
        self._sweep_interval = sweep_interval
        self._records: dict[str, RateLimitRecord] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._last_sweep = clock()

    async def hit(self, key: str, limit: int, window: int) -> tuple[int, float]:
        # per-key lock; body must stay await-free so sweep() can drop idle locks
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            now = self._clock()
            record = self._records.get(key)
            if record is None or record.expired(now):
                record = RateLimitRecord(key=key, window_start=now, count=0, limit=limit, window_ms=window * 1000)
                self._records[key] = record
            record.count += 1
            count = record.count
            reset_in = record.window_start + record.window_ms / 1000 - now

        if now - self._last_sweep >= self._sweep_interval:
            self.sweep(now)
        return count, reset_in

    def sweep(self, now: float | None = None) -> int:
        """forget every record whose window lapsed. returns how many went."""
        now = self._clock() if now is None else now
        stale = [k for k, r in self._records.items() if r.expired(now)]
        for k in stale:
            del self._records[k]
            lock = self._locks.get(k)
            if lock is not None and not lock.locked():
                del self._locks[k]
        self._last_sweep = now
        if stale:
            log.debug(f"swept {len(stale)} expired rate limit records")
        return len(stale)

    def get(self, key: str) -> RateLimitRecord | None:
        return self._records.get(key)

    def __len__(self) -> int:
        return len(self._records)

    async def reset(self, key: str | None = None) -> None:
        if key is None:
            self._records.clear()
            self._locks.clear()
        else:
            self._records.pop(key, None)
            self._locks.pop(key, None)


# lua script for atomic incr + expire
# returns [count, ttl] - count is how many requests so far, ttl is seconds until reset
RATE_LIMIT_SCRIPT = """
local key = KEYS[1]
local window = tonumber(ARGV[1])

local current = redis.call('INCR', key)
if current == 1 then
    redis.call('EXPIRE', key, window)
end

local ttl = redis.call('TTL', key)
return {current, ttl}
"""


class RedisCounterStore(CounterStore):
    """Shared counters for multi-instance deploys. Fails open if redis is down."""

    def __init__(self, prefix: str = "rl:"):
        self._prefix = prefix

    async def hit(self, key: str, limit: int, window: int) -> tuple[int, float]:
        try:
            redis = await get_redis()
            result = await redis.eval(RATE_LIMIT_SCRIPT, 1, f"{self._prefix}{key}", window)
            count, ttl = int(result[0]), int(result[1])
            # ttl -1 means the expire got lost somewhere, treat as a full window
            return count, float(ttl if ttl > 0 else window)
        except Exception as e:
            log.warning(f"rate limit check failed, allowing request: {e}")
            return 0, float(window)

    async def reset(self, key: str | None = None) -> None:
        redis = await get_redis()
        if key is not None:
            await redis.delete(f"{self._prefix}{key}")
            return
        async for k in redis.scan_iter(match=f"{self._prefix}*"):
            await redis.delete(k)


class RateLimiter:
    """Applies policies against a counter store."""

    def __init__(self, store: CounterStore):
        self.store = store

    async def check(self, policy: RateLimitPolicy, key: str, path: str | None = None) -> RateLimitResult:
        if path is not None and path in policy.exempt_paths:
            return RateLimitResult(allowed=True, count=0, limit=policy.limit, skipped=True)

        count, reset_in = await self.store.hit(f"{policy.category}:{key}", policy.limit, policy.window)
        retry_after = max(1, math.ceil(reset_in))
        allowed = count <= policy.limit

        if not allowed:
            rate_limit_hit_total.labels(category=policy.category).inc()
            log.info(f"rate limit hit for {policy.category} {key}: {count}/{policy.limit}, retry in {retry_after}s")

        return RateLimitResult(allowed=allowed, count=count, limit=policy.limit, retry_after=retry_after)

    async def enforce(self, policy: RateLimitPolicy, key: str, path: str | None = None) -> RateLimitResult:
        """check and raise RATE_LIMIT on reject"""
        result = await self.check(policy, key, path)
        if not result.allowed:
            raise rate_limit_error(policy, result)
        return result


def rate_limit_error(policy: RateLimitPolicy, result: RateLimitResult) -> AppError:
    return AppError(
        ErrorKind.RATE_LIMIT,
        policy.message,
        reason=policy.category,
        retry_after=result.retry_after,
        details={
            "title": policy.error,
            "category": policy.category,
            "retryAfter": result.retry_after,
            "currentUsage": result.count,
            "limit": policy.limit,
            "resetTime": result.reset_time,
            **policy.extra,
        },
    )


def build_counter_store(backend: str) -> CounterStore:
    if backend == "redis":
        log.info("rate limiter using redis counters")
        return RedisCounterStore()
    if backend != "memory":
        log.warning(f"unknown rate limit backend {backend!r}, using memory")
    return MemoryCounterStore()


_limiter: RateLimiter | None = None


def get_rate_limiter() -> RateLimiter:
    global _limiter
    if _limiter is None:
        _limiter = RateLimiter(build_counter_store(settings.rate_limit_backend))
    return _limiter


def reset_rate_limiter() -> None:
    """For testing. Next get_rate_limiter() builds a fresh one."""
    global _limiter
    _limiter = None
