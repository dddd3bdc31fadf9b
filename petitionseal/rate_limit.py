"""
Rate limiting module for PetitionSeal.

Provides sliding window rate limiting with per-key tracking behind an
injected interface. ``RedisRateLimiter`` shares counters across instances
through one sorted set per key; ``LocalRateLimiter`` keeps them in process
memory and is the documented weaker fallback when no Redis is configured
(each instance enforces its own limit).
"""

import logging
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

from .config import RateLimitRule, Settings
from .errors import RateLimitedError
from .logging_config import audit_log

logger = logging.getLogger(__name__)


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    reset_at: float
    retry_after: Optional[float] = None


class RateLimiter(ABC):
    """A sliding window limit of ``limit`` hits per ``window_seconds`` for each key."""

    def __init__(self, limit: int, window_seconds: int, prefix: str = ""):
        self._limit = max(1, limit)
        self._window = window_seconds
        self._prefix = prefix

    @property
    def limit(self) -> int:
        return self._limit

    def key(self, identifier: str) -> str:
        return f"{self._prefix}{identifier}"

    def allow(self, identifier: str) -> bool:
        return self.check(identifier).allowed

    @abstractmethod
    def check(self, identifier: str) -> RateLimitResult:
        """Record a hit for ``identifier`` and report whether it is within the limit."""
        pass

    @abstractmethod
    def reset(self, identifier: Optional[str] = None) -> None:
        pass


class LocalRateLimiter(RateLimiter):
    """
    In-process sliding window rate limiter.

    Thread-safe implementation using deques for efficient
    sliding window tracking.
    """

    def __init__(
        self,
        limit: int,
        window_seconds: int,
        prefix: str = "",
        clock: Callable[[], float] = time.time
    ):
        super().__init__(limit, window_seconds, prefix)
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._lock = threading.RLock()
        self._clock = clock
        self._last_sweep = clock()

    def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        window_start = now - self._window
        key = self.key(identifier)

        with self._lock:
            if now - self._last_sweep >= self._window:
                self._sweep(window_start)
                self._last_sweep = now

            q = self._hits[key]

            while q and q[0] <= window_start:
                q.popleft()

            current_count = len(q)
            reset_at = (q[0] + self._window) if q else (now + self._window)

            if current_count >= self._limit:
                retry_after = q[0] + self._window - now
                return RateLimitResult(
                    allowed=False,
                    remaining=0,
                    reset_at=reset_at,
                    retry_after=max(0, retry_after)
                )

            q.append(now)

            return RateLimitResult(
                allowed=True,
                remaining=self._limit - current_count - 1,
                reset_at=reset_at
            )

    def reset(self, identifier: Optional[str] = None) -> None:
        with self._lock:
            if identifier:
                self._hits.pop(self.key(identifier), None)
            else:
                self._hits.clear()

    def cleanup_expired(self) -> int:
        """
        Remove expired entries from all keys.

        Returns:
            Number of entries removed
        """
        now = self._clock()
        with self._lock:
            self._last_sweep = now
            return self._sweep(now - self._window)

    def _sweep(self, window_start: float) -> int:
        removed = 0
        empty_keys = []

        for key, q in self._hits.items():
            while q and q[0] <= window_start:
                q.popleft()
                removed += 1

            if not q:
                empty_keys.append(key)

        for key in empty_keys:
            del self._hits[key]

        return removed


class RedisRateLimiter(RateLimiter):
    """
    Redis-backed sliding window shared by every instance.

    Each key is a sorted set of hit timestamps. One pipeline trims the
    window, counts it, records the hit and refreshes the key's TTL.
    If Redis errors, the check is answered by a local limiter instead.

    Requires: redis-py
    """

    def __init__(
        self,
        redis_client,
        limit: int,
        window_seconds: int,
        prefix: str = "",
        clock: Callable[[], float] = time.time
    ):
        super().__init__(limit, window_seconds, prefix)
        self.redis = redis_client
        self._clock = clock
        self._fallback = LocalRateLimiter(limit, window_seconds, prefix, clock)

    def check(self, identifier: str) -> RateLimitResult:
        now = self._clock()
        key = self.key(identifier)
        window_ms = self._window * 1000
        now_ms = int(now * 1000)

        try:
            pipe = self.redis.pipeline()
            pipe.zremrangebyscore(key, 0, now_ms - window_ms)
            pipe.zcard(key)
            pipe.zadd(key, {f"{now_ms}-{uuid.uuid4().hex}": now_ms})
            pipe.expire(key, self._window)
            results = pipe.execute()
        except Exception as e:
            logger.warning("Redis rate limit error, falling back to in-memory: %s", e)
            return self._fallback.check(identifier)

        count = int(results[1] or 0)
        allowed = count < self._limit
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, self._limit - count - 1),
            reset_at=now + self._window,
            retry_after=None if allowed else float(self._window)
        )

    def reset(self, identifier: Optional[str] = None) -> None:
        if identifier:
            self.redis.delete(self.key(identifier))
        else:
            for key in self.redis.scan_iter(match=f"{self._prefix}*"):
                self.redis.delete(key)
        self._fallback.reset(identifier)


def enforce(limiter: Optional[RateLimiter], identifier: str, endpoint: str, message: str) -> None:
    """
    Apply a limiter as a hard gate.

    A ``None`` limiter means limits are switched off for this deployment.

    Raises:
        RateLimitedError: If the limit is exhausted
    """
    if limiter is None:
        return
    result = limiter.check(identifier)
    if not result.allowed:
        audit_log.rate_limit_exceeded(limiter.key(identifier), endpoint)
        raise RateLimitedError(message, retry_after=result.retry_after)


@dataclass
class RateLimitPolicy:
    """The four limits of the signature pipeline. ``None`` disables a limit."""
    otp_email: Optional[RateLimiter] = None
    otp_ip: Optional[RateLimiter] = None
    sign_email: Optional[RateLimiter] = None
    sign_ip: Optional[RateLimiter] = None

    @classmethod
    def disabled(cls) -> "RateLimitPolicy":
        return cls()


def get_redis_client(settings: Settings):
    """Create a Redis client for the configured URL, or None when unset."""
    if not settings.redis_url:
        return None
    import redis
    return redis.Redis.from_url(
        settings.redis_url,
        socket_timeout=settings.redis_timeout_seconds,
        socket_connect_timeout=settings.redis_timeout_seconds,
    )


def build_policy(settings: Settings, redis_client=None) -> RateLimitPolicy:
    """
    Build the limiter set for a deployment.

    Uses Redis when a client is given (or ``REDIS_URL`` is set), otherwise
    per-process limiters.
    """
    if not settings.rate_limit_enabled:
        logger.warning("Rate limiting is disabled by configuration")
        return RateLimitPolicy.disabled()

    if redis_client is None:
        redis_client = get_redis_client(settings)
    if redis_client is None:
        logger.info("No REDIS_URL configured; rate limits are enforced per process")

    def make(rule: RateLimitRule, prefix: str) -> RateLimiter:
        if redis_client is not None:
            return RedisRateLimiter(redis_client, rule.limit, rule.window_seconds, prefix)
        return LocalRateLimiter(rule.limit, rule.window_seconds, prefix)

    return RateLimitPolicy(
        otp_email=make(settings.otp_email_rule, "otp:"),
        otp_ip=make(settings.otp_ip_rule, "otp-ip:"),
        sign_email=make(settings.sign_email_rule, "sign:"),
        sign_ip=make(settings.sign_ip_rule, "sign-ip:"),
    )
