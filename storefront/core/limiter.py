"""
Rate limiter for upload and authentication endpoints.

Fixed-window counters keyed by a composite identifier
(``{category}:{client_ip}[:{user_id}]``). The counter store is injected so a
single-instance deployment can keep buckets in process while a multi-instance
deployment shares them through Redis.

A window starts lazily on the first request for an identifier and resets on
the first request at or after its reset time. Bursts at window boundaries are
possible; a denied call never increments the counter.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis

from storefront.core.config import Settings
from storefront.core.errors import RateLimitError
from storefront.core.logging_config import log_security_event

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def monotonic_ms() -> int:
    return time.monotonic_ns() // 1_000_000


class RateLimitStore(ABC):
    """Counter store behind the rate limiter."""

    @abstractmethod
    def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        """Count one request for ``identifier`` and report whether it is admitted."""

    @abstractmethod
    def reset_in_ms(self, identifier: str) -> int:
        """Milliseconds until the identifier's current window resets (0 if none)."""

    def healthy(self) -> bool:
        return True


@dataclass
class RateBucket:
    count: int
    reset_at: int


class InMemoryRateLimitStore(RateLimitStore):
    """Mutex-guarded bucket table for single-instance deployments.

    Every read-modify-write of a bucket happens under one lock, so two
    concurrent requests can never both observe "9 of 10" and both pass.
    Elapsed buckets are dropped every ``prune_every`` calls.
    """

    def __init__(self, clock: Clock = monotonic_ms, prune_every: int = 1000):
        self._clock = clock
        self._buckets: Dict[str, RateBucket] = {}
        self._lock = threading.Lock()
        self._prune_every = prune_every
        self._calls = 0

    def _prune(self, now: int) -> None:
        # Called with the lock held
        elapsed = [key for key, bucket in self._buckets.items() if bucket.reset_at <= now]
        for key in elapsed:
            del self._buckets[key]

    def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        with self._lock:
            now = self._clock()
            self._calls += 1
            if self._prune_every and self._calls % self._prune_every == 0:
                self._prune(now)

            bucket = self._buckets.get(identifier)

            if bucket is None or bucket.reset_at <= now:
                self._buckets[identifier] = RateBucket(count=1, reset_at=now + window_ms)
                return True

            if bucket.count >= max_requests:
                return False

            bucket.count += 1
            return True

    def reset_in_ms(self, identifier: str) -> int:
        with self._lock:
            bucket = self._buckets.get(identifier)
            if bucket is None:
                return 0
            return max(0, bucket.reset_at - self._clock())

    def __len__(self) -> int:
        return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


# Returns 1 when admitted, 0 when denied. Same semantics as the in-memory store.
_ALLOW_SCRIPT = """
local current = redis.call('GET', KEYS[1])
if not current then
    redis.call('SET', KEYS[1], 1, 'PX', ARGV[2])
    return 1
end
if tonumber(current) >= tonumber(ARGV[1]) then
    return 0
end
redis.call('INCR', KEYS[1])
return 1
"""


class RedisRateLimitStore(RateLimitStore):
    """Shared bucket table in Redis; each check runs atomically in a Lua script."""

    def __init__(self, client: "redis.Redis", prefix: str = "ratelimit:"):
        self._client = client
        self._prefix = prefix
        self._allow_script = client.register_script(_ALLOW_SCRIPT)

    @classmethod
    def from_url(cls, url: str) -> "RedisRateLimitStore":
        return cls(redis.Redis.from_url(url, socket_timeout=2))

    def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        result = self._allow_script(
            keys=[self._prefix + identifier], args=[max_requests, window_ms]
        )
        return int(result) == 1

    def reset_in_ms(self, identifier: str) -> int:
        ttl = self._client.pttl(self._prefix + identifier)
        return max(0, int(ttl))

    def healthy(self) -> bool:
        try:
            return bool(self._client.ping())
        except redis.RedisError as e:
            logger.warning("Redis health check failed: %s", str(e))
            return False


def create_rate_limit_store(settings: Settings) -> RateLimitStore:
    """
    Create the counter store for rate limiting.

    Uses Redis if REDIS_URL is configured with a valid scheme, otherwise falls
    back to in-memory storage. In-memory storage is suitable for single-instance
    deployments, while Redis is required for distributed deployments.
    """
    if settings.redis_url:
        if not settings.redis_url.startswith(("redis://", "rediss://")):
            logger.warning("Invalid REDIS_URL format. Using in-memory storage instead.")
        else:
            logger.info("Using Redis backend for rate limiting")
            return RedisRateLimitStore.from_url(settings.redis_url)

    logger.info("Using in-memory storage for rate limiting")
    return InMemoryRateLimitStore()


class RateLimiter:
    """Category-aware facade over a :class:`RateLimitStore`."""

    def __init__(self, store: RateLimitStore, settings: Settings):
        self.store = store
        self.settings = settings

    @staticmethod
    def build_identifier(category: str, client_ip: str, user_id: Optional[str] = None) -> str:
        parts = [category, client_ip or ""]
        if user_id:
            parts.append(user_id)
        return ":".join(parts)

    def allow(self, identifier: str, max_requests: int, window_ms: int) -> bool:
        if not identifier:
            return True
        return self.store.allow(identifier, max_requests, window_ms)

    def check(self, category: str, client_ip: str, user_id: Optional[str] = None) -> None:
        """
        Admit one request for ``category`` or raise :class:`RateLimitError`.

        Args:
            category: Configured rule name (gallery, product, review, auth)
            client_ip: Caller's network address
            user_id: Authenticated user, if any

        Raises:
            RateLimitError: When the caller has exhausted the current window
        """
        rule = self.settings.rate_limit_for(category)
        identifier = self.build_identifier(category, client_ip, user_id)

        if self.allow(identifier, rule.max_requests, rule.window_ms):
            return

        reset_ms = self.store.reset_in_ms(identifier) or rule.window_ms
        log_security_event(
            "rate_limited",
            f"Rate limit exceeded for {category}",
            user_id=user_id,
            ip_address=client_ip,
            level=logging.WARNING,
            extra_data={"category": category, "limit": rule.max_requests},
        )
        raise RateLimitError(retry_after=-(-reset_ms // 1000))
