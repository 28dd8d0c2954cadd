from __future__ import annotations

import math
import threading
import time
from dataclasses import dataclass
from typing import Callable, Final, Optional

import redis

from config import APP_ENV, REDIS_DISABLED, REDIS_URL
from observability import get_logger, log_event

RATE_LIMIT_REDIS_KEY_PREFIX: Final[str] = "premium:rate_limit:"
MEMORY_SWEEP_THRESHOLD: Final[int] = 10_000
WINDOW_SECONDS: Final[float] = 60.0

# KEYS[1] bucket hash; ARGV now, capacity, refill per second, cost.
# Returns {allowed, tokens left, retry after seconds}.
TOKEN_BUCKET_LUA: Final[str] = """
local bucket = redis.call("HMGET", KEYS[1], "tokens", "ts")
local now = tonumber(ARGV[1])
local capacity = tonumber(ARGV[2])
local rate = tonumber(ARGV[3])
local cost = tonumber(ARGV[4])

local tokens = tonumber(bucket[1]) or capacity
local last = tonumber(bucket[2]) or now
if now > last then
  tokens = math.min(capacity, tokens + (now - last) * rate)
end

local allowed = 0
local wait = 0
if tokens >= cost then
  tokens = tokens - cost
  allowed = 1
else
  wait = math.ceil((cost - tokens) / rate)
end

redis.call("HSET", KEYS[1], "tokens", tokens, "ts", now)
redis.call("EXPIRE", KEYS[1], math.max(120, math.ceil(capacity / rate * 2)))
return {allowed, tokens, wait}
"""

_LOGGER = get_logger("premium.rate_limit")


def _is_production_env() -> bool:
    return str(APP_ENV or "").strip().lower() in {"prod", "production"}


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit_rpm: int
    remaining: int
    retry_after_seconds: int


def payment_subject(client_ip: Optional[str], user_id: Optional[str]) -> str:
    return f"payments:{str(client_ip or 'unknown').strip() or 'unknown'}:{str(user_id or 'anonymous').strip() or 'anonymous'}"


@dataclass
class _Bucket:
    capacity: int
    tokens: float
    updated_at: float

    def refill(self, now: float) -> None:
        elapsed = max(0.0, now - self.updated_at)
        self.tokens = min(float(self.capacity), self.tokens + elapsed * self.capacity / WINDOW_SECONDS)
        self.updated_at = now

    def is_full_at(self, now: float) -> bool:
        elapsed = max(0.0, now - self.updated_at)
        return self.tokens + elapsed * self.capacity / WINDOW_SECONDS >= self.capacity


class MemoryTokenBuckets:
    """
    Process-local token buckets, used when Redis is off or unreachable.

    Once more than `sweep_threshold` subjects are tracked, buckets that have
    refilled to capacity are dropped; a dropped bucket and a fresh one behave
    the same, so the sweep never changes a decision.
    """

    def __init__(self, *, sweep_threshold: int = MEMORY_SWEEP_THRESHOLD, clock: Callable[[], float] = time.time) -> None:
        self._sweep_threshold = max(1, int(sweep_threshold))
        self._clock = clock
        self._lock = threading.Lock()
        self._buckets: dict[str, _Bucket] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._buckets)

    def take(self, key: str, *, capacity: int, cost: int) -> RateLimitResult:
        now = self._clock()
        with self._lock:
            bucket = self._buckets.get(key)
            if bucket is None:
                if len(self._buckets) >= self._sweep_threshold:
                    self._sweep(now)
                bucket = _Bucket(capacity=capacity, tokens=float(capacity), updated_at=now)
                self._buckets[key] = bucket
            bucket.refill(now)
            if bucket.capacity != capacity:
                bucket.capacity = capacity
                bucket.tokens = min(bucket.tokens, float(capacity))

            retry_after = 0
            allowed = bucket.tokens >= cost
            if allowed:
                bucket.tokens -= cost
            else:
                retry_after = max(1, int(math.ceil((cost - bucket.tokens) * WINDOW_SECONDS / capacity)))
            remaining = max(0, int(math.floor(bucket.tokens)))

        return RateLimitResult(
            allowed=allowed,
            limit_rpm=capacity,
            remaining=remaining,
            retry_after_seconds=retry_after,
        )

    def _sweep(self, now: float) -> None:
        idle = [key for key, bucket in self._buckets.items() if bucket.is_full_at(now)]
        for key in idle:
            del self._buckets[key]
        log_event(_LOGGER, 10, "rate_limit.memory_swept", evicted=len(idle), tracked=len(self._buckets))

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


class PremiumRateLimiter:
    def __init__(
        self,
        *,
        redis_url: Optional[str] = None,
        disabled: Optional[bool] = None,
        memory_sweep_threshold: int = MEMORY_SWEEP_THRESHOLD,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._redis_url = str(redis_url or REDIS_URL)
        self._disabled = REDIS_DISABLED if disabled is None else bool(disabled)
        self._clock = clock
        self._memory = MemoryTokenBuckets(sweep_threshold=memory_sweep_threshold, clock=clock)
        self._client = self._connect()
        if self._client is None:
            log_event(
                _LOGGER,
                40 if _is_production_env() and not self._disabled else 30,
                "rate_limit.init_no_redis_using_memory",
                production=_is_production_env(),
            )

    @property
    def memory(self) -> MemoryTokenBuckets:
        return self._memory

    def _connect(self) -> redis.Redis | None:
        if self._disabled or self._redis_url.startswith("memory://"):
            return None
        try:
            client = redis.Redis.from_url(self._redis_url, decode_responses=True)
            client.ping()
            return client
        except Exception as exc:  # noqa: BLE001
            log_event(
                _LOGGER,
                40 if _is_production_env() else 30,
                "rate_limit.redis_unavailable_fallback_memory",
                redis_url=self._redis_url,
                error=str(exc),
            )
            return None

    def allow(self, *, subject: str, limit_rpm: int, cost: int = 1) -> RateLimitResult:
        capacity = max(1, int(limit_rpm))
        spend = max(1, int(cost))
        key = f"{RATE_LIMIT_REDIS_KEY_PREFIX}{subject}"

        client = self._client
        if client is not None:
            try:
                return self._take_redis(client, key, capacity=capacity, cost=spend)
            except Exception as exc:  # noqa: BLE001
                # Degrade to in-process limiting for the rest of the process lifetime.
                log_event(_LOGGER, 40, "rate_limit.redis_call_failed_fallback_memory", key=key, error=str(exc))
                self._client = None
        return self._memory.take(key, capacity=capacity, cost=spend)

    def _take_redis(self, client: redis.Redis, key: str, *, capacity: int, cost: int) -> RateLimitResult:
        raw = client.eval(
            TOKEN_BUCKET_LUA,
            1,
            key,
            str(self._clock()),
            str(capacity),
            str(capacity / WINDOW_SECONDS),
            str(cost),
        )
        if not isinstance(raw, list) or len(raw) < 3:
            raise RuntimeError("invalid redis rate limit response")
        return RateLimitResult(
            allowed=int(raw[0]) == 1,
            limit_rpm=capacity,
            remaining=max(0, int(math.floor(max(0.0, float(raw[1]))))),
            retry_after_seconds=max(0, int(raw[2])),
        )

    def reset(self) -> None:
        self._memory.clear()
