"""
Token bucket rate limiter.

Buckets live in Redis and are updated by a single Lua script, so concurrent
checks against one key are serialised by the server. Without Redis (or when
it is unreachable) the same algorithm runs against a per-process dict; that
fallback is not shared between server instances and never evicts buckets.
"""
import asyncio
import hashlib
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional, Tuple

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

INTERNAL_TOKEN_HEADER = "x-decksy-internal-token"
MIN_BUCKET_TTL_MS = 1000

LUA_TOKEN_BUCKET = """
local key = KEYS[1]
local capacity = tonumber(ARGV[1])
local interval = tonumber(ARGV[2])
local refill = tonumber(ARGV[3])
local now = tonumber(ARGV[4])
local min_ttl = tonumber(ARGV[5])

local bucket = redis.call("HMGET", key, "tokens", "updatedAt")
local tokens = tonumber(bucket[1])
local updatedAt = tonumber(bucket[2])

if tokens == nil then
  tokens = capacity
  updatedAt = now
end

local rate = refill / interval

if now > updatedAt then
  if rate > 0 then
    tokens = math.min(capacity, tokens + ((now - updatedAt) * rate))
  end
  updatedAt = now
end

local allowed = 0
local retryAfter = 0
local resetIn = 0

if tokens >= 1 then
  tokens = tokens - 1
  allowed = 1
end

if rate > 0 then
  resetIn = math.ceil((capacity - tokens) / rate)
  if allowed == 0 then
    retryAfter = math.ceil((1 - tokens) / rate)
  end
else
  resetIn = interval
  if allowed == 0 then
    retryAfter = interval
  end
end

redis.call("HSET", key, "tokens", tostring(tokens), "updatedAt", tostring(updatedAt))
redis.call("PEXPIRE", key, math.max(interval, min_ttl))

return {allowed, math.floor(tokens), retryAfter, resetIn}
"""


@dataclass(frozen=True)
class RateLimitState:
    ok: bool
    remaining: int
    limit: int
    retry_after_ms: Optional[int]
    reset_in_ms: int
    bypassed: bool = False


@dataclass
class _Bucket:
    tokens: float
    updated_at: float


def hash_identifier(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def bucket_key(resource: str, identifier: str) -> str:
    return f"rate:{resource}:{hash_identifier(identifier)}"


def resolve_identifier(headers: Mapping[str, str], explicit: Optional[str] = None) -> str:
    """
    Client identifier for a request.

    Order: explicit value, first X-Forwarded-For entry, X-Real-IP,
    User-Agent, "unknown".
    """
    if explicit:
        return explicit

    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = headers.get("x-real-ip")
    if real_ip:
        return real_ip

    return headers.get("user-agent") or "unknown"


def is_internal_request(headers: Mapping[str, str], internal_token: Optional[str]) -> bool:
    if not internal_token:
        return False
    return headers.get(INTERNAL_TOKEN_HEADER) == internal_token


def rate_limit_headers(state: RateLimitState) -> Dict[str, str]:
    """Standard rate limit response headers (seconds, rounded up)"""
    headers = {
        "X-RateLimit-Limit": str(state.limit),
        "X-RateLimit-Remaining": str(state.remaining),
        "X-RateLimit-Reset": str(math.ceil(state.reset_in_ms / 1000)),
    }
    if state.retry_after_ms and state.retry_after_ms > 0:
        headers["Retry-After"] = str(math.ceil(state.retry_after_ms / 1000))
    if state.bypassed:
        headers["X-RateLimit-Bypass"] = "internal"
    return headers


def _now_ms() -> float:
    return time.time() * 1000


class TokenBucketLimiter:
    """Rate limiter keyed by resource + client identifier"""

    def __init__(self, redis: Optional[Redis] = None, clock: Optional[Callable[[], float]] = None):
        self.redis = redis
        self.clock = clock or _now_ms
        self._buckets: Dict[str, _Bucket] = {}
        self._lock = asyncio.Lock()

    @property
    def is_shared(self) -> bool:
        return self.redis is not None

    async def check(
        self,
        resource: str,
        identifier: str,
        limit: int,
        refill_interval_ms: int,
        refill_amount: Optional[int] = None,
        force_bypass: bool = False
    ) -> RateLimitState:
        """
        Take one token from the bucket for (resource, identifier).

        Never waits: a denied check returns ok=False with retry_after_ms
        and the caller decides what to do with the request.
        """
        if refill_amount is None:
            refill_amount = limit

        if force_bypass:
            return RateLimitState(
                ok=True,
                remaining=limit,
                limit=limit,
                retry_after_ms=None,
                reset_in_ms=refill_interval_ms,
                bypassed=True,
            )

        key = bucket_key(resource, identifier)

        if self.redis is not None:
            try:
                return await self._check_redis(key, limit, refill_interval_ms, refill_amount)
            except Exception as e:
                logger.warning(f"Redis rate limiter unavailable, falling back to memory store: {e}")

        return await self._check_memory(key, limit, refill_interval_ms, refill_amount)

    async def _check_redis(self, key: str, limit: int, interval_ms: int, refill_amount: int) -> RateLimitState:
        now = int(self.clock())
        allowed, tokens, retry_after, reset_in = await self.redis.eval(
            LUA_TOKEN_BUCKET, 1, key, limit, interval_ms, refill_amount, now, MIN_BUCKET_TTL_MS
        )
        retry_after = int(retry_after)
        reset_in = int(reset_in)

        return RateLimitState(
            ok=int(allowed) == 1,
            remaining=max(0, int(tokens)),
            limit=limit,
            retry_after_ms=retry_after if retry_after > 0 else None,
            reset_in_ms=reset_in if reset_in > 0 else interval_ms,
        )

    async def _check_memory(self, key: str, limit: int, interval_ms: int, refill_amount: int) -> RateLimitState:
        async with self._lock:
            now = self.clock()
            bucket = self._buckets.get(key)
            if bucket is None:
                bucket = _Bucket(tokens=float(limit), updated_at=now)
                self._buckets[key] = bucket

            allowed, retry_after, reset_in = _consume(bucket, now, limit, interval_ms, refill_amount)

            return RateLimitState(
                ok=allowed,
                remaining=max(0, math.floor(bucket.tokens)),
                limit=limit,
                retry_after_ms=retry_after,
                reset_in_ms=reset_in if reset_in > 0 else interval_ms,
            )

    def reset(self) -> None:
        self._buckets.clear()


def _consume(
    bucket: _Bucket,
    now: float,
    limit: int,
    interval_ms: int,
    refill_amount: int
) -> Tuple[bool, Optional[int], int]:
    """Refill then take a token. Same steps as LUA_TOKEN_BUCKET."""
    rate = refill_amount / interval_ms if interval_ms > 0 else 0.0

    elapsed = now - bucket.updated_at
    if elapsed > 0:
        if rate > 0:
            bucket.tokens = min(float(limit), bucket.tokens + elapsed * rate)
        bucket.updated_at = now

    allowed = bucket.tokens >= 1
    if allowed:
        bucket.tokens -= 1

    if rate > 0:
        reset_in = math.ceil((limit - bucket.tokens) / rate)
        retry_after = None if allowed else math.ceil((1 - bucket.tokens) / rate)
    else:
        reset_in = interval_ms
        retry_after = None if allowed else interval_ms

    return allowed, retry_after, reset_in
