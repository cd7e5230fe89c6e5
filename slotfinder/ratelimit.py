"""Request throttling.

Two concerns live here:

- Key extraction: how a request is mapped to a client identity. The
  header-trusting strategy is only safe behind a reverse proxy, so it is
  chosen explicitly from configuration at startup.
- Limiting: a token bucket (burst of ``burst`` requests, one request regained
  every ``replenish_ms``) kept in memory, or a fixed window kept in Redis.
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

import redis.asyncio as redis
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from slotfinder.config import RateLimitSettings, ServerSettings
from slotfinder.errors import ErrorResponse, TooManyRequestsError

logger = logging.getLogger("slotfinder.ratelimit")


class KeyExtractor(ABC):
    name: str = "abstract"

    @abstractmethod
    def extract(self, request: Request) -> str | None:
        """Return the client identity, or None if it cannot be determined."""
        raise NotImplementedError


class PeerAddressKey(KeyExtractor):
    """Use the connecting peer's address."""

    name = "peer"

    def extract(self, request: Request) -> str | None:
        if request.client and request.client.host:
            return request.client.host
        return None


def _host_only(value: str) -> str:
    """Drop quotes, IPv6 brackets and any port from a forwarded address."""
    value = value.strip().strip('"')
    if value.startswith("["):
        host, sep, _ = value[1:].partition("]")
        return host if sep else value
    if value.count(":") == 1:
        return value.partition(":")[0]
    return value


class ForwardedHeaderKey(KeyExtractor):
    """Trust proxy headers, falling back to the peer address.

    Checked in order: the first ``X-Forwarded-For`` entry, ``X-Real-IP``,
    then the ``for=`` parameter of ``Forwarded``. Ports are dropped so one
    client cannot rotate identities by varying its source port.
    """

    name = "forwarded"

    def extract(self, request: Request) -> str | None:
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            first = _host_only(forwarded_for.split(",")[0])
            if first:
                return first
        real_ip = _host_only(request.headers.get("x-real-ip", ""))
        if real_ip:
            return real_ip
        forwarded = request.headers.get("forwarded")
        if forwarded:
            for element in forwarded.split(","):
                for pair in element.split(";"):
                    key, _, value = pair.strip().partition("=")
                    if key.lower() == "for" and value:
                        return _host_only(value)
        return PeerAddressKey().extract(request)


def select_key_extractor(settings: ServerSettings) -> KeyExtractor:
    """Trust forwarded headers only behind a proxy or on a unix socket."""
    if settings.behind_proxy or settings.is_unix_socket:
        extractor: KeyExtractor = ForwardedHeaderKey()
    else:
        extractor = PeerAddressKey()
    logger.info(
        "Rate limit key strategy: %s (behind_proxy=%s, unix_socket=%s)",
        extractor.name,
        settings.behind_proxy,
        settings.is_unix_socket,
    )
    return extractor


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after_seconds: int | None = None


class RateLimiter(ABC):
    @abstractmethod
    async def consume(self, key: str) -> RateLimitResult:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class InMemoryTokenBucket(RateLimiter):
    """Per-process token bucket.

    Each key starts with ``burst`` tokens and regains one every
    ``replenish_seconds``. Once per full refill period, buckets that have
    refilled completely are dropped, since a missing key already means a full
    bucket. This bounds memory to the keys seen in the last period.
    """

    def __init__(
        self,
        *,
        burst: int,
        replenish_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if burst < 1:
            raise ValueError("burst must be >= 1")
        if replenish_seconds <= 0:
            raise ValueError("replenish_seconds must be > 0")
        self._burst = burst
        self._replenish = replenish_seconds
        self._clock = clock
        # key -> (tokens, last refill time)
        self._buckets: dict[str, tuple[float, float]] = {}
        self._refill_period = burst * replenish_seconds
        self._last_sweep = clock()

    def _sweep(self, now: float) -> None:
        before = len(self._buckets)
        self._buckets = {
            key: (tokens, last)
            for key, (tokens, last) in self._buckets.items()
            if tokens + (now - last) / self._replenish < self._burst
        }
        self._last_sweep = now
        if before != len(self._buckets):
            logger.debug("Dropped %d idle rate limit buckets", before - len(self._buckets))

    async def consume(self, key: str) -> RateLimitResult:
        now = self._clock()
        if now - self._last_sweep >= self._refill_period:
            self._sweep(now)
        tokens, last = self._buckets.get(key, (float(self._burst), now))
        tokens = min(float(self._burst), tokens + (now - last) / self._replenish)
        if tokens >= 1:
            tokens -= 1
            self._buckets[key] = (tokens, now)
            return RateLimitResult(allowed=True, remaining=int(tokens))
        self._buckets[key] = (tokens, now)
        retry_after = max(1, math.ceil((1 - tokens) * self._replenish))
        return RateLimitResult(allowed=False, remaining=0, retry_after_seconds=retry_after)


class RedisFixedWindowLimiter(RateLimiter):
    """Fixed-window counter in Redis.

    The window is sized so that a full window allows ``burst`` requests and
    refills at the same average rate as the token bucket.
    """

    def __init__(
        self,
        client: redis.Redis,
        *,
        burst: int,
        replenish_seconds: float,
        prefix: str = "slotfinder:ratelimit:",
    ) -> None:
        self._client = client
        self._limit = burst
        self._window = max(1, math.ceil(burst * replenish_seconds))
        self._prefix = prefix

    async def consume(self, key: str) -> RateLimitResult:
        window_start = int(time.time() // self._window) * self._window
        redis_key = f"{self._prefix}{key}:{window_start}"
        pipe = self._client.pipeline()
        pipe.incr(redis_key)
        pipe.expire(redis_key, self._window)
        count, _ = await pipe.execute()
        count = int(count)
        if count <= self._limit:
            return RateLimitResult(allowed=True, remaining=self._limit - count)
        retry_after = max(1, window_start + self._window - int(time.time()))
        return RateLimitResult(allowed=False, remaining=0, retry_after_seconds=retry_after)

    async def close(self) -> None:
        aclose = getattr(self._client, "aclose", None)
        if callable(aclose):
            await aclose()


def build_rate_limiter(settings: RateLimitSettings, redis_client: redis.Redis | None = None) -> RateLimiter:
    replenish_seconds = settings.replenish_ms / 1000
    if settings.backend == "redis":
        if redis_client is None:
            raise ValueError("RATE_LIMIT_BACKEND=redis requires a Redis client")
        return RedisFixedWindowLimiter(redis_client, burst=settings.burst, replenish_seconds=replenish_seconds)
    return InMemoryTokenBucket(burst=settings.burst, replenish_seconds=replenish_seconds)


class RateLimitMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, limiter: RateLimiter, key_extractor: KeyExtractor):
        super().__init__(app)
        self._limiter = limiter
        self._key_extractor = key_extractor

    async def dispatch(self, request: Request, call_next):
        key = self._key_extractor.extract(request)
        if key is None:
            logger.error("Unable to extract rate limit key for path=%s", request.url.path)
            return JSONResponse(
                status_code=500,
                content=ErrorResponse(
                    error="internal_error",
                    detail="Unable to determine client address",
                ).model_dump(exclude_none=True),
            )

        result = await self._limiter.consume(key)
        if not result.allowed:
            logger.warning("Rate limit exceeded key=%s path=%s", key, request.url.path)
            error = TooManyRequestsError()
            return JSONResponse(
                status_code=error.status_code,
                content=error.to_response().model_dump(exclude_none=True),
                headers={"Retry-After": str(result.retry_after_seconds or 1)},
            )
        return await call_next(request)
