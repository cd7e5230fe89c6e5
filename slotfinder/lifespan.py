"""Process lifespan management.

Builds the long-lived resources in startup order (adaptor, shared state,
rate limiter) and releases them at exit, after background tasks finish.
"""

import asyncio
import logging
from dataclasses import dataclass, field

import redis.asyncio as redis
from redis.asyncio import BlockingConnectionPool as RedisConnectionPool

from slotfinder.adaptors import Adaptor, create_adaptor
from slotfinder.config import Settings
from slotfinder.ratelimit import RateLimiter, build_rate_limiter
from slotfinder.state import SharedState

logger = logging.getLogger(__name__)


@dataclass
class LifespanResources:
    """Container for resources initialized at startup."""

    adaptor: Adaptor | None = None
    shared: SharedState | None = None
    redis_client: redis.Redis | None = None
    limiter: RateLimiter | None = None
    background_tasks: list[asyncio.Task] = field(default_factory=list)


async def init_redis(settings: Settings) -> redis.Redis:
    """Initialize Redis connection with connection pool.

    Returns:
        Configured Redis client.
    """
    redis_pool = RedisConnectionPool(
        host=settings.redis.host,
        port=settings.redis.port,
        password=settings.redis.password if settings.redis.password else None,
        max_connections=settings.redis.max_connections,
    )
    return redis.Redis(connection_pool=redis_pool, decode_responses=True)


async def setup_resources(settings: Settings) -> LifespanResources:
    """Set up all shared resources.

    Args:
        settings: Loaded service settings.

    Returns:
        LifespanResources containing all initialized resources.
    """
    resources = LifespanResources()

    resources.adaptor = await create_adaptor(settings)
    resources.shared = SharedState(resources.adaptor)

    if settings.rate_limit.enabled:
        if settings.rate_limit.backend == "redis":
            resources.redis_client = await init_redis(settings)
        resources.limiter = build_rate_limiter(settings.rate_limit, resources.redis_client)

    return resources


async def cleanup_resources(resources: LifespanResources) -> None:
    """Release resources once background tasks have stopped.

    Background tasks are awaited without a timeout; they are expected to
    exit on their own once shutdown has been signalled.
    """
    if resources.background_tasks:
        results = await asyncio.gather(*resources.background_tasks, return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException) and not isinstance(result, asyncio.CancelledError):
                logger.error("Background task failed: %r", result)
        resources.background_tasks.clear()

    if resources.limiter:
        await resources.limiter.close()

    if resources.shared:
        await resources.shared.close()
