# ruff: noqa: PLW0603
"""Redis connection management.

The async Redis client backs the comment cache, the rate-limit and abuse
counters, and pub/sub delivery of notifications.
"""

import redis.asyncio as redis

from src.config import get_settings
from src.core.logging import get_logger


logger = get_logger(__name__)

_redis_client: redis.Redis | None = None


async def init_redis() -> redis.Redis:
    """Initialize the Redis connection pool and verify it with a ping."""
    global _redis_client

    settings = get_settings()

    _redis_client = redis.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        socket_connect_timeout=settings.redis_socket_connect_timeout,
        retry_on_timeout=settings.redis_retry_on_timeout,
        health_check_interval=settings.redis_health_check_interval,
        decode_responses=True,
    )

    try:
        await _redis_client.ping()
        logger.info("redis_connected", url=settings.redis_url)
    except (redis.ConnectionError, redis.TimeoutError) as e:
        logger.warning("redis_connection_failed", url=settings.redis_url, error=str(e))
        await _redis_client.aclose()
        _redis_client = None
        raise

    return _redis_client


async def shutdown_redis() -> None:
    """Close the Redis connection."""
    global _redis_client

    if _redis_client:
        await _redis_client.aclose()
        logger.info("redis_disconnected")
        _redis_client = None


def notification_channel(user_id: str) -> str:
    """Get the user-specific notification channel name."""
    return f"notifications:user:{user_id}"
