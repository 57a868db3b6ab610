import logging

from redis.asyncio import Redis, RedisError

from user_index.core.config import Settings

logger = logging.getLogger(__name__)


def create_redis(settings: Settings) -> Redis:
    return Redis.from_url(
        settings.redis_dsn,
        encoding="utf-8",
        decode_responses=True,
        max_connections=settings.redis_pool_size,
        socket_connect_timeout=5,
        socket_keepalive=True,
        health_check_interval=30,
    )


async def connect_redis(settings: Settings) -> Redis:
    """
    Build the shared client and verify it with a PING.

    A failed PING is logged but the client is still returned: redis-py
    reconnects on the next command, and every consumer already handles
    RedisError on its own terms.
    """
    redis = create_redis(settings)
    try:
        await redis.ping()
        logger.info("Redis connection established")
    except RedisError as e:
        logger.error(f"Redis unreachable at startup, continuing degraded: {e}")
    return redis


async def close_redis(redis: Redis) -> None:
    try:
        await redis.aclose()
        logger.info("Redis connection closed")
    except RedisError as e:
        logger.error(f"Error closing Redis: {e}")
