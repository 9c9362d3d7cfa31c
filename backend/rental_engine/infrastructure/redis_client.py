"""
Redis client for notification queues, pub/sub broadcast and driver presence.
Separated from business logic for clean architecture.

Redis is advisory for the booking engine: when it is disabled or unreachable
get_redis() returns None and callers fall back to their log-only / in-memory
implementations. The database remains authoritative for booking state.
"""

from typing import Optional

import redis.asyncio as redis

from rental_engine.core.config import get_settings
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()


class RedisClient:
    """Process-wide async Redis client with connection pooling."""

    _instance: Optional[redis.Redis] = None

    @classmethod
    async def get_client(cls) -> Optional[redis.Redis]:
        if not settings.REDIS_ENABLED:
            return None

        if cls._instance is None:
            try:
                client = redis.from_url(
                    settings.REDIS_URL,
                    encoding="utf-8",
                    decode_responses=True,
                    socket_connect_timeout=5,
                    socket_timeout=5,
                    retry_on_timeout=True,
                    health_check_interval=30,
                )
                # Test connection
                await client.ping()
                cls._instance = client
                logger.info("redis_connected", url=settings.REDIS_URL)
            except Exception as e:
                redis_connection_errors.inc()
                logger.error("redis_connection_failed", error=str(e))
                return None

        return cls._instance

    @classmethod
    async def close(cls) -> None:
        if cls._instance is not None:
            await cls._instance.aclose()
            cls._instance = None


# Convenience functions
async def get_redis() -> Optional[redis.Redis]:
    return await RedisClient.get_client()


async def close_redis() -> None:
    await RedisClient.close()


async def redis_health() -> dict:
    client = await get_redis()
    if not client:
        return {"status": "disabled"}
    try:
        await client.ping()
        return {"status": "connected"}
    except Exception as e:
        return {"status": "error", "error": str(e)}
