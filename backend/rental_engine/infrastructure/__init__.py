"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .redis_client import RedisClient, close_redis, get_redis, redis_health

__all__ = ['RedisClient', 'close_redis', 'get_redis', 'redis_health']
