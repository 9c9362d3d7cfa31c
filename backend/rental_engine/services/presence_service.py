"""
Driver presence registries.

Replaces a module-level dict of online drivers, which was neither safe under
concurrent handlers nor shared between service instances.

Both implementations store a heartbeat timestamp per driver. A driver counts
as online while its heartbeat is younger than DRIVER_PRESENCE_TTL_SECONDS;
sweep() physically removes stale entries.
"""

import asyncio
import time
from typing import Optional

import redis.asyncio as redis

from rental_engine.core.config import get_settings
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import online_drivers as online_drivers_gauge
from rental_engine.services.interfaces import DriverPresenceRegistry

logger = get_logger(__name__)
settings = get_settings()

PRESENCE_KEY = "drivers:online"


class InMemoryPresenceRegistry(DriverPresenceRegistry):
    """Single-process registry guarded by an asyncio.Lock."""

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl = ttl_seconds or settings.DRIVER_PRESENCE_TTL_SECONDS
        self._last_seen: dict[str, float] = {}
        self._lock = asyncio.Lock()

    async def mark_online(self, driver_id: str, seen_at: Optional[float] = None) -> None:
        async with self._lock:
            self._last_seen[driver_id] = seen_at if seen_at is not None else time.time()
            online_drivers_gauge.set(len(self._last_seen))

    async def mark_offline(self, driver_id: str) -> None:
        async with self._lock:
            self._last_seen.pop(driver_id, None)
            online_drivers_gauge.set(len(self._last_seen))

    async def online_drivers(self) -> set[str]:
        cutoff = time.time() - self.ttl
        async with self._lock:
            return {driver_id for driver_id, seen in self._last_seen.items() if seen >= cutoff}

    async def sweep(self, now: Optional[float] = None) -> int:
        cutoff = (now if now is not None else time.time()) - self.ttl
        async with self._lock:
            stale = [driver_id for driver_id, seen in self._last_seen.items() if seen < cutoff]
            for driver_id in stale:
                del self._last_seen[driver_id]
            online_drivers_gauge.set(len(self._last_seen))
        return len(stale)


class RedisPresenceRegistry(DriverPresenceRegistry):
    """
    Sorted set "drivers:online": member = driver id, score = last heartbeat
    (unix seconds). Shared by every instance; survives process restarts.
    """

    def __init__(self, client: redis.Redis, ttl_seconds: Optional[int] = None):
        self.redis = client
        self.ttl = ttl_seconds or settings.DRIVER_PRESENCE_TTL_SECONDS

    async def mark_online(self, driver_id: str, seen_at: Optional[float] = None) -> None:
        await self.redis.zadd(PRESENCE_KEY, {driver_id: seen_at if seen_at is not None else time.time()})

    async def mark_offline(self, driver_id: str) -> None:
        await self.redis.zrem(PRESENCE_KEY, driver_id)

    async def online_drivers(self) -> set[str]:
        cutoff = time.time() - self.ttl
        members = await self.redis.zrangebyscore(PRESENCE_KEY, cutoff, "+inf")
        return set(members)

    async def sweep(self, now: Optional[float] = None) -> int:
        cutoff = (now if now is not None else time.time()) - self.ttl
        # Exclusive upper bound: a heartbeat exactly at the cutoff is still online
        removed = await self.redis.zremrangebyscore(PRESENCE_KEY, "-inf", f"({cutoff}")
        online_drivers_gauge.set(await self.redis.zcard(PRESENCE_KEY))
        if removed:
            logger.info("presence_swept", removed=removed)
        return removed
