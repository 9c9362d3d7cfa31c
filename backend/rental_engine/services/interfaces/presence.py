"""
Driver presence registry interface.
"""

from abc import ABC, abstractmethod
from typing import Optional


class DriverPresenceRegistry(ABC):
    """
    Tracks which drivers are online and able to receive requests.

    Implementations:
    - InMemoryPresenceRegistry: single process, guarded by an asyncio.Lock
    - RedisPresenceRegistry: sorted set keyed by driver id, shared by every
      service instance and surviving restarts
    """

    @abstractmethod
    async def mark_online(self, driver_id: str, seen_at: Optional[float] = None) -> None:
        """Insert or refresh a driver's heartbeat."""
        pass

    @abstractmethod
    async def mark_offline(self, driver_id: str) -> None:
        """Remove a driver."""
        pass

    @abstractmethod
    async def online_drivers(self) -> set[str]:
        """Ids of drivers whose heartbeat is within the presence TTL."""
        pass

    @abstractmethod
    async def sweep(self, now: Optional[float] = None) -> int:
        """
        Drop drivers whose heartbeat is older than the presence TTL.

        Returns:
            Number of drivers removed
        """
        pass
