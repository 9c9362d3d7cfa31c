"""
Collaborator factory.
Configures which notification, broadcast and presence backends to use.
"""

from typing import Optional

from rental_engine.core.config import get_settings
from rental_engine.infrastructure.redis_client import get_redis
from rental_engine.services.interfaces import Broadcaster, DriverPresenceRegistry, NotificationSink
from rental_engine.services.notification_service import (
    LogBroadcaster,
    LogNotificationSink,
    RedisBroadcaster,
    RedisNotificationSink,
)
from rental_engine.services.outbox import Outbox
from rental_engine.services.presence_service import InMemoryPresenceRegistry, RedisPresenceRegistry

settings = get_settings()

# Singletons, built once at startup (or lazily on first use)
_outbox: Optional[Outbox] = None
_presence: Optional[DriverPresenceRegistry] = None


async def build_collaborators() -> tuple[Outbox, DriverPresenceRegistry]:
    """
    Select backends based on Redis availability:
    - Redis reachable: Redis sink, pub/sub broadcaster, shared presence set
    - Otherwise: log-only sink/broadcaster and an in-process presence registry
    """
    global _outbox, _presence

    client = await get_redis()
    sink: NotificationSink
    broadcaster: Broadcaster
    if client is not None:
        sink = RedisNotificationSink(client)
        broadcaster = RedisBroadcaster(client)
        _presence = RedisPresenceRegistry(client)
    else:
        sink = LogNotificationSink()
        broadcaster = LogBroadcaster()
        _presence = InMemoryPresenceRegistry()

    _outbox = Outbox(sink, broadcaster, maxsize=settings.OUTBOX_QUEUE_SIZE)
    return _outbox, _presence


def get_outbox() -> Outbox:
    global _outbox
    if _outbox is None:
        _outbox = Outbox(LogNotificationSink(), LogBroadcaster(), maxsize=settings.OUTBOX_QUEUE_SIZE)
    return _outbox


def get_presence() -> DriverPresenceRegistry:
    global _presence
    if _presence is None:
        _presence = InMemoryPresenceRegistry()
    return _presence
