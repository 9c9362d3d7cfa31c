"""
Notification sinks and real-time broadcasters.

Redis-backed implementations:
  - notifications are LPUSHed as JSON onto "notifications:{recipient}" lists;
    the email/SMS worker BRPOPs them and renders templates (out of scope here)
  - broadcasts are PUBLISHed as JSON on the topic channel; the websocket
    gateway relays them to connected clients

Log-only implementations are used when Redis is disabled. Exceptions are not
caught here: the Outbox records and logs delivery failures.
"""

import json

import redis.asyncio as redis

from rental_engine.core.clock import utcnow
from rental_engine.core.logging import get_logger
from rental_engine.services.interfaces import Broadcaster, NotificationSink

logger = get_logger(__name__)

NOTIFICATION_KEY_PREFIX = "notifications:"


def _envelope(**fields) -> str:
    fields["sent_at"] = utcnow().isoformat()
    return json.dumps(fields, default=str)


class LogNotificationSink(NotificationSink):
    async def notify(self, kind: str, recipient: str, payload: dict) -> None:
        logger.info("notification", kind=kind, recipient=recipient, payload=payload)


class LogBroadcaster(Broadcaster):
    async def publish(self, topic: str, event: str, payload: dict) -> None:
        logger.info("broadcast", topic=topic, broadcast_event=event, payload=payload)


class RedisNotificationSink(NotificationSink):
    def __init__(self, client: redis.Redis):
        self.redis = client

    async def notify(self, kind: str, recipient: str, payload: dict) -> None:
        key = f"{NOTIFICATION_KEY_PREFIX}{recipient}"
        await self.redis.lpush(key, _envelope(kind=kind, recipient=recipient, payload=payload))
        logger.debug("notification_queued", key=key, kind=kind)


class RedisBroadcaster(Broadcaster):
    def __init__(self, client: redis.Redis):
        self.redis = client

    async def publish(self, topic: str, event: str, payload: dict) -> None:
        receivers = await self.redis.publish(topic, _envelope(event=event, payload=payload))
        logger.debug("broadcast_published", topic=topic, broadcast_event=event, receivers=receivers)
