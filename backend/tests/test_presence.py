"""
Tests for driver presence registries and the Redis-backed delivery channels.
"""

import json
import time
from unittest.mock import AsyncMock

import pytest

from rental_engine.services.notification_service import RedisBroadcaster, RedisNotificationSink
from rental_engine.services.presence_service import (
    PRESENCE_KEY,
    InMemoryPresenceRegistry,
    RedisPresenceRegistry,
)


@pytest.mark.asyncio
async def test_online_then_offline():
    registry = InMemoryPresenceRegistry(ttl_seconds=60)
    await registry.mark_online("d1")
    await registry.mark_online("d2")
    await registry.mark_offline("d1")
    await registry.mark_offline("never-online")

    assert await registry.online_drivers() == {"d2"}


@pytest.mark.asyncio
async def test_stale_heartbeat_is_not_online():
    registry = InMemoryPresenceRegistry(ttl_seconds=60)
    await registry.mark_online("fresh")
    await registry.mark_online("stale", seen_at=time.time() - 120)

    assert await registry.online_drivers() == {"fresh"}


@pytest.mark.asyncio
async def test_sweep_removes_stale_entries():
    registry = InMemoryPresenceRegistry(ttl_seconds=60)
    now = time.time()
    await registry.mark_online("fresh", seen_at=now)
    await registry.mark_online("stale", seen_at=now - 61)

    assert await registry.sweep(now=now) == 1
    assert await registry.sweep(now=now) == 0

    # Coming back online after a sweep works as usual
    await registry.mark_online("stale")
    assert await registry.online_drivers() == {"fresh", "stale"}


@pytest.mark.asyncio
async def test_redis_registry_uses_sorted_set():
    client = AsyncMock()
    client.zrangebyscore.return_value = ["d1", "d2"]
    client.zremrangebyscore.return_value = 3
    client.zcard.return_value = 2
    registry = RedisPresenceRegistry(client, ttl_seconds=60)

    await registry.mark_online("d1", seen_at=1000.0)
    client.zadd.assert_awaited_once_with(PRESENCE_KEY, {"d1": 1000.0})

    await registry.mark_offline("d1")
    client.zrem.assert_awaited_once_with(PRESENCE_KEY, "d1")

    assert await registry.online_drivers() == {"d1", "d2"}
    assert await registry.sweep(now=1000.0) == 3
    client.zremrangebyscore.assert_awaited_once_with(PRESENCE_KEY, "-inf", "(940.0")


@pytest.mark.asyncio
async def test_redis_sink_pushes_json_envelope():
    client = AsyncMock()
    sink = RedisNotificationSink(client)

    await sink.notify("booking_created", "user-1", {"booking_id": "b1"})

    key, raw = client.lpush.await_args.args
    assert key == "notifications:user-1"
    message = json.loads(raw)
    assert message["kind"] == "booking_created"
    assert message["recipient"] == "user-1"
    assert message["payload"] == {"booking_id": "b1"}
    assert "sent_at" in message


@pytest.mark.asyncio
async def test_redis_broadcaster_publishes_to_topic():
    client = AsyncMock()
    client.publish.return_value = 1
    broadcaster = RedisBroadcaster(client)

    await broadcaster.publish("driver:d1", "driver:request", {"booking_id": "b1"})

    topic, raw = client.publish.await_args.args
    assert topic == "driver:d1"
    assert json.loads(raw)["event"] == "driver:request"
