"""
Outbox for post-commit side effects.

DELIVERY MODEL
==============

State transitions never wait on notifications. A unit of work buffers the
notifications and broadcasts it wants to send on its Transaction; only after
the transaction commits are they handed to the Outbox. A rolled-back unit of
work sends nothing.

Two modes:
  - Worker mode (application runtime): messages go onto an asyncio.Queue and a
    single background worker delivers them. enqueue() never blocks; if the
    queue is full the message is dropped and counted.
  - Inline mode (no worker started: scripts, tests): messages are delivered
    immediately after commit, still with failures swallowed and logged.

Delivery failures are logged and counted, never raised: the state change that
produced them is already committed.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import outbox_dropped, record_side_effect_failure
from rental_engine.services.interfaces import Broadcaster, NotificationSink

logger = get_logger(__name__)


@dataclass(frozen=True)
class Notification:
    kind: str
    recipient: str
    payload: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Broadcast:
    topic: str
    event: str
    payload: dict = field(default_factory=dict)


OutboxMessage = Union[Notification, Broadcast]


class Outbox:
    def __init__(self, sink: NotificationSink, broadcaster: Broadcaster, maxsize: int = 10000):
        self.sink = sink
        self.broadcaster = broadcaster
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._worker: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="outbox-worker")
        logger.info("outbox_started")

    async def stop(self) -> None:
        """Deliver what is already queued, then stop the worker."""
        if not self.running:
            return
        await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info("outbox_stopped")

    async def enqueue_all(self, messages: Iterable[OutboxMessage]) -> None:
        for message in messages:
            if not self.running:
                await self.deliver(message)
                continue
            try:
                self._queue.put_nowait(message)
            except asyncio.QueueFull:
                outbox_dropped.inc()
                logger.error("outbox_full", message=repr(message))

    async def _run(self) -> None:
        """Single worker processes side effects sequentially."""
        while True:
            message = await self._queue.get()
            try:
                await self.deliver(message)
            finally:
                self._queue.task_done()

    async def deliver(self, message: OutboxMessage) -> None:
        try:
            if isinstance(message, Notification):
                await self.sink.notify(message.kind, message.recipient, message.payload)
            else:
                await self.broadcaster.publish(message.topic, message.event, message.payload)
        except Exception as e:
            channel = "notify" if isinstance(message, Notification) else "publish"
            record_side_effect_failure(channel)
            logger.error("side_effect_failed", channel=channel, message=repr(message), error=str(e))
