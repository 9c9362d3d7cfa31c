"""
Side-effect collaborator interfaces.
Allows swapping delivery backends without changing lifecycle logic.
"""

from abc import ABC, abstractmethod


class NotificationSink(ABC):
    """
    Interface for user-facing notifications (email/SMS/in-app).

    Implementations:
    - LogNotificationSink: structured log only (development, Redis disabled)
    - RedisNotificationSink: push onto a per-recipient Redis list consumed by
      the delivery worker
    """

    @abstractmethod
    async def notify(self, kind: str, recipient: str, payload: dict) -> None:
        """
        Deliver a notification.

        Args:
            kind: Notification type, e.g. "booking_created"
            recipient: User id, or "admins" for the administrators channel
            payload: JSON-serializable body
        """
        pass


class Broadcaster(ABC):
    """
    Interface for real-time events pushed to connected clients.

    Delivery is at-least-once with no cross-topic ordering guarantee.
    """

    @abstractmethod
    async def publish(self, topic: str, event: str, payload: dict) -> None:
        """
        Publish an event.

        Args:
            topic: "drivers", "driver:{id}" or "user:{id}"
            event: Event name, e.g. "driver:closed"
            payload: JSON-serializable body
        """
        pass
