"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .notification import Broadcaster, NotificationSink
from .presence import DriverPresenceRegistry

__all__ = ['Broadcaster', 'NotificationSink', 'DriverPresenceRegistry']
