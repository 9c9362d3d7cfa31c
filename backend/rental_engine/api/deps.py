"""
FastAPI dependencies shared by the route modules.
Tests override these to point the API at a test database and fake collaborators.
"""

from rental_engine.db.session import AsyncSessionLocal
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.services.interfaces import DriverPresenceRegistry
from rental_engine.services.strategy_factory import get_outbox, get_presence


def get_uow() -> UnitOfWork:
    return UnitOfWork(AsyncSessionLocal, get_outbox())


def get_presence_registry() -> DriverPresenceRegistry:
    return get_presence()
