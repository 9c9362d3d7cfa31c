"""
Unit of work: the explicit transactional boundary.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Independent request handlers read a booking (or vehicle, or user), decide,
  and write. Two drivers accepting the same request, or two check-outs
  touching the same renter, can both read the same state and both write.

Solution:
  Booking, Vehicle and User carry a `version` column registered as the mapper's
  version_id_col. Every ORM UPDATE becomes

    UPDATE ... SET ..., version = version + 1 WHERE id = :id AND version = :seen

  If another transaction committed first, zero rows match and SQLAlchemy
  raises StaleDataError. The whole unit of work is then rolled back and run
  again from the top with a fresh session, so every precondition is
  re-validated against the latest committed state. On the re-run the loser of
  an assignment race sees `driver_assigned = true` and fails with a terminal
  AlreadyAssigned instead of retrying forever.

  Services additionally read with SELECT ... FOR UPDATE, which serializes
  writers on PostgreSQL before they ever reach the version check. SQLite
  ignores the clause and relies on the version check alone.

Bounded retries:
  Only transient storage failures are retried (stale version, serialization
  failure, deadlock, locked database, dropped connection). Domain errors
  propagate immediately. After TX_MAX_ATTEMPTS the caller gets
  TransactionConflict.

Side effects:
  Work functions receive a Transaction. Notifications and broadcasts recorded
  on it are released to the Outbox only after commit.
"""

import asyncio
import random
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from rental_engine.core.config import get_settings
from rental_engine.core.exceptions import TransactionConflict
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import record_db_operation
from rental_engine.services.outbox import Broadcast, Notification, Outbox, OutboxMessage

logger = get_logger(__name__)
settings = get_settings()

T = TypeVar("T")

# SQLSTATE serialization_failure / deadlock_detected
RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_transient(exc: BaseException) -> bool:
    if isinstance(exc, StaleDataError):
        return True
    if isinstance(exc, DBAPIError):
        if exc.connection_invalidated:
            return True
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in RETRYABLE_SQLSTATES:
            return True
        if "database is locked" in str(orig):
            return True
    return False


class Transaction:
    """Handle passed to a unit-of-work attempt: the session plus buffered side effects."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.messages: list[OutboxMessage] = []

    def notify(self, kind: str, recipient, payload: Optional[dict] = None) -> None:
        self.messages.append(Notification(kind, str(recipient), payload or {}))

    def publish(self, topic: str, event: str, payload: Optional[dict] = None) -> None:
        self.messages.append(Broadcast(topic, event, payload or {}))


class UnitOfWork:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        outbox: Outbox,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
    ):
        self.session_factory = session_factory
        self.outbox = outbox
        self.max_attempts = max_attempts or settings.TX_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.TX_RETRY_BACKOFF_SECONDS if backoff_seconds is None else backoff_seconds
        )

    async def run(self, work: Callable[[Transaction], Awaitable[T]], name: str = "unit_of_work") -> T:
        """
        Run `work` atomically, retrying the whole attempt on transient conflicts.
        Returns whatever `work` returns; side effects are released after commit.
        """
        for attempt in range(1, self.max_attempts + 1):
            async with self.session_factory() as session:
                tx = Transaction(session)
                try:
                    async with session.begin():
                        result = await work(tx)
                except Exception as exc:
                    if not is_transient(exc):
                        raise
                    record_db_operation("retry")
                    logger.info(
                        "transaction_retry",
                        operation=name,
                        attempt=attempt,
                        reason=type(exc).__name__,
                    )
                    if attempt == self.max_attempts:
                        raise TransactionConflict(operation=name) from exc
                    # Jittered exponential backoff spreads out colliding writers
                    await asyncio.sleep(
                        self.backoff_seconds * (2 ** (attempt - 1)) + random.uniform(0, self.backoff_seconds)
                    )
                    continue

            record_db_operation("write")
            await self.outbox.enqueue_all(tx.messages)
            return result

        # Should not reach here, but just in case
        raise TransactionConflict(operation=name)

    async def read(self, work: Callable[[AsyncSession], Awaitable[T]]) -> T:
        """Run a read-only query in its own session."""
        record_db_operation("read")
        async with self.session_factory() as session:
            return await work(session)
