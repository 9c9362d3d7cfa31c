"""
Driver assignment race resolver.

CONCURRENCY STRATEGY: Compare-and-swap on the booking version
=============================================================

Problem:
  A driver request is broadcast to every eligible online driver. Several may
  accept within milliseconds of each other. Each accept handler reads the
  booking, sees `driver_assigned = false`, and would happily assign itself.
  Result: two drivers believe they own the same trip.

Solution:
  The accept runs in a unit of work that re-reads the booking at transaction
  time (SELECT ... FOR UPDATE where supported). The guard

    driver_assigned = false AND driver_request_status = 'pending'

  is evaluated against that fresh row, and the write goes out as

    UPDATE bookings SET ..., version = version + 1 WHERE id = :id AND version = :seen

  Exactly one concurrent writer matches. The others fail with StaleDataError,
  the unit of work re-runs them from the top, they observe the winner's
  committed row and fail with AlreadyAssigned. Losers are not retried beyond
  that: AlreadyAssigned is terminal.

  Winner selection is whoever commits first. There is no FIFO fairness.

Expiry:
  A request is open while requested_at + DRIVER_REQUEST_WINDOW_SECONDS > now.
  Every reader applies the same predicate; the scheduled sweep persists the
  expired status for requests nobody touched.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.core.clock import ensure_utc, utcnow
from rental_engine.core.config import get_settings
from rental_engine.core.exceptions import (
    AlreadyAssigned,
    DriverNotEligible,
    DriverNotFound,
    RequestExpired,
)
from rental_engine.core.logging import bind_booking_context, get_logger
from rental_engine.core.metrics import driver_requests_expired, record_assignment_attempt
from rental_engine.db.unit_of_work import Transaction, UnitOfWork
from rental_engine.domain import state_machine
from rental_engine.models.booking import Booking
from rental_engine.models.driver import Driver
from rental_engine.models.enums import BookingStatus, DriverRequestStatus
from rental_engine.services.booking_service import booking_payload, close_offers, load_booking

logger = get_logger(__name__)
settings = get_settings()


def request_window() -> timedelta:
    return timedelta(seconds=settings.DRIVER_REQUEST_WINDOW_SECONDS)


def is_request_expired(booking: Booking, now: datetime) -> bool:
    requested_at = ensure_utc(booking.requested_at)
    return requested_at is not None and requested_at + request_window() <= now


async def _load_driver(session: AsyncSession, driver_id: str, user_id: Optional[str]) -> Driver:
    """The driver record, scoped to the acting account when one is given."""
    driver = await session.get(Driver, driver_id)
    if driver is None or (user_id is not None and driver.user_id != user_id):
        raise DriverNotFound(driver_id=driver_id)
    return driver


def _expire(tx: Transaction, booking: Booking) -> None:
    booking.driver_request_status = DriverRequestStatus.EXPIRED
    close_offers(tx, booking, reason="expired")
    tx.notify("driver_request_expired", booking.user_id, booking_payload(booking))


async def accept_request(
    uow: UnitOfWork,
    booking_id: str,
    driver_id: str,
    now: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> Booking:
    """
    Claim an open driver request.

    When user_id is given the driver must belong to that account.

    Raises:
        BookingNotFound, DriverNotFound, DriverNotEligible
        AlreadyAssigned: another driver won, or the request is closed
        RequestExpired: the request window elapsed (the expiry is persisted)
    """
    bind_booking_context(booking_id, driver_id=driver_id)

    async def work(tx: Transaction) -> Optional[Booking]:
        at = ensure_utc(now) or utcnow()
        booking = await load_booking(tx.session, booking_id)

        driver = await _load_driver(tx.session, driver_id, user_id)
        if not driver.can_accept_requests:
            raise DriverNotEligible(driver_id=driver_id)

        # Guard evaluated against the row as of this transaction
        if booking.driver_assigned or booking.driver_request_status != DriverRequestStatus.PENDING:
            raise AlreadyAssigned(booking_id=booking_id)

        if is_request_expired(booking, at):
            # Persist the expiry, then report it once the commit succeeded
            _expire(tx, booking)
            return None

        booking.driver_assigned = True
        booking.driver_request_status = DriverRequestStatus.ACCEPTED
        booking.accepted_driver_id = driver.id
        state_machine.transition(
            booking, BookingStatus.PENDING_PAYMENT, actor=driver.id, note="Driver accepted booking request", at=at
        )
        driver.last_accepted_booking_id = booking.id

        payload = booking_payload(booking)
        payload["driver_id"] = driver.id
        payload["driver_name"] = driver.name
        tx.publish(f"driver:{driver.id}", "driver:accepted", payload)
        close_offers(tx, booking, reason="assigned", exclude=driver.id)
        tx.publish(f"user:{booking.user_id}", "booking:assigned", payload)
        tx.notify("driver_assigned", booking.user_id, payload)
        return booking

    try:
        booking = await uow.run(work, name="accept_request")
    except AlreadyAssigned:
        record_assignment_attempt("already_assigned")
        logger.info("driver_assignment_lost")
        raise
    except (DriverNotFound, DriverNotEligible):
        record_assignment_attempt("rejected")
        raise

    if booking is None:
        record_assignment_attempt("expired")
        driver_requests_expired.inc()
        logger.info("driver_request_expired")
        raise RequestExpired(booking_id=booking_id)

    record_assignment_attempt("won")
    logger.info("driver_assignment_won", status=booking.status.value)
    return booking


async def list_open_requests(uow: UnitOfWork, now: Optional[datetime] = None) -> list[Booking]:
    """Pending, unassigned requests still inside the window, oldest first."""
    at = ensure_utc(now) or utcnow()
    cutoff = at - request_window()

    async def work(session: AsyncSession) -> list[Booking]:
        result = await session.execute(
            select(Booking)
            .where(
                Booking.driver_request_status == DriverRequestStatus.PENDING,
                Booking.driver_assigned.is_(False),
                Booking.requested_at > cutoff,
            )
            .order_by(Booking.requested_at)
        )
        return [b for b in result.scalars().all() if not is_request_expired(b, at)]

    return await uow.read(work)


async def decline_request(
    uow: UnitOfWork, booking_id: str, driver_id: str, user_id: Optional[str] = None
) -> Booking:
    """A driver passing on a request. Acknowledged and logged; the booking is untouched."""

    async def work(session: AsyncSession) -> Booking:
        booking = await load_booking(session, booking_id, for_update=False)
        await _load_driver(session, driver_id, user_id)
        return booking

    booking = await uow.read(work)
    record_assignment_attempt("declined")
    logger.info("driver_request_declined", booking_id=booking_id, driver_id=driver_id)
    return booking


async def expire_stale_requests(uow: UnitOfWork, now: Optional[datetime] = None) -> int:
    """Persist `expired` on every pending request whose window has elapsed."""
    at = ensure_utc(now) or utcnow()
    cutoff = at - request_window()

    async def work(tx: Transaction) -> int:
        result = await tx.session.execute(
            select(Booking)
            .where(
                Booking.driver_request_status == DriverRequestStatus.PENDING,
                Booking.driver_assigned.is_(False),
                Booking.requested_at <= cutoff,
            )
            .with_for_update()
        )
        stale = list(result.scalars().all())
        for booking in stale:
            _expire(tx, booking)
        return len(stale)

    expired = await uow.run(work, name="expire_stale_requests")
    if expired:
        driver_requests_expired.inc(expired)
        logger.info("driver_requests_expired", count=expired)
    return expired
