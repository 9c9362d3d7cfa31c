"""
Booking service: transactional booking creation and lifecycle operations.

ATOMICITY
=========

Creation touches several rows: an optional new driver record, the booking,
its first status-history entry and, when a professional driver is requested,
one offer per eligible online driver. All of it runs in a single unit of work:

  1. quote the rental from the vehicle's daily price
  2. resolve the renter's driver (existing, new from documents, or none)
  3. derive the initial status
  4. insert the booking (+ history, + offers)

Any failure after step 1 rolls the whole attempt back: no orphan driver
record, no booking, and no notification (side effects are only released by
the unit of work after commit).
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from rental_engine.core.clock import ensure_utc, utcnow
from rental_engine.core.config import get_settings
from rental_engine.core.exceptions import (
    BookingNotFound,
    DriverNotFound,
    InvalidBookingState,
    MissingDriverDocuments,
    UserNotFound,
    VehicleNotFound,
    VehicleUnavailable,
)
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import bookings_created
from rental_engine.db.base import new_id
from rental_engine.db.unit_of_work import Transaction, UnitOfWork
from rental_engine.domain import state_machine
from rental_engine.domain.pricing import Quote, quote
from rental_engine.models.booking import Booking, DriverRequestOffer
from rental_engine.models.driver import Driver
from rental_engine.models.enums import (
    BookingStatus,
    DriverRequestStatus,
    DriverStatus,
    DriverType,
    VehicleStatus,
)
from rental_engine.models.user import User
from rental_engine.models.vehicle import Vehicle
from rental_engine.services.interfaces import DriverPresenceRegistry

logger = get_logger(__name__)
settings = get_settings()

ADMIN_RECIPIENT = "admins"

# Statuses only reachable through their dedicated handlers (check-in, check-out, payment)
HANDLER_OWNED_STATUSES = frozenset({BookingStatus.ACTIVE, BookingStatus.COMPLETED, BookingStatus.CONFIRMED})

# A manual change into these statuses is only accepted from the listed source,
# so the rental has been checked in first
MANUAL_SOURCE_STATES = {BookingStatus.IN_PROGRESS: BookingStatus.ACTIVE}

# The renter may still reschedule or relocate before payment confirms the booking
EDITABLE_STATES = frozenset({
    BookingStatus.PENDING,
    BookingStatus.LICENSE_REQUIRED,
    BookingStatus.VERIFICATION_PENDING,
    BookingStatus.PENDING_PAYMENT,
})


def booking_payload(booking: Booking) -> dict:
    """Compact representation sent with notifications and broadcasts."""
    return {
        "booking_id": booking.id,
        "user_id": booking.user_id,
        "vehicle_id": booking.vehicle_id,
        "status": booking.status.value,
        "pickup_date": ensure_utc(booking.pickup_date).isoformat(),
        "return_date": ensure_utc(booking.return_date).isoformat(),
        "pickup_location": booking.pickup_location,
        "total_price": str(booking.total_price),
    }


def close_offers(tx: Transaction, booking: Booking, reason: str, exclude: Optional[str] = None) -> None:
    """Tell every driver the request was offered to that it is no longer open."""
    for offer in booking.offers:
        if offer.driver_id == exclude:
            continue
        tx.publish(
            f"driver:{offer.driver_id}",
            "driver:closed",
            {"booking_id": booking.id, "reason": reason},
        )


async def load_booking(session: AsyncSession, booking_id: str, for_update: bool = True) -> Booking:
    stmt = select(Booking).where(Booking.id == booking_id)
    if for_update:
        stmt = stmt.with_for_update()
    booking = (await session.execute(stmt)).scalar_one_or_none()
    if booking is None:
        raise BookingNotFound(booking_id=booking_id)
    return booking


async def _resolve_driver(
    session: AsyncSession,
    user_id: str,
    driver_id: Optional[str],
    license_file_url: Optional[str],
    insurance_file_url: Optional[str],
    driver_name: Optional[str],
) -> Optional[Driver]:
    """
    Existing driver (scoped to the renter), a new unverified rental driver
    built from both documents, or None when nothing was supplied.
    """
    if driver_id:
        result = await session.execute(
            select(Driver).where(Driver.id == driver_id, Driver.user_id == user_id)
        )
        driver = result.scalar_one_or_none()
        if driver is None:
            raise DriverNotFound(driver_id=driver_id)
        return driver

    if not license_file_url and not insurance_file_url:
        return None
    if not (license_file_url and insurance_file_url):
        raise MissingDriverDocuments(
            license_file=bool(license_file_url), insurance_file=bool(insurance_file_url)
        )

    # The newest document set becomes the renter's default driver
    await session.execute(
        update(Driver)
        .where(Driver.user_id == user_id, Driver.driver_type == DriverType.RENTAL, Driver.is_default.is_(True))
        .values(is_default=False)
    )
    driver = Driver(
        id=new_id(),
        user_id=user_id,
        name=driver_name,
        driver_type=DriverType.RENTAL,
        is_default=True,
        license_file_url=license_file_url,
        insurance_file_url=insurance_file_url,
        verified=False,
        status=DriverStatus.PENDING,
    )
    session.add(driver)
    await session.flush()
    logger.info("driver_created", driver_id=driver.id, user_id=user_id)
    return driver


def initial_status(driver: Optional[Driver], request_driver: bool) -> BookingStatus:
    if request_driver:
        return BookingStatus.PENDING
    if driver is None:
        return BookingStatus.LICENSE_REQUIRED
    if driver.verified:
        return BookingStatus.PENDING_PAYMENT
    return BookingStatus.VERIFICATION_PENDING


async def _eligible_drivers(session: AsyncSession, online_ids: set[str]) -> list[Driver]:
    if not online_ids:
        return []
    result = await session.execute(
        select(Driver)
        .where(
            Driver.id.in_(sorted(online_ids)),
            Driver.driver_type == DriverType.PROFESSIONAL,
            Driver.verified.is_(True),
            Driver.status == DriverStatus.VERIFIED,
        )
        .order_by(Driver.id)
    )
    return list(result.scalars().all())


async def _insert_booking(
    session: AsyncSession,
    *,
    user_id: str,
    vehicle_id: str,
    driver: Optional[Driver],
    pickup_date: datetime,
    return_date: datetime,
    pickup_location: str,
    return_location: Optional[str],
    price: Quote,
    status: BookingStatus,
    request_driver: bool,
    offered_driver_ids: list[str],
    now: datetime,
) -> Booking:
    booking = Booking(
        id=new_id(),
        user_id=user_id,
        vehicle_id=vehicle_id,
        driver_id=driver.id if driver else None,
        pickup_date=pickup_date,
        return_date=return_date,
        rental_days=price.rental_days,
        pickup_location=pickup_location,
        return_location=return_location or pickup_location,
        base_price=price.base_price,
        tax_amount=price.tax_amount,
        total_price=price.total_price,
        allowed_mileage=settings.DEFAULT_ALLOWED_MILEAGE,
        mileage_rate=settings.DEFAULT_MILEAGE_RATE,
        cleaning_fee=settings.DEFAULT_CLEANING_FEE,
        request_driver=request_driver,
        driver_request_status=DriverRequestStatus.PENDING if request_driver else DriverRequestStatus.NONE,
        requested_at=now if request_driver else None,
        offers=[DriverRequestOffer(driver_id=driver_id, offered_at=now) for driver_id in offered_driver_ids],
    )
    state_machine.initialize(booking, status, actor=user_id, note="Booking created", at=now)
    session.add(booking)
    await session.flush()
    return booking


async def create_booking(
    uow: UnitOfWork,
    user_id: str,
    vehicle_id: str,
    pickup_date: datetime,
    return_date: datetime,
    pickup_location: str,
    return_location: Optional[str] = None,
    driver_id: Optional[str] = None,
    license_file_url: Optional[str] = None,
    insurance_file_url: Optional[str] = None,
    driver_name: Optional[str] = None,
    request_driver: bool = False,
    presence: Optional[DriverPresenceRegistry] = None,
) -> Booking:
    """
    Create a booking atomically.

    Raises:
        UserNotFound, VehicleNotFound, VehicleUnavailable, InvalidDateRange,
        DriverNotFound, MissingDriverDocuments
    """
    pickup_date, return_date = ensure_utc(pickup_date), ensure_utc(return_date)

    # Presence lives outside the database; read it once before the transaction
    online_ids: set[str] = set()
    if request_driver and presence is not None:
        online_ids = await presence.online_drivers()

    async def work(tx: Transaction) -> Booking:
        session = tx.session
        now = utcnow()

        if await session.get(User, user_id) is None:
            raise UserNotFound(user_id=user_id)

        vehicle = await session.get(Vehicle, vehicle_id, with_for_update=True)
        if vehicle is None:
            raise VehicleNotFound(vehicle_id=vehicle_id)
        if vehicle.status != VehicleStatus.AVAILABLE:
            raise VehicleUnavailable(vehicle_id=vehicle_id, vehicle_status=vehicle.status.value)

        price = quote(pickup_date, return_date, vehicle.price_per_day, settings.TAX_RATE)

        driver = await _resolve_driver(
            session, user_id, driver_id, license_file_url, insurance_file_url, driver_name
        )
        status = initial_status(driver, request_driver)
        offered = await _eligible_drivers(session, online_ids) if request_driver else []

        booking = await _insert_booking(
            session,
            user_id=user_id,
            vehicle_id=vehicle.id,
            driver=driver,
            pickup_date=pickup_date,
            return_date=return_date,
            pickup_location=pickup_location,
            return_location=return_location,
            price=price,
            status=status,
            request_driver=request_driver,
            offered_driver_ids=[d.id for d in offered],
            now=now,
        )

        payload = booking_payload(booking)
        payload["vehicle"] = vehicle.display_name
        tx.notify("booking_created", user_id, payload)
        tx.notify("booking_created", ADMIN_RECIPIENT, payload)
        for d in offered:
            tx.publish(f"driver:{d.id}", "driver:request", payload)
        return booking

    booking = await uow.run(work, name="create_booking")

    bookings_created.labels(initial_status=booking.status.value).inc()
    logger.info(
        "booking_created",
        booking_id=booking.id,
        user_id=user_id,
        vehicle_id=vehicle_id,
        status=booking.status.value,
        total_price=str(booking.total_price),
        offered_drivers=len(booking.offers),
    )
    return booking


async def attach_driver(
    uow: UnitOfWork,
    booking_id: str,
    user_id: str,
    driver_id: Optional[str] = None,
    license_file_url: Optional[str] = None,
    insurance_file_url: Optional[str] = None,
    driver_name: Optional[str] = None,
) -> Booking:
    """Supply a driver for a booking that was created without one."""

    async def work(tx: Transaction) -> Booking:
        booking = await load_booking(tx.session, booking_id)
        if booking.user_id != user_id:
            raise BookingNotFound(booking_id=booking_id)
        if booking.status != BookingStatus.LICENSE_REQUIRED:
            raise InvalidBookingState(
                "Driver can only be attached while a license is required",
                booking_id=booking_id,
                status=booking.status.value,
            )

        driver = await _resolve_driver(
            tx.session, user_id, driver_id, license_file_url, insurance_file_url, driver_name
        )
        if driver is None:
            raise MissingDriverDocuments(booking_id=booking_id)

        booking.driver_id = driver.id
        target = BookingStatus.PENDING_PAYMENT if driver.verified else BookingStatus.VERIFICATION_PENDING
        state_machine.transition(booking, target, actor=user_id, note="Driver attached")
        tx.notify("driver_attached", user_id, booking_payload(booking))
        return booking

    booking = await uow.run(work, name="attach_driver")
    logger.info("driver_attached", booking_id=booking_id, driver_id=booking.driver_id, status=booking.status.value)
    return booking


async def update_booking(
    uow: UnitOfWork,
    booking_id: str,
    user_id: str,
    pickup_date: Optional[datetime] = None,
    return_date: Optional[datetime] = None,
    pickup_location: Optional[str] = None,
    return_location: Optional[str] = None,
) -> Booking:
    """
    Reschedule or relocate a booking that is not confirmed yet.

    A changed window is re-quoted from the vehicle's current daily price. The
    status does not change, so no history entry is written. A checkout
    session opened for the old price is dropped.

    Raises:
        BookingNotFound, InvalidBookingState, InvalidDateRange, VehicleNotFound
    """

    async def work(tx: Transaction) -> Booking:
        booking = await load_booking(tx.session, booking_id)
        if booking.user_id != user_id:
            raise BookingNotFound(booking_id=booking_id)
        if booking.status not in EDITABLE_STATES:
            raise InvalidBookingState(
                "Only bookings awaiting confirmation can be changed",
                booking_id=booking_id,
                status=booking.status.value,
            )

        new_pickup = ensure_utc(pickup_date) or ensure_utc(booking.pickup_date)
        new_return = ensure_utc(return_date) or ensure_utc(booking.return_date)

        if pickup_date is not None or return_date is not None:
            vehicle = await tx.session.get(Vehicle, booking.vehicle_id)
            if vehicle is None:
                raise VehicleNotFound(vehicle_id=booking.vehicle_id)
            price = quote(new_pickup, new_return, vehicle.price_per_day, settings.TAX_RATE)

            booking.pickup_date = new_pickup
            booking.return_date = new_return
            booking.rental_days = price.rental_days
            booking.base_price = price.base_price
            booking.tax_amount = price.tax_amount
            if price.total_price != booking.total_price:
                booking.payment_session_id = None
            booking.total_price = price.total_price

        if pickup_location:
            booking.pickup_location = pickup_location
        if return_location:
            booking.return_location = return_location

        tx.notify("booking_updated", booking.user_id, booking_payload(booking))
        return booking

    booking = await uow.run(work, name="update_booking")
    logger.info(
        "booking_updated",
        booking_id=booking_id,
        rental_days=booking.rental_days,
        total_price=str(booking.total_price),
    )
    return booking


async def cancel_booking(uow: UnitOfWork, booking_id: str, actor: str, reason: Optional[str] = None) -> Booking:
    """
    Cancel through the state machine. Cancelling an already cancelled booking
    is a no-op; an open driver request is closed and its offered drivers told.
    """

    async def work(tx: Transaction) -> Booking:
        booking = await load_booking(tx.session, booking_id)
        now = utcnow()
        if not state_machine.transition(booking, BookingStatus.CANCELLED, actor=actor, note=reason or "", at=now):
            return booking

        booking.cancellation_reason = reason
        booking.cancelled_by = actor
        booking.cancelled_at = now

        if booking.driver_request_status == DriverRequestStatus.PENDING:
            booking.driver_request_status = DriverRequestStatus.DECLINED
            close_offers(tx, booking, reason="cancelled")

        payload = booking_payload(booking)
        payload["reason"] = reason
        tx.notify("booking_cancelled", booking.user_id, payload)
        tx.publish(f"user:{booking.user_id}", "booking:cancelled", payload)
        return booking

    booking = await uow.run(work, name="cancel_booking")
    logger.info("booking_cancelled", booking_id=booking_id, actor=actor, reason=reason)
    return booking


async def change_status(
    uow: UnitOfWork, booking_id: str, target: BookingStatus, actor: str, note: str = ""
) -> Booking:
    """Administrative transition (no-show, in-progress, ...) through the legal-transition table."""
    target = BookingStatus(target)
    if target in HANDLER_OWNED_STATUSES:
        raise InvalidBookingState(
            f"Status '{target.value}' is set by its own operation, not by a manual change",
            booking_id=booking_id,
        )
    if target == BookingStatus.CANCELLED:
        return await cancel_booking(uow, booking_id, actor, reason=note or None)

    async def work(tx: Transaction) -> Booking:
        booking = await load_booking(tx.session, booking_id)
        source = MANUAL_SOURCE_STATES.get(target)
        if source is not None and booking.status not in (source, target):
            raise InvalidBookingState(
                f"Status '{target.value}' can only be set manually from '{source.value}'",
                booking_id=booking_id,
                status=booking.status.value,
            )
        if state_machine.transition(booking, target, actor=actor, note=note):
            payload = booking_payload(booking)
            tx.notify("booking_status_changed", booking.user_id, payload)
            tx.publish(f"user:{booking.user_id}", "booking:status", payload)
        return booking

    booking = await uow.run(work, name="change_status")
    logger.info("booking_status_changed", booking_id=booking_id, status=booking.status.value, actor=actor)
    return booking


async def attach_payment_session(uow: UnitOfWork, booking_id: str, session_id: str) -> Booking:
    """Record the payment gateway's checkout session key on a booking awaiting payment."""

    async def work(tx: Transaction) -> Booking:
        booking = await load_booking(tx.session, booking_id)
        if booking.status != BookingStatus.PENDING_PAYMENT:
            raise InvalidBookingState(
                "Payment can only be started for a booking awaiting payment",
                booking_id=booking_id,
                status=booking.status.value,
            )
        booking.payment_session_id = session_id
        return booking

    booking = await uow.run(work, name="attach_payment_session")
    logger.info("payment_session_attached", booking_id=booking_id, session_id=session_id)
    return booking


async def get_booking(uow: UnitOfWork, booking_id: str) -> Booking:
    async def work(session: AsyncSession) -> Booking:
        return await load_booking(session, booking_id, for_update=False)

    return await uow.read(work)


async def list_user_bookings(uow: UnitOfWork, user_id: str, limit: int = 50, offset: int = 0) -> list[Booking]:
    async def work(session: AsyncSession) -> list[Booking]:
        result = await session.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.created_at.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())

    return await uow.read(work)
