"""
Check-in / check-out handlers.

Each handler is one unit of work that moves the booking, the vehicle, the
rental session and (at check-out) the renter together:

  check-in   confirmed -> active
             snapshot written, vehicle rented, rental session opened
  check-out  active | in_progress | overdue -> completed
             snapshot and settlement written, vehicle available again,
             rental session closed, renter statistics and loyalty updated

Odometer readings never go backwards: check-in must not be below the
vehicle's current reading, check-out must not be below the check-in reading.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select

from rental_engine.core.clock import ensure_utc, utcnow
from rental_engine.core.config import get_settings
from rental_engine.core.exceptions import (
    InvalidBookingState,
    InvalidOdometerReading,
    OdometerRegression,
    PickupNotYetDue,
    UserNotFound,
    VehicleNotFound,
)
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import settlement_additional_charges
from rental_engine.db.base import new_id
from rental_engine.db.unit_of_work import Transaction, UnitOfWork
from rental_engine.domain import state_machine
from rental_engine.domain.loyalty import record_completed_rental
from rental_engine.domain.pricing import to_money
from rental_engine.domain.settlement import (
    CleaningChargePolicy,
    RentalTerms,
    SettlementBreakdown,
    SettlementInputs,
    calculate_settlement,
    validate_fuel_level,
)
from rental_engine.models.booking import Booking
from rental_engine.models.enums import BookingStatus, RentalSessionStatus, VehicleStatus
from rental_engine.models.rental_session import RentalSession
from rental_engine.models.user import User
from rental_engine.models.vehicle import Vehicle
from rental_engine.services.booking_service import booking_payload, load_booking

logger = get_logger(__name__)
settings = get_settings()

CHECK_OUT_STATES = frozenset({BookingStatus.ACTIVE, BookingStatus.IN_PROGRESS, BookingStatus.OVERDUE})
OVERDUE_CANDIDATE_STATES = (BookingStatus.ACTIVE, BookingStatus.IN_PROGRESS)


async def _load_vehicle(tx: Transaction, vehicle_id: str) -> Vehicle:
    vehicle = await tx.session.get(Vehicle, vehicle_id, with_for_update=True)
    if vehicle is None:
        raise VehicleNotFound(vehicle_id=vehicle_id)
    return vehicle


async def check_in(
    uow: UnitOfWork,
    booking_id: str,
    odometer: int,
    fuel_level: int,
    actor: str,
    notes: Optional[str] = None,
    images: Optional[list[str]] = None,
    now: Optional[datetime] = None,
) -> Booking:
    """
    Hand the vehicle over to the renter.

    Raises:
        BookingNotFound, InvalidBookingState, PickupNotYetDue,
        InvalidFuelLevel, OdometerRegression
    """

    async def work(tx: Transaction) -> Booking:
        at = ensure_utc(now) or utcnow()
        booking = await load_booking(tx.session, booking_id)

        if booking.status != BookingStatus.CONFIRMED:
            raise InvalidBookingState(
                "Only confirmed bookings can be checked in",
                booking_id=booking_id,
                status=booking.status.value,
            )
        if at.date() < ensure_utc(booking.pickup_date).date():
            raise PickupNotYetDue(booking_id=booking_id, pickup_date=ensure_utc(booking.pickup_date))
        validate_fuel_level(fuel_level)

        vehicle = await _load_vehicle(tx, booking.vehicle_id)
        if odometer < vehicle.current_odometer:
            raise OdometerRegression(
                vehicle_id=vehicle.id, odometer=odometer, current_odometer=vehicle.current_odometer
            )

        booking.checked_in_at = at
        booking.checked_in_by = actor
        booking.check_in_odometer = odometer
        booking.check_in_fuel_level = fuel_level
        booking.check_in_notes = notes
        booking.check_in_images = list(images or [])
        booking.actual_pickup_at = at
        state_machine.transition(booking, BookingStatus.ACTIVE, actor=actor, note="Vehicle checked in", at=at)

        vehicle.status = VehicleStatus.RENTED
        vehicle.current_odometer = odometer
        vehicle.current_fuel_level = fuel_level

        tx.session.add(
            RentalSession(
                id=new_id(),
                booking_id=booking.id,
                vehicle_id=vehicle.id,
                user_id=booking.user_id,
                started_at=at,
                start_odometer=odometer,
                start_fuel_level=fuel_level,
                pickup_location=booking.pickup_location,
                status=RentalSessionStatus.ACTIVE,
            )
        )

        payload = booking_payload(booking)
        payload["odometer"] = odometer
        payload["fuel_level"] = fuel_level
        tx.notify("booking_checked_in", booking.user_id, payload)
        tx.publish(f"user:{booking.user_id}", "booking:active", payload)
        return booking

    booking = await uow.run(work, name="check_in")
    logger.info("booking_checked_in", booking_id=booking_id, odometer=odometer, fuel_level=fuel_level, actor=actor)
    return booking


async def check_out(
    uow: UnitOfWork,
    booking_id: str,
    odometer: int,
    fuel_level: int,
    actor: str,
    notes: Optional[str] = None,
    images: Optional[list[str]] = None,
    damage_notes: Optional[str] = None,
    cleaning_required: bool = False,
    now: Optional[datetime] = None,
) -> tuple[Booking, SettlementBreakdown]:
    """
    Take the vehicle back and settle the rental.

    Returns the completed booking and the settlement breakdown.

    Raises:
        BookingNotFound, InvalidBookingState, InvalidOdometerReading,
        InvalidFuelLevel
    """
    policy = CleaningChargePolicy(settings.CLEANING_CHARGE_POLICY)

    async def work(tx: Transaction) -> tuple[Booking, SettlementBreakdown]:
        at = ensure_utc(now) or utcnow()
        booking = await load_booking(tx.session, booking_id)

        if booking.status not in CHECK_OUT_STATES:
            raise InvalidBookingState(
                "Only active bookings can be checked out",
                booking_id=booking_id,
                status=booking.status.value,
            )
        if booking.check_in_odometer is not None and odometer < booking.check_in_odometer:
            raise InvalidOdometerReading(
                booking_id=booking_id, odometer=odometer, check_in_odometer=booking.check_in_odometer
            )

        vehicle = await _load_vehicle(tx, booking.vehicle_id)

        breakdown = calculate_settlement(
            SettlementInputs(
                start_odometer=booking.check_in_odometer,
                end_odometer=odometer,
                check_in_fuel_level=booking.check_in_fuel_level,
                check_out_fuel_level=fuel_level,
                fuel_tank_capacity=vehicle.fuel_tank_capacity,
                cleaning_required=cleaning_required,
                fuel_rate_per_unit=settings.FUEL_RATE_PER_UNIT,
                terms=RentalTerms(
                    allowed_mileage=booking.allowed_mileage,
                    mileage_rate=booking.mileage_rate,
                    cleaning_fee=booking.cleaning_fee,
                ),
            ),
            total_price=booking.total_price,
            policy=policy,
        )

        booking.checked_out_at = at
        booking.checked_out_by = actor
        booking.check_out_odometer = odometer
        booking.check_out_fuel_level = fuel_level
        booking.check_out_notes = notes
        booking.check_out_images = list(images or [])
        booking.damage_notes = damage_notes
        booking.cleaning_required = cleaning_required
        booking.actual_return_at = at

        booking.total_mileage = breakdown.mileage_used
        booking.mileage_charge = breakdown.mileage_charge
        booking.fuel_charge = breakdown.fuel_charge
        booking.cleaning_charge = breakdown.cleaning_charge
        # Charges added earlier (damage, extras) are kept
        booking.additional_charges = to_money((booking.additional_charges or 0) + breakdown.total_additional)
        booking.total_charges = to_money(booking.total_price + booking.additional_charges)
        state_machine.transition(booking, BookingStatus.COMPLETED, actor=actor, note="Vehicle checked out", at=at)

        vehicle.status = VehicleStatus.AVAILABLE
        vehicle.current_odometer = odometer
        vehicle.current_fuel_level = fuel_level

        result = await tx.session.execute(
            select(RentalSession).where(RentalSession.booking_id == booking.id)
        )
        rental_session = result.scalar_one_or_none()
        if rental_session is not None:
            rental_session.ended_at = at
            rental_session.end_odometer = odometer
            rental_session.end_fuel_level = fuel_level
            rental_session.dropoff_location = booking.return_location or booking.pickup_location
            rental_session.status = RentalSessionStatus.COMPLETED

        user = await tx.session.get(User, booking.user_id, with_for_update=True)
        if user is None:
            raise UserNotFound(user_id=booking.user_id)
        record_completed_rental(user, at, settings.LOYALTY_POINTS_PER_RENTAL)

        payload = booking_payload(booking)
        payload["settlement"] = breakdown.as_dict()
        payload["total_charges"] = str(booking.total_charges)
        payload["loyalty_tier"] = user.loyalty_tier.value
        tx.notify("booking_completed", booking.user_id, payload)
        tx.publish(f"user:{booking.user_id}", "booking:completed", payload)
        return booking, breakdown

    booking, breakdown = await uow.run(work, name="check_out")

    settlement_additional_charges.observe(float(breakdown.total_additional))
    logger.info(
        "booking_checked_out",
        booking_id=booking_id,
        odometer=odometer,
        mileage_used=breakdown.mileage_used,
        additional_charges=str(breakdown.total_additional),
        total_charges=str(booking.total_charges),
        actor=actor,
    )
    return booking, breakdown


async def mark_overdue_bookings(uow: UnitOfWork, now: Optional[datetime] = None) -> int:
    """Move rentals still out past their return date to `overdue`."""
    at = ensure_utc(now) or utcnow()

    async def work(tx: Transaction) -> int:
        result = await tx.session.execute(
            select(Booking)
            .where(Booking.status.in_(OVERDUE_CANDIDATE_STATES), Booking.return_date < at)
            .with_for_update()
        )
        overdue = list(result.scalars().all())
        for booking in overdue:
            state_machine.transition(booking, BookingStatus.OVERDUE, actor="system", note="Return date passed", at=at)
            tx.notify("booking_overdue", booking.user_id, booking_payload(booking))
        return len(overdue)

    count = await uow.run(work, name="mark_overdue_bookings")
    if count:
        logger.info("bookings_marked_overdue", count=count)
    return count
