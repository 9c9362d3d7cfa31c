"""
Tests for check-in, check-out with settlement, and overdue marking.
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from rental_engine.core.clock import utcnow
from rental_engine.core.exceptions import (
    InvalidBookingState,
    InvalidFuelLevel,
    InvalidOdometerReading,
    OdometerRegression,
    PickupNotYetDue,
)
from rental_engine.models.driver import Driver
from rental_engine.models.enums import (
    BookingStatus,
    DriverStatus,
    DriverType,
    LoyaltyTier,
    RentalSessionStatus,
    VehicleStatus,
)
from rental_engine.models.rental_session import RentalSession
from rental_engine.models.user import User
from rental_engine.models.vehicle import Vehicle
from rental_engine.services import booking_service, payment_service, rental_service


async def confirm(uow, user_id, vehicle_id, driver_id, pickup):
    booking = await booking_service.create_booking(
        uow,
        user_id=user_id,
        vehicle_id=vehicle_id,
        pickup_date=pickup,
        return_date=pickup + timedelta(days=3),
        pickup_location="Downtown Depot",
        driver_id=driver_id,
    )
    await booking_service.attach_payment_session(uow, booking.id, f"cs_{booking.id}")
    booking, _ = await payment_service.complete_payment(uow, f"cs_{booking.id}")
    return booking


async def checked_in(uow, booking):
    return await rental_service.check_in(uow, booking.id, odometer=1000, fuel_level=100, actor="agent-1")


@pytest.mark.asyncio
async def test_check_in_starts_rental(uow, session_factory, confirmed_booking, sink):
    booking = await rental_service.check_in(
        uow, confirmed_booking.id, odometer=1000, fuel_level=100, actor="agent-1",
        notes="Small scratch on rear bumper", images=["front.jpg", "rear.jpg"],
    )

    assert booking.status == BookingStatus.ACTIVE
    assert booking.check_in_odometer == 1000
    assert booking.check_in_fuel_level == 100
    assert booking.checked_in_by == "agent-1"
    assert booking.check_in_images == ["front.jpg", "rear.jpg"]
    assert booking.actual_pickup_at is not None

    async with session_factory() as session:
        vehicle = await session.get(Vehicle, booking.vehicle_id)
        rental = (
            await session.execute(select(RentalSession).where(RentalSession.booking_id == booking.id))
        ).scalar_one()
    assert vehicle.status == VehicleStatus.RENTED
    assert rental.status == RentalSessionStatus.ACTIVE
    assert rental.start_odometer == 1000
    assert "booking_checked_in" in sink.kinds(booking.user_id)


@pytest.mark.asyncio
async def test_check_in_requires_confirmed_booking(uow, renter, vehicle, verified_driver):
    pickup = utcnow() - timedelta(hours=1)
    booking = await booking_service.create_booking(
        uow, user_id=renter.id, vehicle_id=vehicle.id, pickup_date=pickup,
        return_date=pickup + timedelta(days=1), pickup_location="Depot", driver_id=verified_driver.id,
    )
    assert booking.status == BookingStatus.PENDING_PAYMENT

    with pytest.raises(InvalidBookingState):
        await checked_in(uow, booking)


@pytest.mark.asyncio
async def test_check_in_before_pickup_day(uow, renter, vehicle, verified_driver):
    booking = await confirm(uow, renter.id, vehicle.id, verified_driver.id, utcnow() + timedelta(days=3))

    with pytest.raises(PickupNotYetDue):
        await checked_in(uow, booking)

    booking = await booking_service.get_booking(uow, booking.id)
    assert booking.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_check_in_rejects_odometer_below_vehicle(uow, confirmed_booking):
    with pytest.raises(OdometerRegression):
        await rental_service.check_in(uow, confirmed_booking.id, odometer=999, fuel_level=100, actor="agent-1")


@pytest.mark.asyncio
async def test_check_in_rejects_fuel_out_of_range(uow, confirmed_booking):
    with pytest.raises(InvalidFuelLevel):
        await rental_service.check_in(uow, confirmed_booking.id, odometer=1000, fuel_level=150, actor="agent-1")


@pytest.mark.asyncio
async def test_check_out_settles_rental(uow, session_factory, confirmed_booking, sink):
    await checked_in(uow, confirmed_booking)

    booking, breakdown = await rental_service.check_out(
        uow, confirmed_booking.id, odometer=1250, fuel_level=80, actor="agent-2", cleaning_required=False
    )

    assert booking.status == BookingStatus.COMPLETED
    assert breakdown.total_additional == Decimal("137.20")
    assert booking.total_mileage == 250
    assert booking.mileage_charge == Decimal("25.00")
    assert booking.fuel_charge == Decimal("37.20")
    assert booking.cleaning_charge == Decimal("75.00")
    assert booking.additional_charges == Decimal("137.20")
    assert booking.total_charges == Decimal("461.20")
    assert [h.status for h in booking.status_history][-2:] == [BookingStatus.ACTIVE, BookingStatus.COMPLETED]

    async with session_factory() as session:
        vehicle = await session.get(Vehicle, booking.vehicle_id)
        user = await session.get(User, booking.user_id)
        rental = (
            await session.execute(select(RentalSession).where(RentalSession.booking_id == booking.id))
        ).scalar_one()
    assert vehicle.status == VehicleStatus.AVAILABLE
    assert vehicle.current_odometer == 1250
    assert vehicle.current_fuel_level == 80
    assert user.total_rentals == 1
    assert user.loyalty_points == 10
    assert user.loyalty_tier == LoyaltyTier.BRONZE
    assert user.first_rental_at is not None
    assert rental.status == RentalSessionStatus.COMPLETED
    assert rental.end_odometer == 1250
    assert "booking_completed" in sink.kinds(booking.user_id)


@pytest.mark.asyncio
async def test_check_out_odometer_below_check_in_changes_nothing(uow, session_factory, confirmed_booking):
    await checked_in(uow, confirmed_booking)

    with pytest.raises(InvalidOdometerReading):
        await rental_service.check_out(uow, confirmed_booking.id, odometer=900, fuel_level=80, actor="agent-2")

    booking = await booking_service.get_booking(uow, confirmed_booking.id)
    assert booking.status == BookingStatus.ACTIVE
    async with session_factory() as session:
        vehicle = await session.get(Vehicle, booking.vehicle_id)
        user = await session.get(User, booking.user_id)
    assert vehicle.status == VehicleStatus.RENTED
    assert user.total_rentals == 0


@pytest.mark.asyncio
async def test_second_check_out_rejected(uow, session_factory, confirmed_booking):
    await checked_in(uow, confirmed_booking)
    await rental_service.check_out(uow, confirmed_booking.id, odometer=1100, fuel_level=100, actor="agent-2")

    with pytest.raises(InvalidBookingState):
        await rental_service.check_out(uow, confirmed_booking.id, odometer=1200, fuel_level=100, actor="agent-2")

    async with session_factory() as session:
        user = await session.get(User, confirmed_booking.user_id)
    assert user.total_rentals == 1


@pytest.mark.asyncio
async def test_fifth_rental_promotes_to_silver(uow, session_factory, loyal_renter, vehicle):
    async with session_factory() as session:
        driver = Driver(
            user_id=loyal_renter.id,
            driver_type=DriverType.RENTAL,
            license_verified=True,
            insurance_verified=True,
            verified=True,
            status=DriverStatus.VERIFIED,
        )
        session.add(driver)
        await session.commit()

    booking = await confirm(uow, loyal_renter.id, vehicle.id, driver.id, utcnow() - timedelta(hours=2))
    await checked_in(uow, booking)
    await rental_service.check_out(uow, booking.id, odometer=1100, fuel_level=100, actor="agent-2")

    async with session_factory() as session:
        user = await session.get(User, loyal_renter.id)
    assert user.total_rentals == 5
    assert user.loyalty_points == 50
    assert user.loyalty_tier == LoyaltyTier.SILVER


@pytest.mark.asyncio
async def test_overdue_rental_can_still_be_checked_out(uow, confirmed_booking, sink):
    await checked_in(uow, confirmed_booking)
    later = utcnow() + timedelta(days=4)

    assert await rental_service.mark_overdue_bookings(uow, now=later) == 1
    assert await rental_service.mark_overdue_bookings(uow, now=later) == 0

    booking = await booking_service.get_booking(uow, confirmed_booking.id)
    assert booking.status == BookingStatus.OVERDUE
    assert booking.status_history[-1].changed_by == "system"
    assert "booking_overdue" in sink.kinds(booking.user_id)

    booking, _ = await rental_service.check_out(
        uow, booking.id, odometer=1300, fuel_level=100, actor="agent-2", now=later
    )
    assert booking.status == BookingStatus.COMPLETED


@pytest.mark.asyncio
async def test_rentals_within_return_date_are_not_overdue(uow, confirmed_booking):
    await checked_in(uow, confirmed_booking)
    assert await rental_service.mark_overdue_bookings(uow) == 0
