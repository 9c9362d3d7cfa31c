"""
Tests for driver document review and its effect on waiting bookings.
"""

from datetime import timedelta

import pytest

from rental_engine.core.clock import utcnow
from rental_engine.core.exceptions import DriverNotFound
from rental_engine.models.enums import BookingStatus, DriverStatus
from rental_engine.services import booking_service, driver_service


async def booking_with_new_driver(uow, renter, vehicle):
    pickup = utcnow() + timedelta(days=1)
    return await booking_service.create_booking(
        uow,
        user_id=renter.id,
        vehicle_id=vehicle.id,
        pickup_date=pickup,
        return_date=pickup + timedelta(days=2),
        pickup_location="Depot",
        license_file_url="https://files.example.com/l.pdf",
        insurance_file_url="https://files.example.com/i.pdf",
    )


@pytest.mark.asyncio
async def test_verifying_both_documents_unblocks_booking(uow, renter, vehicle, sink):
    booking = await booking_with_new_driver(uow, renter, vehicle)
    assert booking.status == BookingStatus.VERIFICATION_PENDING

    driver, moved = await driver_service.verify_driver_documents(
        uow, booking.driver_id, license_verified=True, insurance_verified=True, actor="admin-1"
    )

    assert driver.verified is True
    assert driver.status == DriverStatus.VERIFIED
    assert driver.license_verified_at is not None
    assert moved == [booking.id]

    booking = await booking_service.get_booking(uow, booking.id)
    assert booking.status == BookingStatus.PENDING_PAYMENT
    assert booking.status_history[-1].changed_by == "admin-1"
    assert "driver_verified" in sink.kinds(renter.id)


@pytest.mark.asyncio
async def test_one_document_is_not_enough(uow, renter, vehicle):
    booking = await booking_with_new_driver(uow, renter, vehicle)

    driver, moved = await driver_service.verify_driver_documents(
        uow, booking.driver_id, license_verified=True, insurance_verified=None, actor="admin-1"
    )

    assert driver.verified is False
    assert driver.license_verified is True
    assert moved == []
    booking = await booking_service.get_booking(uow, booking.id)
    assert booking.status == BookingStatus.VERIFICATION_PENDING

    # The second review completes verification
    driver, moved = await driver_service.verify_driver_documents(
        uow, booking.driver_id, license_verified=None, insurance_verified=True, actor="admin-1"
    )
    assert driver.verified is True
    assert moved == [booking.id]


@pytest.mark.asyncio
async def test_rejection_sends_booking_back_for_documents(uow, renter, vehicle, verified_driver, sink):
    booking = await booking_with_new_driver(uow, renter, vehicle)

    driver, moved = await driver_service.verify_driver_documents(
        uow, booking.driver_id, license_verified=False, insurance_verified=True, actor="admin-1"
    )

    assert driver.status == DriverStatus.REJECTED
    assert driver.verified is False
    assert moved == [booking.id]
    assert "driver_rejected" in sink.kinds(renter.id)

    booking = await booking_service.get_booking(uow, booking.id)
    assert booking.status == BookingStatus.LICENSE_REQUIRED

    # The renter can now supply another driver
    booking = await booking_service.attach_driver(uow, booking.id, renter.id, driver_id=verified_driver.id)
    assert booking.status == BookingStatus.PENDING_PAYMENT


@pytest.mark.asyncio
async def test_unknown_driver(uow):
    with pytest.raises(DriverNotFound):
        await driver_service.verify_driver_documents(
            uow, "missing", license_verified=True, insurance_verified=True, actor="admin-1"
        )
