"""
Booking lifecycle endpoints: creation, driver attachment, cancellation,
status changes, check-in / check-out and payment session registration.
"""

from fastapi import APIRouter, Depends, Query, status

from rental_engine.api.deps import get_presence_registry, get_uow
from rental_engine.core.security import get_current_user_id
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.schemas.booking import (
    AttachDriverRequest,
    BookingCreate,
    BookingResponse,
    BookingUpdate,
    CancelRequest,
    CheckInRequest,
    CheckOutRequest,
    CheckOutResponse,
    PaymentSessionRequest,
    SettlementResponse,
    StatusChangeRequest,
)
from rental_engine.services import booking_service, rental_service
from rental_engine.services.interfaces import DriverPresenceRegistry

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
    presence: DriverPresenceRegistry = Depends(get_presence_registry),
):
    """
    Create a booking.

    The driver, booking and first history entry are written in one
    transaction; nothing persists if any step fails.
    """
    return await booking_service.create_booking(
        uow,
        user_id=user_id,
        vehicle_id=booking_data.vehicle_id,
        pickup_date=booking_data.pickup_date,
        return_date=booking_data.return_date,
        pickup_location=booking_data.pickup_location,
        return_location=booking_data.return_location,
        driver_id=booking_data.driver_id,
        license_file_url=booking_data.license_file_url,
        insurance_file_url=booking_data.insurance_file_url,
        driver_name=booking_data.driver_name,
        request_driver=booking_data.request_driver,
        presence=presence,
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Get the authenticated user's bookings, newest first."""
    return await booking_service.list_user_bookings(uow, user_id, limit=limit, offset=offset)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    return await booking_service.get_booking(uow, booking_id)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: str,
    update_data: BookingUpdate,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Reschedule or relocate a booking before it is confirmed; a new window is re-priced."""
    return await booking_service.update_booking(
        uow,
        booking_id,
        user_id,
        pickup_date=update_data.pickup_date,
        return_date=update_data.return_date,
        pickup_location=update_data.pickup_location,
        return_location=update_data.return_location,
    )


@router.post("/{booking_id}/driver", response_model=BookingResponse)
async def attach_driver(
    booking_id: str,
    driver_data: AttachDriverRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Supply a driver for a booking waiting on a license."""
    return await booking_service.attach_driver(
        uow,
        booking_id,
        user_id,
        driver_id=driver_data.driver_id,
        license_file_url=driver_data.license_file_url,
        insurance_file_url=driver_data.insurance_file_url,
        driver_name=driver_data.driver_name,
    )


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(
    booking_id: str,
    cancel_data: CancelRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    return await booking_service.cancel_booking(uow, booking_id, actor=user_id, reason=cancel_data.reason)


@router.post("/{booking_id}/status", response_model=BookingResponse)
async def change_status(
    booking_id: str,
    status_data: StatusChangeRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Manual status change (e.g. no-show), validated against the transition table."""
    return await booking_service.change_status(
        uow, booking_id, status_data.status, actor=user_id, note=status_data.note
    )


@router.post("/{booking_id}/payment-session", response_model=BookingResponse)
async def attach_payment_session(
    booking_id: str,
    payment_data: PaymentSessionRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    return await booking_service.attach_payment_session(uow, booking_id, payment_data.session_id)


@router.post("/{booking_id}/check-in", response_model=BookingResponse)
async def check_in(
    booking_id: str,
    check_in_data: CheckInRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Hand the vehicle over: confirmed -> active."""
    return await rental_service.check_in(
        uow,
        booking_id,
        odometer=check_in_data.odometer,
        fuel_level=check_in_data.fuel_level,
        actor=user_id,
        notes=check_in_data.notes,
        images=check_in_data.images,
    )


@router.post("/{booking_id}/check-out", response_model=CheckOutResponse)
async def check_out(
    booking_id: str,
    check_out_data: CheckOutRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Take the vehicle back and settle mileage, fuel and cleaning charges."""
    booking, breakdown = await rental_service.check_out(
        uow,
        booking_id,
        odometer=check_out_data.odometer,
        fuel_level=check_out_data.fuel_level,
        actor=user_id,
        notes=check_out_data.notes,
        images=check_out_data.images,
        damage_notes=check_out_data.damage_notes,
        cleaning_required=check_out_data.cleaning_required,
    )
    return CheckOutResponse(
        booking=BookingResponse.model_validate(booking),
        settlement=SettlementResponse.model_validate(breakdown),
    )
