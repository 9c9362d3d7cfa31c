"""
Driver-facing endpoints: presence heartbeat, open requests and the accept race,
plus the administrative document review.
"""

from fastapi import APIRouter, Depends

from rental_engine.api.deps import get_presence_registry, get_uow
from rental_engine.core.clock import ensure_utc
from rental_engine.core.security import get_current_user_id
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.schemas.driver import (
    AcceptResponse,
    DriverRequestResponse,
    DriverResponse,
    PresenceResponse,
    VerificationRequest,
    VerificationResponse,
)
from rental_engine.services import assignment_service, driver_service
from rental_engine.services.interfaces import DriverPresenceRegistry

router = APIRouter(prefix="/drivers", tags=["Drivers"])


@router.post("/{driver_id}/online", response_model=PresenceResponse)
async def go_online(
    driver_id: str,
    user_id: str = Depends(get_current_user_id),
    presence: DriverPresenceRegistry = Depends(get_presence_registry),
):
    """Heartbeat: call periodically while the driver app is open."""
    await presence.mark_online(driver_id)
    return PresenceResponse(driver_id=driver_id, online=True)


@router.post("/{driver_id}/offline", response_model=PresenceResponse)
async def go_offline(
    driver_id: str,
    user_id: str = Depends(get_current_user_id),
    presence: DriverPresenceRegistry = Depends(get_presence_registry),
):
    await presence.mark_offline(driver_id)
    return PresenceResponse(driver_id=driver_id, online=False)


@router.get("/requests", response_model=list[DriverRequestResponse])
async def list_open_requests(
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Open driver requests, oldest first. Expired requests are never listed."""
    bookings = await assignment_service.list_open_requests(uow)
    window = assignment_service.request_window()
    return [
        DriverRequestResponse(
            booking_id=b.id,
            vehicle_id=b.vehicle_id,
            pickup_date=ensure_utc(b.pickup_date),
            return_date=ensure_utc(b.return_date),
            pickup_location=b.pickup_location,
            requested_at=ensure_utc(b.requested_at),
            expires_at=ensure_utc(b.requested_at) + window,
        )
        for b in bookings
    ]


@router.post("/{driver_id}/requests/{booking_id}/accept", response_model=AcceptResponse)
async def accept_request(
    driver_id: str,
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """
    Accept a booking request.

    At most one driver wins; everyone else receives 409 already_assigned.
    """
    booking = await assignment_service.accept_request(uow, booking_id, driver_id, user_id=user_id)
    return AcceptResponse(booking_id=booking.id, driver_id=driver_id, status=booking.status.value)


@router.post("/{driver_id}/requests/{booking_id}/decline", response_model=AcceptResponse)
async def decline_request(
    driver_id: str,
    booking_id: str,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    booking = await assignment_service.decline_request(uow, booking_id, driver_id, user_id=user_id)
    return AcceptResponse(booking_id=booking.id, driver_id=driver_id, status=booking.status.value)


@router.post("/{driver_id}/verification", response_model=VerificationResponse)
async def verify_documents(
    driver_id: str,
    review: VerificationRequest,
    user_id: str = Depends(get_current_user_id),
    uow: UnitOfWork = Depends(get_uow),
):
    """Record the review of a driver's license and insurance."""
    driver, moved = await driver_service.verify_driver_documents(
        uow,
        driver_id,
        license_verified=review.license_verified,
        insurance_verified=review.insurance_verified,
        actor=user_id,
    )
    return VerificationResponse(driver=DriverResponse.model_validate(driver), bookings_moved=moved)
