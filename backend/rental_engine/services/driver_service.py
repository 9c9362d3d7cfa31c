"""
Driver document verification.

An administrator reviews a driver's license and insurance. Verification of
both documents unblocks every booking waiting on that driver; a rejection
sends those bookings back to license_required so the renter can supply new
documents.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select

from rental_engine.core.clock import ensure_utc, utcnow
from rental_engine.core.exceptions import DriverNotFound
from rental_engine.core.logging import get_logger
from rental_engine.db.unit_of_work import Transaction, UnitOfWork
from rental_engine.domain import state_machine
from rental_engine.models.booking import Booking
from rental_engine.models.driver import Driver
from rental_engine.models.enums import BookingStatus, DriverStatus
from rental_engine.services.booking_service import booking_payload

logger = get_logger(__name__)


async def verify_driver_documents(
    uow: UnitOfWork,
    driver_id: str,
    license_verified: Optional[bool],
    insurance_verified: Optional[bool],
    actor: str,
    now: Optional[datetime] = None,
) -> tuple[Driver, list[str]]:
    """
    Record the review outcome for either or both documents.

    Returns the driver and the ids of the bookings whose status moved.
    """

    async def work(tx: Transaction) -> tuple[Driver, list[str]]:
        at = ensure_utc(now) or utcnow()
        driver = await tx.session.get(Driver, driver_id, with_for_update=True)
        if driver is None:
            raise DriverNotFound(driver_id=driver_id)

        if license_verified is not None:
            driver.license_verified = license_verified
            driver.license_verified_at = at if license_verified else None
        if insurance_verified is not None:
            driver.insurance_verified = insurance_verified
            driver.insurance_verified_at = at if insurance_verified else None
        driver.sync_verification()

        rejected = license_verified is False or insurance_verified is False
        if rejected:
            driver.status = DriverStatus.REJECTED

        result = await tx.session.execute(
            select(Booking)
            .where(Booking.driver_id == driver.id, Booking.status == BookingStatus.VERIFICATION_PENDING)
            .with_for_update()
        )
        waiting = list(result.scalars().all())

        if driver.verified:
            target, note, kind = BookingStatus.PENDING_PAYMENT, "Driver documents verified", "driver_verified"
        elif rejected:
            target, note, kind = BookingStatus.LICENSE_REQUIRED, "Driver documents rejected", "driver_rejected"
        else:
            return driver, []

        moved = []
        for booking in waiting:
            state_machine.transition(booking, target, actor=actor, note=note, at=at)
            tx.notify(kind, booking.user_id, booking_payload(booking))
            moved.append(booking.id)
        return driver, moved

    driver, moved = await uow.run(work, name="verify_driver_documents")
    logger.info(
        "driver_documents_reviewed",
        driver_id=driver_id,
        verified=driver.verified,
        status=driver.status.value,
        bookings_moved=len(moved),
        actor=actor,
    )
    return driver, moved
