"""
Payment completion handler.

The gateway may deliver the same completion event more than once. The handler
is idempotent: a booking that is already paid is returned unchanged, with no
transition and no notification.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import select

from rental_engine.core.clock import ensure_utc, utcnow
from rental_engine.core.exceptions import BookingNotFound
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import record_payment_event
from rental_engine.db.unit_of_work import Transaction, UnitOfWork
from rental_engine.domain import state_machine
from rental_engine.models.booking import Booking
from rental_engine.models.enums import BookingStatus, PaymentStatus
from rental_engine.services.booking_service import ADMIN_RECIPIENT, booking_payload

logger = get_logger(__name__)

WEBHOOK_ACTOR = "payment_webhook"


async def complete_payment(
    uow: UnitOfWork, session_id: str, now: Optional[datetime] = None
) -> tuple[Booking, bool]:
    """
    Mark the booking behind a checkout session as paid and confirmed.

    Returns:
        (booking, applied) where applied is False for a duplicate delivery

    Raises:
        BookingNotFound: no booking carries this session id
        InvalidTransition: the booking is not awaiting payment
    """

    async def work(tx: Transaction) -> tuple[Booking, bool]:
        at = ensure_utc(now) or utcnow()
        result = await tx.session.execute(
            select(Booking).where(Booking.payment_session_id == session_id).with_for_update()
        )
        booking = result.scalar_one_or_none()
        if booking is None:
            raise BookingNotFound(payment_session_id=session_id)

        if booking.payment_status == PaymentStatus.PAID:
            return booking, False

        state_machine.transition(booking, BookingStatus.CONFIRMED, actor=WEBHOOK_ACTOR, note="Payment completed", at=at)
        booking.payment_status = PaymentStatus.PAID
        booking.paid_at = at

        payload = booking_payload(booking)
        tx.notify("payment_confirmed", booking.user_id, payload)
        tx.notify("payment_confirmed", ADMIN_RECIPIENT, payload)
        tx.publish(f"user:{booking.user_id}", "booking:confirmed", payload)
        return booking, True

    booking, applied = await uow.run(work, name="complete_payment")

    record_payment_event("applied" if applied else "duplicate")
    logger.info("payment_completed" if applied else "payment_duplicate", booking_id=booking.id, session_id=session_id)
    return booking, applied
