"""
Payment gateway webhook.

Only `checkout.session.completed` changes state; every other event type is
acknowledged and ignored. The signature is verified with the Stripe SDK
whenever a webhook secret is configured.
"""

import json
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status

from rental_engine.api.deps import get_uow
from rental_engine.core.config import get_settings
from rental_engine.core.logging import get_logger
from rental_engine.core.metrics import record_payment_event
from rental_engine.db.unit_of_work import UnitOfWork
from rental_engine.services.payment_service import complete_payment

logger = get_logger(__name__)
settings = get_settings()
router = APIRouter(prefix="/webhooks", tags=["Webhooks"])

CHECKOUT_COMPLETED = "checkout.session.completed"


@router.post("/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None),
    uow: UnitOfWork = Depends(get_uow),
):
    payload = await request.body()

    if settings.STRIPE_WEBHOOK_SECRET:
        try:
            stripe.Webhook.construct_event(payload, stripe_signature, settings.STRIPE_WEBHOOK_SECRET)
        except ValueError:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
        except stripe.SignatureVerificationError:
            logger.warning("webhook_signature_invalid")
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    # Signed or not, the event is handled as the plain JSON body
    try:
        event = json.loads(payload)
    except ValueError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")
    if not isinstance(event, dict):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid payload")

    event_type = event.get("type")
    if event_type != CHECKOUT_COMPLETED:
        record_payment_event("ignored")
        logger.info("webhook_ignored", event_type=event_type)
        return {"received": True, "applied": False}

    data = event.get("data")
    checkout = data.get("object") if isinstance(data, dict) else None
    session_id = checkout.get("id") if isinstance(checkout, dict) else None
    if not session_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing checkout session id")
    booking, applied = await complete_payment(uow, session_id)
    return {"received": True, "applied": applied, "booking_id": booking.id, "status": booking.status.value}
