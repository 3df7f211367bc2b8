"""Stripe webhook and webhook introspection routes"""
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from sellify.core.security import require_auth
from sellify.db.session import get_db
from sellify.schemas.webhooks import MockPaymentRequest
from sellify.services.payment_service import complete_mock_payment
from sellify.services.webhook_event_service import (
    get_webhook_event, get_webhook_stats, list_webhook_events
)
from sellify.services.webhook_service import process_stripe_webhook

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])
logger = logging.getLogger("webhook")


@router.post("/stripe")
async def stripe_webhook(request: Request, db: Session = Depends(get_db)):
    """Handle Stripe webhook events

    The body is read as raw bytes; the signature covers the exact payload.
    Failures after verification answer 500 so Stripe redelivers.
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")

    try:
        return process_stripe_webhook(payload, sig_header, db)
    except ValueError as e:
        logger.error(f"Rejected webhook: {e}")
        raise HTTPException(400, str(e))
    except stripe.SignatureVerificationError as e:
        logger.error(f"Invalid webhook signature: {e}")
        raise HTTPException(400, "Invalid signature")
    except Exception:
        raise HTTPException(500, "Webhook processing failed")


@router.post("/mock-payment-complete")
def mock_payment_complete(body: MockPaymentRequest, db: Session = Depends(get_db)):
    """Complete a mock checkout session (development checkout without Stripe)"""
    try:
        result = complete_mock_payment(
            body.session_id,
            db,
            form_data=body.form_data,
            customer_email=body.customer_email,
        )
    except ValueError as e:
        raise HTTPException(400, str(e))
    except LookupError as e:
        raise HTTPException(404, str(e))
    return {"message": "Mock payment completed successfully", **result}


@router.get("/events")
def get_events(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    event_type: Optional[str] = Query(None, alias="eventType"),
    status: Optional[str] = None,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """List webhook events linked to the caller's pages and payments"""
    return list_webhook_events(user_id, db, page=page, limit=limit, event_type=event_type, status=status)


@router.get("/events/{event_id}")
def get_event(event_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return {"event": get_webhook_event(event_id, user_id, db)}
    except LookupError as e:
        raise HTTPException(404, str(e))


@router.get("/stats")
def get_stats(
    days: int = Query(30, ge=1, le=365),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    return get_webhook_stats(user_id, db, days=days)
