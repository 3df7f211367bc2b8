"""Stripe Connect and checkout session routes"""
import logging
from typing import Optional

import stripe
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from sellify.core.security import require_auth
from sellify.db.session import get_db
from sellify.schemas.checkout import CheckoutSessionRequest
from sellify.services.stripe_service import (
    connect_stripe_account, create_checkout_session, disconnect_stripe_account,
    get_connection_status, get_session_status
)

router = APIRouter(prefix="/api/stripe", tags=["stripe"])
logger = logging.getLogger(__name__)


@router.post("/connect")
def connect_account(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    """Create or resume the caller's Stripe Express account onboarding"""
    try:
        return connect_stripe_account(user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except (stripe.StripeError, ValueError) as e:
        logger.error(f"Stripe connect failed for user {user_id}: {e}")
        raise HTTPException(502, "Failed to connect Stripe account")


@router.get("/status")
def connection_status(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return get_connection_status(user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))


@router.delete("/disconnect")
def disconnect_account(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        disconnect_stripe_account(user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    return {"message": "Stripe account disconnected"}


@router.post("/session/{page_id}")
def create_session(
    page_id: int,
    body: Optional[CheckoutSessionRequest] = None,
    db: Session = Depends(get_db)
):
    """Create a checkout session for a public page"""
    submission_id = body.submission_id if body else None
    try:
        return create_checkout_session(page_id, db, submission_id=submission_id)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    except stripe.StripeError as e:
        logger.error(f"Stripe checkout session creation failed for page {page_id}: {e}")
        raise HTTPException(502, "Failed to create checkout session")


@router.get("/session/{session_id}/status")
def session_status(session_id: str, db: Session = Depends(get_db)):
    try:
        return get_session_status(session_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
