"""Stripe webhook ingestion: verification, idempotent recording, dispatch"""
import enum
import json
import logging
from datetime import timedelta
from typing import Any, Callable, Dict, Optional, Tuple

import stripe
from sqlalchemy import and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from sellify.core.config import settings
from sellify.core.metrics import webhook_events_counter, webhook_signature_failures_counter
from sellify.models.base import utcnow
from sellify.models.payment import PaymentStatus
from sellify.models.webhook_event import WebhookEvent, WebhookEventStatus
from sellify.services.payment_service import (
    reconcile_charge_refund, reconcile_checkout_session,
    reconcile_payment_intent, update_connected_account
)
from sellify.services.stripe_service import get_stripe_value

logger = logging.getLogger("webhook")


class StripeEventType(str, enum.Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
    CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED = "checkout.session.async_payment_failed"
    CHECKOUT_SESSION_EXPIRED = "checkout.session.expired"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_PAYMENT_FAILED = "payment_intent.payment_failed"
    CHARGE_REFUNDED = "charge.refunded"
    ACCOUNT_UPDATED = "account.updated"

    @classmethod
    def parse(cls, value: str) -> Optional["StripeEventType"]:
        try:
            return cls(value)
        except ValueError:
            return None


# ============================================================================
# HANDLERS
# ============================================================================

def handle_checkout_completed(session: Dict[str, Any], db: Session) -> Dict[str, Any]:
    # Delayed payment methods complete the session before the money arrives
    if get_stripe_value(session, "payment_status") == "unpaid":
        return reconcile_checkout_session(session, PaymentStatus.PROCESSING, db)
    return reconcile_checkout_session(session, PaymentStatus.COMPLETED, db)


def handle_checkout_async_succeeded(session: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_checkout_session(session, PaymentStatus.COMPLETED, db)


def handle_checkout_async_failed(session: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_checkout_session(session, PaymentStatus.FAILED, db)


def handle_checkout_expired(session: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_checkout_session(session, PaymentStatus.CANCELLED, db)


def handle_payment_intent_succeeded(intent: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_payment_intent(intent, PaymentStatus.COMPLETED, db)


def handle_payment_intent_failed(intent: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_payment_intent(intent, PaymentStatus.FAILED, db)


def handle_charge_refunded(charge: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return reconcile_charge_refund(charge, db)


def handle_account_updated(account: Dict[str, Any], db: Session) -> Dict[str, Any]:
    return update_connected_account(account, db)


EVENT_HANDLERS: Dict[StripeEventType, Callable[[Dict[str, Any], Session], Dict[str, Any]]] = {
    StripeEventType.CHECKOUT_SESSION_COMPLETED: handle_checkout_completed,
    StripeEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_SUCCEEDED: handle_checkout_async_succeeded,
    StripeEventType.CHECKOUT_SESSION_ASYNC_PAYMENT_FAILED: handle_checkout_async_failed,
    StripeEventType.CHECKOUT_SESSION_EXPIRED: handle_checkout_expired,
    StripeEventType.PAYMENT_INTENT_SUCCEEDED: handle_payment_intent_succeeded,
    StripeEventType.PAYMENT_INTENT_PAYMENT_FAILED: handle_payment_intent_failed,
    StripeEventType.CHARGE_REFUNDED: handle_charge_refunded,
    StripeEventType.ACCOUNT_UPDATED: handle_account_updated,
}


def dispatch_event(event_type: str, data: Dict[str, Any], db: Session) -> Dict[str, Any]:
    """Run the handler for ``event_type``. Unknown types have no side effect."""
    known_type = StripeEventType.parse(event_type)
    if known_type is None:
        logger.info(f"Unhandled webhook event type: {event_type}")
        return {"handled": False}
    result = EVENT_HANDLERS[known_type](data, db)
    return {"handled": True, **result}

# ============================================================================
# VERIFICATION
# ============================================================================

def verify_stripe_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """Verify the Stripe-Signature header and return the event as a plain dict.

    Raises:
        ValueError: secret not configured, header missing, or payload unparseable
        stripe.SignatureVerificationError: signature does not match
    """
    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("Webhook secret not configured")
        raise ValueError("Webhook secret not configured")
    if not sig_header:
        raise ValueError("Missing stripe-signature header")

    try:
        stripe.Webhook.construct_event(payload, sig_header, settings.STRIPE_WEBHOOK_SECRET)
    except ValueError as e:
        logger.error(f"Invalid webhook payload: {e}")
        raise ValueError("Invalid payload")
    except stripe.SignatureVerificationError:
        webhook_signature_failures_counter.inc()
        raise

    event = json.loads(payload)
    if not event.get("id") or not event.get("type"):
        raise ValueError("Invalid payload")
    return event

# ============================================================================
# EVENT STORE
# ============================================================================

def _claim_event(event_row: WebhookEvent, db: Session) -> bool:
    """Atomically move a claimable row into processing; True if this caller won"""
    now = utcnow()
    stale_before = now - timedelta(seconds=settings.WEBHOOK_PROCESSING_TIMEOUT_SECONDS)
    first_attempt = event_row.status == WebhookEventStatus.RECEIVED.value

    values = {WebhookEvent.updated_at: now}
    if first_attempt:
        values[WebhookEvent.status] = WebhookEventStatus.PROCESSING.value
    else:
        values[WebhookEvent.status] = WebhookEventStatus.RETRYING.value
        values[WebhookEvent.retry_count] = WebhookEvent.retry_count + 1
        values[WebhookEvent.last_retry_at] = now

    # Status in the WHERE clause is the one we read, so a racing claimer
    # that already moved the row makes this update match nothing
    claimable = or_(
        WebhookEvent.status.in_([
            WebhookEventStatus.RECEIVED.value, WebhookEventStatus.FAILED.value
        ]),
        and_(
            WebhookEvent.status.in_([
                WebhookEventStatus.PROCESSING.value, WebhookEventStatus.RETRYING.value
            ]),
            WebhookEvent.updated_at < stale_before,
        ),
    )
    rowcount = (
        db.query(WebhookEvent)
        .filter(
            WebhookEvent.id == event_row.id,
            WebhookEvent.status == event_row.status,
            claimable,
        )
        .update(values, synchronize_session=False)
    )
    db.commit()
    db.refresh(event_row)
    return rowcount == 1


def record_if_new(
    event: Dict[str, Any],
    db: Session,
    signature: Optional[str] = None,
    raw_body: Optional[str] = None
) -> Tuple[WebhookEvent, bool]:
    """Record a Stripe event and claim it for processing.

    Returns the WebhookEvent row and whether the caller should dispatch it.
    Completed events and events another worker is actively processing are
    never handed out again.
    """
    event_row = WebhookEvent(
        stripe_event_id=event["id"],
        event_type=event["type"],
        status=WebhookEventStatus.RECEIVED.value,
        event_data=event.get("data", {}).get("object", {}),
        signature=signature,
        raw_body=raw_body,
    )
    db.add(event_row)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        event_row = db.query(WebhookEvent).filter(
            WebhookEvent.stripe_event_id == event["id"]
        ).one()
        logger.info(f"Webhook event {event['id']} already recorded with status {event_row.status}")
    else:
        db.refresh(event_row)

    return event_row, _claim_event(event_row, db)


def _mark_failed(event_row_id: int, error: str, db: Session) -> None:
    event_row = db.query(WebhookEvent).filter(WebhookEvent.id == event_row_id).first()
    if not event_row:
        return
    event_row.status = WebhookEventStatus.FAILED.value
    event_row.processing_error = error
    db.commit()

# ============================================================================
# ENTRY POINT
# ============================================================================

def process_stripe_webhook(payload: bytes, sig_header: Optional[str], db: Session) -> Dict[str, Any]:
    """Verify, record and dispatch one Stripe webhook delivery.

    Handler writes and the event's completion are committed together. When a
    handler fails the transaction is rolled back, the event is marked failed
    and the exception propagates so Stripe redelivers.

    Raises:
        ValueError: bad payload or webhook secret not configured (HTTP 400)
        stripe.SignatureVerificationError: bad signature (HTTP 400)
    """
    event = verify_stripe_event(payload, sig_header)
    event_id = event["id"]
    event_type = event["type"]

    raw_body = payload.decode("utf-8") if isinstance(payload, bytes) else payload
    event_row, claimed = record_if_new(event, db, signature=sig_header, raw_body=raw_body)
    if not claimed:
        webhook_events_counter.labels(event_type=event_type, outcome="duplicate").inc()
        logger.info(f"Skipping duplicate webhook event {event_id} ({event_row.status})")
        return {"received": True, "duplicate": True, "event_id": event_id}

    row_id = event_row.id
    try:
        result = dispatch_event(event_type, event.get("data", {}).get("object", {}), db)

        event_row.status = WebhookEventStatus.COMPLETED.value
        event_row.processed_at = utcnow()
        event_row.processing_error = None
        event_row.processing_result = result
        event_row.user_id = result.get("user_id")
        event_row.page_id = result.get("page_id")
        event_row.payment_id = result.get("payment_id")
        db.commit()
    except Exception as e:
        db.rollback()
        logger.error(f"Error processing webhook {event_id}: {e}", exc_info=True)
        _mark_failed(row_id, str(e), db)
        webhook_events_counter.labels(event_type=event_type, outcome="failed").inc()
        raise

    outcome = "handled" if result.get("handled") else "unhandled"
    webhook_events_counter.labels(event_type=event_type, outcome=outcome).inc()
    logger.info(f"Processed webhook event {event_id} of type {event_type}")
    return {"received": True, "event_id": event_id, "event_type": event_type, "handled": result["handled"]}
