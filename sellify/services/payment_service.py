"""Payment and submission reconciliation.

Payments are only ever located through identifiers Sellify stored itself:
the checkout session id, the payment intent id, or the ``reference`` minted
at session creation and echoed back in payment intent metadata. Nothing in
this module creates a Payment from webhook data.
"""
import logging
import time
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from sellify.core.config import settings
from sellify.core.metrics import payment_transitions_counter, mock_payments_counter
from sellify.models.base import utcnow
from sellify.models.checkout_page import CheckoutPage
from sellify.models.payment import Payment, PaymentStatus, TERMINAL_PAYMENT_STATUSES
from sellify.models.submission import Submission, SubmissionPaymentStatus
from sellify.models.user import User
from sellify.services.stripe_service import get_stripe_value, is_mock_payment

logger = logging.getLogger("webhook")

# Payment status -> submission payment status. Refunds leave the submission as is.
SUBMISSION_STATUS_FOR_PAYMENT = {
    PaymentStatus.PENDING: SubmissionPaymentStatus.PENDING,
    PaymentStatus.PROCESSING: SubmissionPaymentStatus.PENDING,
    PaymentStatus.COMPLETED: SubmissionPaymentStatus.COMPLETED,
    PaymentStatus.FAILED: SubmissionPaymentStatus.FAILED,
    PaymentStatus.CANCELLED: SubmissionPaymentStatus.FAILED,
}


# ============================================================================
# LOOKUPS
# ============================================================================

def _object_id(value: Any) -> Optional[str]:
    """Stripe fields may hold an id string or an expanded object"""
    if value is None or isinstance(value, str):
        return value
    return get_stripe_value(value, "id")


def find_payment_by_session(session_id: str, db: Session) -> Optional[Payment]:
    if not session_id:
        return None
    return db.query(Payment).filter(Payment.stripe_session_id == session_id).first()


def find_payment_by_intent(intent: Any, db: Session) -> Optional[Payment]:
    """Find the Payment for a payment intent by stored intent id, then by our reference"""
    intent_id = get_stripe_value(intent, "id")
    if intent_id:
        payment = db.query(Payment).filter(Payment.stripe_payment_intent_id == intent_id).first()
        if payment:
            return payment

    metadata = get_stripe_value(intent, "metadata", {}) or {}
    reference = get_stripe_value(metadata, "reference")
    if reference:
        return db.query(Payment).filter(Payment.reference == reference).first()
    return None


def payment_link_ids(payment: Payment) -> Dict[str, Optional[int]]:
    return {"payment_id": payment.id, "user_id": payment.user_id, "page_id": payment.page_id}


# ============================================================================
# TRANSITIONS
# ============================================================================

def _cascade_to_submission(payment: Payment) -> None:
    submission = payment.submission
    if submission is None:
        return
    submission_status = SUBMISSION_STATUS_FOR_PAYMENT.get(payment.status_enum)
    if submission_status is None:
        return
    submission.payment_status = submission_status.value
    if payment.customer_email and not submission.customer_email:
        submission.customer_email = payment.customer_email
    if payment.customer_name and not submission.customer_name:
        submission.customer_name = payment.customer_name


def apply_payment_status(
    payment: Payment,
    target: PaymentStatus,
    db: Session,
    error: Optional[str] = None
) -> bool:
    """Move a payment to ``target`` if the transition is allowed.

    Returns True when the status changed. Disallowed or repeated transitions
    are logged and leave the payment untouched, so late or duplicated events
    can never regress a terminal payment.
    """
    current = payment.status_enum
    if current == target:
        return False
    if not payment.can_transition_to(target):
        logger.info(
            f"Ignoring payment {payment.id} transition {current.value} -> {target.value}"
        )
        return False

    now = utcnow()
    payment.status = target.value
    if target == PaymentStatus.COMPLETED:
        payment.payment_completed_at = now
    elif target == PaymentStatus.FAILED:
        payment.last_error = error
    if target in TERMINAL_PAYMENT_STATUSES:
        payment.webhook_processed = True
        payment.webhook_processed_at = now

    _cascade_to_submission(payment)
    db.flush()

    payment_transitions_counter.labels(status=target.value).inc()
    logger.info(f"Payment {payment.id} moved {current.value} -> {target.value}")
    return True


# ============================================================================
# RECONCILERS
# ============================================================================

def reconcile_checkout_session(
    session: Any,
    target: PaymentStatus,
    db: Session
) -> Dict[str, Any]:
    """Apply a checkout session event to the Payment created for that session"""
    session_id = get_stripe_value(session, "id")
    payment = find_payment_by_session(session_id, db)
    if not payment:
        logger.warning(f"No payment found for checkout session {session_id}, ignoring")
        return {"matched": False, "session_id": session_id}

    if (
        target == PaymentStatus.COMPLETED
        and payment.webhook_processed
        and payment.status_enum == PaymentStatus.COMPLETED
    ):
        logger.info(f"Payment already processed for session {session_id}")
        return {"matched": True, "changed": False, "status": payment.status, **payment_link_ids(payment)}

    intent_id = _object_id(get_stripe_value(session, "payment_intent"))
    if intent_id and not payment.stripe_payment_intent_id:
        payment.stripe_payment_intent_id = intent_id

    # Customer details only travel with a transition that is actually applied
    if payment.can_transition_to(target):
        customer_details = get_stripe_value(session, "customer_details") or {}
        email = get_stripe_value(customer_details, "email")
        name = get_stripe_value(customer_details, "name")
        if email:
            payment.customer_email = email
        if name:
            payment.customer_name = name

    changed = apply_payment_status(payment, target, db)
    return {"matched": True, "changed": changed, "status": payment.status, **payment_link_ids(payment)}


def reconcile_payment_intent(
    intent: Any,
    target: PaymentStatus,
    db: Session
) -> Dict[str, Any]:
    """Apply a payment intent event to its Payment"""
    intent_id = get_stripe_value(intent, "id")
    payment = find_payment_by_intent(intent, db)
    if not payment:
        logger.warning(f"No payment found for payment intent {intent_id}, ignoring")
        return {"matched": False, "payment_intent_id": intent_id}

    if intent_id and not payment.stripe_payment_intent_id:
        payment.stripe_payment_intent_id = intent_id

    receipt_email = get_stripe_value(intent, "receipt_email")
    if receipt_email and not payment.customer_email:
        payment.customer_email = receipt_email

    error = None
    if target == PaymentStatus.FAILED:
        last_error = get_stripe_value(intent, "last_payment_error") or {}
        error = get_stripe_value(last_error, "message") or "Payment failed"

    changed = apply_payment_status(payment, target, db, error=error)
    return {"matched": True, "changed": changed, "status": payment.status, **payment_link_ids(payment)}


def reconcile_charge_refund(charge: Any, db: Session) -> Dict[str, Any]:
    """Mark a payment refunded once its charge is fully refunded"""
    intent_id = _object_id(get_stripe_value(charge, "payment_intent"))
    payment = None
    if intent_id:
        payment = db.query(Payment).filter(Payment.stripe_payment_intent_id == intent_id).first()
    if not payment:
        logger.warning(f"No payment found for refunded charge {get_stripe_value(charge, 'id')}, ignoring")
        return {"matched": False, "payment_intent_id": intent_id}

    if not get_stripe_value(charge, "refunded", False):
        # Partial refund, payment stays completed
        return {"matched": True, "changed": False, "status": payment.status, **payment_link_ids(payment)}

    changed = apply_payment_status(payment, PaymentStatus.REFUNDED, db)
    return {"matched": True, "changed": changed, "status": payment.status, **payment_link_ids(payment)}


def update_connected_account(account: Any, db: Session) -> Dict[str, Any]:
    """Refresh the connected-account capability flags on the owning user"""
    account_id = get_stripe_value(account, "id")
    user = db.query(User).filter(User.stripe_account_id == account_id).first()
    if not user:
        logger.warning(f"No user found for Stripe account {account_id}, ignoring")
        return {"matched": False, "account_id": account_id}

    user.stripe_charges_enabled = bool(get_stripe_value(account, "charges_enabled", False))
    user.stripe_payouts_enabled = bool(get_stripe_value(account, "payouts_enabled", False))
    user.stripe_details_submitted = bool(get_stripe_value(account, "details_submitted", False))
    db.flush()

    logger.info(f"Account {account_id} updated for user {user.id}")
    return {
        "matched": True,
        "user_id": user.id,
        "account_id": account_id,
        "charges_enabled": user.stripe_charges_enabled,
        "payouts_enabled": user.stripe_payouts_enabled,
        "details_submitted": user.stripe_details_submitted,
    }


# ============================================================================
# MOCK CHECKOUT
# ============================================================================

def complete_mock_payment(
    session_id: str,
    db: Session,
    form_data: Optional[Dict[str, Any]] = None,
    customer_email: Optional[str] = None
) -> Dict[str, Any]:
    """Emulate a completed checkout without a gateway.

    Only payments created by the mock checkout (mock account and mock
    session id) can be completed here, and never in production.

    Raises:
        ValueError: session id missing, or the payment can no longer complete
        LookupError: mock payments unavailable or no mock payment for the session
    """
    if not session_id:
        raise ValueError("Session ID is required")
    if not settings.MOCK_PAYMENTS_ENABLED or settings.is_production:
        raise LookupError("Mock payments are disabled")

    payment = find_payment_by_session(session_id, db)
    if not payment or not is_mock_payment(payment):
        if payment:
            logger.warning(f"Refused mock completion of non-mock session {session_id}")
        raise LookupError("Payment session not found")

    if payment.status_enum != PaymentStatus.COMPLETED and not payment.can_transition_to(PaymentStatus.COMPLETED):
        raise ValueError(f"Payment is {payment.status} and can no longer be completed")

    try:
        if not payment.stripe_payment_intent_id:
            payment.stripe_payment_intent_id = f"pi_mock_{int(time.time() * 1000)}_{payment.reference[:8]}"
        if customer_email and not payment.customer_email:
            payment.customer_email = customer_email

        submission = payment.submission
        if submission is None:
            page = db.query(CheckoutPage).filter(CheckoutPage.id == payment.page_id).first()
            if page:
                submission = Submission(
                    page_id=page.id,
                    form_data=form_data or {},
                    payment_status=SubmissionPaymentStatus.PENDING.value,
                    customer_email=customer_email or "test@example.com",
                )
                db.add(submission)
                db.flush()
                payment.submission_id = submission.id
                payment.submission = submission
        elif form_data:
            submission.form_data = form_data

        changed = apply_payment_status(payment, PaymentStatus.COMPLETED, db)
        db.commit()
    except Exception:
        db.rollback()
        raise

    if changed:
        mock_payments_counter.inc()
    logger.info(f"Mock payment completed for session {session_id}")
    return {
        "payment_id": payment.id,
        "session_id": session_id,
        "status": payment.status,
        "submission_id": payment.submission_id,
    }
