import logging
import time
import uuid
from datetime import datetime, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

import stripe
from sqlalchemy.orm import Session

from sellify.core.config import settings
from sellify.core.stripe_client import get_stripe_client
from sellify.models.checkout_page import CheckoutPage
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.submission import Submission, SubmissionPaymentStatus
from sellify.models.user import User

logger = logging.getLogger(__name__)

MOCK_ACCOUNT_PREFIX = "acct_mock_"
MOCK_SESSION_PREFIX = "cs_test_mock_"

# ============================================================================
# STRIPE OBJECT ACCESS HELPER
# ============================================================================

def get_stripe_value(obj: Any, key: str, default=None):
    """Safely extract value from Stripe object (supports both dict and attribute access)."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        value = obj.get(key, default)
        return default if value is None else value
    # Stripe objects
    try:
        value = obj[key]
    except (KeyError, TypeError, AttributeError):
        value = getattr(obj, key, None)
    return default if value is None else value

# ============================================================================
# AMOUNTS
# ============================================================================

def to_minor_units(amount: Any) -> int:
    """Convert a major-unit price (e.g. 19.99) to minor units (1999), rounding half up"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_checkout_amounts(page: CheckoutPage) -> Dict[str, int]:
    base_amount = to_minor_units(page.price)
    bumps_amount = sum(to_minor_units(bump.get("price", 0)) for bump in (page.order_bumps or []))
    total = base_amount + bumps_amount
    fee = int((Decimal(total) * Decimal(str(settings.PLATFORM_FEE_PERCENT)) / 100).quantize(
        Decimal("1"), rounding=ROUND_HALF_UP
    ))
    return {"base_amount": base_amount, "total_amount": total, "application_fee_amount": fee}


def _build_line_items(page: CheckoutPage) -> List[Dict]:
    currency = page.currency or "usd"
    product_data = {"name": page.product_name or "Unnamed Product"}
    if page.description:
        product_data["description"] = page.description
    line_items = [{
        "price_data": {
            "currency": currency,
            "product_data": product_data,
            "unit_amount": to_minor_units(page.price),
        },
        "quantity": 1,
    }]
    # Checkout runs in payment mode, so bumps are charged once even when flagged recurring
    for bump in page.order_bumps or []:
        line_items.append({
            "price_data": {
                "currency": currency,
                "product_data": {"name": bump.get("title") or "Add-on"},
                "unit_amount": to_minor_units(bump.get("price", 0)),
            },
            "quantity": 1,
        })
    return line_items


def is_mock_account(account_id: Optional[str]) -> bool:
    return bool(account_id) and account_id.startswith(MOCK_ACCOUNT_PREFIX)


def is_mock_payment(payment: Payment) -> bool:
    """True only for payments created by the development mock checkout"""
    return (
        is_mock_account(payment.stripe_account_id)
        and bool(payment.stripe_session_id)
        and payment.stripe_session_id.startswith(MOCK_SESSION_PREFIX)
    )


def _from_timestamp(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)

# ============================================================================
# CHECKOUT SESSIONS
# ============================================================================

def _attach_submission(submission_id: Optional[int], page: CheckoutPage, db: Session) -> Optional[Submission]:
    if submission_id is None:
        return None
    submission = db.query(Submission).filter(Submission.id == submission_id).first()
    if not submission or submission.page_id != page.id:
        raise ValueError("Submission does not belong to this checkout page.")
    if submission.payment is not None:
        raise ValueError("Submission is already linked to a payment.")
    return submission


def create_checkout_session(page_id: int, db: Session, submission_id: Optional[int] = None) -> Dict[str, Any]:
    """Create a Stripe Checkout Session on the seller's connected account and a pending Payment.

    Raises:
        LookupError: page not found
        ValueError: seller has no connected account, or the submission is unusable
        stripe.StripeError: gateway failure outside the development mock path
    """
    page = db.query(CheckoutPage).filter(CheckoutPage.id == page_id).first()
    if not page:
        raise LookupError("Checkout page not found.")

    seller = db.query(User).filter(User.id == page.user_id).first()
    if not seller or not seller.stripe_account_id:
        raise ValueError("The page owner has not connected a Stripe account.")

    submission = _attach_submission(submission_id, page, db)
    amounts = calculate_checkout_amounts(page)
    reference = uuid.uuid4().hex
    metadata = {
        "reference": reference,
        "page_id": str(page.id),
        "user_id": str(seller.id),
        "total_amount": str(amounts["total_amount"]),
    }
    if submission is not None:
        metadata["submission_id"] = str(submission.id)

    use_mock = not settings.is_production and is_mock_account(seller.stripe_account_id)
    if use_mock:
        session_id = f"{MOCK_SESSION_PREFIX}{int(time.time() * 1000)}_{reference[:8]}"
        session_url = f"{settings.CLIENT_URL}/payment/success?session_id={session_id}"
        created_at = datetime.now(timezone.utc)
        metadata["mock"] = "true"
    else:
        client = get_stripe_client()
        session = client.checkout.sessions.create(
            params={
                "payment_method_types": ["card"],
                "line_items": _build_line_items(page),
                "mode": "payment",
                "success_url": page.success_redirect_url
                or f"{settings.CLIENT_URL}/payment/success?session_id={{CHECKOUT_SESSION_ID}}",
                "cancel_url": page.cancel_redirect_url or f"{settings.CLIENT_URL}/page/{page.slug}",
                "payment_intent_data": {
                    "application_fee_amount": amounts["application_fee_amount"],
                    "metadata": metadata,
                },
                "metadata": metadata,
            },
            options={"stripe_account": seller.stripe_account_id},
        )
        session_id = get_stripe_value(session, "id")
        session_url = get_stripe_value(session, "url")
        created_at = _from_timestamp(get_stripe_value(session, "created"))

    payment = Payment(
        user_id=seller.id,
        page_id=page.id,
        reference=reference,
        stripe_session_id=session_id,
        stripe_account_id=seller.stripe_account_id,
        amount=amounts["total_amount"],
        currency=page.currency or "usd",
        application_fee_amount=amounts["application_fee_amount"],
        status=PaymentStatus.PENDING.value,
        stripe_metadata=metadata,
        stripe_created_at=created_at,
    )
    db.add(payment)
    if submission is not None:
        payment.submission = submission
        submission.payment_status = SubmissionPaymentStatus.PENDING.value
    db.commit()
    db.refresh(payment)

    logger.info(f"Created checkout session {session_id} for page {page.id} (payment {payment.id})")
    return {
        "url": session_url,
        "session_id": session_id,
        "payment_id": payment.id,
        "mock": use_mock,
    }


def get_session_status(session_id: str, db: Session) -> Dict[str, Any]:
    """Public payment state for a checkout session (success page polling)"""
    payment = db.query(Payment).filter(Payment.stripe_session_id == session_id).first()
    if not payment:
        raise LookupError("Payment session not found")
    return {
        "session_id": payment.stripe_session_id,
        "status": payment.status,
        "amount": payment.amount,
        "currency": payment.currency,
        "page_id": payment.page_id,
        "payment_completed_at": payment.payment_completed_at,
        "submission_payment_status": payment.submission.payment_status if payment.submission else None,
    }

# ============================================================================
# STRIPE CONNECT
# ============================================================================

def _get_user(user_id: int, db: Session) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")
    return user


def _create_onboarding_link(client: stripe.StripeClient, account_id: str) -> str:
    link = client.account_links.create(params={
        "account": account_id,
        "refresh_url": f"{settings.CLIENT_URL}/stripe/refresh",
        "return_url": f"{settings.CLIENT_URL}/stripe/return",
        "type": "account_onboarding",
    })
    return get_stripe_value(link, "url")


def connect_stripe_account(user_id: int, db: Session) -> Dict[str, Any]:
    """Connect (or resume onboarding of) the user's Stripe Express account"""
    user = _get_user(user_id, db)

    if user.stripe_account_id:
        if is_mock_account(user.stripe_account_id):
            return {
                "message": "Stripe account already connected (development mode)",
                "stripe_account_id": user.stripe_account_id,
                "already_connected": True,
            }
        try:
            client = get_stripe_client()
            account = client.accounts.retrieve(user.stripe_account_id)
            user.stripe_charges_enabled = bool(get_stripe_value(account, "charges_enabled", False))
            user.stripe_payouts_enabled = bool(get_stripe_value(account, "payouts_enabled", False))
            user.stripe_details_submitted = bool(get_stripe_value(account, "details_submitted", False))
            db.commit()
            if user.stripe_details_submitted:
                return {
                    "message": "Stripe account already connected and verified",
                    "stripe_account_id": user.stripe_account_id,
                    "already_connected": True,
                }
            return {
                "message": "Continue Stripe onboarding.",
                "stripe_account_id": user.stripe_account_id,
                "onboarding_url": _create_onboarding_link(client, user.stripe_account_id),
                "already_connected": False,
            }
        except (stripe.StripeError, ValueError) as e:
            logger.warning(f"Existing Stripe account {user.stripe_account_id} invalid, creating new one: {e}")

    try:
        client = get_stripe_client()
        account = client.accounts.create(params={
            "type": "express",
            "country": settings.STRIPE_CONNECT_COUNTRY,
            "email": user.email,
        })
        account_id = get_stripe_value(account, "id")
        onboarding_url = _create_onboarding_link(client, account_id)
        message = "Stripe account created successfully."
    except (stripe.StripeError, ValueError) as e:
        if settings.ENVIRONMENT != "development":
            raise
        logger.warning(f"Stripe account creation failed, using mock account: {e}")
        account_id = f"{MOCK_ACCOUNT_PREFIX}{int(time.time() * 1000)}"
        onboarding_url = f"https://connect.stripe.com/mock/onboarding/{account_id}"
        message = "Stripe account connected successfully (mocked for development)."

    user.stripe_account_id = account_id
    user.stripe_charges_enabled = False
    user.stripe_payouts_enabled = False
    user.stripe_details_submitted = False
    db.commit()

    logger.info(f"Connected Stripe account {account_id} for user {user.id}")
    return {
        "message": message,
        "stripe_account_id": account_id,
        "onboarding_url": onboarding_url,
        "already_connected": False,
    }


def get_connection_status(user_id: int, db: Session) -> Dict[str, Any]:
    user = _get_user(user_id, db)

    if not user.stripe_account_id:
        return {"connected": False, "account_id": None, "details": None}

    if settings.ENVIRONMENT == "development" or is_mock_account(user.stripe_account_id):
        return {
            "connected": True,
            "account_id": user.stripe_account_id,
            "details": {
                "charges_enabled": True,
                "payouts_enabled": True,
                "details_submitted": True,
                "mock": True,
            },
        }

    try:
        account = get_stripe_client().accounts.retrieve(user.stripe_account_id)
    except (stripe.StripeError, ValueError) as e:
        logger.error(f"Error fetching Stripe account {user.stripe_account_id}: {e}")
        return {
            "connected": False,
            "account_id": user.stripe_account_id,
            "details": None,
            "error": "Account verification failed",
        }

    return {
        "connected": True,
        "account_id": user.stripe_account_id,
        "details": {
            "charges_enabled": bool(get_stripe_value(account, "charges_enabled", False)),
            "payouts_enabled": bool(get_stripe_value(account, "payouts_enabled", False)),
            "details_submitted": bool(get_stripe_value(account, "details_submitted", False)),
        },
    }


def disconnect_stripe_account(user_id: int, db: Session) -> None:
    user = _get_user(user_id, db)
    user.stripe_account_id = None
    user.stripe_charges_enabled = False
    user.stripe_payouts_enabled = False
    user.stripe_details_submitted = False
    db.commit()
    logger.info(f"Disconnected Stripe account for user {user.id}")
