"""Payment and page analytics for sellers"""
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import extract, func
from sqlalchemy.orm import Session

from sellify.models.base import utcnow
from sellify.models.checkout_page import CheckoutPage
from sellify.models.payment import Payment, PaymentStatus
from sellify.models.submission import Submission
from sellify.services.submission_service import serialize_submission

RECENT_PAYMENTS_LIMIT = 10
RECENT_PAGE_ACTIVITY_LIMIT = 5
REVENUE_TREND_DAYS = 365


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_payment(payment: Payment) -> Dict[str, Any]:
    # last_error stays internal
    data = {
        "id": payment.id,
        "page_id": payment.page_id,
        "submission_id": payment.submission_id,
        "stripe_session_id": payment.stripe_session_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "application_fee_amount": payment.application_fee_amount,
        "status": payment.status,
        "customer_email": payment.customer_email,
        "customer_name": payment.customer_name,
        "payment_completed_at": _isoformat(payment.payment_completed_at),
        "created_at": _isoformat(payment.created_at),
        "page": None,
    }
    if payment.page is not None:
        data["page"] = {
            "id": payment.page.id,
            "title": payment.page.title,
            "product_name": payment.page.product_name,
        }
    return data


def _status_totals(query) -> Dict[str, Dict[str, int]]:
    """Count and amount per payment status; every status is present"""
    stats = {s.value: {"count": 0, "total_amount": 0} for s in PaymentStatus}
    rows = (
        query.with_entities(Payment.status, func.count(Payment.id), func.coalesce(func.sum(Payment.amount), 0))
        .group_by(Payment.status)
        .all()
    )
    for status, count, total_amount in rows:
        if status in stats:
            stats[status] = {"count": count, "total_amount": int(total_amount)}
    return stats


def get_payment_analytics(user_id: int, db: Session) -> Dict[str, Any]:
    """Per-status totals, recent payments and monthly revenue for the last year"""
    base = db.query(Payment).filter(Payment.user_id == user_id)
    stats = _status_totals(base)

    recent = (
        base.order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(RECENT_PAYMENTS_LIMIT)
        .all()
    )

    since = utcnow() - timedelta(days=REVENUE_TREND_DAYS)
    year = extract("year", Payment.payment_completed_at)
    month = extract("month", Payment.payment_completed_at)
    monthly_rows = (
        db.query(year, month, func.sum(Payment.amount), func.count(Payment.id))
        .filter(
            Payment.user_id == user_id,
            Payment.status == PaymentStatus.COMPLETED.value,
            Payment.payment_completed_at >= since,
        )
        .group_by(year, month)
        .order_by(year, month)
        .all()
    )

    return {
        "stats": stats,
        "recent_payments": [serialize_payment(p) for p in recent],
        "monthly_revenue": [
            {"year": int(y), "month": int(m), "revenue": int(revenue), "count": count}
            for y, m, revenue, count in monthly_rows
        ],
        "total_revenue": stats[PaymentStatus.COMPLETED.value]["total_amount"],
        "total_transactions": sum(s["count"] for s in stats.values()),
    }


def get_page_analytics(page_id: int, user_id: int, db: Session) -> Dict[str, Any]:
    """Payment and submission breakdown for one of the user's pages

    Raises:
        LookupError: page missing or owned by someone else
    """
    page = db.query(CheckoutPage).filter(
        CheckoutPage.id == page_id,
        CheckoutPage.user_id == user_id
    ).first()
    if not page:
        raise LookupError("Page not found or access denied")

    payments = db.query(Payment).filter(Payment.page_id == page.id)
    payment_stats = _status_totals(payments)

    submission_rows = (
        db.query(Submission.payment_status, func.count(Submission.id))
        .filter(Submission.page_id == page.id)
        .group_by(Submission.payment_status)
        .all()
    )
    submission_stats = {status: count for status, count in submission_rows}

    total_submissions = sum(submission_stats.values())
    total_payments = payment_stats[PaymentStatus.COMPLETED.value]["count"]
    conversion_rate = round(total_payments / total_submissions * 100, 2) if total_submissions else 0

    recent_payments = (
        payments.order_by(Payment.created_at.desc(), Payment.id.desc())
        .limit(RECENT_PAGE_ACTIVITY_LIMIT)
        .all()
    )
    recent_submissions = (
        db.query(Submission)
        .filter(Submission.page_id == page.id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .limit(RECENT_PAGE_ACTIVITY_LIMIT)
        .all()
    )

    return {
        "page": {
            "id": page.id,
            "title": page.title,
            "product_name": page.product_name,
            "price": float(page.price),
            "slug": page.slug,
        },
        "payment_stats": payment_stats,
        "submission_stats": submission_stats,
        "conversion_rate": conversion_rate,
        "total_submissions": total_submissions,
        "total_payments": total_payments,
        "recent_payments": [serialize_payment(p) for p in recent_payments],
        "recent_submissions": [serialize_submission(s) for s in recent_submissions],
    }


def get_payment_status(
    user_id: int,
    db: Session,
    session_id: Optional[str] = None,
    page_id: Optional[int] = None
) -> Dict[str, Any]:
    """Latest of the user's payments matching the filters

    Raises:
        LookupError: no matching payment
    """
    query = db.query(Payment).filter(Payment.user_id == user_id)
    if session_id:
        query = query.filter(Payment.stripe_session_id == session_id)
    if page_id is not None:
        query = query.filter(Payment.page_id == page_id)

    payment = query.order_by(Payment.created_at.desc(), Payment.id.desc()).first()
    if not payment:
        raise LookupError("Payment not found")
    return serialize_payment(payment)
