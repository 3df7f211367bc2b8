"""Webhook event introspection and retention"""
import logging
from datetime import timedelta
from typing import Any, Dict, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from sellify.models.base import utcnow
from sellify.models.webhook_event import WebhookEvent, WebhookEventStatus

logger = logging.getLogger(__name__)
cleanup_logger = logging.getLogger("cleanup")


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def _serialize_event(event: WebhookEvent, include_payload: bool = False) -> Dict[str, Any]:
    data = {
        "id": event.id,
        "stripe_event_id": event.stripe_event_id,
        "event_type": event.event_type,
        "status": event.status,
        "processed_at": _isoformat(event.processed_at),
        "processing_error": event.processing_error,
        "retry_count": event.retry_count,
        "last_retry_at": _isoformat(event.last_retry_at),
        "created_at": _isoformat(event.created_at),
        "page": None,
        "payment": None,
    }
    if event.page is not None:
        data["page"] = {
            "id": event.page.id,
            "title": event.page.title,
            "slug": event.page.slug,
            "product_name": event.page.product_name,
        }
    if event.payment is not None:
        data["payment"] = {
            "id": event.payment.id,
            "amount": event.payment.amount,
            "currency": event.payment.currency,
            "status": event.payment.status,
            "customer_email": event.payment.customer_email,
        }
    if include_payload:
        data["event_data"] = event.event_data
        data["processing_result"] = event.processing_result
        if data["payment"] is not None:
            data["payment"]["customer_name"] = event.payment.customer_name
    return data


def list_webhook_events(
    user_id: int,
    db: Session,
    page: int = 1,
    limit: int = 20,
    event_type: Optional[str] = None,
    status: Optional[str] = None
) -> Dict[str, Any]:
    """List the user's webhook events, newest first

    Returns:
        Dict with 'events', 'total', 'page', 'limit', 'pages'
    """
    query = db.query(WebhookEvent).filter(WebhookEvent.user_id == user_id)
    if event_type:
        query = query.filter(WebhookEvent.event_type == event_type)
    if status:
        query = query.filter(WebhookEvent.status == status)

    total = query.count()
    events = (
        query.order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )
    return {
        "events": [_serialize_event(e) for e in events],
        "total": total,
        "page": page,
        "limit": limit,
        "pages": (total + limit - 1) // limit,
    }


def get_webhook_event(event_id: int, user_id: int, db: Session) -> Dict[str, Any]:
    """Raises LookupError if the event does not exist or belongs to someone else"""
    event = db.query(WebhookEvent).filter(
        WebhookEvent.id == event_id,
        WebhookEvent.user_id == user_id
    ).first()
    if not event:
        raise LookupError("Webhook event not found")
    return _serialize_event(event, include_payload=True)


def get_webhook_stats(user_id: int, db: Session, days: int = 30) -> Dict[str, Any]:
    """Event counts and success rate over the last ``days`` days"""
    since = utcnow() - timedelta(days=days)
    rows = (
        db.query(WebhookEvent.event_type, WebhookEvent.status, func.count(WebhookEvent.id))
        .filter(WebhookEvent.user_id == user_id, WebhookEvent.created_at >= since)
        .group_by(WebhookEvent.event_type, WebhookEvent.status)
        .all()
    )

    by_type: Dict[str, Dict[str, int]] = {}
    total = completed = failed = 0
    for event_type, status, count in rows:
        stats = by_type.setdefault(event_type, {"count": 0, "completed": 0, "failed": 0})
        stats["count"] += count
        total += count
        if status == WebhookEventStatus.COMPLETED.value:
            stats["completed"] += count
            completed += count
        elif status == WebhookEventStatus.FAILED.value:
            stats["failed"] += count
            failed += count

    return {
        "days": days,
        "total_events": total,
        "completed_events": completed,
        "failed_events": failed,
        "success_rate": round(completed / total * 100, 2) if total else 0,
        "event_type_stats": [
            {"event_type": event_type, **stats}
            for event_type, stats in sorted(by_type.items(), key=lambda item: -item[1]["count"])
        ],
    }


def purge_expired_events(db: Session, retention_days: int) -> int:
    """Delete webhook events older than the retention window, return how many"""
    cutoff = utcnow() - timedelta(days=retention_days)
    removed = (
        db.query(WebhookEvent)
        .filter(WebhookEvent.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    if removed:
        cleanup_logger.info(f"Removed {removed} webhook events older than {retention_days} days")
    return removed
