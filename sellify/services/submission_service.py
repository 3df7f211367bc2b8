"""Public form submissions and owner listings"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from sellify.models.checkout_page import CheckoutPage
from sellify.models.submission import Submission, SubmissionPaymentStatus
from sellify.services.page_service import get_owned_page

logger = logging.getLogger(__name__)


def serialize_submission(submission: Submission, include_page: bool = False) -> Dict[str, Any]:
    data = {
        "id": submission.id,
        "page_id": submission.page_id,
        "form_data": submission.form_data,
        "payment_status": submission.payment_status,
        "payment_id": submission.payment_id,
        "customer_email": submission.customer_email,
        "customer_name": submission.customer_name,
        "created_at": submission.created_at.isoformat() if submission.created_at else None,
    }
    if include_page and submission.page is not None:
        data["page"] = {
            "id": submission.page.id,
            "title": submission.page.title,
            "slug": submission.page.slug,
        }
    return data


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _customer_email(page: CheckoutPage, form_data: Dict[str, Any]) -> Optional[str]:
    for field in page.fields or []:
        if field.get("type") == "email":
            value = form_data.get(field.get("label"))
            return value.strip() if isinstance(value, str) and value.strip() else None
    return None


def create_submission(
    slug: str,
    form_data: Dict[str, Any],
    db: Session,
    customer_name: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> Submission:
    """Store a form fill for the page at ``slug``

    Raises:
        LookupError: page not found
        ValueError: a required field is missing
    """
    page = db.query(CheckoutPage).filter(CheckoutPage.slug == slug.lower()).first()
    if not page:
        raise LookupError("Checkout page not found.")

    missing = [
        field.get("label") for field in page.fields or []
        if field.get("required") and _is_blank(form_data.get(field.get("label")))
    ]
    if missing:
        raise ValueError(f"Missing required fields: {', '.join(missing)}")

    submission = Submission(
        page_id=page.id,
        form_data=form_data,
        payment_status=SubmissionPaymentStatus.NONE.value,
        customer_email=_customer_email(page, form_data),
        customer_name=customer_name,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    db.add(submission)
    db.commit()
    db.refresh(submission)
    logger.info(f"New submission {submission.id} for page {page.id}")
    return submission


def list_page_submissions(page_id: int, user_id: int, db: Session) -> List[Submission]:
    page = get_owned_page(page_id, user_id, db, action="view submissions of")
    return (
        db.query(Submission)
        .filter(Submission.page_id == page.id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .all()
    )


def list_user_submissions(user_id: int, db: Session) -> List[Submission]:
    return (
        db.query(Submission)
        .join(CheckoutPage, Submission.page_id == CheckoutPage.id)
        .filter(CheckoutPage.user_id == user_id)
        .order_by(Submission.created_at.desc(), Submission.id.desc())
        .all()
    )
