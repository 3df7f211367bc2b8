"""Checkout page management and plan limits"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from sellify.models.base import utcnow
from sellify.models.checkout_page import CheckoutPage
from sellify.models.user import User
from sellify.utils.slug import random_suffix, slugify

logger = logging.getLogger(__name__)

# None means unlimited
PLAN_PAGE_LIMITS = {
    "free": 10,
    "builder": 25,
    "pro": None,
}

MAX_SLUG_ATTEMPTS = 10

# Columns a PATCH may not clear
REQUIRED_PAGE_FIELDS = frozenset({
    "title", "product_name", "price", "currency", "fields", "order_bumps", "layout_style"
})


def serialize_page(page: CheckoutPage) -> Dict[str, Any]:
    return {
        "id": page.id,
        "user_id": page.user_id,
        "slug": page.slug,
        "title": page.title,
        "product_name": page.product_name,
        "description": page.description,
        "price": float(page.price),
        "currency": page.currency,
        "fields": page.fields or [],
        "order_bumps": page.order_bumps or [],
        "success_redirect_url": page.success_redirect_url,
        "cancel_redirect_url": page.cancel_redirect_url,
        "layout_style": page.layout_style,
        "created_at": page.created_at.isoformat() if page.created_at else None,
        "updated_at": page.updated_at.isoformat() if page.updated_at else None,
    }

# ============================================================================
# PLAN LIMITS
# ============================================================================

def _trial_expired(user: User) -> bool:
    if user.plan != "free" or not user.trial_expires_at:
        return False
    expires_at = user.trial_expires_at
    if expires_at.tzinfo is None:
        # SQLite hands back naive datetimes
        return utcnow().replace(tzinfo=None) > expires_at
    return utcnow() > expires_at


def check_page_limit(user: User, db: Session) -> None:
    """Raises PermissionError when the user may not create another page"""
    if _trial_expired(user):
        raise PermissionError(
            "Your trial has expired. Please upgrade your plan to continue using the service."
        )

    plan = user.plan if user.plan in PLAN_PAGE_LIMITS else "free"
    limit = PLAN_PAGE_LIMITS[plan]
    if limit is None:
        return

    page_count = db.query(CheckoutPage).filter(CheckoutPage.user_id == user.id).count()
    if page_count >= limit:
        raise PermissionError(
            f"You have reached the maximum of {limit} pages for the {plan} plan. "
            "Please upgrade your plan to create more."
        )

# ============================================================================
# SLUGS
# ============================================================================

def _slug_taken(slug: str, db: Session, exclude_page_id: Optional[int] = None) -> bool:
    query = db.query(CheckoutPage.id).filter(CheckoutPage.slug == slug)
    if exclude_page_id is not None:
        query = query.filter(CheckoutPage.id != exclude_page_id)
    return query.first() is not None


def generate_unique_slug(title: str, db: Session) -> str:
    base = slugify(title)
    if not _slug_taken(base, db):
        return base
    for _ in range(MAX_SLUG_ATTEMPTS):
        candidate = f"{base}-{random_suffix()}"
        if not _slug_taken(candidate, db):
            return candidate
    raise ValueError("Could not generate a unique URL slug, please choose one.")

# ============================================================================
# CRUD
# ============================================================================

def create_page(user_id: int, data: Dict[str, Any], db: Session) -> CheckoutPage:
    """Create a checkout page for ``user_id``

    Raises:
        LookupError: user not found
        PermissionError: plan limit reached or trial expired
        ValueError: explicit slug already taken
    """
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise LookupError("User not found")
    check_page_limit(user, db)

    data = dict(data)
    requested_slug = data.pop("slug", None)
    if requested_slug:
        slug = slugify(requested_slug)
        if _slug_taken(slug, db):
            raise ValueError("URL slug is already taken.")
    else:
        slug = generate_unique_slug(data["title"], db)

    page = CheckoutPage(user_id=user.id, slug=slug, **data)
    db.add(page)
    db.commit()
    db.refresh(page)
    logger.info(f"User {user.id} created page {page.id} ({page.slug})")
    return page


def list_user_pages(user_id: int, db: Session) -> List[CheckoutPage]:
    return (
        db.query(CheckoutPage)
        .filter(CheckoutPage.user_id == user_id)
        .order_by(CheckoutPage.created_at.desc(), CheckoutPage.id.desc())
        .all()
    )


def get_page_by_slug(slug: str, db: Session) -> Dict[str, Any]:
    """Public page lookup, also reports whether the owner can take payments"""
    page = db.query(CheckoutPage).filter(CheckoutPage.slug == slug.lower()).first()
    if not page:
        raise LookupError("Checkout page not found.")
    return {
        "page": serialize_page(page),
        "is_stripe_connected": bool(page.user and page.user.stripe_account_id),
    }


def get_owned_page(page_id: int, user_id: int, db: Session, action: str = "access") -> CheckoutPage:
    """Raises LookupError if missing, PermissionError if owned by someone else"""
    page = db.query(CheckoutPage).filter(CheckoutPage.id == page_id).first()
    if not page:
        raise LookupError("Page not found.")
    if page.user_id != user_id:
        raise PermissionError(f"You are not authorized to {action} this page.")
    return page


def update_page(page_id: int, user_id: int, changes: Dict[str, Any], db: Session) -> CheckoutPage:
    page = get_owned_page(page_id, user_id, db, action="update")

    changes = dict(changes)
    if changes.get("slug"):
        slug = slugify(changes["slug"])
        if _slug_taken(slug, db, exclude_page_id=page.id):
            raise ValueError("URL slug is already taken.")
        changes["slug"] = slug
    else:
        changes.pop("slug", None)

    for field, value in changes.items():
        if value is None and field in REQUIRED_PAGE_FIELDS:
            continue
        setattr(page, field, value)
    db.commit()
    db.refresh(page)
    logger.info(f"User {user_id} updated page {page.id}")
    return page


def delete_page(page_id: int, user_id: int, db: Session) -> None:
    page = get_owned_page(page_id, user_id, db, action="delete")
    db.delete(page)
    db.commit()
    logger.info(f"User {user_id} deleted page {page_id}")
