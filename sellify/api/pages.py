"""Checkout page and submission routes"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.orm import Session

from sellify.core.security import get_client_ip, require_auth
from sellify.db.session import get_db
from sellify.schemas.pages import PageCreate, PageUpdate, SubmissionCreate
from sellify.services.page_service import (
    create_page, delete_page, get_page_by_slug, list_user_pages, serialize_page, update_page
)
from sellify.services.submission_service import (
    create_submission, list_page_submissions, serialize_submission
)

router = APIRouter(prefix="/api/pages", tags=["pages"])
logger = logging.getLogger(__name__)


@router.post("", status_code=201)
def create_page_route(
    page_request: PageCreate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    try:
        data = page_request.model_dump(mode="json")
        data["price"] = page_request.price
        page = create_page(user_id, data, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"page": serialize_page(page)}


@router.get("")
def list_pages(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    pages = list_user_pages(user_id, db)
    return {"results": len(pages), "pages": [serialize_page(p) for p in pages]}


@router.get("/{slug}")
def get_public_page(slug: str, db: Session = Depends(get_db)):
    """Public page lookup for the checkout form"""
    try:
        return get_page_by_slug(slug, db)
    except LookupError as e:
        raise HTTPException(404, str(e))


@router.patch("/{page_id}")
def update_page_route(
    page_id: int,
    page_request: PageUpdate,
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    changes = page_request.model_dump(mode="json", exclude_unset=True)
    if "price" in changes:
        changes["price"] = page_request.price
    try:
        page = update_page(page_id, user_id, changes, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"page": serialize_page(page)}


@router.delete("/{page_id}", status_code=204)
def delete_page_route(page_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        delete_page(page_id, user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    return Response(status_code=204)


@router.post("/{slug}/submit", status_code=201)
def submit_form(
    slug: str,
    submission_request: SubmissionCreate,
    request: Request,
    db: Session = Depends(get_db)
):
    """Public form submission"""
    try:
        submission = create_submission(
            slug,
            submission_request.form_data,
            db,
            customer_name=submission_request.customer_name,
            ip_address=get_client_ip(request),
            user_agent=request.headers.get("User-Agent"),
        )
    except LookupError as e:
        raise HTTPException(404, str(e))
    except ValueError as e:
        raise HTTPException(400, str(e))
    return {"message": "Form submitted successfully.", "submission_id": submission.id}


@router.get("/{page_id}/submissions")
def get_page_submissions(page_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        submissions = list_page_submissions(page_id, user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
    except PermissionError as e:
        raise HTTPException(403, str(e))
    return {"results": len(submissions), "submissions": [serialize_submission(s) for s in submissions]}
