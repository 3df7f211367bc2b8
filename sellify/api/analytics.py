"""Seller payment and page analytics routes"""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from sellify.core.security import require_auth
from sellify.db.session import get_db
from sellify.services.analytics_service import get_page_analytics, get_payment_analytics, get_payment_status

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/payments")
def payment_analytics(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    return get_payment_analytics(user_id, db)


@router.get("/payments/status")
def payment_status(
    session_id: Optional[str] = Query(None, alias="sessionId"),
    page_id: Optional[int] = Query(None, alias="pageId"),
    user_id: int = Depends(require_auth),
    db: Session = Depends(get_db)
):
    """Latest payment of the caller, optionally by checkout session or page"""
    try:
        return {"payment": get_payment_status(user_id, db, session_id=session_id, page_id=page_id)}
    except LookupError as e:
        raise HTTPException(404, str(e))


@router.get("/pages/{page_id}")
def page_analytics(page_id: int, user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    try:
        return get_page_analytics(page_id, user_id, db)
    except LookupError as e:
        raise HTTPException(404, str(e))
