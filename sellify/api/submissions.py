"""Submission routes across all of a seller's pages"""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from sellify.core.security import require_auth
from sellify.db.session import get_db
from sellify.services.submission_service import list_user_submissions, serialize_submission

router = APIRouter(prefix="/api/submissions", tags=["submissions"])


@router.get("")
def get_user_submissions(user_id: int = Depends(require_auth), db: Session = Depends(get_db)):
    submissions = list_user_submissions(user_id, db)
    return {
        "results": len(submissions),
        "submissions": [serialize_submission(s, include_page=True) for s in submissions],
    }
