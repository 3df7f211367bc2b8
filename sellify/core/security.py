"""Authentication dependency and API access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from sellify.core.config import settings
from sellify.db.session import get_db
from sellify.models.user import User

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")

AUTH_COOKIE_NAME = "jwt"


def get_token_from_request(request: Request) -> Optional[str]:
    """Bearer token from the Authorization header, falling back to the jwt cookie"""
    auth = request.headers.get("Authorization") or ""
    parts = auth.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return request.cookies.get(AUTH_COOKIE_NAME)


def decode_token(token: str) -> dict:
    """Raises jwt.InvalidTokenError on a bad, expired or unsigned token"""
    if not settings.JWT_SECRET:
        raise jwt.InvalidTokenError("JWT_SECRET not configured")
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


def require_auth(request: Request, db: Session = Depends(get_db)) -> int:
    """Dependency: Require authentication, return user_id"""
    token = get_token_from_request(request)
    if not token:
        raise HTTPException(401, "You are not logged in! Please log in to get access.")

    try:
        claims = decode_token(token)
    except jwt.InvalidTokenError as e:
        security_logger.warning(
            f"Rejected token - Path: {request.url.path}, "
            f"IP: {get_client_ip(request)}, Reason: {e}"
        )
        raise HTTPException(401, "Invalid token or session has expired.")

    try:
        user_id = int(claims.get("id"))
    except (TypeError, ValueError):
        raise HTTPException(401, "Invalid token or session has expired.")

    user = db.query(User.id).filter(User.id == user_id).first()
    if not user:
        raise HTTPException(401, "The user belonging to this token no longer exists.")

    return user_id


def get_client_ip(request: Request) -> str:
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def log_api_access(
    request: Request,
    status_code: int = 200,
    error: Optional[str] = None,
    duration_ms: Optional[float] = None
):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "origin": request.headers.get("Origin", "none"),
        "status_code": status_code,
        "duration_ms": duration_ms,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
