"""Authentication dependencies, role checks, and access logging"""
import json
import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ethioshop.db.redis import check_rate_limit as redis_check_rate_limit, get_session
from ethioshop.db.session import get_db
from ethioshop.models.status import UserRole
from ethioshop.models.user import User

security_logger = logging.getLogger("security")
api_access_logger = logging.getLogger("api_access")


def require_auth(request: Request) -> int:
    """Dependency: Require authentication, return user_id"""
    session_id = request.cookies.get("session_id")

    if not session_id:
        raise HTTPException(401, "Not authenticated. Please log in.")

    user_id = get_session(session_id)
    if not user_id:
        raise HTTPException(401, "Session expired. Please log in again.")

    return user_id


def get_current_user(user_id: int = Depends(require_auth), db: Session = Depends(get_db)) -> User:
    """Dependency: the authenticated User row"""
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        security_logger.warning(f"Session references missing user {user_id}")
        raise HTTPException(401, "Not authenticated. Please log in.")
    return user


def require_roles(*roles: UserRole):
    """Dependency factory: the current user must hold one of ``roles``"""
    allowed = {r.value for r in roles}

    def checker(request: Request, user: User = Depends(get_current_user)) -> User:
        if user.role not in allowed:
            security_logger.warning(
                f"Role check failed - User: {user.id} ({user.role}), Path: {request.url.path}"
            )
            raise HTTPException(403, "Forbidden")
        return user

    return checker


def get_client_ip(request: Request) -> str:
    client_ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
    if not client_ip:
        client_ip = request.client.host if request.client else "unknown"
    return client_ip


def get_client_identifier(request: Request, session_id: Optional[str] = None) -> str:
    """Get a unique identifier for rate limiting"""
    if session_id:
        return f"session:{session_id}"
    return f"ip:{get_client_ip(request)}"


def check_rate_limit(identifier: str, strict: bool = False) -> bool:
    """Check if request is within rate limit

    Args:
        identifier: Client identifier (session ID or IP)
        strict: If True, use stricter rate limits for state-changing operations
    """
    return redis_check_rate_limit(identifier, strict=strict)


def log_api_access(
    request: Request,
    session_id: Optional[str] = None,
    status_code: int = 200,
    error: Optional[str] = None
):
    """Log detailed API access information"""
    log_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "method": request.method,
        "path": request.url.path,
        "query": str(request.url.query) if request.url.query else None,
        "session_id": session_id[:16] + "..." if session_id else None,
        "client_ip": get_client_ip(request),
        "user_agent": request.headers.get("User-Agent", "unknown"),
        "status_code": status_code,
        "error": error
    }

    if error or status_code >= 400:
        api_access_logger.warning(f"API Access: {json.dumps(log_data)}")
    else:
        api_access_logger.info(f"API Access: {json.dumps(log_data)}")
