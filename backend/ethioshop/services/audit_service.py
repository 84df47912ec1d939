"""Audit service - append-only record of state changes"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from fastapi import Request
from sqlalchemy.orm import Session

from ethioshop.models.audit_log import AuditLog

logger = logging.getLogger(__name__)

WEBHOOK_ACTOR = "webhook"
SYSTEM_ACTOR = "system"


@dataclass(frozen=True)
class RequestOrigin:
    """Who triggered an action and from where"""
    actor: str
    user_id: Optional[int] = None
    ip_address: str = "unknown"
    user_agent: str = "unknown"

    @classmethod
    def from_request(cls, request: Request, user_id: Optional[int] = None) -> "RequestOrigin":
        ip = request.headers.get("X-Forwarded-For", "").split(",")[0].strip()
        if not ip:
            ip = request.headers.get("X-Real-IP") or (request.client.host if request.client else "unknown")
        return cls(
            actor=f"user:{user_id}" if user_id is not None else "anonymous",
            user_id=user_id,
            ip_address=ip,
            user_agent=request.headers.get("User-Agent", "unknown"),
        )

    @classmethod
    def webhook(cls, provider: str) -> "RequestOrigin":
        return cls(actor=WEBHOOK_ACTOR, ip_address="webhook", user_agent=f"{provider.lower()}-webhook")

    @classmethod
    def system(cls, task: str) -> "RequestOrigin":
        return cls(actor=SYSTEM_ACTOR, ip_address="internal", user_agent=task)


def record_audit(
    db: Session,
    origin: RequestOrigin,
    action: str,
    entity_type: str,
    entity_id: int,
    new_values: Optional[Dict[str, Any]] = None,
    old_values: Optional[Dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit entry in the caller's unit of work.

    Does not commit: the entry lands or rolls back together with the change it
    describes.
    """
    entry = AuditLog(
        user_id=origin.user_id,
        actor=origin.actor,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        old_values=old_values,
        new_values=new_values,
        ip_address=origin.ip_address,
        user_agent=origin.user_agent,
    )
    db.add(entry)
    return entry


def get_audit_trail(entity_type: str, entity_id: int, db: Session) -> List[AuditLog]:
    """Entries for one entity, oldest first"""
    return db.query(AuditLog).filter(
        AuditLog.entity_type == entity_type,
        AuditLog.entity_id == entity_id
    ).order_by(AuditLog.id.asc()).all()
