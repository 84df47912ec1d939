"""AuditLog model"""
from sqlalchemy import Column, Integer, String, JSON, DateTime, ForeignKey, Index, event
from datetime import datetime, timezone
from ethioshop.models.base import Base


class AuditLog(Base):
    """Append-only record of state-changing actions"""
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    actor = Column(String(100), nullable=False)  # 'user:<id>', 'webhook', 'system'
    action = Column(String(50), nullable=False)  # 'CREATE', 'UPDATE', 'PAYMENT_COMPLETED', ...
    entity_type = Column(String(50), nullable=False)
    entity_id = Column(Integer, nullable=False)
    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)
    ip_address = Column(String(100), nullable=True)
    user_agent = Column(String(255), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index('ix_audit_logs_entity', 'entity_type', 'entity_id'),
    )


class AuditLogImmutableError(RuntimeError):
    pass


@event.listens_for(AuditLog, "before_update")
def _reject_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _reject_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entry {target.id} is append-only")
