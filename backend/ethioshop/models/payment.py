"""Payment model"""
from sqlalchemy import Column, Integer, String, Text, Numeric, JSON, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ethioshop.models.base import Base
from ethioshop.models.status import PaymentStatus


class Payment(Base):
    """One attempt to collect an order's funds through one provider"""
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    provider = Column(String(20), nullable=False)  # 'CHAPA', 'STRIPE'
    provider_reference = Column(String(255), nullable=False)  # Chapa tx_ref or Stripe checkout session id
    status = Column(String(20), default=PaymentStatus.PENDING.value, nullable=False, index=True)
    method = Column(String(30), nullable=False)  # 'BANK_TRANSFER', 'CARD'
    payment_metadata = Column(JSON, default=dict)  # Checkout URL, provider evidence
    failure_reason = Column(Text, nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationship
    order = relationship("Order", back_populates="payments")

    # Reconciliation looks payments up by this pair
    __table_args__ = (
        UniqueConstraint('provider', 'provider_reference', name='uq_payments_provider_reference'),
    )
