"""User model"""
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship
from datetime import datetime, timezone
from ethioshop.models.base import Base
from ethioshop.models.status import UserRole


class User(Base):
    """Storefront accounts (customers, vendors, admins)"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    role = Column(String(20), default=UserRole.CUSTOMER.value, nullable=False)  # 'CUSTOMER', 'VENDOR', 'ADMIN'
    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    # Relationships
    orders = relationship("Order", back_populates="user")
    addresses = relationship("Address", back_populates="user")
    products = relationship("Product", back_populates="vendor")

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value
