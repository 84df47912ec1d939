"""SQLAlchemy models package - imports all models so they register with Base.metadata"""
from ethioshop.models.base import Base
from ethioshop.models.user import User
from ethioshop.models.product import Product
from ethioshop.models.address import Address
from ethioshop.models.order import Order, OrderItem
from ethioshop.models.payment import Payment
from ethioshop.models.audit_log import AuditLog
from ethioshop.models.webhook_event import WebhookEvent

# Export all for convenience
__all__ = [
    "Base", "User", "Product", "Address", "Order", "OrderItem",
    "Payment", "AuditLog", "WebhookEvent"
]
