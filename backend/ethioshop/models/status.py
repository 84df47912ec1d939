"""Order and payment status enums with their transition tables"""
from enum import Enum
from typing import Dict, FrozenSet

from ethioshop.core.exceptions import InvalidOrderStatus, InvalidStatusTransition


class OrderStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    PROCESSING = "PROCESSING"
    SHIPPED = "SHIPPED"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class PaymentProvider(str, Enum):
    CHAPA = "CHAPA"
    STRIPE = "STRIPE"


class UserRole(str, Enum):
    CUSTOMER = "CUSTOMER"
    VENDOR = "VENDOR"
    ADMIN = "ADMIN"


# Forward one step at a time; CANCELLED from any non-terminal state
ORDER_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.CONFIRMED, OrderStatus.CANCELLED}),
    OrderStatus.CONFIRMED: frozenset({OrderStatus.PROCESSING, OrderStatus.CANCELLED}),
    OrderStatus.PROCESSING: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, FrozenSet[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.COMPLETED, PaymentStatus.FAILED}),
    PaymentStatus.COMPLETED: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}


def parse_order_status(value: str) -> OrderStatus:
    """Map a raw string onto OrderStatus, raising InvalidOrderStatus otherwise"""
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidOrderStatus(value)


def can_transition_order(current: str, target: str) -> bool:
    return OrderStatus(target) in ORDER_TRANSITIONS[OrderStatus(current)]


def can_transition_payment(current: str, target: str) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def transition_order(order, target: OrderStatus) -> str:
    """Move an order to ``target``, returning the previous status.

    Raises:
        InvalidStatusTransition: if the table does not allow the move
    """
    previous = order.status
    if not can_transition_order(previous, target):
        raise InvalidStatusTransition("Order", previous, OrderStatus(target).value)
    order.status = OrderStatus(target).value
    return previous


def transition_payment(payment, target: PaymentStatus) -> str:
    """Move a payment to ``target``, returning the previous status"""
    previous = payment.status
    if not can_transition_payment(previous, target):
        raise InvalidStatusTransition("Payment", previous, PaymentStatus(target).value)
    payment.status = PaymentStatus(target).value
    return previous


def is_terminal_order_status(status: str) -> bool:
    return not ORDER_TRANSITIONS[OrderStatus(status)]
