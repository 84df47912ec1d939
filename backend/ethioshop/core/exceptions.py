"""Domain errors raised by the order and payment services.

Each error carries the HTTP status the API layer answers with, so routes can
translate service failures into ``HTTPException`` without string matching.
"""
from typing import Iterable, Optional


class EthioShopError(Exception):
    """Base class for expected, client-visible failures"""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


# --- catalog / order creation -------------------------------------------------

class ProductUnavailable(EthioShopError):
    def __init__(self, product_ids: Iterable[int]):
        self.product_ids = sorted(product_ids)
        super().__init__(
            f"One or more products not found or unavailable: {', '.join(str(p) for p in self.product_ids)}"
        )


class InsufficientStock(EthioShopError):
    def __init__(self, product_id: int, product_name: str, requested: int, available: Optional[int] = None):
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(f"Insufficient stock for {product_name}")


class InvalidOrderStatus(EthioShopError):
    def __init__(self, value: str):
        super().__init__(f"Invalid status: {value}")


class InvalidStatusTransition(EthioShopError):
    def __init__(self, entity: str, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"{entity} cannot move from {current} to {target}")


class OrderNotFound(EthioShopError):
    status_code = 404

    def __init__(self, order_id: int):
        super().__init__(f"Order {order_id} not found")


class OrderAccessDenied(EthioShopError):
    status_code = 403

    def __init__(self):
        super().__init__("Forbidden")


class OrderNotPending(EthioShopError):
    def __init__(self, order_id: int, status: str):
        self.status = status
        super().__init__(f"Order {order_id} is not in pending status (current: {status})")


# --- payment initiation -------------------------------------------------------

class UnknownProvider(EthioShopError):
    status_code = 404

    def __init__(self, provider: str):
        super().__init__(f"Unknown payment provider: {provider}")


class UnsupportedCurrency(EthioShopError):
    def __init__(self, provider: str, currency: str):
        self.currency = currency
        super().__init__(f"Currency {currency} not supported by {provider}")


class AmountMismatch(EthioShopError):
    def __init__(self, expected, received):
        super().__init__(f"Amount {received} does not match order total {expected}")


class CurrencyMismatch(EthioShopError):
    def __init__(self, expected: str, received: str):
        self.currency = received
        super().__init__(f"Currency {received} does not match order currency {expected}")


class GatewayRejected(EthioShopError):
    """The provider answered but refused the request"""

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(message or f"{provider} rejected the request")


class GatewayUnavailable(EthioShopError):
    """The provider could not be reached or answered with garbage"""
    status_code = 502

    def __init__(self, provider: str, message: str):
        self.provider = provider
        super().__init__(f"{provider} unavailable: {message}")


# --- reconciliation -----------------------------------------------------------

class InvalidSignature(EthioShopError):
    status_code = 401

    def __init__(self, provider: str):
        super().__init__(f"Invalid {provider} webhook signature")


class InvalidWebhookPayload(EthioShopError):
    def __init__(self, provider: str, message: str = "Invalid webhook payload"):
        super().__init__(f"{provider}: {message}")


class PaymentNotFound(EthioShopError):
    status_code = 404

    def __init__(self, provider: str, reference: str):
        super().__init__(f"Payment not found for {provider} reference {reference}")


class PaymentNotCompleted(EthioShopError):
    def __init__(self, reference: str):
        super().__init__(f"Payment {reference} not completed")
