"""Payment service - open a provider checkout for a pending order"""
import logging
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from ethioshop.core.exceptions import (
    AmountMismatch, CurrencyMismatch, EthioShopError, OrderNotPending, UnsupportedCurrency
)
from ethioshop.core.metrics import payments_initiated_counter
from ethioshop.models.payment import Payment
from ethioshop.models.status import OrderStatus, PaymentStatus
from ethioshop.models.user import User
from ethioshop.services.audit_service import RequestOrigin, record_audit
from ethioshop.services.order_service import get_order, quantize_money
from ethioshop.services.payments.base import PaymentGateway, PaymentRequest

logger = logging.getLogger("payments")


def initiate_payment(
    gateway: PaymentGateway,
    order_id: int,
    user: User,
    origin: RequestOrigin,
    db: Session,
    amount: Optional[Decimal] = None,
    currency: Optional[str] = None,
    email: Optional[str] = None,
    first_name: Optional[str] = None,
    last_name: Optional[str] = None,
    phone: Optional[str] = None,
    description: Optional[str] = None
) -> Payment:
    """Create a checkout with ``gateway`` and record a PENDING payment for it.

    Nothing is written when the provider refuses or cannot be reached.

    Raises:
        OrderNotFound, OrderAccessDenied: the caller cannot pay for this order
        OrderNotPending: the order is past the point of payment
        UnsupportedCurrency: the provider does not accept the currency
        CurrencyMismatch: the currency differs from the order currency
        AmountMismatch: the amount differs from the order total
        GatewayRejected, GatewayUnavailable: the provider call failed
    """
    order = get_order(order_id, user, db)
    if order.status != OrderStatus.PENDING.value:
        raise OrderNotPending(order.id, order.status)

    currency = (currency or order.currency).upper()
    if not gateway.supports_currency(currency):
        payments_initiated_counter.labels(provider=gateway.provider, status="unsupported_currency").inc()
        raise UnsupportedCurrency(gateway.provider, currency)

    # No conversion: the charge is always the stored total in the order's currency
    if currency != order.currency:
        payments_initiated_counter.labels(provider=gateway.provider, status="currency_mismatch").inc()
        raise CurrencyMismatch(order.currency, currency)

    amount = quantize_money(amount) if amount is not None else quantize_money(order.total)
    if amount != quantize_money(order.total):
        raise AmountMismatch(order.total, amount)

    shipping = order.shipping_address
    request = PaymentRequest(
        order_id=order.id,
        amount=amount,
        currency=currency,
        email=email or (shipping.email if shipping else None) or user.email,
        first_name=first_name or (shipping.first_name if shipping else "") or "",
        last_name=last_name or (shipping.last_name if shipping else "") or "",
        phone=phone or (shipping.phone if shipping else "") or "",
        description=description,
    )

    try:
        session = gateway.create_checkout(request)
    except EthioShopError:
        payments_initiated_counter.labels(provider=gateway.provider, status="error").inc()
        raise

    try:
        payment = Payment(
            order_id=order.id,
            amount=amount,
            currency=currency,
            provider=gateway.provider,
            provider_reference=session.reference,
            status=PaymentStatus.PENDING.value,
            method=gateway.method,
            payment_metadata={
                **session.metadata,
                "checkout_url": session.checkout_url,
            },
        )
        db.add(payment)
        order.payment_method = gateway.provider
        db.flush()

        record_audit(
            db, origin, "PAYMENT_INITIATED", "Payment", payment.id,
            new_values={
                "order_id": order.id,
                "provider": gateway.provider,
                "reference": session.reference,
                "amount": str(amount),
                "currency": currency,
            }
        )
        db.commit()
    except Exception:
        db.rollback()
        logger.error(f"Failed to record {gateway.provider} payment for order {order.id} "
                     f"(reference {session.reference})", exc_info=True)
        raise

    db.refresh(payment)
    payments_initiated_counter.labels(provider=gateway.provider, status="success").inc()
    logger.info(f"{gateway.provider} payment {payment.id} initiated for order {order.id}: {amount} {currency}")
    return payment
