"""Payment reconciliation - webhooks and synchronous verification converge here

Both paths end in ``apply_outcome``, which only ever moves a payment out of
PENDING. Whichever path arrives second finds the payment already settled and
writes nothing.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ethioshop.core.exceptions import PaymentNotCompleted, PaymentNotFound
from ethioshop.core.metrics import reconciliations_counter, webhooks_received_counter
from ethioshop.models.order import Order
from ethioshop.models.payment import Payment
from ethioshop.models.status import (
    OrderStatus, PaymentStatus, transition_order, transition_payment
)
from ethioshop.models.webhook_event import WebhookEvent
from ethioshop.services.audit_service import RequestOrigin, record_audit
from ethioshop.services.payments import GatewayRegistry, get_gateway
from ethioshop.services.payments.base import PaymentCompleted, PaymentFailed, PaymentOutcome, ProviderEvent

logger = logging.getLogger("payments")
webhook_logger = logging.getLogger("webhooks")

# apply_outcome results
COMPLETED = "completed"
FAILED = "failed"
ALREADY_PROCESSED = "already_processed"
PAYMENT_NOT_FOUND = "payment_not_found"


@dataclass(frozen=True)
class ReconcileResult:
    result: str
    payment_id: Optional[int] = None
    order_id: Optional[int] = None
    payment_status: Optional[str] = None
    order_status: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.result in (COMPLETED, FAILED)


# ============================================================================
# WEBHOOK EVENT LOG
# ============================================================================

def log_webhook_event(provider: str, event: ProviderEvent, db: Session) -> WebhookEvent:
    """Record a delivery once per (provider, event id); redeliveries get the existing row"""
    record = db.query(WebhookEvent).filter(
        WebhookEvent.provider == provider,
        WebhookEvent.event_id == event.event_id
    ).first()
    if record:
        return record

    record = WebhookEvent(
        provider=provider,
        event_id=event.event_id,
        event_type=event.event_type,
        payload=event.payload,
        processed=False
    )
    db.add(record)
    try:
        db.commit()
    except IntegrityError:
        # A concurrent delivery of the same event inserted first
        db.rollback()
        return db.query(WebhookEvent).filter(
            WebhookEvent.provider == provider,
            WebhookEvent.event_id == event.event_id
        ).one()
    db.refresh(record)
    return record


def mark_webhook_event_processed(record: WebhookEvent, db: Session, error_message: str = None):
    """Flag the event handled; the caller commits"""
    record.processed = True
    record.processed_at = datetime.now(timezone.utc)
    record.error_message = error_message


# ============================================================================
# SHARED TRANSITION
# ============================================================================

def _merge_metadata(payment: Payment, details: dict) -> None:
    # Reassign so the JSON column is flagged dirty
    payment.payment_metadata = {**(payment.payment_metadata or {}), **details}


def apply_outcome(
    provider: str,
    reference: str,
    outcome: PaymentOutcome,
    origin: RequestOrigin,
    db: Session,
    source: str = "webhook"
) -> ReconcileResult:
    """Apply a provider's verdict to the matching payment and its order.

    Stages the changes in the caller's transaction; the caller commits.
    """
    payment = db.query(Payment).filter(
        Payment.provider == provider,
        Payment.provider_reference == reference
    ).with_for_update().populate_existing().first()

    if not payment:
        logger.warning(f"No {provider} payment for reference {reference} ({source})")
        reconciliations_counter.labels(provider=provider, source=source, result=PAYMENT_NOT_FOUND).inc()
        return ReconcileResult(result=PAYMENT_NOT_FOUND)

    order = db.query(Order).filter(Order.id == payment.order_id).with_for_update().populate_existing().first()

    if payment.status != PaymentStatus.PENDING.value:
        logger.info(f"{provider} payment {payment.id} already {payment.status}; {source} is a no-op")
        reconciliations_counter.labels(provider=provider, source=source, result=ALREADY_PROCESSED).inc()
        return ReconcileResult(
            result=ALREADY_PROCESSED,
            payment_id=payment.id,
            order_id=payment.order_id,
            payment_status=payment.status,
            order_status=order.status if order else None,
        )

    now = datetime.now(timezone.utc)
    old_payment_status = payment.status

    if isinstance(outcome, PaymentCompleted):
        transition_payment(payment, PaymentStatus.COMPLETED)
        payment.processed_at = now
        _merge_metadata(payment, outcome.details)
        record_audit(
            db, origin, "PAYMENT_COMPLETED", "Payment", payment.id,
            old_values={"status": old_payment_status},
            new_values={
                "status": payment.status,
                "reference": reference,
                "source": source,
                "reported_amount": str(outcome.amount) if outcome.amount is not None else None,
                "reported_currency": outcome.currency,
            }
        )

        if order.status == OrderStatus.PENDING.value:
            transition_order(order, OrderStatus.CONFIRMED)
            record_audit(
                db, origin, "UPDATE", "Order", order.id,
                old_values={"status": OrderStatus.PENDING.value},
                new_values={"status": order.status, "payment_id": payment.id}
            )
        elif order.status == OrderStatus.CANCELLED.value:
            logger.error(
                f"{provider} payment {payment.id} completed for cancelled order {order.id}; "
                f"manual refund required (reference {reference})"
            )
            record_audit(
                db, origin, "PAYMENT_AFTER_CANCEL", "Order", order.id,
                new_values={"payment_id": payment.id, "reference": reference, "requires_refund": True}
            )
        else:
            # Another payment already confirmed this order
            logger.error(
                f"{provider} payment {payment.id} completed for order {order.id} already {order.status}; "
                f"duplicate charge, manual refund required (reference {reference})"
            )
            record_audit(
                db, origin, "PAYMENT_DUPLICATE", "Order", order.id,
                new_values={
                    "payment_id": payment.id,
                    "reference": reference,
                    "order_status": order.status,
                    "requires_refund": True,
                }
            )
        result = COMPLETED

    elif isinstance(outcome, PaymentFailed):
        transition_payment(payment, PaymentStatus.FAILED)
        payment.processed_at = now
        payment.failure_reason = outcome.reason
        _merge_metadata(payment, outcome.details)
        record_audit(
            db, origin, "PAYMENT_FAILED", "Payment", payment.id,
            old_values={"status": old_payment_status},
            new_values={"status": payment.status, "reason": outcome.reason, "source": source}
        )
        result = FAILED

    else:
        raise TypeError(f"Unknown payment outcome: {outcome!r}")

    reconciliations_counter.labels(provider=provider, source=source, result=result).inc()
    logger.info(f"{provider} payment {payment.id} {old_payment_status} -> {payment.status} "
                f"via {source}; order {order.id} is {order.status}")
    return ReconcileResult(
        result=result,
        payment_id=payment.id,
        order_id=order.id,
        payment_status=payment.status,
        order_status=order.status,
    )


# ============================================================================
# RECONCILER
# ============================================================================

class PaymentReconciler:
    """Entry points for provider webhooks and return-URL verification"""

    def __init__(self, gateways: GatewayRegistry):
        self.gateways = gateways

    def handle_webhook(self, provider_name: str, payload: bytes, headers: Mapping[str, str], db: Session) -> str:
        """Verify, log and apply one webhook delivery.

        Returns a short status for logging ('processed', 'duplicate', 'ignored',
        'payment_not_found'). Signature and payload errors propagate before
        anything is written.
        """
        gateway = get_gateway(self.gateways, provider_name)
        provider = gateway.provider

        try:
            event = gateway.parse_webhook(payload, headers)
        except Exception:
            webhooks_received_counter.labels(provider=provider, status="rejected").inc()
            raise

        record = log_webhook_event(provider, event, db)
        if record.processed:
            webhook_logger.info(f"{provider} event {event.event_id} already processed")
            webhooks_received_counter.labels(provider=provider, status="duplicate").inc()
            return "duplicate"

        if event.outcome is None:
            webhook_logger.debug(f"Ignoring {provider} event type {event.event_type}")
            mark_webhook_event_processed(record, db)
            db.commit()
            webhooks_received_counter.labels(provider=provider, status="ignored").inc()
            return "ignored"

        try:
            result = apply_outcome(
                provider, event.reference, event.outcome,
                RequestOrigin.webhook(provider), db, source="webhook"
            )
            if result.result == PAYMENT_NOT_FOUND:
                # Left unprocessed so a provider retry can still reconcile
                record.error_message = f"No payment for reference {event.reference}"
            else:
                mark_webhook_event_processed(record, db)
            db.commit()
        except Exception as e:
            db.rollback()
            webhook_logger.error(f"Error processing {provider} event {event.event_id}: {e}", exc_info=True)
            record.error_message = str(e)[:1000]
            db.commit()
            webhooks_received_counter.labels(provider=provider, status="error").inc()
            raise

        webhooks_received_counter.labels(provider=provider, status=result.result).inc()
        webhook_logger.info(f"{provider} event {event.event_id} ({event.event_type}): {result.result}")
        return "payment_not_found" if result.result == PAYMENT_NOT_FOUND else "processed"

    def verify(self, provider_name: str, reference: str, origin: RequestOrigin, db: Session) -> ReconcileResult:
        """Ask the provider for a payment's result and apply it.

        Raises:
            PaymentNotFound: no local payment carries this reference
            PaymentNotCompleted: the payment is pending or failed
            GatewayUnavailable: the provider could not be reached
        """
        gateway = get_gateway(self.gateways, provider_name)
        provider = gateway.provider

        payment = db.query(Payment).filter(
            Payment.provider == provider,
            Payment.provider_reference == reference
        ).first()
        if not payment:
            raise PaymentNotFound(provider, reference)

        if payment.status == PaymentStatus.COMPLETED.value:
            reconciliations_counter.labels(provider=provider, source="verify", result=ALREADY_PROCESSED).inc()
            return ReconcileResult(
                result=ALREADY_PROCESSED,
                payment_id=payment.id,
                order_id=payment.order_id,
                payment_status=payment.status,
                order_status=payment.order.status,
            )
        if payment.status == PaymentStatus.FAILED.value:
            raise PaymentNotCompleted(reference)

        outcome = gateway.verify(reference)
        if outcome is None:
            reconciliations_counter.labels(provider=provider, source="verify", result="pending").inc()
            raise PaymentNotCompleted(reference)

        try:
            result = apply_outcome(provider, reference, outcome, origin, db, source="verify")
            db.commit()
        except Exception:
            db.rollback()
            raise

        if result.payment_status != PaymentStatus.COMPLETED.value:
            raise PaymentNotCompleted(reference)
        return result
