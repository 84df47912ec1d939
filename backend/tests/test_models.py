"""Database integrity and status machine tests"""
import pytest
from decimal import Decimal
from sqlalchemy.exc import IntegrityError

from ethioshop.core.exceptions import InvalidOrderStatus, InvalidStatusTransition
from ethioshop.models.audit_log import AuditLog, AuditLogImmutableError
from ethioshop.models.order import Order
from ethioshop.models.payment import Payment
from ethioshop.models.product import Product
from ethioshop.models.status import (
    OrderStatus, PaymentStatus, can_transition_order, can_transition_payment,
    is_terminal_order_status, parse_order_status, transition_order, transition_payment
)
from ethioshop.models.webhook_event import WebhookEvent
from ethioshop.services.audit_service import RequestOrigin, get_audit_trail, record_audit


@pytest.mark.critical
class TestOrderStatusMachine:
    """Order lifecycle: forward one step at a time, cancel from any open state"""

    @pytest.mark.parametrize("current,target", [
        ("PENDING", "CONFIRMED"),
        ("CONFIRMED", "PROCESSING"),
        ("PROCESSING", "SHIPPED"),
        ("SHIPPED", "DELIVERED"),
        ("PENDING", "CANCELLED"),
        ("SHIPPED", "CANCELLED"),
    ])
    def test_allowed_transitions(self, current, target):
        assert can_transition_order(current, target)

    @pytest.mark.parametrize("current,target", [
        ("PENDING", "SHIPPED"),
        ("CONFIRMED", "PENDING"),
        ("DELIVERED", "CANCELLED"),
        ("CANCELLED", "PENDING"),
        ("CANCELLED", "CONFIRMED"),
    ])
    def test_rejected_transitions(self, current, target):
        assert not can_transition_order(current, target)

    def test_transition_order_returns_previous_status(self):
        order = Order(status=OrderStatus.PENDING.value)
        previous = transition_order(order, OrderStatus.CONFIRMED)
        assert previous == "PENDING"
        assert order.status == "CONFIRMED"

    def test_transition_order_raises_and_leaves_status(self):
        order = Order(status=OrderStatus.DELIVERED.value)
        with pytest.raises(InvalidStatusTransition):
            transition_order(order, OrderStatus.CANCELLED)
        assert order.status == "DELIVERED"

    def test_terminal_statuses(self):
        assert is_terminal_order_status("DELIVERED")
        assert is_terminal_order_status("CANCELLED")
        assert not is_terminal_order_status("SHIPPED")

    def test_parse_order_status_rejects_unknown_value(self):
        assert parse_order_status("SHIPPED") == OrderStatus.SHIPPED
        with pytest.raises(InvalidOrderStatus):
            parse_order_status("LOST")


@pytest.mark.critical
class TestPaymentStatusMachine:
    """Payments leave PENDING exactly once"""

    def test_pending_can_complete_or_fail(self):
        assert can_transition_payment("PENDING", "COMPLETED")
        assert can_transition_payment("PENDING", "FAILED")

    def test_settled_payments_are_final(self):
        assert not can_transition_payment("COMPLETED", "FAILED")
        assert not can_transition_payment("FAILED", "COMPLETED")
        assert not can_transition_payment("COMPLETED", "PENDING")

    def test_transition_payment_rejects_second_settlement(self):
        payment = Payment(status=PaymentStatus.PENDING.value)
        transition_payment(payment, PaymentStatus.COMPLETED)
        with pytest.raises(InvalidStatusTransition):
            transition_payment(payment, PaymentStatus.FAILED)
        assert payment.status == "COMPLETED"


@pytest.mark.high
class TestConstraints:
    """Uniqueness and value constraints"""

    def test_payment_reference_unique_per_provider(self, place_order, product, db_session):
        order = place_order(product)
        for _ in range(2):
            db_session.add(Payment(
                order_id=order.id, amount=Decimal("1035.00"), currency="ETB", provider="CHAPA",
                provider_reference="chapa_1700000000000_dup000001", method="BANK_TRANSFER"
            ))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_same_reference_allowed_for_different_providers(self, place_order, product, db_session):
        order = place_order(product)
        db_session.add(Payment(order_id=order.id, amount=Decimal("1035.00"), currency="ETB",
                               provider="CHAPA", provider_reference="ref-1", method="BANK_TRANSFER"))
        db_session.add(Payment(order_id=order.id, amount=Decimal("1035.00"), currency="USD",
                               provider="STRIPE", provider_reference="ref-1", method="CARD"))
        db_session.commit()
        assert db_session.query(Payment).count() == 2

    def test_webhook_event_unique_per_provider(self, db_session):
        db_session.add(WebhookEvent(provider="CHAPA", event_id="evt-1", event_type="charge.success", payload={}))
        db_session.add(WebhookEvent(provider="CHAPA", event_id="evt-1", event_type="charge.success", payload={}))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()

    def test_product_price_must_be_positive(self, db_session):
        db_session.add(Product(name="Free", slug="free", price=Decimal("0"), stock=1))
        with pytest.raises(IntegrityError):
            db_session.commit()
        db_session.rollback()


@pytest.mark.critical
class TestAuditLog:
    """Audit entries are append-only"""

    def test_record_audit_is_committed_with_caller(self, db_session):
        origin = RequestOrigin.system("pytest")
        record_audit(db_session, origin, "CREATE", "Order", 42, new_values={"status": "PENDING"})
        db_session.commit()

        trail = get_audit_trail("Order", 42, db_session)
        assert len(trail) == 1
        assert trail[0].actor == "system"
        assert trail[0].new_values == {"status": "PENDING"}

    def test_record_audit_rolls_back_with_caller(self, db_session):
        record_audit(db_session, RequestOrigin.system("pytest"), "CREATE", "Order", 7)
        db_session.rollback()
        assert get_audit_trail("Order", 7, db_session) == []

    def test_audit_entry_cannot_be_updated(self, db_session):
        entry = record_audit(db_session, RequestOrigin.webhook("CHAPA"), "PAYMENT_COMPLETED", "Payment", 1)
        db_session.commit()

        entry.action = "PAYMENT_FAILED"
        with pytest.raises(AuditLogImmutableError):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(AuditLog).one().action == "PAYMENT_COMPLETED"

    def test_audit_entry_cannot_be_deleted(self, db_session):
        entry = record_audit(db_session, RequestOrigin.webhook("CHAPA"), "PAYMENT_COMPLETED", "Payment", 1)
        db_session.commit()

        db_session.delete(entry)
        with pytest.raises(AuditLogImmutableError):
            db_session.commit()
        db_session.rollback()
        assert db_session.query(AuditLog).count() == 1

    def test_webhook_origin_sentinels(self):
        origin = RequestOrigin.webhook("STRIPE")
        assert origin.actor == "webhook"
        assert origin.user_id is None
        assert origin.ip_address == "webhook"
        assert origin.user_agent == "stripe-webhook"
