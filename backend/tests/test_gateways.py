"""Payment gateway adapter tests"""
import hashlib
import json
import re
from decimal import Decimal
from types import SimpleNamespace
from unittest.mock import patch

import httpx
import pytest
import stripe

from ethioshop.core.exceptions import (
    GatewayRejected, GatewayUnavailable, InvalidSignature, InvalidWebhookPayload, UnknownProvider
)
from ethioshop.services.payments import build_gateways, get_gateway
from ethioshop.services.payments.base import PaymentCompleted, PaymentFailed, PaymentRequest, to_minor_units
from ethioshop.services.payments.chapa import ChapaGateway


def _request(**overrides):
    fields = dict(
        order_id=17,
        amount=Decimal("1035.00"),
        currency="ETB",
        email="abebe@example.com",
        first_name="Abebe",
        last_name="Kebede",
        phone="+251911234567",
    )
    fields.update(overrides)
    return PaymentRequest(**fields)


@pytest.mark.critical
class TestMinorUnits:
    """Amounts are sent to providers as integers in the smallest unit"""

    def test_whole_amount(self):
        assert to_minor_units(Decimal("1035.00")) == 103500

    def test_rounds_half_up(self):
        assert to_minor_units(Decimal("10.005")) == 1001
        assert to_minor_units(Decimal("0.004")) == 0

    def test_accepts_strings(self):
        assert to_minor_units("23.00") == 2300


@pytest.mark.high
class TestGatewayRegistry:
    def test_lookup_is_case_insensitive(self, gateways):
        assert get_gateway(gateways, "Chapa") is gateways["chapa"]

    def test_unknown_provider(self, gateways):
        with pytest.raises(UnknownProvider):
            get_gateway(gateways, "telebirr")

    def _settings(self, **overrides):
        fields = dict(
            FRONTEND_URL="http://localhost:3000/",
            BACKEND_URL="https://api.ethioshop.et",
            CHAPA_SECRET_KEY="CHASECK_TEST-abc123",
            CHAPA_WEBHOOK_SECRET="chapa-secret",
            CHAPA_BASE_URL="https://api.chapa.co/v1",
            GATEWAY_TIMEOUT_SECONDS=15.0,
            STRIPE_SECRET_KEY="sk_test_123",
            STRIPE_WEBHOOK_SECRET="whsec_123",
        )
        fields.update(overrides)
        return SimpleNamespace(**fields)

    def test_stripe_client_does_not_retry(self):
        with patch("ethioshop.services.payments.stripe.StripeClient") as client_cls:
            gateways = build_gateways(self._settings())
        client_cls.assert_called_once_with("sk_test_123", max_network_retries=0)
        assert sorted(gateways) == ["chapa", "stripe"]
        assert gateways["chapa"].callback_url == "https://api.ethioshop.et/api/payments/chapa/webhook"
        gateways["chapa"].close()

    def test_stripe_disabled_without_key(self):
        gateways = build_gateways(self._settings(STRIPE_SECRET_KEY=""))
        assert sorted(gateways) == ["chapa"]
        gateways["chapa"].close()


@pytest.mark.critical
class TestChapaCheckout:
    """Chapa transaction initialization"""

    def test_submits_minor_units_and_metadata(self, chapa_gateway, chapa_api):
        session = chapa_gateway.create_checkout(_request())

        body = chapa_api.initialize_bodies[0]
        assert body["amount"] == 103500
        assert body["currency"] == "ETB"
        assert body["tx_ref"] == session.reference
        assert body["return_url"] == "http://localhost:3000/checkout/success?order_id=17"
        assert body["callback_url"].endswith("/api/payments/chapa/webhook")
        assert body["customization"]["title"] == "EthioShop Payment"
        assert body["meta"]["order_id"] == "17"

        request = chapa_api.requests[0]
        assert request.headers["Authorization"] == "Bearer CHASECK_TEST-abc123"
        assert str(request.url) == "https://api.chapa.co/v1/transaction/initialize"

        assert session.checkout_url.endswith(session.reference)
        assert session.metadata["chapa_tx_ref"] == session.reference
        assert session.metadata["amount_minor"] == 103500

    def test_tx_ref_format(self):
        tx_ref = ChapaGateway.generate_tx_ref()
        assert re.fullmatch(r"chapa_\d{13}_[0-9a-z]{9}", tx_ref)
        assert ChapaGateway.generate_tx_ref() != tx_ref

    def test_rejection_raises_gateway_rejected(self, chapa_gateway, chapa_api):
        chapa_api.initialize_response = (400, {"status": "failed", "message": {"email": ["The email must be valid."]}})
        with pytest.raises(GatewayRejected) as exc_info:
            chapa_gateway.create_checkout(_request())
        assert "email" in exc_info.value.message

    def test_server_error_is_unavailable(self, chapa_gateway, chapa_api):
        chapa_api.initialize_response = (503, {"status": "failed", "message": "Service Unavailable"})
        with pytest.raises(GatewayUnavailable):
            chapa_gateway.create_checkout(_request())

    def test_transport_error_is_unavailable(self):
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        gateway = ChapaGateway(
            secret_key="k", webhook_secret="s", callback_url="cb", return_url="r",
            http_client=httpx.Client(base_url="https://api.chapa.co/v1", transport=httpx.MockTransport(handler))
        )
        with pytest.raises(GatewayUnavailable) as exc_info:
            gateway.create_checkout(_request())
        assert exc_info.value.status_code == 502

    def test_supported_currencies(self, chapa_gateway):
        assert chapa_gateway.supports_currency("etb")
        assert chapa_gateway.supports_currency("USD")
        assert not chapa_gateway.supports_currency("EUR")


@pytest.mark.critical
class TestChapaVerify:
    def test_success(self, chapa_gateway, chapa_api):
        outcome = chapa_gateway.verify("chapa_1700000000000_abc123xyz")
        assert isinstance(outcome, PaymentCompleted)
        assert outcome.currency == "ETB"
        assert outcome.details["chapa_verification"]["tx_ref"] == "chapa_1700000000000_abc123xyz"
        assert chapa_api.requests[0].url.path == "/v1/transaction/verify/chapa_1700000000000_abc123xyz"

    def test_pending_returns_none(self, chapa_gateway, chapa_api):
        chapa_api.verify_status = "pending"
        assert chapa_gateway.verify("chapa_1700000000000_abc123xyz") is None

    def test_failed(self, chapa_gateway, chapa_api):
        chapa_api.verify_status = "failed"
        assert isinstance(chapa_gateway.verify("chapa_1700000000000_abc123xyz"), PaymentFailed)


@pytest.mark.critical
class TestChapaWebhook:
    """Signature checks and event mapping"""

    def _payload(self, event="charge.success", **extra):
        body = {
            "event": event,
            "tx_ref": "chapa_1700000000000_abc123xyz",
            "status": "success",
            "amount": "1035.00",
            "currency": "ETB",
            "reference": "AP8xYz",
        }
        body.update(extra)
        return json.dumps(body).encode()

    def test_valid_signature_completed(self, chapa_gateway, sign_chapa):
        payload = self._payload()
        event = chapa_gateway.parse_webhook(payload, sign_chapa(payload))
        assert event.reference == "chapa_1700000000000_abc123xyz"
        assert event.event_id == "charge.success:AP8xYz"
        assert isinstance(event.outcome, PaymentCompleted)
        assert event.outcome.amount == Decimal("1035.00")

    def test_alternate_signature_header(self, chapa_gateway, sign_chapa):
        payload = self._payload()
        headers = {"Chapa-Signature": sign_chapa(payload)["x-chapa-signature"]}
        assert chapa_gateway.parse_webhook(payload, headers).outcome is not None

    @pytest.mark.parametrize("event_type", ["charge.failed", "charge.cancelled"])
    def test_failed_events(self, chapa_gateway, sign_chapa, event_type):
        payload = self._payload(event=event_type, status="failed")
        event = chapa_gateway.parse_webhook(payload, sign_chapa(payload))
        assert isinstance(event.outcome, PaymentFailed)

    def test_unknown_event_has_no_outcome(self, chapa_gateway, sign_chapa):
        payload = self._payload(event="payout.success")
        assert chapa_gateway.parse_webhook(payload, sign_chapa(payload)).outcome is None

    def test_nested_data_shape(self, chapa_gateway, sign_chapa):
        payload = json.dumps({
            "event": "charge.completed",
            "data": {"tx_ref": "chapa_1700000000000_abc123xyz", "status": "success"},
        }).encode()
        event = chapa_gateway.parse_webhook(payload, sign_chapa(payload))
        assert event.reference == "chapa_1700000000000_abc123xyz"
        # No provider id: the body hash identifies the delivery
        assert event.event_id == hashlib.sha256(payload).hexdigest()

    def test_wrong_secret_rejected(self, chapa_gateway, sign_chapa):
        payload = self._payload()
        with pytest.raises(InvalidSignature):
            chapa_gateway.parse_webhook(payload, sign_chapa(payload, secret="not-the-secret"))

    def test_tampered_body_rejected(self, chapa_gateway, sign_chapa):
        headers = sign_chapa(self._payload())
        with pytest.raises(InvalidSignature):
            chapa_gateway.parse_webhook(self._payload(amount="1.00"), headers)

    def test_missing_signature_rejected(self, chapa_gateway):
        with pytest.raises(InvalidSignature):
            chapa_gateway.parse_webhook(self._payload(), {})

    def test_unconfigured_secret_rejects_everything(self, chapa_api, sign_chapa):
        gateway = ChapaGateway(
            secret_key="k", webhook_secret="", callback_url="cb", return_url="r",
            http_client=httpx.Client(transport=httpx.MockTransport(chapa_api.handler))
        )
        payload = self._payload()
        with pytest.raises(InvalidSignature):
            gateway.parse_webhook(payload, sign_chapa(payload, secret=""))

    def test_malformed_json(self, chapa_gateway, sign_chapa):
        payload = b"not json"
        with pytest.raises(InvalidWebhookPayload):
            chapa_gateway.parse_webhook(payload, sign_chapa(payload))

    def test_outcome_without_reference(self, chapa_gateway, sign_chapa):
        payload = json.dumps({"event": "charge.success", "status": "success"}).encode()
        with pytest.raises(InvalidWebhookPayload):
            chapa_gateway.parse_webhook(payload, sign_chapa(payload))


@pytest.mark.critical
class TestStripeCheckout:
    def test_creates_payment_mode_session(self, stripe_gateway, stripe_client):
        session = stripe_gateway.create_checkout(_request(amount=Decimal("23.00"), currency="USD"))

        params = stripe_client.checkout.sessions.create.call_args.kwargs["params"]
        assert params["mode"] == "payment"
        line = params["line_items"][0]
        assert line["price_data"]["unit_amount"] == 2300
        assert line["price_data"]["currency"] == "usd"
        assert line["price_data"]["product_data"]["name"] == "Order 17"
        assert params["success_url"] == "http://localhost:3000/checkout/success?session_id={CHECKOUT_SESSION_ID}"
        assert params["cancel_url"] == "http://localhost:3000/checkout/cancel"
        assert params["metadata"]["order_id"] == "17"

        assert session.reference == "cs_test_a1b2c3"
        assert session.checkout_url == "https://checkout.stripe.com/c/pay/cs_test_a1b2c3"
        assert session.metadata == {"stripe_session_id": "cs_test_a1b2c3", "amount_minor": 2300}

    def test_rejected_request(self, stripe_gateway, stripe_client):
        stripe_client.checkout.sessions.create.side_effect = stripe.InvalidRequestError("Invalid currency", "currency")
        with pytest.raises(GatewayRejected):
            stripe_gateway.create_checkout(_request(currency="USD"))

    def test_connection_error(self, stripe_gateway, stripe_client):
        stripe_client.checkout.sessions.create.side_effect = stripe.APIConnectionError("Network down")
        with pytest.raises(GatewayUnavailable):
            stripe_gateway.create_checkout(_request(currency="USD"))

    def test_jpy_not_supported(self, stripe_gateway):
        assert not stripe_gateway.supports_currency("JPY")
        assert stripe_gateway.supports_currency("eur")


@pytest.mark.critical
class TestStripeVerify:
    def test_paid(self, stripe_gateway):
        outcome = stripe_gateway.verify("cs_test_a1b2c3")
        assert isinstance(outcome, PaymentCompleted)
        assert outcome.amount == Decimal("23.00")
        assert outcome.currency == "USD"
        assert outcome.details["payment_intent"] == "pi_test_123"

    def test_expired(self, stripe_gateway, stripe_client):
        stripe_client.checkout.sessions.retrieve.return_value = SimpleNamespace(
            id="cs_test_a1b2c3", payment_status="unpaid", status="expired",
            amount_total=2300, currency="usd", payment_intent=None
        )
        assert isinstance(stripe_gateway.verify("cs_test_a1b2c3"), PaymentFailed)

    def test_open_is_pending(self, stripe_gateway, stripe_client):
        stripe_client.checkout.sessions.retrieve.return_value = SimpleNamespace(
            id="cs_test_a1b2c3", payment_status="unpaid", status="open",
            amount_total=2300, currency="usd", payment_intent=None
        )
        assert stripe_gateway.verify("cs_test_a1b2c3") is None


@pytest.mark.critical
class TestStripeWebhook:
    def _payload(self, event_type="checkout.session.completed", payment_status="paid", event_id="evt_test_1"):
        return json.dumps({
            "id": event_id,
            "object": "event",
            "type": event_type,
            "data": {"object": {
                "id": "cs_test_a1b2c3",
                "object": "checkout.session",
                "payment_status": payment_status,
                "amount_total": 2300,
                "currency": "usd",
                "payment_intent": "pi_test_123",
            }},
        }).encode()

    def test_completed_and_paid(self, stripe_gateway, sign_stripe):
        payload = self._payload()
        event = stripe_gateway.parse_webhook(payload, sign_stripe(payload))
        assert event.event_id == "evt_test_1"
        assert event.reference == "cs_test_a1b2c3"
        assert isinstance(event.outcome, PaymentCompleted)
        assert event.outcome.amount == Decimal("23.00")

    def test_completed_but_unpaid_is_ignored(self, stripe_gateway, sign_stripe):
        payload = self._payload(payment_status="unpaid")
        assert stripe_gateway.parse_webhook(payload, sign_stripe(payload)).outcome is None

    def test_async_success(self, stripe_gateway, sign_stripe):
        payload = self._payload(event_type="checkout.session.async_payment_succeeded")
        assert isinstance(stripe_gateway.parse_webhook(payload, sign_stripe(payload)).outcome, PaymentCompleted)

    @pytest.mark.parametrize("event_type", [
        "checkout.session.async_payment_failed",
        "checkout.session.expired",
    ])
    def test_failure_events(self, stripe_gateway, sign_stripe, event_type):
        payload = self._payload(event_type=event_type, payment_status="unpaid")
        assert isinstance(stripe_gateway.parse_webhook(payload, sign_stripe(payload)).outcome, PaymentFailed)

    def test_unrelated_event_ignored(self, stripe_gateway, sign_stripe):
        payload = self._payload(event_type="payment_intent.succeeded")
        event = stripe_gateway.parse_webhook(payload, sign_stripe(payload))
        assert event.outcome is None
        assert event.reference is None

    def test_bad_signature(self, stripe_gateway, sign_stripe):
        payload = self._payload()
        with pytest.raises(InvalidSignature):
            stripe_gateway.parse_webhook(payload, sign_stripe(payload, secret="whsec_other"))

    def test_missing_signature(self, stripe_gateway):
        with pytest.raises(InvalidSignature):
            stripe_gateway.parse_webhook(self._payload(), {})


@pytest.mark.medium
class TestGatewaySettings:
    def test_only_server_side_keys_are_configured(self):
        from ethioshop.core import config

        fields = config.Settings.model_fields
        assert {"CHAPA_SECRET_KEY", "CHAPA_WEBHOOK_SECRET", "STRIPE_SECRET_KEY", "STRIPE_WEBHOOK_SECRET"} <= set(fields)
        assert "CHAPA_PUBLIC_KEY" not in fields
        assert "STRIPE_PUBLISHABLE_KEY" not in fields
        assert not hasattr(config, "ENVIRONMENT")
