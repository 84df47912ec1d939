"""Stripe gateway - international card payments via Checkout Sessions"""
import json
import logging
from decimal import Decimal
from typing import Any, Mapping, Optional

import stripe

from ethioshop.core.exceptions import (
    GatewayRejected, GatewayUnavailable, InvalidSignature, InvalidWebhookPayload
)
from ethioshop.models.status import PaymentProvider
from ethioshop.services.payments.base import (
    CheckoutSession, PaymentCompleted, PaymentFailed, PaymentGateway, PaymentOutcome,
    PaymentRequest, ProviderEvent, to_minor_units
)

logger = logging.getLogger("payments")


def _get_stripe_value(obj: Any, key: str, default=None):
    """Read a field from a Stripe object or a plain dict"""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    value = getattr(obj, key, None)
    return default if value is None else value


def _from_minor_units(value) -> Optional[Decimal]:
    if value is None:
        return None
    return Decimal(int(value)) / 100


class StripeGateway(PaymentGateway):
    provider = PaymentProvider.STRIPE.value
    method = "CARD"
    supported_currencies = frozenset({"USD", "EUR", "GBP", "CAD", "AUD"})
    verify_param = "session_id"

    COMPLETED_EVENTS = frozenset({
        "checkout.session.completed",
        "checkout.session.async_payment_succeeded",
    })
    FAILED_EVENTS = frozenset({
        "checkout.session.async_payment_failed",
        "checkout.session.expired",
    })

    def __init__(self, client: stripe.StripeClient, webhook_secret: str, frontend_url: str):
        self.client = client
        self.webhook_secret = webhook_secret
        self.frontend_url = frontend_url.rstrip("/")

    def create_checkout(self, request: PaymentRequest) -> CheckoutSession:
        amount_minor = to_minor_units(request.amount)
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [{
                "price_data": {
                    "currency": request.currency.lower(),
                    "product_data": {
                        "name": f"Order {request.order_id}",
                        "description": request.description or "Purchase from EthioShop",
                    },
                    "unit_amount": amount_minor,
                },
                "quantity": 1,
            }],
            "customer_email": request.email,
            "success_url": f"{self.frontend_url}/checkout/success?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{self.frontend_url}/checkout/cancel",
            "metadata": {"order_id": str(request.order_id), "source": "ethiopian-ecommerce"},
        }

        try:
            session = self.client.checkout.sessions.create(params=params)
        except (stripe.InvalidRequestError, stripe.CardError) as e:
            logger.warning(f"Stripe rejected checkout for order {request.order_id}: {e}")
            raise GatewayRejected(self.provider, getattr(e, "user_message", None) or str(e))
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout failed for order {request.order_id}: {e}")
            raise GatewayUnavailable(self.provider, str(e))

        session_id = _get_stripe_value(session, "id")
        url = _get_stripe_value(session, "url")
        if not session_id or not url:
            raise GatewayUnavailable(self.provider, "checkout session missing id or url")

        return CheckoutSession(
            checkout_url=url,
            reference=session_id,
            metadata={"stripe_session_id": session_id, "amount_minor": amount_minor},
        )

    def verify(self, reference: str) -> Optional[PaymentOutcome]:
        try:
            session = self.client.checkout.sessions.retrieve(reference)
        except stripe.InvalidRequestError as e:
            logger.info(f"Stripe session {reference} not retrievable: {e}")
            return None
        except stripe.StripeError as e:
            logger.error(f"Stripe verify failed for {reference}: {e}")
            raise GatewayUnavailable(self.provider, str(e))

        payment_status = _get_stripe_value(session, "payment_status")
        details = {
            "stripe_session_id": reference,
            "payment_status": payment_status,
            "payment_intent": _get_stripe_value(session, "payment_intent"),
        }
        if payment_status == "paid":
            currency = _get_stripe_value(session, "currency")
            return PaymentCompleted(
                amount=_from_minor_units(_get_stripe_value(session, "amount_total")),
                currency=currency.upper() if currency else None,
                details=details,
            )
        if _get_stripe_value(session, "status") == "expired":
            return PaymentFailed(reason="Checkout session expired", details=details)
        return None

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> ProviderEvent:
        lowered = {k.lower(): v for k, v in headers.items()}
        sig_header = lowered.get("stripe-signature")
        if not sig_header or not self.webhook_secret:
            raise InvalidSignature(self.provider)

        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise InvalidSignature(self.provider)
        except ValueError:
            raise InvalidWebhookPayload(self.provider)

        try:
            body = json.loads(payload)
        except ValueError:
            raise InvalidWebhookPayload(self.provider)

        event_id = body.get("id")
        event_type = body.get("type")
        if not event_id or not event_type:
            raise InvalidWebhookPayload(self.provider, "event missing id or type")

        obj = (body.get("data") or {}).get("object") or {}
        # Only checkout sessions carry the reference stored on our Payment rows
        reference = obj.get("id") if event_type.startswith("checkout.session.") else None

        details = {
            "stripe_session_id": reference,
            "payment_status": obj.get("payment_status"),
            "payment_intent": obj.get("payment_intent"),
            "event_type": event_type,
        }
        outcome: Optional[PaymentOutcome] = None
        if event_type in self.COMPLETED_EVENTS:
            # Delayed methods complete the session before funds arrive
            if event_type != "checkout.session.completed" or obj.get("payment_status") in ("paid", "no_payment_required"):
                currency = obj.get("currency")
                outcome = PaymentCompleted(
                    amount=_from_minor_units(obj.get("amount_total")),
                    currency=currency.upper() if currency else None,
                    details=details,
                )
        elif event_type in self.FAILED_EVENTS:
            reason = "Checkout session expired" if event_type.endswith("expired") else "Asynchronous payment failed"
            outcome = PaymentFailed(reason=reason, details=details)

        if outcome is not None and not reference:
            raise InvalidWebhookPayload(self.provider, "event missing session id")

        return ProviderEvent(
            event_id=event_id,
            event_type=event_type,
            reference=reference,
            outcome=outcome,
            payload=body,
        )
