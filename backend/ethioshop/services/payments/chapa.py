"""Chapa gateway - local Ethiopian processor (ETB)

API reference: https://developer.chapa.co/
"""
import hashlib
import hmac
import json
import logging
import secrets
import string
import time
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Mapping, Optional

import httpx

from ethioshop.core.exceptions import (
    GatewayRejected, GatewayUnavailable, InvalidSignature, InvalidWebhookPayload
)
from ethioshop.models.status import PaymentProvider
from ethioshop.services.payments.base import (
    CheckoutSession, PaymentCompleted, PaymentFailed, PaymentGateway, PaymentOutcome,
    PaymentRequest, ProviderEvent, to_minor_units
)

logger = logging.getLogger("payments")

TX_REF_ALPHABET = string.ascii_lowercase + string.digits


def _lower_keys(headers: Mapping[str, str]) -> Dict[str, str]:
    return {k.lower(): v for k, v in headers.items()}


def _decimal(value) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def _error_message(result: Dict[str, Any], default: str) -> str:
    message = result.get("message")
    if isinstance(message, dict):
        # Validation errors come back as {"field": ["reason", ...]}
        return "; ".join(
            f"{field}: {', '.join(v) if isinstance(v, list) else v}" for field, v in message.items()
        )
    return message or default


class ChapaGateway(PaymentGateway):
    provider = PaymentProvider.CHAPA.value
    method = "BANK_TRANSFER"
    supported_currencies = frozenset({"ETB", "USD"})
    verify_param = "tx_ref"

    SIGNATURE_HEADERS = ("x-chapa-signature", "chapa-signature")
    COMPLETED_EVENTS = frozenset({"charge.success", "charge.completed"})
    FAILED_EVENTS = frozenset({"charge.failed", "charge.cancelled"})

    def __init__(
        self,
        secret_key: str,
        webhook_secret: str,
        callback_url: str,
        return_url: str,
        base_url: str = "https://api.chapa.co/v1",
        timeout: float = 15.0,
        http_client: Optional[httpx.Client] = None
    ):
        """
        Args:
            secret_key: Chapa secret key, sent as a bearer token
            webhook_secret: Secret hash configured in the Chapa dashboard
            callback_url: Where Chapa posts webhooks
            return_url: Payer return URL; ``{order_id}`` is substituted
            http_client: Preconfigured client (tests pass one with a mock transport)
        """
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.callback_url = callback_url
        self.return_url = return_url
        self._owns_client = http_client is None
        self.http = http_client or httpx.Client(base_url=base_url, timeout=timeout)

    def close(self):
        if self._owns_client:
            self.http.close()

    def _auth_headers(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.secret_key}"}

    def _json(self, response: httpx.Response) -> Dict[str, Any]:
        try:
            result = response.json()
        except ValueError:
            raise GatewayUnavailable(self.provider, f"non-JSON response (HTTP {response.status_code})")
        if not isinstance(result, dict):
            raise GatewayUnavailable(self.provider, "unexpected response shape")
        return result

    @staticmethod
    def generate_tx_ref() -> str:
        suffix = "".join(secrets.choice(TX_REF_ALPHABET) for _ in range(9))
        return f"chapa_{int(time.time() * 1000)}_{suffix}"

    def create_checkout(self, request: PaymentRequest) -> CheckoutSession:
        tx_ref = self.generate_tx_ref()
        body = {
            "amount": to_minor_units(request.amount),
            "currency": request.currency.upper(),
            "email": request.email,
            "first_name": request.first_name,
            "last_name": request.last_name,
            "phone_number": request.phone,
            "tx_ref": tx_ref,
            "callback_url": self.callback_url,
            "return_url": self.return_url.format(order_id=request.order_id),
            "customization": {
                "title": "EthioShop Payment",
                "description": request.description or "Complete your purchase on EthioShop",
            },
            "meta": {
                "order_id": str(request.order_id),
                "source": "ethiopian-ecommerce",
            },
        }

        try:
            response = self.http.post("/transaction/initialize", json=body, headers=self._auth_headers())
        except httpx.HTTPError as e:
            logger.error(f"Chapa initialize failed for order {request.order_id}: {e}")
            raise GatewayUnavailable(self.provider, str(e))

        if response.status_code >= 500:
            raise GatewayUnavailable(self.provider, f"HTTP {response.status_code}")

        result = self._json(response)
        if response.is_error or result.get("status") != "success":
            message = _error_message(result, "Failed to initialize payment")
            logger.warning(f"Chapa rejected order {request.order_id}: {message}")
            raise GatewayRejected(self.provider, message)

        checkout_url = (result.get("data") or {}).get("checkout_url")
        if not checkout_url:
            raise GatewayUnavailable(self.provider, "response missing checkout_url")

        return CheckoutSession(
            checkout_url=checkout_url,
            reference=tx_ref,
            metadata={
                "chapa_tx_ref": tx_ref,
                "checkout_url": checkout_url,
                "amount_minor": body["amount"],
            },
        )

    def verify(self, reference: str) -> Optional[PaymentOutcome]:
        try:
            response = self.http.get(f"/transaction/verify/{reference}", headers=self._auth_headers())
        except httpx.HTTPError as e:
            logger.error(f"Chapa verify failed for {reference}: {e}")
            raise GatewayUnavailable(self.provider, str(e))

        if response.status_code >= 500:
            raise GatewayUnavailable(self.provider, f"HTTP {response.status_code}")

        result = self._json(response)
        if result.get("status") != "success":
            # Unknown or unpaid transactions are reported as a failed lookup
            logger.info(f"Chapa verify for {reference} not successful: {_error_message(result, 'no details')}")
            return None

        data = result.get("data") or {}
        state = str(data.get("status", "")).lower()
        if state == "success":
            return PaymentCompleted(
                amount=_decimal(data.get("amount")),
                currency=data.get("currency"),
                details={"chapa_verification": data},
            )
        if state in ("failed", "cancelled"):
            return PaymentFailed(reason=f"Chapa reported transaction {state}", details={"chapa_verification": data})
        return None

    def verify_signature(self, payload: bytes, headers: Mapping[str, str]) -> None:
        """HMAC-SHA256 of the raw body keyed by the webhook secret, hex encoded"""
        if not self.webhook_secret:
            logger.error("Chapa webhook secret not configured")
            raise InvalidSignature(self.provider)

        lowered = _lower_keys(headers)
        signature = next((lowered[h] for h in self.SIGNATURE_HEADERS if lowered.get(h)), None)
        if not signature:
            raise InvalidSignature(self.provider)

        expected = hmac.new(self.webhook_secret.encode(), payload, hashlib.sha256).hexdigest()
        if not hmac.compare_digest(expected, signature.strip().lower()):
            raise InvalidSignature(self.provider)

    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> ProviderEvent:
        self.verify_signature(payload, headers)

        try:
            body = json.loads(payload)
        except ValueError:
            raise InvalidWebhookPayload(self.provider)
        if not isinstance(body, dict):
            raise InvalidWebhookPayload(self.provider)

        # Older deliveries nest the transaction under "data"
        data = body["data"] if isinstance(body.get("data"), dict) else body
        event_type = str(body.get("event") or body.get("type") or "unknown")
        reference = data.get("tx_ref")

        provider_id = data.get("id") or data.get("reference")
        event_id = f"{event_type}:{provider_id}" if provider_id else hashlib.sha256(payload).hexdigest()

        outcome: Optional[PaymentOutcome] = None
        if event_type in self.COMPLETED_EVENTS:
            outcome = PaymentCompleted(
                amount=_decimal(data.get("amount")),
                currency=data.get("currency"),
                details={"webhook_data": data},
            )
        elif event_type in self.FAILED_EVENTS:
            outcome = PaymentFailed(
                reason=data.get("processor_response") or "Payment failed via webhook",
                details={"webhook_data": data},
            )

        if outcome is not None and not reference:
            raise InvalidWebhookPayload(self.provider, "event missing tx_ref")

        return ProviderEvent(
            event_id=event_id,
            event_type=event_type,
            reference=reference,
            outcome=outcome,
            payload=body,
        )
