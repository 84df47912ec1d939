"""Payment gateway adapters and the registry routes look them up in"""
import logging
from typing import Dict

import stripe

from ethioshop.core.exceptions import UnknownProvider
from ethioshop.services.payments.base import PaymentGateway
from ethioshop.services.payments.chapa import ChapaGateway
from ethioshop.services.payments.stripe_gateway import StripeGateway

logger = logging.getLogger("payments")

GatewayRegistry = Dict[str, PaymentGateway]


def build_gateways(settings) -> GatewayRegistry:
    """Construct one adapter per configured provider from application settings"""
    frontend_url = settings.FRONTEND_URL.rstrip("/")
    gateways: GatewayRegistry = {
        "chapa": ChapaGateway(
            secret_key=settings.CHAPA_SECRET_KEY,
            webhook_secret=settings.CHAPA_WEBHOOK_SECRET,
            callback_url=f"{settings.BACKEND_URL.rstrip('/')}/api/payments/chapa/webhook",
            return_url=f"{frontend_url}/checkout/success?order_id={{order_id}}",
            base_url=settings.CHAPA_BASE_URL,
            timeout=settings.GATEWAY_TIMEOUT_SECONDS,
        ),
    }

    # StripeClient refuses an empty API key; no automatic retries
    if settings.STRIPE_SECRET_KEY:
        gateways["stripe"] = StripeGateway(
            client=stripe.StripeClient(settings.STRIPE_SECRET_KEY, max_network_retries=0),
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            frontend_url=frontend_url,
        )
    else:
        logger.warning("STRIPE_SECRET_KEY not set; Stripe payments disabled")

    return gateways


def get_gateway(gateways: GatewayRegistry, provider: str) -> PaymentGateway:
    """Look up an adapter by its URL name ('chapa', 'stripe')"""
    gateway = gateways.get(provider.lower())
    if gateway is None:
        raise UnknownProvider(provider)
    return gateway


def close_gateways(gateways: GatewayRegistry) -> None:
    for gateway in gateways.values():
        close = getattr(gateway, "close", None)
        if close:
            close()
