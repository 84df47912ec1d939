"""Shared types for payment gateway adapters"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, FrozenSet, Mapping, Optional, Union


@dataclass(frozen=True)
class PaymentRequest:
    """What the storefront asks a provider to collect"""
    order_id: int
    amount: Decimal
    currency: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    description: Optional[str] = None


@dataclass(frozen=True)
class CheckoutSession:
    """A provider-side checkout the payer is redirected to"""
    checkout_url: str
    reference: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentCompleted:
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class PaymentFailed:
    reason: str
    details: Dict[str, Any] = field(default_factory=dict)


PaymentOutcome = Union[PaymentCompleted, PaymentFailed]


@dataclass(frozen=True)
class ProviderEvent:
    """A verified webhook delivery; ``outcome`` is None for events we ignore"""
    event_id: str
    event_type: str
    reference: Optional[str]
    outcome: Optional[PaymentOutcome]
    payload: Dict[str, Any] = field(default_factory=dict)


def to_minor_units(amount) -> int:
    """Amount in the currency's smallest unit (x100, rounded half-up)"""
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class PaymentGateway(ABC):
    """Contract every provider adapter implements"""

    #: PaymentProvider value stored on Payment rows
    provider: str
    #: Payment method tag stored on Payment rows
    method: str
    supported_currencies: FrozenSet[str]
    #: Query parameter the payer's return URL carries for synchronous verification
    verify_param: str

    def supports_currency(self, currency: str) -> bool:
        return currency.upper() in self.supported_currencies

    @abstractmethod
    def create_checkout(self, request: PaymentRequest) -> CheckoutSession:
        """Open a checkout with the provider.

        Raises:
            GatewayRejected: the provider refused the request
            GatewayUnavailable: the provider could not be reached
        """

    @abstractmethod
    def verify(self, reference: str) -> Optional[PaymentOutcome]:
        """Ask the provider for the current result; None while still pending"""

    @abstractmethod
    def parse_webhook(self, payload: bytes, headers: Mapping[str, str]) -> ProviderEvent:
        """Check the signature and decode a webhook body.

        Raises:
            InvalidSignature: the signature does not match the shared secret
            InvalidWebhookPayload: the body is not a recognisable event
        """
