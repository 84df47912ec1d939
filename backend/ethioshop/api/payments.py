"""Payments API routes - initiation, return-URL verification and provider webhooks"""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ethioshop.core.exceptions import EthioShopError
from ethioshop.core.security import get_current_user
from ethioshop.db.redis import get_session
from ethioshop.db.session import get_db
from ethioshop.models.user import User
from ethioshop.schemas.payments import (
    InitiatePaymentRequest, InitiatePaymentResponse, VerifyPaymentResponse
)
from ethioshop.services.audit_service import RequestOrigin
from ethioshop.services.payment_service import initiate_payment
from ethioshop.services.payments import GatewayRegistry, get_gateway
from ethioshop.services.reconciler import PaymentReconciler

router = APIRouter(prefix="/api/payments", tags=["payments"])
logger = logging.getLogger(__name__)
webhook_logger = logging.getLogger("webhooks")


def get_gateways(request: Request) -> GatewayRegistry:
    """Dependency: the gateway registry built at startup"""
    return request.app.state.gateways


def get_reconciler(gateways: GatewayRegistry = Depends(get_gateways)) -> PaymentReconciler:
    return PaymentReconciler(gateways)


@router.post("/{provider}", response_model=InitiatePaymentResponse)
def initiate_payment_route(
    provider: str,
    body: InitiatePaymentRequest,
    request: Request,
    user: User = Depends(get_current_user),
    gateways: GatewayRegistry = Depends(get_gateways),
    db: Session = Depends(get_db)
):
    """Open a checkout with the provider for one of the caller's pending orders"""
    first_name, last_name = body.firstName, body.lastName
    if body.name and not (first_name or last_name):
        first_name, _, last_name = body.name.partition(" ")

    try:
        gateway = get_gateway(gateways, provider)
        payment = initiate_payment(
            gateway,
            body.orderId,
            user,
            RequestOrigin.from_request(request, user.id),
            db,
            amount=body.amount,
            currency=body.currency,
            email=body.email,
            first_name=first_name,
            last_name=last_name,
            phone=body.phone,
            description=body.description,
        )
    except EthioShopError as e:
        raise HTTPException(e.status_code, e.message)

    return InitiatePaymentResponse(
        success=True,
        paymentId=payment.id,
        checkoutUrl=payment.payment_metadata["checkout_url"],
        providerReference=payment.provider_reference,
    )


@router.get("/{provider}", response_model=VerifyPaymentResponse)
def verify_payment_route(
    provider: str,
    request: Request,
    gateways: GatewayRegistry = Depends(get_gateways),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    db: Session = Depends(get_db)
):
    """Confirm a payment when the payer returns from the provider.

    Chapa passes ``tx_ref`` and Stripe ``session_id`` on the return URL.
    """
    try:
        gateway = get_gateway(gateways, provider)
    except EthioShopError as e:
        raise HTTPException(e.status_code, e.message)

    reference = request.query_params.get(gateway.verify_param)
    if not reference:
        raise HTTPException(400, f"{gateway.verify_param} is required")

    session_id = request.cookies.get("session_id")
    user_id = get_session(session_id) if session_id else None

    try:
        result = reconciler.verify(provider, reference, RequestOrigin.from_request(request, user_id), db)
    except EthioShopError as e:
        logger.info(f"{gateway.provider} verification for {reference} not successful: {e.message}")
        raise HTTPException(e.status_code, e.message)

    return VerifyPaymentResponse(
        success=True,
        status=result.payment_status,
        message="Payment verified successfully",
        paymentId=result.payment_id,
        orderId=result.order_id,
    )


@router.post("/{provider}/webhook")
async def payment_webhook(
    provider: str,
    request: Request,
    reconciler: PaymentReconciler = Depends(get_reconciler),
    db: Session = Depends(get_db)
):
    """Handle provider webhook events

    The body is read as raw bytes; signatures are computed over the exact bytes sent.
    """
    payload = await request.body()

    try:
        status = reconciler.handle_webhook(provider, payload, request.headers, db)
    except EthioShopError as e:
        webhook_logger.warning(f"Rejected {provider} webhook: {e.message}")
        raise HTTPException(e.status_code, e.message)
    except Exception as e:
        # Non-2xx so the provider retries the delivery
        webhook_logger.error(f"Unexpected error processing {provider} webhook: {e}", exc_info=True)
        raise HTTPException(500, "Webhook processing failed")

    webhook_logger.debug(f"{provider} webhook handled: {status}")
    return {"received": True}
