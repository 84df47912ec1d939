"""Orders API routes"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.orm import Session

from ethioshop.core.exceptions import EthioShopError
from ethioshop.core.security import get_current_user, require_roles
from ethioshop.db.session import get_db
from ethioshop.models.status import UserRole
from ethioshop.models.user import User
from ethioshop.schemas.orders import (
    AddressIn, CreateOrderRequest, OrderListResponse, OrderOut, UpdateOrderRequest
)
from ethioshop.services.audit_service import RequestOrigin
from ethioshop.services.order_service import (
    AddressData, CartLine, create_order, get_order, list_orders, update_order
)

router = APIRouter(prefix="/api/orders", tags=["orders"])
logger = logging.getLogger(__name__)


def _address_data(address: AddressIn) -> AddressData:
    return AddressData(
        first_name=address.firstName,
        last_name=address.lastName,
        email=address.email,
        phone=address.phone,
        address1=address.address1,
        address2=address.address2,
        city=address.city,
        region=address.region,
        postal_code=address.postalCode,
    )


@router.post("", response_model=OrderOut, status_code=201)
def create_order_route(
    body: CreateOrderRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """Place an order for the cart; stock is reserved until it is paid or cancelled"""
    lines = [
        CartLine(
            product_id=item.productId,
            quantity=item.quantity,
            unit_price=item.price,
            variant_id=item.variantId,
        )
        for item in body.items
    ]
    try:
        return create_order(
            user_id=user.id,
            lines=lines,
            shipping=_address_data(body.shippingAddress),
            billing=_address_data(body.billingAddress),
            currency=body.currency,
            origin=RequestOrigin.from_request(request, user.id),
            db=db,
            notes=body.notes,
        )
    except EthioShopError as e:
        logger.info(f"Order rejected for user {user.id}: {e.message}")
        raise HTTPException(e.status_code, e.message)


@router.get("", response_model=OrderListResponse)
def list_orders_route(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status: Optional[str] = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db)
):
    """The caller's orders, newest first"""
    try:
        orders, pagination = list_orders(user.id, db, page=page, limit=limit, status=status)
    except EthioShopError as e:
        raise HTTPException(e.status_code, e.message)
    return {"orders": orders, "pagination": pagination}


@router.get("/{order_id}", response_model=OrderOut)
def get_order_route(order_id: int, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    try:
        return get_order(order_id, user, db)
    except EthioShopError as e:
        raise HTTPException(e.status_code, e.message)


@router.patch("/{order_id}", response_model=OrderOut)
def update_order_route(
    order_id: int,
    body: UpdateOrderRequest,
    request: Request,
    user: User = Depends(require_roles(UserRole.ADMIN, UserRole.VENDOR)),
    db: Session = Depends(get_db)
):
    """Move an order along its lifecycle or edit its notes (staff only)"""
    try:
        return update_order(
            order_id,
            RequestOrigin.from_request(request, user.id),
            db,
            status=body.status,
            notes=body.notes,
        )
    except EthioShopError as e:
        raise HTTPException(e.status_code, e.message)
