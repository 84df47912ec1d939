"""Order service - cart validation, totals, atomic creation and status changes"""
import logging
import math
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timezone, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import update
from sqlalchemy.orm import Session

from ethioshop.core.config import settings
from ethioshop.core.exceptions import (
    EthioShopError, InsufficientStock, OrderAccessDenied, OrderNotFound, ProductUnavailable
)
from ethioshop.core.metrics import (
    order_creation_failures_counter, orders_created_counter, orders_expired_counter
)
from ethioshop.models.address import Address
from ethioshop.models.order import Order, OrderItem
from ethioshop.models.product import Product
from ethioshop.models.status import (
    OrderStatus, PaymentProvider, parse_order_status, transition_order
)
from ethioshop.models.user import User
from ethioshop.services.audit_service import RequestOrigin, record_audit

logger = logging.getLogger("orders")

TAX_RATE = Decimal("0.15")
CENT = Decimal("0.01")


def quantize_money(value) -> Decimal:
    """Round to two decimal places, half-up"""
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class CartLine:
    product_id: int
    quantity: int
    unit_price: Decimal
    variant_id: Optional[str] = None


@dataclass(frozen=True)
class AddressData:
    first_name: str
    last_name: str
    email: str
    phone: str
    address1: str
    city: str
    region: str
    address2: Optional[str] = None
    postal_code: Optional[str] = None
    country: str = "Ethiopia"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    tax: Decimal
    total: Decimal


def compute_order_totals(lines: Iterable[CartLine]) -> OrderTotals:
    """Subtotal of price x quantity plus the fixed tax rate.

    Each money value is rounded once, so recomputing from persisted line items
    reproduces the stored figures exactly.
    """
    subtotal = quantize_money(sum(
        (Decimal(line.unit_price) * line.quantity for line in lines),
        Decimal("0")
    ))
    tax = quantize_money(subtotal * TAX_RATE)
    return OrderTotals(subtotal=subtotal, tax=tax, total=subtotal + tax)


def totals_from_items(order: Order) -> OrderTotals:
    """Recompute totals from an order's persisted line items"""
    return compute_order_totals(
        CartLine(product_id=i.product_id, quantity=i.quantity, unit_price=i.unit_price)
        for i in order.items
    )


def _build_address(user_id: int, data: AddressData) -> Address:
    return Address(
        user_id=user_id,
        first_name=data.first_name,
        last_name=data.last_name,
        email=data.email,
        phone=data.phone,
        address1=data.address1,
        address2=data.address2,
        city=data.city,
        region=data.region,
        postal_code=data.postal_code,
        country=data.country,
    )


def _decrement_stock(product: Product, quantity: int, db: Session) -> None:
    # Guarded in SQL so two concurrent orders cannot both take the last units
    result = db.execute(
        update(Product)
        .where(Product.id == product.id, Product.stock >= quantity)
        .values(stock=Product.stock - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InsufficientStock(product.id, product.name, quantity)


def _restock(order: Order, db: Session) -> Dict[int, int]:
    """Return each item's quantity to its product's stock"""
    returned: Dict[int, int] = defaultdict(int)
    for item in order.items:
        returned[item.product_id] += item.quantity
    for product_id, quantity in returned.items():
        db.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock=Product.stock + quantity)
            .execution_options(synchronize_session=False)
        )
    return dict(returned)


def create_order(
    user_id: int,
    lines: List[CartLine],
    shipping: AddressData,
    billing: AddressData,
    currency: str,
    origin: RequestOrigin,
    db: Session,
    notes: Optional[str] = None
) -> Order:
    """Validate a cart and persist it as a PENDING order in one transaction.

    Creates both addresses, the order, its line items, the stock decrements and
    an audit entry together; any failure leaves none of them behind.

    Raises:
        ProductUnavailable: a product id is unknown or inactive
        InsufficientStock: a product cannot cover the requested quantity
    """
    if not lines:
        raise EthioShopError("Cart is empty")

    product_ids = {line.product_id for line in lines}
    products = db.query(Product).filter(
        Product.id.in_(product_ids),
        Product.is_active.is_(True)
    ).all()
    products_by_id = {p.id: p for p in products}

    missing = product_ids - products_by_id.keys()
    if missing:
        order_creation_failures_counter.labels(reason="product_unavailable").inc()
        raise ProductUnavailable(missing)

    requested: Dict[int, int] = defaultdict(int)
    for line in lines:
        requested[line.product_id] += line.quantity

    for product_id, quantity in requested.items():
        product = products_by_id[product_id]
        if product.stock < quantity:
            order_creation_failures_counter.labels(reason="insufficient_stock").inc()
            raise InsufficientStock(product.id, product.name, quantity, product.stock)

    totals = compute_order_totals(lines)

    try:
        order = Order(
            user_id=user_id,
            status=OrderStatus.PENDING.value,
            currency=currency,
            subtotal=totals.subtotal,
            tax=totals.tax,
            total=totals.total,
            payment_method=PaymentProvider.CHAPA.value,
            shipping_address=_build_address(user_id, shipping),
            billing_address=_build_address(user_id, billing),
            notes=notes,
            items=[
                OrderItem(
                    product_id=line.product_id,
                    variant_id=line.variant_id,
                    quantity=line.quantity,
                    unit_price=quantize_money(line.unit_price),
                )
                for line in lines
            ],
        )
        db.add(order)
        db.flush()

        for product_id, quantity in requested.items():
            _decrement_stock(products_by_id[product_id], quantity, db)

        record_audit(
            db, origin, "CREATE", "Order", order.id,
            new_values={
                "total": str(totals.total),
                "status": OrderStatus.PENDING.value,
                "items": len(lines),
                "currency": currency,
            }
        )
        db.commit()
    except InsufficientStock:
        db.rollback()
        order_creation_failures_counter.labels(reason="insufficient_stock").inc()
        raise
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    orders_created_counter.labels(currency=currency).inc()
    logger.info(f"Order {order.id} created for user {user_id}: total {order.total} {currency}, {len(lines)} item(s)")
    return order


def list_orders(
    user_id: int,
    db: Session,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None
) -> Tuple[List[Order], Dict[str, int]]:
    """A user's orders, newest first, with pagination info"""
    query = db.query(Order).filter(Order.user_id == user_id)
    if status:
        query = query.filter(Order.status == parse_order_status(status).value)

    total = query.count()
    orders = query.order_by(Order.created_at.desc(), Order.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()

    return orders, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def get_order(order_id: int, user: User, db: Session) -> Order:
    """Fetch an order visible to ``user`` (its owner or an admin)"""
    order = db.query(Order).filter(Order.id == order_id).first()
    if not order:
        raise OrderNotFound(order_id)
    if order.user_id != user.id and not user.is_admin:
        raise OrderAccessDenied()
    return order


def update_order(
    order_id: int,
    origin: RequestOrigin,
    db: Session,
    status: Optional[str] = None,
    notes: Optional[str] = None
) -> Order:
    """Apply an administrative status change and/or notes update.

    Status moves go through the order transition table; entering CANCELLED
    returns the items to stock in the same transaction.
    """
    target = parse_order_status(status) if status else None

    order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
    if not order:
        raise OrderNotFound(order_id)

    old_values = {"status": order.status, "notes": order.notes}
    restocked = None
    try:
        if target is not None and target.value != order.status:
            transition_order(order, target)
            if target == OrderStatus.CANCELLED:
                restocked = _restock(order, db)
        if notes is not None:
            order.notes = notes

        new_values = {"status": order.status, "notes": order.notes}
        if restocked:
            new_values["restocked"] = {str(k): v for k, v in restocked.items()}
        record_audit(db, origin, "UPDATE", "Order", order.id, new_values=new_values, old_values=old_values)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(order)
    logger.info(f"Order {order.id} updated by {origin.actor}: {old_values['status']} -> {order.status}")
    return order


def expire_stale_orders(db: Session, now: Optional[datetime] = None, ttl_hours: Optional[int] = None) -> List[int]:
    """Cancel and restock PENDING orders older than the TTL.

    Each order is handled in its own transaction so one failure does not block
    the rest. Returns the ids of the expired orders.
    """
    now = now or datetime.now(timezone.utc)
    ttl_hours = ttl_hours or settings.PENDING_ORDER_TTL_HOURS
    cutoff = now - timedelta(hours=ttl_hours)

    stale_ids = [
        row.id for row in db.query(Order.id).filter(
            Order.status == OrderStatus.PENDING.value,
            Order.created_at < cutoff
        ).all()
    ]

    expired: List[int] = []
    origin = RequestOrigin.system("order-expiry")
    for order_id in stale_ids:
        try:
            order = db.query(Order).filter(Order.id == order_id).with_for_update().first()
            # A payment may have confirmed it since the scan
            if not order or order.status != OrderStatus.PENDING.value:
                db.rollback()
                continue
            transition_order(order, OrderStatus.CANCELLED)
            restocked = _restock(order, db)
            record_audit(
                db, origin, "EXPIRE", "Order", order.id,
                old_values={"status": OrderStatus.PENDING.value},
                new_values={
                    "status": OrderStatus.CANCELLED.value,
                    "restocked": {str(k): v for k, v in restocked.items()},
                }
            )
            db.commit()
            expired.append(order_id)
            orders_expired_counter.inc()
        except Exception as e:
            db.rollback()
            logger.error(f"Failed to expire order {order_id}: {e}", exc_info=True)

    if expired:
        logger.info(f"Expired {len(expired)} stale pending order(s): {expired}")
    return expired
