"""Catalog reads for the storefront"""
import math
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ethioshop.models.product import Product


def list_products(
    db: Session,
    page: int = 1,
    limit: int = 20,
    search: Optional[str] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None
) -> Tuple[List[Product], Dict[str, int]]:
    """Active products matching the filters, newest first"""
    query = db.query(Product).filter(Product.is_active.is_(True))

    if search:
        pattern = f"%{search.strip()}%"
        query = query.filter(or_(
            Product.name.ilike(pattern),
            Product.name_am.ilike(pattern),
            Product.description.ilike(pattern),
        ))
    if min_price is not None:
        query = query.filter(Product.price >= min_price)
    if max_price is not None:
        query = query.filter(Product.price <= max_price)

    total = query.count()
    products = query.order_by(Product.created_at.desc(), Product.id.desc()) \
        .offset((page - 1) * limit).limit(limit).all()

    return products, {
        "page": page,
        "limit": limit,
        "total": total,
        "pages": math.ceil(total / limit) if limit else 0,
    }


def get_product(product_id: int, db: Session) -> Optional[Product]:
    """An active product by id, or None"""
    return db.query(Product).filter(
        Product.id == product_id,
        Product.is_active.is_(True)
    ).first()
