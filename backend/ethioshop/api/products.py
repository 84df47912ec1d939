"""Catalog API routes"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ethioshop.db.session import get_db
from ethioshop.schemas.products import ProductListResponse, ProductOut
from ethioshop.services.product_service import get_product, list_products

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=ProductListResponse)
def get_products(
    search: Optional[str] = None,
    min_price: Optional[Decimal] = Query(None, alias="minPrice", ge=0),
    max_price: Optional[Decimal] = Query(None, alias="maxPrice", ge=0),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    db: Session = Depends(get_db)
):
    """List active products"""
    products, pagination = list_products(
        db, page=page, limit=limit, search=search, min_price=min_price, max_price=max_price
    )
    return {"products": products, "pagination": pagination}


@router.get("/{product_id}", response_model=ProductOut)
def get_product_detail(product_id: int, db: Session = Depends(get_db)):
    product = get_product(product_id, db)
    if not product:
        raise HTTPException(404, "Product not found")
    return product
