"""Pydantic schemas for the catalog"""
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from ethioshop.schemas.orders import Pagination


class ProductOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    vendor_id: Optional[int] = None
    name: str
    name_am: Optional[str] = None
    slug: str
    description: Optional[str] = None
    price: Decimal
    stock: int
    is_active: bool


class ProductListResponse(BaseModel):
    products: List[ProductOut]
    pagination: Pagination
