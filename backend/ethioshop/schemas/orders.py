"""Pydantic schemas for orders"""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AddressIn(BaseModel):
    firstName: str = Field(min_length=1, max_length=100)
    lastName: str = Field(min_length=1, max_length=100)
    email: EmailStr
    phone: str = Field(min_length=1, max_length=50)
    address1: str = Field(min_length=1, max_length=255)
    address2: Optional[str] = Field(default=None, max_length=255)
    city: str = Field(min_length=1, max_length=100)
    region: str = Field(min_length=1, max_length=100)
    postalCode: Optional[str] = Field(default=None, max_length=20)


class CartItemIn(BaseModel):
    productId: int
    quantity: int = Field(gt=0)
    price: Decimal = Field(gt=0, max_digits=12, decimal_places=2)
    variantId: Optional[str] = None


class CreateOrderRequest(BaseModel):
    items: List[CartItemIn] = Field(min_length=1)
    shippingAddress: AddressIn
    billingAddress: AddressIn
    currency: Literal["ETB", "USD"]
    notes: Optional[str] = None


class UpdateOrderRequest(BaseModel):
    status: Optional[str] = None  # Validated against OrderStatus by the service
    notes: Optional[str] = None


class AddressOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    first_name: str
    last_name: str
    email: str
    phone: str
    address1: str
    address2: Optional[str] = None
    city: str
    region: str
    postal_code: Optional[str] = None
    country: str


class OrderItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    product_id: int
    variant_id: Optional[str] = None
    quantity: int
    unit_price: Decimal


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    amount: Decimal
    currency: str
    provider: str
    provider_reference: str
    status: str
    method: str
    failure_reason: Optional[str] = None
    processed_at: Optional[datetime] = None
    created_at: datetime


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    status: str
    currency: str
    subtotal: Decimal
    tax: Decimal
    total: Decimal
    payment_method: str
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut]
    payments: List[PaymentOut] = []
    shipping_address: AddressOut
    billing_address: AddressOut


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    pagination: Pagination
