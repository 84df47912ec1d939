"""Pydantic schemas for payments"""
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field


class InitiatePaymentRequest(BaseModel):
    orderId: int
    amount: Optional[Decimal] = Field(default=None, gt=0, max_digits=12, decimal_places=2)  # Defaults to the order total
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)  # Defaults to the order currency
    email: EmailStr
    firstName: str = Field(default="", max_length=100)
    lastName: str = Field(default="", max_length=100)
    phone: str = Field(default="", max_length=50)
    name: Optional[str] = None
    description: Optional[str] = None


class InitiatePaymentResponse(BaseModel):
    success: bool
    paymentId: int
    checkoutUrl: str
    providerReference: str


class VerifyPaymentResponse(BaseModel):
    success: bool
    status: str
    message: str
    paymentId: Optional[int] = None
    orderId: Optional[int] = None
