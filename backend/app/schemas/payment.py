"""
Payment Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.enums import PaymentMethod, PaymentStatus


class PaymentCreate(BaseModel):
    """Schema for registering a payment."""
    customer_id: int
    amount: Decimal = Field(..., gt=0)
    method: PaymentMethod
    sale_id: Optional[int] = None
    payment_date: Optional[datetime] = None
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class PaymentResponse(BaseModel):
    id: int
    payment_number: str
    customer_id: int
    sale_id: Optional[int]
    amount: float
    method: PaymentMethod
    status: PaymentStatus
    payment_date: datetime
    reference: Optional[str]
    notes: Optional[str]

    class Config:
        from_attributes = True


class PaymentCreateResponse(BaseModel):
    payment: PaymentResponse
    previous_balance: float
    new_balance: float


class PaymentListResponse(BaseModel):
    payments: List[PaymentResponse]
    total: int
    page: int
    page_size: int
