"""
Credit note Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.enums import InvoiceType, CreditNoteStatus, IvaType


class CreditNoteItemCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    iva_type: IvaType = IvaType.IVA_21


class CreditNoteCreate(BaseModel):
    """Schema for issuing a credit note against a sale."""
    original_sale_id: int
    reason: str = Field(..., min_length=1, max_length=255)
    description: Optional[str] = None
    items: List[CreditNoteItemCreate] = Field(..., min_length=1)
    issue_date: Optional[datetime] = None


class CreditNoteItemResponse(BaseModel):
    id: int
    description: str
    quantity: float
    unit_price: float
    iva_type: IvaType
    subtotal: float
    iva_amount: float
    total_amount: float

    class Config:
        from_attributes = True


class CreditNoteResponse(BaseModel):
    id: int
    credit_note_number: str
    customer_id: int
    original_sale_id: int
    type: InvoiceType
    status: CreditNoteStatus
    reason: str
    description: Optional[str]
    subtotal: float
    tax_amount: float
    total: float
    issue_date: datetime
    items: List[CreditNoteItemResponse]

    class Config:
        from_attributes = True


class CreditNoteCreateResponse(BaseModel):
    credit_note: CreditNoteResponse
    previous_balance: float
    new_balance: float


class CreditNoteListResponse(BaseModel):
    credit_notes: List[CreditNoteResponse]
    total: int
    page: int
    page_size: int
