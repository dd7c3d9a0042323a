"""
Current account Pydantic schemas.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.enums import LedgerDirection


class MovementCreate(BaseModel):
    """Schema for a manual current account adjustment."""
    customer_id: int
    direction: LedgerDirection
    concept: str = Field(..., min_length=1, max_length=255)
    amount: Decimal = Field(..., gt=0, description="Positive magnitude; the sign comes from direction")
    occurred_at: Optional[datetime] = None
    reference: Optional[str] = Field(None, max_length=100)
    notes: Optional[str] = None


class ReverseRequest(BaseModel):
    """Schema for reversing an entry."""
    concept: Optional[str] = Field(None, max_length=255)


class LedgerEntryResponse(BaseModel):
    """Schema for a current account entry."""
    id: int
    customer_id: int
    sequence: int
    direction: LedgerDirection
    concept: str
    amount: float
    running_balance: float
    reference: Optional[str]
    notes: Optional[str]
    sale_id: Optional[int]
    payment_id: Optional[int]
    invoice_id: Optional[int]
    credit_note_id: Optional[int]
    reverses_entry_id: Optional[int]
    occurred_at: datetime
    created_at: datetime

    class Config:
        from_attributes = True


class PostedMovementResponse(BaseModel):
    entry: LedgerEntryResponse
    previous_balance: float
    new_balance: float


class LedgerEntryListResponse(BaseModel):
    """Schema for paginated entries."""
    entries: List[LedgerEntryResponse]
    total: int
    page: int
    page_size: int


class StatementResponse(BaseModel):
    customer_id: int
    entries: List[LedgerEntryResponse]
    current_balance: float
    is_in_debt: bool
    is_in_credit: bool


class BalanceResponse(BaseModel):
    customer_id: int
    current_balance: float


class RecomputeResponse(BaseModel):
    customer_id: int
    final_balance: float
    entries_checked: int
    entries_corrected: int
