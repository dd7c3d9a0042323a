"""
Sale Pydantic schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime, date
from decimal import Decimal
from typing import Optional, List
from backend.app.models.enums import SaleStatus, InvoiceType, FiscalStatus, IvaType
from backend.app.schemas.fiscal import FiscalResult


class SaleItemCreate(BaseModel):
    """Schema for a sale line."""
    description: str = Field(..., min_length=1, max_length=255)
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    discount: Decimal = Field(Decimal("0"), ge=0)
    iva_type: IvaType = IvaType.IVA_21


class FiscalTotals(BaseModel):
    """Explicit fiscal aggregates; computed from the items when omitted."""
    taxed_amount: Decimal = Field(Decimal("0"), ge=0)
    non_taxed_amount: Decimal = Field(Decimal("0"), ge=0)
    exempt_amount: Decimal = Field(Decimal("0"), ge=0)
    tax_amount: Decimal = Field(Decimal("0"), ge=0)
    gross_income_perception: Decimal = Field(Decimal("0"), ge=0)
    total: Decimal = Field(..., gt=0)


class SaleCreate(BaseModel):
    """Schema for creating a sale."""
    customer_id: int
    items: List[SaleItemCreate] = Field(..., min_length=1)
    status: SaleStatus = SaleStatus.CONFIRMED
    is_white_invoice: bool = False
    invoice_type: Optional[InvoiceType] = None
    point_of_sale: str = Field("0001", max_length=5)
    sale_date: Optional[datetime] = None
    discount_amount: Decimal = Field(Decimal("0"), ge=0)
    fiscal_totals: Optional[FiscalTotals] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def not_cancelled(cls, value: SaleStatus) -> SaleStatus:
        if value == SaleStatus.CANCELLED:
            raise ValueError("A sale cannot be created cancelled")
        return value


class SaleItemResponse(BaseModel):
    id: int
    description: str
    quantity: float
    unit_price: float
    discount: float
    subtotal: float
    iva_type: IvaType
    iva_amount: float
    total_amount: float

    class Config:
        from_attributes = True


class SaleResponse(BaseModel):
    """Schema for sale response."""
    id: int
    sale_number: str
    customer_id: int
    status: SaleStatus
    is_white_invoice: bool
    sale_date: datetime
    invoice_type: Optional[InvoiceType]
    point_of_sale: str
    subtotal: float
    discount_amount: float
    taxed_amount: float
    non_taxed_amount: float
    exempt_amount: float
    tax_amount: float
    gross_income_perception: float
    total: float
    fiscal_status: FiscalStatus
    invoice_number: Optional[int]
    full_number: Optional[str]
    auth_code: Optional[str]
    auth_code_expiry: Optional[date]
    notes: Optional[str]
    items: List[SaleItemResponse]
    created_at: datetime

    class Config:
        from_attributes = True


class SaleCreateResponse(BaseModel):
    sale: SaleResponse
    balance_after: Optional[float] = None
    invoice: Optional[FiscalResult] = None


class SaleListResponse(BaseModel):
    sales: List[SaleResponse]
    total: int
    page: int
    page_size: int
