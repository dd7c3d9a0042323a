"""
Customer Pydantic schemas.
"""

from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from decimal import Decimal
from typing import Optional, List
from backend.app.models.enums import CustomerType
from backend.app.domain.fiscal.fiscal_utils import validate_cuit, format_cuit


class CustomerCreate(BaseModel):
    """Schema for creating a customer."""
    business_name: str = Field(..., min_length=1, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=20, description="CUIT/CUIL, with or without dashes")
    customer_type: CustomerType = Field(CustomerType.CONSUMIDOR_FINAL)
    email: Optional[str] = Field(None, max_length=255)
    phone: Optional[str] = Field(None, max_length=50)
    address: Optional[str] = Field(None, max_length=500)
    city: Optional[str] = Field(None, max_length=100)
    credit_limit: Optional[Decimal] = Field(None, ge=0)

    @field_validator("tax_id")
    @classmethod
    def check_tax_id(cls, value: Optional[str]) -> Optional[str]:
        if not value:
            return None
        if not validate_cuit(value):
            raise ValueError("Invalid CUIT/CUIL")
        return format_cuit(value)


class CustomerResponse(BaseModel):
    """Schema for customer response."""
    id: int
    business_name: str
    tax_id: Optional[str]
    customer_type: Optional[CustomerType]
    email: Optional[str]
    phone: Optional[str]
    address: Optional[str]
    city: Optional[str]
    credit_limit: Optional[float]
    is_active: bool
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class CustomerWithBalance(CustomerResponse):
    """Customer plus current account balance."""
    current_balance: float = 0


class CustomerListResponse(BaseModel):
    """Schema for paginated customer list."""
    customers: List[CustomerWithBalance]
    total: int
    page: int
    page_size: int
