"""
Fiscal Schema Definitions.

Pydantic models for the tax authority wire request and for invoicing results.
"""

import enum
from datetime import date
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class TaxBucket(BaseModel):
    """Aggregated base and IVA for one tax-rate code."""
    id: int = Field(..., alias="Id")
    base_amount: float = Field(..., alias="BaseImp")
    tax_amount: float = Field(..., alias="Importe")

    class Config:
        populate_by_name = True


class FiscalVoucherRequest(BaseModel):
    """WSFEv1 FECAEDetRequest for a single voucher."""
    voucher_count: int = Field(1, alias="CantReg")
    point_of_sale: int = Field(..., alias="PtoVta")
    voucher_type: int = Field(..., alias="CbteTipo")
    concept: int = Field(..., alias="Concepto")
    document_type: int = Field(..., alias="DocTipo")
    document_number: int = Field(..., alias="DocNro")
    voucher_from: int = Field(..., alias="CbteDesde")
    voucher_to: int = Field(..., alias="CbteHasta")
    voucher_date: int = Field(..., alias="CbteFch")  # YYYYMMDD
    total_amount: float = Field(..., alias="ImpTotal")
    non_taxed_amount: float = Field(..., alias="ImpTotConc")
    net_amount: float = Field(..., alias="ImpNeto")
    exempt_amount: float = Field(..., alias="ImpOpEx")
    iva_amount: float = Field(..., alias="ImpIVA")
    tributes_amount: float = Field(..., alias="ImpTrib")
    currency_id: str = Field("PES", alias="MonId")
    currency_rate: float = Field(1, alias="MonCotiz")
    iva: List[TaxBucket] = Field(default_factory=list, alias="Iva")

    class Config:
        populate_by_name = True

    def to_wire(self) -> Dict[str, Any]:
        """Field names as the authority expects them. Iva is omitted when empty."""
        data = self.model_dump(by_alias=True)
        if not data["Iva"]:
            del data["Iva"]
        return data


class FiscalValidation(BaseModel):
    is_valid: bool
    errors: List[str] = []


class FiscalErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ALREADY_INVOICED = "ALREADY_INVOICED"
    VALIDATION = "VALIDATION"
    AUTHORITY_ERROR = "AUTHORITY_ERROR"
    LOCK_TIMEOUT = "LOCK_TIMEOUT"
    AUTHORIZED_NOT_RECORDED = "AUTHORIZED_NOT_RECORDED"


class FiscalResult(BaseModel):
    """Outcome of an invoicing attempt. Expected failures are values, not exceptions."""
    success: bool
    cae: Optional[str] = None
    cae_expiry: Optional[date] = None
    invoice_number: Optional[int] = None
    full_number: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[FiscalErrorKind] = None
    details: Optional[Any] = None


class VoucherAuthorization(BaseModel):
    """CAE returned by the authority for one voucher."""
    cae: str
    cae_expiry: Optional[date] = None
    voucher_number: int
    observations: List[str] = []


class InvoiceStatusResponse(BaseModel):
    """Authority-side view of an issued voucher."""
    sale_id: int
    full_number: Optional[str] = None
    found: bool
    voucher: Optional[Dict[str, Any]] = None


class ServerStatusResponse(BaseModel):
    app_server: Optional[str] = None
    db_server: Optional[str] = None
    auth_server: Optional[str] = None
