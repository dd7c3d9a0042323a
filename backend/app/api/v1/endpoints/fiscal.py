"""
Fiscal (AFIP) API Endpoints.

Translates FiscalResult failures into HTTP statuses; the body carries the
full result so callers can show existing authorizations or error lists.
"""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.dependencies import get_fiscal_service
from backend.app.db.session import get_db
from backend.app.domain.fiscal.afip_client import AfipError, AfipUnavailableError
from backend.app.domain.fiscal.fiscal_service import FiscalService
from backend.app.schemas.fiscal import FiscalErrorKind, FiscalResult, InvoiceStatusResponse, ServerStatusResponse

router = APIRouter(prefix="/fiscal", tags=["Fiscal"])

ERROR_STATUS = {
    FiscalErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    FiscalErrorKind.NOT_ELIGIBLE: status.HTTP_409_CONFLICT,
    FiscalErrorKind.ALREADY_INVOICED: status.HTTP_409_CONFLICT,
    FiscalErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    FiscalErrorKind.AUTHORITY_ERROR: status.HTTP_502_BAD_GATEWAY,
    FiscalErrorKind.LOCK_TIMEOUT: status.HTTP_503_SERVICE_UNAVAILABLE,
    FiscalErrorKind.AUTHORIZED_NOT_RECORDED: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def raise_for_result(result: FiscalResult) -> FiscalResult:
    if result.success:
        return result
    status_code = ERROR_STATUS.get(result.error_kind, status.HTTP_500_INTERNAL_SERVER_ERROR)
    if result.error_kind == FiscalErrorKind.AUTHORITY_ERROR and isinstance(result.details, dict) and result.details.get("retryable"):
        status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    raise HTTPException(status_code=status_code, detail=result.model_dump(mode="json"))


def _authority_http_error(e: AfipError) -> HTTPException:
    if isinstance(e, AfipUnavailableError):
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(e))


@router.post("/sales/{sale_id}/invoice", response_model=FiscalResult)
async def invoice_sale(
    sale_id: int,
    db: AsyncSession = Depends(get_db),
    fiscal_service: FiscalService = Depends(get_fiscal_service)
):
    """Request the CAE for a white sale and record it."""
    result = await fiscal_service.generate_invoice_for_sale(db, sale_id)
    return raise_for_result(result)


@router.get("/sales/{sale_id}/status", response_model=InvoiceStatusResponse)
async def invoice_status(
    sale_id: int,
    db: AsyncSession = Depends(get_db),
    fiscal_service: FiscalService = Depends(get_fiscal_service)
):
    """Ask the authority about an issued invoice (no local changes)."""
    try:
        return await fiscal_service.check_invoice_status(db, sale_id)
    except AfipError as e:
        raise _authority_http_error(e)


@router.get("/voucher-types", response_model=List[Dict[str, Any]])
async def voucher_types(fiscal_service: FiscalService = Depends(get_fiscal_service)):
    try:
        return await fiscal_service.get_voucher_types()
    except AfipError as e:
        raise _authority_http_error(e)


@router.get("/document-types", response_model=List[Dict[str, Any]])
async def document_types(fiscal_service: FiscalService = Depends(get_fiscal_service)):
    """Identification document types (CUIT, DNI, ...) accepted by WSFEv1."""
    try:
        return await fiscal_service.get_document_types()
    except AfipError as e:
        raise _authority_http_error(e)


@router.get("/aliquot-types", response_model=List[Dict[str, Any]])
async def aliquot_types(fiscal_service: FiscalService = Depends(get_fiscal_service)):
    try:
        return await fiscal_service.get_aliquot_types()
    except AfipError as e:
        raise _authority_http_error(e)


@router.get("/server-status", response_model=ServerStatusResponse)
async def server_status(fiscal_service: FiscalService = Depends(get_fiscal_service)):
    try:
        return await fiscal_service.check_server_status()
    except AfipError as e:
        raise _authority_http_error(e)
