"""
Admin Operations API Endpoints.

Repairs and inspection: ledger recomputation, reconciliation of
authorizations that were issued but not recorded, and the audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Path, Query
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.core.dependencies import get_fiscal_service
from backend.app.domain.fiscal.fiscal_service import FiscalService
from backend.app.domain.ledger.current_account import recompute_balances
from backend.app.schemas.admin import AuditTrailResponse, AuditLogResponse
from backend.app.schemas.fiscal import FiscalResult
from backend.app.schemas.ledger import RecomputeResponse
from backend.app.services.audit import get_audit_trail

router = APIRouter(prefix="/admin/ops", tags=["Admin - Ops"])


@router.post("/customers/{customer_id}/recompute-balances", response_model=RecomputeResponse)
async def recompute_customer_balances(
    customer_id: int = Path(..., description="Customer ID"),
    db: AsyncSession = Depends(get_db)
):
    """
    Rewrite a customer's running balances from a zero base, in posting order.
    """
    result = await recompute_balances(db, customer_id)
    return RecomputeResponse(
        customer_id=customer_id,
        final_balance=float(result.final_balance),
        entries_checked=result.entries_checked,
        entries_corrected=result.entries_corrected,
    )


@router.post("/sales/{sale_id}/reconcile-authorization", response_model=FiscalResult)
async def reconcile_authorization(
    sale_id: int = Path(..., description="Sale ID"),
    db: AsyncSession = Depends(get_db),
    fiscal_service: FiscalService = Depends(get_fiscal_service)
):
    """Record the pending authorization of an AUTHORIZED_UNRECORDED sale."""
    return await fiscal_service.reconcile_authorization(db, sale_id)


@router.get("/audit", response_model=AuditTrailResponse)
async def audit_trail(
    entity_type: Optional[str] = Query(None),
    entity_id: Optional[int] = Query(None),
    action: Optional[str] = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    logs = await get_audit_trail(db, entity_type=entity_type, entity_id=entity_id, action=action, limit=limit)
    return AuditTrailResponse(
        logs=[AuditLogResponse.model_validate(log) for log in logs],
        total=len(logs),
    )
