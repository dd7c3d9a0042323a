"""
Current Account API Endpoints.

Manual adjustments, listings, statements and reversals. Every write goes
through the ledger engine.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.db.session import get_db
from backend.app.models.customer import Customer
from backend.app.models.enums import LedgerDirection
from backend.app.schemas.ledger import (
    MovementCreate, ReverseRequest, LedgerEntryResponse, LedgerEntryListResponse,
    PostedMovementResponse, StatementResponse, BalanceResponse
)
from backend.app.core.exceptions import ResourceNotFoundError
from backend.app.domain.ledger import current_account as ledger
from backend.app.services.audit import log_event, AuditAction

router = APIRouter(prefix="/current-account", tags=["Current Account"])


def _posted_response(posted: ledger.PostedMovement) -> PostedMovementResponse:
    return PostedMovementResponse(
        entry=LedgerEntryResponse.model_validate(posted.entry),
        previous_balance=float(posted.previous_balance),
        new_balance=float(posted.new_balance),
    )


async def _require_customer(db: AsyncSession, customer_id: int) -> Customer:
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", customer_id)
    return customer


@router.get("", response_model=LedgerEntryListResponse)
async def list_entries(
    customer_id: Optional[int] = Query(None),
    direction: Optional[LedgerDirection] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(10, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """List entries, newest business date first."""
    entries, total = await ledger.list_movements(
        db,
        customer_id=customer_id,
        direction=direction,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=page_size,
    )
    return LedgerEntryListResponse(
        entries=[LedgerEntryResponse.model_validate(e) for e in entries],
        total=total,
        page=page,
        page_size=page_size
    )


@router.post("", response_model=PostedMovementResponse, status_code=status.HTTP_201_CREATED)
async def post_adjustment(
    movement: MovementCreate,
    db: AsyncSession = Depends(get_db)
):
    """Post a manual adjustment on a customer's current account."""
    posted = await ledger.post_movement(
        db,
        customer_id=movement.customer_id,
        direction=movement.direction,
        concept=movement.concept,
        amount=movement.amount,
        occurred_at=movement.occurred_at,
        reference=movement.reference,
        notes=movement.notes,
    )
    await log_event(
        db,
        action=AuditAction.LEDGER_ADJUSTMENT_POSTED,
        entity_type="ledger_entry",
        entity_id=posted.entry.id,
        metadata={
            "customer_id": movement.customer_id,
            "direction": movement.direction.value,
            "amount": str(posted.entry.amount),
        },
    )
    return _posted_response(posted)


@router.get("/customers/{customer_id}/statement", response_model=StatementResponse)
async def get_statement(
    customer_id: int,
    limit: Optional[int] = Query(None, ge=1, le=500),
    db: AsyncSession = Depends(get_db)
):
    """Most recent entries plus balance and debt/credit flags."""
    await _require_customer(db, customer_id)
    statement = await ledger.get_statement(db, customer_id, limit=limit)
    return StatementResponse(
        customer_id=customer_id,
        entries=[LedgerEntryResponse.model_validate(e) for e in statement.entries],
        current_balance=float(statement.current_balance),
        is_in_debt=statement.is_in_debt,
        is_in_credit=statement.is_in_credit,
    )


@router.get("/customers/{customer_id}/balance", response_model=BalanceResponse)
async def get_balance(
    customer_id: int,
    db: AsyncSession = Depends(get_db)
):
    await _require_customer(db, customer_id)
    balance = await ledger.get_current_balance(db, customer_id)
    return BalanceResponse(customer_id=customer_id, current_balance=float(balance))


@router.post("/entries/{entry_id}/reverse", response_model=PostedMovementResponse, status_code=status.HTTP_201_CREATED)
async def reverse_entry(
    entry_id: int,
    request: Optional[ReverseRequest] = None,
    db: AsyncSession = Depends(get_db)
):
    """Cancel an entry with an opposite movement. The original stays untouched."""
    posted = await ledger.reverse_movement(db, entry_id, concept=request.concept if request else None)
    return _posted_response(posted)
