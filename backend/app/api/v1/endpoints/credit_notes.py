"""
Credit Notes API Endpoints.

One non-voided credit note per original sale. Issuing posts a CREDIT on the
customer's current account in the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backend.app.core.exceptions import DuplicateDocumentError, ResourceNotFoundError
from backend.app.db.session import get_db
from backend.app.domain.fiscal.fiscal_utils import calculate_iva, credit_note_type_for_customer
from backend.app.domain.ledger.current_account import post_credit_note_movement
from backend.app.domain.money import to_money
from backend.app.models.credit_note import CreditNote, CreditNoteItem
from backend.app.models.enums import CreditNoteStatus
from backend.app.models.sale import Sale
from backend.app.schemas.credit_note import (
    CreditNoteCreate, CreditNoteResponse, CreditNoteCreateResponse, CreditNoteListResponse
)
from backend.app.services.documents import next_credit_note_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/credit-notes", tags=["Credit Notes"])


async def _get_credit_note(db: AsyncSession, credit_note_id: int) -> CreditNote:
    result = await db.execute(
        select(CreditNote).where(CreditNote.id == credit_note_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()


@router.post("", response_model=CreditNoteCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_credit_note(
    note_data: CreditNoteCreate,
    db: AsyncSession = Depends(get_db)
):
    """Issue a credit note (NC-00000001) against a sale and credit the customer."""
    sale = await db.get(Sale, note_data.original_sale_id)
    if not sale:
        raise ResourceNotFoundError("Sale", note_data.original_sale_id)

    existing = await db.execute(
        select(CreditNote.credit_note_number).where(
            CreditNote.original_sale_id == sale.id,
            CreditNote.status != CreditNoteStatus.VOIDED,
        )
    )
    existing_number = existing.scalar_one_or_none()
    if existing_number:
        raise DuplicateDocumentError(
            f"Credit note {existing_number} already exists for this sale; only one is allowed per sale",
            details={"credit_note_number": existing_number, "sale_id": sale.id},
        )

    items = []
    for item in note_data.items:
        subtotal = to_money(item.quantity * item.unit_price)
        iva_amount = calculate_iva(subtotal, item.iva_type)
        items.append(CreditNoteItem(
            description=item.description,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            iva_type=item.iva_type,
            subtotal=subtotal,
            iva_amount=iva_amount,
            total_amount=to_money(subtotal + iva_amount),
        ))

    subtotal = to_money(sum(i.subtotal for i in items))
    tax_amount = to_money(sum(i.iva_amount for i in items))

    credit_note = CreditNote(
        credit_note_number=await next_credit_note_number(db),
        customer_id=sale.customer_id,
        original_sale_id=sale.id,
        type=credit_note_type_for_customer(sale.customer.customer_type),
        status=CreditNoteStatus.ISSUED,
        reason=note_data.reason,
        description=note_data.description,
        subtotal=subtotal,
        tax_amount=tax_amount,
        total=to_money(subtotal + tax_amount),
        issue_date=note_data.issue_date or datetime.now(timezone.utc),
        items=items,
    )
    db.add(credit_note)

    try:
        await db.flush()
        posted = await post_credit_note_movement(db, credit_note)
    except IntegrityError:
        await db.rollback()
        raise DuplicateDocumentError("Credit note number already taken, retry the request")

    logger.info("Issued credit note %s for sale %s (%s)", credit_note.credit_note_number, sale.id, credit_note.total)
    credit_note = await _get_credit_note(db, credit_note.id)

    return CreditNoteCreateResponse(
        credit_note=CreditNoteResponse.model_validate(credit_note),
        previous_balance=float(posted.previous_balance),
        new_balance=float(posted.new_balance),
    )


@router.get("", response_model=CreditNoteListResponse)
async def list_credit_notes(
    customer_id: Optional[int] = Query(None),
    note_status: Optional[CreditNoteStatus] = Query(None, alias="status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """List credit notes, newest first."""
    conditions = []
    if customer_id is not None:
        conditions.append(CreditNote.customer_id == customer_id)
    if note_status is not None:
        conditions.append(CreditNote.status == note_status)

    total_result = await db.execute(select(func.count(CreditNote.id)).where(*conditions))
    total = total_result.scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(CreditNote).where(*conditions).order_by(CreditNote.issue_date.desc(), CreditNote.id.desc()).offset(offset).limit(page_size)
    )
    notes = result.scalars().all()

    return CreditNoteListResponse(
        credit_notes=[CreditNoteResponse.model_validate(n) for n in notes],
        total=total,
        page=page,
        page_size=page_size
    )
