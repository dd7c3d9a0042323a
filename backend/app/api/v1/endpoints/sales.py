"""
Sales API Endpoints.

A confirmed sale posts its DEBIT on the customer's current account in the
same transaction that stores the sale. White sales can be invoiced right
away when AFIP_AUTO_INVOICE is enabled.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError

from backend.app.core.config import settings
from backend.app.core.dependencies import get_fiscal_service
from backend.app.core.exceptions import DuplicateDocumentError, ResourceNotFoundError
from backend.app.db.session import get_db
from backend.app.domain.fiscal.fiscal_service import FiscalService
from backend.app.domain.fiscal.fiscal_utils import calculate_fiscal_amounts, calculate_iva, invoice_type_for_customer
from backend.app.domain.ledger.current_account import confirm_sale_movement, post_sale_movement
from backend.app.domain.money import to_money
from backend.app.models.customer import Customer
from backend.app.models.enums import SaleStatus, FiscalStatus
from backend.app.models.sale import Sale, SaleItem
from backend.app.schemas.sale import SaleCreate, SaleResponse, SaleCreateResponse, SaleListResponse
from backend.app.services.documents import next_sale_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sales", tags=["Sales"])


def _build_items(items_data) -> list[SaleItem]:
    items = []
    for item in items_data:
        subtotal = to_money(item.quantity * item.unit_price - item.discount)
        iva_amount = calculate_iva(subtotal, item.iva_type)
        items.append(SaleItem(
            description=item.description,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            discount=to_money(item.discount),
            subtotal=subtotal,
            iva_type=item.iva_type,
            iva_amount=iva_amount,
            total_amount=to_money(subtotal + iva_amount),
        ))
    return items


async def _get_sale(db: AsyncSession, sale_id: int) -> Sale:
    result = await db.execute(
        select(Sale).where(Sale.id == sale_id).execution_options(populate_existing=True)
    )
    sale = result.scalar_one_or_none()
    if not sale:
        raise ResourceNotFoundError("Sale", sale_id)
    return sale


@router.post("", response_model=SaleCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_sale(
    sale_data: SaleCreate,
    db: AsyncSession = Depends(get_db),
    fiscal_service: FiscalService = Depends(get_fiscal_service)
):
    """
    Create a sale.

    Flow:
    1. Number the sale (V-00000001)
    2. Compute line subtotals/IVA and, unless given, the fiscal aggregates
    3. Default the invoice type from the customer's fiscal classification
    4. Store it and, when confirmed, post the DEBIT (one transaction)
    5. Auto-invoice white sales when enabled
    """
    customer = await db.get(Customer, sale_data.customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", sale_data.customer_id)

    items = _build_items(sale_data.items)
    if sale_data.fiscal_totals:
        fiscal = sale_data.fiscal_totals.model_dump()
        fiscal = {key: to_money(value) for key, value in fiscal.items()}
    else:
        fiscal = calculate_fiscal_amounts(items)
        fiscal["gross_income_perception"] = Decimal("0.00")

    sale = Sale(
        sale_number=await next_sale_number(db),
        customer_id=customer.id,
        status=sale_data.status,
        is_white_invoice=sale_data.is_white_invoice,
        invoice_type=sale_data.invoice_type or invoice_type_for_customer(customer.customer_type),
        point_of_sale=sale_data.point_of_sale,
        sale_date=sale_data.sale_date or datetime.now(timezone.utc),
        notes=sale_data.notes,
        subtotal=to_money(sum(item.subtotal for item in items)),
        discount_amount=to_money(sum(item.discount for item in items)),
        fiscal_status=FiscalStatus.UNINVOICED,
        items=items,
        **fiscal,
    )
    db.add(sale)

    balance_after = None
    try:
        await db.flush()
        posted = await post_sale_movement(db, sale)
        if posted is None:
            await db.commit()
        else:
            balance_after = float(posted.new_balance)
    except IntegrityError:
        await db.rollback()
        raise DuplicateDocumentError("Sale number already taken, retry the request")

    logger.info("Created sale %s for customer %s (total %s)", sale.sale_number, customer.id, sale.total)
    sale_id = sale.id

    invoice = None
    if settings.afip_auto_invoice:
        invoice = await fiscal_service.auto_invoice(db, sale_id)

    sale = await _get_sale(db, sale_id)
    return SaleCreateResponse(
        sale=SaleResponse.model_validate(sale),
        balance_after=balance_after,
        invoice=invoice,
    )


@router.get("", response_model=SaleListResponse)
async def list_sales(
    customer_id: Optional[int] = Query(None),
    sale_status: Optional[SaleStatus] = Query(None, alias="status"),
    fiscal_status: Optional[FiscalStatus] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """List sales, newest first."""
    conditions = []
    if customer_id is not None:
        conditions.append(Sale.customer_id == customer_id)
    if sale_status is not None:
        conditions.append(Sale.status == sale_status)
    if fiscal_status is not None:
        conditions.append(Sale.fiscal_status == fiscal_status)

    total_result = await db.execute(select(func.count(Sale.id)).where(*conditions))
    total = total_result.scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(Sale).where(*conditions).order_by(Sale.sale_date.desc(), Sale.id.desc()).offset(offset).limit(page_size)
    )
    sales = result.scalars().all()

    return SaleListResponse(
        sales=[SaleResponse.model_validate(s) for s in sales],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{sale_id}", response_model=SaleResponse)
async def get_sale(
    sale_id: int,
    db: AsyncSession = Depends(get_db)
):
    sale = await _get_sale(db, sale_id)
    return SaleResponse.model_validate(sale)


@router.post("/{sale_id}/confirm", response_model=SaleCreateResponse)
async def confirm_sale(
    sale_id: int,
    db: AsyncSession = Depends(get_db),
    fiscal_service: FiscalService = Depends(get_fiscal_service)
):
    """DRAFT -> CONFIRMED. Posts the DEBIT and, when enabled, auto-invoices."""
    sale = await _get_sale(db, sale_id)
    if sale.status != SaleStatus.DRAFT:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only draft sales can be confirmed (current status: {sale.status.value})"
        )

    posted = await confirm_sale_movement(db, sale_id)

    invoice = None
    if settings.afip_auto_invoice:
        invoice = await fiscal_service.auto_invoice(db, sale_id)

    sale = await _get_sale(db, sale_id)
    return SaleCreateResponse(
        sale=SaleResponse.model_validate(sale),
        balance_after=float(posted.new_balance),
        invoice=invoice,
    )
