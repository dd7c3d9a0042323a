"""
Payments API Endpoints.

Registering a payment posts a CREDIT on the customer's current account in
the same transaction.
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
from backend.app.domain.ledger.current_account import post_payment_movement
from backend.app.domain.money import to_money
from backend.app.models.customer import Customer
from backend.app.models.payment import Payment
from backend.app.models.sale import Sale
from backend.app.schemas.payment import PaymentCreate, PaymentResponse, PaymentCreateResponse, PaymentListResponse
from backend.app.services.documents import next_payment_number

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("", response_model=PaymentCreateResponse, status_code=status.HTTP_201_CREATED)
async def create_payment(
    payment_data: PaymentCreate,
    db: AsyncSession = Depends(get_db)
):
    """Register a payment (PAG-000001) and credit it to the customer."""
    customer = await db.get(Customer, payment_data.customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", payment_data.customer_id)

    if payment_data.sale_id is not None:
        sale = await db.get(Sale, payment_data.sale_id)
        if not sale or sale.customer_id != customer.id:
            raise ResourceNotFoundError("Sale", payment_data.sale_id)

    payment = Payment(
        payment_number=await next_payment_number(db),
        customer_id=customer.id,
        sale_id=payment_data.sale_id,
        amount=to_money(payment_data.amount),
        method=payment_data.method,
        payment_date=payment_data.payment_date or datetime.now(timezone.utc),
        reference=payment_data.reference,
        notes=payment_data.notes,
    )
    db.add(payment)

    try:
        await db.flush()
        posted = await post_payment_movement(db, payment)
    except IntegrityError:
        await db.rollback()
        raise DuplicateDocumentError("Payment number already taken, retry the request")

    await db.refresh(payment)
    logger.info("Registered payment %s for customer %s (%s)", payment.payment_number, customer.id, payment.amount)

    return PaymentCreateResponse(
        payment=PaymentResponse.model_validate(payment),
        previous_balance=float(posted.previous_balance),
        new_balance=float(posted.new_balance),
    )


@router.get("", response_model=PaymentListResponse)
async def list_payments(
    customer_id: Optional[int] = Query(None),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """List payments, newest first."""
    conditions = []
    if customer_id is not None:
        conditions.append(Payment.customer_id == customer_id)

    total_result = await db.execute(select(func.count(Payment.id)).where(*conditions))
    total = total_result.scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(Payment).where(*conditions).order_by(Payment.payment_date.desc(), Payment.id.desc()).offset(offset).limit(page_size)
    )
    payments = result.scalars().all()

    return PaymentListResponse(
        payments=[PaymentResponse.model_validate(p) for p in payments],
        total=total,
        page=page,
        page_size=page_size
    )
