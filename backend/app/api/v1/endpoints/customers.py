"""
Customer API Endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException, status, Query
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from sqlalchemy.exc import IntegrityError
from typing import Optional

from backend.app.db.session import get_db
from backend.app.models.customer import Customer
from backend.app.schemas.customer import (
    CustomerCreate, CustomerResponse, CustomerWithBalance, CustomerListResponse
)
from backend.app.core.exceptions import DuplicateDocumentError, ResourceNotFoundError
from backend.app.domain.ledger.current_account import get_balances, get_current_balance

router = APIRouter(prefix="/customers", tags=["Customers"])


@router.post("", response_model=CustomerResponse, status_code=status.HTTP_201_CREATED)
async def create_customer(
    customer_data: CustomerCreate,
    db: AsyncSession = Depends(get_db)
):
    """
    Create a customer.

    The tax id, when present, must be a valid CUIT/CUIL and is stored formatted.
    """
    customer = Customer(**customer_data.model_dump())
    db.add(customer)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise DuplicateDocumentError(
            f"A customer with tax id {customer_data.tax_id} already exists",
            details={"tax_id": customer_data.tax_id},
        )
    await db.refresh(customer)
    return CustomerResponse.model_validate(customer)


@router.get("", response_model=CustomerListResponse)
async def list_customers(
    search: Optional[str] = Query(None, description="Filter by business name or tax id"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(50, ge=1, le=100, description="Items per page"),
    db: AsyncSession = Depends(get_db)
):
    """List active customers with their current account balance."""
    conditions = [Customer.is_active.is_(True)]
    if search:
        pattern = f"%{search}%"
        conditions.append(Customer.business_name.ilike(pattern) | Customer.tax_id.ilike(pattern))

    total_result = await db.execute(select(func.count(Customer.id)).where(*conditions))
    total = total_result.scalar()

    offset = (page - 1) * page_size
    result = await db.execute(
        select(Customer).where(*conditions).order_by(Customer.business_name.asc()).offset(offset).limit(page_size)
    )
    customers = result.scalars().all()
    balances = await get_balances(db, [c.id for c in customers])

    return CustomerListResponse(
        customers=[
            CustomerWithBalance(
                **CustomerResponse.model_validate(c).model_dump(),
                current_balance=float(balances[c.id]),
            )
            for c in customers
        ],
        total=total,
        page=page,
        page_size=page_size
    )


@router.get("/{customer_id}", response_model=CustomerWithBalance)
async def get_customer(
    customer_id: int,
    db: AsyncSession = Depends(get_db)
):
    """Get a customer with its current balance."""
    customer = await db.get(Customer, customer_id)
    if not customer:
        raise ResourceNotFoundError("Customer", customer_id)

    balance = await get_current_balance(db, customer_id)
    return CustomerWithBalance(
        **CustomerResponse.model_validate(customer).model_dump(),
        current_balance=float(balance),
    )
