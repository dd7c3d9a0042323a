"""
Document numbering service.

Sales (V-00000001), payments (PAG-000001) and credit notes (NC-00000001)
are numbered from the highest existing number. The unique constraint on each
number column catches two requests that picked the same one.
"""

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.models.credit_note import CreditNote
from backend.app.models.payment import Payment
from backend.app.models.sale import Sale


async def _next_number(db: AsyncSession, column, prefix: str, width: int) -> str:
    result = await db.execute(
        select(column).where(column.like(f"{prefix}-%")).order_by(column.desc()).limit(1)
    )
    last = result.scalar_one_or_none()

    next_value = 1
    if last:
        try:
            next_value = int(last.split("-", 1)[1]) + 1
        except ValueError:
            next_value = 1
    return f"{prefix}-{str(next_value).zfill(width)}"


async def next_sale_number(db: AsyncSession) -> str:
    return await _next_number(db, Sale.sale_number, "V", 8)


async def next_payment_number(db: AsyncSession) -> str:
    return await _next_number(db, Payment.payment_number, "PAG", 6)


async def next_credit_note_number(db: AsyncSession) -> str:
    return await _next_number(db, CreditNote.credit_note_number, "NC", 8)
