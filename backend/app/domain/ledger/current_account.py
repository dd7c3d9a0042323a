"""
Current Account Ledger (Domain Logic).

Single choke-point for every balance-affecting event of a customer.
Entries form a per-customer append log ordered by `sequence`; each entry
stores the running balance right after it is applied.

Concurrency:
- postings, reversals and recomputations for one customer are serialized by an
  in-process asyncio.Lock plus a SELECT ... FOR NO KEY UPDATE on the customer row,
  both held until the transaction commits;
- a second process that slips past both still collides on the unique
  (customer_id, sequence) constraint and gets LedgerConflictError.
"""

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from backend.app.core.config import settings
from backend.app.core.exceptions import (
    EntryAlreadyReversedError,
    InvalidMovementError,
    LedgerConflictError,
    ResourceNotFoundError,
    SaleStateError,
)
from backend.app.domain.money import Number, to_money
from backend.app.models.customer import Customer
from backend.app.models.enums import LedgerDirection, SaleStatus
from backend.app.models.ledger_entry import LedgerEntry
from backend.app.models.sale import Sale
from backend.app.services.audit import AuditAction, log_event

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")


@dataclass
class PostedMovement:
    entry: LedgerEntry
    previous_balance: Decimal
    new_balance: Decimal


@dataclass
class AccountStatement:
    entries: List[LedgerEntry]
    current_balance: Decimal
    is_in_debt: bool
    is_in_credit: bool


@dataclass
class RecomputeResult:
    final_balance: Decimal
    entries_checked: int
    entries_corrected: int


# Per-customer locks, dropped once no coroutine holds a reference
_customer_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


def _customer_lock(customer_id: int) -> asyncio.Lock:
    lock = _customer_locks.get(customer_id)
    if lock is None:
        lock = asyncio.Lock()
        _customer_locks[customer_id] = lock
    return lock


def apply_direction(balance: Decimal, direction: LedgerDirection, amount: Decimal) -> Decimal:
    """DEBIT increases what the customer owes, CREDIT decreases it."""
    if direction == LedgerDirection.DEBIT:
        return to_money(balance + amount)
    return to_money(balance - amount)


async def _lock_customer_row(db: AsyncSession, customer_id: int) -> None:
    result = await db.execute(
        select(Customer.id).where(Customer.id == customer_id).with_for_update(key_share=True)
    )
    if result.scalar_one_or_none() is None:
        await db.rollback()
        raise ResourceNotFoundError("Customer", customer_id)


async def _last_entry(db: AsyncSession, customer_id: int) -> Optional[LedgerEntry]:
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.sequence.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


def _is_sequence_conflict(exc: IntegrityError) -> bool:
    message = str(exc.orig)
    return (
        "uq_current_account_customer_sequence" in message
        or "current_account_entries.customer_id, current_account_entries.sequence" in message
    )


def _is_reversal_conflict(exc: IntegrityError) -> bool:
    return "reverses_entry_id" in str(exc.orig)


async def _append_entry(
    db: AsyncSession,
    customer_id: int,
    direction: LedgerDirection,
    concept: str,
    amount: Decimal,
    occurred_at: Optional[datetime],
    **fields,
) -> PostedMovement:
    """Append one entry after the customer's current tail. Caller holds the locks."""
    last = await _last_entry(db, customer_id)
    previous_balance = to_money(last.running_balance) if last else ZERO
    next_sequence = (last.sequence + 1) if last else 1
    new_balance = apply_direction(previous_balance, direction, amount)

    entry = LedgerEntry(
        customer_id=customer_id,
        sequence=next_sequence,
        direction=direction,
        concept=concept,
        amount=amount,
        running_balance=new_balance,
        occurred_at=occurred_at or datetime.now(timezone.utc),
        **fields,
    )
    db.add(entry)
    return PostedMovement(entry=entry, previous_balance=previous_balance, new_balance=new_balance)


async def _commit_posting(db: AsyncSession, customer_id: int, sequence: int) -> None:
    try:
        await db.commit()
    except IntegrityError as e:
        await db.rollback()
        if _is_sequence_conflict(e):
            logger.warning(
                "Ledger conflict for customer %s at sequence %s; posting rolled back",
                customer_id, sequence,
            )
            raise LedgerConflictError(customer_id, sequence) from e
        raise


def _validate_movement(direction: LedgerDirection, amount: Number) -> Tuple[LedgerDirection, Decimal]:
    try:
        direction = LedgerDirection(direction)
    except ValueError:
        raise InvalidMovementError(
            f"Invalid direction: {direction}",
            details={"direction": str(direction)},
        )

    try:
        amount = to_money(amount)
    except ArithmeticError:
        raise InvalidMovementError(f"Invalid amount: {amount}", details={"amount": str(amount)})

    if amount <= 0:
        raise InvalidMovementError(
            "Movement amount must be greater than zero",
            details={"amount": str(amount)},
        )
    return direction, amount


async def post_movement(
    db: AsyncSession,
    customer_id: int,
    direction: LedgerDirection,
    concept: str,
    amount: Number,
    occurred_at: Optional[datetime] = None,
    reference: Optional[str] = None,
    notes: Optional[str] = None,
    sale_id: Optional[int] = None,
    payment_id: Optional[int] = None,
    invoice_id: Optional[int] = None,
    credit_note_id: Optional[int] = None,
) -> PostedMovement:
    """
    Post a movement on a customer's current account.

    Reads the last entry by sequence, computes the new running balance and
    inserts exactly one entry. Commits the session: anything the caller added
    to it beforehand (the originating sale, payment or credit note) lands in
    the same transaction.

    Args:
        db: Database session
        customer_id: Owning customer
        direction: DEBIT or CREDIT
        concept: Human-readable description
        amount: Positive magnitude, rounded to cents
        occurred_at: Business date (defaults to now)
        reference: External document identifier

    Returns:
        PostedMovement with the new entry, previous and new balances

    Raises:
        InvalidMovementError: amount <= 0 or unknown direction
        ResourceNotFoundError: customer does not exist
        LedgerConflictError: another writer appended the same sequence first
    """
    direction, amount = _validate_movement(direction, amount)

    async with _customer_lock(customer_id):
        await _lock_customer_row(db, customer_id)
        posted = await _append_entry(
            db,
            customer_id,
            direction,
            concept,
            amount,
            occurred_at,
            reference=reference,
            notes=notes,
            sale_id=sale_id,
            payment_id=payment_id,
            invoice_id=invoice_id,
            credit_note_id=credit_note_id,
        )
        await _commit_posting(db, customer_id, posted.entry.sequence)

    await db.refresh(posted.entry)
    logger.info(
        "Posted %s %s for customer %s (%s): balance %s -> %s",
        direction.value, amount, customer_id, concept,
        posted.previous_balance, posted.new_balance,
    )
    return posted


async def get_current_balance(db: AsyncSession, customer_id: int) -> Decimal:
    """Running balance of the customer's last entry, or 0 with no entries."""
    result = await db.execute(
        select(LedgerEntry.running_balance)
        .where(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.sequence.desc())
        .limit(1)
    )
    balance = result.scalar_one_or_none()
    return to_money(balance) if balance is not None else ZERO


async def get_balances(db: AsyncSession, customer_ids: Iterable[int]) -> Dict[int, Decimal]:
    """Current balance for several customers at once; customers without entries get 0."""
    customer_ids = list(customer_ids)
    balances = {customer_id: ZERO for customer_id in customer_ids}
    if not customer_ids:
        return balances

    tail = (
        select(LedgerEntry.customer_id, func.max(LedgerEntry.sequence).label("last_sequence"))
        .where(LedgerEntry.customer_id.in_(customer_ids))
        .group_by(LedgerEntry.customer_id)
        .subquery()
    )
    result = await db.execute(
        select(LedgerEntry.customer_id, LedgerEntry.running_balance).join(
            tail,
            (LedgerEntry.customer_id == tail.c.customer_id)
            & (LedgerEntry.sequence == tail.c.last_sequence),
        )
    )
    for customer_id, running_balance in result.all():
        balances[customer_id] = to_money(running_balance)
    return balances


async def get_statement(db: AsyncSession, customer_id: int, limit: Optional[int] = None) -> AccountStatement:
    """
    Most recent entries by business date, plus the current balance.

    Balance > 0 means the customer is in debt, < 0 in credit.
    """
    limit = limit or settings.ledger_statement_limit
    result = await db.execute(
        select(LedgerEntry)
        .where(LedgerEntry.customer_id == customer_id)
        .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.sequence.desc())
        .limit(limit)
    )
    entries = list(result.scalars().all())
    balance = await get_current_balance(db, customer_id)

    return AccountStatement(
        entries=entries,
        current_balance=balance,
        is_in_debt=balance > 0,
        is_in_credit=balance < 0,
    )


async def list_movements(
    db: AsyncSession,
    customer_id: Optional[int] = None,
    direction: Optional[LedgerDirection] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = 1,
    limit: int = 10,
) -> Tuple[List[LedgerEntry], int]:
    """Filtered page of entries, newest business date first, and the total count."""
    conditions = []
    if customer_id is not None:
        conditions.append(LedgerEntry.customer_id == customer_id)
    if direction is not None:
        conditions.append(LedgerEntry.direction == direction)
    if date_from is not None:
        conditions.append(LedgerEntry.occurred_at >= date_from)
    if date_to is not None:
        conditions.append(LedgerEntry.occurred_at <= date_to)

    total_result = await db.execute(select(func.count(LedgerEntry.id)).where(*conditions))
    total = total_result.scalar()

    offset = (page - 1) * limit
    result = await db.execute(
        select(LedgerEntry)
        .where(*conditions)
        .order_by(LedgerEntry.occurred_at.desc(), LedgerEntry.id.desc())
        .offset(offset)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def recompute_balances(db: AsyncSession, customer_id: int) -> RecomputeResult:
    """
    Rewrite every running balance of a customer from a zero base, in sequence order.

    The only sanctioned way to restore balance continuity after drift. Running
    it twice in a row changes nothing the second time.
    """
    async with _customer_lock(customer_id):
        await _lock_customer_row(db, customer_id)
        result = await db.execute(
            select(LedgerEntry)
            .where(LedgerEntry.customer_id == customer_id)
            .order_by(LedgerEntry.sequence.asc())
        )
        entries = list(result.scalars().all())

        balance = ZERO
        corrected = 0
        for entry in entries:
            balance = apply_direction(balance, entry.direction, to_money(entry.amount))
            if to_money(entry.running_balance) != balance:
                logger.warning(
                    "Entry %s (customer %s, seq %s) had balance %s, expected %s",
                    entry.id, customer_id, entry.sequence, entry.running_balance, balance,
                )
                entry.running_balance = balance
                corrected += 1

        await db.commit()

    recompute = RecomputeResult(
        final_balance=balance,
        entries_checked=len(entries),
        entries_corrected=corrected,
    )
    if corrected:
        await log_event(
            db,
            action=AuditAction.LEDGER_RECOMPUTED,
            entity_type="customer",
            entity_id=customer_id,
            metadata={
                "final_balance": str(balance),
                "entries_checked": len(entries),
                "entries_corrected": corrected,
            },
        )
    logger.info(
        "Recomputed %s entries for customer %s (%s corrected), balance %s",
        len(entries), customer_id, corrected, balance,
    )
    return recompute


async def reverse_movement(db: AsyncSession, entry_id: int, concept: Optional[str] = None) -> PostedMovement:
    """
    Cancel an entry by posting the same amount in the opposite direction.

    The original entry is left untouched; the new one points at it through
    `reverses_entry_id`. An entry can be reversed once, and a reversal
    cannot itself be reversed.
    """
    original = await db.get(LedgerEntry, entry_id)
    if original is None:
        raise ResourceNotFoundError("Current account entry", entry_id)
    if original.reverses_entry_id is not None:
        raise EntryAlreadyReversedError(entry_id, "A reversal entry cannot be reversed")

    customer_id = original.customer_id
    opposite = LedgerDirection.CREDIT if original.direction == LedgerDirection.DEBIT else LedgerDirection.DEBIT

    async with _customer_lock(customer_id):
        await _lock_customer_row(db, customer_id)
        existing = await db.execute(
            select(LedgerEntry.id).where(LedgerEntry.reverses_entry_id == entry_id)
        )
        if existing.scalar_one_or_none() is not None:
            await db.rollback()
            raise EntryAlreadyReversedError(entry_id, f"Entry {entry_id} has already been reversed")

        posted = await _append_entry(
            db,
            customer_id,
            opposite,
            concept or f"Reversal: {original.concept}",
            to_money(original.amount),
            None,
            reference=original.reference,
            sale_id=original.sale_id,
            payment_id=original.payment_id,
            invoice_id=original.invoice_id,
            credit_note_id=original.credit_note_id,
            reverses_entry_id=original.id,
        )
        try:
            await _commit_posting(db, customer_id, posted.entry.sequence)
        except IntegrityError as e:
            if _is_reversal_conflict(e):
                raise EntryAlreadyReversedError(entry_id, f"Entry {entry_id} has already been reversed") from e
            raise

    await db.refresh(posted.entry)
    await log_event(
        db,
        action=AuditAction.LEDGER_ENTRY_REVERSED,
        entity_type="ledger_entry",
        entity_id=entry_id,
        metadata={
            "customer_id": customer_id,
            "reversal_entry_id": posted.entry.id,
            "amount": str(posted.entry.amount),
            "new_balance": str(posted.new_balance),
        },
    )
    logger.info("Reversed entry %s for customer %s with entry %s", entry_id, customer_id, posted.entry.id)
    return posted


async def post_sale_movement(db: AsyncSession, sale) -> Optional[PostedMovement]:
    """DEBIT for a confirmed sale. Any other status posts nothing and returns None."""
    if sale.status != SaleStatus.CONFIRMED:
        return None
    return await post_movement(
        db,
        customer_id=sale.customer_id,
        direction=LedgerDirection.DEBIT,
        concept=f"Sale {sale.sale_number}",
        amount=sale.total,
        occurred_at=sale.sale_date,
        reference=sale.sale_number,
        sale_id=sale.id,
    )


async def confirm_sale_movement(db: AsyncSession, sale_id: int) -> PostedMovement:
    """
    DRAFT -> CONFIRMED and the sale's DEBIT, in one transaction.

    The status change is a conditional UPDATE taken under the customer's
    locks, so of two concurrent confirmations only one claims the sale and
    posts; the other gets SaleStateError and writes nothing.

    Raises:
        ResourceNotFoundError: sale does not exist
        SaleStateError: sale is not (or no longer) a draft
    """
    sale = await db.get(Sale, sale_id)
    if sale is None:
        raise ResourceNotFoundError("Sale", sale_id)
    customer_id = sale.customer_id
    direction, amount = _validate_movement(LedgerDirection.DEBIT, sale.total)

    async with _customer_lock(customer_id):
        await _lock_customer_row(db, customer_id)
        claimed = await db.execute(
            update(Sale)
            .where(Sale.id == sale_id, Sale.status == SaleStatus.DRAFT)
            .values(status=SaleStatus.CONFIRMED)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            raise SaleStateError(sale_id, SaleStatus.DRAFT.value)

        posted = await _append_entry(
            db,
            customer_id,
            direction,
            f"Sale {sale.sale_number}",
            amount,
            sale.sale_date,
            reference=sale.sale_number,
            sale_id=sale_id,
        )
        await _commit_posting(db, customer_id, posted.entry.sequence)

    await db.refresh(posted.entry)
    logger.info(
        "Confirmed sale %s for customer %s: balance %s -> %s",
        sale.sale_number, customer_id, posted.previous_balance, posted.new_balance,
    )
    return posted


async def post_payment_movement(db: AsyncSession, payment) -> PostedMovement:
    """CREDIT referencing the payment."""
    return await post_movement(
        db,
        customer_id=payment.customer_id,
        direction=LedgerDirection.CREDIT,
        concept=f"Payment {payment.payment_number}",
        amount=payment.amount,
        occurred_at=payment.payment_date,
        reference=payment.payment_number,
        notes=payment.notes,
        payment_id=payment.id,
        sale_id=payment.sale_id,
    )


async def post_credit_note_movement(db: AsyncSession, credit_note) -> PostedMovement:
    """CREDIT referencing the credit note."""
    return await post_movement(
        db,
        customer_id=credit_note.customer_id,
        direction=LedgerDirection.CREDIT,
        concept=f"Credit note {credit_note.credit_note_number}",
        amount=credit_note.total,
        occurred_at=credit_note.issue_date,
        reference=credit_note.credit_note_number,
        notes=credit_note.reason,
        credit_note_id=credit_note.id,
    )
