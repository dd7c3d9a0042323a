"""
Current account entry database model.

Append-only record of a customer's monetary movements.
"""

from sqlalchemy import Column, Integer, ForeignKey, DateTime, Enum, String, Numeric, Text, UniqueConstraint
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import LedgerDirection


class LedgerEntry(Base):
    """
    Current account entry model.

    `amount` is always positive; the sign is carried by `direction`.
    `running_balance` is the customer's balance right after this entry
    (positive = customer owes, negative = customer in credit).
    `sequence` is the per-customer posting order and the only ordering key
    used for balance computation.
    Entries are never updated or deleted, except `running_balance` during
    recomputation. Reversals are new entries pointing at `reverses_entry_id`.
    """
    __tablename__ = "current_account_entries"
    __table_args__ = (
        UniqueConstraint("customer_id", "sequence", name="uq_current_account_customer_sequence"),
    )

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    sequence = Column(Integer, nullable=False)

    # Entry details
    direction = Column(Enum(LedgerDirection), nullable=False)
    concept = Column(String(255), nullable=False)
    amount = Column(Numeric(14, 2), nullable=False)
    running_balance = Column(Numeric(14, 2), nullable=False)
    reference = Column(String(100), nullable=True, index=True)
    notes = Column(Text, nullable=True)

    # Originating documents
    sale_id = Column(Integer, ForeignKey('sales.id'), nullable=True, index=True)
    payment_id = Column(Integer, ForeignKey('payments.id'), nullable=True, index=True)
    invoice_id = Column(Integer, nullable=True)
    credit_note_id = Column(Integer, ForeignKey('credit_notes.id'), nullable=True, index=True)
    reverses_entry_id = Column(Integer, ForeignKey('current_account_entries.id'), nullable=True, unique=True)

    # Business date and insertion time (no updated_at)
    occurred_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return (
            f"<LedgerEntry(id={self.id}, customer_id={self.customer_id}, seq={self.sequence}, "
            f"direction='{self.direction.value}', amount={self.amount}, balance={self.running_balance})>"
        )
