"""
Credit note database models.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import InvoiceType, CreditNoteStatus, IvaType


class CreditNote(Base):
    """
    Credit note issued against a sale.

    At most one non-voided credit note exists per original sale.
    Issuing one posts a CREDIT on the customer's current account.
    """
    __tablename__ = "credit_notes"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    credit_note_number = Column(String(20), unique=True, nullable=False, index=True)  # NC-00000001

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    original_sale_id = Column(Integer, ForeignKey('sales.id'), nullable=False, index=True)

    type = Column(Enum(InvoiceType), nullable=False)  # NOTA_CREDITO_A / NOTA_CREDITO_B
    status = Column(Enum(CreditNoteStatus), default=CreditNoteStatus.ISSUED, nullable=False)
    reason = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)

    subtotal = Column(Numeric(14, 2), nullable=False)
    tax_amount = Column(Numeric(14, 2), default=0, nullable=False)
    total = Column(Numeric(14, 2), nullable=False)

    issue_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    items = relationship("CreditNoteItem", cascade="all, delete-orphan", lazy="selectin", order_by="CreditNoteItem.id")

    def __repr__(self):
        return f"<CreditNote(id={self.id}, number='{self.credit_note_number}', total={self.total})>"


class CreditNoteItem(Base):
    """Credited line."""
    __tablename__ = "credit_note_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    credit_note_id = Column(Integer, ForeignKey('credit_notes.id'), nullable=False, index=True)

    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    iva_type = Column(Enum(IvaType), default=IvaType.IVA_21, nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    iva_amount = Column(Numeric(14, 2), default=0, nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)
