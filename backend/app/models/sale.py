"""
Sale and sale item database models.

A sale carries the fiscal aggregates reported to the tax authority and the
authorization state of its electronic invoice.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Boolean, Numeric, Date, Text, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import SaleStatus, InvoiceType, FiscalStatus, IvaType


class Sale(Base):
    """
    Sale model.

    Fiscal state:
    - UNINVOICED: no authorization yet, submission allowed for white sales.
    - INVOICED: auth_code recorded. Terminal.
    - AUTHORIZED_UNRECORDED: the authority issued a CAE but persisting it failed;
      the payload sits in pending_authorization until reconciled.
    """
    __tablename__ = "sales"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sale_number = Column(String(20), unique=True, nullable=False, index=True)  # V-00000001

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    status = Column(Enum(SaleStatus), default=SaleStatus.DRAFT, nullable=False, index=True)
    is_white_invoice = Column(Boolean, default=False, nullable=False)  # formal sale, must be invoiced
    sale_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    notes = Column(Text, nullable=True)

    # Fiscal classification
    invoice_type = Column(Enum(InvoiceType), nullable=True)
    point_of_sale = Column(String(5), default="0001", nullable=False)

    # Amounts
    subtotal = Column(Numeric(14, 2), default=0, nullable=False)
    discount_amount = Column(Numeric(14, 2), default=0, nullable=False)
    taxed_amount = Column(Numeric(14, 2), default=0, nullable=False)
    non_taxed_amount = Column(Numeric(14, 2), default=0, nullable=False)
    exempt_amount = Column(Numeric(14, 2), default=0, nullable=False)
    tax_amount = Column(Numeric(14, 2), default=0, nullable=False)
    gross_income_perception = Column(Numeric(14, 2), default=0, nullable=False)
    total = Column(Numeric(14, 2), nullable=False)

    # Authorization state
    fiscal_status = Column(Enum(FiscalStatus), default=FiscalStatus.UNINVOICED, nullable=False, index=True)
    invoice_number = Column(Integer, nullable=True)
    full_number = Column(String(20), nullable=True)  # A-0001-00000123
    auth_code = Column(String(20), nullable=True)  # CAE
    auth_code_expiry = Column(Date, nullable=True)
    pending_authorization = Column(JSON, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    customer = relationship("Customer", lazy="selectin")
    items = relationship("SaleItem", back_populates="sale", cascade="all, delete-orphan", lazy="selectin", order_by="SaleItem.id")

    def __repr__(self):
        return f"<Sale(id={self.id}, number='{self.sale_number}', status='{self.status.value}', fiscal='{self.fiscal_status.value}')>"


class SaleItem(Base):
    """Sale line item with its tax-rate category."""
    __tablename__ = "sale_items"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    sale_id = Column(Integer, ForeignKey('sales.id'), nullable=False, index=True)

    description = Column(String(255), nullable=False)
    quantity = Column(Numeric(12, 2), nullable=False)
    unit_price = Column(Numeric(14, 2), nullable=False)
    discount = Column(Numeric(14, 2), default=0, nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)  # taxable base
    iva_type = Column(Enum(IvaType), default=IvaType.IVA_21, nullable=False)
    iva_amount = Column(Numeric(14, 2), default=0, nullable=False)
    total_amount = Column(Numeric(14, 2), nullable=False)

    sale = relationship("Sale", back_populates="items")

    def __repr__(self):
        return f"<SaleItem(id={self.id}, sale_id={self.sale_id}, iva='{self.iva_type.value}', total={self.total_amount})>"
