"""
Customer database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, Enum, Boolean, Numeric
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import CustomerType


class Customer(Base):
    """
    Customer model.

    The fiscal classification drives the invoice letter and the document type
    reported to the tax authority. The balance is not stored here: it lives on
    the last current-account entry of the customer.
    """
    __tablename__ = "customers"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    business_name = Column(String(255), nullable=False, index=True)
    tax_id = Column(String(20), unique=True, nullable=True, index=True)  # CUIT, "20-12345678-9"
    customer_type = Column(Enum(CustomerType), nullable=True)

    # Contact
    email = Column(String(255), nullable=True)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)

    credit_limit = Column(Numeric(14, 2), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    def __repr__(self):
        return f"<Customer(id={self.id}, name='{self.business_name}', tax_id='{self.tax_id}')>"
