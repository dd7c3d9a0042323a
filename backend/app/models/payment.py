"""
Payment database model.
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Enum, Numeric, Text
from sqlalchemy.sql import func
from backend.app.db.session import Base
from backend.app.models.enums import PaymentMethod, PaymentStatus


class Payment(Base):
    """
    Payment received from a customer.

    Registering a payment posts a CREDIT on the customer's current account.
    """
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    payment_number = Column(String(20), unique=True, nullable=False, index=True)  # PAG-000001

    customer_id = Column(Integer, ForeignKey('customers.id'), nullable=False, index=True)
    sale_id = Column(Integer, ForeignKey('sales.id'), nullable=True, index=True)

    amount = Column(Numeric(14, 2), nullable=False)
    method = Column(Enum(PaymentMethod), nullable=False)
    status = Column(Enum(PaymentStatus), default=PaymentStatus.CONFIRMED, nullable=False)
    payment_date = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    reference = Column(String(100), nullable=True)  # transfer id, cheque number
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self):
        return f"<Payment(id={self.id}, number='{self.payment_number}', amount={self.amount})>"
