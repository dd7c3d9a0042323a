"""
Audit Log Database Model.

Tracks fiscal and current-account events that need a durable trail.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON
from sqlalchemy.sql import func
from backend.app.db.session import Base


class AuditLog(Base):
    """
    Audit log model for fiscal authorizations and ledger maintenance.

    Events logged:
    - INVOICE_AUTHORIZED / INVOICE_REJECTED
    - AUTHORIZATION_NOT_RECORDED (local and authority state diverged)
    - AUTHORIZATION_RECONCILED
    - LEDGER_ENTRY_REVERSED / LEDGER_RECOMPUTED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which record it concerns
    entity_type = Column(String(50), nullable=True, index=True)
    entity_id = Column(Integer, nullable=True, index=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Correlation ID of the request that produced the event
    correlation_id = Column(String(64), nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), server_default=func.now(), nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', entity={self.entity_type}:{self.entity_id})>"
