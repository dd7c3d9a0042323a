"""
Audit logging service for fiscal and current-account events.

Provides a durable trail for authorizations, divergences and ledger repairs.
"""

from typing import Optional, Dict, Any
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, desc
from backend.app.core.observability import get_correlation_id
from backend.app.models.audit_log import AuditLog


# Audit event constants
class AuditAction:
    """Standardized audit action constants."""
    # Fiscal invoicing
    INVOICE_AUTHORIZED = "INVOICE_AUTHORIZED"
    INVOICE_REJECTED = "INVOICE_REJECTED"
    AUTHORIZATION_NOT_RECORDED = "AUTHORIZATION_NOT_RECORDED"
    AUTHORIZATION_RECONCILED = "AUTHORIZATION_RECONCILED"

    # Current account
    LEDGER_ENTRY_REVERSED = "LEDGER_ENTRY_REVERSED"
    LEDGER_RECOMPUTED = "LEDGER_RECOMPUTED"
    LEDGER_ADJUSTMENT_POSTED = "LEDGER_ADJUSTMENT_POSTED"


async def log_event(
    db: AsyncSession,
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    metadata: Optional[Dict[str, Any]] = None,
    correlation_id: Optional[str] = None
) -> AuditLog:
    """
    Log an event to the audit log.

    Args:
        db: Database session
        action: Action being performed (use AuditAction constants)
        entity_type: Kind of record concerned ("sale", "customer", "ledger_entry")
        entity_id: ID of that record
        metadata: Additional context as JSON
        correlation_id: Request correlation ID (defaults to the one of the request being served)

    Returns:
        Created AuditLog instance
    """
    audit_log = AuditLog(
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        meta_data=metadata,
        correlation_id=correlation_id or get_correlation_id()
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    return audit_log


async def get_audit_trail(
    db: AsyncSession,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    action: Optional[str] = None,
    limit: int = 100
) -> list[AuditLog]:
    """
    Retrieve audit trail with optional filtering, newest first.
    """
    query = select(AuditLog)

    if entity_type:
        query = query.where(AuditLog.entity_type == entity_type)
    if entity_id is not None:
        query = query.where(AuditLog.entity_id == entity_id)
    if action:
        query = query.where(AuditLog.action == action)

    query = query.order_by(desc(AuditLog.timestamp), desc(AuditLog.id)).limit(limit)

    result = await db.execute(query)
    return list(result.scalars().all())
