"""
Admin API Schema Definitions.

Pydantic schemas for maintenance endpoints.
"""

from pydantic import BaseModel
from datetime import datetime
from typing import Optional, List, Dict, Any


class AuditLogResponse(BaseModel):
    """Schema for audit log entry."""
    id: int
    action: str
    entity_type: Optional[str]
    entity_id: Optional[int]
    meta_data: Optional[Dict[str, Any]]
    correlation_id: Optional[str]
    timestamp: datetime

    class Config:
        from_attributes = True


class AuditTrailResponse(BaseModel):
    """Schema for audit trail response."""
    logs: List[AuditLogResponse]
    total: int
