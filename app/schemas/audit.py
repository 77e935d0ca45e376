"""
NairaPay Core - Audit Schemas
"""

from datetime import datetime
from typing import Any, Dict, Optional
from uuid import UUID

from pydantic import BaseModel

from app.models.audit_log import AuditAction, AuditEntityType


class AuditLogResponse(BaseModel):
    id: UUID
    entity_type: AuditEntityType
    entity_id: UUID
    action: AuditAction
    actor_id: Optional[UUID] = None
    from_status: Optional[str] = None
    to_status: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    class Config:
        from_attributes = True
