"""
NairaPay Core - Payroll Audit Service

Writes and reads the payroll audit trail. `record` only adds the row to the
session; the calling service commits it together with the change.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit_log import AuditAction, AuditEntityType, PayrollAuditLog


def _plain(value: Any) -> Any:
    """JSON-safe copy of a details value."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(v) for v in value]
    return value


class PayrollAuditService:
    """Service for the payroll audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    def record(
        self,
        tenant_id: uuid.UUID,
        entity_type: AuditEntityType,
        entity_id: uuid.UUID,
        action: AuditAction,
        actor_id: Optional[uuid.UUID] = None,
        from_status: Optional[Enum] = None,
        to_status: Optional[Enum] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> PayrollAuditLog:
        entry = PayrollAuditLog(
            tenant_id=tenant_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            actor_id=actor_id,
            from_status=_plain(from_status),
            to_status=_plain(to_status),
            details=_plain(details) if details else None,
        )
        self.db.add(entry)
        return entry

    async def get_trail(
        self,
        tenant_id: uuid.UUID,
        entity_type: AuditEntityType,
        entity_id: uuid.UUID,
        limit: int = 50,
    ) -> List[PayrollAuditLog]:
        """History of one pay run, advance or order, oldest first."""
        result = await self.db.execute(
            select(PayrollAuditLog)
            .where(
                and_(
                    PayrollAuditLog.tenant_id == tenant_id,
                    PayrollAuditLog.entity_type == entity_type,
                    PayrollAuditLog.entity_id == entity_id,
                )
            )
            .order_by(PayrollAuditLog.created_at, PayrollAuditLog.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def get_tenant_log(
        self,
        tenant_id: uuid.UUID,
        action: Optional[AuditAction] = None,
        entity_type: Optional[AuditEntityType] = None,
        actor_id: Optional[uuid.UUID] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 25,
    ) -> List[PayrollAuditLog]:
        """Newest first."""
        query = select(PayrollAuditLog).where(PayrollAuditLog.tenant_id == tenant_id)
        if action:
            query = query.where(PayrollAuditLog.action == action)
        if entity_type:
            query = query.where(PayrollAuditLog.entity_type == entity_type)
        if actor_id:
            query = query.where(PayrollAuditLog.actor_id == actor_id)
        if start:
            query = query.where(PayrollAuditLog.created_at >= start)
        if end:
            query = query.where(PayrollAuditLog.created_at <= end)
        result = await self.db.execute(
            query.order_by(PayrollAuditLog.created_at.desc()).offset(skip).limit(limit)
        )
        return list(result.scalars().all())
