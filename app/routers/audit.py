"""
NairaPay Core - Payroll Audit Router

Read-only access to the audit trail of pay runs, wage advances and purchase
orders.
"""

import uuid
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, require_role
from app.models.audit_log import AuditAction, AuditEntityType
from app.models.employee import StaffRole
from app.schemas.audit import AuditLogResponse
from app.services.payroll_audit_service import PayrollAuditService


router = APIRouter()

manager = require_role(StaffRole.GENERAL_MANAGER)


@router.get("", response_model=List[AuditLogResponse])
async def tenant_audit_log(
    action: Optional[AuditAction] = Query(None),
    entity_type: Optional[AuditEntityType] = Query(None),
    actor_id: Optional[uuid.UUID] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(25, ge=1, le=200),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    return await PayrollAuditService(db).get_tenant_log(
        ctx.tenant_id,
        action=action,
        entity_type=entity_type,
        actor_id=actor_id,
        start=start,
        end=end,
        skip=skip,
        limit=limit,
    )


@router.get("/{entity_type}/{entity_id}", response_model=List[AuditLogResponse])
async def audit_trail(
    entity_type: AuditEntityType,
    entity_id: uuid.UUID,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    """Oldest entry first."""
    return await PayrollAuditService(db).get_trail(ctx.tenant_id, entity_type, entity_id, limit)
