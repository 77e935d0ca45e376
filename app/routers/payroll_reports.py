"""
NairaPay Core - Payroll Reports Router

Statutory remittance schedules, the payroll journal and yearly statistics,
all from completed pay runs.
"""

import uuid
from datetime import date
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, require_role
from app.models.employee import StaffRole
from app.services.payroll_report_service import PayrollReportService


router = APIRouter()

manager = require_role(StaffRole.GENERAL_MANAGER)


@router.get("/tax-remittance", response_model=Dict[str, Any])
async def tax_remittance_report(
    period_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    shop_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    return await PayrollReportService(db).tax_remittance_report(
        ctx.tenant_id, period_id, start_date, end_date, shop_id
    )


@router.get("/pension", response_model=Dict[str, Any])
async def pension_schedule(
    period_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    shop_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    return await PayrollReportService(db).pension_schedule(
        ctx.tenant_id, period_id, start_date, end_date, shop_id
    )


@router.get("/journal", response_model=Dict[str, Any])
async def payroll_journal(
    period_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    shop_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    return await PayrollReportService(db).payroll_journal(
        ctx.tenant_id, period_id, start_date, end_date, shop_id
    )


@router.get("/statistics/{year}", response_model=Dict[str, Any])
async def pay_run_statistics(
    year: int,
    shop_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager),
):
    return await PayrollReportService(db).pay_run_statistics(ctx.tenant_id, year, shop_id)
