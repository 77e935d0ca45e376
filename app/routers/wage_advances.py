"""
NairaPay Core - Wage Advance Router

Earned wage access: eligibility, requests, approval, disbursement and
repayment tracking.
"""

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, get_request_context, require_role
from app.models.employee import StaffRole
from app.models.wage_advance import WageAdvanceStatus
from app.schemas.wage_advance import (
    EligibilityResponse,
    RepaymentCreate,
    RepaymentResponse,
    ScheduledInstallmentResponse,
    WageAdvanceApprove,
    WageAdvanceCancel,
    WageAdvanceDisburse,
    WageAdvanceReject,
    WageAdvanceRequest,
    WageAdvanceResponse,
)
from app.services.wage_advance_service import WageAdvanceService


router = APIRouter()

approver = require_role(StaffRole.GENERAL_MANAGER)


@router.get("/eligibility/{employee_id}", response_model=EligibilityResponse)
async def check_eligibility(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    result = await WageAdvanceService(db).check_eligibility(ctx.tenant_id, employee_id)
    return result.to_dict()


@router.post(
    "",
    response_model=WageAdvanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Request a wage advance",
)
async def request_advance(
    data: WageAdvanceRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    """Rejected with 422 when the employee is not eligible for the amount."""
    return await WageAdvanceService(db).request_advance(
        ctx.tenant_id,
        data.employee_id,
        data.amount,
        reason=data.reason,
        installments=data.installments,
        requested_by_id=ctx.user_id,
    )


@router.get("", response_model=List[WageAdvanceResponse])
async def list_advances(
    shop_id: Optional[uuid.UUID] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    advance_status: Optional[WageAdvanceStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await WageAdvanceService(db).list_advances(
        ctx.tenant_id, shop_id=shop_id, employee_id=employee_id, status=advance_status
    )


@router.get("/stats/{shop_id}", response_model=Dict[str, Any])
async def shop_statistics(
    shop_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.ASSISTANT_MANAGER)),
):
    return await WageAdvanceService(db).shop_statistics(ctx.tenant_id, shop_id)


@router.get("/employees/{employee_id}/summary", response_model=Dict[str, Any])
async def employee_summary(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await WageAdvanceService(db).employee_summary(ctx.tenant_id, employee_id)


@router.get("/{advance_id}", response_model=WageAdvanceResponse)
async def get_advance(
    advance_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await WageAdvanceService(db).get_advance(ctx.tenant_id, advance_id)


@router.get("/{advance_id}/schedule", response_model=List[ScheduledInstallmentResponse])
async def repayment_schedule(
    advance_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    """Recorded repayments, then the installments payroll has yet to take."""
    schedule = await WageAdvanceService(db).get_repayment_schedule(ctx.tenant_id, advance_id)
    return [entry.to_dict() for entry in schedule]


@router.post("/{advance_id}/approve", response_model=WageAdvanceResponse)
async def approve_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceApprove,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(approver),
):
    return await WageAdvanceService(db).approve_advance(
        ctx.tenant_id,
        advance_id,
        approved_by_id=ctx.user_id,
        amount=data.amount,
        installments=data.installments,
    )


@router.post("/{advance_id}/reject", response_model=WageAdvanceResponse)
async def reject_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceReject,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(approver),
):
    return await WageAdvanceService(db).reject_advance(
        ctx.tenant_id, advance_id, data.reason, rejected_by_id=ctx.user_id
    )


@router.post("/{advance_id}/disburse", response_model=WageAdvanceResponse)
async def disburse_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceDisburse,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(approver),
):
    return await WageAdvanceService(db).disburse_advance(
        ctx.tenant_id,
        advance_id,
        disbursed_by_id=ctx.user_id,
        repayment_start_date=data.repayment_start_date,
    )


@router.post("/{advance_id}/cancel", response_model=WageAdvanceResponse)
async def cancel_advance(
    advance_id: uuid.UUID,
    data: WageAdvanceCancel,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await WageAdvanceService(db).cancel_advance(
        ctx.tenant_id, advance_id, data.reason, cancelled_by_id=ctx.user_id
    )


@router.post(
    "/{advance_id}/repayments",
    response_model=RepaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_repayment(
    advance_id: uuid.UUID,
    data: RepaymentCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.ASSISTANT_MANAGER)),
):
    """Amounts above the remaining balance are clamped to it."""
    return await WageAdvanceService(db).record_repayment(
        ctx.tenant_id,
        advance_id,
        data.amount,
        source="payroll" if data.pay_run_id else "manual",
        pay_run_id=data.pay_run_id,
        recorded_by_id=ctx.user_id,
    )
