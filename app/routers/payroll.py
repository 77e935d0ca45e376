"""
NairaPay Core - Payroll Router

API endpoints for payroll periods, pay runs, payslips and bank schedules.
"""

import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, get_request_context, require_role
from app.models.employee import StaffRole
from app.models.payroll import PayRunStatus
from app.schemas.payroll import (
    BankScheduleResponse,
    CancelRequest,
    EmployeeRef,
    ExcludeEmployeeRequest,
    PayrollPeriodCreate,
    PayrollPeriodResponse,
    PayRunCreate,
    PayRunItemInputs,
    PayRunResponse,
    PayRunSummary,
    PayslipResponse,
    RejectRequest,
)
from app.services.bank_schedule_service import BankScheduleService
from app.services.pay_run_service import PayRunService


router = APIRouter()

manager_only = require_role(StaffRole.ASSISTANT_MANAGER)


# ===========================================
# PAYROLL PERIODS
# ===========================================

@router.post(
    "/periods",
    response_model=PayrollPeriodResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a payroll period",
)
async def create_payroll_period(
    data: PayrollPeriodCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    """Overlapping periods for the same shop are rejected with 409."""
    return await PayRunService(db).create_payroll_period(
        tenant_id=ctx.tenant_id,
        shop_id=data.shop_id,
        name=data.name,
        start_date=data.start_date,
        end_date=data.end_date,
        payment_date=data.payment_date,
        frequency=data.frequency,
        created_by_id=ctx.user_id,
    )


@router.get("/periods", response_model=List[PayrollPeriodResponse])
async def list_payroll_periods(
    shop_id: Optional[uuid.UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).list_payroll_periods(ctx.tenant_id, shop_id)


@router.get("/periods/{period_id}", response_model=PayrollPeriodResponse)
async def get_payroll_period(
    period_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).get_payroll_period(ctx.tenant_id, period_id)


# ===========================================
# PAY RUNS
# ===========================================

@router.post(
    "/runs",
    response_model=PayRunResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a pay run for a period",
)
async def create_pay_run(
    data: PayRunCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).create_pay_run(
        ctx.tenant_id, data.payroll_period_id, created_by_id=ctx.user_id
    )


@router.get("/runs", response_model=List[PayRunSummary])
async def list_pay_runs(
    shop_id: Optional[uuid.UUID] = Query(None),
    run_status: Optional[PayRunStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).list_pay_runs(ctx.tenant_id, shop_id, run_status)


@router.get("/runs/{pay_run_id}", response_model=PayRunResponse)
async def get_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).get_pay_run(ctx.tenant_id, pay_run_id)


@router.post(
    "/runs/{pay_run_id}/calculate",
    response_model=PayRunResponse,
    summary="Calculate every included item",
    description="Items that fail are marked as errors; the rest of the batch still completes.",
)
async def calculate_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).calculate_pay_run(ctx.tenant_id, pay_run_id, actor_id=ctx.user_id)


@router.put("/runs/{pay_run_id}/items/{employee_id}/inputs", response_model=PayRunResponse)
async def set_item_inputs(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    data: PayRunItemInputs,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).set_item_inputs(
        ctx.tenant_id, pay_run_id, employee_id, data.model_dump(mode="json", exclude_none=True)
    )


@router.post("/runs/{pay_run_id}/exclude", response_model=PayRunResponse)
async def exclude_employee(
    pay_run_id: uuid.UUID,
    data: ExcludeEmployeeRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).exclude_employee(
        ctx.tenant_id, pay_run_id, data.employee_id, data.reason, actor_id=ctx.user_id
    )


@router.post("/runs/{pay_run_id}/include", response_model=PayRunResponse)
async def include_employee(
    pay_run_id: uuid.UUID,
    data: EmployeeRef,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).include_employee(
        ctx.tenant_id, pay_run_id, data.employee_id, actor_id=ctx.user_id
    )


@router.post("/runs/{pay_run_id}/employees", response_model=PayRunResponse)
async def add_employee(
    pay_run_id: uuid.UUID,
    data: EmployeeRef,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).add_employee(ctx.tenant_id, pay_run_id, data.employee_id)


@router.delete("/runs/{pay_run_id}/employees/{employee_id}", response_model=PayRunResponse)
async def remove_employee(
    pay_run_id: uuid.UUID,
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).remove_employee(ctx.tenant_id, pay_run_id, employee_id)


@router.post("/runs/{pay_run_id}/submit", response_model=PayRunResponse)
async def submit_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    return await PayRunService(db).submit_for_approval(ctx.tenant_id, pay_run_id, ctx.user_id)


@router.post("/runs/{pay_run_id}/approve", response_model=PayRunResponse)
async def approve_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    """Runs flagged for owner approval need the owner role."""
    return await PayRunService(db).approve_pay_run(
        ctx.tenant_id, pay_run_id, ctx.user_id, ctx.role
    )


@router.post("/runs/{pay_run_id}/reject", response_model=PayRunResponse)
async def reject_pay_run(
    pay_run_id: uuid.UUID,
    data: RejectRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    return await PayRunService(db).reject_pay_run(
        ctx.tenant_id, pay_run_id, data.reason, actor_id=ctx.user_id
    )


@router.post("/runs/{pay_run_id}/complete", response_model=PayRunResponse)
async def complete_pay_run(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    """Issue payslips and post wage advance repayments."""
    return await PayRunService(db).complete_pay_run(ctx.tenant_id, pay_run_id, actor_id=ctx.user_id)


@router.post("/runs/{pay_run_id}/cancel", response_model=PayRunResponse)
async def cancel_pay_run(
    pay_run_id: uuid.UUID,
    data: CancelRequest,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    return await PayRunService(db).cancel_pay_run(
        ctx.tenant_id, pay_run_id, data.reason, actor_id=ctx.user_id
    )


# ===========================================
# PAYSLIPS
# ===========================================

@router.get("/runs/{pay_run_id}/payslips", response_model=List[PayslipResponse])
async def list_payslips(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).list_payslips(ctx.tenant_id, pay_run_id)


@router.get("/payslips/{payslip_id}", response_model=PayslipResponse)
async def get_payslip(
    payslip_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).get_payslip(ctx.tenant_id, payslip_id)


@router.get("/employees/{employee_id}/payslips", response_model=List[PayslipResponse])
async def employee_payslips(
    employee_id: uuid.UUID,
    year: Optional[int] = Query(None, ge=2000, le=2100),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await PayRunService(db).employee_payslips(ctx.tenant_id, employee_id, year)


# ===========================================
# BANK SCHEDULE
# ===========================================

@router.get("/runs/{pay_run_id}/bank-schedule", response_model=BankScheduleResponse)
async def get_bank_schedule(
    pay_run_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(manager_only),
):
    schedule = await BankScheduleService(db).build_bank_schedule(ctx.tenant_id, pay_run_id)
    return schedule.to_dict()


@router.get(
    "/runs/{pay_run_id}/nibss-file",
    response_class=PlainTextResponse,
    summary="Download the NIBSS salary file",
)
async def download_nibss_file(
    pay_run_id: uuid.UUID,
    file_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.GENERAL_MANAGER)),
):
    nibss = await BankScheduleService(db).generate_nibss_file(ctx.tenant_id, pay_run_id, file_date)
    return PlainTextResponse(
        nibss.content,
        headers={
            "Content-Disposition": f'attachment; filename="{nibss.filename}"',
            "X-Record-Count": str(nibss.record_count),
            "X-File-Hash": nibss.file_hash,
        },
    )
