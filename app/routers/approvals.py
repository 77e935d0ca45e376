"""
NairaPay Core - Approvals Router

Approval chains, approval requests and their decisions, plus the fund
requests that travel through them.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import RequestContext, get_request_context, require_role
from app.models.approval import ApprovableType, ApprovalRequestStatus
from app.models.employee import StaffRole
from app.schemas.approval import (
    ApprovalChainCreate,
    ApprovalChainResponse,
    ApprovalDecision,
    ApprovalRequestResponse,
    ApprovalSubmit,
    FundRequestCreate,
    FundRequestResponse,
)
from app.services.approval_service import ApprovalService


router = APIRouter()


# ===========================================
# CHAINS
# ===========================================

@router.post(
    "/chains",
    response_model=ApprovalChainResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_chain(
    data: ApprovalChainCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(require_role(StaffRole.OWNER)),
):
    return await ApprovalService(db).create_chain(
        tenant_id=ctx.tenant_id,
        name=data.name,
        approvable_type=data.approvable_type,
        steps=[step.model_dump(mode="json") for step in data.steps],
        min_amount=data.min_amount,
        max_amount=data.max_amount,
        priority=data.priority,
        created_by_id=ctx.user_id,
    )


@router.get("/chains", response_model=List[ApprovalChainResponse])
async def list_chains(
    approvable_type: Optional[ApprovableType] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).list_chains(ctx.tenant_id, approvable_type)


# ===========================================
# REQUESTS
# ===========================================

@router.post(
    "/requests",
    response_model=ApprovalRequestResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Submit an entity for approval",
)
async def submit_for_approval(
    data: ApprovalSubmit,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).submit(
        ctx.tenant_id,
        data.approvable_type,
        data.approvable_id,
        requested_by_id=ctx.user_id,
        requested_by_role=ctx.role,
        comment=data.comment,
    )


@router.get("/requests", response_model=List[ApprovalRequestResponse])
async def list_requests(
    request_status: Optional[ApprovalRequestStatus] = Query(None, alias="status"),
    approvable_type: Optional[ApprovableType] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).list_requests(ctx.tenant_id, request_status, approvable_type)


@router.get("/requests/pending", response_model=List[ApprovalRequestResponse])
async def pending_for_me(
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    """Pending requests whose current step the caller's role may decide."""
    return await ApprovalService(db).pending_for_role(ctx.tenant_id, ctx.role)


@router.get("/requests/{request_id}", response_model=ApprovalRequestResponse)
async def get_request(
    request_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).get_request(ctx.tenant_id, request_id)


@router.post("/requests/{request_id}/approve", response_model=ApprovalRequestResponse)
async def approve_request(
    request_id: uuid.UUID,
    data: ApprovalDecision,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).approve(
        ctx.tenant_id, request_id, ctx.user_id, ctx.role, data.comment
    )


@router.post("/requests/{request_id}/reject", response_model=ApprovalRequestResponse)
async def reject_request(
    request_id: uuid.UUID,
    data: ApprovalDecision,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).reject(
        ctx.tenant_id, request_id, ctx.user_id, ctx.role, data.comment
    )


@router.post("/requests/{request_id}/cancel", response_model=ApprovalRequestResponse)
async def cancel_request(
    request_id: uuid.UUID,
    data: ApprovalDecision,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).cancel(
        ctx.tenant_id, request_id, ctx.user_id, ctx.role, data.comment
    )


# ===========================================
# FUND REQUESTS
# ===========================================

@router.post(
    "/fund-requests",
    response_model=FundRequestResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fund_request(
    data: FundRequestCreate,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).create_fund_request(
        ctx.tenant_id, data.shop_id, ctx.user_id, data.amount, data.purpose
    )


@router.get("/fund-requests/{fund_request_id}", response_model=FundRequestResponse)
async def get_fund_request(
    fund_request_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
    ctx: RequestContext = Depends(get_request_context),
):
    return await ApprovalService(db).get_fund_request(ctx.tenant_id, fund_request_id)
