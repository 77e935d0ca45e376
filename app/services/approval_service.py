"""
NairaPay Core - Approval Service

Multi-step approval chains over a closed set of approvable entities
(payroll periods, fund requests, purchase orders).

A chain is picked by entity type and amount range (highest priority wins).
Each step names the minimum staff role that may decide it; the request
advances one step per approval and the final approval moves the wrapped
entity forward.
"""

import logging
import uuid
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.approval import (
    ApprovableType,
    ApprovalAction,
    ApprovalChain,
    ApprovalHistory,
    ApprovalRequest,
    ApprovalRequestStatus,
    FundRequest,
    FundRequestStatus,
)
from app.models.base import utcnow
from app.models.employee import StaffRole
from app.models.payroll import PayrollPeriod, PayRun, PayRunStatus
from app.models.purchase_order import PurchaseOrder
from app.services.pay_run_service import PayRunService
from app.services.purchase_order_service import PurchaseOrderService
from app.utils.error_handling import (
    AuthorizationException,
    BusinessRuleException,
    ConflictException,
    ErrorCode,
    NotFoundException,
    StateTransitionError,
    ValidationException,
    validate_amount,
)

logger = logging.getLogger(__name__)


def can_user_approve(chain: ApprovalChain, step: int, role: StaffRole) -> bool:
    return role.level >= chain.required_role_for(step).level


def validate_steps(steps: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Normalise chain steps; every step needs a known role."""
    if not steps:
        raise ValidationException("An approval chain needs at least one step", field="steps")
    normalised = []
    for index, step in enumerate(steps, start=1):
        role = step.get("required_role")
        try:
            StaffRole(role)
        except ValueError:
            raise ValidationException(f"Step {index} has unknown role '{role}'", field="steps")
        normalised.append({"name": step.get("name") or f"Step {index}", "required_role": role})
    return normalised


class ApprovalService:
    """Service for approval chains and requests."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self._amount_loaders: Dict[ApprovableType, Callable[[uuid.UUID, uuid.UUID], Awaitable[Decimal]]] = {
            ApprovableType.PAYROLL_PERIOD: self._payroll_period_amount,
            ApprovableType.FUND_REQUEST: self._fund_request_amount,
            ApprovableType.PURCHASE_ORDER: self._purchase_order_amount,
        }
        self._finalizers: Dict[ApprovableType, Callable[[ApprovalRequest], Awaitable[None]]] = {
            ApprovableType.PAYROLL_PERIOD: self._finalize_payroll_period,
            ApprovableType.FUND_REQUEST: self._finalize_fund_request,
            ApprovableType.PURCHASE_ORDER: self._finalize_purchase_order,
        }
        self._rejection_handlers: Dict[ApprovableType, Callable[[ApprovalRequest, FundRequestStatus], Awaitable[None]]] = {
            ApprovableType.PAYROLL_PERIOD: self._noop,
            ApprovableType.FUND_REQUEST: self._close_fund_request,
            ApprovableType.PURCHASE_ORDER: self._noop,
        }

    # ===========================================
    # CHAINS
    # ===========================================

    async def create_chain(
        self,
        tenant_id: uuid.UUID,
        name: str,
        approvable_type: ApprovableType,
        steps: List[Dict[str, Any]],
        min_amount: Optional[Decimal] = None,
        max_amount: Optional[Decimal] = None,
        priority: int = 0,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> ApprovalChain:
        if min_amount is not None and max_amount is not None and max_amount < min_amount:
            raise ValidationException("max_amount must not be below min_amount", field="max_amount")
        chain = ApprovalChain(
            tenant_id=tenant_id,
            name=name,
            approvable_type=approvable_type,
            steps=validate_steps(steps),
            min_amount=min_amount,
            max_amount=max_amount,
            priority=priority,
            is_active=True,
            created_by_id=created_by_id,
        )
        self.db.add(chain)
        await self.db.commit()
        await self.db.refresh(chain)
        logger.info("Approval chain '%s' created for %s", name, approvable_type.value)
        return chain

    async def list_chains(
        self,
        tenant_id: uuid.UUID,
        approvable_type: Optional[ApprovableType] = None,
    ) -> List[ApprovalChain]:
        query = select(ApprovalChain).where(ApprovalChain.tenant_id == tenant_id)
        if approvable_type:
            query = query.where(ApprovalChain.approvable_type == approvable_type)
        result = await self.db.execute(query.order_by(ApprovalChain.priority.desc(), ApprovalChain.name))
        return list(result.scalars().all())

    async def find_chain(
        self,
        tenant_id: uuid.UUID,
        approvable_type: ApprovableType,
        amount: Decimal,
    ) -> Optional[ApprovalChain]:
        result = await self.db.execute(
            select(ApprovalChain)
            .where(
                and_(
                    ApprovalChain.tenant_id == tenant_id,
                    ApprovalChain.approvable_type == approvable_type,
                    ApprovalChain.is_active == True,  # noqa: E712
                    or_(ApprovalChain.min_amount.is_(None), ApprovalChain.min_amount <= amount),
                    or_(ApprovalChain.max_amount.is_(None), ApprovalChain.max_amount >= amount),
                )
            )
            .order_by(ApprovalChain.priority.desc())
        )
        return result.scalars().first()

    # ===========================================
    # FUND REQUESTS
    # ===========================================

    async def create_fund_request(
        self,
        tenant_id: uuid.UUID,
        shop_id: uuid.UUID,
        requested_by_id: uuid.UUID,
        amount: Decimal,
        purpose: str,
    ) -> FundRequest:
        fund_request = FundRequest(
            tenant_id=tenant_id,
            shop_id=shop_id,
            requested_by_id=requested_by_id,
            amount=validate_amount(amount),
            purpose=purpose,
            status=FundRequestStatus.PENDING,
        )
        self.db.add(fund_request)
        await self.db.commit()
        await self.db.refresh(fund_request)
        return fund_request

    async def get_fund_request(self, tenant_id: uuid.UUID, fund_request_id: uuid.UUID) -> FundRequest:
        result = await self.db.execute(
            select(FundRequest).where(
                and_(FundRequest.id == fund_request_id, FundRequest.tenant_id == tenant_id)
            )
        )
        fund_request = result.scalar_one_or_none()
        if fund_request is None:
            raise NotFoundException("FundRequest", fund_request_id)
        return fund_request

    # ===========================================
    # REQUESTS
    # ===========================================

    async def get_request(self, tenant_id: uuid.UUID, request_id: uuid.UUID) -> ApprovalRequest:
        result = await self.db.execute(
            select(ApprovalRequest)
            .options(selectinload(ApprovalRequest.chain), selectinload(ApprovalRequest.history))
            .where(and_(ApprovalRequest.id == request_id, ApprovalRequest.tenant_id == tenant_id))
            .execution_options(populate_existing=True)
        )
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundException("ApprovalRequest", request_id)
        return request

    async def list_requests(
        self,
        tenant_id: uuid.UUID,
        status: Optional[ApprovalRequestStatus] = None,
        approvable_type: Optional[ApprovableType] = None,
    ) -> List[ApprovalRequest]:
        query = (
            select(ApprovalRequest)
            .options(selectinload(ApprovalRequest.chain), selectinload(ApprovalRequest.history))
            .where(ApprovalRequest.tenant_id == tenant_id)
        )
        if status:
            query = query.where(ApprovalRequest.status == status)
        if approvable_type:
            query = query.where(ApprovalRequest.approvable_type == approvable_type)
        result = await self.db.execute(query.order_by(ApprovalRequest.created_at.desc()))
        return list(result.scalars().all())

    async def pending_for_role(self, tenant_id: uuid.UUID, role: StaffRole) -> List[ApprovalRequest]:
        """Pending requests whose current step this role may decide."""
        requests = await self.list_requests(tenant_id, status=ApprovalRequestStatus.PENDING)
        return [r for r in requests if can_user_approve(r.chain, r.current_step, role)]

    async def submit(
        self,
        tenant_id: uuid.UUID,
        approvable_type: ApprovableType,
        approvable_id: uuid.UUID,
        requested_by_id: uuid.UUID,
        requested_by_role: StaffRole,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        """
        Raises:
            NotFoundException: entity does not exist for the tenant
            ConflictException: entity already has a pending request
            BusinessRuleException: no chain covers the entity's amount
        """
        amount = await self._amount_loaders[approvable_type](tenant_id, approvable_id)

        existing = await self.db.execute(
            select(ApprovalRequest).where(
                and_(
                    ApprovalRequest.approvable_type == approvable_type,
                    ApprovalRequest.approvable_id == approvable_id,
                    ApprovalRequest.status == ApprovalRequestStatus.PENDING,
                )
            )
        )
        if existing.scalars().first() is not None:
            raise ConflictException(
                f"{approvable_type.value} {approvable_id} already has a pending approval request",
                resource_type="ApprovalRequest",
            )

        chain = await self.find_chain(tenant_id, approvable_type, amount)
        if chain is None:
            raise BusinessRuleException(
                f"No active approval chain covers {approvable_type.value} of {amount:,.2f}",
                rule="APPROVAL_CHAIN_REQUIRED",
                code=ErrorCode.APPROVAL_REQUIRED,
            )

        request = ApprovalRequest(
            tenant_id=tenant_id,
            chain_id=chain.id,
            approvable_type=approvable_type,
            approvable_id=approvable_id,
            amount=amount,
            status=ApprovalRequestStatus.PENDING,
            current_step=1,
            requested_by_id=requested_by_id,
        )
        request.history = [ApprovalHistory(
            step=0,
            action=ApprovalAction.SUBMITTED,
            actor_id=requested_by_id,
            actor_role=requested_by_role,
            comment=comment,
        )]
        self.db.add(request)
        await self.db.commit()
        logger.info(
            "%s %s submitted for approval via chain '%s' (%d step(s))",
            approvable_type.value, approvable_id, chain.name, chain.step_count,
        )
        return await self.get_request(tenant_id, request.id)

    async def approve(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: StaffRole,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        request = await self._pending_request(tenant_id, request_id, actor_role, "approve")
        if actor_id == request.requested_by_id:
            raise AuthorizationException("Requesters cannot approve their own request")
        step = request.current_step
        request.history.append(ApprovalHistory(
            step=step,
            action=ApprovalAction.APPROVED,
            actor_id=actor_id,
            actor_role=actor_role,
            comment=comment,
        ))
        if step >= request.chain.step_count:
            request.status = ApprovalRequestStatus.APPROVED
            request.completed_at = utcnow()
            await self._finalizers[request.approvable_type](request)
            logger.info("Approval request %s fully approved", request_id)
        else:
            request.current_step = step + 1
            logger.info("Approval request %s step %d approved by %s", request_id, step, actor_role.value)
        await self.db.commit()
        return await self.get_request(tenant_id, request_id)

    async def reject(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: StaffRole,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        request = await self._pending_request(tenant_id, request_id, actor_role, "reject")
        request.history.append(ApprovalHistory(
            step=request.current_step,
            action=ApprovalAction.REJECTED,
            actor_id=actor_id,
            actor_role=actor_role,
            comment=comment,
        ))
        request.status = ApprovalRequestStatus.REJECTED
        request.completed_at = utcnow()
        await self._rejection_handlers[request.approvable_type](request, FundRequestStatus.REJECTED)
        await self.db.commit()
        logger.info("Approval request %s rejected at step %d", request_id, request.current_step)
        return await self.get_request(tenant_id, request_id)

    async def cancel(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        actor_id: uuid.UUID,
        actor_role: StaffRole,
        comment: Optional[str] = None,
    ) -> ApprovalRequest:
        """Only the requester or the owner may withdraw a pending request."""
        request = await self.get_request(tenant_id, request_id)
        if request.status != ApprovalRequestStatus.PENDING:
            raise StateTransitionError("ApprovalRequest", request.status, "cancel")
        if actor_id != request.requested_by_id and actor_role != StaffRole.OWNER:
            raise AuthorizationException("Only the requester or the owner can cancel this request")
        request.history.append(ApprovalHistory(
            step=request.current_step,
            action=ApprovalAction.CANCELLED,
            actor_id=actor_id,
            actor_role=actor_role,
            comment=comment,
        ))
        request.status = ApprovalRequestStatus.CANCELLED
        request.completed_at = utcnow()
        await self._rejection_handlers[request.approvable_type](request, FundRequestStatus.CANCELLED)
        await self.db.commit()
        return await self.get_request(tenant_id, request_id)

    async def _pending_request(
        self,
        tenant_id: uuid.UUID,
        request_id: uuid.UUID,
        actor_role: StaffRole,
        action: str,
    ) -> ApprovalRequest:
        request = await self.get_request(tenant_id, request_id)
        if request.status != ApprovalRequestStatus.PENDING:
            raise StateTransitionError("ApprovalRequest", request.status, action)
        if not can_user_approve(request.chain, request.current_step, actor_role):
            required = request.chain.required_role_for(request.current_step)
            raise AuthorizationException(
                f"Step {request.current_step} requires {required.value} or above",
                required_role=required.value,
            )
        return request

    # ===========================================
    # APPROVABLE ENTITIES
    # ===========================================

    async def _payroll_period_amount(self, tenant_id: uuid.UUID, period_id: uuid.UUID) -> Decimal:
        period = await PayRunService(self.db).get_payroll_period(tenant_id, period_id)
        result = await self.db.execute(
            select(PayRun.total_net).where(
                and_(PayRun.payroll_period_id == period.id, PayRun.status != PayRunStatus.CANCELLED)
            )
        )
        return sum((Decimal(str(v)) for v in result.scalars().all()), Decimal("0.00"))

    async def _fund_request_amount(self, tenant_id: uuid.UUID, fund_request_id: uuid.UUID) -> Decimal:
        fund_request = await self.get_fund_request(tenant_id, fund_request_id)
        if fund_request.status != FundRequestStatus.PENDING:
            raise StateTransitionError("FundRequest", fund_request.status, "submit")
        return fund_request.amount

    async def _purchase_order_amount(self, tenant_id: uuid.UUID, order_id: uuid.UUID) -> Decimal:
        order: PurchaseOrder = await PurchaseOrderService(self.db).get_order(tenant_id, order_id)
        return order.total_amount

    async def _finalize_payroll_period(self, request: ApprovalRequest) -> None:
        period: PayrollPeriod = await PayRunService(self.db).mark_period_approved(
            request.tenant_id, request.approvable_id,
        )
        logger.info("Payroll period %s approved", period.name)

    async def _finalize_fund_request(self, request: ApprovalRequest) -> None:
        fund_request = await self.get_fund_request(request.tenant_id, request.approvable_id)
        fund_request.status = FundRequestStatus.APPROVED
        fund_request.decided_at = utcnow()

    async def _finalize_purchase_order(self, request: ApprovalRequest) -> None:
        await PurchaseOrderService(self.db).mark_approved_by_chain(request.tenant_id, request.approvable_id)

    async def _close_fund_request(self, request: ApprovalRequest, status: FundRequestStatus) -> None:
        fund_request = await self.get_fund_request(request.tenant_id, request.approvable_id)
        fund_request.status = status
        fund_request.decided_at = utcnow()

    async def _noop(self, request: ApprovalRequest, status: FundRequestStatus) -> None:
        return None
