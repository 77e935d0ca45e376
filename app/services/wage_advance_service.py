"""
NairaPay Core - Wage Advance Service

Salary advances and their amortized repayment through payroll.

Lifecycle:
    pending -> approved | rejected
    approved -> disbursed
    disbursed -> repaying -> repaid
    pending / approved / disbursed / repaying -> cancelled

Eligibility:
    max_amount = max_percentage% x estimated monthly pay
    available  = max_amount - sum(remaining balance of outstanding advances)
Requests are rejected when the employee already holds the maximum number of
outstanding advances, when nothing is available, or when the amount asked
for is above what is available.

Installments: amount_approved / installments truncated to the kobo; the
final installment takes whatever remains.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_DOWN
from typing import Any, Dict, Iterable, List, Optional

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.audit_log import AuditAction, AuditEntityType
from app.models.base import utcnow
from app.models.employee import Employee, EmployeePayrollDetail, PayType
from app.models.payroll import PayRun, PayRunItem, PayRunItemStatus, PayRunStatus
from app.models.wage_advance import (
    OUTSTANDING_ADVANCE_STATUSES,
    REPAYABLE_ADVANCE_STATUSES,
    WageAdvance,
    WageAdvanceRepayment,
    WageAdvanceStatus,
)
from app.services.deduction_aggregator import CATEGORY_WAGE_ADVANCE
from app.services.payroll_audit_service import PayrollAuditService
from app.services.payroll_profile import WageAdvanceInstallment
from app.utils.error_handling import (
    ConflictException,
    ConcurrentModificationException,
    EligibilityException,
    InvalidAmountException,
    MissingPayrollDetail,
    NotFoundException,
    StateTransitionError,
    ValidationException,
    ErrorCode,
    validate_amount,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")

HOURS_PER_MONTH = Decimal("160")
DAYS_PER_MONTH = Decimal("22")

CANCELLABLE_STATUSES = (
    WageAdvanceStatus.PENDING,
    WageAdvanceStatus.APPROVED,
    WageAdvanceStatus.DISBURSED,
    WageAdvanceStatus.REPAYING,
)

# Runs whose calculated items already deduct an installment that is only
# posted to the advance when the run completes
HOLDING_PAY_RUN_STATUSES = (
    PayRunStatus.PENDING_REVIEW,
    PayRunStatus.PENDING_APPROVAL,
    PayRunStatus.APPROVED,
    PayRunStatus.PROCESSING,
)


def estimate_monthly_pay(detail: EmployeePayrollDetail) -> Decimal:
    """Monthly pay estimate used for eligibility."""
    if detail.pay_type == PayType.HOURLY:
        return (detail.pay_amount * HOURS_PER_MONTH).quantize(CENT)
    if detail.pay_type == PayType.DAILY:
        return (detail.pay_amount * DAYS_PER_MONTH).quantize(CENT)
    return (detail.pay_amount * detail.pay_frequency.periods_per_year / 12).quantize(CENT)


def next_installment_amount(advance: WageAdvance) -> Decimal:
    """
    Installment due next.

    Regular installments are amount_approved / n rounded down to the kobo;
    the final installment absorbs the remainder. Never more than the
    remaining balance.
    """
    remaining = advance.remaining_balance
    if remaining <= 0 or advance.amount_approved is None:
        return ZERO
    installments = max(1, advance.repayment_installments or 1)
    if advance.installments_paid + 1 >= installments:
        return remaining
    regular = (advance.amount_approved / installments).quantize(CENT, rounding=ROUND_DOWN)
    return min(regular, remaining)


def first_of_next_month(today: date) -> date:
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


@dataclass(frozen=True)
class ScheduledInstallment:
    installment_number: int
    amount: Decimal
    balance_after: Decimal
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None

    @property
    def is_paid(self) -> bool:
        return self.paid_at is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "installment_number": self.installment_number,
            "amount": str(self.amount),
            "balance_after": str(self.balance_after),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "paid_at": self.paid_at.isoformat() if self.paid_at else None,
            "is_paid": self.is_paid,
        }


def repayment_schedule(advance: WageAdvance) -> List[ScheduledInstallment]:
    """
    Recorded repayments followed by the installments payroll will still take.

    Projected installments follow `next_installment_amount`: the principal
    split evenly and rounded down to the kobo, the last one taking the
    remainder. One installment falls due per month from the repayment start
    date; due dates are unknown until the advance is disbursed.
    """
    principal = advance.amount_approved if advance.amount_approved is not None else advance.amount_requested
    installments = max(1, advance.repayment_installments or 1)
    regular = (principal / installments).quantize(CENT, rounding=ROUND_DOWN)
    start = advance.repayment_start_date

    def due(number: int) -> Optional[date]:
        return start + relativedelta(months=number - 1) if start else None

    schedule = [
        ScheduledInstallment(r.installment_number, r.amount, r.balance_after, due(r.installment_number), r.repaid_at)
        for r in advance.repayments
    ]
    if advance.status in (WageAdvanceStatus.REJECTED, WageAdvanceStatus.CANCELLED):
        return schedule

    balance = max(ZERO, principal - (advance.amount_repaid or ZERO))
    number = advance.installments_paid or 0
    while balance > 0:
        number += 1
        amount = balance if number >= installments else min(regular, balance)
        balance -= amount
        schedule.append(ScheduledInstallment(number, amount, balance, due(number)))
    return schedule


@dataclass
class EligibilityResult:
    employee_id: uuid.UUID
    eligible: bool
    estimated_monthly_pay: Decimal
    max_percentage: Decimal
    max_amount: Decimal
    outstanding_balance: Decimal
    active_advances: int
    max_active_advances: int
    available_amount: Decimal
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee_id": str(self.employee_id),
            "eligible": self.eligible,
            "estimated_monthly_pay": str(self.estimated_monthly_pay),
            "max_percentage": str(self.max_percentage),
            "max_amount": str(self.max_amount),
            "outstanding_balance": str(self.outstanding_balance),
            "active_advances": self.active_advances,
            "max_active_advances": self.max_active_advances,
            "available_amount": str(self.available_amount),
            "reasons": self.reasons,
        }


class WageAdvanceService:
    """Service for wage advance requests, approval and repayment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = PayrollAuditService(db)

    # ===========================================
    # QUERIES
    # ===========================================

    async def get_advance(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        for_update: bool = False,
    ) -> WageAdvance:
        query = (
            select(WageAdvance)
            .options(selectinload(WageAdvance.repayments))
            .where(and_(WageAdvance.id == advance_id, WageAdvance.tenant_id == tenant_id))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update()
        result = await self.db.execute(query)
        advance = result.scalar_one_or_none()
        if advance is None:
            raise NotFoundException("WageAdvance", advance_id)
        return advance

    async def list_advances(
        self,
        tenant_id: uuid.UUID,
        shop_id: Optional[uuid.UUID] = None,
        employee_id: Optional[uuid.UUID] = None,
        status: Optional[WageAdvanceStatus] = None,
    ) -> List[WageAdvance]:
        query = (
            select(WageAdvance)
            .options(selectinload(WageAdvance.repayments))
            .where(WageAdvance.tenant_id == tenant_id)
        )
        if shop_id:
            query = query.where(WageAdvance.shop_id == shop_id)
        if employee_id:
            query = query.where(WageAdvance.employee_id == employee_id)
        if status:
            query = query.where(WageAdvance.status == status)
        query = query.order_by(WageAdvance.requested_at.desc())
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def _get_employee(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> Employee:
        result = await self.db.execute(
            select(Employee)
            .options(selectinload(Employee.payroll_detail), selectinload(Employee.shop))
            .where(and_(Employee.id == employee_id, Employee.tenant_id == tenant_id))
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        return employee

    async def _outstanding_advances(self, employee_id: uuid.UUID) -> List[WageAdvance]:
        result = await self.db.execute(
            select(WageAdvance).where(
                and_(
                    WageAdvance.employee_id == employee_id,
                    WageAdvance.status.in_(OUTSTANDING_ADVANCE_STATUSES),
                )
            )
        )
        return list(result.scalars().all())

    # ===========================================
    # ELIGIBILITY
    # ===========================================

    async def check_eligibility(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> EligibilityResult:
        employee = await self._get_employee(tenant_id, employee_id)
        if employee.payroll_detail is None:
            raise MissingPayrollDetail(employee_id)

        percentage = settings.wage_advance_max_percentage
        if employee.shop is not None and employee.shop.wage_advance_max_percentage is not None:
            percentage = employee.shop.wage_advance_max_percentage

        estimate = estimate_monthly_pay(employee.payroll_detail)
        max_amount = (estimate * percentage / 100).quantize(CENT)
        outstanding = await self._outstanding_advances(employee_id)
        outstanding_balance = sum((a.remaining_balance for a in outstanding), ZERO)
        available = max(ZERO, max_amount - outstanding_balance)
        max_active = settings.wage_advance_max_active

        reasons = []
        if not employee.is_active:
            reasons.append("Employee is not active")
        if len(outstanding) >= max_active:
            reasons.append(f"Employee already has {len(outstanding)} outstanding advance(s); limit is {max_active}")
        if available <= 0:
            reasons.append("No advance amount available")

        return EligibilityResult(
            employee_id=employee_id,
            eligible=not reasons,
            estimated_monthly_pay=estimate,
            max_percentage=percentage,
            max_amount=max_amount,
            outstanding_balance=outstanding_balance,
            active_advances=len(outstanding),
            max_active_advances=max_active,
            available_amount=available if not reasons else ZERO,
            reasons=reasons,
        )

    # ===========================================
    # LIFECYCLE
    # ===========================================

    async def request_advance(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        amount: Decimal,
        reason: Optional[str] = None,
        installments: Optional[int] = None,
        requested_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvance:
        """
        Create a pending advance.

        Raises:
            EligibilityException: not eligible or amount above the available amount
            ValidationException: invalid amount or installment count
        """
        amount = validate_amount(amount)
        installments = self._validate_installments(installments or settings.wage_advance_default_installments)

        eligibility = await self.check_eligibility(tenant_id, employee_id)
        if not eligibility.eligible:
            raise EligibilityException("; ".join(eligibility.reasons), details=eligibility.to_dict())
        if amount > eligibility.available_amount:
            raise EligibilityException(
                f"Requested {amount:,.2f} exceeds available {eligibility.available_amount:,.2f}",
                details=eligibility.to_dict(),
            )

        employee = await self._get_employee(tenant_id, employee_id)
        advance = WageAdvance(
            tenant_id=tenant_id,
            shop_id=employee.shop_id,
            employee_id=employee_id,
            amount_requested=amount,
            status=WageAdvanceStatus.PENDING,
            reason=reason,
            requested_at=utcnow(),
            repayment_installments=installments,
            installments_paid=0,
            amount_repaid=ZERO,
        )
        self.db.add(advance)
        await self.db.flush()
        self._audit(advance, AuditAction.ADVANCE_REQUESTED, requested_by_id, details={"amount": amount})
        await self.db.commit()
        await self.db.refresh(advance, attribute_names=["repayments"])
        logger.info("Wage advance %s requested by employee %s for %s", advance.id, employee_id, amount)
        return advance

    async def approve_advance(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        approved_by_id: uuid.UUID,
        amount: Optional[Decimal] = None,
        installments: Optional[int] = None,
    ) -> WageAdvance:
        advance = await self.get_advance(tenant_id, advance_id, for_update=True)
        self._require_status(advance, "approve", WageAdvanceStatus.PENDING)

        approved_amount = advance.amount_requested
        if amount is not None:
            approved_amount = validate_amount(amount)
            if approved_amount > advance.amount_requested:
                raise InvalidAmountException(
                    amount,
                    message=f"Approved amount cannot exceed requested amount {advance.amount_requested:,.2f}",
                )
        if installments is not None:
            advance.repayment_installments = self._validate_installments(installments)

        advance.amount_approved = approved_amount
        advance.status = WageAdvanceStatus.APPROVED
        advance.approved_by_id = approved_by_id
        advance.approved_at = utcnow()
        self._audit(
            advance, AuditAction.ADVANCE_APPROVED, approved_by_id, WageAdvanceStatus.PENDING,
            details={"amount_approved": approved_amount, "installments": advance.repayment_installments},
        )
        await self._commit(advance)
        logger.info("Wage advance %s approved for %s", advance.id, approved_amount)
        return advance

    async def reject_advance(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        reason: str,
        rejected_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvance:
        advance = await self.get_advance(tenant_id, advance_id, for_update=True)
        self._require_status(advance, "reject", WageAdvanceStatus.PENDING)
        advance.status = WageAdvanceStatus.REJECTED
        advance.rejected_at = utcnow()
        advance.rejection_reason = reason
        self._audit(advance, AuditAction.ADVANCE_REJECTED, rejected_by_id, WageAdvanceStatus.PENDING, {"reason": reason})
        await self._commit(advance)
        logger.info("Wage advance %s rejected", advance.id)
        return advance

    async def disburse_advance(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        disbursed_by_id: uuid.UUID,
        repayment_start_date: Optional[date] = None,
    ) -> WageAdvance:
        advance = await self.get_advance(tenant_id, advance_id, for_update=True)
        self._require_status(advance, "disburse", WageAdvanceStatus.APPROVED)
        advance.status = WageAdvanceStatus.DISBURSED
        advance.disbursed_by_id = disbursed_by_id
        advance.disbursed_at = utcnow()
        advance.repayment_start_date = repayment_start_date or first_of_next_month(date.today())
        self._audit(
            advance, AuditAction.ADVANCE_DISBURSED, disbursed_by_id, WageAdvanceStatus.APPROVED,
            details={"repayment_start_date": advance.repayment_start_date.isoformat()},
        )
        await self._commit(advance)
        logger.info(
            "Wage advance %s disbursed; repayment from %s over %s installment(s)",
            advance.id, advance.repayment_start_date, advance.repayment_installments,
        )
        return advance

    async def cancel_advance(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        reason: Optional[str] = None,
        cancelled_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvance:
        advance = await self.get_advance(tenant_id, advance_id, for_update=True)
        self._require_status(advance, "cancel", *CANCELLABLE_STATUSES)
        await self._require_no_pending_deduction(advance, "cancelled")
        previous_status = advance.status
        advance.status = WageAdvanceStatus.CANCELLED
        advance.cancelled_at = utcnow()
        advance.cancellation_reason = reason
        self._audit(advance, AuditAction.ADVANCE_CANCELLED, cancelled_by_id, previous_status, {"reason": reason})
        await self._commit(advance)
        logger.info("Wage advance %s cancelled", advance.id)
        return advance

    async def record_repayment(
        self,
        tenant_id: uuid.UUID,
        advance_id: uuid.UUID,
        amount: Decimal,
        source: str = "manual",
        pay_run_id: Optional[uuid.UUID] = None,
        recorded_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvanceRepayment:
        """
        Record a repayment under a row lock and commit.

        Raises:
            StateTransitionError: advance is not disbursed or repaying
            InvalidAmountException: amount is not positive
            ConflictException: an uncompleted pay run already deducts an
                installment of this advance
            ConcurrentModificationException: another writer updated the advance
        """
        advance = await self.get_advance(tenant_id, advance_id, for_update=True)
        await self._require_no_pending_deduction(advance, "repaid outside payroll")
        repayment = self.apply_repayment(advance, amount, source, pay_run_id, recorded_by_id)
        await self._commit(advance)
        return repayment

    def apply_repayment(
        self,
        advance: WageAdvance,
        amount: Decimal,
        source: str = "payroll",
        pay_run_id: Optional[uuid.UUID] = None,
        recorded_by_id: Optional[uuid.UUID] = None,
    ) -> WageAdvanceRepayment:
        """
        Append a repayment to an advance loaded in this session, without
        committing. The amount is clamped to the remaining balance.
        """
        self._require_status(advance, "repay", *REPAYABLE_ADVANCE_STATUSES)
        previous_status = advance.status
        amount = validate_amount(amount)
        applied = min(amount, advance.remaining_balance)
        if applied <= 0:
            raise InvalidAmountException(amount, message="Advance has no remaining balance")

        advance.amount_repaid = (advance.amount_repaid or ZERO) + applied
        advance.installments_paid = (advance.installments_paid or 0) + 1
        balance_after = advance.remaining_balance
        repayment = WageAdvanceRepayment(
            wage_advance_id=advance.id,
            installment_number=advance.installments_paid,
            amount=applied,
            balance_after=balance_after,
            repaid_at=utcnow(),
            source=source,
            pay_run_id=pay_run_id,
            recorded_by_id=recorded_by_id,
        )
        advance.repayments.append(repayment)

        if balance_after == 0:
            advance.status = WageAdvanceStatus.REPAID
            advance.fully_repaid_at = utcnow()
            logger.info("Wage advance %s fully repaid", advance.id)
        else:
            advance.status = WageAdvanceStatus.REPAYING
        self._audit(
            advance, AuditAction.ADVANCE_REPAYMENT, recorded_by_id, previous_status,
            details={"amount": applied, "balance_after": balance_after, "source": source, "pay_run_id": pay_run_id},
        )
        if applied < amount:
            logger.info("Repayment on advance %s clamped from %s to %s", advance.id, amount, applied)
        return repayment

    # ===========================================
    # PAYROLL INTEGRATION
    # ===========================================

    async def due_for_payroll(
        self,
        employee_ids: Iterable[uuid.UUID],
        pay_date: date,
    ) -> Dict[uuid.UUID, List[WageAdvanceInstallment]]:
        """Installments due in a pay run, keyed by employee."""
        employee_ids = list(employee_ids)
        if not employee_ids:
            return {}
        result = await self.db.execute(
            select(WageAdvance)
            .where(
                and_(
                    WageAdvance.employee_id.in_(employee_ids),
                    WageAdvance.status.in_(REPAYABLE_ADVANCE_STATUSES),
                    WageAdvance.repayment_start_date <= pay_date,
                )
            )
            .order_by(WageAdvance.disbursed_at)
        )
        due: Dict[uuid.UUID, List[WageAdvanceInstallment]] = {}
        for advance in result.scalars().all():
            amount = next_installment_amount(advance)
            if amount > 0:
                due.setdefault(advance.employee_id, []).append(
                    WageAdvanceInstallment(advance.id, amount, advance.remaining_balance)
                )
        return due

    async def pending_pay_run_deduction(self, advance: WageAdvance) -> Optional[str]:
        """Reference of a calculated, not yet completed pay run deducting from the advance."""
        result = await self.db.execute(
            select(PayRunItem.deductions_breakdown, PayRun.reference)
            .join(PayRun, PayRunItem.pay_run_id == PayRun.id)
            .where(
                and_(
                    PayRunItem.employee_id == advance.employee_id,
                    PayRunItem.status == PayRunItemStatus.CALCULATED,
                    PayRun.status.in_(HOLDING_PAY_RUN_STATUSES),
                )
            )
        )
        advance_ref = str(advance.id)
        for breakdown, reference in result.all():
            for line in (breakdown or {}).get("lines", []):
                if (
                    line.get("category") == CATEGORY_WAGE_ADVANCE
                    and line.get("reference") == advance_ref
                    and Decimal(line["applied"]) > 0
                ):
                    return reference
        return None

    async def _require_no_pending_deduction(self, advance: WageAdvance, action: str) -> None:
        reference = await self.pending_pay_run_deduction(advance)
        if reference is not None:
            raise ConflictException(
                f"Advance cannot be {action} while pay run {reference} deducts an installment; "
                "complete or cancel the run first",
                resource_type="WageAdvance",
                details={"pay_run_reference": reference, "wage_advance_id": str(advance.id)},
            )

    # ===========================================
    # REPORTING
    # ===========================================

    async def employee_summary(self, tenant_id: uuid.UUID, employee_id: uuid.UUID) -> Dict[str, Any]:
        advances = await self.list_advances(tenant_id, employee_id=employee_id)
        outstanding = [a for a in advances if a.status in OUTSTANDING_ADVANCE_STATUSES]
        return {
            "employee_id": str(employee_id),
            "total_advances": len(advances),
            "outstanding_advances": len(outstanding),
            "outstanding_balance": str(sum((a.remaining_balance for a in outstanding), ZERO)),
            "total_repaid": str(sum((a.amount_repaid or ZERO for a in advances), ZERO)),
        }

    async def get_repayment_schedule(
        self, tenant_id: uuid.UUID, advance_id: uuid.UUID,
    ) -> List[ScheduledInstallment]:
        return repayment_schedule(await self.get_advance(tenant_id, advance_id))

    async def shop_statistics(self, tenant_id: uuid.UUID, shop_id: uuid.UUID) -> Dict[str, Any]:
        result = await self.db.execute(
            select(
                WageAdvance.status,
                func.count(WageAdvance.id),
                func.coalesce(func.sum(WageAdvance.amount_approved), 0),
                func.coalesce(func.sum(WageAdvance.amount_repaid), 0),
            )
            .where(and_(WageAdvance.tenant_id == tenant_id, WageAdvance.shop_id == shop_id))
            .group_by(WageAdvance.status)
        )
        by_status: Dict[str, int] = {}
        total_disbursed = ZERO
        total_outstanding = ZERO
        for status, count, approved, repaid in result.all():
            by_status[status.value] = count
            approved = Decimal(str(approved))
            repaid = Decimal(str(repaid))
            if status in (WageAdvanceStatus.DISBURSED, WageAdvanceStatus.REPAYING, WageAdvanceStatus.REPAID):
                total_disbursed += approved
            if status in REPAYABLE_ADVANCE_STATUSES:
                total_outstanding += approved - repaid
        return {
            "shop_id": str(shop_id),
            "counts_by_status": by_status,
            "total_disbursed": str(total_disbursed.quantize(CENT)),
            "total_outstanding": str(total_outstanding.quantize(CENT)),
        }

    # ===========================================
    # HELPERS
    # ===========================================

    @staticmethod
    def _validate_installments(installments: int) -> int:
        maximum = settings.wage_advance_max_installments
        if installments < 1 or installments > maximum:
            raise ValidationException(
                f"Installments must be between 1 and {maximum}",
                field="installments",
                code=ErrorCode.INVALID_INSTALLMENTS,
            )
        return installments

    def _audit(
        self,
        advance: WageAdvance,
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        from_status: Optional[WageAdvanceStatus] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.audit.record(
            advance.tenant_id, AuditEntityType.WAGE_ADVANCE, advance.id, action, actor_id,
            from_status=from_status, to_status=advance.status, details=details,
        )

    @staticmethod
    def _require_status(advance: WageAdvance, action: str, *allowed: WageAdvanceStatus) -> None:
        if advance.status not in allowed:
            raise StateTransitionError("WageAdvance", advance.status, action)

    async def _commit(self, advance: WageAdvance) -> None:
        advance_id = advance.id
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentModificationException("WageAdvance", advance_id)
        await self.db.refresh(advance, attribute_names=["repayments"])
