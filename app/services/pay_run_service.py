"""
NairaPay Core - Pay Run Service

Payroll periods and the pay run state machine:

    draft -> calculating -> pending_review -> pending_approval -> approved
          -> processing -> completed
    cancelled from any non-terminal state

Calculation fans out one job per employee over a thread pool. Each job gets
only frozen inputs (profile, tax table snapshot, shop policy, period,
installments) and returns an outcome; nothing shared is mutated until the
fan-in, which writes the items and then computes run totals from the
calculated items only. A failure for one employee marks that item as
`error` and never aborts the batch.
"""

import asyncio
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, extract, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from sqlalchemy.orm.exc import StaleDataError

from app.config import settings
from app.models.audit_log import AuditAction, AuditEntityType
from app.models.base import utcnow
from app.models.employee import Employee, PayFrequency, StaffRole
from app.models.payroll import (
    PayrollPeriod,
    PayrollPeriodStatus,
    PayRun,
    PayRunItem,
    PayRunItemStatus,
    PayRunStatus,
    Payslip,
)
from app.models.tax_table import TaxLawVersion
from app.models.tenant import Shop
from app.models.wage_advance import WageAdvance
from app.services.deduction_aggregator import CATEGORY_WAGE_ADVANCE
from app.services.payroll_profile import (
    EarningsInput,
    PayrollProfile,
    ShopPolicy,
    WageAdvanceInstallment,
)
from app.services.payroll_audit_service import PayrollAuditService
from app.services.payslip_compositor import ComposedPayslip, PayslipCompositor, PeriodWindow
from app.services.tax_calculators.tax_table_resolver import TaxTableResolver, TaxTableSnapshot
from app.services.wage_advance_service import WageAdvanceService
from app.utils.error_handling import (
    AppException,
    AuthorizationException,
    BusinessRuleException,
    ConcurrentModificationException,
    ConflictException,
    ConfigurationError,
    ErrorCode,
    InvalidDateRangeException,
    NotFoundException,
    StateTransitionError,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")

EDITABLE_RUN_STATUSES = (PayRunStatus.DRAFT, PayRunStatus.PENDING_REVIEW)


# ===========================================
# PURE CALCULATION (runs in worker threads)
# ===========================================

@dataclass(frozen=True)
class ItemContext:
    """Frozen inputs for one pay run item."""
    item_id: uuid.UUID
    employee_id: uuid.UUID
    period: PeriodWindow
    policy: ShopPolicy
    profile: Optional[PayrollProfile] = None
    table: Optional[TaxTableSnapshot] = None
    inputs: EarningsInput = field(default_factory=EarningsInput)
    installments: Tuple[WageAdvanceInstallment, ...] = ()
    error: Optional[AppException] = None


@dataclass(frozen=True)
class ItemOutcome:
    item_id: uuid.UUID
    employee_id: uuid.UUID
    payslip: Optional[ComposedPayslip] = None
    error: Optional[str] = None


def compute_pay_run_item(ctx: ItemContext) -> ItemOutcome:
    """Calculate one employee. Never raises."""
    try:
        if ctx.error is not None:
            raise ctx.error
        payslip = PayslipCompositor(ctx.table, ctx.policy).compose(
            ctx.profile, ctx.period, ctx.inputs, ctx.installments,
        )
        return ItemOutcome(ctx.item_id, ctx.employee_id, payslip=payslip)
    except AppException as exc:
        logger.warning("Pay run item %s (employee %s) failed: %s", ctx.item_id, ctx.employee_id, exc.message)
        return ItemOutcome(ctx.item_id, ctx.employee_id, error=exc.message)
    except Exception as exc:
        logger.error(
            "Unexpected error calculating pay run item %s (employee %s)",
            ctx.item_id, ctx.employee_id, exc_info=True,
        )
        return ItemOutcome(ctx.item_id, ctx.employee_id, error=f"Calculation failed: {exc}")


@dataclass(frozen=True)
class RunTotals:
    employee_count: int = 0
    calculated_count: int = 0
    error_count: int = 0
    excluded_count: int = 0
    pending_count: int = 0
    total_gross: Decimal = ZERO
    total_deductions: Decimal = ZERO
    total_net: Decimal = ZERO
    total_tax: Decimal = ZERO
    total_employer_contributions: Decimal = ZERO


def summarize_items(items: Iterable[Any]) -> RunTotals:
    """Fan-in: counts per status and money totals over calculated items only."""
    counts = {status: 0 for status in PayRunItemStatus}
    gross = deductions = net = tax = employer = ZERO
    total = 0
    for item in items:
        total += 1
        counts[item.status] += 1
        if item.status != PayRunItemStatus.CALCULATED:
            continue
        gross += item.gross_pay
        deductions += item.total_deductions
        net += item.net_pay
        tax += item.tax_amount
        employer += item.employer_contributions
    return RunTotals(
        employee_count=total,
        calculated_count=counts[PayRunItemStatus.CALCULATED],
        error_count=counts[PayRunItemStatus.ERROR],
        excluded_count=counts[PayRunItemStatus.EXCLUDED],
        pending_count=counts[PayRunItemStatus.PENDING],
        total_gross=gross,
        total_deductions=deductions,
        total_net=net,
        total_tax=tax,
        total_employer_contributions=employer,
    )


def owner_approval_reasons(
    roles: Iterable[StaffRole],
    total_net: Decimal,
    threshold: Optional[Decimal],
) -> List[str]:
    reasons = []
    if any(role == StaffRole.GENERAL_MANAGER for role in roles):
        reasons.append("Includes a general manager")
    if threshold is not None and total_net > threshold:
        reasons.append(f"Total net pay {total_net:,.2f} exceeds {threshold:,.2f}")
    return reasons


# ===========================================
# SERVICE
# ===========================================

class PayRunService:
    """
    Service for payroll periods, pay runs and payslips.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.wage_advances = WageAdvanceService(db)
        self.audit = PayrollAuditService(db)

    # ===========================================
    # PAYROLL PERIODS
    # ===========================================

    async def create_payroll_period(
        self,
        tenant_id: uuid.UUID,
        shop_id: uuid.UUID,
        name: str,
        start_date: date,
        end_date: date,
        payment_date: date,
        frequency: PayFrequency = PayFrequency.MONTHLY,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> PayrollPeriod:
        """
        Raises:
            InvalidDateRangeException: end before start
            ConflictException: overlaps another period of the shop
        """
        if end_date < start_date:
            raise InvalidDateRangeException(str(start_date), str(end_date))
        await self._get_shop(tenant_id, shop_id)

        overlap = await self.db.execute(
            select(PayrollPeriod).where(
                and_(
                    PayrollPeriod.shop_id == shop_id,
                    PayrollPeriod.start_date <= end_date,
                    PayrollPeriod.end_date >= start_date,
                )
            )
        )
        existing = overlap.scalars().first()
        if existing is not None:
            raise ConflictException(
                f"Period overlaps '{existing.name}' ({existing.start_date} to {existing.end_date})",
                resource_type="PayrollPeriod",
                code=ErrorCode.PERIOD_OVERLAP,
                details={"existing_period_id": str(existing.id)},
            )

        period = PayrollPeriod(
            tenant_id=tenant_id,
            shop_id=shop_id,
            name=name,
            start_date=start_date,
            end_date=end_date,
            payment_date=payment_date,
            frequency=frequency,
            status=PayrollPeriodStatus.OPEN,
            created_by_id=created_by_id,
        )
        self.db.add(period)
        await self.db.commit()
        await self.db.refresh(period)
        logger.info("Payroll period %s created for shop %s", period.name, shop_id)
        return period

    async def get_payroll_period(self, tenant_id: uuid.UUID, period_id: uuid.UUID) -> PayrollPeriod:
        result = await self.db.execute(
            select(PayrollPeriod).where(
                and_(PayrollPeriod.id == period_id, PayrollPeriod.tenant_id == tenant_id)
            )
        )
        period = result.scalar_one_or_none()
        if period is None:
            raise NotFoundException("PayrollPeriod", period_id)
        return period

    async def list_payroll_periods(
        self,
        tenant_id: uuid.UUID,
        shop_id: Optional[uuid.UUID] = None,
    ) -> List[PayrollPeriod]:
        query = select(PayrollPeriod).where(PayrollPeriod.tenant_id == tenant_id)
        if shop_id:
            query = query.where(PayrollPeriod.shop_id == shop_id)
        result = await self.db.execute(query.order_by(PayrollPeriod.start_date.desc()))
        return list(result.scalars().all())

    # ===========================================
    # PAY RUNS
    # ===========================================

    async def create_pay_run(
        self,
        tenant_id: uuid.UUID,
        period_id: uuid.UUID,
        created_by_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """
        Create a draft run with one pending item per eligible employee.

        Eligible: active employees of the shop whose payroll detail dates
        overlap the period. Employees without a payroll detail are included
        so the calculation reports them.
        """
        period = await self.get_payroll_period(tenant_id, period_id)
        if period.status == PayrollPeriodStatus.CLOSED:
            raise StateTransitionError("PayrollPeriod", period.status, "create a pay run for")

        existing = await self.db.execute(
            select(PayRun).where(
                and_(
                    PayRun.payroll_period_id == period_id,
                    PayRun.status != PayRunStatus.CANCELLED,
                )
            )
        )
        if existing.scalars().first() is not None:
            raise ConflictException(
                "Payroll period already has an active pay run",
                resource_type="PayRun",
                details={"payroll_period_id": str(period_id)},
            )

        count_result = await self.db.execute(
            select(func.count())
            .select_from(PayRun)
            .join(PayrollPeriod, PayRun.payroll_period_id == PayrollPeriod.id)
            .where(
                and_(
                    PayRun.tenant_id == tenant_id,
                    extract("year", PayrollPeriod.start_date) == period.start_date.year,
                )
            )
        )
        sequence = (count_result.scalar() or 0) + 1
        reference = f"PAY-{period.start_date.year}-{period.start_date.month:02d}-{sequence:03d}"

        employees = await self._eligible_employees(period)
        pay_run = PayRun(
            tenant_id=tenant_id,
            shop_id=period.shop_id,
            payroll_period_id=period.id,
            reference=reference,
            status=PayRunStatus.DRAFT,
            employee_count=len(employees),
            created_by_id=created_by_id,
        )
        pay_run.items = [
            PayRunItem(employee_id=employee.id, status=PayRunItemStatus.PENDING)
            for employee in employees
        ]
        self.db.add(pay_run)
        period.status = PayrollPeriodStatus.PROCESSING
        await self.db.flush()
        self._audit(
            pay_run, AuditAction.PAY_RUN_CREATED, created_by_id,
            details={"employee_count": len(employees), "payroll_period": period.name},
        )
        await self.db.commit()
        logger.info("Pay run %s created with %d employee(s)", reference, len(employees))
        return await self.get_pay_run(tenant_id, pay_run.id)

    async def _eligible_employees(self, period: PayrollPeriod) -> List[Employee]:
        result = await self.db.execute(
            select(Employee)
            .options(selectinload(Employee.payroll_detail))
            .where(
                and_(
                    Employee.shop_id == period.shop_id,
                    Employee.is_active == True,  # noqa: E712
                )
            )
            .order_by(Employee.last_name, Employee.first_name)
        )
        return [
            e for e in result.scalars().all()
            if e.payroll_detail is None or e.payroll_detail.is_active_between(period.start_date, period.end_date)
        ]

    async def get_pay_run(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> PayRun:
        result = await self.db.execute(
            select(PayRun)
            .options(
                selectinload(PayRun.items).selectinload(PayRunItem.employee),
                selectinload(PayRun.payroll_period),
            )
            .where(and_(PayRun.id == pay_run_id, PayRun.tenant_id == tenant_id))
            .execution_options(populate_existing=True)
        )
        pay_run = result.scalar_one_or_none()
        if pay_run is None:
            raise NotFoundException("PayRun", pay_run_id)
        return pay_run

    async def list_pay_runs(
        self,
        tenant_id: uuid.UUID,
        shop_id: Optional[uuid.UUID] = None,
        status: Optional[PayRunStatus] = None,
    ) -> List[PayRun]:
        query = select(PayRun).where(PayRun.tenant_id == tenant_id)
        if shop_id:
            query = query.where(PayRun.shop_id == shop_id)
        if status:
            query = query.where(PayRun.status == status)
        result = await self.db.execute(query.order_by(PayRun.created_at.desc()))
        return list(result.scalars().all())

    # ===========================================
    # CALCULATION
    # ===========================================

    async def calculate_pay_run(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """
        Calculate every non-excluded item.

        Raises:
            StateTransitionError: run is not draft or pending_review
                (a completed run is never recalculated)
        """
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "calculate", *EDITABLE_RUN_STATUSES)
        previous_status = pay_run.status
        pay_run.status = PayRunStatus.CALCULATING
        await self._commit(pay_run)

        try:
            contexts = await self._build_contexts(pay_run)
            outcomes = await self._fan_out(contexts)
            self._apply_outcomes(pay_run, outcomes)
            await self._refresh_totals(pay_run)
            pay_run.status = PayRunStatus.PENDING_REVIEW
            pay_run.calculated_at = utcnow()
            self._audit(
                pay_run, AuditAction.PAY_RUN_CALCULATED, actor_id, from_status=previous_status,
                details=self._totals_snapshot(pay_run),
            )
            await self._commit(pay_run)
        except Exception:
            logger.error("Pay run %s calculation aborted", pay_run_id, exc_info=True)
            await self.db.rollback()
            pay_run = await self.get_pay_run(tenant_id, pay_run_id)
            pay_run.status = previous_status
            await self._commit(pay_run)
            raise

        logger.info(
            "Pay run %s calculated: %d calculated, %d error, %d excluded",
            pay_run.reference, pay_run.calculated_count, pay_run.error_count, pay_run.excluded_count,
        )
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def _build_contexts(self, pay_run: PayRun) -> List[ItemContext]:
        period = pay_run.payroll_period
        shop = await self._get_shop(pay_run.tenant_id, pay_run.shop_id)
        policy = ShopPolicy.from_shop(shop)
        window = PeriodWindow(period.start_date, period.end_date, period.payment_date, period.frequency)

        table: Optional[TaxTableSnapshot] = None
        table_error: Optional[ConfigurationError] = None
        try:
            table = await TaxTableResolver(self.db).resolve(policy.jurisdiction, period.payment_date, pay_run.tenant_id)
        except ConfigurationError as exc:
            logger.warning("Pay run %s has no usable tax table: %s", pay_run.reference, exc.message)
            table_error = exc

        items = [i for i in pay_run.items if i.status != PayRunItemStatus.EXCLUDED]
        employees = await self._load_employees([i.employee_id for i in items])
        installments = await self.wage_advances.due_for_payroll(employees.keys(), period.payment_date)

        contexts = []
        for item in items:
            employee = employees.get(item.employee_id)
            profile, error = None, table_error
            try:
                profile = PayrollProfile.from_employee(employee)
            except ConfigurationError as exc:
                error = exc
            contexts.append(ItemContext(
                item_id=item.id,
                employee_id=item.employee_id,
                period=window,
                policy=policy,
                profile=profile,
                table=table,
                inputs=EarningsInput.from_dict(item.inputs),
                installments=tuple(installments.get(item.employee_id, ())),
                error=error,
            ))
        return contexts

    async def _load_employees(self, employee_ids: Sequence[uuid.UUID]) -> Dict[uuid.UUID, Employee]:
        if not employee_ids:
            return {}
        result = await self.db.execute(
            select(Employee)
            .options(
                selectinload(Employee.payroll_detail),
                selectinload(Employee.tax_settings),
                selectinload(Employee.custom_deductions),
            )
            .where(Employee.id.in_(employee_ids))
            .execution_options(populate_existing=True)
        )
        return {e.id: e for e in result.scalars().all()}

    @staticmethod
    async def _fan_out(contexts: List[ItemContext]) -> List[ItemOutcome]:
        if not contexts:
            return []
        loop = asyncio.get_running_loop()
        workers = max(1, min(settings.payroll_calculation_workers, len(contexts)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="payrun") as pool:
            return await asyncio.gather(
                *(loop.run_in_executor(pool, compute_pay_run_item, ctx) for ctx in contexts)
            )

    @staticmethod
    def _apply_outcomes(pay_run: PayRun, outcomes: List[ItemOutcome]) -> None:
        items = {item.id: item for item in pay_run.items}
        now = utcnow()
        for outcome in outcomes:
            item = items[outcome.item_id]
            item.reset()
            if outcome.error is not None:
                item.status = PayRunItemStatus.ERROR
                item.error_message = outcome.error
                continue
            payslip = outcome.payslip
            item.status = PayRunItemStatus.CALCULATED
            item.gross_pay = payslip.gross_pay
            item.total_deductions = payslip.total_deductions
            item.net_pay = payslip.net_pay
            item.tax_amount = payslip.tax_amount
            item.employer_contributions = payslip.employer_contributions
            item.earnings_breakdown = payslip.earnings.to_dict()
            item.deductions_breakdown = payslip.deductions_breakdown()
            item.tax_breakdown = payslip.tax.to_dict()
            item.warnings = payslip.warnings or None
            item.tax_table_id = payslip.tax.table_id
            item.calculated_at = now

    async def _refresh_totals(self, pay_run: PayRun) -> None:
        totals = summarize_items(pay_run.items)
        pay_run.employee_count = totals.employee_count
        pay_run.calculated_count = totals.calculated_count
        pay_run.error_count = totals.error_count
        pay_run.excluded_count = totals.excluded_count
        pay_run.total_gross = totals.total_gross
        pay_run.total_deductions = totals.total_deductions
        pay_run.total_net = totals.total_net
        pay_run.total_tax = totals.total_tax
        pay_run.total_employer_contributions = totals.total_employer_contributions

        shop = await self._get_shop(pay_run.tenant_id, pay_run.shop_id)
        threshold = shop.owner_approval_threshold or settings.payroll_owner_approval_threshold
        roles = [i.employee.role for i in pay_run.items if i.status == PayRunItemStatus.CALCULATED]
        reasons = owner_approval_reasons(roles, totals.total_net, threshold)
        pay_run.requires_owner_approval = bool(reasons)
        pay_run.owner_approval_reason = "; ".join(reasons) or None

    # ===========================================
    # ITEM MAINTENANCE
    # ===========================================

    async def set_item_inputs(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        employee_id: uuid.UUID,
        inputs: Dict[str, Any],
    ) -> PayRun:
        """Store hours/days/commission/bonus/allowances; the item needs recalculation."""
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "edit", *EDITABLE_RUN_STATUSES)
        item = self._find_item(pay_run, employee_id)
        item.inputs = EarningsInput.from_dict(inputs).to_dict()
        if item.status != PayRunItemStatus.EXCLUDED:
            item.reset()
        await self._refresh_totals(pay_run)
        await self._commit(pay_run)
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def exclude_employee(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        employee_id: uuid.UUID,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "exclude an employee from", *EDITABLE_RUN_STATUSES)
        item = self._find_item(pay_run, employee_id)
        item.reset()
        item.status = PayRunItemStatus.EXCLUDED
        item.exclusion_reason = reason
        await self._refresh_totals(pay_run)
        self._audit(
            pay_run, AuditAction.EMPLOYEE_EXCLUDED, actor_id,
            details={"employee_id": employee_id, "reason": reason},
        )
        await self._commit(pay_run)
        logger.info("Employee %s excluded from pay run %s", employee_id, pay_run.reference)
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def include_employee(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        employee_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "include an employee in", *EDITABLE_RUN_STATUSES)
        item = self._find_item(pay_run, employee_id)
        if item.status != PayRunItemStatus.EXCLUDED:
            raise StateTransitionError("PayRunItem", item.status, "include")
        item.reset()
        self._audit(pay_run, AuditAction.EMPLOYEE_INCLUDED, actor_id, details={"employee_id": employee_id})
        await self._refresh_totals(pay_run)
        await self._commit(pay_run)
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def add_employee(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "add an employee to", *EDITABLE_RUN_STATUSES)
        if any(i.employee_id == employee_id for i in pay_run.items):
            raise ConflictException("Employee is already in this pay run", resource_type="PayRunItem")

        result = await self.db.execute(
            select(Employee).where(
                and_(
                    Employee.id == employee_id,
                    Employee.tenant_id == tenant_id,
                    Employee.shop_id == pay_run.shop_id,
                )
            )
        )
        employee = result.scalar_one_or_none()
        if employee is None:
            raise NotFoundException("Employee", employee_id)
        if not employee.is_active:
            raise BusinessRuleException("Inactive employees cannot be paid", rule="ACTIVE_EMPLOYEE_REQUIRED")

        item = PayRunItem(employee_id=employee_id, status=PayRunItemStatus.PENDING)
        item.employee = employee
        pay_run.items.append(item)
        await self._refresh_totals(pay_run)
        await self._commit(pay_run)
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def remove_employee(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        employee_id: uuid.UUID,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "remove an employee from", *EDITABLE_RUN_STATUSES)
        item = self._find_item(pay_run, employee_id)
        pay_run.items.remove(item)
        await self._refresh_totals(pay_run)
        await self._commit(pay_run)
        return await self.get_pay_run(tenant_id, pay_run_id)

    # ===========================================
    # APPROVAL
    # ===========================================

    async def submit_for_approval(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        submitted_by_id: uuid.UUID,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "submit", PayRunStatus.PENDING_REVIEW)
        totals = summarize_items(pay_run.items)
        if totals.error_count:
            raise BusinessRuleException(
                f"{totals.error_count} item(s) have errors; fix or exclude them before submitting",
                rule="NO_ERROR_ITEMS",
                details={"error_count": totals.error_count},
            )
        if totals.pending_count:
            raise BusinessRuleException(
                f"{totals.pending_count} item(s) need recalculation",
                rule="ALL_ITEMS_CALCULATED",
                details={"pending_count": totals.pending_count},
            )
        if not totals.calculated_count:
            raise BusinessRuleException("Pay run has no calculated items", rule="CALCULATED_ITEMS_REQUIRED")

        pay_run.status = PayRunStatus.PENDING_APPROVAL
        pay_run.submitted_at = utcnow()
        pay_run.submitted_by_id = submitted_by_id
        self._audit(
            pay_run, AuditAction.PAY_RUN_SUBMITTED, submitted_by_id, from_status=PayRunStatus.PENDING_REVIEW,
            details=self._totals_snapshot(pay_run),
        )
        await self._commit(pay_run)
        logger.info("Pay run %s submitted for approval", pay_run.reference)
        return pay_run

    async def reject_pay_run(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        reason: str,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "reject", PayRunStatus.PENDING_APPROVAL)
        pay_run.status = PayRunStatus.PENDING_REVIEW
        pay_run.rejected_at = utcnow()
        pay_run.rejection_reason = reason
        self._audit(
            pay_run, AuditAction.PAY_RUN_REJECTED, actor_id, from_status=PayRunStatus.PENDING_APPROVAL,
            details={"reason": reason},
        )
        await self._commit(pay_run)
        logger.info("Pay run %s rejected: %s", pay_run.reference, reason)
        return pay_run

    async def approve_pay_run(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        approved_by_id: uuid.UUID,
        approver_role: StaffRole,
    ) -> PayRun:
        """
        Raises:
            AuthorizationException: approver below general manager, or not the
                owner when the run requires owner approval
        """
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "approve", PayRunStatus.PENDING_APPROVAL)
        if pay_run.requires_owner_approval and approver_role != StaffRole.OWNER:
            raise AuthorizationException(
                f"Owner approval required: {pay_run.owner_approval_reason}",
                required_role=StaffRole.OWNER.value,
            )
        if approver_role.level < StaffRole.GENERAL_MANAGER.level:
            raise AuthorizationException(
                "Pay runs are approved by a general manager or the owner",
                required_role=StaffRole.GENERAL_MANAGER.value,
            )
        pay_run.status = PayRunStatus.APPROVED
        pay_run.approved_at = utcnow()
        pay_run.approved_by_id = approved_by_id
        self._audit(
            pay_run, AuditAction.PAY_RUN_APPROVED, approved_by_id, from_status=PayRunStatus.PENDING_APPROVAL,
            details={"approver_role": approver_role},
        )
        await self._commit(pay_run)
        logger.info("Pay run %s approved by %s", pay_run.reference, approver_role.value)
        return pay_run

    async def mark_period_approved(self, tenant_id: uuid.UUID, period_id: uuid.UUID) -> PayrollPeriod:
        """Period sign-off through an approval chain."""
        period = await self.get_payroll_period(tenant_id, period_id)
        if period.status == PayrollPeriodStatus.CLOSED:
            raise StateTransitionError("PayrollPeriod", period.status, "approve")
        period.status = PayrollPeriodStatus.APPROVED
        await self.db.flush()
        return period

    # ===========================================
    # COMPLETION
    # ===========================================

    async def complete_pay_run(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        """
        approved -> processing -> completed in one transaction: one payslip
        per calculated item and a payroll repayment for every wage advance
        installment that was actually deducted.
        """
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        self._require_status(pay_run, "complete", PayRunStatus.APPROVED)
        pay_run.status = PayRunStatus.PROCESSING
        period = pay_run.payroll_period

        calculated = [i for i in pay_run.items if i.status == PayRunItemStatus.CALCULATED]
        details = await self._load_employees([i.employee_id for i in calculated])
        for sequence, item in enumerate(calculated, start=1):
            if item.gross_pay - item.total_deductions != item.net_pay:
                raise BusinessRuleException(
                    f"Pay run item {item.id} does not reconcile",
                    rule="GROSS_MINUS_DEDUCTIONS_EQUALS_NET",
                )
            ytd_gross, ytd_tax, ytd_net = await self._year_to_date(tenant_id, item.employee_id, period.payment_date)
            employee = details[item.employee_id]
            detail = employee.payroll_detail
            lines = (item.deductions_breakdown or {}).get("lines", [])
            tax_info = item.tax_breakdown or {}
            employer = (item.deductions_breakdown or {}).get("employer", {})
            payslip = Payslip(
                tenant_id=tenant_id,
                shop_id=pay_run.shop_id,
                pay_run_id=pay_run.id,
                pay_run_item_id=item.id,
                employee_id=item.employee_id,
                payslip_number=f"{pay_run.reference}-{sequence:04d}",
                period_start=period.start_date,
                period_end=period.end_date,
                payment_date=period.payment_date,
                gross_pay=item.gross_pay,
                total_deductions=item.total_deductions,
                net_pay=item.net_pay,
                tax_amount=item.tax_amount,
                pension_employee=_applied(lines, code="PENSION"),
                pension_employer=Decimal(employer.get("pension", "0.00")),
                nhf_amount=_applied(lines, code="NHF"),
                nhf_employer=Decimal(employer.get("nhf", "0.00")),
                nhis_amount=_applied(lines, code="NHIS"),
                wage_advance_deduction=_applied(lines, category=CATEGORY_WAGE_ADVANCE),
                employer_contributions=item.employer_contributions,
                earnings_breakdown=item.earnings_breakdown,
                deductions_breakdown=item.deductions_breakdown,
                tax_breakdown=item.tax_breakdown,
                warnings=item.warnings,
                tax_table_id=item.tax_table_id,
                tax_law_version=TaxLawVersion(tax_info["law_version"]) if tax_info.get("law_version") else None,
                ytd_gross=ytd_gross + item.gross_pay,
                ytd_tax=ytd_tax + item.tax_amount,
                ytd_net=ytd_net + item.net_pay,
                employee_name=employee.full_name,
                bank_name=detail.bank_name if detail else None,
                bank_account_number=detail.bank_account_number if detail else None,
            )
            self.db.add(payslip)
            await self._record_advance_repayments(tenant_id, pay_run, lines)

        pay_run.status = PayRunStatus.COMPLETED
        pay_run.completed_at = utcnow()
        period.status = PayrollPeriodStatus.CLOSED
        self._audit(
            pay_run, AuditAction.PAY_RUN_COMPLETED, actor_id, from_status=PayRunStatus.APPROVED,
            details={"payslips_generated": len(calculated), "total_net_paid": pay_run.total_net},
        )
        await self._commit(pay_run)
        logger.info("Pay run %s completed with %d payslip(s)", pay_run.reference, len(calculated))
        return await self.get_pay_run(tenant_id, pay_run_id)

    async def _record_advance_repayments(
        self,
        tenant_id: uuid.UUID,
        pay_run: PayRun,
        lines: List[Dict[str, Any]],
    ) -> None:
        for line in lines:
            if line.get("category") != CATEGORY_WAGE_ADVANCE:
                continue
            applied = Decimal(line["applied"])
            if applied <= 0:
                continue
            advance: WageAdvance = await self.wage_advances.get_advance(
                tenant_id, uuid.UUID(line["reference"]), for_update=True,
            )
            self.wage_advances.apply_repayment(advance, applied, source="payroll", pay_run_id=pay_run.id)

    async def _year_to_date(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        payment_date: date,
    ) -> Tuple[Decimal, Decimal, Decimal]:
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Payslip.gross_pay), 0),
                func.coalesce(func.sum(Payslip.tax_amount), 0),
                func.coalesce(func.sum(Payslip.net_pay), 0),
            ).where(
                and_(
                    Payslip.tenant_id == tenant_id,
                    Payslip.employee_id == employee_id,
                    Payslip.payment_date >= date(payment_date.year, 1, 1),
                    Payslip.payment_date <= payment_date,
                )
            )
        )
        gross, tax, net = result.one()
        return tuple(Decimal(str(v)).quantize(Decimal("0.01")) for v in (gross, tax, net))

    async def cancel_pay_run(
        self,
        tenant_id: uuid.UUID,
        pay_run_id: uuid.UUID,
        reason: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> PayRun:
        pay_run = await self.get_pay_run(tenant_id, pay_run_id)
        if pay_run.status.is_terminal:
            raise StateTransitionError("PayRun", pay_run.status, "cancel")
        previous_status = pay_run.status
        pay_run.status = PayRunStatus.CANCELLED
        pay_run.cancelled_at = utcnow()
        pay_run.cancellation_reason = reason
        pay_run.payroll_period.status = PayrollPeriodStatus.OPEN
        self._audit(
            pay_run, AuditAction.PAY_RUN_CANCELLED, actor_id, from_status=previous_status,
            details={"reason": reason},
        )
        await self._commit(pay_run)
        logger.info("Pay run %s cancelled", pay_run.reference)
        return pay_run

    # ===========================================
    # PAYSLIPS
    # ===========================================

    async def list_payslips(self, tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> List[Payslip]:
        result = await self.db.execute(
            select(Payslip)
            .where(and_(Payslip.pay_run_id == pay_run_id, Payslip.tenant_id == tenant_id))
            .order_by(Payslip.payslip_number)
        )
        return list(result.scalars().all())

    async def get_payslip(self, tenant_id: uuid.UUID, payslip_id: uuid.UUID) -> Payslip:
        result = await self.db.execute(
            select(Payslip).where(and_(Payslip.id == payslip_id, Payslip.tenant_id == tenant_id))
        )
        payslip = result.scalar_one_or_none()
        if payslip is None:
            raise NotFoundException("Payslip", payslip_id)
        return payslip

    async def employee_payslips(
        self,
        tenant_id: uuid.UUID,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[Payslip]:
        query = select(Payslip).where(
            and_(Payslip.tenant_id == tenant_id, Payslip.employee_id == employee_id)
        )
        if year:
            query = query.where(extract("year", Payslip.payment_date) == year)
        result = await self.db.execute(query.order_by(Payslip.payment_date.desc()))
        return list(result.scalars().all())

    # ===========================================
    # HELPERS
    # ===========================================

    async def _get_shop(self, tenant_id: uuid.UUID, shop_id: uuid.UUID) -> Shop:
        result = await self.db.execute(
            select(Shop).where(and_(Shop.id == shop_id, Shop.tenant_id == tenant_id))
        )
        shop = result.scalar_one_or_none()
        if shop is None:
            raise NotFoundException("Shop", shop_id)
        return shop

    def _audit(
        self,
        pay_run: PayRun,
        action: AuditAction,
        actor_id: Optional[uuid.UUID],
        from_status: Optional[PayRunStatus] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.audit.record(
            pay_run.tenant_id, AuditEntityType.PAY_RUN, pay_run.id, action, actor_id,
            from_status=from_status, to_status=pay_run.status, details=details,
        )

    @staticmethod
    def _totals_snapshot(pay_run: PayRun) -> Dict[str, Any]:
        return {
            "total_gross": pay_run.total_gross,
            "total_deductions": pay_run.total_deductions,
            "total_net": pay_run.total_net,
            "total_employer_contributions": pay_run.total_employer_contributions,
            "calculated_count": pay_run.calculated_count,
            "error_count": pay_run.error_count,
        }

    @staticmethod
    def _find_item(pay_run: PayRun, employee_id: uuid.UUID) -> PayRunItem:
        for item in pay_run.items:
            if item.employee_id == employee_id:
                return item
        raise NotFoundException("PayRunItem", employee_id)

    @staticmethod
    def _require_status(pay_run: PayRun, action: str, *allowed: PayRunStatus) -> None:
        if pay_run.status not in allowed:
            raise StateTransitionError("PayRun", pay_run.status, action)

    async def _commit(self, pay_run: PayRun) -> None:
        pay_run_id = pay_run.id
        try:
            await self.db.commit()
        except StaleDataError:
            await self.db.rollback()
            raise ConcurrentModificationException("PayRun", pay_run_id)


def _applied(lines: List[Dict[str, Any]], code: Optional[str] = None, category: Optional[str] = None) -> Decimal:
    total = ZERO
    for line in lines:
        if code is not None and line.get("code") != code:
            continue
        if category is not None and line.get("category") != category:
            continue
        total += Decimal(line["applied"])
    return total
