"""
NairaPay Core - Pay Run Service Tests

Pay run lifecycle against an in-memory database: creation, per-employee
calculation with error isolation, approval, completion and payslips.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.models.employee import StaffRole
from app.models.payroll import PayrollPeriodStatus, PayRunItemStatus, PayRunStatus
from app.models.wage_advance import WageAdvanceStatus
from app.services.pay_run_service import PayRunService, owner_approval_reasons, summarize_items
from app.services.wage_advance_service import WageAdvanceService
from app.utils.error_handling import (
    AuthorizationException,
    BusinessRuleException,
    ConflictException,
    InvalidDateRangeException,
    StateTransitionError,
)


MANAGER_ID = uuid.uuid4()
OWNER_ID = uuid.uuid4()


async def open_period(service, tenant, shop, year=2026, month=1, name=None):
    start = date(year, month, 1)
    end = date(year + month // 12, month % 12 + 1, 1) - timedelta(days=1)
    return await service.create_payroll_period(
        tenant.id, shop.id, name or f"{start:%B %Y}", start, end, end,
    )


async def run_to_completion(service, tenant, pay_run):
    pay_run = await service.submit_for_approval(tenant.id, pay_run.id, MANAGER_ID)
    pay_run = await service.approve_pay_run(tenant.id, pay_run.id, OWNER_ID, StaffRole.OWNER)
    return await service.complete_pay_run(tenant.id, pay_run.id)


class TestPayrollPeriods:
    """Period creation rules."""

    async def test_create_period(self, db_session, test_tenant, test_shop):
        period = await open_period(PayRunService(db_session), test_tenant, test_shop)
        assert period.status == PayrollPeriodStatus.OPEN
        assert period.end_date == date(2026, 1, 31)

    async def test_end_before_start_rejected(self, db_session, test_tenant, test_shop):
        with pytest.raises(InvalidDateRangeException):
            await PayRunService(db_session).create_payroll_period(
                test_tenant.id, test_shop.id, "Backwards", date(2026, 2, 1), date(2026, 1, 1), date(2026, 2, 1),
            )

    async def test_overlapping_period_rejected(self, db_session, test_tenant, test_shop):
        service = PayRunService(db_session)
        await open_period(service, test_tenant, test_shop)
        with pytest.raises(ConflictException):
            await service.create_payroll_period(
                test_tenant.id, test_shop.id, "Mid January", date(2026, 1, 15), date(2026, 2, 14), date(2026, 2, 14),
            )


class TestPayRunCalculation:
    """Fan-out calculation with per-employee error isolation."""

    async def test_fifty_employees_three_missing_details(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        for index in range(47):
            await make_employee(first_name=f"Staff{index:02d}", last_name="Paid", pay_amount=Decimal("80000.00"))
        missing = [
            await make_employee(first_name=f"New{index}", last_name="Hire", pay_amount=None)
            for index in range(3)
        ]

        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id, MANAGER_ID)
        assert pay_run.employee_count == 50
        assert pay_run.reference == "PAY-2026-01-001"

        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)

        assert pay_run.status == PayRunStatus.PENDING_REVIEW
        assert pay_run.calculated_count == 47
        assert pay_run.error_count == 3
        errors = [i for i in pay_run.items if i.status == PayRunItemStatus.ERROR]
        assert {i.employee_id for i in errors} == {e.id for e in missing}
        assert all("no payroll detail" in i.error_message for i in errors)

        # Totals cover calculated items only
        assert pay_run.total_gross == Decimal("3760000.00")
        assert pay_run.total_tax == Decimal("48880.00")
        assert pay_run.total_net == Decimal("3410320.00")
        assert pay_run.total_gross - pay_run.total_deductions == pay_run.total_net

    async def test_submit_blocked_until_errors_excluded(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        broken = await make_employee(first_name="Ada", last_name="Eze", pay_amount=None)
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)

        with pytest.raises(BusinessRuleException):
            await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)

        pay_run = await service.exclude_employee(test_tenant.id, pay_run.id, broken.id, "Joining next month")
        assert pay_run.excluded_count == 1
        assert pay_run.error_count == 0

        pay_run = await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)
        assert pay_run.status == PayRunStatus.PENDING_APPROVAL

    async def test_inputs_reset_item_for_recalculation(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)

        pay_run = await service.set_item_inputs(test_tenant.id, pay_run.id, employee.id, {"bonus": "100000"})
        assert pay_run.items[0].status == PayRunItemStatus.PENDING
        with pytest.raises(BusinessRuleException):
            await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)

        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        assert pay_run.items[0].gross_pay == Decimal("600000.00")

    async def test_recalculation_is_idempotent(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        await make_employee(first_name="Amaka", last_name="Eze", pay_amount=Decimal("60000.00"))
        advances = WageAdvanceService(db_session)
        advance = await advances.request_advance(test_tenant.id, employee.id, Decimal("120000"), installments=3)
        await advances.approve_advance(test_tenant.id, advance.id, OWNER_ID)
        await advances.disburse_advance(test_tenant.id, advance.id, OWNER_ID, repayment_start_date=date(2026, 1, 1))

        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)

        fields = (
            "status", "gross_pay", "total_deductions", "net_pay", "tax_amount", "employer_contributions",
            "earnings_breakdown", "deductions_breakdown", "tax_breakdown", "warnings", "tax_table_id",
        )

        def snapshot(run):
            items = sorted(run.items, key=lambda i: str(i.employee_id))
            return (
                [tuple(getattr(item, f) for f in fields) for item in items],
                (run.total_gross, run.total_deductions, run.total_net, run.total_employer_contributions),
            )

        first = snapshot(await service.calculate_pay_run(test_tenant.id, pay_run.id))
        second = snapshot(await service.calculate_pay_run(test_tenant.id, pay_run.id))
        assert first == second
        assert first[1][2] == Decimal("409900.00")

        # the installment is deducted once per run, never per calculation
        advance = await advances.get_advance(test_tenant.id, advance.id)
        assert advance.amount_repaid == Decimal("0.00")

    async def test_missing_tax_table_marks_every_item(
        self, db_session, test_tenant, test_shop, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        assert pay_run.error_count == 1
        assert "No active tax table" in pay_run.items[0].error_message

    async def test_one_active_run_per_period(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        await service.create_pay_run(test_tenant.id, period.id)
        with pytest.raises(ConflictException):
            await service.create_pay_run(test_tenant.id, period.id)


class TestPayRunApproval:
    """Approval rules."""

    async def test_general_manager_on_payroll_needs_owner(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee(first_name="Bola", last_name="Ade", role=StaffRole.GENERAL_MANAGER)
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        assert pay_run.requires_owner_approval
        assert "general manager" in pay_run.owner_approval_reason

        await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)
        with pytest.raises(AuthorizationException):
            await service.approve_pay_run(test_tenant.id, pay_run.id, MANAGER_ID, StaffRole.GENERAL_MANAGER)
        pay_run = await service.approve_pay_run(test_tenant.id, pay_run.id, OWNER_ID, StaffRole.OWNER)
        assert pay_run.status == PayRunStatus.APPROVED

    async def test_general_manager_in_error_does_not_need_owner(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        await make_employee(first_name="Bola", last_name="Ade", role=StaffRole.GENERAL_MANAGER, pay_amount=None)
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        assert pay_run.error_count == 1
        assert not pay_run.requires_owner_approval
        assert pay_run.owner_approval_reason is None

    async def test_staff_cannot_approve(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)
        with pytest.raises(AuthorizationException):
            await service.approve_pay_run(test_tenant.id, pay_run.id, MANAGER_ID, StaffRole.ASSISTANT_MANAGER)

    async def test_reject_returns_to_review(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        await service.submit_for_approval(test_tenant.id, pay_run.id, MANAGER_ID)
        pay_run = await service.reject_pay_run(test_tenant.id, pay_run.id, "Check overtime")
        assert pay_run.status == PayRunStatus.PENDING_REVIEW
        assert pay_run.rejection_reason == "Check overtime"

    def test_owner_approval_threshold(self):
        reasons = owner_approval_reasons([StaffRole.STAFF], Decimal("6000000"), Decimal("5000000"))
        assert len(reasons) == 1
        assert owner_approval_reasons([StaffRole.STAFF], Decimal("100"), Decimal("5000000")) == []


class TestPayRunCompletion:
    """Completion writes payslips and payroll repayments."""

    async def test_complete_creates_payslips(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee(annual_rent_paid=Decimal("1200000"))
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        pay_run = await run_to_completion(service, test_tenant, pay_run)

        assert pay_run.status == PayRunStatus.COMPLETED
        assert pay_run.payroll_period.status == PayrollPeriodStatus.CLOSED

        payslips = await service.list_payslips(test_tenant.id, pay_run.id)
        assert len(payslips) == 1
        payslip = payslips[0]
        assert payslip.employee_id == employee.id
        assert payslip.payslip_number == "PAY-2026-01-001-0001"
        assert payslip.gross_pay == Decimal("500000.00")
        assert payslip.tax_amount == Decimal("65300.00")
        assert payslip.pension_employee == Decimal("40000.00")
        assert payslip.net_pay == Decimal("394700.00")
        assert payslip.gross_pay - payslip.total_deductions == payslip.net_pay
        rent = next(r for r in payslip.tax_breakdown["reliefs"] if r["code"] == "RENT_RELIEF")
        assert rent["proof_status"] == "missing"

    async def test_completed_run_is_not_recalculated(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        pay_run = await run_to_completion(service, test_tenant, pay_run)

        with pytest.raises(StateTransitionError):
            await service.calculate_pay_run(test_tenant.id, pay_run.id)
        with pytest.raises(StateTransitionError):
            await service.cancel_pay_run(test_tenant.id, pay_run.id)

    async def test_year_to_date_accumulates(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        service = PayRunService(db_session)
        for month in (1, 2):
            period = await open_period(service, test_tenant, test_shop, month=month)
            pay_run = await service.create_pay_run(test_tenant.id, period.id)
            pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
            await run_to_completion(service, test_tenant, pay_run)

        payslips = await service.employee_payslips(test_tenant.id, employee.id, year=2026)
        february = payslips[0]
        assert february.payment_date == date(2026, 2, 28)
        assert february.ytd_gross == Decimal("1000000.00")
        assert february.ytd_tax == Decimal("130600.00")
        assert february.ytd_net == Decimal("789400.00")

    async def test_wage_advance_installment_recovered(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        advances = WageAdvanceService(db_session)
        advance = await advances.request_advance(test_tenant.id, employee.id, Decimal("120000"), installments=3)
        await advances.approve_advance(test_tenant.id, advance.id, OWNER_ID)
        await advances.disburse_advance(test_tenant.id, advance.id, OWNER_ID, repayment_start_date=date(2026, 1, 1))

        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        item = pay_run.items[0]
        assert item.net_pay == Decimal("354700.00")
        pay_run = await run_to_completion(service, test_tenant, pay_run)

        advance = await advances.get_advance(test_tenant.id, advance.id)
        assert advance.amount_repaid == Decimal("40000.00")
        assert advance.status == WageAdvanceStatus.REPAYING
        assert advance.repayments[0].source == "payroll"
        assert advance.repayments[0].pay_run_id == pay_run.id

        payslip = (await service.list_payslips(test_tenant.id, pay_run.id))[0]
        assert payslip.wage_advance_deduction == Decimal("40000.00")

    async def test_cancel_reopens_period(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.cancel_pay_run(test_tenant.id, pay_run.id, "Wrong period")
        assert pay_run.status == PayRunStatus.CANCELLED
        assert pay_run.payroll_period.status == PayrollPeriodStatus.OPEN
        # A fresh run may now be created for the period
        await service.create_pay_run(test_tenant.id, period.id)

    async def test_signed_off_period_can_be_rerun(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        await service.mark_period_approved(test_tenant.id, period.id)
        await db_session.commit()

        pay_run = await service.cancel_pay_run(test_tenant.id, pay_run.id, "Recount hours")
        assert pay_run.payroll_period.status == PayrollPeriodStatus.OPEN
        await service.mark_period_approved(test_tenant.id, period.id)
        await db_session.commit()

        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        assert pay_run.status == PayRunStatus.DRAFT
        assert pay_run.payroll_period.status == PayrollPeriodStatus.PROCESSING

    async def test_closed_period_takes_no_new_run(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await open_period(service, test_tenant, test_shop)
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        pay_run = await service.calculate_pay_run(test_tenant.id, pay_run.id)
        await run_to_completion(service, test_tenant, pay_run)
        with pytest.raises(StateTransitionError):
            await service.create_pay_run(test_tenant.id, period.id)


class TestSummarizeItems:
    """Fan-in totals."""

    def test_only_calculated_items_count(self):
        class Item:
            def __init__(self, status, gross):
                self.status = status
                self.gross_pay = gross
                self.total_deductions = Decimal("0.00")
                self.net_pay = gross
                self.tax_amount = Decimal("0.00")
                self.employer_contributions = Decimal("0.00")

        totals = summarize_items([
            Item(PayRunItemStatus.CALCULATED, Decimal("100.00")),
            Item(PayRunItemStatus.ERROR, Decimal("999.00")),
            Item(PayRunItemStatus.EXCLUDED, Decimal("999.00")),
        ])
        assert totals.employee_count == 3
        assert totals.total_gross == Decimal("100.00")
        assert totals.error_count == 1
        assert totals.excluded_count == 1
