"""
NairaPay Core - Wage Advance Tests

Eligibility, lifecycle and repayment of wage advances.
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from app.models.employee import PayFrequency, PayType, StaffRole
from app.models.wage_advance import WageAdvance, WageAdvanceStatus
from app.services.pay_run_service import PayRunService
from app.services.wage_advance_service import (
    WageAdvanceService,
    estimate_monthly_pay,
    first_of_next_month,
    next_installment_amount,
    repayment_schedule,
)
from app.utils.error_handling import (
    ConcurrentModificationException,
    ConflictException,
    EligibilityException,
    InvalidAmountException,
    MissingPayrollDetail,
    StateTransitionError,
)


APPROVER_ID = uuid.uuid4()


async def disbursed_advance(service, tenant, employee, amount=Decimal("120000"), installments=3, start=date(2026, 2, 1)):
    advance = await service.request_advance(tenant.id, employee.id, amount, "School fees", installments)
    await service.approve_advance(tenant.id, advance.id, APPROVER_ID)
    return await service.disburse_advance(tenant.id, advance.id, APPROVER_ID, repayment_start_date=start)


class TestEstimates:
    """Monthly pay estimates and installment arithmetic."""

    def test_estimate_by_pay_type(self):
        class Detail:
            def __init__(self, pay_type, pay_amount, pay_frequency=PayFrequency.MONTHLY):
                self.pay_type = pay_type
                self.pay_amount = pay_amount
                self.pay_frequency = pay_frequency

        assert estimate_monthly_pay(Detail(PayType.SALARY, Decimal("500000"))) == Decimal("500000.00")
        assert estimate_monthly_pay(Detail(PayType.HOURLY, Decimal("1500"))) == Decimal("240000.00")
        assert estimate_monthly_pay(Detail(PayType.DAILY, Decimal("10000"))) == Decimal("220000.00")
        assert estimate_monthly_pay(
            Detail(PayType.SALARY, Decimal("6000000"), PayFrequency.ANNUALLY)
        ) == Decimal("500000.00")

    def test_final_installment_absorbs_remainder(self):
        class Advance:
            amount_approved = Decimal("100000.00")
            repayment_installments = 3
            installments_paid = 0
            amount_repaid = Decimal("0.00")

            @property
            def remaining_balance(self):
                return self.amount_approved - self.amount_repaid

        advance = Advance()
        assert next_installment_amount(advance) == Decimal("33333.33")
        advance.installments_paid, advance.amount_repaid = 2, Decimal("66666.66")
        assert next_installment_amount(advance) == Decimal("33333.34")

    def test_first_of_next_month(self):
        assert first_of_next_month(date(2026, 3, 17)) == date(2026, 4, 1)
        assert first_of_next_month(date(2026, 12, 5)) == date(2027, 1, 1)


class TestEligibility:
    """Advance limits."""

    async def test_thirty_percent_of_monthly_pay(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        result = await WageAdvanceService(db_session).check_eligibility(test_tenant.id, employee.id)
        assert result.eligible
        assert result.max_amount == Decimal("150000.00")
        assert result.available_amount == Decimal("150000.00")

    async def test_no_payroll_detail(self, db_session, test_tenant, make_employee):
        employee = await make_employee(pay_amount=None)
        with pytest.raises(MissingPayrollDetail):
            await WageAdvanceService(db_session).check_eligibility(test_tenant.id, employee.id)

    async def test_request_above_limit_rejected(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        with pytest.raises(EligibilityException):
            await WageAdvanceService(db_session).request_advance(test_tenant.id, employee.id, Decimal("150000.01"))

    async def test_one_outstanding_advance_at_a_time(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        await service.request_advance(test_tenant.id, employee.id, Decimal("50000"))

        result = await service.check_eligibility(test_tenant.id, employee.id)
        assert not result.eligible
        assert result.active_advances == 1
        with pytest.raises(EligibilityException):
            await service.request_advance(test_tenant.id, employee.id, Decimal("10000"))


class TestLifecycle:
    """Status transitions."""

    async def test_repayment_to_completion(self, db_session, test_tenant, make_employee):
        """₦120,000 over 3 installments: repaying after two, repaid after three."""
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee)
        assert advance.status == WageAdvanceStatus.DISBURSED

        for _ in range(2):
            await service.record_repayment(test_tenant.id, advance.id, Decimal("40000"), recorded_by_id=APPROVER_ID)
        advance = await service.get_advance(test_tenant.id, advance.id)
        assert advance.remaining_balance == Decimal("40000.00")
        assert advance.status == WageAdvanceStatus.REPAYING

        repayment = await service.record_repayment(test_tenant.id, advance.id, Decimal("40000"))
        assert repayment.balance_after == Decimal("0.00")
        assert repayment.installment_number == 3
        advance = await service.get_advance(test_tenant.id, advance.id)
        assert advance.status == WageAdvanceStatus.REPAID
        assert advance.fully_repaid_at is not None
        assert len(advance.repayments) == 3

    async def test_overpayment_is_clamped(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, Decimal("30000"), 1)
        repayment = await service.record_repayment(test_tenant.id, advance.id, Decimal("50000"))
        assert repayment.amount == Decimal("30000.00")
        advance = await service.get_advance(test_tenant.id, advance.id)
        assert advance.status == WageAdvanceStatus.REPAID

    async def test_no_repayment_after_repaid(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, Decimal("30000"), 1)
        await service.record_repayment(test_tenant.id, advance.id, Decimal("30000"))
        with pytest.raises(StateTransitionError):
            await service.record_repayment(test_tenant.id, advance.id, Decimal("1000"))

    async def test_repayment_before_disbursement_rejected(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("50000"))
        with pytest.raises(StateTransitionError):
            await service.record_repayment(test_tenant.id, advance.id, Decimal("10000"))

    async def test_approve_lower_amount(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("100000"))
        advance = await service.approve_advance(test_tenant.id, advance.id, APPROVER_ID, amount=Decimal("60000"), installments=2)
        assert advance.amount_approved == Decimal("60000.00")
        assert advance.repayment_installments == 2

    async def test_approve_above_requested_rejected(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("50000"))
        with pytest.raises(InvalidAmountException):
            await service.approve_advance(test_tenant.id, advance.id, APPROVER_ID, amount=Decimal("60000"))

    async def test_reject_frees_eligibility(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("50000"))
        advance = await service.reject_advance(test_tenant.id, advance.id, "Probation")
        assert advance.status == WageAdvanceStatus.REJECTED
        assert (await service.check_eligibility(test_tenant.id, employee.id)).eligible

    async def test_cancel_disbursed_but_not_repaid(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee)
        advance = await service.cancel_advance(test_tenant.id, advance.id, "Written off")
        assert advance.status == WageAdvanceStatus.CANCELLED
        assert advance.remaining_balance == Decimal("0.00")

        other = await make_employee(first_name="Ngozi")
        repaid = await disbursed_advance(service, test_tenant, other, Decimal("30000"), 1)
        await service.record_repayment(test_tenant.id, repaid.id, Decimal("30000"))
        with pytest.raises(StateTransitionError):
            await service.cancel_advance(test_tenant.id, repaid.id)


class TestConcurrentRepayment:
    """Two writers on one advance: the later commit loses."""

    async def test_stale_version_raises_conflict(self, db_session, test_tenant, make_employee, monkeypatch):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee)
        advance_id = advance.id
        check_pending = service.pending_pay_run_deduction

        async def other_writer_commits_first(target):
            reference = await check_pending(target)
            await db_session.execute(
                update(WageAdvance)
                .where(WageAdvance.id == target.id)
                .values(amount_repaid=Decimal("40000.00"), version_id=WageAdvance.version_id + 1)
                .execution_options(synchronize_session=False)
            )
            return reference

        monkeypatch.setattr(service, "pending_pay_run_deduction", other_writer_commits_first)
        with pytest.raises(ConcurrentModificationException) as exc_info:
            await service.record_repayment(test_tenant.id, advance_id, Decimal("40000"))
        assert exc_info.value.status_code == 409
        assert exc_info.value.details["resource_id"] == str(advance_id)

        monkeypatch.undo()
        advance = await service.get_advance(test_tenant.id, advance_id)
        assert advance.repayments == []
        repayment = await service.record_repayment(test_tenant.id, advance_id, Decimal("40000"))
        assert repayment.balance_after == Decimal("80000.00")


class TestRepaymentSchedule:
    """Installments past and still to come."""

    async def test_even_split_with_remainder_last(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, amount=Decimal("100000"))

        schedule = await service.get_repayment_schedule(test_tenant.id, advance.id)
        assert [s.amount for s in schedule] == [Decimal("33333.33"), Decimal("33333.33"), Decimal("33333.34")]
        assert [s.due_date for s in schedule] == [date(2026, 2, 1), date(2026, 3, 1), date(2026, 4, 1)]
        assert schedule[-1].balance_after == Decimal("0.00")
        assert not any(s.is_paid for s in schedule)

    async def test_paid_installments_come_first(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, amount=Decimal("100000"))
        await service.record_repayment(test_tenant.id, advance.id, Decimal("50000"))

        schedule = await service.get_repayment_schedule(test_tenant.id, advance.id)
        assert [s.installment_number for s in schedule] == [1, 2, 3]
        assert schedule[0].is_paid
        assert schedule[0].amount == Decimal("50000.00")
        assert [s.amount for s in schedule[1:]] == [Decimal("33333.33"), Decimal("16666.67")]
        assert schedule[1].due_date == date(2026, 3, 1)

    async def test_pending_advance_has_no_due_dates(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("90000"), installments=2)

        schedule = repayment_schedule(await service.get_advance(test_tenant.id, advance.id))
        assert [s.amount for s in schedule] == [Decimal("45000.00"), Decimal("45000.00")]
        assert all(s.due_date is None for s in schedule)

    async def test_cancelled_advance_projects_nothing(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await service.request_advance(test_tenant.id, employee.id, Decimal("90000"))
        await service.cancel_advance(test_tenant.id, advance.id, "Not needed")

        assert await service.get_repayment_schedule(test_tenant.id, advance.id) == []


class TestPayrollIntegration:
    """Installments offered to the pay run."""

    async def test_due_only_from_start_date(self, db_session, test_tenant, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee)

        assert await service.due_for_payroll([employee.id], date(2026, 1, 31)) == {}
        due = await service.due_for_payroll([employee.id], date(2026, 2, 28))
        installment = due[employee.id][0]
        assert installment.wage_advance_id == advance.id
        assert installment.amount == Decimal("40000.00")

    async def test_shop_statistics(self, db_session, test_tenant, test_shop, make_employee):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee)
        await service.record_repayment(test_tenant.id, advance.id, Decimal("40000"))

        summary = await service.employee_summary(test_tenant.id, employee.id)
        assert summary["outstanding_balance"] == "80000.00"
        stats = await service.shop_statistics(test_tenant.id, test_shop.id)
        assert stats["counts_by_status"] == {"repaying": 1}
        assert stats["total_disbursed"] == "120000.00"
        assert stats["total_outstanding"] == "80000.00"


class TestPayRunHold:
    """Manual changes wait for a pay run that already deducts an installment."""

    async def calculated_run(self, db_session, tenant, shop):
        payroll = PayRunService(db_session)
        period = await payroll.create_payroll_period(
            tenant.id, shop.id, "January 2026", date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31),
        )
        pay_run = await payroll.create_pay_run(tenant.id, period.id)
        return payroll, await payroll.calculate_pay_run(tenant.id, pay_run.id)

    async def test_manual_settlement_blocked_until_run_completes(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, start=date(2026, 1, 1))
        payroll, pay_run = await self.calculated_run(db_session, test_tenant, test_shop)

        assert await service.pending_pay_run_deduction(advance) == pay_run.reference
        with pytest.raises(ConflictException) as exc_info:
            await service.record_repayment(test_tenant.id, advance.id, advance.remaining_balance)
        assert exc_info.value.details["pay_run_reference"] == pay_run.reference
        with pytest.raises(ConflictException):
            await service.cancel_advance(test_tenant.id, advance.id)

        await payroll.submit_for_approval(test_tenant.id, pay_run.id, APPROVER_ID)
        await payroll.approve_pay_run(test_tenant.id, pay_run.id, APPROVER_ID, StaffRole.OWNER)
        await payroll.complete_pay_run(test_tenant.id, pay_run.id)

        advance = await service.get_advance(test_tenant.id, advance.id)
        assert advance.amount_repaid == Decimal("40000.00")
        assert advance.repayments[0].pay_run_id == pay_run.id
        assert await service.pending_pay_run_deduction(advance) is None
        await service.record_repayment(test_tenant.id, advance.id, Decimal("80000"))
        advance = await service.get_advance(test_tenant.id, advance.id)
        assert advance.status == WageAdvanceStatus.REPAID

    async def test_cancelled_run_releases_advance(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        employee = await make_employee()
        service = WageAdvanceService(db_session)
        advance = await disbursed_advance(service, test_tenant, employee, start=date(2026, 1, 1))
        payroll, pay_run = await self.calculated_run(db_session, test_tenant, test_shop)

        await payroll.cancel_pay_run(test_tenant.id, pay_run.id, "Wrong period")
        repayment = await service.record_repayment(test_tenant.id, advance.id, Decimal("40000"))
        assert repayment.balance_after == Decimal("80000.00")
