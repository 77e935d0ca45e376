"""
NairaPay Core - Bank Schedule and NIBSS File Tests
"""

import uuid
from datetime import date
from decimal import Decimal

import pytest

from app.models.employee import StaffRole
from app.models.payroll import Payslip
from app.services.bank_schedule_service import (
    BankSchedule,
    BankScheduleService,
    clean_account_number,
    get_bank_code,
    render_nibss_file,
    segregate,
    to_kobo,
    validate_payslip,
)
from app.services.pay_run_service import PayRunService
from app.utils.error_handling import InvalidAccountNumberException, StateTransitionError, validate_account_number


def make_payslip(name="Chidi Okafor", bank_name="GTBank", account="0123456789", net_pay="394700.00") -> Payslip:
    return Payslip(
        id=uuid.uuid4(),
        employee_id=uuid.uuid4(),
        employee_name=name,
        bank_name=bank_name,
        bank_account_number=account,
        net_pay=Decimal(net_pay),
    )


class TestBankCodes:
    """Free-text bank name resolution."""

    def test_exact_names(self):
        assert get_bank_code("GTBank") == "058"
        assert get_bank_code("  Zenith   Bank ") == "057"
        assert get_bank_code("Kuda") == "50211"

    def test_longest_contained_name_wins(self):
        assert get_bank_code("Guaranty Trust Bank Plc") == "058"
        assert get_bank_code("First Bank of Nigeria Ltd") == "011"

    def test_unknown_bank(self):
        assert get_bank_code("Bank of Atlantis") == "000"
        assert get_bank_code(None) == "000"

    def test_kobo_and_account_cleanup(self):
        assert to_kobo(Decimal("69066.67")) == 6906667
        assert to_kobo(Decimal("0.005")) == 1
        assert clean_account_number("012-345 6789") == "0123456789"

    def test_nuban_validator(self):
        assert validate_account_number("0123 456 789") == "0123456789"
        with pytest.raises(InvalidAccountNumberException) as exc_info:
            validate_account_number("01234A6789")
        assert exc_info.value.field == "bank_account_number"


class TestPayslipValidation:
    """Records are segregated, never dropped."""

    def test_valid_record(self):
        record = validate_payslip(make_payslip())
        assert record.is_valid
        assert record.bank_code == "058"

    def test_short_account_number(self):
        record = validate_payslip(make_payslip(account="12345"))
        assert record.errors == ["Invalid account number format (must be 10 digits)"]

    def test_every_problem_reported(self):
        record = validate_payslip(make_payslip(bank_name="Bank of Atlantis", account=None, net_pay="0.00"))
        assert record.errors == [
            "Missing account number",
            "Unrecognized bank: Bank of Atlantis",
            "Net pay must be positive",
        ]

    def test_segregate(self):
        valid, invalid = segregate([make_payslip(), make_payslip(bank_name=None)])
        assert len(valid) == 1
        assert invalid[0].errors == ["Missing bank name"]


class TestNibssLayout:
    """Fixed-width record layout."""

    def schedule(self, *payslips) -> BankSchedule:
        valid, invalid = segregate(list(payslips))
        return BankSchedule(
            pay_run_id=uuid.uuid4(),
            reference="PAY-2026-01-001",
            company_name="MAMA PUT FOODS",
            narration="Salary January 2026",
            records=valid,
            invalid_records=invalid,
        )

    def test_header_detail_trailer(self):
        content = render_nibss_file(self.schedule(make_payslip()), date(2026, 1, 31))
        header, detail, trailer = content.split("\r\n")

        assert header == "H20260131" + "MAMA PUT FOODS".ljust(30) + "PAY-2026-01-001 " + "SALARY    "
        assert len(header) == 65
        assert detail == (
            "D000001" + "058" + "0123456789" + "000000039470000"
            + "CHIDI OKAFOR".ljust(30) + "Salary January 2026".ljust(30)
        )
        assert len(detail) == 95
        assert trailer == "T000001" + "000000000039470000"

    def test_trailer_counts_only_valid_records(self):
        schedule = self.schedule(
            make_payslip(),
            make_payslip(name="Ada Eze", account="12345", net_pay="100000.00"),
            make_payslip(name="Tunde Bello", bank_name="Access Bank", account="0987654321", net_pay="5300.50"),
        )
        lines = render_nibss_file(schedule, date(2026, 1, 31)).split("\r\n")
        assert len(lines) == 4
        assert lines[2].startswith("D000002044")
        assert lines[-1] == "T000002" + str(39470000 + 530050).rjust(18, "0")
        assert not schedule.can_generate

    def test_long_names_are_truncated(self):
        content = render_nibss_file(
            self.schedule(make_payslip(name="Oluwaseun Adebayo-Ogunleye Chukwuemeka")), date(2026, 1, 31),
        )
        detail = content.split("\r\n")[1]
        assert detail[35:65] == "OLUWASEUN ADEBAYO-OGUNLEYE CHU"

    def test_fintech_codes_are_not_truncated(self):
        content = render_nibss_file(self.schedule(make_payslip(bank_name="Opay")), date(2026, 1, 31))
        assert content.split("\r\n")[1][7:13] == "100004"


class TestBankScheduleService:
    """Schedules for completed pay runs."""

    async def complete_run(self, db_session, tenant, shop):
        service = PayRunService(db_session)
        period = await service.create_payroll_period(
            tenant.id, shop.id, "January 2026", date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31),
        )
        pay_run = await service.create_pay_run(tenant.id, period.id)
        pay_run = await service.calculate_pay_run(tenant.id, pay_run.id)
        await service.submit_for_approval(tenant.id, pay_run.id, uuid.uuid4())
        await service.approve_pay_run(tenant.id, pay_run.id, uuid.uuid4(), StaffRole.OWNER)
        return await service.complete_pay_run(tenant.id, pay_run.id)

    async def test_invalid_account_segregated(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        await make_employee(first_name="Ada", last_name="Eze", bank_account_number="12345")
        pay_run = await self.complete_run(db_session, test_tenant, test_shop)

        schedule = await BankScheduleService(db_session).build_bank_schedule(test_tenant.id, pay_run.id)
        assert schedule.company_name == "MAMA PUT FOODS"
        assert schedule.narration == "Salary January 2026"
        assert [r.employee_name for r in schedule.records] == ["Chidi Okafor"]
        assert schedule.invalid_records[0].employee_name == "Ada Eze"
        assert schedule.total_amount == Decimal("394700.00")

        nibss = await BankScheduleService(db_session).generate_nibss_file(
            test_tenant.id, pay_run.id, date(2026, 1, 31),
        )
        assert nibss.filename == "NIBSS_SALARY_PAY-2026-01-001_20260131.txt"
        assert nibss.record_count == 1
        assert nibss.content.endswith("T000001000000000039470000")
        assert len(nibss.file_hash) == 64

    async def test_requires_completed_run(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        service = PayRunService(db_session)
        period = await service.create_payroll_period(
            test_tenant.id, test_shop.id, "January 2026", date(2026, 1, 1), date(2026, 1, 31), date(2026, 1, 31),
        )
        pay_run = await service.create_pay_run(test_tenant.id, period.id)
        with pytest.raises(StateTransitionError):
            await BankScheduleService(db_session).build_bank_schedule(test_tenant.id, pay_run.id)
