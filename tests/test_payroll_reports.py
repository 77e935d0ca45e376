"""
NairaPay Core - Payroll Report Tests

PAYE and pension schedules, the payroll journal and yearly statistics from
completed pay runs.
"""

import uuid
from datetime import date, timedelta
from decimal import Decimal

import pytest

from app.models.employee import StaffRole
from app.services.pay_run_service import PayRunService
from app.services.payroll_report_service import (
    NET_SALARIES_PAYABLE,
    PAYE_PAYABLE,
    PENSION_PAYABLE,
    SALARIES_EXPENSE,
    PayrollReportService,
    remittance_due_date,
)
from app.utils.error_handling import InvalidDateRangeException
from tests.conftest import auth_headers


API = "/api/v1"
MANAGER_ID = uuid.uuid4()
OWNER_ID = uuid.uuid4()


async def completed_month(service, tenant, shop, month=1):
    start = date(2026, month, 1)
    end = date(2026, month + 1, 1) - timedelta(days=1)
    period = await service.create_payroll_period(tenant.id, shop.id, f"{start:%B %Y}", start, end, end)
    pay_run = await service.create_pay_run(tenant.id, period.id)
    pay_run = await service.calculate_pay_run(tenant.id, pay_run.id)
    await service.submit_for_approval(tenant.id, pay_run.id, MANAGER_ID)
    await service.approve_pay_run(tenant.id, pay_run.id, OWNER_ID, StaffRole.OWNER)
    return await service.complete_pay_run(tenant.id, pay_run.id)


@pytest.fixture
def two_employees(make_employee):
    """₦500,000 with an RSA PIN and TIN, and a ₦60,000 low earner without either."""

    async def _make():
        chidi = await make_employee(
            tax_id_number="TIN-0001", pension_pin="PEN100200300", pfa_name="Stanbic IBTC Pension",
        )
        amaka = await make_employee(first_name="Amaka", last_name="Eze", pay_amount=Decimal("60000.00"))
        return chidi, amaka

    return _make


class TestRemittanceDates:

    def test_tenth_and_seventh_of_next_month(self):
        assert remittance_due_date(date(2026, 1, 31), 10) == date(2026, 2, 10)
        assert remittance_due_date(date(2026, 12, 31), 7) == date(2027, 1, 7)


class TestTaxRemittance:
    """PAYE schedule for the revenue service."""

    async def test_only_taxed_employees_listed(
        self, db_session, test_tenant, test_shop, statutory_tables, two_employees,
    ):
        chidi, _ = await two_employees()
        pay_run = await completed_month(PayRunService(db_session), test_tenant, test_shop)

        report = await PayrollReportService(db_session).tax_remittance_report(
            test_tenant.id, period_id=pay_run.payroll_period_id,
        )
        assert report["summary"]["employee_count"] == 1
        assert report["summary"]["total_paye"] == "65300.00"
        row = report["breakdown"][0]
        assert row["employee_id"] == str(chidi.id)
        assert row["tax_id"] == "TIN-0001"
        assert row["paye"] == "65300.00"
        assert row["effective_rate"] == "13.06"
        assert report["remittance_info"]["due_date"] == "2026-02-10"

    async def test_inverted_range_rejected(self, db_session, test_tenant):
        with pytest.raises(InvalidDateRangeException):
            await PayrollReportService(db_session).tax_remittance_report(
                test_tenant.id, start_date=date(2026, 3, 1), end_date=date(2026, 1, 1),
            )

    async def test_empty_when_nothing_completed(self, db_session, test_tenant):
        report = await PayrollReportService(db_session).tax_remittance_report(test_tenant.id)
        assert report["breakdown"] == []
        assert report["summary"]["total_paye"] == "0.00"
        assert report["remittance_info"]["due_date"] is None


class TestPensionSchedule:
    """Contributions per RSA, grouped by PFA."""

    async def test_contributions_and_pfa_groups(
        self, db_session, test_tenant, test_shop, statutory_tables, two_employees,
    ):
        await two_employees()
        await completed_month(PayRunService(db_session), test_tenant, test_shop)

        report = await PayrollReportService(db_session).pension_schedule(test_tenant.id)
        summary = report["summary"]
        assert summary["employee_count"] == 2
        assert summary["total_employee_contribution"] == "44800.00"
        assert summary["total_employer_contribution"] == "56000.00"
        assert summary["total_contribution"] == "100800.00"
        assert report["by_pfa"] == [
            {"pfa": "Stanbic IBTC Pension", "count": 1, "total": "90000.00"},
            {"pfa": "Unassigned", "count": 1, "total": "10800.00"},
        ]
        assert report["missing_pension_pin"] == ["Amaka Eze"]
        assert report["remittance_info"]["due_date"] == "2026-02-07"


class TestPayrollJournal:
    """Balanced double entry per completed run."""

    async def test_journal_balances(
        self, db_session, test_tenant, test_shop, statutory_tables, two_employees,
    ):
        await two_employees()
        service = PayRunService(db_session)
        pay_run = await completed_month(service, test_tenant, test_shop)

        # February is calculated but never completed
        start, end = date(2026, 2, 1), date(2026, 2, 28)
        period = await service.create_payroll_period(test_tenant.id, test_shop.id, "February 2026", start, end, end)
        draft = await service.create_pay_run(test_tenant.id, period.id)
        await service.calculate_pay_run(test_tenant.id, draft.id)

        journal = await PayrollReportService(db_session).payroll_journal(test_tenant.id)
        assert journal["pay_runs_count"] == 1
        assert journal["totals"] == {"debits": "616000.00", "credits": "616000.00", "balanced": True}

        lines = {e["account"]: e for e in journal["entries"]}
        assert lines[SALARIES_EXPENSE]["debit"] == "560000.00"
        assert lines[PAYE_PAYABLE]["credit"] == "65300.00"
        assert lines[PENSION_PAYABLE]["credit"] == "100800.00"
        assert lines[NET_SALARIES_PAYABLE]["credit"] == "449900.00"
        assert {e["reference"] for e in journal["entries"]} == {pay_run.reference}
        assert all(e["date"] == "2026-01-31" for e in journal["entries"])

    async def test_wage_advance_recovery_is_credited(
        self, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        from app.services.wage_advance_service import WageAdvanceService

        employee = await make_employee()
        advances = WageAdvanceService(db_session)
        advance = await advances.request_advance(test_tenant.id, employee.id, Decimal("120000"), installments=3)
        await advances.approve_advance(test_tenant.id, advance.id, MANAGER_ID)
        await advances.disburse_advance(test_tenant.id, advance.id, MANAGER_ID, repayment_start_date=date(2026, 1, 1))
        await completed_month(PayRunService(db_session), test_tenant, test_shop)

        journal = await PayrollReportService(db_session).payroll_journal(test_tenant.id)
        credits = {e["account"]: e["credit"] for e in journal["entries"] if e["credit"] != "0.00"}
        assert credits["Wage advances receivable"] == "40000.00"
        assert credits[NET_SALARIES_PAYABLE] == "354700.00"
        assert journal["totals"]["balanced"]


class TestPayRunStatistics:

    async def test_monthly_breakdown(self, db_session, test_tenant, test_shop, statutory_tables, make_employee):
        await make_employee()
        service = PayRunService(db_session)
        for month in (1, 2):
            await completed_month(service, test_tenant, test_shop, month=month)

        stats = await PayrollReportService(db_session).pay_run_statistics(test_tenant.id, 2026)
        assert stats["total_pay_runs"] == 2
        assert stats["total_gross"] == "1000000.00"
        assert stats["total_tax"] == "130600.00"
        assert [m["month"] for m in stats["monthly_breakdown"]] == ["2026-01", "2026-02"]
        assert stats["monthly_breakdown"][0]["employee_count"] == 1
        assert stats["monthly_breakdown"][1]["total_net"] == "394700.00"

        assert (await PayrollReportService(db_session).pay_run_statistics(test_tenant.id, 2025))["total_pay_runs"] == 0


class TestReportEndpoints:

    async def test_journal_for_managers_only(
        self, client, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        await completed_month(PayRunService(db_session), test_tenant, test_shop)

        response = await client.get(
            f"{API}/payroll/reports/journal", headers=auth_headers(test_tenant.id, StaffRole.GENERAL_MANAGER),
        )
        assert response.status_code == 200
        assert response.json()["totals"]["balanced"] is True

        response = await client.get(
            f"{API}/payroll/reports/journal", headers=auth_headers(test_tenant.id, StaffRole.STAFF),
        )
        assert response.status_code == 403

    async def test_tax_remittance_by_date_range(
        self, client, db_session, test_tenant, test_shop, statutory_tables, make_employee,
    ):
        await make_employee()
        await completed_month(PayRunService(db_session), test_tenant, test_shop)

        response = await client.get(
            f"{API}/payroll/reports/tax-remittance",
            params={"start_date": "2026-01-01", "end_date": "2026-01-31"},
            headers=auth_headers(test_tenant.id, StaffRole.OWNER),
        )
        assert response.status_code == 200
        assert response.json()["summary"]["total_paye"] == "65300.00"
