"""
NairaPay Core - Payroll Report Service

Statutory and accounting reports built from the payslips of completed pay
runs:

- PAYE remittance schedule, due on the 10th of the month after payment
- Pension schedule for the PFAs, due on the 7th of the month after payment
- Payroll journal, one balanced set of lines per pay run
- Pay run statistics for a year, by payment month

Cancelled and uncompleted runs never appear. Amounts are strings with two
decimal places.
"""

import logging
import uuid
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from dateutil.relativedelta import relativedelta
from sqlalchemy import and_, extract, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.employee import EmployeePayrollDetail
from app.models.payroll import PayrollPeriod, PayRun, PayRunStatus, Payslip
from app.utils.error_handling import InvalidDateRangeException

logger = logging.getLogger(__name__)

ZERO = Decimal("0.00")
CENT = Decimal("0.01")
HUNDRED = Decimal("100")

PAYE_REMITTANCE_DAY = 10
PENSION_REMITTANCE_DAY = 7

# Chart of accounts used by the payroll journal
SALARIES_EXPENSE = "Salaries and wages expense"
EMPLOYER_PENSION_EXPENSE = "Employer pension expense"
EMPLOYER_NHF_EXPENSE = "Employer NHF expense"
PAYE_PAYABLE = "PAYE payable"
PENSION_PAYABLE = "Pension payable"
NHF_PAYABLE = "NHF payable"
NHIS_PAYABLE = "NHIS payable"
WAGE_ADVANCES_RECEIVABLE = "Wage advances receivable"
OTHER_DEDUCTIONS_PAYABLE = "Other deductions payable"
NET_SALARIES_PAYABLE = "Net salaries payable"


def remittance_due_date(payment_date: date, day: int) -> date:
    """`day` of the month after payment."""
    return (payment_date + relativedelta(months=1)).replace(day=day)


def _money(value: Decimal) -> str:
    return str(Decimal(value).quantize(CENT))


class PayrollReportService:
    """Service for statutory payroll reports."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _payslip_rows(
        self,
        tenant_id: uuid.UUID,
        period_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        shop_id: Optional[uuid.UUID] = None,
        conditions: Sequence[Any] = (),
    ) -> List[Any]:
        """(payslip, payroll detail, period name, run reference) of completed runs."""
        if start_date and end_date and start_date > end_date:
            raise InvalidDateRangeException(start_date.isoformat(), end_date.isoformat())

        query = (
            select(Payslip, EmployeePayrollDetail, PayrollPeriod.name, PayRun.reference)
            .join(PayRun, Payslip.pay_run_id == PayRun.id)
            .join(PayrollPeriod, PayRun.payroll_period_id == PayrollPeriod.id)
            .outerjoin(EmployeePayrollDetail, EmployeePayrollDetail.employee_id == Payslip.employee_id)
            .where(and_(Payslip.tenant_id == tenant_id, PayRun.status == PayRunStatus.COMPLETED))
        )
        if period_id:
            query = query.where(PayRun.payroll_period_id == period_id)
        if start_date:
            query = query.where(Payslip.payment_date >= start_date)
        if end_date:
            query = query.where(Payslip.payment_date <= end_date)
        if shop_id:
            query = query.where(Payslip.shop_id == shop_id)
        for condition in conditions:
            query = query.where(condition)
        result = await self.db.execute(query.order_by(Payslip.payment_date, Payslip.payslip_number))
        return list(result.all())

    # ===========================================
    # STATUTORY REMITTANCES
    # ===========================================

    async def tax_remittance_report(
        self,
        tenant_id: uuid.UUID,
        period_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """PAYE withheld per employee, for the state revenue service."""
        rows = await self._payslip_rows(
            tenant_id, period_id, start_date, end_date, shop_id, conditions=[Payslip.tax_amount > 0],
        )
        breakdown = []
        for payslip, detail, period_name, _ in rows:
            tax_info = payslip.tax_breakdown or {}
            effective = ZERO
            if payslip.gross_pay > 0:
                effective = (payslip.tax_amount / payslip.gross_pay * HUNDRED).quantize(CENT)
            breakdown.append({
                "employee_id": str(payslip.employee_id),
                "employee_name": payslip.employee_name,
                "tax_id": detail.tax_id_number if detail else None,
                "period": period_name,
                "payment_date": payslip.payment_date.isoformat(),
                "gross_pay": _money(payslip.gross_pay),
                "annual_taxable_income": tax_info.get("taxable_income"),
                "paye": _money(payslip.tax_amount),
                "effective_rate": str(effective),
            })

        last_payment = max((p.payment_date for p, *_ in rows), default=None)
        return {
            "summary": {
                "employee_count": len({p.employee_id for p, *_ in rows}),
                "total_gross": _money(sum((p.gross_pay for p, *_ in rows), ZERO)),
                "total_paye": _money(sum((p.tax_amount for p, *_ in rows), ZERO)),
            },
            "breakdown": breakdown,
            "remittance_info": {
                "authority": "State Internal Revenue Service",
                "due_date": (
                    remittance_due_date(last_payment, PAYE_REMITTANCE_DAY).isoformat() if last_payment else None
                ),
            },
        }

    async def pension_schedule(
        self,
        tenant_id: uuid.UUID,
        period_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """Employee and employer contributions per RSA, grouped by PFA."""
        rows = await self._payslip_rows(
            tenant_id, period_id, start_date, end_date, shop_id,
            conditions=[or_(Payslip.pension_employee > 0, Payslip.pension_employer > 0)],
        )
        schedule = []
        by_pfa: Dict[str, Dict[str, Any]] = {}
        total_employee = total_employer = ZERO
        for payslip, detail, period_name, _ in rows:
            contribution = payslip.pension_employee + payslip.pension_employer
            pfa = (detail.pfa_name if detail else None) or "Unassigned"
            schedule.append({
                "employee_id": str(payslip.employee_id),
                "employee_name": payslip.employee_name,
                "pension_pin": detail.pension_pin if detail else None,
                "pfa": pfa,
                "period": period_name,
                "gross_pay": _money(payslip.gross_pay),
                "employee_contribution": _money(payslip.pension_employee),
                "employer_contribution": _money(payslip.pension_employer),
                "total_contribution": _money(contribution),
            })
            group = by_pfa.setdefault(pfa, {"pfa": pfa, "count": 0, "total": ZERO})
            group["count"] += 1
            group["total"] += contribution
            total_employee += payslip.pension_employee
            total_employer += payslip.pension_employer

        missing_pin = sorted({s["employee_name"] for s in schedule if not s["pension_pin"]})
        if missing_pin:
            logger.warning("Pension schedule has %d employee(s) without an RSA PIN", len(missing_pin))

        last_payment = max((p.payment_date for p, *_ in rows), default=None)
        return {
            "summary": {
                "employee_count": len({p.employee_id for p, *_ in rows}),
                "total_employee_contribution": _money(total_employee),
                "total_employer_contribution": _money(total_employer),
                "total_contribution": _money(total_employee + total_employer),
            },
            "by_pfa": [{**g, "total": _money(g["total"])} for g in sorted(by_pfa.values(), key=lambda g: g["pfa"])],
            "schedule": schedule,
            "missing_pension_pin": missing_pin,
            "remittance_info": {
                "due_date": (
                    remittance_due_date(last_payment, PENSION_REMITTANCE_DAY).isoformat() if last_payment else None
                ),
            },
        }

    # ===========================================
    # ACCOUNTING
    # ===========================================

    async def payroll_journal(
        self,
        tenant_id: uuid.UUID,
        period_id: Optional[uuid.UUID] = None,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Double-entry lines per completed pay run.

        Debits: gross pay and the employer's pension and NHF share.
        Credits: every liability withheld, advances recovered and net pay.
        Each run balances because gross - deductions = net on every payslip.
        """
        rows = await self._payslip_rows(tenant_id, period_id, start_date, end_date, shop_id)
        runs: Dict[str, Dict[str, Any]] = {}
        for payslip, _, period_name, reference in rows:
            run = runs.setdefault(reference, {
                "payment_date": payslip.payment_date,
                "period": period_name,
                "amounts": defaultdict(lambda: ZERO),
            })
            amounts = run["amounts"]
            statutory = (
                payslip.tax_amount + payslip.pension_employee + payslip.nhf_amount
                + payslip.nhis_amount + payslip.wage_advance_deduction
            )
            amounts[SALARIES_EXPENSE] += payslip.gross_pay
            amounts[EMPLOYER_PENSION_EXPENSE] += payslip.pension_employer
            amounts[EMPLOYER_NHF_EXPENSE] += payslip.nhf_employer
            amounts[PAYE_PAYABLE] += payslip.tax_amount
            amounts[PENSION_PAYABLE] += payslip.pension_employee + payslip.pension_employer
            amounts[NHF_PAYABLE] += payslip.nhf_amount + payslip.nhf_employer
            amounts[NHIS_PAYABLE] += payslip.nhis_amount
            amounts[WAGE_ADVANCES_RECEIVABLE] += payslip.wage_advance_deduction
            amounts[OTHER_DEDUCTIONS_PAYABLE] += payslip.total_deductions - statutory
            amounts[NET_SALARIES_PAYABLE] += payslip.net_pay

        debit_accounts = (SALARIES_EXPENSE, EMPLOYER_PENSION_EXPENSE, EMPLOYER_NHF_EXPENSE)
        credit_accounts = (
            PAYE_PAYABLE, PENSION_PAYABLE, NHF_PAYABLE, NHIS_PAYABLE,
            WAGE_ADVANCES_RECEIVABLE, OTHER_DEDUCTIONS_PAYABLE, NET_SALARIES_PAYABLE,
        )
        entries = []
        total_debits = total_credits = ZERO
        for reference, run in runs.items():
            for account in debit_accounts + credit_accounts:
                amount = run["amounts"][account]
                if amount <= 0:
                    continue
                is_debit = account in debit_accounts
                entries.append({
                    "date": run["payment_date"].isoformat(),
                    "reference": reference,
                    "description": f"Payroll - {run['period']}",
                    "account": account,
                    "debit": _money(amount if is_debit else ZERO),
                    "credit": _money(ZERO if is_debit else amount),
                })
                if is_debit:
                    total_debits += amount
                else:
                    total_credits += amount

        return {
            "entries": entries,
            "totals": {
                "debits": _money(total_debits),
                "credits": _money(total_credits),
                "balanced": total_debits == total_credits,
            },
            "pay_runs_count": len(runs),
        }

    async def pay_run_statistics(
        self,
        tenant_id: uuid.UUID,
        year: int,
        shop_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """Completed runs of a year, by the month their period paid out."""
        query = (
            select(PayRun, PayrollPeriod.payment_date)
            .join(PayrollPeriod, PayRun.payroll_period_id == PayrollPeriod.id)
            .where(
                and_(
                    PayRun.tenant_id == tenant_id,
                    PayRun.status == PayRunStatus.COMPLETED,
                    extract("year", PayrollPeriod.payment_date) == year,
                )
            )
        )
        if shop_id:
            query = query.where(PayRun.shop_id == shop_id)
        result = await self.db.execute(query.order_by(PayrollPeriod.payment_date))
        rows = list(result.all())

        fields = ("total_gross", "total_net", "total_tax", "total_employer_contributions")
        months: Dict[str, Dict[str, Any]] = {}
        for pay_run, payment_date in rows:
            key = f"{payment_date.year}-{payment_date.month:02d}"
            month = months.setdefault(key, {"month": key, "pay_runs": 0, "employee_count": 0, **{f: ZERO for f in fields}})
            month["pay_runs"] += 1
            month["employee_count"] += pay_run.calculated_count
            for f in fields:
                month[f] += getattr(pay_run, f)

        return {
            "year": year,
            "total_pay_runs": len(rows),
            **{f: _money(sum((getattr(r, f) for r, _ in rows), ZERO)) for f in fields},
            "monthly_breakdown": [
                {**m, **{f: _money(m[f]) for f in fields}} for m in months.values()
            ],
        }
