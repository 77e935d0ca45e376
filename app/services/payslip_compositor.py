"""
NairaPay Core - Payslip Compositor

Earnings, PAYE and deductions for one employee and one pay period, merged
into a payslip whose figures reconcile to the kobo:

    gross_pay - total_deductions == net_pay

Everything here is pure: inputs are frozen profiles and table snapshots,
so the same inputs always produce the same payslip.
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

from app.models.employee import PayFrequency, PayType
from app.services.deduction_aggregator import (
    CATEGORY_WAGE_ADVANCE,
    NHF_CODE,
    NHIS_CODE,
    PAYE_CODE,
    PENSION_CODE,
    DeductionAggregator,
    DeductionResult,
)
from app.services.payroll_profile import (
    EarningsInput,
    PayrollProfile,
    ShopPolicy,
    WageAdvanceInstallment,
)
from app.services.tax_calculators.paye_calculator import PAYECalculator, TaxCalculationResult
from app.services.tax_calculators.statutory_tables import NHF_RELIEF, NHIS_RELIEF, PENSION_RELIEF
from app.services.tax_calculators.tax_band_engine import ZERO, annualize, to_money
from app.services.tax_calculators.tax_table_resolver import TaxTableSnapshot

logger = logging.getLogger(__name__)

WEEKS_PER_YEAR = Decimal("52")
WORKING_DAYS_PER_YEAR = Decimal("260")

# Allowances that count towards the pension base
PENSIONABLE_ALLOWANCES = ("housing", "transport")


class PayslipInvariantError(ArithmeticError):
    """Composed figures do not reconcile."""


@dataclass(frozen=True)
class PeriodWindow:
    start_date: date
    end_date: date
    payment_date: date
    frequency: PayFrequency = PayFrequency.MONTHLY

    @property
    def periods_per_year(self) -> int:
        return self.frequency.periods_per_year


@dataclass(frozen=True)
class EarningsBreakdown:
    basic_pay: Decimal = ZERO
    regular_hours: Decimal = ZERO
    overtime_hours: Decimal = ZERO
    overtime_pay: Decimal = ZERO
    days_worked: Decimal = ZERO
    commission: Decimal = ZERO
    commission_capped: bool = False
    bonus: Decimal = ZERO
    allowances: Dict[str, Decimal] = field(default_factory=dict)
    gross_pay: Decimal = ZERO
    pensionable_pay: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "basic_pay": str(self.basic_pay),
            "regular_hours": str(self.regular_hours),
            "overtime_hours": str(self.overtime_hours),
            "overtime_pay": str(self.overtime_pay),
            "days_worked": str(self.days_worked),
            "commission": str(self.commission),
            "commission_capped": self.commission_capped,
            "bonus": str(self.bonus),
            "allowances": {k: str(v) for k, v in self.allowances.items()},
            "gross_pay": str(self.gross_pay),
            "pensionable_pay": str(self.pensionable_pay),
        }


class EarningsCalculator:
    """Period earnings by pay type."""

    def __init__(self, policy: ShopPolicy):
        self.policy = policy

    def calculate(
        self,
        profile: PayrollProfile,
        inputs: EarningsInput,
        frequency: PayFrequency,
    ) -> EarningsBreakdown:
        periods = Decimal(frequency.periods_per_year)
        standard_hours = profile.standard_hours_per_week * WEEKS_PER_YEAR / periods
        overtime_threshold = self.policy.overtime_threshold_hours * WEEKS_PER_YEAR / periods
        multiplier = self.policy.overtime_multiplier

        regular_hours = overtime_hours = overtime_pay = days = ZERO
        commission = ZERO
        capped = False

        if profile.pay_type == PayType.HOURLY:
            hours = inputs.hours_worked if inputs.hours_worked is not None else standard_hours
            if inputs.overtime_hours is not None:
                regular_hours, overtime_hours = hours, inputs.overtime_hours
            else:
                regular_hours = min(hours, overtime_threshold)
                overtime_hours = max(ZERO, hours - overtime_threshold)
            basic = to_money(regular_hours * profile.pay_amount)
            overtime_pay = to_money(overtime_hours * profile.pay_amount * multiplier)
        elif profile.pay_type == PayType.DAILY:
            days = inputs.days_worked if inputs.days_worked is not None else WORKING_DAYS_PER_YEAR / periods
            days = days.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
            basic = to_money(days * profile.pay_amount)
        else:
            basic = self.convert_salary(profile.pay_amount, profile.pay_frequency, frequency)
            if inputs.overtime_hours:
                overtime_hours = inputs.overtime_hours
                hourly_equivalent = basic / standard_hours if standard_hours > 0 else ZERO
                overtime_pay = to_money(overtime_hours * hourly_equivalent * multiplier)
            if profile.pay_type == PayType.COMMISSION_BASED:
                commission = to_money(inputs.commission)
                cap = self.policy.commission_cap
                if cap is not None and commission > cap:
                    commission, capped = to_money(cap), True

        bonus = to_money(inputs.bonus)
        allowances = {name: to_money(amount) for name, amount in inputs.allowances}
        gross = basic + overtime_pay + commission + bonus + sum(allowances.values(), ZERO)
        pensionable = basic + sum(
            (amount for name, amount in allowances.items() if name in PENSIONABLE_ALLOWANCES), ZERO,
        )
        return EarningsBreakdown(
            basic_pay=basic,
            regular_hours=to_money(regular_hours),
            overtime_hours=to_money(overtime_hours),
            overtime_pay=overtime_pay,
            days_worked=to_money(days),
            commission=commission,
            commission_capped=capped,
            bonus=bonus,
            allowances=allowances,
            gross_pay=to_money(gross),
            pensionable_pay=to_money(pensionable),
        )

    @staticmethod
    def convert_salary(amount: Decimal, source: PayFrequency, target: PayFrequency) -> Decimal:
        """Salary quoted per `source` period expressed per `target` period."""
        if source == target:
            return to_money(amount)
        return to_money(amount * source.periods_per_year / target.periods_per_year)


@dataclass(frozen=True)
class ComposedPayslip:
    employee_id: Any
    earnings: EarningsBreakdown
    tax: TaxCalculationResult
    deductions: DeductionResult
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    tax_amount: Decimal
    pension_employee: Decimal
    pension_employer: Decimal
    nhf_amount: Decimal
    nhis_amount: Decimal
    wage_advance_deduction: Decimal
    employer_contributions: Decimal
    wage_advance_applied: Dict[str, Decimal] = field(default_factory=dict)
    nhf_employer: Decimal = ZERO
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    def deductions_breakdown(self) -> Dict[str, Any]:
        return {
            "lines": [line.to_dict() for line in self.deductions.lines],
            "total_requested": str(self.deductions.total_requested),
            "total_applied": str(self.deductions.total_applied),
            "employer": {
                "pension": str(self.pension_employer),
                "nhf": str(self.nhf_employer),
                "total": str(self.employer_contributions),
            },
        }


class PayslipCompositor:
    """Composes one payslip for one employee against one tax table."""

    def __init__(self, table: TaxTableSnapshot, policy: Optional[ShopPolicy] = None):
        self.table = table
        self.policy = policy or ShopPolicy()
        self.earnings_calculator = EarningsCalculator(self.policy)
        self.paye = PAYECalculator(table)

    def compose(
        self,
        profile: PayrollProfile,
        period: PeriodWindow,
        inputs: Optional[EarningsInput] = None,
        installments: Sequence[WageAdvanceInstallment] = (),
    ) -> ComposedPayslip:
        inputs = inputs or EarningsInput()
        periods = period.periods_per_year
        aggregator = DeductionAggregator(self.table, periods)

        earnings = self.earnings_calculator.calculate(profile, inputs, period.frequency)
        gross = earnings.gross_pay

        statutory = aggregator.statutory_amounts(
            profile, earnings.basic_pay, earnings.pensionable_pay, self.policy.nhf_employer_rate,
        )
        custom, warnings = aggregator.custom_lines(
            profile, period.start_date, period.end_date,
            gross, earnings.basic_pay, earnings.pensionable_pay,
        )
        pre_tax = sum((line.requested for line in custom if line.is_pre_tax), ZERO)

        contributions = {PENSION_RELIEF: annualize(statutory.pension_employee, periods)}
        if statutory.nhf > 0:
            contributions[NHF_RELIEF] = annualize(statutory.nhf, periods)
        if statutory.nhis > 0:
            contributions[NHIS_RELIEF] = annualize(statutory.nhis, periods)

        tax = self.paye.calculate(
            gross_annual_income=annualize(gross, periods),
            settings=profile.tax_settings,
            on_date=period.payment_date,
            contributions=contributions,
            pre_tax_deductions=annualize(pre_tax, periods),
            periods_per_year=periods,
            tax_handling=profile.tax_handling,
            enable_tax_calculations=profile.enable_tax_calculations,
        )

        lines = (
            aggregator.tax_line(tax.period_tax)
            + aggregator.statutory_lines(statutory)
            + custom
            + aggregator.wage_advance_lines(installments)
        )
        result = aggregator.apply_cap(gross, lines)
        warnings = warnings + result.warnings

        total_deductions = result.total_applied
        net_pay = gross - total_deductions
        wage_advance_applied = {
            line.reference: line.applied
            for line in result.lines
            if line.category == CATEGORY_WAGE_ADVANCE and line.applied > 0
        }

        payslip = ComposedPayslip(
            employee_id=profile.employee_id,
            earnings=earnings,
            tax=tax,
            deductions=result,
            gross_pay=gross,
            total_deductions=total_deductions,
            net_pay=net_pay,
            tax_amount=result.applied(PAYE_CODE),
            pension_employee=result.applied(PENSION_CODE),
            pension_employer=statutory.pension_employer,
            nhf_amount=result.applied(NHF_CODE),
            nhis_amount=result.applied(NHIS_CODE),
            wage_advance_deduction=result.applied_by_category(CATEGORY_WAGE_ADVANCE),
            employer_contributions=statutory.employer_total,
            wage_advance_applied=wage_advance_applied,
            nhf_employer=statutory.nhf_employer,
            warnings=warnings,
        )
        verify_payslip(payslip)
        return payslip


def verify_payslip(payslip: ComposedPayslip) -> None:
    """
    Raises:
        PayslipInvariantError: figures do not reconcile to the kobo
    """
    values = (payslip.gross_pay, payslip.total_deductions, payslip.net_pay)
    if any(v != v.quantize(Decimal("0.01")) for v in values):
        raise PayslipInvariantError(f"Payslip amounts are not whole kobo: {values}")
    if payslip.gross_pay - payslip.total_deductions != payslip.net_pay:
        raise PayslipInvariantError(
            f"gross {payslip.gross_pay} - deductions {payslip.total_deductions} != net {payslip.net_pay}"
        )
    line_total = sum((line.applied for line in payslip.deductions.lines), ZERO)
    if line_total != payslip.total_deductions:
        raise PayslipInvariantError(
            f"deduction lines sum to {line_total}, total is {payslip.total_deductions}"
        )
    if payslip.net_pay < 0:
        raise PayslipInvariantError(f"negative net pay {payslip.net_pay}")
