"""
NairaPay Core - Deduction Aggregator

Builds one pay period's deduction lines and caps them at gross pay.

Categories and their application priority:
- tax (10), pension (20), NHF (30), NHIS (40)
- custom deductions (100 + their own priority)
- wage advance installments (1000+), always last

When the requested total exceeds gross pay, lines are applied in priority
order; the line that crosses the limit is partially applied and every later
line gets zero. The cut is reported as a PartialDeductionShortfall warning.
Net pay is never negative.
"""

import logging
from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Tuple

from app.models.employee import DeductionBase, DeductionType
from app.services.payroll_profile import CustomDeductionSpec, PayrollProfile, WageAdvanceInstallment
from app.services.tax_calculators.tax_band_engine import ZERO, to_money
from app.services.tax_calculators.tax_table_resolver import TaxTableSnapshot

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

CATEGORY_TAX = "tax"
CATEGORY_STATUTORY = "statutory"
CATEGORY_CUSTOM = "custom"
CATEGORY_WAGE_ADVANCE = "wage_advance"

PAYE_CODE = "PAYE"
PENSION_CODE = "PENSION"
NHF_CODE = "NHF"
NHIS_CODE = "NHIS"
WAGE_ADVANCE_CODE = "WAGE_ADVANCE"

PRIORITY_TAX = 10
PRIORITY_PENSION = 20
PRIORITY_NHF = 30
PRIORITY_NHIS = 40
PRIORITY_CUSTOM_BASE = 100
PRIORITY_WAGE_ADVANCE = 1000

PARTIAL_DEDUCTION_SHORTFALL = "PartialDeductionShortfall"


@dataclass(frozen=True)
class DeductionLine:
    code: str
    label: str
    category: str
    priority: int
    requested: Decimal
    applied: Decimal = ZERO
    is_pre_tax: bool = False
    reference: Optional[str] = None

    @property
    def shortfall(self) -> Decimal:
        return self.requested - self.applied

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.code,
            "label": self.label,
            "category": self.category,
            "priority": self.priority,
            "requested": str(self.requested),
            "applied": str(self.applied),
            "amount": str(self.applied),
            "is_pre_tax": self.is_pre_tax,
        }
        if self.reference:
            data["reference"] = self.reference
        return data


@dataclass(frozen=True)
class StatutoryAmounts:
    """Period statutory contributions before capping."""
    pension_employee: Decimal = ZERO
    pension_employer: Decimal = ZERO
    nhf: Decimal = ZERO
    nhis: Decimal = ZERO
    nhf_employer: Decimal = ZERO

    @property
    def employer_total(self) -> Decimal:
        return self.pension_employer + self.nhf_employer


@dataclass(frozen=True)
class DeductionResult:
    lines: List[DeductionLine] = field(default_factory=list)
    total_requested: Decimal = ZERO
    total_applied: Decimal = ZERO
    warnings: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def shortfall(self) -> Decimal:
        return self.total_requested - self.total_applied

    def applied(self, code: str) -> Decimal:
        return sum((line.applied for line in self.lines if line.code == code), ZERO)

    def applied_by_category(self, category: str) -> Decimal:
        return sum((line.applied for line in self.lines if line.category == category), ZERO)


class DeductionAggregator:
    """Deductions for one employee and one pay period."""

    def __init__(self, table: Optional[TaxTableSnapshot], periods_per_year: int):
        self.table = table
        self.periods_per_year = periods_per_year

    # ------------------------------------------------------------------
    # Statutory
    # ------------------------------------------------------------------

    def statutory_amounts(
        self,
        profile: PayrollProfile,
        basic_pay: Decimal,
        pensionable_pay: Decimal,
        nhf_employer_rate: Optional[Decimal] = None,
    ) -> StatutoryAmounts:
        """
        Pension on the pensionable base (employee and employer separately,
        each bounded by the table's annual floor/ceiling scaled to the
        period), NHF on basic, NHIS as a fixed amount. The employer NHF share
        applies only to NHF members and only when the shop configures a rate.
        """
        pension_employee = pension_employer = ZERO
        if profile.pension_enabled and pensionable_pay > 0:
            pension_employee = self._bounded_pension(pensionable_pay * profile.pension_employee_rate / HUNDRED)
            pension_employer = self._bounded_pension(pensionable_pay * profile.pension_employer_rate / HUNDRED)

        nhf = nhf_employer = ZERO
        if profile.nhf_enabled and basic_pay > 0:
            nhf = to_money(basic_pay * profile.nhf_rate / HUNDRED)
            if nhf_employer_rate:
                nhf_employer = to_money(basic_pay * nhf_employer_rate / HUNDRED)

        nhis = ZERO
        if profile.nhis_enabled and profile.nhis_amount:
            nhis = to_money(profile.nhis_amount)

        return StatutoryAmounts(
            pension_employee=pension_employee,
            pension_employer=pension_employer,
            nhf=nhf,
            nhis=nhis,
            nhf_employer=nhf_employer,
        )

    def _bounded_pension(self, amount: Decimal) -> Decimal:
        amount = to_money(amount)
        if self.table is None:
            return amount
        if self.table.pension_floor is not None:
            amount = max(amount, to_money(self.table.pension_floor / self.periods_per_year))
        if self.table.pension_ceiling is not None:
            amount = min(amount, to_money(self.table.pension_ceiling / self.periods_per_year))
        return amount

    @staticmethod
    def statutory_lines(amounts: StatutoryAmounts) -> List[DeductionLine]:
        lines = []
        for code, label, priority, amount in (
            (PENSION_CODE, "Pension (employee)", PRIORITY_PENSION, amounts.pension_employee),
            (NHF_CODE, "National Housing Fund", PRIORITY_NHF, amounts.nhf),
            (NHIS_CODE, "National Health Insurance", PRIORITY_NHIS, amounts.nhis),
        ):
            if amount > 0:
                lines.append(DeductionLine(code, label, CATEGORY_STATUTORY, priority, amount))
        return lines

    @staticmethod
    def tax_line(period_tax: Decimal) -> List[DeductionLine]:
        if period_tax <= 0:
            return []
        return [DeductionLine(PAYE_CODE, "PAYE income tax", CATEGORY_TAX, PRIORITY_TAX, period_tax)]

    # ------------------------------------------------------------------
    # Custom
    # ------------------------------------------------------------------

    def custom_lines(
        self,
        profile: PayrollProfile,
        period_start: date,
        period_end: date,
        gross_pay: Decimal,
        basic_pay: Decimal,
        pensionable_pay: Decimal,
    ) -> Tuple[List[DeductionLine], List[Dict[str, Any]]]:
        """Active custom deductions for the period, plus skip warnings."""
        if not profile.other_deductions_enabled:
            return [], []

        bases = {
            DeductionBase.GROSS: gross_pay,
            DeductionBase.BASIC: basic_pay,
            DeductionBase.PENSIONABLE: pensionable_pay,
        }
        lines: List[DeductionLine] = []
        warnings: List[Dict[str, Any]] = []
        for spec in profile.custom_deductions:
            if not spec.applies_to(period_start, period_end):
                continue
            amount = self._custom_amount(spec, bases)
            if amount < 0:
                logger.warning(
                    "Skipping negative custom deduction %s for employee %s",
                    spec.code, profile.employee_id,
                )
                warnings.append({
                    "type": "NegativeDeductionSkipped",
                    "code": spec.code,
                    "amount": str(amount),
                })
                continue
            if amount == 0:
                continue
            lines.append(DeductionLine(
                code=spec.code,
                label=spec.name,
                category=CATEGORY_CUSTOM,
                priority=PRIORITY_CUSTOM_BASE + spec.priority,
                requested=amount,
                is_pre_tax=spec.is_pre_tax,
            ))
        return lines, warnings

    @staticmethod
    def _custom_amount(spec: CustomDeductionSpec, bases: Dict[DeductionBase, Decimal]) -> Decimal:
        if spec.deduction_type == DeductionType.PERCENTAGE:
            return to_money(bases[spec.calculation_base] * (spec.rate or ZERO) / HUNDRED)
        return to_money(spec.amount or ZERO)

    # ------------------------------------------------------------------
    # Wage advances
    # ------------------------------------------------------------------

    @staticmethod
    def wage_advance_lines(installments: Sequence[WageAdvanceInstallment]) -> List[DeductionLine]:
        return [
            DeductionLine(
                code=WAGE_ADVANCE_CODE,
                label="Wage advance repayment",
                category=CATEGORY_WAGE_ADVANCE,
                priority=PRIORITY_WAGE_ADVANCE + index,
                requested=to_money(inst.amount),
                reference=str(inst.wage_advance_id),
            )
            for index, inst in enumerate(installments)
            if inst.amount > 0
        ]

    # ------------------------------------------------------------------
    # Cap
    # ------------------------------------------------------------------

    @staticmethod
    def apply_cap(gross_pay: Decimal, lines: Sequence[DeductionLine]) -> DeductionResult:
        """Apply lines in priority order without letting the total pass gross pay."""
        ordered = sorted(lines, key=lambda line: (line.priority, line.code))
        remaining = max(ZERO, gross_pay)
        applied_lines: List[DeductionLine] = []
        for line in ordered:
            applied = min(line.requested, remaining)
            remaining -= applied
            applied_lines.append(replace(line, applied=applied))

        total_requested = sum((line.requested for line in applied_lines), ZERO)
        total_applied = sum((line.applied for line in applied_lines), ZERO)
        warnings: List[Dict[str, Any]] = []
        if total_requested > total_applied:
            affected = [line.code for line in applied_lines if line.shortfall > 0]
            warnings.append({
                "type": PARTIAL_DEDUCTION_SHORTFALL,
                "requested_total": str(total_requested),
                "applied_total": str(total_applied),
                "shortfall": str(total_requested - total_applied),
                "affected_codes": affected,
            })
            logger.warning(
                "Deductions capped at gross pay %s: requested %s, shortfall %s on %s",
                gross_pay, total_requested, total_requested - total_applied, ", ".join(affected),
            )
        return DeductionResult(
            lines=applied_lines,
            total_requested=total_requested,
            total_applied=total_applied,
            warnings=warnings,
        )
