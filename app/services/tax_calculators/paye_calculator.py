"""
NairaPay Core - PAYE Calculator

PAYE (Pay As You Earn) for one employee against one resolved tax table.

Flow: annual gross -> pre-tax deductions -> reliefs -> bands -> minimum tax
-> period tax. The law version only selects the table; there is no
per-version branching here beyond what the table itself declares
(CRA, low income exemption, minimum tax rate).
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from app.models.employee import TaxHandling
from app.models.tax_table import TaxLawVersion
from app.services.tax_calculators.relief_calculator import (
    AppliedRelief,
    ReliefCalculator,
    TaxSettingsSnapshot,
)
from app.services.tax_calculators.tax_band_engine import (
    BandTaxLine,
    TaxBandEngine,
    ZERO,
    period_tax,
    to_money,
)
from app.services.tax_calculators.tax_table_resolver import TaxTableSnapshot


@dataclass(frozen=True)
class TaxCalculationResult:
    law_version: TaxLawVersion
    table_name: str
    gross_annual_income: Decimal
    pre_tax_deductions: Decimal
    total_reliefs: Decimal
    taxable_income: Decimal
    annual_tax: Decimal
    period_tax: Decimal
    periods_per_year: int
    effective_rate: Decimal = ZERO
    marginal_rate: Decimal = ZERO
    reliefs: List[AppliedRelief] = field(default_factory=list)
    bands: List[BandTaxLine] = field(default_factory=list)
    is_exempt: bool = False
    exemption_reason: Optional[str] = None
    minimum_tax_applied: bool = False
    tax_withheld: bool = True
    tax_handling: TaxHandling = TaxHandling.SHOP_CALCULATES
    table_id: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "law_version": self.law_version.value,
            "table_name": self.table_name,
            "table_id": str(self.table_id) if self.table_id else None,
            "gross_annual_income": str(self.gross_annual_income),
            "pre_tax_deductions": str(self.pre_tax_deductions),
            "reliefs": [r.to_dict() for r in self.reliefs],
            "total_reliefs": str(self.total_reliefs),
            "taxable_income": str(self.taxable_income),
            "annual_tax": str(self.annual_tax),
            "period_tax": str(self.period_tax),
            "periods_per_year": self.periods_per_year,
            "effective_rate": str(self.effective_rate),
            "marginal_rate": str(self.marginal_rate),
            "bands": [b.to_dict() for b in self.bands],
            "is_exempt": self.is_exempt,
            "exemption_reason": self.exemption_reason,
            "minimum_tax_applied": self.minimum_tax_applied,
            "tax_withheld": self.tax_withheld,
            "tax_handling": self.tax_handling.value,
        }


class PAYECalculator:
    """
    PAYE calculator for the Nigerian tax system.

    Works for either law version; the behaviour comes from the table.
    """

    def __init__(self, table: TaxTableSnapshot):
        self.table = table
        self.reliefs = ReliefCalculator(table)
        self.engine = TaxBandEngine(table.bands)

    def calculate(
        self,
        gross_annual_income: Decimal,
        settings: Optional[TaxSettingsSnapshot] = None,
        on_date: Optional[date] = None,
        contributions: Optional[Mapping[str, Decimal]] = None,
        pre_tax_deductions: Decimal = ZERO,
        periods_per_year: int = 12,
        tax_handling: TaxHandling = TaxHandling.SHOP_CALCULATES,
        enable_tax_calculations: bool = True,
    ) -> TaxCalculationResult:
        """
        Complete PAYE calculation with all reliefs.

        Args:
            gross_annual_income: Total annual income
            settings: Employee tax settings snapshot
            on_date: Payment date; drives exemption and proof expiry checks
            contributions: Annual statutory contributions by relief code
            pre_tax_deductions: Annual pre-tax deductions, removed before reliefs
            periods_per_year: Pay periods used for the period tax
            tax_handling: Who withholds the tax
            enable_tax_calculations: Shop-level switch for this employee

        Returns:
            TaxCalculationResult
        """
        gross = to_money(gross_annual_income)
        pre_tax = to_money(pre_tax_deductions)
        base = {
            "law_version": self.table.law_version,
            "table_name": self.table.name,
            "table_id": self.table.id,
            "gross_annual_income": gross,
            "pre_tax_deductions": pre_tax,
            "periods_per_year": periods_per_year,
            "tax_handling": tax_handling,
        }

        if tax_handling == TaxHandling.EXEMPT:
            return self._zero(base, is_exempt=True, exemption_reason="Tax handling set to exempt")
        if tax_handling == TaxHandling.EMPLOYEE_CALCULATES or not enable_tax_calculations:
            return self._zero(
                base,
                exemption_reason="Employee settles own tax",
                tax_withheld=False,
            )

        relief_result = self.reliefs.calculate(
            gross_annual_income=gross,
            taxable_base=gross - pre_tax,
            settings=settings,
            on_date=on_date,
            contributions=contributions,
        )
        if relief_result.is_exempt:
            return self._zero(
                base,
                is_exempt=True,
                exemption_reason=relief_result.exemption_reason,
                reliefs=relief_result.reliefs,
                total_reliefs=relief_result.total_relief,
            )

        banded = self.engine.calculate(relief_result.taxable_income, gross)
        annual_tax = banded.total_tax
        minimum_applied = False
        if self.table.minimum_tax_rate:
            minimum_tax = to_money(gross * self.table.minimum_tax_rate / Decimal("100"))
            if annual_tax < minimum_tax:
                annual_tax = minimum_tax
                minimum_applied = True

        return TaxCalculationResult(
            **base,
            reliefs=relief_result.reliefs,
            total_reliefs=relief_result.total_relief,
            taxable_income=relief_result.taxable_income,
            annual_tax=annual_tax,
            period_tax=period_tax(annual_tax, periods_per_year),
            effective_rate=TaxBandEngine.effective_rate(annual_tax, gross),
            marginal_rate=banded.marginal_rate,
            bands=banded.bands,
            minimum_tax_applied=minimum_applied,
        )

    @staticmethod
    def _zero(base: Dict[str, Any], **overrides: Any) -> TaxCalculationResult:
        values = dict(
            total_reliefs=ZERO,
            taxable_income=ZERO,
            annual_tax=ZERO,
            period_tax=ZERO,
        )
        values.update(base)
        values.update(overrides)
        return TaxCalculationResult(**values)


def compare_tax_regimes(
    gross_annual_income: Decimal,
    tables: List[TaxTableSnapshot],
    settings: Optional[TaxSettingsSnapshot] = None,
    on_date: Optional[date] = None,
    contributions: Optional[Mapping[str, Decimal]] = None,
) -> Dict[str, Any]:
    """
    Same employee under each table, with the change relative to the first.

    Used to show staff the effect of the PITA 2011 to NTA 2025 transition.
    """
    results = [
        PAYECalculator(table).calculate(
            gross_annual_income,
            settings=settings,
            on_date=on_date,
            contributions=contributions,
        )
        for table in tables
    ]
    baseline = results[0].annual_tax if results else ZERO
    return {
        "gross_annual_income": str(to_money(gross_annual_income)),
        "regimes": [
            {
                **result.to_dict(),
                "difference_from_first": str(result.annual_tax - baseline),
            }
            for result in results
        ],
    }
