"""
NairaPay Core - Tax Band Engine

Progressive marginal PAYE bands applied to annual taxable income.

For each band in ascending order:
    taxable_in_band = min(upper or income, income) - lower, clipped at 0
    tax_in_band     = taxable_in_band * rate / 100

Per-band tax is quantized to the kobo so that the reported breakdown always
sums exactly to the total. Zero or negative income returns zero tax without
evaluating the bands.
"""

from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional, Sequence

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Coerce to Decimal and round half up to the kobo."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def annualize(period_amount: Decimal, periods_per_year: int) -> Decimal:
    """Period amount to annual amount (monthly x12, weekly x52, ...)."""
    return to_money(period_amount * periods_per_year)


def period_tax(annual_tax: Decimal, periods_per_year: int) -> Decimal:
    """Annual tax spread over the pay periods, ROUND_HALF_UP to the kobo."""
    if periods_per_year <= 0:
        raise ValueError("periods_per_year must be positive")
    return (annual_tax / Decimal(periods_per_year)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class BandSpec:
    """Tax band definition."""
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal

    def taxable_in_band(self, taxable_income: Decimal) -> Decimal:
        if taxable_income <= self.lower:
            return ZERO
        top = taxable_income if self.upper is None else min(taxable_income, self.upper)
        return max(ZERO, top - self.lower)

    def calculate_tax(self, taxable_income: Decimal) -> Decimal:
        """Calculate tax for this band."""
        return to_money(self.taxable_in_band(taxable_income) * self.rate / Decimal("100"))

    @property
    def label(self) -> str:
        upper = "above" if self.upper is None else f"to {self.upper:,.0f}"
        return f"{self.lower:,.0f} {upper}"


@dataclass(frozen=True)
class BandTaxLine:
    lower: Decimal
    upper: Optional[Decimal]
    rate: Decimal
    taxable_amount: Decimal
    tax_amount: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lower": str(self.lower),
            "upper": None if self.upper is None else str(self.upper),
            "rate": str(self.rate),
            "taxable_amount": str(self.taxable_amount),
            "tax_amount": str(self.tax_amount),
        }


@dataclass(frozen=True)
class BandTaxResult:
    total_tax: Decimal
    bands: List[BandTaxLine] = field(default_factory=list)
    effective_rate: Decimal = ZERO
    marginal_rate: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_tax": str(self.total_tax),
            "effective_rate": str(self.effective_rate),
            "marginal_rate": str(self.marginal_rate),
            "bands": [line.to_dict() for line in self.bands],
        }


class TaxBandEngine:
    """Applies an ordered set of bands to annual taxable income."""

    def __init__(self, bands: Sequence[BandSpec]):
        self.bands = sorted(bands, key=lambda b: b.lower)

    def calculate(self, taxable_income: Decimal, gross_income: Optional[Decimal] = None) -> BandTaxResult:
        """
        Banded tax on annual taxable income.

        Args:
            taxable_income: Annual income after reliefs
            gross_income: Annual gross income, the effective rate denominator
                (defaults to taxable_income)

        Returns:
            BandTaxResult with per-band lines for every band the income reaches
        """
        gross = taxable_income if gross_income is None else gross_income
        if taxable_income <= 0:
            return BandTaxResult(total_tax=ZERO)

        lines: List[BandTaxLine] = []
        total = ZERO
        marginal = ZERO
        for band in self.bands:
            in_band = band.taxable_in_band(taxable_income)
            if in_band <= 0:
                break
            tax = band.calculate_tax(taxable_income)
            lines.append(BandTaxLine(band.lower, band.upper, band.rate, to_money(in_band), tax))
            total += tax
            marginal = band.rate

        return BandTaxResult(
            total_tax=total,
            bands=lines,
            effective_rate=self.effective_rate(total, gross),
            marginal_rate=marginal,
        )

    @staticmethod
    def effective_rate(total_tax: Decimal, gross_income: Decimal) -> Decimal:
        """total_tax / gross as a percentage; 0 when gross is 0."""
        if gross_income <= 0:
            return ZERO
        return (total_tax / gross_income * Decimal("100")).quantize(CENT, rounding=ROUND_HALF_UP)
