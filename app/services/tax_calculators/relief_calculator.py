"""
NairaPay Core - Relief Calculator

Applies the reliefs defined on a tax table to one employee's annual income.

Evaluation order is fixed:
1. Exemption (employee exemption, then the table's low income exemption);
   an exemption short-circuits and no other relief is evaluated
2. CRA (tables where it applies)
3. Rent relief (always recorded with its proof status, even at zero)
4. Everything else in the table's sort order
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Tuple

from app.models.employee import EmployeeTaxSettings
from app.models.tax_table import ReliefType
from app.services.tax_calculators.tax_band_engine import ZERO, to_money
from app.services.tax_calculators.tax_table_resolver import ReliefSpec, TaxTableSnapshot

logger = logging.getLogger(__name__)

# CRA fixed component: floor plus this percent of gross
CRA_GROSS_PERCENT = Decimal("1")

HUNDRED = Decimal("100")


class ProofStatus(str, Enum):
    VALID = "valid"
    EXPIRED = "expired"
    MISSING = "missing"


@dataclass(frozen=True)
class TaxSettingsSnapshot:
    """Per-employee tax overrides, detached from the ORM."""
    is_homeowner: bool = False
    annual_rent_paid: Decimal = ZERO
    is_tax_exempt: bool = False
    exemption_reason: Optional[str] = None
    exemption_expires_at: Optional[date] = None
    active_relief_codes: Optional[Tuple[str, ...]] = None
    rent_proof_document: Optional[str] = None
    rent_proof_expiry: Optional[date] = None

    @classmethod
    def from_model(cls, settings: Optional[EmployeeTaxSettings]) -> "TaxSettingsSnapshot":
        if settings is None:
            return cls()
        codes = settings.active_relief_codes
        return cls(
            is_homeowner=settings.is_homeowner,
            annual_rent_paid=settings.annual_rent_paid or ZERO,
            is_tax_exempt=settings.is_tax_exempt,
            exemption_reason=settings.exemption_reason,
            exemption_expires_at=settings.exemption_expires_at,
            active_relief_codes=tuple(codes) if codes is not None else None,
            rent_proof_document=settings.rent_proof_document,
            rent_proof_expiry=settings.rent_proof_expiry,
        )

    def proof_status(self, on_date: date) -> ProofStatus:
        """Derived, never stored."""
        if not self.rent_proof_document:
            return ProofStatus.MISSING
        if self.rent_proof_expiry is not None and self.rent_proof_expiry < on_date:
            return ProofStatus.EXPIRED
        return ProofStatus.VALID

    def is_currently_exempt(self, on_date: date) -> bool:
        if not self.is_tax_exempt:
            return False
        return self.exemption_expires_at is None or self.exemption_expires_at >= on_date

    def matches(self, eligibility: Mapping[str, Any]) -> bool:
        return not self.unmet_conditions(eligibility)

    def unmet_conditions(self, eligibility: Mapping[str, Any]) -> List[str]:
        """Eligibility keys whose required value this employee does not have."""
        return [key for key, value in eligibility.items() if getattr(self, key, None) != value]

    def has_relief_code(self, code: str) -> bool:
        return self.active_relief_codes is not None and code in self.active_relief_codes


def describe_condition(key: str, required: Any) -> str:
    """Why an employee misses one eligibility condition, e.g. 'homeowner'."""
    if isinstance(required, bool) and key.startswith("is_"):
        label = key[3:].replace("_", " ")
        return f"not {label}" if required else label
    return f"{key.replace('_', ' ')} is not {required}"


@dataclass(frozen=True)
class AppliedRelief:
    code: str
    name: str
    amount: Decimal
    relief_type: ReliefType
    requires_proof: bool = False
    proof_status: Optional[ProofStatus] = None
    note: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "name": self.name,
            "amount": str(self.amount),
            "relief_type": self.relief_type.value,
            "requires_proof": self.requires_proof,
            "proof_status": self.proof_status.value if self.proof_status else None,
            "note": self.note,
        }


@dataclass(frozen=True)
class ReliefResult:
    reliefs: List[AppliedRelief] = field(default_factory=list)
    total_relief: Decimal = ZERO
    taxable_income: Decimal = ZERO
    is_exempt: bool = False
    exemption_reason: Optional[str] = None

    def relief(self, code: str) -> Optional[AppliedRelief]:
        for applied in self.reliefs:
            if applied.code == code:
                return applied
        return None


class ReliefCalculator:
    """Relief evaluation for one tax table."""

    def __init__(self, table: TaxTableSnapshot):
        self.table = table

    def calculate(
        self,
        gross_annual_income: Decimal,
        taxable_base: Optional[Decimal] = None,
        settings: Optional[TaxSettingsSnapshot] = None,
        on_date: Optional[date] = None,
        contributions: Optional[Mapping[str, Decimal]] = None,
    ) -> ReliefResult:
        """
        Args:
            gross_annual_income: Annual gross pay
            taxable_base: Gross less pre-tax deductions (defaults to gross)
            settings: Employee tax settings
            on_date: Evaluation date for exemption and proof expiry
            contributions: Actual annual statutory contributions keyed by
                relief code; used instead of the table rate when present
        """
        settings = settings or TaxSettingsSnapshot()
        on_date = on_date or date.today()
        contributions = contributions or {}
        base = max(ZERO, gross_annual_income if taxable_base is None else taxable_base)

        exemption = self._check_exemption(base, settings, on_date)
        if exemption is not None:
            return exemption

        applied: List[AppliedRelief] = []

        cra = self._cra(gross_annual_income)
        if cra is not None:
            applied.append(cra)

        for relief in self.table.reliefs_of_type(ReliefType.RENT_RELIEF):
            applied.append(self._rent_relief(relief, settings, on_date))

        for relief in self.table.reliefs:
            if not relief.is_active or relief.relief_type in (
                ReliefType.CRA, ReliefType.RENT_RELIEF, ReliefType.LOW_INCOME_EXEMPTION,
            ):
                continue
            line = self._other_relief(relief, gross_annual_income, settings, contributions)
            if line is not None:
                applied.append(line)

        total = sum((r.amount for r in applied), ZERO)
        return ReliefResult(
            reliefs=applied,
            total_relief=total,
            taxable_income=max(ZERO, base - total),
        )

    def _check_exemption(
        self, base: Decimal, settings: TaxSettingsSnapshot, on_date: date,
    ) -> Optional[ReliefResult]:
        if settings.is_currently_exempt(on_date):
            return ReliefResult(
                is_exempt=True,
                exemption_reason=settings.exemption_reason or "Employee is tax exempt",
            )
        if self.table.has_low_income_exemption and base <= self.table.low_income_threshold:
            relief = self.table.reliefs_of_type(ReliefType.LOW_INCOME_EXEMPTION)[0]
            line = AppliedRelief(
                code=relief.code,
                name=relief.name,
                amount=base,
                relief_type=relief.relief_type,
                note=f"Annual income at or below {self.table.low_income_threshold:,.2f}",
            )
            return ReliefResult(
                reliefs=[line],
                total_relief=base,
                is_exempt=True,
                exemption_reason=line.note,
            )
        return None

    def _cra(self, gross: Decimal) -> Optional[AppliedRelief]:
        if not self.table.cra_applicable:
            return None
        reliefs = self.table.reliefs_of_type(ReliefType.CRA)
        if not reliefs:
            return None
        relief = reliefs[0]
        fixed = (relief.amount or ZERO) + gross * CRA_GROSS_PERCENT / HUNDRED
        percentage = gross * (relief.rate or ZERO) / HUNDRED
        amount = to_money(max(fixed, percentage))
        if relief.cap is not None:
            amount = min(amount, relief.cap)
        return AppliedRelief(relief.code, relief.name, amount, relief.relief_type)

    def _rent_relief(
        self, relief: ReliefSpec, settings: TaxSettingsSnapshot, on_date: date,
    ) -> AppliedRelief:
        proof = settings.proof_status(on_date)
        amount = ZERO
        unmet = settings.unmet_conditions(relief.eligibility)
        if unmet:
            note = "Not eligible: " + ", ".join(describe_condition(key, relief.eligibility[key]) for key in unmet)
        elif settings.annual_rent_paid <= 0:
            note = "No rent declared"
        elif relief.requires_proof and proof != ProofStatus.VALID:
            note = f"Rent proof {proof.value}"
        else:
            amount = to_money(settings.annual_rent_paid * (relief.rate or ZERO) / HUNDRED)
            if relief.cap is not None:
                amount = min(amount, relief.cap)
            note = None
        return AppliedRelief(
            code=relief.code,
            name=relief.name,
            amount=amount,
            relief_type=relief.relief_type,
            requires_proof=relief.requires_proof,
            proof_status=proof,
            note=note,
        )

    def _other_relief(
        self,
        relief: ReliefSpec,
        gross: Decimal,
        settings: TaxSettingsSnapshot,
        contributions: Mapping[str, Decimal],
    ) -> Optional[AppliedRelief]:
        claimed = relief.is_automatic or relief.code in contributions or settings.has_relief_code(relief.code)
        if not claimed or not settings.matches(relief.eligibility):
            return None

        if relief.code in contributions:
            amount = to_money(contributions[relief.code])
        elif relief.relief_type == ReliefType.FIXED:
            amount = to_money(relief.amount or ZERO)
        else:
            amount = to_money(gross * (relief.rate or ZERO) / HUNDRED)

        if relief.cap is not None:
            amount = min(amount, relief.cap)
        if amount <= 0:
            return None
        return AppliedRelief(relief.code, relief.name, amount, relief.relief_type, relief.requires_proof)
