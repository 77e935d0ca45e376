"""
NairaPay Core - Statutory PAYE Tables

Nigeria personal income tax tables for the two law versions.

PITA 2011 (effective 2011-01-01 until 2025-12-31):
- ₦0 - ₦300,000: 7%
- ₦300,000 - ₦600,000: 11%
- ₦600,000 - ₦1,100,000: 15%
- ₦1,100,000 - ₦1,600,000: 19%
- ₦1,600,000 - ₦3,200,000: 21%
- Above ₦3,200,000: 24%
- CRA: higher of (₦200,000 + 1% of gross) and 20% of gross
- Minimum tax: 1% of gross income

NTA 2025 (effective 2026-01-01):
- ₦0 - ₦800,000: 0%
- ₦800,000 - ₦3,000,000: 15%
- ₦3,000,000 - ₦12,000,000: 18%
- ₦12,000,000 - ₦25,000,000: 21%
- ₦25,000,000 - ₦50,000,000: 23%
- Above ₦50,000,000: 25%
- No CRA; low income exemption at ₦800,000
- Rent relief: 20% of annual rent, capped at ₦500,000 (non-homeowners, with proof)
"""

from datetime import date
from decimal import Decimal
from typing import List, Optional
import uuid

from app.models.tax_table import ReliefType, TaxBand, TaxLawVersion, TaxRelief, TaxTable
from app.services.tax_calculators.tax_band_engine import BandSpec
from app.services.tax_calculators.tax_table_resolver import ReliefSpec, TaxTableSnapshot

PITA_CUTOVER_DATE = date(2026, 1, 1)

# Relief codes shared by both law versions
CRA_CODE = "CRA"
PENSION_RELIEF = "PENSION_RELIEF"
NHF_RELIEF = "NHF_RELIEF"
NHIS_RELIEF = "NHIS_RELIEF"
RENT_RELIEF = "RENT_RELIEF"
LOW_INCOME_EXEMPTION = "LOW_INCOME_EXEMPTION"


def _band(lower: str, upper: Optional[str], rate: str) -> BandSpec:
    return BandSpec(Decimal(lower), Decimal(upper) if upper is not None else None, Decimal(rate))


_CONTRIBUTION_RELIEFS = (
    ReliefSpec(
        code=PENSION_RELIEF,
        name="Pension contribution",
        relief_type=ReliefType.PERCENTAGE,
        rate=Decimal("8"),
        is_automatic=True,
        sort_order=30,
    ),
    ReliefSpec(
        code=NHF_RELIEF,
        name="National Housing Fund contribution",
        relief_type=ReliefType.PERCENTAGE,
        rate=Decimal("2.5"),
        sort_order=40,
    ),
    ReliefSpec(
        code=NHIS_RELIEF,
        name="National Health Insurance contribution",
        relief_type=ReliefType.PERCENTAGE,
        rate=Decimal("1.75"),
        sort_order=50,
    ),
)


PITA_2011_TABLE = TaxTableSnapshot(
    jurisdiction="NG",
    effective_year=2011,
    name="Nigeria PAYE - PITA 2011",
    law_version=TaxLawVersion.PITA_2011,
    effective_from=date(2011, 1, 1),
    effective_to=PITA_CUTOVER_DATE,
    bands=(
        _band("0", "300000", "7"),
        _band("300000", "600000", "11"),
        _band("600000", "1100000", "15"),
        _band("1100000", "1600000", "19"),
        _band("1600000", "3200000", "21"),
        _band("3200000", None, "24"),
    ),
    reliefs=(
        ReliefSpec(
            code=CRA_CODE,
            name="Consolidated Relief Allowance",
            relief_type=ReliefType.CRA,
            amount=Decimal("200000"),
            rate=Decimal("20"),
            is_automatic=True,
            sort_order=10,
        ),
    ) + _CONTRIBUTION_RELIEFS,
    cra_applicable=True,
    minimum_tax_rate=Decimal("1"),
)


NTA_2025_TABLE = TaxTableSnapshot(
    jurisdiction="NG",
    effective_year=2026,
    name="Nigeria PAYE - NTA 2025",
    law_version=TaxLawVersion.NTA_2025,
    effective_from=PITA_CUTOVER_DATE,
    effective_to=None,
    bands=(
        _band("0", "800000", "0"),
        _band("800000", "3000000", "15"),
        _band("3000000", "12000000", "18"),
        _band("12000000", "25000000", "21"),
        _band("25000000", "50000000", "23"),
        _band("50000000", None, "25"),
    ),
    reliefs=(
        ReliefSpec(
            code=LOW_INCOME_EXEMPTION,
            name="Low income exemption",
            relief_type=ReliefType.LOW_INCOME_EXEMPTION,
            is_automatic=True,
            sort_order=0,
        ),
        ReliefSpec(
            code=RENT_RELIEF,
            name="Rent relief",
            relief_type=ReliefType.RENT_RELIEF,
            rate=Decimal("20"),
            cap=Decimal("500000"),
            requires_proof=True,
            is_automatic=True,
            eligibility={"is_homeowner": False},
            sort_order=20,
        ),
    ) + _CONTRIBUTION_RELIEFS,
    low_income_threshold=Decimal("800000"),
    cra_applicable=False,
)


STATUTORY_TABLES = (PITA_2011_TABLE, NTA_2025_TABLE)


def build_tax_table_model(snapshot: TaxTableSnapshot, tenant_id: Optional[uuid.UUID] = None) -> TaxTable:
    """ORM rows for a snapshot, used by the seed script and the admin API."""
    table = TaxTable(
        tenant_id=tenant_id,
        jurisdiction=snapshot.jurisdiction,
        effective_year=snapshot.effective_year,
        name=snapshot.name,
        description=snapshot.law_version.display_name,
        effective_from=snapshot.effective_from,
        effective_to=snapshot.effective_to,
        law_version=snapshot.law_version,
        low_income_threshold=snapshot.low_income_threshold,
        cra_applicable=snapshot.cra_applicable,
        minimum_tax_rate=snapshot.minimum_tax_rate,
        pension_floor=snapshot.pension_floor,
        pension_ceiling=snapshot.pension_ceiling,
        is_active=True,
    )
    table.bands = [
        TaxBand(band_order=i, lower_limit=b.lower, upper_limit=b.upper, rate=b.rate)
        for i, b in enumerate(snapshot.bands)
    ]
    table.reliefs = [
        TaxRelief(
            code=r.code,
            name=r.name,
            relief_type=r.relief_type,
            amount=r.amount,
            rate=r.rate,
            cap=r.cap,
            requires_proof=r.requires_proof,
            is_automatic=r.is_automatic,
            is_active=r.is_active,
            eligibility=dict(r.eligibility) or None,
            sort_order=r.sort_order,
        )
        for r in snapshot.reliefs
    ]
    return table


def statutory_table_models() -> List[TaxTable]:
    return [build_tax_table_model(snapshot) for snapshot in STATUTORY_TABLES]
