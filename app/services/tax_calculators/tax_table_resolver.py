"""
NairaPay Core - Tax Table Resolver

Selects the PAYE table for (jurisdiction, date). Selection is purely by
effective date: effective_from <= date < effective_to (open-ended when
effective_to is NULL). Tenant tables take precedence over system tables.
Zero or more than one match in the winning tier raises NoApplicableTaxTable.

Resolved tables are converted to frozen snapshots so the calculators never
touch the ORM and can run in worker threads.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.tax_table import ReliefType, TaxLawVersion, TaxTable
from app.services.tax_calculators.tax_band_engine import BandSpec
from app.utils.error_handling import ConfigurationError, NoApplicableTaxTable

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReliefSpec:
    code: str
    name: str
    relief_type: ReliefType
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    cap: Optional[Decimal] = None
    requires_proof: bool = False
    is_automatic: bool = False
    is_active: bool = True
    eligibility: Dict[str, Any] = field(default_factory=dict)
    sort_order: int = 0


@dataclass(frozen=True)
class TaxTableSnapshot:
    """Immutable view of a tax table and its bands and reliefs."""
    jurisdiction: str
    effective_year: int
    name: str
    law_version: TaxLawVersion
    effective_from: date
    effective_to: Optional[date]
    bands: Tuple[BandSpec, ...]
    reliefs: Tuple[ReliefSpec, ...] = ()
    low_income_threshold: Optional[Decimal] = None
    cra_applicable: bool = False
    minimum_tax_rate: Optional[Decimal] = None
    pension_floor: Optional[Decimal] = None
    pension_ceiling: Optional[Decimal] = None
    id: Optional[uuid.UUID] = None
    tenant_id: Optional[uuid.UUID] = None

    @classmethod
    def from_model(cls, table: TaxTable) -> "TaxTableSnapshot":
        bands = tuple(
            BandSpec(lower=b.lower_limit, upper=b.upper_limit, rate=b.rate)
            for b in sorted(table.bands, key=lambda b: b.band_order)
        )
        validate_bands(bands, table.name)
        reliefs = tuple(
            ReliefSpec(
                code=r.code,
                name=r.name,
                relief_type=r.relief_type,
                amount=r.amount,
                rate=r.rate,
                cap=r.cap,
                requires_proof=r.requires_proof,
                is_automatic=r.is_automatic,
                is_active=r.is_active,
                eligibility=dict(r.eligibility or {}),
                sort_order=r.sort_order,
            )
            for r in sorted(table.reliefs, key=lambda r: r.sort_order)
        )
        return cls(
            id=table.id,
            tenant_id=table.tenant_id,
            jurisdiction=table.jurisdiction,
            effective_year=table.effective_year,
            name=table.name,
            law_version=table.law_version,
            effective_from=table.effective_from,
            effective_to=table.effective_to,
            bands=bands,
            reliefs=reliefs,
            low_income_threshold=table.low_income_threshold,
            cra_applicable=table.cra_applicable,
            minimum_tax_rate=table.minimum_tax_rate,
            pension_floor=table.pension_floor,
            pension_ceiling=table.pension_ceiling,
        )

    def covers(self, on_date: date) -> bool:
        if on_date < self.effective_from:
            return False
        return self.effective_to is None or on_date < self.effective_to

    def relief(self, code: str) -> Optional[ReliefSpec]:
        for relief in self.reliefs:
            if relief.code == code and relief.is_active:
                return relief
        return None

    def reliefs_of_type(self, relief_type: ReliefType) -> List[ReliefSpec]:
        return [r for r in self.reliefs if r.relief_type == relief_type and r.is_active]

    @property
    def has_low_income_exemption(self) -> bool:
        return self.low_income_threshold is not None and bool(
            self.reliefs_of_type(ReliefType.LOW_INCOME_EXEMPTION)
        )


def validate_bands(bands: Iterable[BandSpec], table_name: str = "tax table") -> None:
    """
    Bands must start at 0 and be contiguous, non-overlapping and strictly
    increasing; only the last band may be open-ended.
    """
    bands = list(bands)
    if not bands:
        raise ConfigurationError(f"{table_name} has no tax bands")
    if bands[0].lower != 0:
        raise ConfigurationError(
            f"{table_name}: first band must start at 0, got {bands[0].lower}",
            details={"band": 0},
        )
    for index, band in enumerate(bands):
        if band.rate < 0:
            raise ConfigurationError(f"{table_name}: band {index} has a negative rate", details={"band": index})
        is_last = index == len(bands) - 1
        if band.upper is None:
            if not is_last:
                raise ConfigurationError(
                    f"{table_name}: open-ended band {index} is not the last band",
                    details={"band": index},
                )
            continue
        if band.upper <= band.lower:
            raise ConfigurationError(
                f"{table_name}: band {index} upper limit {band.upper} is not above lower limit {band.lower}",
                details={"band": index},
            )
        if not is_last and bands[index + 1].lower != band.upper:
            kind = "gap" if bands[index + 1].lower > band.upper else "overlap"
            raise ConfigurationError(
                f"{table_name}: {kind} between band {index} and band {index + 1}",
                details={"band": index, "issue": kind},
            )


def select_applicable_table(
    tables: Iterable[TaxTableSnapshot],
    jurisdiction: str,
    on_date: date,
    tenant_id: Optional[uuid.UUID] = None,
) -> TaxTableSnapshot:
    """
    Pure date-based selection.

    Tenant-specific tables covering the date win over system tables; within
    the winning tier exactly one table must match.
    """
    candidates = [t for t in tables if t.jurisdiction == jurisdiction and t.covers(on_date)]
    tenant_matches = [t for t in candidates if tenant_id is not None and t.tenant_id == tenant_id]
    matches = tenant_matches or [t for t in candidates if t.tenant_id is None]
    if len(matches) != 1:
        raise NoApplicableTaxTable(jurisdiction, on_date, len(matches))
    return matches[0]


class TaxTableResolver:
    """
    Database-backed resolver.

    One instance is meant to live for one pay run or request; lookups are
    cached per (jurisdiction, date, tenant).
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self._cache: Dict[Tuple[str, date, Optional[uuid.UUID]], TaxTableSnapshot] = {}

    async def resolve(
        self,
        jurisdiction: str,
        on_date: date,
        tenant_id: Optional[uuid.UUID] = None,
    ) -> TaxTableSnapshot:
        key = (jurisdiction, on_date, tenant_id)
        if key in self._cache:
            return self._cache[key]

        query = (
            select(TaxTable)
            .options(selectinload(TaxTable.bands), selectinload(TaxTable.reliefs))
            .where(TaxTable.jurisdiction == jurisdiction)
            .where(TaxTable.is_active == True)  # noqa: E712
            .where(TaxTable.effective_from <= on_date)
            .where((TaxTable.effective_to.is_(None)) | (TaxTable.effective_to > on_date))
        )
        if tenant_id is not None:
            query = query.where((TaxTable.tenant_id.is_(None)) | (TaxTable.tenant_id == tenant_id))
        else:
            query = query.where(TaxTable.tenant_id.is_(None))

        result = await self.db.execute(query)
        snapshots = [TaxTableSnapshot.from_model(t) for t in result.scalars().all()]
        table = select_applicable_table(snapshots, jurisdiction, on_date, tenant_id)
        logger.debug(
            "Resolved tax table %s (%s) for %s on %s",
            table.name, table.law_version.value, jurisdiction, on_date,
        )
        self._cache[key] = table
        return table
