"""
NairaPay Core - Tax Table Service

Administration of tax tables (system tables seeded from the statutory
definitions, tenant-specific overrides) and the ad-hoc PAYE calculation
used by the tax API.

A table that any payslip references is frozen: it can be neither edited
nor deleted. Supersede it with a new table and an `effective_to` instead.
"""

import logging
import uuid
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import and_, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models.payroll import Payslip
from app.models.tax_table import TaxBand, TaxRelief, TaxTable
from app.services.tax_calculators.paye_calculator import (
    PAYECalculator,
    TaxCalculationResult,
    compare_tax_regimes,
)
from app.services.tax_calculators.relief_calculator import TaxSettingsSnapshot
from app.services.tax_calculators.statutory_tables import (
    PITA_CUTOVER_DATE,
    STATUTORY_TABLES,
    NHF_RELIEF,
    NHIS_RELIEF,
    PENSION_RELIEF,
    build_tax_table_model,
)
from app.services.tax_calculators.tax_band_engine import BandSpec, annualize
from app.services.tax_calculators.tax_table_resolver import (
    TaxTableResolver,
    TaxTableSnapshot,
    validate_bands,
)
from app.utils.error_handling import BusinessRuleException, NotFoundException

logger = logging.getLogger(__name__)


class TaxTableService:
    """Service for tax tables and ad-hoc PAYE calculations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.resolver = TaxTableResolver(db)

    # ===========================================
    # TABLES
    # ===========================================

    async def list_tables(
        self,
        tenant_id: Optional[uuid.UUID] = None,
        jurisdiction: Optional[str] = None,
    ) -> List[TaxTable]:
        """System tables plus the tenant's own."""
        query = (
            select(TaxTable)
            .options(selectinload(TaxTable.bands), selectinload(TaxTable.reliefs))
            .where(or_(TaxTable.tenant_id.is_(None), TaxTable.tenant_id == tenant_id))
        )
        if jurisdiction:
            query = query.where(TaxTable.jurisdiction == jurisdiction)
        result = await self.db.execute(query.order_by(TaxTable.effective_from))
        return list(result.scalars().all())

    async def get_table(self, table_id: uuid.UUID, tenant_id: Optional[uuid.UUID] = None) -> TaxTable:
        result = await self.db.execute(
            select(TaxTable)
            .options(selectinload(TaxTable.bands), selectinload(TaxTable.reliefs))
            .where(
                and_(
                    TaxTable.id == table_id,
                    or_(TaxTable.tenant_id.is_(None), TaxTable.tenant_id == tenant_id),
                )
            )
            .execution_options(populate_existing=True)
        )
        table = result.scalar_one_or_none()
        if table is None:
            raise NotFoundException("TaxTable", table_id)
        return table

    async def create_table(self, tenant_id: Optional[uuid.UUID], data: Mapping[str, Any]) -> TaxTable:
        """
        Create a table with its bands and reliefs.

        Raises:
            ConfigurationError: bands are not contiguous from zero
        """
        bands = sorted(data["bands"], key=lambda b: b["band_order"])
        validate_bands(
            [BandSpec(lower=Decimal(str(b["lower_limit"])),
                      upper=None if b.get("upper_limit") is None else Decimal(str(b["upper_limit"])),
                      rate=Decimal(str(b["rate"]))) for b in bands],
            data["name"],
        )
        jurisdiction = data.get("jurisdiction") or "NG"
        await self._require_no_overlap(
            tenant_id, jurisdiction, data["effective_from"], data.get("effective_to"),
        )
        table = TaxTable(
            tenant_id=tenant_id,
            jurisdiction=jurisdiction,
            effective_year=data["effective_from"].year,
            name=data["name"],
            description=data.get("description"),
            effective_from=data["effective_from"],
            effective_to=data.get("effective_to"),
            law_version=data["law_version"],
            low_income_threshold=data.get("low_income_threshold"),
            cra_applicable=data.get("cra_applicable", False),
            minimum_tax_rate=data.get("minimum_tax_rate"),
            pension_floor=data.get("pension_floor"),
            pension_ceiling=data.get("pension_ceiling"),
            is_active=True,
        )
        table.bands = [TaxBand(**band) for band in bands]
        table.reliefs = [TaxRelief(**relief) for relief in data.get("reliefs") or []]
        self.db.add(table)
        await self.db.commit()
        logger.info("Tax table '%s' created (tenant %s)", table.name, tenant_id)
        return await self.get_table(table.id, tenant_id)

    async def is_referenced(self, table_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(func.count()).select_from(Payslip).where(Payslip.tax_table_id == table_id)
        )
        return (result.scalar() or 0) > 0

    async def update_table(
        self,
        table_id: uuid.UUID,
        tenant_id: Optional[uuid.UUID],
        changes: Mapping[str, Any],
    ) -> TaxTable:
        """
        Raises:
            BusinessRuleException: a payslip already references the table,
                or the change would leave two active tables on the same dates
        """
        table = await self.get_table(table_id, tenant_id)
        await self._require_unreferenced(table)
        if changes.get("is_active", table.is_active):
            await self._require_no_overlap(
                table.tenant_id,
                table.jurisdiction,
                table.effective_from,
                changes["effective_to"] if "effective_to" in changes else table.effective_to,
                exclude_id=table.id,
            )
        for key in ("name", "description", "effective_to", "is_active", "low_income_threshold",
                    "minimum_tax_rate", "pension_floor", "pension_ceiling"):
            if key in changes:
                setattr(table, key, changes[key])
        await self.db.commit()
        return await self.get_table(table_id, tenant_id)

    async def delete_table(self, table_id: uuid.UUID, tenant_id: Optional[uuid.UUID]) -> None:
        table = await self.get_table(table_id, tenant_id)
        await self._require_unreferenced(table)
        await self.db.delete(table)
        await self.db.commit()
        logger.info("Tax table '%s' deleted", table.name)

    async def _require_unreferenced(self, table: TaxTable) -> None:
        if await self.is_referenced(table.id):
            raise BusinessRuleException(
                f"Tax table '{table.name}' is referenced by payslips and cannot be modified",
                rule="TAX_TABLE_IMMUTABLE",
                details={"tax_table_id": str(table.id)},
            )

    async def _require_no_overlap(
        self,
        tenant_id: Optional[uuid.UUID],
        jurisdiction: str,
        effective_from: date,
        effective_to: Optional[date],
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Only one active table per tier and jurisdiction may cover a date (end dates are exclusive)."""
        query = select(TaxTable).where(
            and_(
                TaxTable.jurisdiction == jurisdiction,
                TaxTable.is_active == True,  # noqa: E712
                TaxTable.tenant_id.is_(None) if tenant_id is None else TaxTable.tenant_id == tenant_id,
                or_(TaxTable.effective_to.is_(None), TaxTable.effective_to > effective_from),
            )
        )
        if effective_to is not None:
            query = query.where(TaxTable.effective_from < effective_to)
        if exclude_id is not None:
            query = query.where(TaxTable.id != exclude_id)
        clash = (await self.db.execute(query)).scalars().first()
        if clash is not None:
            raise BusinessRuleException(
                f"Active tax table '{clash.name}' already covers these dates",
                rule="TAX_TABLE_OVERLAP",
                details={"tax_table_id": str(clash.id), "jurisdiction": jurisdiction},
            )

    async def seed_statutory_tables(self) -> List[TaxTable]:
        """Insert the PITA 2011 and NTA 2025 system tables that are missing."""
        created = []
        for snapshot in STATUTORY_TABLES:
            existing = await self.db.execute(
                select(TaxTable).where(
                    and_(
                        TaxTable.tenant_id.is_(None),
                        TaxTable.jurisdiction == snapshot.jurisdiction,
                        TaxTable.law_version == snapshot.law_version,
                    )
                )
            )
            if existing.scalars().first() is not None:
                continue
            table = build_tax_table_model(snapshot)
            self.db.add(table)
            created.append(table)
        await self.db.commit()
        if created:
            logger.info("Seeded %d statutory tax table(s)", len(created))
        return created

    # ===========================================
    # CALCULATION
    # ===========================================

    async def resolve(self, jurisdiction: str, on_date: date, tenant_id: Optional[uuid.UUID] = None) -> TaxTableSnapshot:
        return await self.resolver.resolve(jurisdiction, on_date, tenant_id)

    async def calculate(
        self,
        gross_income: Decimal,
        periods_per_year: int,
        jurisdiction: str,
        on_date: date,
        tenant_id: Optional[uuid.UUID] = None,
        settings: Optional[TaxSettingsSnapshot] = None,
        contributions: Optional[Dict[str, Decimal]] = None,
        pre_tax_deductions: Decimal = Decimal("0"),
        **options: Any,
    ) -> TaxCalculationResult:
        table = await self.resolve(jurisdiction, on_date, tenant_id)
        return PAYECalculator(table).calculate(
            annualize(gross_income, periods_per_year),
            settings=settings,
            on_date=on_date,
            contributions=contributions,
            pre_tax_deductions=pre_tax_deductions,
            periods_per_year=periods_per_year,
            **options,
        )

    async def compare(
        self,
        gross_annual_income: Decimal,
        jurisdiction: str = "NG",
        tenant_id: Optional[uuid.UUID] = None,
        settings: Optional[TaxSettingsSnapshot] = None,
        contributions: Optional[Dict[str, Decimal]] = None,
    ) -> Dict[str, Any]:
        """The same income under the last PITA year and the first NTA year."""
        tables = [
            await self.resolve(jurisdiction, PITA_CUTOVER_DATE - timedelta(days=1), tenant_id),
            await self.resolve(jurisdiction, PITA_CUTOVER_DATE, tenant_id),
        ]
        return compare_tax_regimes(
            gross_annual_income, tables, settings=settings,
            on_date=PITA_CUTOVER_DATE, contributions=contributions,
        )


def contributions_from(
    pension: Optional[Decimal] = None,
    nhf: Optional[Decimal] = None,
    nhis: Optional[Decimal] = None,
) -> Dict[str, Decimal]:
    contributions = {}
    for code, value in ((PENSION_RELIEF, pension), (NHF_RELIEF, nhf), (NHIS_RELIEF, nhis)):
        if value is not None:
            contributions[code] = value
    return contributions
