"""
NairaPay Core - Tax Table Models

Versioned PAYE tables. A table belongs to one tax law version
(PITA 2011 or NTA 2025) and owns its ordered bands and relief definitions.

Tables are selected purely by effective date: effective_from is inclusive,
effective_to is exclusive (NULL means open-ended). Tenant tables override
the system tables (tenant_id IS NULL) for that tenant.
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON, UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin


class TaxLawVersion(str, Enum):
    """Nigerian personal income tax regimes."""
    PITA_2011 = "pita_2011"
    NTA_2025 = "nta_2025"

    @property
    def display_name(self) -> str:
        return {
            TaxLawVersion.PITA_2011: "Personal Income Tax Act 2011",
            TaxLawVersion.NTA_2025: "Nigeria Tax Act 2025",
        }[self]

    @property
    def cra_applicable(self) -> bool:
        return self is TaxLawVersion.PITA_2011


class ReliefType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    CAPPED_PERCENTAGE = "capped_percentage"
    CRA = "cra"
    RENT_RELIEF = "rent_relief"
    LOW_INCOME_EXEMPTION = "low_income_exemption"


class TaxTable(BaseModel, AuditMixin):
    """PAYE table for one jurisdiction and effective date range."""

    __tablename__ = "tax_tables"

    tenant_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL for system tables",
    )
    jurisdiction: Mapped[str] = mapped_column(String(5), default="NG", nullable=False, index=True)
    effective_year: Mapped[int] = mapped_column(Integer, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True,
        comment="Exclusive end date",
    )
    law_version: Mapped[TaxLawVersion] = mapped_column(SQLEnum(TaxLawVersion), nullable=False)

    low_income_threshold: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    cra_applicable: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    minimum_tax_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True,
        comment="Percent of gross income payable when banded tax is lower",
    )
    pension_floor: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Minimum annual employee pension contribution",
    )
    pension_ceiling: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Maximum annual employee pension contribution",
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    bands: Mapped[List["TaxBand"]] = relationship(
        "TaxBand",
        back_populates="tax_table",
        cascade="all, delete-orphan",
        order_by="TaxBand.band_order",
    )
    reliefs: Mapped[List["TaxRelief"]] = relationship(
        "TaxRelief",
        back_populates="tax_table",
        cascade="all, delete-orphan",
        order_by="TaxRelief.sort_order",
    )


class TaxBand(BaseModel):
    """Marginal band: income between lower_limit and upper_limit taxed at rate%."""

    __tablename__ = "tax_bands"
    __table_args__ = (
        UniqueConstraint("tax_table_id", "band_order", name="uq_tax_band_order"),
    )

    tax_table_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tax_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    band_order: Mapped[int] = mapped_column(Integer, nullable=False)
    lower_limit: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    upper_limit: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    rate: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)

    tax_table: Mapped["TaxTable"] = relationship("TaxTable", back_populates="bands")


class TaxRelief(BaseModel):
    """Relief definition attached to a tax table."""

    __tablename__ = "tax_reliefs"
    __table_args__ = (
        UniqueConstraint("tax_table_id", "code", name="uq_tax_relief_code"),
    )

    tax_table_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tax_tables.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    relief_type: Mapped[ReliefType] = mapped_column(SQLEnum(ReliefType), nullable=False)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    cap: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    requires_proof: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_automatic: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    eligibility: Mapped[Optional[dict]] = mapped_column(
        JSON, nullable=True,
        comment='Required tax setting values, e.g. {"is_homeowner": false}',
    )
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    tax_table: Mapped["TaxTable"] = relationship("TaxTable", back_populates="reliefs")
