"""
NairaPay Core - Tenant and Shop Models

A tenant is a business on the platform; a shop is one of its outlets and
carries the shop-level payroll configuration (jurisdiction, overtime
policy, statutory default rates, wage advance policy).
"""

import uuid
from decimal import Decimal
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import Boolean, ForeignKey, Numeric, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.employee import Employee


class Tenant(BaseModel):
    """Business tenant. Buyer and supplier sides of a purchase order are both tenants."""

    __tablename__ = "tenants"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    shops: Mapped[List["Shop"]] = relationship(
        "Shop",
        back_populates="tenant",
        cascade="all, delete-orphan",
    )


class Shop(BaseModel):
    """Shop/outlet with its payroll settings."""

    __tablename__ = "shops"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    jurisdiction: Mapped[str] = mapped_column(String(5), default="NG", nullable=False)

    # Overtime and commission
    overtime_threshold_hours: Mapped[Decimal] = mapped_column(
        Numeric(6, 2), default=Decimal("40"), nullable=False,
        comment="Weekly hours above which overtime applies",
    )
    overtime_multiplier: Mapped[Decimal] = mapped_column(
        Numeric(4, 2), default=Decimal("1.5"), nullable=False,
    )
    commission_cap: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Maximum commission per pay period",
    )

    # Statutory defaults
    default_pension_employee_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("8"), nullable=False,
    )
    default_pension_employer_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("10"), nullable=False,
    )
    default_nhf_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("2.5"), nullable=False,
    )
    nhf_employer_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True,
        comment="Employer NHF share of basic pay; none when unset",
    )

    # Approvals and advances
    owner_approval_threshold: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True,
        comment="Pay runs with net pay above this need owner sign-off",
    )
    wage_advance_max_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("30"), nullable=False,
    )

    # Bank schedule originator
    bank_code: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)

    tenant: Mapped["Tenant"] = relationship("Tenant", back_populates="shops")
    employees: Mapped[List["Employee"]] = relationship("Employee", back_populates="shop")
