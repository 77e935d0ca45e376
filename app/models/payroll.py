"""
NairaPay Core - Payroll Models

Payroll period, pay run and payslip records:
- PayrollPeriod: pay window of a shop (non-overlapping per shop)
- PayRun: batch calculation for a period, with its approval state machine
- PayRunItem: one employee's calculation inside a run
- Payslip: immutable record materialized from a calculated item on completion

Invariant enforced at composition time and re-checked before persistence:
gross_pay - total_deductions == net_pay
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON, UniqueConstraint, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin
from app.models.employee import PayFrequency
from app.models.tax_table import TaxLawVersion

if TYPE_CHECKING:
    from app.models.employee import Employee


# ===========================================
# ENUMS
# ===========================================

class PayrollPeriodStatus(str, Enum):
    OPEN = "open"
    PROCESSING = "processing"
    APPROVED = "approved"
    CLOSED = "closed"


class PayRunStatus(str, Enum):
    """Pay run lifecycle."""
    DRAFT = "draft"
    CALCULATING = "calculating"
    PENDING_REVIEW = "pending_review"
    PENDING_APPROVAL = "pending_approval"
    APPROVED = "approved"
    PROCESSING = "processing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (PayRunStatus.COMPLETED, PayRunStatus.CANCELLED)


class PayRunItemStatus(str, Enum):
    PENDING = "pending"
    CALCULATED = "calculated"
    ERROR = "error"
    EXCLUDED = "excluded"


# ===========================================
# PAYROLL PERIOD
# ===========================================

class PayrollPeriod(BaseModel, AuditMixin):
    """Pay window for a shop."""

    __tablename__ = "payroll_periods"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="period_dates"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(
        String(200), nullable=False,
        comment="Descriptive name e.g., 'January 2026 Payroll'",
    )
    frequency: Mapped[PayFrequency] = mapped_column(
        SQLEnum(PayFrequency),
        default=PayFrequency.MONTHLY,
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date] = mapped_column(
        Date, nullable=False,
        comment="Date employees will be paid; selects the tax table",
    )
    status: Mapped[PayrollPeriodStatus] = mapped_column(
        SQLEnum(PayrollPeriodStatus),
        default=PayrollPeriodStatus.OPEN,
        nullable=False,
    )

    pay_runs: Mapped[List["PayRun"]] = relationship("PayRun", back_populates="payroll_period")


# ===========================================
# PAY RUN
# ===========================================

class PayRun(BaseModel, AuditMixin):
    """Batch calculation of every eligible employee for one period."""

    __tablename__ = "pay_runs"
    __table_args__ = (
        UniqueConstraint("tenant_id", "reference", name="uq_pay_run_reference"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payroll_period_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("payroll_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reference: Mapped[str] = mapped_column(
        String(50), nullable=False,
        comment="e.g., PAY-2026-01-001",
    )
    status: Mapped[PayRunStatus] = mapped_column(
        SQLEnum(PayRunStatus),
        default=PayRunStatus.DRAFT,
        nullable=False,
    )

    requires_owner_approval: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    owner_approval_reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # Totals (calculated items only)
    employee_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    calculated_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    excluded_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_gross: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    total_deductions: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    total_net: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    total_tax: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )
    total_employer_contributions: Mapped[Decimal] = mapped_column(
        Numeric(18, 2), default=Decimal("0.00"), nullable=False,
    )

    # Workflow stamps
    calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    submitted_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    payroll_period: Mapped["PayrollPeriod"] = relationship("PayrollPeriod", back_populates="pay_runs")
    items: Mapped[List["PayRunItem"]] = relationship(
        "PayRunItem",
        back_populates="pay_run",
        cascade="all, delete-orphan",
    )
    payslips: Mapped[List["Payslip"]] = relationship("Payslip", back_populates="pay_run")

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}


class PayRunItem(BaseModel):
    """One employee inside a pay run."""

    __tablename__ = "pay_run_items"
    __table_args__ = (
        UniqueConstraint("pay_run_id", "employee_id", name="uq_pay_run_item_employee"),
    )

    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[PayRunItemStatus] = mapped_column(
        SQLEnum(PayRunItemStatus),
        default=PayRunItemStatus.PENDING,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exclusion_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Period inputs: hours_worked, days_worked, commission, bonus, allowances
    inputs: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    employer_contributions: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False,
    )

    earnings_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    deductions_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    tax_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    tax_table_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    calculated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    pay_run: Mapped["PayRun"] = relationship("PayRun", back_populates="items")
    employee: Mapped["Employee"] = relationship("Employee")

    def reset(self) -> None:
        """Back to pending with no computed values."""
        self.status = PayRunItemStatus.PENDING
        self.error_message = None
        self.exclusion_reason = None
        self.gross_pay = Decimal("0.00")
        self.total_deductions = Decimal("0.00")
        self.net_pay = Decimal("0.00")
        self.tax_amount = Decimal("0.00")
        self.employer_contributions = Decimal("0.00")
        self.earnings_breakdown = None
        self.deductions_breakdown = None
        self.tax_breakdown = None
        self.warnings = None
        self.tax_table_id = None
        self.calculated_at = None


# ===========================================
# PAYSLIP
# ===========================================

class Payslip(BaseModel):
    """Immutable payslip materialized when a pay run completes."""

    __tablename__ = "payslips"
    __table_args__ = (
        CheckConstraint("net_pay >= 0", name="payslip_net_non_negative"),
        UniqueConstraint("tenant_id", "payslip_number", name="uq_payslip_number"),
    )

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    shop_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("shops.id", ondelete="CASCADE"),
        nullable=False,
    )
    pay_run_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pay_run_item_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pay_run_items.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    payslip_number: Mapped[str] = mapped_column(String(60), nullable=False)

    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)

    gross_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    tax_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    pension_employee: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    pension_employer: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    nhf_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    nhf_employer: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    nhis_amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0.00"), nullable=False)
    wage_advance_deduction: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False,
    )
    employer_contributions: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False,
    )

    earnings_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    deductions_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    tax_breakdown: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
    warnings: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    tax_table_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tax_tables.id", ondelete="RESTRICT"),
        nullable=True,
    )
    tax_law_version: Mapped[Optional[TaxLawVersion]] = mapped_column(SQLEnum(TaxLawVersion), nullable=True)

    # Year to date including this payslip
    ytd_gross: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    ytd_tax: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)
    ytd_net: Mapped[Decimal] = mapped_column(Numeric(18, 2), default=Decimal("0.00"), nullable=False)

    # Bank details captured at completion for the bank schedule
    employee_name: Mapped[str] = mapped_column(String(200), nullable=False)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    pay_run: Mapped["PayRun"] = relationship("PayRun", back_populates="payslips")
