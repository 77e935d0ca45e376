"""
NairaPay Core - Wage Advance Models

Salary advance with amortized repayment through payroll.
Repayments are append-only; amount_repaid is their running total and is
only changed by the wage advance service under a row lock plus the
optimistic version column.
"""

import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Date, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, CheckConstraint,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel

if TYPE_CHECKING:
    from app.models.employee import Employee


class WageAdvanceStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DISBURSED = "disbursed"
    REPAYING = "repaying"
    REPAID = "repaid"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (
            WageAdvanceStatus.REJECTED,
            WageAdvanceStatus.REPAID,
            WageAdvanceStatus.CANCELLED,
        )


# Statuses that count against an employee's eligibility
OUTSTANDING_ADVANCE_STATUSES = (
    WageAdvanceStatus.PENDING,
    WageAdvanceStatus.APPROVED,
    WageAdvanceStatus.DISBURSED,
    WageAdvanceStatus.REPAYING,
)

# Statuses that are deducted through payroll
REPAYABLE_ADVANCE_STATUSES = (
    WageAdvanceStatus.DISBURSED,
    WageAdvanceStatus.REPAYING,
)


class WageAdvance(BaseModel):
    """Salary advance for one employee of one shop."""

    __tablename__ = "wage_advances"
    __table_args__ = (
        CheckConstraint("amount_repaid >= 0", name="repaid_non_negative"),
        CheckConstraint("repayment_installments >= 1", name="installments_positive"),
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
    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    amount_requested: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    amount_approved: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    status: Mapped[WageAdvanceStatus] = mapped_column(
        SQLEnum(WageAdvanceStatus),
        default=WageAdvanceStatus.PENDING,
        nullable=False,
        index=True,
    )
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    requested_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    disbursed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)
    disbursed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    repayment_start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    repayment_installments: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    installments_paid: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    amount_repaid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False,
    )
    fully_repaid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    employee: Mapped["Employee"] = relationship("Employee")
    repayments: Mapped[List["WageAdvanceRepayment"]] = relationship(
        "WageAdvanceRepayment",
        back_populates="wage_advance",
        order_by="WageAdvanceRepayment.installment_number",
    )

    __mapper_args__ = {"version_id_col": version_id}

    @property
    def remaining_balance(self) -> Decimal:
        """Amount still owed; the requested amount while not yet approved."""
        if self.status in (WageAdvanceStatus.REJECTED, WageAdvanceStatus.CANCELLED):
            return Decimal("0.00")
        principal = self.amount_approved if self.amount_approved is not None else self.amount_requested
        return max(Decimal("0.00"), principal - (self.amount_repaid or Decimal("0.00")))


class WageAdvanceRepayment(BaseModel):
    """Append-only repayment record."""

    __tablename__ = "wage_advance_repayments"
    __table_args__ = (
        CheckConstraint("amount > 0", name="repayment_positive"),
    )

    wage_advance_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("wage_advances.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    installment_number: Mapped[int] = mapped_column(Integer, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    repaid_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    source: Mapped[str] = mapped_column(
        String(20), default="payroll", nullable=False,
        comment="payroll or manual",
    )
    pay_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pay_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    recorded_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True)

    wage_advance: Mapped["WageAdvance"] = relationship("WageAdvance", back_populates="repayments")
