"""
NairaPay Core - Employee Models

Staff roster and the per-employee records the payroll engine reads:
- EmployeePayrollDetail: pay type/amount/frequency and statutory toggles
- EmployeeTaxSettings: homeowner flag, rent, exemption, relief proof
- EmployeeCustomDeduction: recurring fixed or percentage deductions
"""

import uuid
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, List, Optional

from sqlalchemy import (
    Boolean, Date, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin

if TYPE_CHECKING:
    from app.models.tenant import Shop


# ===========================================
# ENUMS
# ===========================================

class StaffRole(str, Enum):
    """Shop staff roles, highest authority first."""
    OWNER = "owner"
    GENERAL_MANAGER = "general_manager"
    ASSISTANT_MANAGER = "assistant_manager"
    STAFF = "staff"

    @property
    def level(self) -> int:
        return {
            StaffRole.OWNER: 4,
            StaffRole.GENERAL_MANAGER: 3,
            StaffRole.ASSISTANT_MANAGER: 2,
            StaffRole.STAFF: 1,
        }[self]


class EmploymentType(str, Enum):
    """Employment type classification."""
    FULL_TIME = "full_time"
    PART_TIME = "part_time"
    CONTRACT = "contract"
    FREELANCE = "freelance"


class PayType(str, Enum):
    """How an employee's pay is computed."""
    SALARY = "salary"
    HOURLY = "hourly"
    DAILY = "daily"
    COMMISSION_BASED = "commission_based"


class PayFrequency(str, Enum):
    """Pay frequency."""
    WEEKLY = "weekly"
    BI_WEEKLY = "bi_weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"

    @property
    def periods_per_year(self) -> int:
        return {
            PayFrequency.WEEKLY: 52,
            PayFrequency.BI_WEEKLY: 26,
            PayFrequency.MONTHLY: 12,
            PayFrequency.QUARTERLY: 4,
            PayFrequency.ANNUALLY: 1,
        }[self]


class TaxHandling(str, Enum):
    """Who is responsible for PAYE."""
    SHOP_CALCULATES = "shop_calculates"
    EMPLOYEE_CALCULATES = "employee_calculates"
    EXEMPT = "exempt"


class DeductionType(str, Enum):
    FIXED = "fixed"
    PERCENTAGE = "percentage"


class DeductionBase(str, Enum):
    """Amount a percentage deduction is applied to."""
    GROSS = "gross"
    BASIC = "basic"
    PENSIONABLE = "pensionable"


# ===========================================
# EMPLOYEE
# ===========================================

class Employee(BaseModel):
    """Staff member of a shop."""

    __tablename__ = "employees"

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
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    role: Mapped[StaffRole] = mapped_column(
        SQLEnum(StaffRole),
        default=StaffRole.STAFF,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    shop: Mapped["Shop"] = relationship("Shop", back_populates="employees")
    payroll_detail: Mapped[Optional["EmployeePayrollDetail"]] = relationship(
        "EmployeePayrollDetail",
        back_populates="employee",
        uselist=False,
        cascade="all, delete-orphan",
    )
    tax_settings: Mapped[Optional["EmployeeTaxSettings"]] = relationship(
        "EmployeeTaxSettings",
        back_populates="employee",
        uselist=False,
        cascade="all, delete-orphan",
    )
    custom_deductions: Mapped[List["EmployeeCustomDeduction"]] = relationship(
        "EmployeeCustomDeduction",
        back_populates="employee",
        cascade="all, delete-orphan",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class EmployeePayrollDetail(BaseModel, AuditMixin):
    """Pay structure and statutory toggles for one employee."""

    __tablename__ = "employee_payroll_details"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    employment_type: Mapped[EmploymentType] = mapped_column(
        SQLEnum(EmploymentType),
        default=EmploymentType.FULL_TIME,
        nullable=False,
    )
    pay_type: Mapped[PayType] = mapped_column(SQLEnum(PayType), nullable=False)
    pay_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False,
        comment="Salary per pay_frequency, or hourly/daily rate",
    )
    pay_frequency: Mapped[PayFrequency] = mapped_column(
        SQLEnum(PayFrequency),
        default=PayFrequency.MONTHLY,
        nullable=False,
    )
    standard_hours_per_week: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("40"), nullable=False,
    )

    # Tax
    tax_handling: Mapped[TaxHandling] = mapped_column(
        SQLEnum(TaxHandling),
        default=TaxHandling.SHOP_CALCULATES,
        nullable=False,
    )
    enable_tax_calculations: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    tax_id_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    # Pension
    pension_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    pension_employee_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("8"), nullable=False,
    )
    pension_employer_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("10"), nullable=False,
    )
    pension_pin: Mapped[Optional[str]] = mapped_column(String(30), nullable=True, comment="RSA PIN")
    pfa_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # NHF / NHIS
    nhf_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nhf_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), default=Decimal("2.5"), nullable=False,
    )
    nhis_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    nhis_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Fixed NHIS deduction per pay period",
    )
    other_deductions_enabled: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Bank
    bank_account_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    bank_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Position
    position_title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    department: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="payroll_detail")

    def is_active_between(self, period_start: date, period_end: date) -> bool:
        """Employment dates overlap the given period."""
        if self.start_date and self.start_date > period_end:
            return False
        if self.end_date and self.end_date < period_start:
            return False
        return True


class EmployeeTaxSettings(BaseModel, AuditMixin):
    """
    Per-employee tax overrides.

    Proof status for rent relief is never stored; it is derived from
    rent_proof_document and rent_proof_expiry at evaluation time.
    """

    __tablename__ = "employee_tax_settings"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    is_homeowner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    annual_rent_paid: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), default=Decimal("0.00"), nullable=False,
    )
    is_tax_exempt: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    exemption_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exemption_expires_at: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    active_relief_codes: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    rent_proof_document: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    rent_proof_expiry: Mapped[Optional[date]] = mapped_column(Date, nullable=True)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="tax_settings")


class EmployeeCustomDeduction(BaseModel, AuditMixin):
    """Recurring non-statutory deduction (union dues, cooperative, loans)."""

    __tablename__ = "employee_custom_deductions"

    employee_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    code: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    deduction_type: Mapped[DeductionType] = mapped_column(
        SQLEnum(DeductionType),
        default=DeductionType.FIXED,
        nullable=False,
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(15, 2), nullable=True)
    rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    calculation_base: Mapped[DeductionBase] = mapped_column(
        SQLEnum(DeductionBase),
        default=DeductionBase.GROSS,
        nullable=False,
    )
    is_pre_tax: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    effective_from: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    effective_to: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    employee: Mapped["Employee"] = relationship("Employee", back_populates="custom_deductions")
