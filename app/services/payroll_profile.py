"""
NairaPay Core - Payroll Profiles

Frozen inputs for one employee's pay calculation. A pay run loads the ORM
rows once, converts them here, and hands only these objects to the worker
threads.
"""

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from app.config import settings
from app.models.employee import (
    DeductionBase,
    DeductionType,
    Employee,
    EmployeeCustomDeduction,
    PayFrequency,
    PayType,
    StaffRole,
    TaxHandling,
)
from app.models.tenant import Shop
from app.services.tax_calculators.relief_calculator import TaxSettingsSnapshot
from app.utils.error_handling import MissingPayrollDetail

ZERO = Decimal("0.00")


@dataclass(frozen=True)
class CustomDeductionSpec:
    code: str
    name: str
    deduction_type: DeductionType
    amount: Optional[Decimal] = None
    rate: Optional[Decimal] = None
    calculation_base: DeductionBase = DeductionBase.GROSS
    is_pre_tax: bool = False
    priority: int = 100
    effective_from: Optional[date] = None
    effective_to: Optional[date] = None
    is_active: bool = True

    @classmethod
    def from_model(cls, deduction: EmployeeCustomDeduction) -> "CustomDeductionSpec":
        return cls(
            code=deduction.code,
            name=deduction.name,
            deduction_type=deduction.deduction_type,
            amount=deduction.amount,
            rate=deduction.rate,
            calculation_base=deduction.calculation_base,
            is_pre_tax=deduction.is_pre_tax,
            priority=deduction.priority,
            effective_from=deduction.effective_from,
            effective_to=deduction.effective_to,
            is_active=deduction.is_active,
        )

    def applies_to(self, period_start: date, period_end: date) -> bool:
        if not self.is_active:
            return False
        if self.effective_from and self.effective_from > period_end:
            return False
        if self.effective_to and self.effective_to < period_start:
            return False
        return True


@dataclass(frozen=True)
class WageAdvanceInstallment:
    """Installment due from one advance in this pay period."""
    wage_advance_id: uuid.UUID
    amount: Decimal
    remaining_balance: Decimal


@dataclass(frozen=True)
class ShopPolicy:
    """Shop-level payroll configuration."""
    jurisdiction: str = "NG"
    overtime_threshold_hours: Decimal = Decimal("40")
    overtime_multiplier: Decimal = Decimal("1.5")
    commission_cap: Optional[Decimal] = None
    nhf_employer_rate: Optional[Decimal] = None

    @classmethod
    def from_shop(cls, shop: Optional[Shop]) -> "ShopPolicy":
        if shop is None:
            return cls(
                jurisdiction=settings.default_jurisdiction,
                overtime_threshold_hours=settings.default_overtime_threshold_hours,
                overtime_multiplier=settings.default_overtime_multiplier,
                nhf_employer_rate=settings.default_nhf_employer_rate,
            )
        return cls(
            jurisdiction=shop.jurisdiction or settings.default_jurisdiction,
            overtime_threshold_hours=shop.overtime_threshold_hours or settings.default_overtime_threshold_hours,
            overtime_multiplier=shop.overtime_multiplier or settings.default_overtime_multiplier,
            commission_cap=shop.commission_cap,
            nhf_employer_rate=(
                shop.nhf_employer_rate if shop.nhf_employer_rate is not None else settings.default_nhf_employer_rate
            ),
        )


@dataclass(frozen=True)
class PayrollProfile:
    """Everything about an employee the calculation needs."""
    employee_id: uuid.UUID
    employee_name: str
    role: StaffRole
    pay_type: PayType
    pay_amount: Decimal
    pay_frequency: PayFrequency = PayFrequency.MONTHLY
    standard_hours_per_week: Decimal = Decimal("40")
    tax_handling: TaxHandling = TaxHandling.SHOP_CALCULATES
    enable_tax_calculations: bool = True
    pension_enabled: bool = True
    pension_employee_rate: Decimal = Decimal("8")
    pension_employer_rate: Decimal = Decimal("10")
    nhf_enabled: bool = False
    nhf_rate: Decimal = Decimal("2.5")
    nhis_enabled: bool = False
    nhis_amount: Optional[Decimal] = None
    other_deductions_enabled: bool = True
    custom_deductions: Tuple[CustomDeductionSpec, ...] = ()
    tax_settings: TaxSettingsSnapshot = field(default_factory=TaxSettingsSnapshot)
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None

    @classmethod
    def from_employee(cls, employee: Employee) -> "PayrollProfile":
        """
        Build from an employee with payroll_detail, tax_settings and
        custom_deductions loaded.

        Raises:
            MissingPayrollDetail: the employee has no payroll detail
        """
        detail = employee.payroll_detail
        if detail is None:
            raise MissingPayrollDetail(employee.id)
        return cls(
            employee_id=employee.id,
            employee_name=employee.full_name,
            role=employee.role,
            pay_type=detail.pay_type,
            pay_amount=detail.pay_amount,
            pay_frequency=detail.pay_frequency,
            standard_hours_per_week=detail.standard_hours_per_week or settings.standard_hours_per_week,
            tax_handling=detail.tax_handling,
            enable_tax_calculations=detail.enable_tax_calculations,
            pension_enabled=detail.pension_enabled,
            pension_employee_rate=detail.pension_employee_rate,
            pension_employer_rate=detail.pension_employer_rate,
            nhf_enabled=detail.nhf_enabled,
            nhf_rate=detail.nhf_rate,
            nhis_enabled=detail.nhis_enabled,
            nhis_amount=detail.nhis_amount,
            other_deductions_enabled=detail.other_deductions_enabled,
            custom_deductions=tuple(CustomDeductionSpec.from_model(d) for d in employee.custom_deductions),
            tax_settings=TaxSettingsSnapshot.from_model(employee.tax_settings),
            bank_name=detail.bank_name,
            bank_account_number=detail.bank_account_number,
        )


@dataclass(frozen=True)
class EarningsInput:
    """Variable pay inputs for one period, stored as JSON on the pay run item."""
    hours_worked: Optional[Decimal] = None
    overtime_hours: Optional[Decimal] = None
    days_worked: Optional[Decimal] = None
    commission: Decimal = ZERO
    bonus: Decimal = ZERO
    allowances: Tuple[Tuple[str, Decimal], ...] = ()

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EarningsInput":
        data = data or {}

        def dec(key: str) -> Optional[Decimal]:
            value = data.get(key)
            return None if value is None else Decimal(str(value))

        allowances = tuple(
            (name, Decimal(str(amount)))
            for name, amount in sorted((data.get("allowances") or {}).items())
        )
        return cls(
            hours_worked=dec("hours_worked"),
            overtime_hours=dec("overtime_hours"),
            days_worked=dec("days_worked"),
            commission=dec("commission") or ZERO,
            bonus=dec("bonus") or ZERO,
            allowances=allowances,
        )

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key in ("hours_worked", "overtime_hours", "days_worked"):
            value = getattr(self, key)
            if value is not None:
                result[key] = str(value)
        if self.commission:
            result["commission"] = str(self.commission)
        if self.bonus:
            result["bonus"] = str(self.bonus)
        if self.allowances:
            result["allowances"] = {name: str(amount) for name, amount in self.allowances}
        return result
