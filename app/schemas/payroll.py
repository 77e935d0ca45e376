"""
NairaPay Core - Payroll Schemas

Pydantic schemas for payroll periods, pay runs and payslips.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.employee import PayFrequency
from app.models.payroll import PayrollPeriodStatus, PayRunItemStatus, PayRunStatus
from app.models.tax_table import TaxLawVersion


# ===========================================
# PAYROLL PERIODS
# ===========================================

class PayrollPeriodCreate(BaseModel):
    """Create payroll period request."""
    shop_id: UUID
    name: str = Field(..., min_length=1, max_length=100)
    start_date: date
    end_date: date
    payment_date: date
    frequency: PayFrequency = PayFrequency.MONTHLY

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class PayrollPeriodResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    shop_id: UUID
    name: str
    start_date: date
    end_date: date
    payment_date: date
    frequency: PayFrequency
    status: PayrollPeriodStatus
    created_at: datetime

    class Config:
        from_attributes = True


# ===========================================
# PAY RUNS
# ===========================================

class PayRunCreate(BaseModel):
    payroll_period_id: UUID


class PayRunItemInputs(BaseModel):
    """Variable earnings for one employee in one run."""
    hours_worked: Optional[Decimal] = Field(None, ge=0)
    overtime_hours: Optional[Decimal] = Field(None, ge=0)
    days_worked: Optional[Decimal] = Field(None, ge=0)
    commission: Decimal = Field(Decimal("0"), ge=0)
    bonus: Decimal = Field(Decimal("0"), ge=0)
    allowances: Dict[str, Decimal] = {}


class EmployeeRef(BaseModel):
    employee_id: UUID


class ExcludeEmployeeRequest(BaseModel):
    employee_id: UUID
    reason: Optional[str] = None


class RejectRequest(BaseModel):
    reason: str = Field(..., min_length=1)


class CancelRequest(BaseModel):
    reason: Optional[str] = None


class PayRunItemResponse(BaseModel):
    id: UUID
    employee_id: UUID
    status: PayRunItemStatus
    error_message: Optional[str] = None
    exclusion_reason: Optional[str] = None
    inputs: Optional[Dict[str, Any]] = None
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    tax_amount: Decimal
    employer_contributions: Decimal
    earnings_breakdown: Optional[Dict[str, Any]] = None
    deductions_breakdown: Optional[Dict[str, Any]] = None
    tax_breakdown: Optional[Dict[str, Any]] = None
    warnings: Optional[List[Dict[str, Any]]] = None
    tax_table_id: Optional[UUID] = None
    calculated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class PayRunSummary(BaseModel):
    id: UUID
    tenant_id: UUID
    shop_id: UUID
    payroll_period_id: UUID
    reference: str
    status: PayRunStatus
    requires_owner_approval: bool
    owner_approval_reason: Optional[str] = None
    employee_count: int
    calculated_count: int
    error_count: int
    excluded_count: int
    total_gross: Decimal
    total_deductions: Decimal
    total_net: Decimal
    total_tax: Decimal
    total_employer_contributions: Decimal
    calculated_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class PayRunResponse(PayRunSummary):
    items: List[PayRunItemResponse] = []


# ===========================================
# PAYSLIPS
# ===========================================

class PayslipResponse(BaseModel):
    id: UUID
    pay_run_id: UUID
    employee_id: UUID
    payslip_number: str
    employee_name: str
    period_start: date
    period_end: date
    payment_date: date
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    tax_amount: Decimal
    pension_employee: Decimal
    pension_employer: Decimal
    nhf_amount: Decimal
    nhf_employer: Decimal
    nhis_amount: Decimal
    wage_advance_deduction: Decimal
    employer_contributions: Decimal
    earnings_breakdown: Optional[Dict[str, Any]] = None
    deductions_breakdown: Optional[Dict[str, Any]] = None
    tax_breakdown: Optional[Dict[str, Any]] = None
    warnings: Optional[List[Dict[str, Any]]] = None
    tax_table_id: Optional[UUID] = None
    tax_law_version: Optional[TaxLawVersion] = None
    ytd_gross: Decimal
    ytd_tax: Decimal
    ytd_net: Decimal
    bank_name: Optional[str] = None
    bank_account_number: Optional[str] = None

    class Config:
        from_attributes = True


# ===========================================
# BANK SCHEDULE
# ===========================================

class BankScheduleRecordResponse(BaseModel):
    payslip_id: UUID
    employee_id: UUID
    employee_name: str
    bank_name: Optional[str] = None
    bank_code: str
    account_number: str
    amount: Decimal
    errors: List[str] = []


class BankScheduleResponse(BaseModel):
    pay_run_id: UUID
    reference: str
    valid_count: int
    invalid_count: int
    total_valid_amount: Decimal
    can_generate: bool
    records: List[BankScheduleRecordResponse]
    invalid_records: List[BankScheduleRecordResponse]
