"""
NairaPay Core - Wage Advance Schemas
"""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.wage_advance import WageAdvanceStatus


class WageAdvanceRequest(BaseModel):
    employee_id: UUID
    amount: Decimal = Field(..., gt=0)
    reason: Optional[str] = None
    installments: Optional[int] = Field(None, ge=1)


class WageAdvanceApprove(BaseModel):
    amount: Optional[Decimal] = Field(None, gt=0, description="Approve less than requested")
    installments: Optional[int] = Field(None, ge=1)


class WageAdvanceReject(BaseModel):
    reason: str = Field(..., min_length=1)


class WageAdvanceDisburse(BaseModel):
    repayment_start_date: Optional[date] = None


class WageAdvanceCancel(BaseModel):
    reason: Optional[str] = None


class RepaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    pay_run_id: Optional[UUID] = None


class EligibilityResponse(BaseModel):
    employee_id: UUID
    eligible: bool
    estimated_monthly_pay: Decimal
    max_percentage: Decimal
    max_amount: Decimal
    outstanding_balance: Decimal
    active_advances: int
    max_active_advances: int
    available_amount: Decimal
    reasons: List[str] = []


class RepaymentResponse(BaseModel):
    id: UUID
    installment_number: int
    amount: Decimal
    balance_after: Decimal
    repaid_at: datetime
    source: str
    pay_run_id: Optional[UUID] = None

    class Config:
        from_attributes = True


class WageAdvanceResponse(BaseModel):
    id: UUID
    tenant_id: UUID
    shop_id: UUID
    employee_id: UUID
    amount_requested: Decimal
    amount_approved: Optional[Decimal] = None
    status: WageAdvanceStatus
    reason: Optional[str] = None
    requested_at: datetime
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    disbursed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    repayment_start_date: Optional[date] = None
    repayment_installments: int
    installments_paid: int
    amount_repaid: Decimal
    remaining_balance: Decimal
    fully_repaid_at: Optional[datetime] = None
    repayments: List[RepaymentResponse] = []

    class Config:
        from_attributes = True


class ScheduledInstallmentResponse(BaseModel):
    installment_number: int
    amount: Decimal
    balance_after: Decimal
    due_date: Optional[date] = None
    paid_at: Optional[datetime] = None
    is_paid: bool = False
