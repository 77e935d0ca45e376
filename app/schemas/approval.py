"""
NairaPay Core - Approval Schemas
"""

from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.approval import (
    ApprovableType,
    ApprovalAction,
    ApprovalRequestStatus,
    FundRequestStatus,
)
from app.models.employee import StaffRole


class ApprovalStep(BaseModel):
    name: Optional[str] = None
    required_role: StaffRole


class ApprovalChainCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    approvable_type: ApprovableType
    steps: List[ApprovalStep] = Field(..., min_length=1)
    min_amount: Optional[Decimal] = Field(None, ge=0)
    max_amount: Optional[Decimal] = Field(None, ge=0)
    priority: int = 0


class ApprovalChainResponse(BaseModel):
    id: UUID
    name: str
    approvable_type: ApprovableType
    steps: List[ApprovalStep]
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    priority: int
    is_active: bool

    class Config:
        from_attributes = True


class ApprovalSubmit(BaseModel):
    approvable_type: ApprovableType
    approvable_id: UUID
    comment: Optional[str] = None


class ApprovalDecision(BaseModel):
    comment: Optional[str] = None


class ApprovalHistoryResponse(BaseModel):
    step: int
    action: ApprovalAction
    actor_id: UUID
    actor_role: StaffRole
    comment: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ApprovalRequestResponse(BaseModel):
    id: UUID
    chain_id: UUID
    approvable_type: ApprovableType
    approvable_id: UUID
    amount: Optional[Decimal] = None
    status: ApprovalRequestStatus
    current_step: int
    requested_by_id: UUID
    completed_at: Optional[datetime] = None
    history: List[ApprovalHistoryResponse] = []
    created_at: datetime

    class Config:
        from_attributes = True


class FundRequestCreate(BaseModel):
    shop_id: UUID
    amount: Decimal = Field(..., gt=0)
    purpose: str = Field(..., min_length=1)


class FundRequestResponse(BaseModel):
    id: UUID
    shop_id: UUID
    requested_by_id: UUID
    amount: Decimal
    purpose: str
    status: FundRequestStatus
    decided_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
