"""
NairaPay Core - Approval Models

Multi-step approval envelope. The wrapped entity is one of a closed set of
approvable types; the request stores the type tag and the entity id.
History rows are append-only.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text,
    Enum as SQLEnum, JSON,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin
from app.models.employee import StaffRole


class ApprovableType(str, Enum):
    PAYROLL_PERIOD = "payroll_period"
    FUND_REQUEST = "fund_request"
    PURCHASE_ORDER = "purchase_order"


class ApprovalRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApprovalAction(str, Enum):
    SUBMITTED = "submitted"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class FundRequestStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class ApprovalChain(BaseModel, AuditMixin):
    """
    Ordered approval steps for one approvable type and amount range.

    steps: [{"name": "Manager review", "required_role": "general_manager"}, ...]
    """

    __tablename__ = "approval_chains"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    approvable_type: Mapped[ApprovableType] = mapped_column(SQLEnum(ApprovableType), nullable=False)
    min_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    max_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    steps: Mapped[list] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    @property
    def step_count(self) -> int:
        return len(self.steps or [])

    def required_role_for(self, step_number: int) -> StaffRole:
        """Role required at a 1-based step."""
        return StaffRole(self.steps[step_number - 1]["required_role"])


class ApprovalRequest(BaseModel):
    """Pending or decided approval for one approvable entity."""

    __tablename__ = "approval_requests"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    chain_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("approval_chains.id", ondelete="RESTRICT"),
        nullable=False,
    )
    approvable_type: Mapped[ApprovableType] = mapped_column(SQLEnum(ApprovableType), nullable=False)
    approvable_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(18, 2), nullable=True)
    status: Mapped[ApprovalRequestStatus] = mapped_column(
        SQLEnum(ApprovalRequestStatus),
        default=ApprovalRequestStatus.PENDING,
        nullable=False,
    )
    current_step: Mapped[int] = mapped_column(
        Integer, default=1, nullable=False,
        comment="1-based step awaiting a decision",
    )
    requested_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    chain: Mapped["ApprovalChain"] = relationship("ApprovalChain")
    history: Mapped[List["ApprovalHistory"]] = relationship(
        "ApprovalHistory",
        back_populates="request",
        order_by="(ApprovalHistory.step, ApprovalHistory.created_at)",
    )


class ApprovalHistory(BaseModel):
    """Append-only decision log."""

    __tablename__ = "approval_history"

    approval_request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("approval_requests.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[ApprovalAction] = mapped_column(SQLEnum(ApprovalAction), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    actor_role: Mapped[StaffRole] = mapped_column(SQLEnum(StaffRole), nullable=False)
    comment: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    request: Mapped["ApprovalRequest"] = relationship("ApprovalRequest", back_populates="history")


class FundRequest(BaseModel):
    """Shop request for funds, approved through an approval chain."""

    __tablename__ = "fund_requests"

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
    requested_by_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    purpose: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[FundRequestStatus] = mapped_column(
        SQLEnum(FundRequestStatus),
        default=FundRequestStatus.PENDING,
        nullable=False,
    )
    decided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
