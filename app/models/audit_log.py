"""
NairaPay Core - Payroll Audit Log

Append-only record of state changes on pay runs, wage advances and purchase
orders. Rows are written in the same transaction as the change they
describe, so a rolled back transition leaves no entry behind.
"""

import uuid
from enum import Enum
from typing import Optional

from sqlalchemy import ForeignKey, String, Enum as SQLEnum, JSON
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel


class AuditEntityType(str, Enum):
    PAY_RUN = "pay_run"
    WAGE_ADVANCE = "wage_advance"
    PURCHASE_ORDER = "purchase_order"


class AuditAction(str, Enum):
    PAY_RUN_CREATED = "pay_run_created"
    PAY_RUN_CALCULATED = "pay_run_calculated"
    PAY_RUN_SUBMITTED = "pay_run_submitted"
    PAY_RUN_APPROVED = "pay_run_approved"
    PAY_RUN_REJECTED = "pay_run_rejected"
    PAY_RUN_COMPLETED = "pay_run_completed"
    PAY_RUN_CANCELLED = "pay_run_cancelled"
    EMPLOYEE_EXCLUDED = "employee_excluded"
    EMPLOYEE_INCLUDED = "employee_included"

    ADVANCE_REQUESTED = "advance_requested"
    ADVANCE_APPROVED = "advance_approved"
    ADVANCE_REJECTED = "advance_rejected"
    ADVANCE_DISBURSED = "advance_disbursed"
    ADVANCE_CANCELLED = "advance_cancelled"
    ADVANCE_REPAYMENT = "advance_repayment"

    ORDER_STATUS_CHANGED = "order_status_changed"
    ORDER_PAYMENT = "order_payment"

    @property
    def label(self) -> str:
        return self.value.replace("_", " ").capitalize()


class PayrollAuditLog(BaseModel):
    """One audited action. Never updated or deleted."""

    __tablename__ = "payroll_audit_logs"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    entity_type: Mapped[AuditEntityType] = mapped_column(SQLEnum(AuditEntityType), nullable=False)
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[AuditAction] = mapped_column(SQLEnum(AuditAction), nullable=False, index=True)
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), nullable=True, index=True)

    from_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    to_status: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    # Run totals, amounts, reasons; whatever the action needs to be read back
    details: Mapped[Optional[dict]] = mapped_column(JSON, nullable=True)
