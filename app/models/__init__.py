"""
NairaPay Core - SQLAlchemy Models Package

This package contains all database models for the application.
"""

from app.models.base import BaseModel, TimestampMixin, AuditMixin
from app.models.tenant import Tenant, Shop
from app.models.employee import (
    StaffRole,
    EmploymentType,
    PayType,
    PayFrequency,
    TaxHandling,
    DeductionType,
    DeductionBase,
    Employee,
    EmployeePayrollDetail,
    EmployeeTaxSettings,
    EmployeeCustomDeduction,
)
from app.models.tax_table import TaxLawVersion, ReliefType, TaxTable, TaxBand, TaxRelief
from app.models.payroll import (
    PayrollPeriodStatus,
    PayRunStatus,
    PayRunItemStatus,
    PayrollPeriod,
    PayRun,
    PayRunItem,
    Payslip,
)
from app.models.wage_advance import (
    WageAdvanceStatus,
    WageAdvance,
    WageAdvanceRepayment,
    OUTSTANDING_ADVANCE_STATUSES,
    REPAYABLE_ADVANCE_STATUSES,
)
from app.models.inventory import StockMovementType, StockItem, StockMovement
from app.models.purchase_order import (
    PurchaseOrderStatus,
    PurchaseOrderPaymentStatus,
    PaymentMethod,
    PurchaseOrder,
    PurchaseOrderItem,
    PurchaseOrderPayment,
)
from app.models.approval import (
    ApprovableType,
    ApprovalRequestStatus,
    ApprovalAction,
    FundRequestStatus,
    ApprovalChain,
    ApprovalRequest,
    ApprovalHistory,
    FundRequest,
)
from app.models.audit_log import AuditEntityType, AuditAction, PayrollAuditLog

__all__ = [
    # Base
    "BaseModel",
    "TimestampMixin",
    "AuditMixin",
    # Tenancy
    "Tenant",
    "Shop",
    # Employees
    "StaffRole",
    "EmploymentType",
    "PayType",
    "PayFrequency",
    "TaxHandling",
    "DeductionType",
    "DeductionBase",
    "Employee",
    "EmployeePayrollDetail",
    "EmployeeTaxSettings",
    "EmployeeCustomDeduction",
    # Tax tables
    "TaxLawVersion",
    "ReliefType",
    "TaxTable",
    "TaxBand",
    "TaxRelief",
    # Payroll
    "PayrollPeriodStatus",
    "PayRunStatus",
    "PayRunItemStatus",
    "PayrollPeriod",
    "PayRun",
    "PayRunItem",
    "Payslip",
    # Wage advances
    "WageAdvanceStatus",
    "WageAdvance",
    "WageAdvanceRepayment",
    "OUTSTANDING_ADVANCE_STATUSES",
    "REPAYABLE_ADVANCE_STATUSES",
    # Inventory
    "StockMovementType",
    "StockItem",
    "StockMovement",
    # Purchase orders
    "PurchaseOrderStatus",
    "PurchaseOrderPaymentStatus",
    "PaymentMethod",
    "PurchaseOrder",
    "PurchaseOrderItem",
    "PurchaseOrderPayment",
    # Approvals
    "ApprovableType",
    "ApprovalRequestStatus",
    "ApprovalAction",
    "FundRequestStatus",
    "ApprovalChain",
    "ApprovalRequest",
    "ApprovalHistory",
    "FundRequest",
    # Audit
    "AuditEntityType",
    "AuditAction",
    "PayrollAuditLog",
]
