"""
NairaPay Core - Services Package

Business logic services.
"""

from app.services.approval_service import ApprovalService
from app.services.bank_schedule_service import BankScheduleService
from app.services.inventory_service import InventoryService
from app.services.pay_run_service import PayRunService
from app.services.purchase_order_service import PurchaseOrderService
from app.services.tax_table_service import TaxTableService
from app.services.wage_advance_service import WageAdvanceService

__all__ = [
    "ApprovalService",
    "BankScheduleService",
    "InventoryService",
    "PayRunService",
    "PurchaseOrderService",
    "TaxTableService",
    "WageAdvanceService",
]
