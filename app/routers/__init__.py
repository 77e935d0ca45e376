"""
NairaPay Core - Routers Package

FastAPI route handlers.

Routers:
- tax: Tax tables, resolution and PAYE calculation
- payroll: Payroll periods, pay runs, payslips and bank schedules
- payroll_reports: PAYE and pension schedules, payroll journal, statistics
- wage_advances: Earned wage access
- purchase_orders: Inter-tenant purchase orders
- approvals: Approval chains and requests
- audit: Payroll audit trail
"""

from app.routers import (
    approvals,
    audit,
    payroll,
    payroll_reports,
    purchase_orders,
    tax,
    wage_advances,
)

__all__ = [
    "approvals",
    "audit",
    "payroll",
    "payroll_reports",
    "purchase_orders",
    "tax",
    "wage_advances",
]
