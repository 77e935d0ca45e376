"""
NairaPay Core - Background Tasks Package

Celery background tasks.
"""

from app.tasks.celery_tasks import (
    calculate_pay_run_task,
    mark_overdue_purchase_orders_task,
    run_async,
    seed_statutory_tax_tables_task,
)

__all__ = [
    "calculate_pay_run_task",
    "mark_overdue_purchase_orders_task",
    "run_async",
    "seed_statutory_tax_tables_task",
]
