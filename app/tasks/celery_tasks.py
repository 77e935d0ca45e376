"""
NairaPay Core - Celery Tasks

Background tasks: pay run calculation off the request path, and the
scheduled purchase order and tax table sweeps.
"""

import asyncio
import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional

from celery import shared_task

from app.database import session_scope
from app.utils.error_handling import ConcurrentModificationException

logger = logging.getLogger(__name__)


def run_async(coro):
    """Helper to run async functions in Celery tasks."""
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(coro)
    finally:
        loop.close()


# ===========================================
# PAYROLL TASKS
# ===========================================

@shared_task(
    bind=True,
    name='app.tasks.celery_tasks.calculate_pay_run_task',
    autoretry_for=(ConcurrentModificationException,),
    retry_backoff=True,
    max_retries=3,
)
def calculate_pay_run_task(self, tenant_id: str, pay_run_id: str) -> Dict[str, Any]:
    """Calculate every item of a pay run; retried when another writer wins the race."""
    return run_async(_calculate_pay_run(uuid.UUID(tenant_id), uuid.UUID(pay_run_id)))


async def _calculate_pay_run(tenant_id: uuid.UUID, pay_run_id: uuid.UUID) -> Dict[str, Any]:
    from app.services.pay_run_service import PayRunService

    async with session_scope() as db:
        pay_run = await PayRunService(db).calculate_pay_run(tenant_id, pay_run_id)
        logger.info(
            f"Pay run {pay_run.reference} calculated: "
            f"{pay_run.calculated_count} ok, {pay_run.error_count} error(s)"
        )
        return {
            "pay_run_id": str(pay_run.id),
            "reference": pay_run.reference,
            "status": pay_run.status.value,
            "calculated": pay_run.calculated_count,
            "errors": pay_run.error_count,
            "total_net": str(pay_run.total_net),
        }


# ===========================================
# PURCHASE ORDER TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.mark_overdue_purchase_orders_task')
def mark_overdue_purchase_orders_task(today: Optional[str] = None) -> Dict[str, Any]:
    """Flag unpaid purchase orders whose payment due date has passed."""
    return run_async(_mark_overdue_purchase_orders(date.fromisoformat(today) if today else None))


async def _mark_overdue_purchase_orders(today: Optional[date]) -> Dict[str, Any]:
    from app.services.purchase_order_service import PurchaseOrderService

    async with session_scope() as db:
        updated = await PurchaseOrderService(db).mark_overdue(today)
        logger.info(f"Overdue purchase order sweep complete: {updated} order(s) updated")
        return {"orders_updated": updated}


# ===========================================
# TAX TABLE TASKS
# ===========================================

@shared_task(name='app.tasks.celery_tasks.seed_statutory_tax_tables_task')
def seed_statutory_tax_tables_task() -> Dict[str, Any]:
    """Insert any statutory tax table that is missing."""
    return run_async(_seed_statutory_tax_tables())


async def _seed_statutory_tax_tables() -> Dict[str, Any]:
    from app.services.tax_table_service import TaxTableService

    async with session_scope() as db:
        created = await TaxTableService(db).seed_statutory_tables()
        return {"tables_created": [table.name for table in created]}
