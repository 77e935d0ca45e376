"""
NairaPay Core - Celery Configuration

Celery configuration for background task processing.
Uses Redis as the message broker and result backend.
"""

from celery import Celery
from celery.schedules import crontab

from app.config import settings


# Create Celery app
celery_app = Celery(
    'nairapay_core',
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=['app.tasks.celery_tasks'],
)

# Celery configuration
celery_app.conf.update(
    # Serialization
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',

    # Timezone
    timezone='Africa/Lagos',
    enable_utc=True,

    # Task execution settings
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    task_time_limit=600,  # 10 minutes; large pay runs
    task_soft_time_limit=540,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=4,

    # Result backend settings
    result_expires=86400,  # 24 hours

    # Retry settings
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Beat schedule for periodic tasks
    beat_schedule={
        # Flag unpaid purchase orders past their due date every day at 7 AM
        'mark-overdue-purchase-orders': {
            'task': 'app.tasks.celery_tasks.mark_overdue_purchase_orders_task',
            'schedule': crontab(hour=7, minute=0),
        },
        # Re-seed statutory tax tables on the 1st of each month
        'seed-statutory-tax-tables': {
            'task': 'app.tasks.celery_tasks.seed_statutory_tax_tables_task',
            'schedule': crontab(day_of_month=1, hour=1, minute=0),
        },
    },
)


# Task routing
celery_app.conf.task_routes = {
    'app.tasks.celery_tasks.calculate_pay_run_task': {'queue': 'payroll'},
    'app.tasks.celery_tasks.*': {'queue': 'default'},
}
