"""
Celery Application Configuration
"""
from celery import Celery
from celery.schedules import crontab

from ledger.core.config import settings

celery_app = Celery(
    "commission_ledger",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["ledger.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="America/Mexico_City",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # the audit scans whole tables
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Warn at 5 days, suspend drivers whose cash debt is older than 7 days
    "check-overdue-cash-debts-daily": {
        "task": "ledger.workers.tasks.check_overdue_cash_debts",
        "schedule": crontab(hour="6", minute="0"),
    },
    "run-integrity-audit-daily": {
        "task": "ledger.workers.tasks.run_integrity_audit",
        "schedule": crontab(hour="3", minute="30"),
    },
    # Delivered orders whose payout never happened (data from before atomic payouts)
    "distribute-pending-commissions-hourly": {
        "task": "ledger.workers.tasks.distribute_pending_commissions",
        "schedule": 3600.0,
    },
}
