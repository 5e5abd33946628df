"""
Celery Tasks - scheduled ledger maintenance

- daily overdue cash sweep (warn, then suspend drivers)
- daily integrity audit
- hourly repair of delivered orders that were never paid out
"""
import asyncio
from contextlib import contextmanager

from sqlalchemy import select

from ledger.workers.celery_app import celery_app
from ledger.db.database import get_task_session
from ledger.db.models.order import Order, OrderStatus
from ledger.domain.services.cash_debt_tracker import CashDebtTracker
from ledger.domain.services.commission_calculator import CommissionCalculator
from ledger.domain.services.integrity_auditor import IntegrityAuditor, SystemHealth
from ledger.domain.services.order_payout_service import OrderPayoutService
from ledger.domain.services.rate_config_store import RateConfigStore
from ledger.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


def _task_rate_store() -> RateConfigStore:
    # Each task runs on its own loop, so it gets its own store and sessions
    return RateConfigStore(session_factory=get_task_session)


@celery_app.task(name="ledger.workers.tasks.check_overdue_cash_debts")
def check_overdue_cash_debts():
    """Daily sweep: warn drivers nearing the deadline, suspend those past it."""

    async def _process():
        async with get_task_session() as db:
            summary = await CashDebtTracker(db).check_overdue_cash_debts()
        return {
            "checked": summary["checked"],
            "warned": len(summary["warned"]),
            "blocked": len(summary["blocked"]),
        }

    return run_async(_process())


@celery_app.task(name="ledger.workers.tasks.run_integrity_audit")
def run_integrity_audit():
    """Daily integrity audit. A critical report is logged as an error."""

    async def _process():
        async with get_task_session() as db:
            report = await IntegrityAuditor(db, _task_rate_store()).run_full_audit()

        if report.system_health == SystemHealth.CRITICAL:
            logger.error(
                "Integrity audit found critical violations",
                extra_data={
                    "failed_rules": [r.rule for r in report.results if not r.passed],
                },
            )
        return {
            "system_health": report.system_health.value,
            "total_checks": report.total_checks,
            "passed": report.passed,
            "failed": report.failed,
            "warnings": report.warnings,
        }

    return run_async(_process())


@celery_app.task(name="ledger.workers.tasks.distribute_pending_commissions")
def distribute_pending_commissions(batch_size: int = 100):
    """Pay out delivered orders that have no commission_distributed_at yet."""

    async def _process():
        distributed = 0
        failed = 0
        async with get_task_session() as db:
            result = await db.execute(
                select(Order.id)
                .where(
                    Order.status == OrderStatus.DELIVERED,
                    Order.commission_distributed_at.is_(None),
                )
                .order_by(Order.delivered_at, Order.id)
                .limit(batch_size)
            )
            # plain ids: a rollback inside the loop expires ORM objects
            order_ids = [row[0] for row in result.all()]

            payouts = OrderPayoutService(db, CommissionCalculator(_task_rate_store()))
            for order_id in order_ids:
                outcome = await payouts.distribute_commissions(order_id)
                if outcome.success:
                    distributed += 1
                else:
                    failed += 1
                    logger.warning(
                        "Could not distribute commissions",
                        extra_data={
                            "order_id": order_id,
                            "error_code": outcome.error_code.value if outcome.error_code else None,
                            "message": outcome.message,
                        },
                    )

        logger.info(
            "Pending commission distribution finished",
            extra_data={"found": len(order_ids), "distributed": distributed, "failed": failed},
        )
        return {"found": len(order_ids), "distributed": distributed, "failed": failed}

    return run_async(_process())
