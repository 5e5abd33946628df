"""
Helpers for end-to-end ledger scenarios.

Provides:
- a wired set of services around the test session
- DB assertions for wallets and orders
- a full audit that must come back healthy
"""
from dataclasses import dataclass
from unittest.mock import patch

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.core.config import settings
from ledger.db.models.order import Order, OrderStatus
from ledger.db.models.wallet import Wallet
from ledger.domain.services.cash_debt_tracker import CashDebtTracker
from ledger.domain.services.commission_calculator import CommissionCalculator
from ledger.domain.services.integrity_auditor import IntegrityAuditor, SystemHealth
from ledger.domain.services.order_payout_service import OrderPayoutService
from ledger.domain.services.rate_config_store import RateConfigStore
from ledger.domain.services.settlement_reconciler import SettlementReconciler
from ledger.domain.services.wallet_ledger import WalletLedger


@dataclass
class LedgerServices:
    rate_store: RateConfigStore
    ledger: WalletLedger
    cash: CashDebtTracker
    payouts: OrderPayoutService
    settlements: SettlementReconciler
    auditor: IntegrityAuditor


@pytest.fixture(autouse=True)
def scenario_settings():
    with patch.object(settings, "MAX_CASH_OWED", 50000), \
         patch.object(settings, "LIQUIDATION_DEADLINE_DAYS", 7), \
         patch.object(settings, "WARNING_THRESHOLD_DAYS", 5), \
         patch.object(settings, "ORDER_TAX_RATE", 0.0):
        yield


@pytest.fixture
def services(db_session: AsyncSession, rate_store: RateConfigStore) -> LedgerServices:
    ledger = WalletLedger(db_session)
    cash = CashDebtTracker(db_session, ledger)
    return LedgerServices(
        rate_store=rate_store,
        ledger=ledger,
        cash=cash,
        payouts=OrderPayoutService(
            db_session, CommissionCalculator(rate_store), ledger=ledger, cash_tracker=cash
        ),
        settlements=SettlementReconciler(db_session, ledger),
        auditor=IntegrityAuditor(db_session, rate_store),
    )


async def assert_wallet(
    db: AsyncSession,
    user_id: int,
    *,
    balance: int | None = None,
    cash_owed: int | None = None,
) -> None:
    """Compare the stored wallet columns, reading from the DB"""
    result = await db.execute(
        select(Wallet.balance, Wallet.cash_owed).where(Wallet.user_id == user_id)
    )
    row = result.one()
    if balance is not None:
        assert row.balance == balance, f"balance {row.balance} != {balance}"
    if cash_owed is not None:
        assert row.cash_owed == cash_owed, f"cash_owed {row.cash_owed} != {cash_owed}"


async def assert_order_status(db: AsyncSession, order_id: int, expected: OrderStatus) -> None:
    result = await db.execute(select(Order.status).where(Order.id == order_id))
    actual = result.scalar_one()
    assert actual == expected, f"order {order_id}: {actual} != {expected}"


async def assert_ledger_healthy(services: LedgerServices) -> None:
    report = await services.auditor.run_full_audit()
    failed = [(r.rule, r.details) for r in report.results if not r.passed]
    assert report.system_health == SystemHealth.HEALTHY, failed
