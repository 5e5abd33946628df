"""
Service wiring for route handlers.

The rate store is built once per application (app.state.rate_store) so every
request shares its cache; everything else is built per request around the
request's session.
"""
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.db.database import get_db
from ledger.domain.services.cash_debt_tracker import CashDebtTracker
from ledger.domain.services.commission_calculator import CommissionCalculator
from ledger.domain.services.order_payout_service import OrderPayoutService
from ledger.domain.services.rate_config_store import RateConfigStore
from ledger.domain.services.settlement_reconciler import SettlementReconciler
from ledger.domain.services.wallet_ledger import WalletLedger


def get_rate_store(request: Request) -> RateConfigStore:
    return request.app.state.rate_store


def get_wallet_ledger(db: AsyncSession = Depends(get_db)) -> WalletLedger:
    return WalletLedger(db)


def get_cash_tracker(
    db: AsyncSession = Depends(get_db),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> CashDebtTracker:
    return CashDebtTracker(db, ledger)


def get_settlement_reconciler(
    db: AsyncSession = Depends(get_db),
    ledger: WalletLedger = Depends(get_wallet_ledger),
) -> SettlementReconciler:
    return SettlementReconciler(db, ledger)


def get_payout_service(
    db: AsyncSession = Depends(get_db),
    ledger: WalletLedger = Depends(get_wallet_ledger),
    rate_store: RateConfigStore = Depends(get_rate_store),
) -> OrderPayoutService:
    return OrderPayoutService(
        db,
        CommissionCalculator(rate_store),
        ledger=ledger,
        cash_tracker=CashDebtTracker(db, ledger),
    )
