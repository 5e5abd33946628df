"""
Domain Services
"""
from ledger.domain.services.rate_config_store import RateConfigStore, CommissionRates
from ledger.domain.services.commission_calculator import (
    CommissionCalculator,
    CommissionSplit,
    split_order_total,
)
from ledger.domain.services.wallet_ledger import WalletLedger
from ledger.domain.services.cash_debt_tracker import CashDebtTracker, CashOrderDecision
from ledger.domain.services.settlement_reconciler import SettlementReconciler, SettlementResult
from ledger.domain.services.integrity_auditor import IntegrityAuditor, AuditReport, AuditResult
from ledger.domain.services.order_payout_service import OrderPayoutService, PayoutResult

__all__ = [
    "RateConfigStore",
    "CommissionRates",
    "CommissionCalculator",
    "CommissionSplit",
    "split_order_total",
    "WalletLedger",
    "CashDebtTracker",
    "CashOrderDecision",
    "SettlementReconciler",
    "SettlementResult",
    "IntegrityAuditor",
    "AuditReport",
    "AuditResult",
    "OrderPayoutService",
    "PayoutResult",
]
