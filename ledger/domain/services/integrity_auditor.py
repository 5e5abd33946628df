"""
Integrity Auditor - read-only verification of the ledger's invariants

Each check runs on its own; one that blows up is reported as a critical
"System Error" finding and the rest still run. Nothing here writes, so the
auditor can be pointed at a read replica.
"""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.core.config import settings
from ledger.core.exceptions import RateConfigurationError
from ledger.core.logging import get_logger, log_async_operation
from ledger.core.money import round_half_up
from ledger.db.models.business import Business
from ledger.db.models.order import Order, OrderStatus, PaymentMethod
from ledger.db.models.payment import Payment, PaymentStatus
from ledger.db.models.transaction import (
    Transaction, TransactionStatus, TransactionType, LedgerAccount,
)
from ledger.db.models.wallet import Wallet
from ledger.domain.services.commission_calculator import expected_order_total
from ledger.domain.services.rate_config_store import (
    RateConfigStore,
    REQUIRED_PASS_THROUGH_TOTAL,
)

logger = get_logger(__name__)

PAYOUT_ENTRY_TYPES = (
    TransactionType.ORDER_INCOME,
    TransactionType.DELIVERY_PAYMENT,
    TransactionType.CASH_DEBT_PAYMENT,
)


class Severity(str, Enum):
    CRITICAL = "critical"
    WARNING = "warning"


class SystemHealth(str, Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class AuditResult:
    rule: str
    passed: bool
    severity: Severity
    details: str
    affected_entities: List[Any] = field(default_factory=list)
    expected: Any = None
    actual: Any = None


@dataclass
class AuditReport:
    timestamp: datetime
    total_checks: int
    passed: int
    failed: int
    warnings: int
    results: List[AuditResult]
    system_health: SystemHealth

    def to_dict(self) -> dict:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


class IntegrityAuditor:
    """Batch verifier producing a severity-tagged report"""

    def __init__(
        self,
        db: AsyncSession,
        rate_store: RateConfigStore,
        sample_limit: Optional[int] = None,
    ):
        self.db = db
        self.rate_store = rate_store
        self.sample_limit = sample_limit or settings.AUDIT_SAMPLE_LIMIT

    def _result(
        self,
        rule: str,
        severity: Severity,
        offenders: list,
        ok_details: str,
        failed_details: str,
        expected: Any = None,
        actual: Any = None,
    ) -> AuditResult:
        passed = not offenders
        return AuditResult(
            rule=rule,
            passed=passed,
            severity=severity,
            details=ok_details if passed else failed_details.format(count=len(offenders)),
            affected_entities=offenders[: self.sample_limit],
            expected=expected,
            actual=actual,
        )

    async def check_commission_rates(self) -> AuditResult:
        rates = await self.rate_store.load_configured_rates()
        try:
            rates.validate()
        except RateConfigurationError as e:
            return AuditResult(
                rule="commission_rates_sum",
                passed=False,
                severity=Severity.CRITICAL,
                details=e.message,
                affected_entities=[rates.as_dict()],
                expected=REQUIRED_PASS_THROUGH_TOTAL,
                actual=rates.allocated_total,
            )
        return AuditResult(
            rule="commission_rates_sum",
            passed=True,
            severity=Severity.CRITICAL,
            details="Commission rates are in range and sum to the required total",
            expected=REQUIRED_PASS_THROUGH_TOTAL,
            actual=rates.allocated_total,
        )

    async def check_order_totals(self) -> AuditResult:
        result = await self.db.execute(
            select(Order.id, Order.subtotal, Order.delivery_fee, Order.total)
        )
        offenders = []
        for order_id, subtotal, delivery_fee, total in result.all():
            expected = expected_order_total(subtotal, delivery_fee, settings.ORDER_TAX_RATE)
            if total != expected:
                offenders.append({"order_id": order_id, "expected": expected, "actual": total})
        return self._result(
            "order_totals",
            Severity.CRITICAL,
            offenders,
            "Every order total equals subtotal + delivery fee + tax",
            "{count} orders have a total that does not add up",
        )

    async def check_commission_splits(self) -> AuditResult:
        result = await self.db.execute(
            select(
                Order.id, Order.total, Order.platform_fee,
                Order.business_earnings, Order.delivery_earnings,
            ).where(Order.status == OrderStatus.DELIVERED)
        )
        offenders = []
        for order_id, total, platform, business, driver in result.all():
            if platform is None or business is None or driver is None:
                offenders.append({"order_id": order_id, "total": total, "reason": "split missing"})
                continue
            split_sum = platform + business + driver
            if split_sum != total:
                offenders.append({"order_id": order_id, "expected": total, "actual": split_sum})
        return self._result(
            "commission_split_sums",
            Severity.CRITICAL,
            offenders,
            "Every delivered order's split sums to its total",
            "{count} delivered orders have a split that does not sum to the total",
        )

    async def _account_mismatches(self, account: LedgerAccount) -> list:
        column = getattr(Wallet, account.value)
        entries = (
            select(
                Transaction.wallet_id.label("wallet_id"),
                func.sum(Transaction.amount).label("total"),
            )
            .where(
                Transaction.account == account,
                Transaction.status == TransactionStatus.COMPLETED,
            )
            .group_by(Transaction.wallet_id)
            .subquery()
        )
        result = await self.db.execute(
            select(Wallet.id, Wallet.user_id, column, func.coalesce(entries.c.total, 0))
            .outerjoin(entries, entries.c.wallet_id == Wallet.id)
        )
        return [
            {"wallet_id": wallet_id, "user_id": user_id, "expected": int(summed), "actual": stored}
            for wallet_id, user_id, stored, summed in result.all()
            if stored != int(summed)
        ]

    async def check_wallet_balances(self) -> AuditResult:
        offenders = await self._account_mismatches(LedgerAccount.BALANCE)
        return self._result(
            "wallet_balance_matches_transactions",
            Severity.CRITICAL,
            offenders,
            "Every wallet balance equals the sum of its transactions",
            "{count} wallets have a balance that differs from their transaction history",
        )

    async def check_transaction_chains(self) -> AuditResult:
        result = await self.db.execute(
            select(
                Transaction.id, Transaction.wallet_id, Transaction.account,
                Transaction.amount, Transaction.balance_before, Transaction.balance_after,
            )
            .where(Transaction.status == TransactionStatus.COMPLETED)
            .order_by(
                Transaction.wallet_id, Transaction.account,
                Transaction.created_at, Transaction.id,
            )
        )
        offenders = []
        last_after: dict[tuple, int] = {}
        for txn_id, wallet_id, account, amount, before, after in result.all():
            if after != before + amount:
                offenders.append({
                    "transaction_id": txn_id,
                    "reason": "balance_after != balance_before + amount",
                    "expected": before + amount,
                    "actual": after,
                })
            # wallets start at zero, so the first entry of a chain starts there too
            previous = last_after.get((wallet_id, account), 0)
            if before != previous:
                offenders.append({
                    "transaction_id": txn_id,
                    "reason": "chain broken",
                    "expected": previous,
                    "actual": before,
                })
            last_after[(wallet_id, account)] = after
        return self._result(
            "transaction_chain_consistency",
            Severity.CRITICAL,
            offenders,
            "Every transaction chain is consistent",
            "{count} transaction chain breaks found",
        )

    async def check_payments_match_orders(self) -> AuditResult:
        result = await self.db.execute(
            select(Payment.id, Payment.order_id, Payment.amount, Order.id, Order.total)
            .outerjoin(Order, Order.id == Payment.order_id)
            .where(
                Payment.status == PaymentStatus.SUCCEEDED,
                Order.id.is_(None) | (Payment.amount != Order.total),
            )
        )
        offenders = []
        for payment_id, order_id, amount, found_order_id, total in result.all():
            if found_order_id is None:
                offenders.append({
                    "payment_id": payment_id,
                    "order_id": order_id,
                    "reason": "order not found",
                    "actual": amount,
                })
            else:
                offenders.append({
                    "payment_id": payment_id,
                    "order_id": order_id,
                    "expected": total,
                    "actual": amount,
                })
        return self._result(
            "payments_match_orders",
            Severity.WARNING,
            offenders,
            "Every successful payment matches its order total",
            "{count} payments are unlinked or differ from their order total",
        )

    async def check_transaction_amounts_match_orders(self) -> AuditResult:
        """Ledger credits of each distributed card order against the split stored on it"""
        booked_rows = await self.db.execute(
            select(
                Transaction.order_id, Transaction.user_id, Transaction.type,
                func.sum(Transaction.amount),
            )
            .where(
                Transaction.order_id.isnot(None),
                Transaction.status == TransactionStatus.COMPLETED,
                Transaction.type.in_(PAYOUT_ENTRY_TYPES),
            )
            .group_by(Transaction.order_id, Transaction.user_id, Transaction.type)
        )
        booked: dict[tuple, int] = {}
        for order_id, user_id, txn_type, amount in booked_rows.all():
            share = "business" if txn_type == TransactionType.ORDER_INCOME else "driver"
            # cash debt paid out of the driver's share still went to the driver
            paid = -amount if txn_type == TransactionType.CASH_DEBT_PAYMENT else amount
            key = (order_id, user_id, share)
            booked[key] = booked.get(key, 0) + int(paid)

        orders = await self.db.execute(
            select(
                Order.id, Business.owner_id, Order.driver_id,
                Order.business_earnings, Order.delivery_earnings,
            )
            .join(Business, Business.id == Order.business_id)
            .where(
                Order.status == OrderStatus.DELIVERED,
                Order.payment_method == PaymentMethod.CARD,
                Order.commission_distributed_at.isnot(None),
            )
        )
        offenders = []
        for order_id, owner_id, driver_id, business_share, driver_share in orders.all():
            expected_shares = [("business", owner_id, business_share)]
            if driver_id is not None:
                expected_shares.append(("driver", driver_id, driver_share))
            for share, user_id, expected in expected_shares:
                actual = booked.get((order_id, user_id, share), 0)
                if actual != (expected or 0):
                    offenders.append({
                        "order_id": order_id,
                        "user_id": user_id,
                        "share": share,
                        "expected": expected or 0,
                        "actual": actual,
                    })
        return self._result(
            "transaction_amounts_match_orders",
            Severity.CRITICAL,
            offenders,
            "Every card payout booked in the ledger matches the order's split",
            "{count} order payouts differ from the ledger entries booked for them",
        )

    async def check_driver_earnings(self) -> AuditResult:
        rates = await self.rate_store.load_configured_rates()
        driver_rate = Decimal(str(rates.driver))
        result = await self.db.execute(
            select(Order.id, Order.delivery_fee, Order.delivery_earnings).where(
                Order.status == OrderStatus.DELIVERED,
                Order.driver_id.isnot(None),
                Order.delivery_earnings.isnot(None),
            )
        )
        offenders = []
        for order_id, delivery_fee, earnings in result.all():
            expected = round_half_up(Decimal(delivery_fee) * driver_rate)
            if earnings != expected:
                offenders.append({"order_id": order_id, "expected": expected, "actual": earnings})
        return self._result(
            "driver_earnings_match_rate",
            Severity.CRITICAL,
            offenders,
            "Every driver was paid the configured share of the delivery fee",
            "{count} orders paid the driver a different amount than the configured rate",
            expected=rates.driver,
        )

    async def check_cash_owed(self) -> AuditResult:
        offenders = await self._account_mismatches(LedgerAccount.CASH_OWED)
        return self._result(
            "cash_owed_matches_transactions",
            Severity.CRITICAL,
            offenders,
            "Every wallet's cash owed equals the sum of its cash entries",
            "{count} wallets have cash owed that differs from their cash entries",
        )

    async def check_non_negative_wallets(self) -> AuditResult:
        result = await self.db.execute(
            select(Wallet.id, Wallet.user_id, Wallet.balance, Wallet.cash_owed).where(
                (Wallet.balance < 0) | (Wallet.cash_owed < 0)
            )
        )
        offenders = [
            {"wallet_id": wallet_id, "user_id": user_id, "balance": balance, "cash_owed": cash_owed}
            for wallet_id, user_id, balance, cash_owed in result.all()
        ]
        return self._result(
            "non_negative_wallets",
            Severity.CRITICAL,
            offenders,
            "No wallet is negative",
            "{count} wallets have a negative balance or cash owed",
        )

    def _checks(self) -> List[tuple[str, Callable[[], Awaitable[AuditResult]]]]:
        return [
            ("commission_rates_sum", self.check_commission_rates),
            ("order_totals", self.check_order_totals),
            ("commission_split_sums", self.check_commission_splits),
            ("wallet_balance_matches_transactions", self.check_wallet_balances),
            ("transaction_chain_consistency", self.check_transaction_chains),
            ("payments_match_orders", self.check_payments_match_orders),
            ("transaction_amounts_match_orders", self.check_transaction_amounts_match_orders),
            ("driver_earnings_match_rate", self.check_driver_earnings),
            ("cash_owed_matches_transactions", self.check_cash_owed),
            ("non_negative_wallets", self.check_non_negative_wallets),
        ]

    async def _run_check(
        self, rule: str, check: Callable[[], Awaitable[AuditResult]]
    ) -> AuditResult:
        try:
            return await check()
        except Exception as e:
            logger.error(
                "Audit check crashed",
                extra_data={"rule": rule, "error": str(e)},
                exc_info=True,
            )
            # a failed statement poisons the transaction for the next check
            await self.db.rollback()
            return AuditResult(
                rule=rule,
                passed=False,
                severity=Severity.CRITICAL,
                details=f"System Error: {e}",
            )

    @log_async_operation("integrity_audit")
    async def run_full_audit(self) -> AuditReport:
        results = [await self._run_check(rule, check) for rule, check in self._checks()]

        failed = [r for r in results if not r.passed]
        critical = [r for r in failed if r.severity == Severity.CRITICAL]
        warnings = [r for r in failed if r.severity == Severity.WARNING]

        if critical:
            health = SystemHealth.CRITICAL
        elif warnings:
            health = SystemHealth.WARNING
        else:
            health = SystemHealth.HEALTHY

        report = AuditReport(
            timestamp=datetime.utcnow(),
            total_checks=len(results),
            passed=len(results) - len(failed),
            failed=len(critical),
            warnings=len(warnings),
            results=results,
            system_health=health,
        )

        log = logger.error if health == SystemHealth.CRITICAL else logger.info
        log(
            "Integrity audit finished",
            extra_data={
                "system_health": health.value,
                "passed": report.passed,
                "failed": report.failed,
                "failed_rules": [r.rule for r in failed],
            },
        )
        return report
