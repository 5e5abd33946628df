"""
Cash Debt Tracker - cash collected by drivers on cash-on-delivery orders

When a driver delivers a cash order, the business and platform shares of the
cash they collected become debt (wallet.cash_owed) until the business
confirms it received the money. The platform share left over after
settlement is taken out of the driver's next card earnings. Drivers are refused new cash orders above
MAX_CASH_OWED or while any debt is older than LIQUIDATION_DEADLINE_DAYS, and
the daily sweep suspends accounts whose debt stays overdue.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.core.config import settings
from ledger.core.exceptions import ErrorCode, UserNotFoundError
from ledger.core.logging import get_logger
from ledger.core.money import require_centavos, format_mxn
from ledger.db.models.order import Order, OrderStatus, PaymentMethod
from ledger.db.models.transaction import Transaction, TransactionType
from ledger.db.models.user import User
from ledger.db.models.wallet import Wallet
from ledger.domain.services.wallet_ledger import WalletLedger

logger = get_logger(__name__)


@dataclass
class CashOrderDecision:
    allowed: bool
    reason: Optional[str] = None
    cash_owed: int = 0
    error_code: Optional[ErrorCode] = None


@dataclass
class DriverDebt:
    driver_id: int
    cash_owed: int
    max_cash_owed: int
    oldest_days_outstanding: Optional[int]
    is_overdue: bool
    pending_orders: List[dict] = field(default_factory=list)


def _outstanding_since():
    return func.coalesce(Order.delivered_at, Order.created_at)


def _unsettled_cash_orders():
    return (
        Order.payment_method == PaymentMethod.CASH,
        Order.status == OrderStatus.DELIVERED,
        Order.cash_settled == False,  # noqa: E712
    )


def _days_outstanding(since: datetime, now: datetime) -> int:
    # whole days, truncated: 7 days 23 hours is still 7
    return max((now - since).days, 0)


class CashDebtTracker:
    """Driver cash debt accounting and the accept/block policy"""

    def __init__(self, db: AsyncSession, ledger: Optional[WalletLedger] = None):
        self.db = db
        self.ledger = ledger or WalletLedger(db)

    async def _cash_owed(self, driver_id: int) -> int:
        wallet = await self.ledger.get_wallet(driver_id)
        return wallet.cash_owed if wallet else 0

    async def _oldest_outstanding_since(self, driver_id: int) -> Optional[datetime]:
        result = await self.db.execute(
            select(func.min(_outstanding_since())).where(
                Order.driver_id == driver_id,
                *_unsettled_cash_orders(),
            )
        )
        return result.scalar_one_or_none()

    async def has_overdue_debt(self, driver_id: int, now: Optional[datetime] = None) -> bool:
        """True when the oldest unsettled cash order is past the liquidation deadline"""
        since = await self._oldest_outstanding_since(driver_id)
        if since is None:
            return False
        now = now or datetime.utcnow()
        return _days_outstanding(since, now) > settings.LIQUIDATION_DEADLINE_DAYS

    async def can_accept_cash_order(
        self, driver_id: int, now: Optional[datetime] = None
    ) -> CashOrderDecision:
        """
        Decide whether the driver may take another cash order.

        Refused when the account is suspended, when cash_owed reached
        MAX_CASH_OWED, or when some debt is overdue. The reason always states
        how much the driver owes.
        """
        driver = await self.db.get(User, driver_id)
        if driver is None:
            raise UserNotFoundError(driver_id)

        cash_owed = await self._cash_owed(driver_id)

        if not driver.is_active:
            return CashOrderDecision(
                allowed=False,
                reason=driver.blocked_reason or "Account is suspended",
                cash_owed=cash_owed,
                error_code=ErrorCode.USER_BLOCKED,
            )

        if cash_owed >= settings.MAX_CASH_OWED:
            return CashOrderDecision(
                allowed=False,
                reason=(
                    f"Cash limit reached: you owe {format_mxn(cash_owed)} "
                    f"(limit {format_mxn(settings.MAX_CASH_OWED)}). "
                    "Hand the collected cash to the businesses to accept cash orders again."
                ),
                cash_owed=cash_owed,
                error_code=ErrorCode.CASH_LIMIT_EXCEEDED,
            )

        if await self.has_overdue_debt(driver_id, now=now):
            return CashOrderDecision(
                allowed=False,
                reason=(
                    f"You owe {format_mxn(cash_owed)} in cash older than "
                    f"{settings.LIQUIDATION_DEADLINE_DAYS} days. "
                    "Settle it before accepting cash orders."
                ),
                cash_owed=cash_owed,
                error_code=ErrorCode.CASH_DEBT_OVERDUE,
            )

        return CashOrderDecision(allowed=True, cash_owed=cash_owed)

    async def update_cash_owed(
        self,
        driver_id: int,
        amount: int,
        order_id: int,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> Transaction:
        """Record cash a driver collected and now owes, as a cash_debt entry"""
        require_centavos(amount, "amount", allow_zero=False)
        return await self.ledger.adjust_cash_owed(
            driver_id,
            amount,
            TransactionType.CASH_DEBT,
            order_id=order_id,
            description=description or f"Cash collected for order #{order_id}",
            commit=commit,
        )

    async def recoverable_cash_debt(self, driver_id: int) -> int:
        """
        Cash owed that no business is waiting for.

        The business shares of unsettled cash orders are relieved by
        settlement, so only what remains above them (the platform shares)
        can be taken out of the driver's card earnings.
        """
        result = await self.db.execute(
            select(func.coalesce(func.sum(Order.business_earnings), 0)).where(
                Order.driver_id == driver_id,
                *_unsettled_cash_orders(),
            )
        )
        awaiting_settlement = int(result.scalar_one())
        return max(await self._cash_owed(driver_id) - awaiting_settlement, 0)

    async def collect_from_earnings(
        self,
        driver_id: int,
        earnings: int,
        order_id: int,
        commit: bool = True,
    ) -> int:
        """
        Pay down recoverable cash debt out of a card order's driver share.

        Returns:
            The amount taken; the caller credits only the rest to the balance.
        """
        require_centavos(earnings, "earnings")
        taken = min(earnings, await self.recoverable_cash_debt(driver_id))
        if taken <= 0:
            return 0

        entry = await self.ledger.adjust_cash_owed(
            driver_id,
            -taken,
            TransactionType.CASH_DEBT_PAYMENT,
            order_id=order_id,
            description=f"Cash debt paid from earnings of order #{order_id}",
            commit=commit,
        )
        logger.info(
            "Cash debt recovered from card earnings",
            extra_data={
                "driver_id": driver_id,
                "order_id": order_id,
                "amount": taken,
                "remaining_cash_owed": entry.balance_after,
            },
        )
        return taken

    async def block_driver_for_overdue_cash(
        self, driver: User, cash_owed: int, days_outstanding: int
    ) -> None:
        """Deactivate the driver; the caller commits"""
        driver.is_active = False
        driver.blocked_reason = (
            f"Account suspended: cash debt of {format_mxn(cash_owed)} "
            f"outstanding for {days_outstanding} days "
            f"(limit {settings.LIQUIDATION_DEADLINE_DAYS} days)."
        )
        logger.warning(
            "Driver suspended for overdue cash debt",
            extra_data={
                "driver_id": driver.id,
                "cash_owed": cash_owed,
                "days_outstanding": days_outstanding,
            },
        )

    async def check_overdue_cash_debts(self, now: Optional[datetime] = None) -> dict:
        """
        Daily sweep over drivers with unsettled cash orders.

        Drivers at WARNING_THRESHOLD_DAYS or more are reported as warned,
        drivers past LIQUIDATION_DEADLINE_DAYS are suspended.

        Returns:
            dict with checked, warned and blocked (lists of dicts with
            driver_id, cash_owed and days_outstanding)
        """
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Order.driver_id, func.min(_outstanding_since()))
            .where(Order.driver_id.isnot(None), *_unsettled_cash_orders())
            .group_by(Order.driver_id)
        )
        rows = result.all()

        warned: List[dict] = []
        blocked: List[dict] = []
        for driver_id, since in rows:
            days = _days_outstanding(since, now)
            if days < settings.WARNING_THRESHOLD_DAYS:
                continue

            cash_owed = await self._cash_owed(driver_id)
            entry = {"driver_id": driver_id, "cash_owed": cash_owed, "days_outstanding": days}

            if days > settings.LIQUIDATION_DEADLINE_DAYS:
                driver = await self.db.get(User, driver_id)
                if driver is None or not driver.is_active:
                    continue
                await self.block_driver_for_overdue_cash(driver, cash_owed, days)
                blocked.append(entry)
            else:
                warned.append(entry)
                logger.info(
                    "Driver cash debt approaching deadline",
                    extra_data={
                        **entry,
                        "days_left": settings.LIQUIDATION_DEADLINE_DAYS - days,
                    },
                )

        if blocked:
            await self.db.commit()

        logger.info(
            "Overdue cash sweep finished",
            extra_data={"checked": len(rows), "warned": len(warned), "blocked": len(blocked)},
        )
        return {"checked": len(rows), "warned": warned, "blocked": blocked}

    async def get_driver_debt(self, driver_id: int, now: Optional[datetime] = None) -> DriverDebt:
        """Current debt with the unsettled cash orders behind it, oldest first"""
        now = now or datetime.utcnow()
        result = await self.db.execute(
            select(Order)
            .where(Order.driver_id == driver_id, *_unsettled_cash_orders())
            .order_by(_outstanding_since(), Order.id)
        )
        orders = list(result.scalars().all())

        pending = []
        for order in orders:
            days = _days_outstanding(order.delivered_at or order.created_at, now)
            pending.append({
                "order_id": order.id,
                "business_id": order.business_id,
                "amount": (order.business_earnings or 0) + (order.platform_fee or 0),
                "days_outstanding": days,
            })

        oldest = pending[0]["days_outstanding"] if pending else None
        return DriverDebt(
            driver_id=driver_id,
            cash_owed=await self._cash_owed(driver_id),
            max_cash_owed=settings.MAX_CASH_OWED,
            oldest_days_outstanding=oldest,
            is_overdue=oldest is not None and oldest > settings.LIQUIDATION_DEADLINE_DAYS,
            pending_orders=pending,
        )

    async def get_cash_stats(self) -> dict:
        """Platform-wide cash exposure for the admin dashboard"""
        totals = await self.db.execute(
            select(
                func.coalesce(func.sum(Wallet.cash_owed), 0),
                func.count(Wallet.id).filter(Wallet.cash_owed > 0),
                func.count(Wallet.id).filter(Wallet.cash_owed >= settings.MAX_CASH_OWED),
            )
        )
        total_cash_owed, drivers_with_debt, drivers_at_limit = totals.one()

        pending = await self.db.execute(
            select(func.count(Order.id)).where(*_unsettled_cash_orders())
        )
        settled = await self.db.execute(
            select(func.count(Transaction.id)).where(
                Transaction.type == TransactionType.CASH_SETTLEMENT
            )
        )

        return {
            "total_cash_owed": int(total_cash_owed),
            "drivers_with_debt": drivers_with_debt,
            "drivers_at_limit": drivers_at_limit,
            "pending_cash_orders": pending.scalar_one(),
            "settlements_recorded": settled.scalar_one(),
            "max_cash_owed": settings.MAX_CASH_OWED,
        }

    async def can_withdraw(self, user_id: int) -> Tuple[bool, str]:
        """
        Withdrawals wait until the user's cash debt is cleared.
        Returns (can_withdraw, reason_message)
        """
        cash_owed = await self._cash_owed(user_id)
        if cash_owed > 0:
            return False, (
                f"Withdrawals are blocked while you owe {format_mxn(cash_owed)} in cash"
            )
        return True, "OK"
