"""
Order Payout Service - delivery confirmation and commission distribution as one unit

Marking an order delivered and paying out its split happen in the same
database transaction, so an order is never delivered without its money moving
(or the other way around):

1. Lock the order row (SELECT ... FOR UPDATE)
2. Compute the split with the live markup rate
3. Mark delivered and write the split onto the order
4. Card orders: credit the business owner and the driver, less any
   settled cash debt the driver still owes the platform
   Cash orders: the driver owes the business and platform shares
5. Commit, or roll back everything
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.core.exceptions import AppException, ErrorCode, NotFoundException, ValidationException
from ledger.core.logging import get_logger, ledger_context
from ledger.db.models.business import Business
from ledger.db.models.order import Order, OrderStatus
from ledger.db.models.transaction import TransactionType
from ledger.domain.services.cash_debt_tracker import CashDebtTracker
from ledger.domain.services.commission_calculator import CommissionCalculator, CommissionSplit
from ledger.domain.services.wallet_ledger import WalletLedger

logger = get_logger(__name__)


@dataclass
class PayoutResult:
    success: bool
    message: str
    error_code: Optional[ErrorCode] = None
    order_id: Optional[int] = None
    split: Optional[CommissionSplit] = None


class OrderPayoutService:
    """Completes deliveries and distributes their commissions"""

    def __init__(
        self,
        db: AsyncSession,
        calculator: CommissionCalculator,
        ledger: Optional[WalletLedger] = None,
        cash_tracker: Optional[CashDebtTracker] = None,
    ):
        self.db = db
        self.calculator = calculator
        self.ledger = ledger or WalletLedger(db)
        self.cash_tracker = cash_tracker or CashDebtTracker(db, self.ledger)

    async def _lock_order(self, order_id: int) -> Optional[Order]:
        result = await self.db.execute(
            select(Order).where(Order.id == order_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def _distribute(self, order: Order, split: CommissionSplit, now: datetime) -> None:
        """Write the split and move the money; the caller commits"""
        business = await self.db.get(Business, order.business_id)
        if business is None:
            raise NotFoundException("Business", order.business_id)

        order.platform_fee = split.platform
        order.business_earnings = split.business
        order.delivery_earnings = split.driver
        order.commission_distributed_at = now

        if order.is_cash:
            if order.driver_id is None:
                raise ValidationException(
                    "Cash order has no driver to hold the collected cash",
                    field="driver_id",
                    details={"order_id": order.id},
                )
            # The driver keeps the delivery fee out of the cash collected
            owed = split.business + split.platform
            if owed > 0:
                await self.cash_tracker.update_cash_owed(
                    order.driver_id, owed, order.id, commit=False
                )
            return

        if split.business > 0:
            await self.ledger.update_balance(
                business.owner_id,
                split.business,
                TransactionType.ORDER_INCOME,
                order_id=order.id,
                description=f"Income for order #{order.id}",
                commit=False,
            )
        if order.driver_id and split.driver > 0:
            recovered = await self.cash_tracker.collect_from_earnings(
                order.driver_id, split.driver, order.id, commit=False
            )
            if split.driver > recovered:
                await self.ledger.update_balance(
                    order.driver_id,
                    split.driver - recovered,
                    TransactionType.DELIVERY_PAYMENT,
                    order_id=order.id,
                    description=f"Delivery fee for order #{order.id}",
                    commit=False,
                )

    async def _run(self, order_id: int, operation: str, steps) -> PayoutResult:
        with ledger_context(order_id=order_id, operation=operation):
            return await self._commit_steps(order_id, steps)

    async def _commit_steps(self, order_id: int, steps) -> PayoutResult:
        try:
            result = await steps()
            if not result.success:
                return result
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            logger.warning("Order already booked in the ledger")
            return PayoutResult(
                False,
                "Commissions for this order were already distributed",
                ErrorCode.ORDER_ALREADY_DISTRIBUTED,
                order_id=order_id,
            )
        except AppException as e:
            await self.db.rollback()
            logger.error(
                "Payout failed, order left unchanged",
                extra_data={
                    "error_code": e.error_code.value,
                    "error": e.message,
                },
            )
            return PayoutResult(False, e.message, e.error_code, order_id=order_id)
        except Exception:
            await self.db.rollback()
            raise

        logger.info("Commissions distributed", extra_data=result.split.as_dict())
        return result

    async def complete_delivery(
        self, order_id: int, now: Optional[datetime] = None
    ) -> PayoutResult:
        """
        Mark an order delivered and distribute its commissions.

        Returns:
            PayoutResult; on failure nothing was written and the order keeps
            its previous status.
        """
        now = now or datetime.utcnow()

        async def steps() -> PayoutResult:
            order = await self._lock_order(order_id)
            if not order:
                return PayoutResult(False, "Order not found", ErrorCode.ORDER_NOT_FOUND, order_id)
            if order.status in (OrderStatus.DELIVERED, OrderStatus.CANCELLED):
                return PayoutResult(
                    False,
                    f"Order cannot be delivered from status {order.status.value}",
                    ErrorCode.ORDER_INVALID_STATUS,
                    order_id,
                )

            # split first: a bad order or bad rates must leave the status untouched
            split = await self.calculator.calculate(
                order.total,
                order.delivery_fee,
                product_base=order.product_base,
                platform_fee=order.platform_fee,
            )
            order.status = OrderStatus.DELIVERED
            order.delivered_at = now
            await self._distribute(order, split, now)
            return PayoutResult(True, "Order delivered", order_id=order_id, split=split)

        return await self._run(order_id, "complete_delivery", steps)

    async def distribute_commissions(
        self, order_id: int, now: Optional[datetime] = None
    ) -> PayoutResult:
        """Pay out an order that was delivered without its commissions"""
        now = now or datetime.utcnow()

        async def steps() -> PayoutResult:
            order = await self._lock_order(order_id)
            if not order:
                return PayoutResult(False, "Order not found", ErrorCode.ORDER_NOT_FOUND, order_id)
            if order.status != OrderStatus.DELIVERED:
                return PayoutResult(
                    False,
                    "Only delivered orders can be distributed",
                    ErrorCode.ORDER_INVALID_STATUS,
                    order_id,
                )
            if order.commission_distributed_at is not None:
                return PayoutResult(
                    False,
                    "Commissions for this order were already distributed",
                    ErrorCode.ORDER_ALREADY_DISTRIBUTED,
                    order_id,
                )

            split = await self.calculator.calculate(
                order.total,
                order.delivery_fee,
                product_base=order.product_base,
                platform_fee=order.platform_fee,
            )
            await self._distribute(order, split, now)
            return PayoutResult(True, "Commissions distributed", order_id=order_id, split=split)

        return await self._run(order_id, "distribute_commissions", steps)
