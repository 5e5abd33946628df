"""
Settlement Reconciler - relieves driver cash debt once a business confirms receipt

Settlement never moves electronic money: the driver collected the cash, handed
it over, and all that changes is how much cash the driver still owes.

An order can be settled once. Three layers guard that: the cash_settled flag
on the locked order row, a lookup for an existing cash_settlement entry, and
the (wallet_id, order_id, type) unique constraint that a concurrent duplicate
runs into.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.core.exceptions import ErrorCode
from ledger.core.logging import get_logger, ledger_context
from ledger.core.money import format_mxn
from ledger.db.models.business import Business
from ledger.db.models.order import Order, OrderStatus, PaymentMethod
from ledger.db.models.transaction import Transaction, TransactionType, TransactionStatus
from ledger.domain.services.wallet_ledger import WalletLedger

logger = get_logger(__name__)


@dataclass
class SettlementResult:
    success: bool
    message: str
    error_code: Optional[ErrorCode] = None
    order_id: Optional[int] = None
    driver_id: Optional[int] = None
    relieved_amount: int = 0
    remaining_cash_owed: Optional[int] = None


class SettlementReconciler:
    """Confirms cash handovers for delivered cash orders"""

    def __init__(self, db: AsyncSession, ledger: Optional[WalletLedger] = None):
        self.db = db
        self.ledger = ledger or WalletLedger(db)

    async def _has_settlement_entry(self, order_id: int) -> bool:
        result = await self.db.execute(
            select(Transaction.id).where(
                Transaction.order_id == order_id,
                Transaction.type == TransactionType.CASH_SETTLEMENT,
                Transaction.status == TransactionStatus.COMPLETED,
            ).limit(1)
        )
        return result.first() is not None

    async def settle(self, order_id: int, business_owner_id: int) -> SettlementResult:
        """
        Mark a delivered cash order as settled by its business owner.

        Returns:
            SettlementResult; business-rule refusals come back with success
            False and an error_code, never as exceptions.
        """
        with ledger_context(order_id=order_id, user_id=business_owner_id, operation="settle"):
            return await self._settle(order_id, business_owner_id)

    async def _settle(self, order_id: int, business_owner_id: int) -> SettlementResult:
        try:
            result = await self.db.execute(
                select(Order).where(Order.id == order_id).with_for_update()
            )
            order = result.scalar_one_or_none()

            if not order:
                return SettlementResult(
                    False, "Order not found", ErrorCode.ORDER_NOT_FOUND, order_id=order_id
                )

            business = await self.db.get(Business, order.business_id)
            if business is None or business.owner_id != business_owner_id:
                return SettlementResult(
                    False,
                    "Order does not belong to your business",
                    ErrorCode.FORBIDDEN,
                    order_id=order_id,
                )

            if order.payment_method != PaymentMethod.CASH:
                return SettlementResult(
                    False, "Only cash orders can be settled", ErrorCode.ORDER_NOT_CASH, order_id=order_id
                )

            if order.status != OrderStatus.DELIVERED:
                return SettlementResult(
                    False,
                    f"Order must be delivered before settlement (status: {order.status.value})",
                    ErrorCode.ORDER_INVALID_STATUS,
                    order_id=order_id,
                )

            if order.cash_settled or await self._has_settlement_entry(order_id):
                return SettlementResult(
                    False, "Order was already settled", ErrorCode.ORDER_ALREADY_SETTLED, order_id=order_id
                )

            driver_id = order.driver_id
            order.cash_settled = True
            order.cash_settled_at = datetime.utcnow()

            relieved = 0
            remaining = None
            if driver_id:
                wallet = await self.ledger.get_wallet(driver_id)
                cash_owed = wallet.cash_owed if wallet else 0
                relieved = min(order.business_earnings or 0, cash_owed)
                entry = await self.ledger.adjust_cash_owed(
                    driver_id,
                    -relieved,
                    TransactionType.CASH_SETTLEMENT,
                    order_id=order_id,
                    description=f"Cash for order #{order_id} received by business",
                    commit=False,
                )
                remaining = entry.balance_after

            await self.db.commit()

        except IntegrityError:
            # A concurrent settle() of the same order committed first
            await self.db.rollback()
            logger.warning(
                "Duplicate settlement rejected by unique constraint",
                extra_data={"order_id": order_id, "business_owner_id": business_owner_id},
            )
            return SettlementResult(
                False, "Order was already settled", ErrorCode.ORDER_ALREADY_SETTLED, order_id=order_id
            )
        except Exception:
            await self.db.rollback()
            raise

        logger.info(
            "Cash order settled",
            extra_data={
                "order_id": order_id,
                "business_owner_id": business_owner_id,
                "driver_id": driver_id,
                "relieved_amount": relieved,
                "remaining_cash_owed": remaining,
            },
        )
        return SettlementResult(
            True,
            f"Settled. Driver debt reduced by {format_mxn(relieved)}",
            order_id=order_id,
            driver_id=driver_id,
            relieved_amount=relieved,
            remaining_cash_owed=remaining,
        )

    async def list_pending_settlements(self, business_owner_id: int) -> List[Order]:
        """Delivered cash orders of the owner's businesses still awaiting confirmation"""
        result = await self.db.execute(
            select(Order)
            .join(Business, Business.id == Order.business_id)
            .where(
                Business.owner_id == business_owner_id,
                Order.payment_method == PaymentMethod.CASH,
                Order.status == OrderStatus.DELIVERED,
                Order.cash_settled == False,  # noqa: E712
            )
            .order_by(Order.delivered_at, Order.id)
        )
        return list(result.scalars().all())
