"""
Wallet Ledger - the only writer of wallet balances

Every mutation locks the wallet row, checks the result stays non-negative,
writes the new value and appends a Transaction with before/after values in
one unit. The wallet's version column turns the write into a
compare-and-swap, so a writer that read a stale row retries instead of
overwriting someone else's update.
"""
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from ledger.core.config import settings
from ledger.core.exceptions import (
    InsufficientBalanceError,
    LedgerConflictError,
    UserNotFoundError,
    ValidationException,
    ErrorCode,
)
from ledger.core.logging import get_logger
from ledger.db.models.transaction import (
    Transaction,
    TransactionType,
    TransactionStatus,
    LedgerAccount,
    CASH_ACCOUNT_TYPES,
)
from ledger.db.models.user import User
from ledger.db.models.wallet import Wallet

logger = get_logger(__name__)


def _require_delta(delta, allow_zero: bool = False) -> int:
    if isinstance(delta, bool) or not isinstance(delta, int):
        raise ValidationException(
            "Amount must be an integer number of centavos",
            field="amount",
            details={"value": repr(delta)},
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    if delta == 0 and not allow_zero:
        raise ValidationException(
            "Amount must not be zero",
            field="amount",
            error_code=ErrorCode.INVALID_AMOUNT,
        )
    return delta


class WalletLedger:
    """Balance and cash-owed mutations with an append-only history"""

    def __init__(self, db: AsyncSession, max_retries: Optional[int] = None):
        self.db = db
        self.max_retries = max_retries or settings.LEDGER_MAX_RETRIES

    async def get_wallet(self, user_id: int) -> Optional[Wallet]:
        result = await self.db.execute(
            select(Wallet).where(Wallet.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_or_create_wallet(self, user_id: int, commit: bool = True) -> Wallet:
        """
        Return the user's wallet, creating an empty one on first use.

        Two requests may create the same wallet at once; the loser hits the
        unique constraint on user_id inside its savepoint and reads the
        winner's row instead.
        """
        wallet = await self.get_wallet(user_id)
        if wallet:
            return wallet

        user = await self.db.get(User, user_id)
        if user is None:
            raise UserNotFoundError(user_id)

        try:
            async with self.db.begin_nested():
                wallet = Wallet(
                    user_id=user_id,
                    balance=0,
                    pending_balance=0,
                    cash_owed=0,
                    total_earned=0,
                    total_withdrawn=0,
                )
                self.db.add(wallet)
        except IntegrityError:
            wallet = await self.get_wallet(user_id)
            if wallet is None:
                raise
            return wallet

        if commit:
            await self.db.commit()
        logger.info("Wallet created", extra_data={"user_id": user_id})
        return wallet

    async def get_balance(self, user_id: int) -> int:
        wallet = await self.get_wallet(user_id)
        return wallet.balance if wallet else 0

    async def _lock_wallet(self, user_id: int) -> Optional[Wallet]:
        # populate_existing so a retry sees the row as it is now, not the identity map copy
        result = await self.db.execute(
            select(Wallet)
            .where(Wallet.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def update_balance(
        self,
        user_id: int,
        delta: int,
        txn_type: TransactionType,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> Transaction:
        """
        Add delta (centavos, signed) to the user's withdrawable balance.

        Raises:
            ValidationException: delta is zero, fractional or not a number
            UserNotFoundError: no such user
            InsufficientBalanceError: the balance would go below zero
            LedgerConflictError: concurrent writers won every attempt
        """
        _require_delta(delta)
        if txn_type in CASH_ACCOUNT_TYPES:
            raise ValidationException(
                f"{txn_type.value} entries belong to the cash_owed account",
                field="txn_type",
            )
        return await self._apply(
            user_id, delta, txn_type, LedgerAccount.BALANCE, order_id, description, commit
        )

    async def adjust_cash_owed(
        self,
        user_id: int,
        delta: int,
        txn_type: TransactionType,
        order_id: Optional[int] = None,
        description: Optional[str] = None,
        commit: bool = True,
    ) -> Transaction:
        """
        Move the driver's cash_owed by delta.

        A zero delta is accepted: a settlement that relieves nothing still
        leaves its entry behind so the order cannot be settled twice.
        """
        _require_delta(delta, allow_zero=True)
        if txn_type not in CASH_ACCOUNT_TYPES:
            raise ValidationException(
                f"{txn_type.value} entries belong to the balance account",
                field="txn_type",
            )
        return await self._apply(
            user_id, delta, txn_type, LedgerAccount.CASH_OWED, order_id, description, commit
        )

    async def _apply(
        self,
        user_id: int,
        delta: int,
        txn_type: TransactionType,
        account: LedgerAccount,
        order_id: Optional[int],
        description: Optional[str],
        commit: bool,
    ) -> Transaction:
        await self.get_or_create_wallet(user_id, commit=False)
        column = account.value

        for attempt in range(1, self.max_retries + 1):
            wallet = await self._lock_wallet(user_id)
            before = getattr(wallet, column)
            after = before + delta

            if after < 0:
                if account == LedgerAccount.BALANCE:
                    raise InsufficientBalanceError(user_id, before, -delta)
                raise ValidationException(
                    "Cash owed cannot go below zero",
                    field="amount",
                    details={"cash_owed": before, "amount": delta},
                    error_code=ErrorCode.INVALID_AMOUNT,
                )

            try:
                async with self.db.begin_nested():
                    setattr(wallet, column, after)
                    if account == LedgerAccount.BALANCE and delta > 0:
                        wallet.total_earned += delta
                    if txn_type == TransactionType.WITHDRAWAL:
                        wallet.total_withdrawn += -delta

                    entry = Transaction(
                        wallet_id=wallet.id,
                        user_id=user_id,
                        order_id=order_id,
                        type=txn_type,
                        account=account,
                        amount=delta,
                        balance_before=before,
                        balance_after=after,
                        description=description or _default_description(txn_type, order_id),
                        status=TransactionStatus.COMPLETED,
                    )
                    self.db.add(entry)
                    await self.db.flush()
            except StaleDataError:
                logger.warning(
                    "Wallet changed underneath us, retrying",
                    extra_data={
                        "user_id": user_id,
                        "account": column,
                        "attempt": attempt,
                        "max_retries": self.max_retries,
                    },
                )
                continue

            if commit:
                await self.db.commit()

            logger.info(
                "Ledger entry recorded",
                extra_data={
                    "user_id": user_id,
                    "order_id": order_id,
                    "type": txn_type.value,
                    "account": column,
                    "amount": delta,
                    "balance_after": after,
                },
            )
            return entry

        logger.error(
            "Ledger update abandoned after repeated conflicts",
            extra_data={"user_id": user_id, "attempts": self.max_retries},
        )
        raise LedgerConflictError(user_id, self.max_retries)

    async def get_transactions(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> list[Transaction]:
        """Transaction history, newest first"""
        result = await self.db.execute(
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
            .offset(offset)
        )
        return list(result.scalars().all())


def _default_description(txn_type: TransactionType, order_id: Optional[int]) -> str:
    label = txn_type.value.replace("_", " ")
    return f"{label} for order #{order_id}" if order_id else label
