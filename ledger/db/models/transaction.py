"""
Transaction Model - Immutable Wallet History

Every change to a wallet's balance or cash_owed is recorded here with the
value before and after, so the current wallet state can always be rebuilt.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, BigInteger, DateTime, ForeignKey, String,
    Enum as SQLEnum, UniqueConstraint, Index,
)

from ledger.db.database import Base


class TransactionType(str, enum.Enum):
    ORDER_INCOME = "order_income"  # business share of a card order
    DELIVERY_PAYMENT = "delivery_payment"  # driver share of a card order
    WITHDRAWAL = "withdrawal"
    REFUND = "refund"
    MANUAL_CREDIT = "manual_credit"
    MANUAL_DEBIT = "manual_debit"
    CASH_DEBT = "cash_debt"  # driver collected cash on delivery
    CASH_SETTLEMENT = "cash_settlement"  # business confirmed it got the cash
    CASH_DEBT_PAYMENT = "cash_debt_payment"  # debt taken out of later card earnings


class LedgerAccount(str, enum.Enum):
    """Which wallet column a transaction moves"""
    BALANCE = "balance"
    CASH_OWED = "cash_owed"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


CASH_ACCOUNT_TYPES = frozenset({
    TransactionType.CASH_DEBT,
    TransactionType.CASH_SETTLEMENT,
    TransactionType.CASH_DEBT_PAYMENT,
})


class Transaction(Base):
    """Append-only ledger entry"""

    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, index=True)
    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)

    type = Column(SQLEnum(TransactionType), nullable=False)
    account = Column(SQLEnum(LedgerAccount), default=LedgerAccount.BALANCE, nullable=False)
    amount = Column(BigInteger, nullable=False)  # positive credit, negative debit
    balance_before = Column(BigInteger, nullable=False)
    balance_after = Column(BigInteger, nullable=False)

    description = Column(String(500), nullable=True)
    status = Column(SQLEnum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    # An order is booked at most once per wallet and entry type
    __table_args__ = (
        UniqueConstraint("wallet_id", "order_id", "type", name="uq_wallet_order_type"),
        Index("ix_transactions_wallet_chain", "wallet_id", "account", "created_at", "id"),
    )
