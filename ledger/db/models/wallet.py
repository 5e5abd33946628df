"""
Wallet Model - Balance Tracking

One row per user. `balance` is electronic money the user can withdraw;
`cash_owed` is cash a driver collected and still has to hand over.
Both are only ever changed through WalletLedger, which also appends the
matching Transaction row.
"""
from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship

from ledger.db.database import Base


class Wallet(Base):
    """Current balances per user"""

    __tablename__ = "wallets"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_wallets_balance_non_negative"),
        CheckConstraint("cash_owed >= 0", name="ck_wallets_cash_owed_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)

    balance = Column(BigInteger, default=0, nullable=False)
    pending_balance = Column(BigInteger, default=0, nullable=False)
    cash_owed = Column(BigInteger, default=0, nullable=False)
    total_earned = Column(BigInteger, default=0, nullable=False)
    total_withdrawn = Column(BigInteger, default=0, nullable=False)

    # Bumped on every UPDATE; a stale writer matches zero rows and retries
    version = Column(Integer, nullable=False)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    user = relationship("User")

    __mapper_args__ = {"version_id_col": version}
