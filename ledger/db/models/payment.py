"""
Payment Model - gateway charges linked to orders
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, BigInteger, String, DateTime, Enum as SQLEnum, ForeignKey

from ledger.db.database import Base


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(Base):
    """Card charge recorded by the payment gateway integration"""

    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id"), nullable=True, index=True)
    amount = Column(BigInteger, nullable=False)
    status = Column(SQLEnum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False)
    provider_reference = Column(String(100), nullable=True, unique=True)

    created_at = Column(DateTime, default=datetime.utcnow)
