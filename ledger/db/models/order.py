"""
Order Model - the subset of order fields the ledger consumes

All money columns are integer centavos.
"""
import enum
from datetime import datetime
from sqlalchemy import (
    Column, Integer, BigInteger, DateTime, Enum as SQLEnum, ForeignKey, Boolean,
    CheckConstraint,
)
from sqlalchemy.orm import relationship

from ledger.db.database import Base


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PREPARING = "preparing"
    PICKED_UP = "picked_up"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    CASH = "cash"


class Order(Base):
    """Customer order"""

    __tablename__ = "orders"
    __table_args__ = (
        CheckConstraint("total >= 0", name="ck_orders_total_non_negative"),
        CheckConstraint("delivery_fee >= 0", name="ck_orders_delivery_fee_non_negative"),
    )

    id = Column(Integer, primary_key=True, index=True)
    customer_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    business_id = Column(Integer, ForeignKey("businesses.id"), nullable=False, index=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True, index=True)

    # Customer-facing amounts: subtotal already includes the platform markup
    subtotal = Column(BigInteger, nullable=False, default=0)
    delivery_fee = Column(BigInteger, nullable=False, default=0)
    tax = Column(BigInteger, nullable=False, default=0)
    total = Column(BigInteger, nullable=False)
    # Price of the products before markup, when the checkout recorded it
    product_base = Column(BigInteger, nullable=True)

    # Commission split, written once at delivery
    platform_fee = Column(BigInteger, nullable=True)
    business_earnings = Column(BigInteger, nullable=True)
    delivery_earnings = Column(BigInteger, nullable=True)
    commission_distributed_at = Column(DateTime, nullable=True)

    payment_method = Column(SQLEnum(PaymentMethod), default=PaymentMethod.CARD, nullable=False)
    status = Column(SQLEnum(OrderStatus), default=OrderStatus.PENDING, nullable=False, index=True)

    # Cash orders: the business confirms it received the cash from the driver
    cash_settled = Column(Boolean, default=False, nullable=False)
    cash_settled_at = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    delivered_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    business = relationship("Business")
    driver = relationship("User", foreign_keys=[driver_id])

    @property
    def is_cash(self) -> bool:
        return self.payment_method == PaymentMethod.CASH

    @property
    def has_commissions(self) -> bool:
        return (
            self.platform_fee is not None
            and self.business_earnings is not None
            and self.delivery_earnings is not None
        )
