"""
User Model - Customers, Business Owners and Drivers
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Boolean, Text

from ledger.db.database import Base


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    BUSINESS_OWNER = "business_owner"
    DELIVERY_DRIVER = "delivery_driver"
    ADMIN = "admin"


class User(Base):
    """Every party that can own a wallet"""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(150), nullable=True)
    phone_number = Column(String(20), unique=True, nullable=True, index=True)
    role = Column(SQLEnum(UserRole), default=UserRole.CUSTOMER, nullable=False)

    # Drivers get deactivated for overdue cash; blocked_reason is shown to them
    is_active = Column(Boolean, default=True, nullable=False)
    blocked_reason = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_driver(self) -> bool:
        return self.role == UserRole.DELIVERY_DRIVER
