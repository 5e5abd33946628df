"""
System Setting Model - key/value configuration edited by admin tooling
"""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, UniqueConstraint

from ledger.db.database import Base

COMMISSIONS_CATEGORY = "commissions"
PLATFORM_RATE_KEY = "platform_commission_rate"
BUSINESS_RATE_KEY = "business_commission_rate"
DRIVER_RATE_KEY = "driver_commission_rate"


class SystemSetting(Base):
    """Runtime setting, values stored as text"""

    __tablename__ = "system_settings"
    __table_args__ = (
        UniqueConstraint("category", "key", name="uq_system_settings_category_key"),
    )

    id = Column(Integer, primary_key=True, index=True)
    category = Column(String(50), nullable=False, index=True)
    key = Column(String(100), nullable=False)
    value = Column(String(255), nullable=False)
    updated_by = Column(Integer, nullable=True)

    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
