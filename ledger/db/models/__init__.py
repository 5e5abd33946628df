"""
Database Models
"""
from ledger.db.models.user import User
from ledger.db.models.business import Business
from ledger.db.models.order import Order
from ledger.db.models.payment import Payment
from ledger.db.models.wallet import Wallet
from ledger.db.models.transaction import Transaction
from ledger.db.models.system_setting import SystemSetting

__all__ = [
    "User",
    "Business",
    "Order",
    "Payment",
    "Wallet",
    "Transaction",
    "SystemSetting",
]
