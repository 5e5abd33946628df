"""
API Routes
"""
from fastapi import APIRouter

from ledger.api.routes.wallets import router as wallets_router
from ledger.api.routes.cash import router as cash_router
from ledger.api.routes.orders import router as orders_router
from ledger.api.routes.settlements import router as settlements_router
from ledger.api.routes.admin_finance import router as admin_finance_router

router = APIRouter()

router.include_router(wallets_router, prefix="/wallets", tags=["wallets"])
router.include_router(cash_router, prefix="/cash", tags=["cash"])
router.include_router(orders_router, prefix="/orders", tags=["orders"])
router.include_router(settlements_router, prefix="/settlements", tags=["settlements"])
router.include_router(admin_finance_router, prefix="/admin/finance", tags=["admin"])
