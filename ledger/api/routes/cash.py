"""
Cash Debt API Routes
"""
from typing import List, Optional
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ledger.api.dependencies.services import get_cash_tracker
from ledger.domain.services.cash_debt_tracker import CashDebtTracker

router = APIRouter()


class PendingCashOrder(BaseModel):
    order_id: int
    business_id: int
    amount: int
    days_outstanding: int


class DriverCashStatusResponse(BaseModel):
    driver_id: int
    can_accept_cash_orders: bool
    reason: Optional[str]
    error_code: Optional[str]
    cash_owed: int
    max_cash_owed: int
    oldest_days_outstanding: Optional[int]
    is_overdue: bool
    pending_orders: List[PendingCashOrder]


@router.get(
    "/drivers/{driver_id}",
    response_model=DriverCashStatusResponse,
    summary="Driver cash status",
    description=(
        "Whether the driver may accept cash orders right now, with the cash "
        "owed and the unsettled cash orders behind it, oldest first."
    ),
)
async def get_driver_cash_status(
    driver_id: int,
    tracker: CashDebtTracker = Depends(get_cash_tracker),
):
    decision = await tracker.can_accept_cash_order(driver_id)
    debt = await tracker.get_driver_debt(driver_id)
    return DriverCashStatusResponse(
        driver_id=driver_id,
        can_accept_cash_orders=decision.allowed,
        reason=decision.reason,
        error_code=decision.error_code.value if decision.error_code else None,
        cash_owed=debt.cash_owed,
        max_cash_owed=debt.max_cash_owed,
        oldest_days_outstanding=debt.oldest_days_outstanding,
        is_overdue=debt.is_overdue,
        pending_orders=debt.pending_orders,
    )
