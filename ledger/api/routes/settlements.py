"""
Settlement API Routes - business owners confirm cash they received from drivers
"""
from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ledger.api.dependencies.services import get_settlement_reconciler
from ledger.api.responses import refusal_response
from ledger.domain.services.settlement_reconciler import SettlementReconciler

router = APIRouter()


class PendingSettlementResponse(BaseModel):
    id: int
    business_id: int
    driver_id: int | None
    total: int
    business_earnings: int | None
    platform_fee: int | None
    delivered_at: datetime | None

    class Config:
        from_attributes = True


class SettleRequest(BaseModel):
    business_owner_id: int


class SettleResponse(BaseModel):
    success: bool
    message: str
    order_id: int
    driver_id: Optional[int]
    relieved_amount: int
    remaining_cash_owed: Optional[int]


@router.get(
    "/pending",
    response_model=List[PendingSettlementResponse],
    summary="Cash orders awaiting confirmation",
)
async def list_pending_settlements(
    business_owner_id: int = Query(...),
    reconciler: SettlementReconciler = Depends(get_settlement_reconciler),
):
    return await reconciler.list_pending_settlements(business_owner_id)


@router.post(
    "/{order_id}/settle",
    response_model=SettleResponse,
    summary="Confirm cash received for an order",
    description=(
        "Marks a delivered cash order as settled and reduces the driver's cash "
        "owed by the business share. Settling the same order twice returns 409."
    ),
)
async def settle_order(
    order_id: int,
    body: SettleRequest,
    reconciler: SettlementReconciler = Depends(get_settlement_reconciler),
):
    result = await reconciler.settle(order_id, body.business_owner_id)
    if not result.success:
        return refusal_response(result.message, result.error_code, {"order_id": order_id})
    return SettleResponse(
        success=True,
        message=result.message,
        order_id=order_id,
        driver_id=result.driver_id,
        relieved_amount=result.relieved_amount,
        remaining_cash_owed=result.remaining_cash_owed,
    )
