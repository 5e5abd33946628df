"""
Order API Routes - delivery confirmation
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ledger.api.dependencies.services import get_payout_service
from ledger.api.responses import refusal_response
from ledger.domain.services.order_payout_service import OrderPayoutService, PayoutResult

router = APIRouter()


class SplitResponse(BaseModel):
    platform: int
    business: int
    driver: int
    total: int
    product_base: int


class PayoutResponse(BaseModel):
    success: bool
    message: str
    order_id: int
    split: SplitResponse


def payout_response(result: PayoutResult):
    if not result.success:
        return refusal_response(result.message, result.error_code, {"order_id": result.order_id})
    return PayoutResponse(
        success=True,
        message=result.message,
        order_id=result.order_id,
        split=SplitResponse(**result.split.as_dict()),
    )


@router.post(
    "/{order_id}/deliver",
    response_model=PayoutResponse,
    summary="Confirm delivery and pay out",
    description=(
        "Marks the order delivered and distributes its commissions in one "
        "transaction. Card orders credit the business owner and the driver; "
        "cash orders add the business and platform shares to the driver's cash owed."
    ),
)
async def deliver_order(
    order_id: int,
    payouts: OrderPayoutService = Depends(get_payout_service),
):
    return payout_response(await payouts.complete_delivery(order_id))
