"""
Admin finance endpoints: integrity audit, commission rates, cash sweep and
payout repair. All routes require the X-Admin-API-Key header.
"""
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from ledger.api.dependencies.admin_auth import require_admin_api_key
from ledger.api.dependencies.services import (
    get_cash_tracker,
    get_payout_service,
    get_rate_store,
)
from ledger.api.routes.orders import PayoutResponse, payout_response
from ledger.db.database import get_audit_db
from ledger.domain.services.cash_debt_tracker import CashDebtTracker
from ledger.domain.services.integrity_auditor import IntegrityAuditor
from ledger.domain.services.order_payout_service import OrderPayoutService
from ledger.domain.services.rate_config_store import RateConfigStore

router = APIRouter(dependencies=[Depends(require_admin_api_key)])


class CommissionRatesResponse(BaseModel):
    platform: float
    business: float
    driver: float


class CommissionRatesUpdate(BaseModel):
    platform: float | None = Field(None, ge=0, le=1)
    business: float | None = Field(None, gt=0, le=1)
    driver: float | None = Field(None, gt=0, le=1)
    updated_by: int | None = None


@router.get("/audit", summary="Run the integrity audit")
async def run_audit(
    db: AsyncSession = Depends(get_audit_db),
    rate_store: RateConfigStore = Depends(get_rate_store),
):
    report = await IntegrityAuditor(db, rate_store).run_full_audit()
    return report.to_dict()


@router.get(
    "/commission-rates",
    response_model=CommissionRatesResponse,
    summary="Current commission rates",
)
async def get_commission_rates(
    rate_store: RateConfigStore = Depends(get_rate_store),
):
    return (await rate_store.get_rates()).as_dict()


@router.put(
    "/commission-rates",
    response_model=CommissionRatesResponse,
    summary="Change commission rates",
    description="The merged rate set is validated before it is stored; invalid sets return 400.",
)
async def update_commission_rates(
    body: CommissionRatesUpdate,
    rate_store: RateConfigStore = Depends(get_rate_store),
):
    rates = await rate_store.update_rates(
        platform=body.platform,
        business=body.business,
        driver=body.driver,
        updated_by=body.updated_by,
    )
    return rates.as_dict()


@router.post("/cash/overdue-check", summary="Run the overdue cash sweep now")
async def run_overdue_cash_check(
    tracker: CashDebtTracker = Depends(get_cash_tracker),
):
    return await tracker.check_overdue_cash_debts()


@router.get("/cash/stats", summary="Platform-wide cash exposure")
async def get_cash_stats(
    tracker: CashDebtTracker = Depends(get_cash_tracker),
):
    return await tracker.get_cash_stats()


@router.post(
    "/orders/{order_id}/distribute",
    response_model=PayoutResponse,
    summary="Distribute commissions for a delivered order",
    description="Repair path for orders delivered without a payout. Returns 409 if already distributed.",
)
async def distribute_order_commissions(
    order_id: int,
    payouts: OrderPayoutService = Depends(get_payout_service),
):
    return payout_response(await payouts.distribute_commissions(order_id))
