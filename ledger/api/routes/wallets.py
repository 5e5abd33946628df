"""
Wallet API Routes
"""
from typing import List
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from ledger.api.dependencies.services import get_wallet_ledger
from ledger.db.models.transaction import TransactionType, LedgerAccount, TransactionStatus
from ledger.domain.services.wallet_ledger import WalletLedger

router = APIRouter()


class WalletResponse(BaseModel):
    user_id: int
    balance: int
    pending_balance: int
    cash_owed: int
    total_earned: int
    total_withdrawn: int

    class Config:
        from_attributes = True


class TransactionResponse(BaseModel):
    id: int
    order_id: int | None
    type: TransactionType
    account: LedgerAccount
    amount: int
    balance_before: int
    balance_after: int
    description: str | None
    status: TransactionStatus
    created_at: datetime | None

    class Config:
        from_attributes = True


@router.get(
    "/{user_id}",
    response_model=WalletResponse,
    summary="Get a user's wallet",
    description="Returns the wallet, creating an empty one on first access. Amounts are centavos.",
)
async def get_wallet(
    user_id: int,
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    """Get wallet for user"""
    return await ledger.get_or_create_wallet(user_id)


@router.get(
    "/{user_id}/transactions",
    response_model=List[TransactionResponse],
    summary="Get wallet transaction history",
    description="Newest first, covering both the balance and the cash owed accounts.",
)
async def get_transactions(
    user_id: int,
    limit: int = Query(20, ge=1, le=200),
    offset: int = Query(0, ge=0),
    ledger: WalletLedger = Depends(get_wallet_ledger),
):
    """Get transaction history for user"""
    return await ledger.get_transactions(user_id, limit=limit, offset=offset)
