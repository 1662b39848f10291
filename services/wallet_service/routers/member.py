"""Member-facing wallet and cashback endpoints."""

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.wallet_service.schemas import (
    CashbackResponse,
    CashbackStatsResponse,
    TransactionListResponse,
    TransactionResponse,
    UseBalanceRequest,
    WalletResponse,
)
from services.wallet_service.services import cashback_ops, wallet_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/wallet", tags=["wallet"])


# ---------------------------------------------------------------------------
# Wallet
# ---------------------------------------------------------------------------


@router.get("/me", response_model=WalletResponse)
async def get_my_wallet(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get current user's wallet. An empty wallet is created on first access."""
    return await run_with_retry(
        db, lambda: wallet_ops.get_wallet(db, user_id=current_user.user_id)
    )


@router.get("/transactions", response_model=TransactionListResponse)
async def list_my_transactions(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List wallet ledger entries, newest first."""
    transactions, total = await wallet_ops.list_transactions(
        db, user_id=current_user.user_id, skip=skip, limit=limit
    )
    return TransactionListResponse(
        transactions=[TransactionResponse.model_validate(t) for t in transactions],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.post("/use-balance", response_model=TransactionResponse)
async def use_balance(
    body: UseBalanceRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Spend wallet balance against an order. Retrying with the same order is safe."""
    return await run_with_retry(
        db,
        lambda: wallet_ops.use_wallet_balance(
            db,
            user_id=current_user.user_id,
            order_id=body.order_id,
            amount=body.amount,
            description=body.description,
        ),
    )


# ---------------------------------------------------------------------------
# Cashback
# ---------------------------------------------------------------------------


@router.get("/cashback/pending", response_model=list[CashbackResponse])
async def pending_cashback(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await cashback_ops.get_pending_cashback(db, user_id=current_user.user_id)


@router.get("/cashback/processed", response_model=list[CashbackResponse])
async def processed_cashback(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    return await cashback_ops.get_processed_cashback(db, user_id=current_user.user_id)


@router.get("/cashback/stats", response_model=CashbackStatsResponse)
async def cashback_stats(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Cashback totals: earned, pending, processed and expired."""
    return await cashback_ops.get_cashback_stats(db, user_id=current_user.user_id)
