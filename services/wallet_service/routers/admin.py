"""Admin wallet management endpoints."""

from fastapi import APIRouter, Depends, status
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.wallet_service.models import ReferenceType
from services.wallet_service.schemas import (
    AdminCreditRequest,
    BalanceVerificationResponse,
    ExpireCashbackResponse,
    TransactionResponse,
)
from services.wallet_service.services import cashback_ops, wallet_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/wallet", tags=["admin-wallet"])


@router.post(
    "/credit", response_model=TransactionResponse, status_code=status.HTTP_201_CREATED
)
async def admin_credit(
    body: AdminCreditRequest,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Credit a user's wallet (goodwill, manual corrections)."""
    txn = await run_with_retry(
        db,
        lambda: wallet_ops.credit_wallet(
            db,
            user_id=body.user_id,
            amount=body.amount,
            description=body.description,
            reference_type=ReferenceType.ADJUSTMENT,
            reference_id=body.reference_id,
            idempotency_key=body.idempotency_key,
            transaction_type=body.transaction_type,
            initiated_by=f"admin:{admin.user_id}",
        ),
    )
    logger.info(
        "Admin %s credited %s to %s", admin.user_id, body.amount, body.user_id
    )
    return txn


@router.get("/{user_id}/verify", response_model=BalanceVerificationResponse)
async def verify_balance(
    user_id: str,
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Replay the ledger and compare it with the cached balance."""
    check = await wallet_ops.verify_wallet_balance(db, user_id=user_id)
    return BalanceVerificationResponse(
        user_id=check.user_id,
        wallet_id=check.wallet_id,
        cached_balance=check.cached_balance,
        ledger_balance=check.ledger_balance,
        transaction_count=check.transaction_count,
        in_sync=check.in_sync,
    )


@router.post("/cashback/expire", response_model=ExpireCashbackResponse)
async def expire_cashback(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Run the cashback expiry sweep now instead of waiting for the worker."""
    expired = await cashback_ops.expire_stale_cashback(db)
    return ExpireCashbackResponse(expired=expired)
