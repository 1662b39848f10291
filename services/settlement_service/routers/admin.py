"""Admin settlement endpoints: payout results from the payout rail."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.settlement_service.schemas import PayoutResult, SettlementResponse
from services.settlement_service.services import settlement_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(prefix="/admin/settlements", tags=["admin-settlements"])


@router.post("/{settlement_id}/payout-result", response_model=SettlementResponse)
async def record_payout_result(
    settlement_id: uuid.UUID,
    body: PayoutResult,
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Mark a processing payout as paid or failed."""
    settlement = await run_with_retry(
        db,
        lambda: settlement_ops.record_payout_result(
            db,
            settlement_id=settlement_id,
            succeeded=body.succeeded,
            payment_reference=body.payment_reference,
            failure_reason=body.failure_reason,
            paid_at=body.paid_at,
        ),
    )
    logger.info(
        "Payout result for settlement %s recorded by %s: %s",
        settlement_id,
        admin.user_id,
        settlement.status.value,
    )
    return settlement
