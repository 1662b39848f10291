"""Vendor settlement endpoints: settlements, earnings and payout requests."""

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from libs.auth.dependencies import require_vendor
from libs.auth.models import AuthUser
from libs.common.rate_limit import payout_limit
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.settlement_service.models import SettlementStatus
from services.settlement_service.schemas import (
    SettlementResponse,
    VendorEarningsResponse,
)
from services.settlement_service.services import settlement_ops
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/vendor", tags=["vendor-settlements"])


@router.get("/settlements", response_model=list[SettlementResponse])
async def list_my_settlements(
    status: Optional[SettlementStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    vendor: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's settlements, newest first."""
    return await settlement_ops.get_vendor_settlements(
        db, vendor_id=vendor.user_id, status=status, skip=skip, limit=limit
    )


@router.get("/earnings", response_model=VendorEarningsResponse)
async def my_earnings(
    vendor: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Revenue, commission, cashback funded and payouts by status."""
    return await settlement_ops.calculate_vendor_earnings(db, vendor_id=vendor.user_id)


@router.post(
    "/settlements/{settlement_id}/request-payout", response_model=SettlementResponse
)
@payout_limit
async def request_payout(
    request: Request,
    settlement_id: uuid.UUID,
    vendor: AuthUser = Depends(require_vendor),
    db: AsyncSession = Depends(get_async_db),
):
    """Ask for a pending settlement to be paid out."""
    return await run_with_retry(
        db,
        lambda: settlement_ops.request_payout(
            db, settlement_id=settlement_id, vendor_id=vendor.user_id
        ),
    )
