"""Admin store endpoints: order statistics and delivery reconciliation."""

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_admin
from libs.auth.models import AuthUser
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.store_service.schemas import OrderStatsResponse, ReconcileResponse
from services.store_service.services import order_ops
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)
router = APIRouter(tags=["admin-store"])


@router.get("/orders/stats", response_model=OrderStatsResponse)
async def order_stats(
    _admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Order counts per status, collected revenue and cashback paid out."""
    return await order_ops.get_order_stats(db)


@router.post("/reconcile-delivered", response_model=ReconcileResponse)
async def reconcile_delivered(
    limit: int = Query(100, ge=1, le=1000),
    admin: AuthUser = Depends(require_admin),
    db: AsyncSession = Depends(get_async_db),
):
    """Complete cashback and settlements for delivered orders that are missing them."""
    reconciled = await order_ops.reconcile_delivered_orders(db, limit=limit)
    logger.info("Admin %s reconciled %d delivered orders", admin.user_id, reconciled)
    return ReconcileResponse(reconciled=reconciled)
