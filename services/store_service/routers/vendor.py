"""Vendor order views: orders containing the vendor's products."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from libs.auth.dependencies import require_vendor
from libs.db.session import get_async_db
from services.store_service.models import OrderStatus
from services.store_service.routers._helpers import get_actor
from services.store_service.schemas import OrderResponse
from services.store_service.services import order_ops
from services.store_service.services.order_ops import Actor
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["vendor"], dependencies=[Depends(require_vendor)])


@router.get("/orders", response_model=list[OrderResponse])
async def list_vendor_orders(
    status: Optional[OrderStatus] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_async_db),
):
    """List orders that include at least one line from the vendor's stores."""
    return await order_ops.get_vendor_orders(
        db, actor=actor, status=status, skip=skip, limit=limit
    )
