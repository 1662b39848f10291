"""Store orders router: checkout, order history, cancellation and status changes."""

import uuid

from fastapi import APIRouter, Depends, Query, Request, status
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.common.rate_limit import checkout_limit
from libs.common.retry import run_with_retry
from libs.db.session import get_async_db
from services.store_service.routers._helpers import get_actor
from services.store_service.schemas import (
    CheckoutRequest,
    OrderCancelRequest,
    OrderResponse,
    OrderStatusUpdate,
)
from services.store_service.services import order_ops
from services.store_service.services.order_ops import Actor
from services.store_service.services.pricing import CartLine
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


# ============================================================================
# CHECKOUT
# ============================================================================


@router.post(
    "/checkout", response_model=OrderResponse, status_code=status.HTTP_201_CREATED
)
@checkout_limit
async def checkout(
    request: Request,
    payload: CheckoutRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Create an order from the given lines, or from the stored cart."""
    lines = (
        [CartLine(line.product_id, line.quantity) for line in payload.lines]
        if payload.lines is not None
        else None
    )
    return await run_with_retry(
        db,
        lambda: order_ops.create_order(
            db,
            user_id=current_user.user_id,
            shipping_address_id=payload.shipping_address_id,
            billing_address_id=payload.billing_address_id,
            payment_method=payload.payment_method,
            cart_lines=lines,
            coupon_code=payload.coupon_code,
        ),
    )


# ============================================================================
# ORDERS
# ============================================================================


@router.get("/orders", response_model=list[OrderResponse])
async def list_my_orders(
    skip: int = Query(0, ge=0),
    limit: int = Query(20, ge=1, le=100),
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """List the caller's orders, newest first."""
    return await order_ops.get_user_orders(
        db, user_id=current_user.user_id, skip=skip, limit=limit
    )


@router.get("/orders/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: uuid.UUID,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_async_db),
):
    return await order_ops.get_order(db, order_id=order_id, actor=actor)


@router.post("/orders/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: uuid.UUID,
    payload: OrderCancelRequest,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_async_db),
):
    """Cancel an order that has not shipped. Stock is restored."""
    return await run_with_retry(
        db,
        lambda: order_ops.cancel_order(
            db, order_id=order_id, actor=actor, reason=payload.reason
        ),
    )


@router.post("/orders/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: uuid.UUID,
    payload: OrderStatusUpdate,
    actor: Actor = Depends(get_actor),
    db: AsyncSession = Depends(get_async_db),
):
    """Move an order through its lifecycle (vendor, admin or buyer cancellation)."""
    return await run_with_retry(
        db,
        lambda: order_ops.update_status(
            db,
            order_id=order_id,
            new_status=payload.status,
            actor=actor,
            notes=payload.notes,
        ),
    )


@router.post("/orders/{order_id}/pay-with-wallet", response_model=OrderResponse)
async def pay_with_wallet(
    order_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Pay a created order from the caller's wallet balance."""
    return await run_with_retry(
        db,
        lambda: order_ops.pay_with_wallet(
            db, order_id=order_id, user_id=current_user.user_id
        ),
    )
