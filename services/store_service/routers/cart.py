"""Store cart router: cart lines and pricing preview."""

import uuid

from fastapi import APIRouter, Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.routers._helpers import cart_response, pricing_response
from services.store_service.schemas import (
    CartItemCreate,
    CartItemUpdate,
    CartResponse,
    PricingPreviewRequest,
    PricingPreviewResponse,
)
from services.store_service.services import cart_ops
from services.store_service.services.pricing import CartLine, resolve
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["store"])


# ============================================================================
# CART ENDPOINTS
# ============================================================================


@router.get("/cart", response_model=CartResponse)
async def get_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Get current cart."""
    items = await cart_ops.get_cart(db, user_id=current_user.user_id)
    return cart_response(items)


@router.post("/cart/items", response_model=CartResponse)
async def add_to_cart(
    item_in: CartItemCreate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Add item to cart."""
    await cart_ops.add_item(
        db,
        user_id=current_user.user_id,
        product_id=item_in.product_id,
        quantity=item_in.quantity,
    )
    return cart_response(await cart_ops.get_cart(db, user_id=current_user.user_id))


@router.patch("/cart/items/{item_id}", response_model=CartResponse)
async def update_cart_item(
    item_id: uuid.UUID,
    item_in: CartItemUpdate,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Update cart item quantity."""
    await cart_ops.update_item(
        db, user_id=current_user.user_id, item_id=item_id, quantity=item_in.quantity
    )
    return cart_response(await cart_ops.get_cart(db, user_id=current_user.user_id))


@router.delete("/cart/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: uuid.UUID,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Remove item from cart."""
    await cart_ops.remove_item(db, user_id=current_user.user_id, item_id=item_id)
    return cart_response(await cart_ops.get_cart(db, user_id=current_user.user_id))


@router.delete("/cart", response_model=CartResponse)
async def clear_cart(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    await cart_ops.clear_cart(db, user_id=current_user.user_id)
    return CartResponse()


# ============================================================================
# PRICING PREVIEW
# ============================================================================


@router.post("/pricing/preview", response_model=PricingPreviewResponse)
async def preview_pricing(
    payload: PricingPreviewRequest,
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
):
    """Price lines (or the stored cart) with an optional coupon. Nothing is reserved."""
    if payload.lines is None:
        pricing = await cart_ops.preview_cart(
            db, user_id=current_user.user_id, coupon_code=payload.coupon_code
        )
    else:
        pricing = await resolve(
            db,
            [CartLine(line.product_id, line.quantity) for line in payload.lines],
            payload.coupon_code,
        )
    return pricing_response(pricing)
