"""Shared dependencies and converters for store routers."""

from fastapi import Depends
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.session import get_async_db
from services.store_service.models import CartItem
from services.store_service.schemas import (
    CartItemResponse,
    CartResponse,
    PricedLineResponse,
    PricingPreviewResponse,
)
from services.store_service.services.order_ops import Actor, resolve_actor
from services.store_service.services.pricing import PricingResult
from sqlalchemy.ext.asyncio import AsyncSession


async def get_actor(
    current_user: AuthUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_async_db),
) -> Actor:
    """Resolve the caller into an order actor (buyer, vendor with stores, admin)."""
    return await resolve_actor(db, current_user)


def cart_response(items: list[CartItem]) -> CartResponse:
    return CartResponse(
        items=[
            CartItemResponse(
                id=item.id,
                product_id=item.product_id,
                quantity=item.quantity,
                product_name=item.product.name if item.product else None,
                unit_price=item.product.price if item.product else None,
                created_at=item.created_at,
            )
            for item in items
        ],
        item_count=sum(item.quantity for item in items),
    )


def pricing_response(pricing: PricingResult) -> PricingPreviewResponse:
    return PricingPreviewResponse(
        subtotal=pricing.subtotal,
        discount=pricing.discount,
        total=pricing.total,
        coupon_code=pricing.coupon_code,
        lines=[PricedLineResponse.model_validate(line) for line in pricing.lines],
    )
