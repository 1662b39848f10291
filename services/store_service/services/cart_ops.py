"""Cart operations. Cart lines carry quantities only; prices are read at checkout."""

import uuid
from typing import Optional

from libs.common.errors import (
    CartItemNotFound,
    InvalidQuantity,
    OutOfStock,
    ProductNotFound,
    ProductUnavailable,
)
from libs.common.logging import get_logger
from services.store_service.models import CartItem, Product, Store
from services.store_service.services.pricing import CartLine, PricingResult, resolve
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

logger = get_logger(__name__)


async def _sellable_product(db: AsyncSession, product_id: uuid.UUID) -> Product:
    result = await db.execute(
        select(Product, Store)
        .join(Store, Store.id == Product.store_id)
        .where(Product.id == product_id)
    )
    row = result.first()
    if not row:
        raise ProductNotFound(f"Product {product_id} not found")
    product, store = row
    if not product.is_selling or not store.is_selling:
        raise ProductUnavailable(f"{product.name} is not available for sale")
    return product


def _check_quantity(product: Product, quantity: int) -> None:
    if quantity <= 0:
        raise InvalidQuantity("Quantity must be greater than zero")
    if quantity > product.stock:
        raise OutOfStock(
            f"Only {product.stock} left of {product.name}",
            context={"product_id": str(product.id), "available": product.stock},
        )


async def get_cart(db: AsyncSession, *, user_id: str) -> list[CartItem]:
    result = await db.execute(
        select(CartItem)
        .where(CartItem.user_id == user_id)
        .options(selectinload(CartItem.product))
        .order_by(CartItem.created_at)
    )
    return list(result.scalars().all())


async def add_item(
    db: AsyncSession, *, user_id: str, product_id: uuid.UUID, quantity: int
) -> CartItem:
    """Add ``quantity`` of a product, merging with an existing line."""
    if quantity <= 0:
        raise InvalidQuantity("Quantity must be greater than zero")
    product = await _sellable_product(db, product_id)

    result = await db.execute(
        select(CartItem).where(
            CartItem.user_id == user_id, CartItem.product_id == product_id
        )
    )
    item = result.scalar_one_or_none()
    new_quantity = quantity + (item.quantity if item else 0)
    _check_quantity(product, new_quantity)

    if item:
        item.quantity = new_quantity
    else:
        item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
        db.add(item)

    await db.commit()
    logger.info("Cart %s: product %s qty=%d", user_id, product_id, new_quantity)
    return item


async def update_item(
    db: AsyncSession, *, user_id: str, item_id: uuid.UUID, quantity: int
) -> CartItem:
    item = await _get_item(db, user_id, item_id)
    product = await _sellable_product(db, item.product_id)
    _check_quantity(product, quantity)

    item.quantity = quantity
    await db.commit()
    return item


async def remove_item(db: AsyncSession, *, user_id: str, item_id: uuid.UUID) -> None:
    item = await _get_item(db, user_id, item_id)
    await db.delete(item)
    await db.commit()


async def clear_cart(db: AsyncSession, *, user_id: str) -> int:
    result = await db.execute(delete(CartItem).where(CartItem.user_id == user_id))
    await db.commit()
    return result.rowcount or 0


async def preview_cart(
    db: AsyncSession, *, user_id: str, coupon_code: Optional[str] = None
) -> PricingResult:
    """Price the stored cart without reserving anything."""
    items = await get_cart(db, user_id=user_id)
    return await resolve(
        db, [CartLine(item.product_id, item.quantity) for item in items], coupon_code
    )


async def _get_item(db: AsyncSession, user_id: str, item_id: uuid.UUID) -> CartItem:
    item = await db.get(CartItem, item_id)
    if not item or item.user_id != user_id:
        raise CartItemNotFound()
    return item
