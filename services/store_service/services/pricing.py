"""Pricing and coupon resolution.

The client only ever sends product ids and quantities. Every price, stock
level and coupon rule is read from the database here, so the totals an order
is created with cannot be influenced by the caller.
"""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import (
    CouponExpired,
    CouponInactive,
    CouponMinimumNotMet,
    CouponNotFound,
    CouponUsageExceeded,
    EmptyCart,
    InvalidQuantity,
    OutOfStock,
    ProductNotFound,
    ProductUnavailable,
)
from libs.common.logging import get_logger
from libs.common.money import ZERO, percentage_of, quantize
from services.store_service.models import Coupon, DiscountType, Product, Store
from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


@dataclass
class CartLine:
    """A requested line: what and how many, never a price."""

    product_id: uuid.UUID
    quantity: int


@dataclass
class ResolvedLine:
    """A cart line priced from the catalog."""

    product_id: uuid.UUID
    store_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


@dataclass
class PricingResult:
    subtotal: Decimal
    discount: Decimal
    total: Decimal
    lines: list[ResolvedLine] = field(default_factory=list)
    coupon: Optional[Coupon] = None

    @property
    def coupon_code(self) -> Optional[str]:
        return self.coupon.code if self.coupon else None


# ---------------------------------------------------------------------------
# Cart lines
# ---------------------------------------------------------------------------


def merge_lines(cart_lines: Iterable[CartLine]) -> list[CartLine]:
    """Validate quantities and merge repeated products, keeping first-seen order."""
    merged: dict[uuid.UUID, CartLine] = {}
    for line in cart_lines:
        if line.quantity is None or line.quantity <= 0:
            raise InvalidQuantity(
                f"Quantity for product {line.product_id} must be greater than zero"
            )
        if line.product_id in merged:
            merged[line.product_id].quantity += line.quantity
        else:
            merged[line.product_id] = CartLine(line.product_id, line.quantity)

    if not merged:
        raise EmptyCart()
    return list(merged.values())


async def price_lines(
    db: AsyncSession, cart_lines: Iterable[CartLine]
) -> list[ResolvedLine]:
    """Price each line from the stored product and check it can be sold."""
    lines = merge_lines(cart_lines)

    result = await db.execute(
        select(Product, Store)
        .join(Store, Store.id == Product.store_id)
        .where(Product.id.in_([line.product_id for line in lines]))
        .execution_options(populate_existing=True)
    )
    catalog = {product.id: (product, store) for product, store in result.all()}

    resolved = []
    for line in lines:
        if line.product_id not in catalog:
            raise ProductNotFound(f"Product {line.product_id} not found")
        product, store = catalog[line.product_id]

        if not product.is_selling or not store.is_selling:
            raise ProductUnavailable(f"{product.name} is not available for sale")
        if line.quantity > product.stock:
            raise OutOfStock(
                f"Only {product.stock} left of {product.name}",
                context={"product_id": str(product.id), "available": product.stock},
            )

        unit_price = quantize(product.price)
        resolved.append(
            ResolvedLine(
                product_id=product.id,
                store_id=product.store_id,
                product_name=product.name,
                quantity=line.quantity,
                unit_price=unit_price,
                line_total=quantize(unit_price * line.quantity),
            )
        )
    return resolved


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------


def normalize_code(code: str) -> str:
    return code.upper().strip()


async def find_coupon(db: AsyncSession, code: str) -> Coupon:
    code = normalize_code(code)
    result = await db.execute(
        select(Coupon)
        .where(func.upper(Coupon.code) == code)
        .execution_options(populate_existing=True)
    )
    coupon = result.scalar_one_or_none()
    if not coupon:
        raise CouponNotFound(f"Coupon {code} does not exist")
    return coupon


def validate_coupon(
    coupon: Coupon, subtotal: Decimal, now: Optional[datetime] = None
) -> None:
    """Raise the first rule the coupon breaks for this subtotal."""
    now = now or utc_now()

    valid_from = ensure_aware(coupon.valid_from)
    valid_until = ensure_aware(coupon.valid_until)
    if valid_from and valid_from > now:
        raise CouponExpired(f"Coupon {coupon.code} is not active yet")
    if valid_until and valid_until < now:
        raise CouponExpired(f"Coupon {coupon.code} has expired")

    if not coupon.is_active:
        raise CouponInactive(f"Coupon {coupon.code} is no longer active")

    minimum = coupon.minimum_order_value or ZERO
    if subtotal < minimum:
        raise CouponMinimumNotMet(
            f"Coupon {coupon.code} requires a minimum order of {quantize(minimum)}",
            context={"minimum_order_value": str(quantize(minimum))},
        )

    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        raise CouponUsageExceeded(f"Coupon {coupon.code} has reached its usage limit")


def compute_discount(coupon: Coupon, subtotal: Decimal) -> Decimal:
    """Discount for ``subtotal``, capped at maximum_discount and at the subtotal."""
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = percentage_of(subtotal, coupon.discount_value)
        if coupon.maximum_discount is not None:
            discount = min(discount, quantize(coupon.maximum_discount))
    else:
        discount = quantize(coupon.discount_value)

    return min(discount, subtotal)


async def redeem_coupon(db: AsyncSession, coupon: Coupon) -> None:
    """Count one use of ``coupon`` inside the caller's transaction.

    The increment is conditional on the limit in the UPDATE itself, so two
    orders racing for the last use cannot both succeed.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon.id,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise CouponUsageExceeded(f"Coupon {coupon.code} has reached its usage limit")

    logger.info("Redeemed coupon %s", coupon.code)


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------


async def resolve(
    db: AsyncSession,
    cart_lines: Iterable[CartLine],
    coupon_code: Optional[str] = None,
    *,
    now: Optional[datetime] = None,
) -> PricingResult:
    """Price ``cart_lines`` and apply ``coupon_code``. Has no side effects."""
    lines = await price_lines(db, cart_lines)
    subtotal = quantize(sum((line.line_total for line in lines), ZERO))

    coupon = None
    discount = ZERO
    if coupon_code and coupon_code.strip():
        coupon = await find_coupon(db, coupon_code)
        validate_coupon(coupon, subtotal, now)
        discount = compute_discount(coupon, subtotal)

    total = max(subtotal - discount, ZERO)
    return PricingResult(
        subtotal=subtotal,
        discount=discount,
        total=quantize(total),
        lines=lines,
        coupon=coupon,
    )
