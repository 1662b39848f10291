"""Unit tests for the pricing and coupon resolver."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
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
from services.store_service.models import Coupon, DiscountType
from services.store_service.services.pricing import (
    CartLine,
    compute_discount,
    merge_lines,
    redeem_coupon,
    resolve,
)
from sqlalchemy import select
from tests.factories import CouponFactory, seed_catalog, seed_coupon

# ---------------------------------------------------------------------------
# Line handling
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_merge_lines_combines_repeated_products():
    product_a, product_b = uuid.uuid4(), uuid.uuid4()

    merged = merge_lines(
        [CartLine(product_a, 1), CartLine(product_b, 2), CartLine(product_a, 3)]
    )

    assert [(line.product_id, line.quantity) for line in merged] == [
        (product_a, 4),
        (product_b, 2),
    ]


@pytest.mark.unit
def test_merge_lines_rejects_empty_cart():
    with pytest.raises(EmptyCart):
        merge_lines([])


@pytest.mark.unit
@pytest.mark.parametrize("quantity", [0, -1])
def test_merge_lines_rejects_non_positive_quantity(quantity):
    with pytest.raises(InvalidQuantity):
        merge_lines([CartLine(uuid.uuid4(), quantity)])


# ---------------------------------------------------------------------------
# Catalog pricing
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_prices_from_catalog(db_session):
    _, (shirt, mug) = await seed_catalog(
        db_session, products=[("49.99", 5), ("10.00", 5)]
    )

    result = await resolve(
        db_session, [CartLine(shirt.id, 2), CartLine(mug.id, 3)]
    )

    assert result.subtotal == Decimal("129.98")
    assert result.discount == Decimal("0")
    assert result.total == Decimal("129.98")
    assert [line.line_total for line in result.lines] == [
        Decimal("99.98"),
        Decimal("30.00"),
    ]
    assert result.coupon is None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_unknown_product(db_session):
    with pytest.raises(ProductNotFound):
        await resolve(db_session, [CartLine(uuid.uuid4(), 1)])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_inactive_product(db_session):
    _, (product,) = await seed_catalog(db_session)
    product.is_active = False
    await db_session.commit()

    with pytest.raises(ProductUnavailable):
        await resolve(db_session, [CartLine(product.id, 1)])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_unapproved_store(db_session):
    store, (product,) = await seed_catalog(db_session)
    store.is_approved = False
    await db_session.commit()

    with pytest.raises(ProductUnavailable):
        await resolve(db_session, [CartLine(product.id, 1)])


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_quantity_above_stock(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 2)])

    with pytest.raises(OutOfStock):
        await resolve(db_session, [CartLine(product.id, 3)])


# ---------------------------------------------------------------------------
# Coupons
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_percentage_coupon_applies_case_insensitively(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session, code="SAVE10")

    result = await resolve(db_session, [CartLine(product.id, 2)], "save10")

    assert result.subtotal == Decimal("200.00")
    assert result.discount == Decimal("20.00")
    assert result.total == Decimal("180.00")
    assert result.coupon_code == "SAVE10"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_resolve_does_not_count_coupon_use(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    coupon = await seed_coupon(db_session)

    await resolve(db_session, [CartLine(product.id, 2)], coupon.code)

    usage = await db_session.scalar(
        select(Coupon.usage_count).where(Coupon.id == coupon.id)
    )
    assert usage == 0


@pytest.mark.unit
def test_percentage_discount_is_capped_by_maximum():
    coupon = CouponFactory.create(
        discount_value=Decimal("50"), maximum_discount=Decimal("30.00")
    )

    assert compute_discount(coupon, Decimal("200.00")) == Decimal("30.00")


@pytest.mark.unit
def test_fixed_discount_is_capped_at_subtotal():
    coupon = CouponFactory.create(
        discount_type=DiscountType.FIXED, discount_value=Decimal("500.00")
    )

    assert compute_discount(coupon, Decimal("120.00")) == Decimal("120.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_fixed_coupon_floors_total_at_zero(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(
        db_session,
        code="BIGFIXED",
        discount_type=DiscountType.FIXED,
        discount_value=Decimal("1000.00"),
        minimum_order_value=Decimal("0"),
    )

    result = await resolve(db_session, [CartLine(product.id, 1)], "BIGFIXED")

    assert result.discount == Decimal("100.00")
    assert result.total == Decimal("0.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_coupon(db_session):
    _, (product,) = await seed_catalog(db_session)

    with pytest.raises(CouponNotFound):
        await resolve(db_session, [CartLine(product.id, 1)], "NOPE")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expired_coupon(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session, valid_until=utc_now() - timedelta(hours=1))

    with pytest.raises(CouponExpired):
        await resolve(db_session, [CartLine(product.id, 2)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_not_yet_valid_counts_as_expired(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session, valid_from=utc_now() + timedelta(days=1))

    with pytest.raises(CouponExpired):
        await resolve(db_session, [CartLine(product.id, 2)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_expiry_is_checked_before_active_flag(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(
        db_session, is_active=False, valid_until=utc_now() - timedelta(hours=1)
    )

    with pytest.raises(CouponExpired):
        await resolve(db_session, [CartLine(product.id, 2)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_inactive_coupon(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session, is_active=False)

    with pytest.raises(CouponInactive):
        await resolve(db_session, [CartLine(product.id, 2)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_minimum_not_met(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("50.00", 10)])
    await seed_coupon(db_session, minimum_order_value=Decimal("100.00"))

    with pytest.raises(CouponMinimumNotMet):
        await resolve(db_session, [CartLine(product.id, 1)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_usage_exhausted(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session, usage_limit=3, usage_count=3)

    with pytest.raises(CouponUsageExceeded):
        await resolve(db_session, [CartLine(product.id, 2)], "SAVE10")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redeem_coupon_stops_at_usage_limit(db_session):
    coupon = await seed_coupon(db_session, usage_limit=1)

    await redeem_coupon(db_session, coupon)
    with pytest.raises(CouponUsageExceeded):
        await redeem_coupon(db_session, coupon)
    await db_session.commit()

    usage = await db_session.scalar(
        select(Coupon.usage_count).where(Coupon.id == coupon.id)
    )
    assert usage == 1
