"""Races between independent sessions on the same rows.

Each worker opens its own session from ``session_factory`` so the database,
not the identity map, decides who wins. The setup session commits before any
worker starts so it holds no transaction while they run.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from libs.common.errors import (
    BusinessRuleViolation,
    CouponUsageExceeded,
    InsufficientBalance,
    InvalidStatusTransition,
)
from services.store_service.models import Coupon, OrderStatus, Product
from services.store_service.services.order_ops import (
    Actor,
    ActorRole,
    create_order,
    update_status,
)
from services.store_service.services.pricing import CartLine
from services.wallet_service.models import Cashback, Wallet
from services.wallet_service.services.wallet_ops import use_wallet_balance
from sqlalchemy import func, select
from tests.factories import (
    fund_wallet,
    place_order,
    seed_address,
    seed_catalog,
    seed_coupon,
)

ADMIN = Actor(user_id="admin-1", role=ActorRole.ADMIN)


async def _attempt(session_factory, operation, *expected):
    """Run ``operation(session)``; True on success, False on an expected error."""
    async with session_factory() as session:
        try:
            await operation(session)
            return True
        except expected:
            await session.rollback()
            return False


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_checkouts_never_oversell(db_session, session_factory):
    _, (product,) = await seed_catalog(db_session, products=[("25.00", 5)])
    address = await seed_address(db_session)
    product_id, address_id = product.id, address.id
    await db_session.close()

    async def buy(session):
        await create_order(
            session,
            user_id="buyer-1",
            shipping_address_id=address_id,
            cart_lines=[CartLine(product_id, 1)],
        )

    results = await asyncio.gather(
        *[_attempt(session_factory, buy, BusinessRuleViolation) for _ in range(8)]
    )

    assert results.count(True) == 5
    stock = await db_session.scalar(select(Product.stock).where(Product.id == product_id))
    assert stock == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_last_coupon_use_goes_to_one_order(db_session, session_factory):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    coupon = await seed_coupon(db_session, usage_limit=1)
    addresses = [await seed_address(db_session, user_id=f"buyer-{n}") for n in (1, 2)]
    product_id, coupon_id = product.id, coupon.id
    checkouts = [(a.user_id, a.id) for a in addresses]
    await db_session.close()

    def buyer(user_id, address_id):
        async def buy(session):
            await create_order(
                session,
                user_id=user_id,
                shipping_address_id=address_id,
                cart_lines=[CartLine(product_id, 1)],
                coupon_code="SAVE10",
            )

        return buy

    results = await asyncio.gather(
        *[
            _attempt(session_factory, buyer(user_id, address_id), CouponUsageExceeded)
            for user_id, address_id in checkouts
        ]
    )

    assert sorted(results) == [False, True]
    usage = await db_session.scalar(
        select(Coupon.usage_count).where(Coupon.id == coupon_id)
    )
    assert usage == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_wallet_cannot_be_double_spent(db_session, session_factory):
    await fund_wallet(db_session, "buyer-1", "100.00")
    await db_session.close()

    async def spend(session):
        await use_wallet_balance(
            session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("70.00")
        )

    results = await asyncio.gather(
        *[_attempt(session_factory, spend, InsufficientBalance) for _ in range(2)]
    )

    assert sorted(results) == [False, True]
    balance = await db_session.scalar(
        select(Wallet.balance).where(Wallet.user_id == "buyer-1")
    )
    assert balance == Decimal("30.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_racing_deliveries_issue_cashback_once(db_session, session_factory):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    order = await place_order(db_session, [(product, 1)])
    order_id = order.id
    for status in (OrderStatus.PAID, OrderStatus.SHIPPED):
        await update_status(db_session, order_id=order_id, new_status=status, actor=ADMIN)
    await db_session.close()

    async def deliver(session):
        await update_status(
            session, order_id=order_id, new_status=OrderStatus.DELIVERED, actor=ADMIN
        )

    results = await asyncio.gather(
        *[_attempt(session_factory, deliver, InvalidStatusTransition) for _ in range(3)]
    )

    assert results.count(True) == 1
    cashbacks = await db_session.scalar(
        select(func.count(Cashback.id)).where(Cashback.order_id == order_id)
    )
    assert cashbacks == 1
    balance = await db_session.scalar(
        select(Wallet.balance).where(Wallet.user_id == "buyer-1")
    )
    assert balance == Decimal("5.00")
