"""Unit tests for the settlement calculator and vendor payouts."""

import uuid
from decimal import Decimal

import pytest
from libs.common.errors import (
    InvalidPayoutTransition,
    NotAuthorized,
    OrderNotDelivered,
    SettlementNotFound,
)
from services.settlement_service.models import SettlementStatus, VendorSettlement
from services.settlement_service.services.settlement_ops import (
    calculate_vendor_earnings,
    compute_settlement,
    get_order_settlements,
    get_vendor_settlements,
    record_payout_result,
    request_payout,
    split_order,
)
from services.store_service.models import Order, OrderItem, OrderStatus
from services.store_service.services.order_ops import Actor, ActorRole, update_status
from sqlalchemy import func, select
from tests.factories import deliver_order, place_order, seed_catalog, seed_coupon


def _order_with_lines(*lines):
    """Transient order whose lines are (store_id, line_total) pairs."""
    order = Order(order_number="MP-TEST", user_id="buyer-1")
    order.items = [
        OrderItem(
            line_no=index,
            store_id=store_id,
            product_id=uuid.uuid4(),
            product_name=f"Line {index}",
            quantity=1,
            unit_price=Decimal(total),
            line_total=Decimal(total),
        )
        for index, (store_id, total) in enumerate(lines, start=1)
    ]
    return order


async def _delivered_settlement(db, product, quantity=1):
    order = await place_order(db, [(product, quantity)])
    await deliver_order(db, order.id)
    (settlement,) = await get_order_settlements(db, order_id=order.id)
    return settlement


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_split_order_prorates_cashback_by_gross():
    store_a, store_b = uuid.uuid4(), uuid.uuid4()
    order = _order_with_lines((store_a, "60.00"), (store_b, "300.00"), (store_a, "40.00"))

    shares = split_order(order, Decimal("20.00"), Decimal("0.10"))

    assert [s.store_id for s in shares] == [store_a, store_b]
    assert [s.gross_amount for s in shares] == [Decimal("100.00"), Decimal("300.00")]
    assert [s.platform_commission for s in shares] == [
        Decimal("10.00"),
        Decimal("30.00"),
    ]
    assert [s.cashback_amount for s in shares] == [Decimal("5.00"), Decimal("15.00")]
    assert [s.net_payout for s in shares] == [Decimal("85.00"), Decimal("255.00")]


@pytest.mark.unit
def test_split_order_last_store_absorbs_rounding():
    stores = [uuid.uuid4() for _ in range(3)]
    order = _order_with_lines(*[(store, "100.00") for store in stores])

    shares = split_order(order, Decimal("10.00"), Decimal("0.10"))

    assert [s.cashback_amount for s in shares] == [
        Decimal("3.33"),
        Decimal("3.33"),
        Decimal("3.34"),
    ]
    assert sum(s.cashback_amount for s in shares) == Decimal("10.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_multi_vendor_order_gets_one_settlement_per_store(db_session):
    _, (shirt,) = await seed_catalog(db_session, products=[("100.00", 5)])
    _, (lamp,) = await seed_catalog(
        db_session, vendor_id="vendor-2", products=[("300.00", 5)]
    )
    order = await place_order(db_session, [(shirt, 1), (lamp, 1)])

    await deliver_order(db_session, order.id)
    settlements = await get_order_settlements(db_session, order_id=order.id)

    by_vendor = {s.vendor_id: s for s in settlements}
    assert set(by_vendor) == {"vendor-1", "vendor-2"}
    assert by_vendor["vendor-1"].cashback_amount == Decimal("5.00")
    assert by_vendor["vendor-1"].net_payout == Decimal("85.00")
    assert by_vendor["vendor-2"].cashback_amount == Decimal("15.00")
    assert by_vendor["vendor-2"].net_payout == Decimal("255.00")
    assert by_vendor["vendor-2"].commission_rate == Decimal("0.1000")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_coupon_discount_is_not_charged_to_vendor(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    await seed_coupon(db_session)
    order = await place_order(db_session, [(product, 2)], coupon_code="SAVE10")

    await deliver_order(db_session, order.id)
    (settlement,) = await get_order_settlements(db_session, order_id=order.id)

    assert settlement.gross_amount == Decimal("200.00")
    assert settlement.cashback_amount == Decimal("9.00")
    assert settlement.net_payout == Decimal("171.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compute_settlement_is_idempotent(db_session):
    _, (product,) = await seed_catalog(db_session)
    order = await place_order(db_session, [(product, 1)])
    await deliver_order(db_session, order.id)

    first = await compute_settlement(db_session, order_id=order.id)
    second = await compute_settlement(db_session, order_id=order.id)

    assert [s.id for s in first] == [s.id for s in second]
    count = await db_session.scalar(select(func.count(VendorSettlement.id)))
    assert count == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_compute_settlement_requires_delivery(db_session):
    _, (product,) = await seed_catalog(db_session)
    order = await place_order(db_session, [(product, 1)])

    with pytest.raises(OrderNotDelivered):
        await compute_settlement(db_session, order_id=order.id)


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payout_happy_path(db_session):
    _, (product,) = await seed_catalog(db_session)
    settlement = await _delivered_settlement(db_session, product)

    settlement = await request_payout(
        db_session, settlement_id=settlement.id, vendor_id="vendor-1"
    )
    assert settlement.status == SettlementStatus.PROCESSING
    assert settlement.processed_at is not None

    settlement = await record_payout_result(
        db_session,
        settlement_id=settlement.id,
        succeeded=True,
        payment_reference="TRF-001",
    )
    assert settlement.status == SettlementStatus.PAID
    assert settlement.payment_reference == "TRF-001"
    assert settlement.paid_at is not None


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_payout_records_reason(db_session):
    _, (product,) = await seed_catalog(db_session)
    settlement = await _delivered_settlement(db_session, product)
    await request_payout(db_session, settlement_id=settlement.id, vendor_id="vendor-1")

    settlement = await record_payout_result(
        db_session, settlement_id=settlement.id, succeeded=False
    )

    assert settlement.status == SettlementStatus.FAILED
    assert settlement.failure_reason == "Payout failed"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payout_for_another_vendor(db_session):
    _, (product,) = await seed_catalog(db_session)
    settlement = await _delivered_settlement(db_session, product)

    with pytest.raises(NotAuthorized):
        await request_payout(
            db_session, settlement_id=settlement.id, vendor_id="vendor-2"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_payout_transitions_are_enforced(db_session):
    _, (product,) = await seed_catalog(db_session)
    settlement = await _delivered_settlement(db_session, product)

    with pytest.raises(InvalidPayoutTransition):
        await record_payout_result(
            db_session, settlement_id=settlement.id, succeeded=True
        )

    await request_payout(db_session, settlement_id=settlement.id, vendor_id="vendor-1")
    with pytest.raises(InvalidPayoutTransition):
        await request_payout(
            db_session, settlement_id=settlement.id, vendor_id="vendor-1"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_settlement(db_session):
    with pytest.raises(SettlementNotFound):
        await request_payout(db_session, settlement_id=uuid.uuid4(), vendor_id="vendor-1")


# ---------------------------------------------------------------------------
# Earnings
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_vendor_earnings_exclude_returned_orders(db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])

    paid = await _delivered_settlement(db_session, product)
    await request_payout(db_session, settlement_id=paid.id, vendor_id="vendor-1")
    await record_payout_result(
        db_session, settlement_id=paid.id, succeeded=True, payment_reference="TRF-1"
    )
    await _delivered_settlement(db_session, product)
    returned = await _delivered_settlement(db_session, product)
    await update_status(
        db_session,
        order_id=returned.order_id,
        new_status=OrderStatus.RETURNED,
        actor=Actor(user_id="admin-1", role=ActorRole.ADMIN),
    )

    earnings = await calculate_vendor_earnings(db_session, vendor_id="vendor-1")

    assert earnings.total_revenue == Decimal("200.00")
    assert earnings.commission_paid == Decimal("20.00")
    assert earnings.cashback_funded == Decimal("10.00")
    assert earnings.pending_payouts == Decimal("85.00")
    assert earnings.processing_payouts == Decimal("0.00")
    assert earnings.paid_payouts == Decimal("85.00")

    pending = await get_vendor_settlements(
        db_session, vendor_id="vendor-1", status=SettlementStatus.PENDING
    )
    assert len(pending) == 1
