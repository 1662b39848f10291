"""Settlement calculator and vendor payout status.

One settlement per (order, store). The gross is the store's pre-discount
line totals, so coupon discounts are absorbed by the platform. Cashback is
charged back to vendors in proportion to their share of the gross.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.errors import (
    InvalidPayoutTransition,
    NotAuthorized,
    OrderNotDelivered,
    OrderNotFound,
    SettlementNotFound,
)
from libs.common.logging import get_logger
from libs.common.money import ZERO, allocate, apply_rate, quantize
from services.settlement_service.models import SettlementStatus, VendorSettlement
from services.store_service.models import Order, OrderStatus, Store
from services.wallet_service.models import CashbackStatus
from services.wallet_service.services.cashback_ops import (
    cashback_amount_for,
    get_cashback_for_order,
)
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Calculation
# ---------------------------------------------------------------------------


@dataclass
class StoreShare:
    store_id: uuid.UUID
    gross_amount: Decimal
    platform_commission: Decimal
    cashback_amount: Decimal
    net_payout: Decimal


def split_order(
    order: Order, cashback_total: Decimal, commission_rate: Decimal
) -> list[StoreShare]:
    """Break an order into per-store shares.

    Stores are taken in the order their first line appears; the last store
    absorbs the cashback rounding remainder so shares sum to the total.
    """
    gross_by_store: dict[uuid.UUID, Decimal] = {}
    for item in sorted(order.items, key=lambda i: i.line_no):
        gross_by_store[item.store_id] = (
            gross_by_store.get(item.store_id, ZERO) + item.line_total
        )

    store_ids = list(gross_by_store)
    gross = [quantize(gross_by_store[store_id]) for store_id in store_ids]
    cashback_shares = allocate(cashback_total, gross)

    shares = []
    for store_id, store_gross, cashback in zip(store_ids, gross, cashback_shares):
        commission = apply_rate(store_gross, commission_rate)
        shares.append(
            StoreShare(
                store_id=store_id,
                gross_amount=store_gross,
                platform_commission=commission,
                cashback_amount=cashback,
                net_payout=store_gross - commission - cashback,
            )
        )
    return shares


async def _attributable_cashback(db: AsyncSession, order: Order) -> Decimal:
    """Cashback the vendors fund for this order.

    Uses the issued cashback when there is one; expired or failed cashback
    was never paid, so vendors are not charged for it.
    """
    cashback = await get_cashback_for_order(db, order.id)
    if cashback is None:
        return cashback_amount_for(order.total_amount)
    if cashback.status in (CashbackStatus.ELIGIBLE, CashbackStatus.PROCESSED):
        return quantize(cashback.amount)
    return ZERO


async def create_settlements_for_order(
    db: AsyncSession, order: Order
) -> list[VendorSettlement]:
    """Create the missing settlements for a locked, delivered ``order``. Flushes only."""
    if order.status != OrderStatus.DELIVERED:
        raise OrderNotDelivered(
            f"Order {order.order_number} is {order.status.value}, not delivered"
        )

    result = await db.execute(
        select(VendorSettlement).where(VendorSettlement.order_id == order.id)
    )
    existing = {s.store_id: s for s in result.scalars().all()}
    if existing and set(existing) >= order.store_ids:
        return list(existing.values())

    rate = get_settings().PLATFORM_COMMISSION_RATE
    shares = split_order(order, await _attributable_cashback(db, order), rate)

    owners = dict(
        (
            await db.execute(
                select(Store.id, Store.owner_id).where(
                    Store.id.in_([share.store_id for share in shares])
                )
            )
        ).all()
    )

    settlements = []
    for share in shares:
        if share.store_id in existing:
            settlements.append(existing[share.store_id])
            continue
        settlement = VendorSettlement(
            order_id=order.id,
            store_id=share.store_id,
            vendor_id=owners[share.store_id],
            gross_amount=share.gross_amount,
            commission_rate=rate,
            platform_commission=share.platform_commission,
            cashback_amount=share.cashback_amount,
            net_payout=share.net_payout,
            status=SettlementStatus.PENDING,
        )
        db.add(settlement)
        settlements.append(settlement)
        logger.info(
            "Settlement for order %s store %s: gross=%s commission=%s cashback=%s net=%s",
            order.order_number,
            share.store_id,
            share.gross_amount,
            share.platform_commission,
            share.cashback_amount,
            share.net_payout,
        )

    await db.flush()
    return settlements


async def compute_settlement(
    db: AsyncSession, *, order_id: uuid.UUID
) -> list[VendorSettlement]:
    """Compute settlements for a delivered order and commit. Idempotent per store."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise OrderNotFound()

    settlements = await create_settlements_for_order(db, order)
    await db.commit()
    return settlements


async def cancel_pending_settlements(db: AsyncSession, *, order_id: uuid.UUID) -> int:
    """Cancel settlements of a returned order that have not been paid out. Flushes only."""
    result = await db.execute(
        update(VendorSettlement)
        .where(
            VendorSettlement.order_id == order_id,
            VendorSettlement.status == SettlementStatus.PENDING,
        )
        .values(status=SettlementStatus.CANCELLED, updated_at=utc_now())
        .execution_options(synchronize_session=False)
    )
    cancelled = result.rowcount or 0
    if cancelled:
        logger.info("Cancelled %d pending settlements for order %s", cancelled, order_id)
    return cancelled


# ---------------------------------------------------------------------------
# Payouts
# ---------------------------------------------------------------------------


async def _lock_settlement(db: AsyncSession, settlement_id: uuid.UUID) -> VendorSettlement:
    result = await db.execute(
        select(VendorSettlement)
        .where(VendorSettlement.id == settlement_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    settlement = result.scalar_one_or_none()
    if not settlement:
        raise SettlementNotFound()
    return settlement


async def request_payout(
    db: AsyncSession, *, settlement_id: uuid.UUID, vendor_id: str
) -> VendorSettlement:
    """Vendor asks to be paid: PENDING -> PROCESSING."""
    settlement = await _lock_settlement(db, settlement_id)

    if settlement.vendor_id != vendor_id:
        raise NotAuthorized("Settlement belongs to another vendor")
    if settlement.status != SettlementStatus.PENDING:
        raise InvalidPayoutTransition(
            f"Payout can only be requested for pending settlements, "
            f"this one is {settlement.status.value}"
        )

    settlement.status = SettlementStatus.PROCESSING
    settlement.processed_at = utc_now()
    await db.commit()

    logger.info("Payout requested for settlement %s by vendor %s", settlement.id, vendor_id)
    return settlement


async def record_payout_result(
    db: AsyncSession,
    *,
    settlement_id: uuid.UUID,
    succeeded: bool,
    payment_reference: Optional[str] = None,
    failure_reason: Optional[str] = None,
    paid_at: Optional[datetime] = None,
) -> VendorSettlement:
    """Payout rail reports back: PROCESSING -> PAID or FAILED."""
    settlement = await _lock_settlement(db, settlement_id)

    if settlement.status != SettlementStatus.PROCESSING:
        raise InvalidPayoutTransition(
            f"Only processing settlements can be completed, "
            f"this one is {settlement.status.value}"
        )

    if succeeded:
        settlement.status = SettlementStatus.PAID
        settlement.paid_at = paid_at or utc_now()
        settlement.payment_reference = payment_reference
        settlement.failure_reason = None
    else:
        settlement.status = SettlementStatus.FAILED
        settlement.failure_reason = failure_reason or "Payout failed"

    await db.commit()
    logger.info(
        "Settlement %s payout %s (ref=%s)",
        settlement.id,
        settlement.status.value,
        payment_reference,
    )
    return settlement


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def get_vendor_settlements(
    db: AsyncSession,
    *,
    vendor_id: str,
    status: Optional[SettlementStatus] = None,
    skip: int = 0,
    limit: int = 50,
) -> list[VendorSettlement]:
    query = select(VendorSettlement).where(VendorSettlement.vendor_id == vendor_id)
    if status:
        query = query.where(VendorSettlement.status == status)
    result = await db.execute(
        query.order_by(VendorSettlement.created_at.desc()).offset(skip).limit(limit)
    )
    return list(result.scalars().all())


async def get_order_settlements(
    db: AsyncSession, *, order_id: uuid.UUID
) -> list[VendorSettlement]:
    result = await db.execute(
        select(VendorSettlement).where(VendorSettlement.order_id == order_id)
    )
    return list(result.scalars().all())


@dataclass
class VendorEarnings:
    total_revenue: Decimal = ZERO
    commission_paid: Decimal = ZERO
    cashback_funded: Decimal = ZERO
    pending_payouts: Decimal = ZERO
    processing_payouts: Decimal = ZERO
    paid_payouts: Decimal = ZERO


async def calculate_vendor_earnings(db: AsyncSession, *, vendor_id: str) -> VendorEarnings:
    """Roll up a vendor's settlements. Cancelled settlements (returns) are excluded."""
    result = await db.execute(
        select(
            VendorSettlement.status,
            func.coalesce(func.sum(VendorSettlement.gross_amount), 0),
            func.coalesce(func.sum(VendorSettlement.platform_commission), 0),
            func.coalesce(func.sum(VendorSettlement.cashback_amount), 0),
            func.coalesce(func.sum(VendorSettlement.net_payout), 0),
        )
        .where(VendorSettlement.vendor_id == vendor_id)
        .group_by(VendorSettlement.status)
    )

    earnings = VendorEarnings()
    for status, gross, commission, cashback, net in result.all():
        if status == SettlementStatus.CANCELLED:
            continue
        earnings.total_revenue += quantize(Decimal(str(gross)))
        earnings.commission_paid += quantize(Decimal(str(commission)))
        earnings.cashback_funded += quantize(Decimal(str(cashback)))
        net = quantize(Decimal(str(net)))
        if status == SettlementStatus.PENDING:
            earnings.pending_payouts += net
        elif status == SettlementStatus.PROCESSING:
            earnings.processing_payouts += net
        elif status == SettlementStatus.PAID:
            earnings.paid_payouts += net
    return earnings
