"""Cashback engine: issue cashback on delivered orders and expire stale cashback."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_aware, utc_now
from libs.common.errors import OrderNotDelivered, OrderNotFound
from libs.common.logging import get_logger
from libs.common.money import ZERO, percentage_of, quantize
from services.store_service.models import Order, OrderStatus
from services.wallet_service.models import (
    Cashback,
    CashbackStatus,
    ReferenceType,
    TransactionType,
)
from services.wallet_service.services.wallet_ops import post_credit
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def cashback_amount_for(total_amount: Decimal) -> Decimal:
    return percentage_of(total_amount, get_settings().CASHBACK_PERCENTAGE)


def cashback_key(order_id: uuid.UUID) -> str:
    return f"cashback-{order_id}"


async def get_cashback_for_order(
    db: AsyncSession, order_id: uuid.UUID
) -> Optional[Cashback]:
    result = await db.execute(select(Cashback).where(Cashback.order_id == order_id))
    return result.scalar_one_or_none()


async def _create_eligible_cashback(
    db: AsyncSession, order: Order, amount: Decimal, now: datetime
) -> Cashback:
    """Insert the ELIGIBLE row, or return the row a concurrent caller inserted."""
    settings = get_settings()
    try:
        async with db.begin_nested():
            cashback = Cashback(
                order_id=order.id,
                user_id=order.user_id,
                amount=amount,
                percentage=settings.CASHBACK_PERCENTAGE,
                status=CashbackStatus.ELIGIBLE,
                expires_at=now + timedelta(days=settings.CASHBACK_EXPIRY_DAYS),
            )
            db.add(cashback)
    except IntegrityError:
        cashback = await get_cashback_for_order(db, order.id)
        if cashback is None:
            raise
    return cashback


async def issue_cashback(
    db: AsyncSession, order: Order, *, now: Optional[datetime] = None
) -> Optional[Cashback]:
    """Create and pay out cashback for a locked, delivered ``order``. Flushes only.

    Safe to call any number of times: once ``cashback_given`` is set or the
    cashback has left ELIGIBLE, it returns without touching anything.
    """
    if order.status != OrderStatus.DELIVERED:
        raise OrderNotDelivered(
            f"Order {order.order_number} is {order.status.value}, not delivered"
        )

    existing = await get_cashback_for_order(db, order.id)
    if order.cashback_given:
        return existing
    if existing and existing.status != CashbackStatus.ELIGIBLE:
        return existing

    now = now or utc_now()
    amount = cashback_amount_for(order.total_amount)
    if amount <= ZERO:
        logger.info("No cashback for order %s (total %s)", order.order_number, order.total_amount)
        return None

    cashback = existing or await _create_eligible_cashback(db, order, amount, now)
    if cashback.status != CashbackStatus.ELIGIBLE:
        return cashback

    if ensure_aware(cashback.expires_at) < now:
        cashback.status = CashbackStatus.EXPIRED
        await db.flush()
        logger.info("Cashback %s expired before it was processed", cashback.id)
        return cashback

    txn = await post_credit(
        db,
        user_id=order.user_id,
        amount=cashback.amount,
        idempotency_key=cashback_key(order.id),
        transaction_type=TransactionType.CASHBACK,
        description=f"Cashback for order {order.order_number}",
        reference_type=ReferenceType.CASHBACK,
        reference_id=str(cashback.id),
        initiated_by="system",
    )

    cashback.status = CashbackStatus.PROCESSED
    cashback.processed_at = now
    cashback.wallet_transaction_id = txn.id
    order.cashback_given = True
    await db.flush()

    logger.info(
        "Cashback %s of %s credited for order %s",
        cashback.id,
        cashback.amount,
        order.order_number,
    )
    return cashback


async def process_cashback_for_order(
    db: AsyncSession, *, order_id: uuid.UUID, now: Optional[datetime] = None
) -> Optional[Cashback]:
    """Issue cashback for a delivered order and commit. Idempotent on the order."""
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if not order:
        raise OrderNotFound()

    cashback = await issue_cashback(db, order, now=now)
    await db.commit()
    return cashback


async def expire_stale_cashback(
    db: AsyncSession, *, now: Optional[datetime] = None
) -> int:
    """Move every ELIGIBLE cashback past its expiry to EXPIRED. Returns the count."""
    now = now or utc_now()
    result = await db.execute(
        update(Cashback)
        .where(
            Cashback.status == CashbackStatus.ELIGIBLE,
            Cashback.expires_at < now,
        )
        .values(status=CashbackStatus.EXPIRED, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    await db.commit()

    expired = result.rowcount or 0
    if expired:
        logger.info("Expired %d stale cashback records", expired)
    return expired


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def _list_by_status(
    db: AsyncSession, user_id: str, status: CashbackStatus
) -> list[Cashback]:
    result = await db.execute(
        select(Cashback)
        .where(Cashback.user_id == user_id, Cashback.status == status)
        .order_by(Cashback.created_at.desc())
    )
    return list(result.scalars().all())


async def get_pending_cashback(db: AsyncSession, *, user_id: str) -> list[Cashback]:
    return await _list_by_status(db, user_id, CashbackStatus.ELIGIBLE)


async def get_processed_cashback(db: AsyncSession, *, user_id: str) -> list[Cashback]:
    return await _list_by_status(db, user_id, CashbackStatus.PROCESSED)


@dataclass
class CashbackStats:
    total_earned: Decimal = ZERO
    pending_amount: Decimal = ZERO
    processed_amount: Decimal = ZERO
    expired_amount: Decimal = ZERO
    counts: dict[str, int] = field(default_factory=dict)


async def get_cashback_stats(db: AsyncSession, *, user_id: str) -> CashbackStats:
    """Totals per status. ``total_earned`` covers every cashback ever created."""
    result = await db.execute(
        select(
            Cashback.status,
            func.coalesce(func.sum(Cashback.amount), 0),
            func.count(Cashback.id),
        )
        .where(Cashback.user_id == user_id)
        .group_by(Cashback.status)
    )

    stats = CashbackStats()
    for status, amount, count in result.all():
        amount = quantize(Decimal(str(amount)))
        stats.total_earned += amount
        stats.counts[status.value] = count
        if status == CashbackStatus.ELIGIBLE:
            stats.pending_amount = amount
        elif status == CashbackStatus.PROCESSED:
            stats.processed_amount = amount
        elif status == CashbackStatus.EXPIRED:
            stats.expired_amount = amount
    return stats
