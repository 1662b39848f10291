"""Background sweeps for the wallet service: cashback expiry and delivery reconciliation."""

from __future__ import annotations

from typing import Optional

from libs.common.logging import get_logger
from libs.common.retry import run_with_retry
from libs.db.config import AsyncSessionLocal
from services.store_service.services.order_ops import reconcile_delivered_orders
from services.wallet_service.services.cashback_ops import expire_stale_cashback
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = get_logger(__name__)

RECONCILE_BATCH_SIZE = 200


async def expire_cashback(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """Expire every ELIGIBLE cashback past its expiry date."""
    session_factory = session_factory or AsyncSessionLocal
    async with session_factory() as db:
        expired = await run_with_retry(db, lambda: expire_stale_cashback(db))

    if expired:
        logger.info("Cashback sweep expired %d records", expired)
    return expired


async def reconcile_delivered(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> int:
    """Issue missing cashback and settlements for delivered orders."""
    session_factory = session_factory or AsyncSessionLocal
    async with session_factory() as db:
        reconciled = await reconcile_delivered_orders(db, limit=RECONCILE_BATCH_SIZE)

    if reconciled:
        logger.info("Delivery sweep reconciled %d orders", reconciled)
    return reconciled
