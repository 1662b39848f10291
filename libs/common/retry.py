"""Bounded retry for optimistic-concurrency and transient database failures.

Business functions never retry themselves. Routers wrap a whole unit of work
in ``run_with_retry`` so a lost race is re-run against fresh rows, while
business-rule errors propagate on the first attempt.

Usage:
    order = await run_with_retry(
        db, lambda: order_ops.update_status(db, order_id=..., ...)
    )
"""

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from libs.common.config import get_settings
from libs.common.errors import ConcurrencyConflict, StoreUnavailable
from libs.common.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CONFLICT_ERRORS = (ConcurrencyConflict, StaleDataError)
TRANSIENT_ERRORS = (OperationalError, InterfaceError)


async def run_with_retry(
    db: AsyncSession,
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: Optional[int] = None,
    base_delay: Optional[float] = None,
) -> T:
    """Run ``operation`` retrying conflicts and transient failures with backoff.

    The session is rolled back between attempts. Once attempts are exhausted a
    conflict surfaces as ``ConcurrencyConflict`` and an infrastructure failure
    as ``StoreUnavailable``.
    """
    settings = get_settings()
    attempts = attempts or settings.CONFLICT_RETRY_ATTEMPTS
    base_delay = settings.RETRY_BASE_DELAY_SECONDS if base_delay is None else base_delay

    for attempt in range(1, attempts + 1):
        try:
            return await operation()
        except CONFLICT_ERRORS as exc:
            await db.rollback()
            if attempt == attempts:
                logger.warning("Conflict not resolved after %d attempts: %s", attempts, exc)
                raise ConcurrencyConflict() from exc
            logger.info("Conflict on attempt %d/%d, retrying: %s", attempt, attempts, exc)
        except TRANSIENT_ERRORS as exc:
            await db.rollback()
            if attempt == attempts:
                logger.error("Database unavailable after %d attempts: %s", attempts, exc)
                raise StoreUnavailable() from exc
            logger.warning(
                "Transient database error on attempt %d/%d: %s", attempt, attempts, exc
            )

        await asyncio.sleep(base_delay * (2 ** (attempt - 1)))

    raise StoreUnavailable()
