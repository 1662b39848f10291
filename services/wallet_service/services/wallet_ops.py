"""Core wallet operations: atomic debit/credit with idempotency and row-level locking.

``post_credit`` and ``post_debit`` only flush, so callers such as the order
lifecycle and the cashback engine can move money inside their own
transaction. ``credit_wallet`` and ``use_wallet_balance`` are the standalone
entry points and commit.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from libs.common.errors import (
    IdempotencyKeyReused,
    InsufficientBalance,
    InvalidAmount,
)
from libs.common.logging import get_logger
from libs.common.money import ZERO, quantize
from services.wallet_service.models import (
    ReferenceType,
    TransactionDirection,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Wallet lookup / lazy creation
# ---------------------------------------------------------------------------


async def _select_wallet(
    db: AsyncSession, user_id: str, *, for_update: bool = False
) -> Optional[Wallet]:
    query = select(Wallet).where(Wallet.user_id == user_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def get_or_create_wallet(db: AsyncSession, *, user_id: str) -> Wallet:
    """Return the user's wallet, creating it if needed. Flushes, never commits.

    Two first-time callers may race; the loser's insert hits the unique
    user_id constraint inside its savepoint and re-reads the winner's row.
    """
    wallet = await _select_wallet(db, user_id)
    if wallet:
        return wallet

    try:
        async with db.begin_nested():
            wallet = Wallet(
                user_id=user_id,
                balance=ZERO,
                total_cashback=ZERO,
                total_spent=ZERO,
            )
            db.add(wallet)
    except IntegrityError:
        wallet = await _select_wallet(db, user_id)
        if wallet is None:
            raise
        return wallet

    logger.info("Created wallet %s for user %s", wallet.id, user_id)
    return wallet


async def get_wallet(db: AsyncSession, *, user_id: str) -> Wallet:
    """Return the user's wallet for display, creating an empty one on first access."""
    existing = await _select_wallet(db, user_id)
    if existing:
        return existing

    wallet = await get_or_create_wallet(db, user_id=user_id)
    await db.commit()
    return wallet


async def _find_by_idempotency_key(
    db: AsyncSession, idempotency_key: str
) -> Optional[WalletTransaction]:
    result = await db.execute(
        select(WalletTransaction).where(
            WalletTransaction.idempotency_key == idempotency_key
        )
    )
    return result.scalar_one_or_none()


def _validate_amount(amount: Decimal) -> Decimal:
    if amount is None or Decimal(amount) <= 0:
        raise InvalidAmount(f"Amount must be greater than zero, got {amount}")
    return quantize(amount)


def _check_replay(
    existing: WalletTransaction,
    *,
    wallet: Optional[Wallet],
    direction: TransactionDirection,
    amount: Decimal,
) -> WalletTransaction:
    """A replay must match the original posting, otherwise the key is being reused."""
    if (
        wallet is None
        or existing.wallet_id != wallet.id
        or existing.direction != direction
        or quantize(existing.amount) != amount
    ):
        raise IdempotencyKeyReused(
            context={
                "idempotency_key": existing.idempotency_key,
                "transaction_id": str(existing.id),
            }
        )
    logger.info(
        "Idempotent replay for key=%s -> txn=%s", existing.idempotency_key, existing.id
    )
    return existing


# ---------------------------------------------------------------------------
# Ledger postings (flush only)
# ---------------------------------------------------------------------------


async def post_credit(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    idempotency_key: str,
    transaction_type: TransactionType,
    description: str,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
) -> WalletTransaction:
    """Credit a wallet inside the caller's transaction.

    1. Lazily create the wallet
    2. SELECT FOR UPDATE on the wallet row
    3. Return the existing transaction if the idempotency key was used
    4. Insert the ledger row with balance snapshots
    5. Move the cached balance and lifetime counters
    """
    amount = _validate_amount(amount)

    await get_or_create_wallet(db, user_id=user_id)
    wallet = await _select_wallet(db, user_id, for_update=True)

    existing = await _find_by_idempotency_key(db, idempotency_key)
    if existing:
        return _check_replay(
            existing, wallet=wallet, direction=TransactionDirection.CREDIT, amount=amount
        )

    balance_before = quantize(wallet.balance)
    balance_after = balance_before + amount

    txn = WalletTransaction(
        wallet_id=wallet.id,
        idempotency_key=idempotency_key,
        transaction_type=transaction_type,
        direction=TransactionDirection.CREDIT,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type.value if reference_type else None,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )
    db.add(txn)

    wallet.balance = balance_after
    if transaction_type == TransactionType.CASHBACK:
        wallet.total_cashback = quantize(wallet.total_cashback) + amount
    elif transaction_type == TransactionType.REFUND:
        wallet.total_spent = max(quantize(wallet.total_spent) - amount, ZERO)

    await db.flush()
    logger.info(
        "Credited %s to wallet %s (%s) balance %s -> %s",
        amount,
        wallet.id,
        transaction_type.value,
        balance_before,
        balance_after,
    )
    return txn


async def post_debit(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    idempotency_key: str,
    transaction_type: TransactionType,
    description: str,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[str] = None,
    initiated_by: Optional[str] = None,
) -> WalletTransaction:
    """Debit a wallet inside the caller's transaction.

    A user without a wallet has a zero balance, so the debit fails with
    ``InsufficientBalance`` rather than creating one.
    """
    amount = _validate_amount(amount)

    wallet = await _select_wallet(db, user_id, for_update=True)

    existing = await _find_by_idempotency_key(db, idempotency_key)
    if existing:
        return _check_replay(
            existing, wallet=wallet, direction=TransactionDirection.DEBIT, amount=amount
        )

    balance_before = quantize(wallet.balance) if wallet else ZERO
    if wallet is None or balance_before < amount:
        raise InsufficientBalance(
            f"Insufficient wallet balance: need {amount}, have {balance_before}",
            context={"required": str(amount), "available": str(balance_before)},
        )

    balance_after = balance_before - amount

    txn = WalletTransaction(
        wallet_id=wallet.id,
        idempotency_key=idempotency_key,
        transaction_type=transaction_type,
        direction=TransactionDirection.DEBIT,
        amount=amount,
        balance_before=balance_before,
        balance_after=balance_after,
        description=description,
        reference_type=reference_type.value if reference_type else None,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )
    db.add(txn)

    wallet.balance = balance_after
    if transaction_type == TransactionType.PURCHASE:
        wallet.total_spent = quantize(wallet.total_spent) + amount

    await db.flush()
    logger.info(
        "Debited %s from wallet %s (%s) balance %s -> %s",
        amount,
        wallet.id,
        transaction_type.value,
        balance_before,
        balance_after,
    )
    return txn


# ---------------------------------------------------------------------------
# Standalone operations (commit)
# ---------------------------------------------------------------------------


async def credit_wallet(
    db: AsyncSession,
    *,
    user_id: str,
    amount: Decimal,
    description: str,
    reference_type: Optional[ReferenceType] = None,
    reference_id: Optional[str] = None,
    idempotency_key: Optional[str] = None,
    transaction_type: TransactionType = TransactionType.ADMIN_ADJUSTMENT,
    initiated_by: Optional[str] = None,
) -> WalletTransaction:
    """Credit ``amount`` to the user's wallet and commit."""
    txn = await post_credit(
        db,
        user_id=user_id,
        amount=amount,
        idempotency_key=idempotency_key or f"credit-{uuid.uuid4()}",
        transaction_type=transaction_type,
        description=description,
        reference_type=reference_type,
        reference_id=reference_id,
        initiated_by=initiated_by,
    )
    await db.commit()
    return txn


async def use_wallet_balance(
    db: AsyncSession,
    *,
    user_id: str,
    order_id: uuid.UUID,
    amount: Decimal,
    description: Optional[str] = None,
) -> WalletTransaction:
    """Spend wallet balance against an order reference and commit.

    Keyed on the order, so a retried request never debits twice. The key is
    separate from the one ``pay_with_wallet`` uses to settle the order itself.
    """
    txn = await post_debit(
        db,
        user_id=user_id,
        amount=amount,
        idempotency_key=wallet_spend_key(order_id),
        transaction_type=TransactionType.PURCHASE,
        description=description or f"Payment for order {order_id}",
        reference_type=ReferenceType.ORDER,
        reference_id=str(order_id),
        initiated_by=user_id,
    )
    await db.commit()
    return txn


def wallet_spend_key(order_id: uuid.UUID) -> str:
    return f"wallet-spend-{order_id}"


def order_payment_key(order_id: uuid.UUID) -> str:
    return f"order-payment-{order_id}"


def order_refund_key(order_id: uuid.UUID) -> str:
    return f"order-refund-{order_id}"


async def get_order_payment(
    db: AsyncSession, *, order_id: uuid.UUID
) -> Optional[WalletTransaction]:
    """The debit that settled ``order_id`` from the wallet, if there was one."""
    return await _find_by_idempotency_key(db, order_payment_key(order_id))


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


async def list_transactions(
    db: AsyncSession, *, user_id: str, skip: int = 0, limit: int = 20
) -> tuple[list[WalletTransaction], int]:
    """Return one page of the user's ledger, newest first, plus the total count."""
    wallet = await _select_wallet(db, user_id)
    if wallet is None:
        return [], 0

    total = await db.scalar(
        select(func.count(WalletTransaction.id)).where(
            WalletTransaction.wallet_id == wallet.id
        )
    )
    result = await db.execute(
        select(WalletTransaction)
        .where(WalletTransaction.wallet_id == wallet.id)
        .order_by(WalletTransaction.created_at.desc(), WalletTransaction.id.desc())
        .offset(skip)
        .limit(limit)
    )
    return list(result.scalars().all()), total or 0


@dataclass
class BalanceCheck:
    """Cached balance compared with the balance replayed from the ledger."""

    user_id: str
    wallet_id: Optional[uuid.UUID]
    cached_balance: Decimal
    ledger_balance: Decimal
    transaction_count: int

    @property
    def in_sync(self) -> bool:
        return self.cached_balance == self.ledger_balance


async def ledger_balance(db: AsyncSession, wallet_id: uuid.UUID) -> tuple[Decimal, int]:
    """Replay the ledger: sum(credits) - sum(debits) and the number of entries."""
    signed = case(
        (
            WalletTransaction.direction == TransactionDirection.CREDIT,
            WalletTransaction.amount,
        ),
        else_=-WalletTransaction.amount,
    )
    row = (
        await db.execute(
            select(
                func.coalesce(func.sum(signed), 0),
                func.count(WalletTransaction.id),
            ).where(WalletTransaction.wallet_id == wallet_id)
        )
    ).one()
    return quantize(Decimal(str(row[0]))), row[1]


async def verify_wallet_balance(db: AsyncSession, *, user_id: str) -> BalanceCheck:
    """Check the cached balance against the ledger for reconciliation."""
    wallet = await _select_wallet(db, user_id)
    if wallet is None:
        return BalanceCheck(
            user_id=user_id,
            wallet_id=None,
            cached_balance=ZERO,
            ledger_balance=ZERO,
            transaction_count=0,
        )

    replayed, count = await ledger_balance(db, wallet.id)
    check = BalanceCheck(
        user_id=user_id,
        wallet_id=wallet.id,
        cached_balance=quantize(wallet.balance),
        ledger_balance=replayed,
        transaction_count=count,
    )
    if not check.in_sync:
        logger.error(
            "Wallet %s balance drift: cached=%s ledger=%s",
            wallet.id,
            check.cached_balance,
            check.ledger_balance,
        )
    return check
