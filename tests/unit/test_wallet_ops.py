"""Unit tests for wallet_ops core business logic.

Tests call wallet_ops functions directly with the db_session fixture.
No HTTP layer involved.
"""

import uuid
from decimal import Decimal

import pytest
from libs.common.errors import (
    IdempotencyKeyReused,
    InsufficientBalance,
    InvalidAmount,
)
from services.wallet_service.models import (
    ReferenceType,
    TransactionDirection,
    TransactionType,
    Wallet,
    WalletTransaction,
)
from services.wallet_service.services.wallet_ops import (
    credit_wallet,
    get_wallet,
    list_transactions,
    order_payment_key,
    post_credit,
    post_debit,
    use_wallet_balance,
    verify_wallet_balance,
)
from sqlalchemy import func, select, update


async def _balance(db, user_id) -> Decimal:
    return await db.scalar(select(Wallet.balance).where(Wallet.user_id == user_id))


async def _txn_count(db) -> int:
    return await db.scalar(select(func.count(WalletTransaction.id)))


# ---------------------------------------------------------------------------
# Wallet creation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_get_wallet_creates_empty_wallet(db_session):
    """First access creates a zero-balance wallet; later calls return the same one."""
    wallet1 = await get_wallet(db_session, user_id="buyer-1")
    wallet2 = await get_wallet(db_session, user_id="buyer-1")

    assert wallet1.id == wallet2.id
    assert wallet1.balance == Decimal("0")
    count = await db_session.scalar(select(func.count(Wallet.id)))
    assert count == 1


# ---------------------------------------------------------------------------
# credit
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_creates_wallet_and_records_snapshots(db_session):
    txn = await credit_wallet(
        db_session,
        user_id="buyer-1",
        amount=Decimal("100.00"),
        description="Goodwill credit",
    )

    assert txn.direction == TransactionDirection.CREDIT
    assert txn.transaction_type == TransactionType.ADMIN_ADJUSTMENT
    assert txn.amount == Decimal("100.00")
    assert txn.balance_before == Decimal("0.00")
    assert txn.balance_after == Decimal("100.00")
    assert await _balance(db_session, "buyer-1") == Decimal("100.00")


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5.00")])
async def test_credit_rejects_non_positive_amount(db_session, amount):
    with pytest.raises(InvalidAmount):
        await credit_wallet(
            db_session, user_id="buyer-1", amount=amount, description="Bad credit"
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_credit_with_same_idempotency_key_posts_once(db_session):
    key = f"credit-{uuid.uuid4().hex[:8]}"

    first = await credit_wallet(
        db_session,
        user_id="buyer-1",
        amount=Decimal("25.00"),
        description="Retry me",
        idempotency_key=key,
    )
    second = await credit_wallet(
        db_session,
        user_id="buyer-1",
        amount=Decimal("25.00"),
        description="Retry me",
        idempotency_key=key,
    )

    assert first.id == second.id
    assert await _txn_count(db_session) == 1
    assert await _balance(db_session, "buyer-1") == Decimal("25.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_refund_credit_reduces_total_spent(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("50.00"), description="Seed"
    )
    await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("40.00")
    )

    await post_credit(
        db_session,
        user_id="buyer-1",
        amount=Decimal("40.00"),
        idempotency_key="refund-test",
        transaction_type=TransactionType.REFUND,
        description="Refund",
        reference_type=ReferenceType.REFUND,
    )
    await db_session.commit()

    wallet = await get_wallet(db_session, user_id="buyer-1")
    assert wallet.balance == Decimal("50.00")
    assert wallet.total_spent == Decimal("0.00")


# ---------------------------------------------------------------------------
# useBalance
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_use_balance_debits_wallet(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("100.00"), description="Seed"
    )
    order_id = uuid.uuid4()

    txn = await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=order_id, amount=Decimal("30.00")
    )

    assert txn.direction == TransactionDirection.DEBIT
    assert txn.transaction_type == TransactionType.PURCHASE
    assert txn.balance_before == Decimal("100.00")
    assert txn.balance_after == Decimal("70.00")
    assert txn.reference_id == str(order_id)

    wallet = await get_wallet(db_session, user_id="buyer-1")
    assert wallet.balance == Decimal("70.00")
    assert wallet.total_spent == Decimal("30.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_use_balance_insufficient_leaves_balance_untouched(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("10.00"), description="Seed"
    )

    with pytest.raises(InsufficientBalance) as exc_info:
        await use_wallet_balance(
            db_session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("50.00")
        )
    await db_session.rollback()

    assert exc_info.value.status_code == 402
    assert await _balance(db_session, "buyer-1") == Decimal("10.00")
    assert await _txn_count(db_session) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_use_balance_without_wallet_is_insufficient(db_session):
    with pytest.raises(InsufficientBalance):
        await use_wallet_balance(
            db_session, user_id="nobody", order_id=uuid.uuid4(), amount=Decimal("1.00")
        )
    await db_session.rollback()

    count = await db_session.scalar(select(func.count(Wallet.id)))
    assert count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_use_balance_twice_for_same_order_debits_once(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("100.00"), description="Seed"
    )
    order_id = uuid.uuid4()

    first = await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=order_id, amount=Decimal("60.00")
    )
    second = await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=order_id, amount=Decimal("60.00")
    )

    assert first.id == second.id
    assert await _balance(db_session, "buyer-1") == Decimal("40.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reusing_a_key_for_a_different_amount_is_rejected(db_session):
    await credit_wallet(
        db_session,
        user_id="buyer-1",
        amount=Decimal("10.00"),
        description="Goodwill",
        idempotency_key="goodwill-1",
    )

    with pytest.raises(IdempotencyKeyReused):
        await credit_wallet(
            db_session,
            user_id="buyer-1",
            amount=Decimal("500.00"),
            description="Goodwill",
            idempotency_key="goodwill-1",
        )
    await db_session.rollback()

    assert await _balance(db_session, "buyer-1") == Decimal("10.00")
    assert await _txn_count(db_session) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_reusing_a_credit_key_for_a_debit_is_rejected(db_session):
    await credit_wallet(
        db_session,
        user_id="buyer-1",
        amount=Decimal("40.00"),
        description="Seed",
        idempotency_key="shared-key",
    )

    with pytest.raises(IdempotencyKeyReused):
        await post_debit(
            db_session,
            user_id="buyer-1",
            amount=Decimal("40.00"),
            idempotency_key="shared-key",
            transaction_type=TransactionType.PURCHASE,
            description="Spend",
        )


@pytest.mark.asyncio
@pytest.mark.unit
async def test_standalone_spend_does_not_claim_the_order_payment_key(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("100.00"), description="Seed"
    )
    order_id = uuid.uuid4()

    txn = await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=order_id, amount=Decimal("0.01")
    )

    assert txn.idempotency_key != order_payment_key(order_id)
    assert txn.reference_id == str(order_id)


# ---------------------------------------------------------------------------
# Reads and reconciliation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_transactions_newest_first_with_total(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("100.00"), description="Seed"
    )
    await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("30.00")
    )
    await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("20.00")
    )

    page, total = await list_transactions(db_session, user_id="buyer-1", limit=2)

    assert total == 3
    assert len(page) == 2
    assert page[0].amount == Decimal("20.00")
    assert page[1].amount == Decimal("30.00")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_list_transactions_for_unknown_user_is_empty(db_session):
    page, total = await list_transactions(db_session, user_id="nobody")

    assert page == []
    assert total == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_balance_equals_replayed_ledger(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("80.00"), description="Seed"
    )
    await use_wallet_balance(
        db_session, user_id="buyer-1", order_id=uuid.uuid4(), amount=Decimal("12.34")
    )
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("0.66"), description="Top up"
    )

    check = await verify_wallet_balance(db_session, user_id="buyer-1")

    assert check.in_sync
    assert check.cached_balance == Decimal("68.32")
    assert check.ledger_balance == Decimal("68.32")
    assert check.transaction_count == 3


@pytest.mark.asyncio
@pytest.mark.unit
async def test_verify_reports_drift(db_session):
    await credit_wallet(
        db_session, user_id="buyer-1", amount=Decimal("10.00"), description="Seed"
    )
    await db_session.execute(
        update(Wallet).where(Wallet.user_id == "buyer-1").values(balance=Decimal("99.00"))
    )
    await db_session.commit()
    db_session.expunge_all()

    check = await verify_wallet_balance(db_session, user_id="buyer-1")

    assert not check.in_sync
    assert check.cached_balance == Decimal("99.00")
    assert check.ledger_balance == Decimal("10.00")
