"""Integration tests for the wallet service HTTP API."""

import uuid
from datetime import timedelta
from decimal import Decimal

import pytest
from libs.common.datetime_utils import utc_now
from services.wallet_service.app.main import app
from services.wallet_service.models import Cashback, CashbackStatus
from tests.conftest import make_admin_user, override_auth
from tests.factories import (
    deliver_order,
    fund_wallet,
    place_order,
    seed_catalog,
)


@pytest.mark.asyncio
@pytest.mark.integration
async def test_get_my_wallet_creates_empty_wallet(wallet_client):
    response = await wallet_client.get("/wallet/me")

    assert response.status_code == 200
    body = response.json()
    assert body["user_id"] == "buyer-1"
    assert Decimal(body["balance"]) == Decimal("0")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_credit(wallet_client):
    payload = {
        "user_id": "buyer-1",
        "amount": "25.50",
        "description": "Goodwill for late delivery",
        "idempotency_key": "goodwill-1",
    }

    forbidden = await wallet_client.post("/admin/wallet/credit", json=payload)
    assert forbidden.status_code == 403

    with override_auth(app, make_admin_user()):
        first = await wallet_client.post("/admin/wallet/credit", json=payload)
        replay = await wallet_client.post("/admin/wallet/credit", json=payload)

    assert first.status_code == 201
    assert first.json()["id"] == replay.json()["id"]
    assert first.json()["initiated_by"] == "admin:admin-1"

    wallet = (await wallet_client.get("/wallet/me")).json()
    assert Decimal(wallet["balance"]) == Decimal("25.50")


@pytest.mark.asyncio
@pytest.mark.integration
async def test_admin_credit_validation(wallet_client):
    with override_auth(app, make_admin_user()):
        response = await wallet_client.post(
            "/admin/wallet/credit",
            json={"user_id": "buyer-1", "amount": "-1.00", "description": "no"},
        )

    assert response.status_code == 422


@pytest.mark.asyncio
@pytest.mark.integration
async def test_use_balance(wallet_client, db_session):
    await fund_wallet(db_session, "buyer-1", "50.00")
    order_id = str(uuid.uuid4())

    too_much = await wallet_client.post(
        "/wallet/use-balance", json={"order_id": order_id, "amount": "80.00"}
    )
    assert too_much.status_code == 402
    assert too_much.json()["error"] == "INSUFFICIENT_BALANCE"

    spent = await wallet_client.post(
        "/wallet/use-balance", json={"order_id": order_id, "amount": "20.00"}
    )
    assert spent.status_code == 200
    assert spent.json()["direction"] == "debit"
    assert Decimal(spent.json()["balance_after"]) == Decimal("30.00")

    history = (await wallet_client.get("/wallet/transactions")).json()
    assert history["total"] == 2
    assert [t["direction"] for t in history["transactions"]] == ["debit", "credit"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_verify_balance(wallet_client, db_session):
    await fund_wallet(db_session, "buyer-1", "12.34")

    with override_auth(app, make_admin_user()):
        response = await wallet_client.get("/admin/wallet/buyer-1/verify")

    assert response.status_code == 200
    body = response.json()
    assert body["in_sync"] is True
    assert Decimal(body["ledger_balance"]) == Decimal("12.34")
    assert body["transaction_count"] == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_cashback_endpoints(wallet_client, db_session):
    _, (product,) = await seed_catalog(db_session, products=[("100.00", 10)])
    delivered = await place_order(db_session, [(product, 2)])
    await deliver_order(db_session, delivered.id)
    waiting = await place_order(db_session, [(product, 1)])
    db_session.add(
        Cashback(
            order_id=waiting.id,
            user_id="buyer-1",
            amount=Decimal("5.00"),
            percentage=Decimal("5.00"),
            status=CashbackStatus.ELIGIBLE,
            expires_at=utc_now() - timedelta(hours=1),
        )
    )
    await db_session.commit()

    processed = (await wallet_client.get("/wallet/cashback/processed")).json()
    assert [Decimal(c["amount"]) for c in processed] == [Decimal("10.00")]
    pending = (await wallet_client.get("/wallet/cashback/pending")).json()
    assert len(pending) == 1

    with override_auth(app, make_admin_user()):
        expired = await wallet_client.post("/admin/wallet/cashback/expire")
    assert expired.json() == {"expired": 1}

    stats = (await wallet_client.get("/wallet/cashback/stats")).json()
    assert Decimal(stats["total_earned"]) == Decimal("15.00")
    assert Decimal(stats["processed_amount"]) == Decimal("10.00")
    assert Decimal(stats["expired_amount"]) == Decimal("5.00")
    assert stats["counts"] == {"processed": 1, "expired": 1}
