import os
from contextlib import contextmanager
from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from libs.auth.dependencies import get_current_user
from libs.auth.models import AuthUser
from libs.db.base import Base
from libs.db.config import build_engine, build_session_factory
from libs.db.session import get_async_db
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

# Import all models so metadata includes every table
from services.settlement_service import models as _settlement_models  # noqa: F401
from services.store_service import models as _store_models  # noqa: F401
from services.wallet_service import models as _wallet_models  # noqa: F401

# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def make_buyer_user(user_id: str = "buyer-1", **overrides) -> AuthUser:
    return AuthUser(
        user_id=user_id,
        email=overrides.pop("email", f"{user_id}@example.com"),
        app_metadata={"roles": ["buyer"]},
        **overrides,
    )


def make_vendor_user(user_id: str = "vendor-1", **overrides) -> AuthUser:
    return AuthUser(
        user_id=user_id,
        email=overrides.pop("email", f"{user_id}@example.com"),
        app_metadata={"roles": ["buyer", "vendor"]},
        **overrides,
    )


def make_admin_user(user_id: str = "admin-1", **overrides) -> AuthUser:
    return AuthUser(
        user_id=user_id,
        email=overrides.pop("email", f"{user_id}@example.com"),
        app_metadata={"roles": ["admin"]},
        **overrides,
    )


def make_service_user(user_id: str = "payments-service") -> AuthUser:
    return AuthUser(user_id=user_id, role="service_role")


@contextmanager
def override_auth(app, user: AuthUser):
    """Temporarily authenticate requests to ``app`` as ``user``."""
    previous = app.dependency_overrides.get(get_current_user)
    app.dependency_overrides[get_current_user] = lambda: user
    try:
        yield user
    finally:
        if previous is None:
            app.dependency_overrides.pop(get_current_user, None)
        else:
            app.dependency_overrides[get_current_user] = previous


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """
    A fresh database per test.

    Uses a SQLite file under ``tmp_path`` (so several sessions can share it
    in concurrency tests) unless TEST_DATABASE_URL points at PostgreSQL.
    """
    db_url = os.environ.get("TEST_DATABASE_URL") or (
        f"sqlite+aiosqlite:///{tmp_path / 'marketplace.db'}"
    )
    engine = build_engine(db_url)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(test_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Yield a session on the per-test database."""
    session = session_factory()
    try:
        yield session
    finally:
        await session.rollback()
        await session.close()


# ---------------------------------------------------------------------------
# HTTP clients
# ---------------------------------------------------------------------------


async def _make_client(app, db_session, user: Optional[AuthUser]):
    async def _override_db():
        try:
            yield db_session
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_async_db] = _override_db
    if user is not None:
        app.dependency_overrides[get_current_user] = lambda: user
    return AsyncClient(transport=ASGITransport(app=app), base_url="http://test")


@pytest_asyncio.fixture
async def store_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.store_service.app.main import app

    async with await _make_client(app, db_session, make_buyer_user()) as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def wallet_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.wallet_service.app.main import app

    async with await _make_client(app, db_session, make_buyer_user()) as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def settlement_client(db_session) -> AsyncGenerator[AsyncClient, None]:
    from services.settlement_service.app.main import app

    async with await _make_client(app, db_session, make_vendor_user()) as client:
        yield client
    app.dependency_overrides.clear()
