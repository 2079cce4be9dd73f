"""
Pytest configuration and fixtures.
"""

import os
from typing import AsyncGenerator

# Settings are read once at import; pin them before the app is imported
os.environ["APP_ENV"] = "development"
os.environ["DATABASE_URL"] = ""
os.environ["REDIS_URL"] = ""
os.environ["SECRET_KEY"] = "test-secret"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["MPESA_CONSUMER_KEY"] = "test-consumer-key"
os.environ["MPESA_CONSUMER_SECRET"] = "test-consumer-secret"
os.environ["MPESA_SHORTCODE"] = "174379"
os.environ["MPESA_PASSKEY"] = "test-passkey"
os.environ["MPESA_CALLBACK_BASE_URL"] = "https://aquabeacon.test"

import httpx
import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from aquabeacon.database import Base
from aquabeacon.models import User
from aquabeacon.redis import MemoryKeyValueStore
from aquabeacon.services.mpesa_service import MpesaService
from tests.factories import FakeDaraja, make_user


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """File-backed SQLite so concurrent sessions get their own connections."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database session for a test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def user(db) -> User:
    return await make_user(db)


@pytest.fixture
def store() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def daraja() -> FakeDaraja:
    return FakeDaraja()


@pytest_asyncio.fixture
async def gateway(daraja, store) -> AsyncGenerator[MpesaService, None]:
    async with httpx.AsyncClient(transport=daraja.transport()) as http_client:
        yield MpesaService(store=store, http_client=http_client)


@pytest_asyncio.fixture
async def app_client(session_factory, store, gateway) -> AsyncGenerator[httpx.AsyncClient, None]:
    """The FastAPI app wired to the test database, store and fake Daraja."""
    from aquabeacon.main import app
    from aquabeacon.database import get_db, get_session_factory
    from aquabeacon.redis import get_key_value_store
    from aquabeacon.api.deps import get_mpesa_service

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_key_value_store] = lambda: store
    app.dependency_overrides[get_mpesa_service] = lambda: gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(user) -> dict:
    from aquabeacon.api.deps import issue_user_token
    return {"Authorization": f"Bearer {issue_user_token(user.id)}"}
