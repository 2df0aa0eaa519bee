import os

# Set test environment
os.environ["DEBUG"] = "true"
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from collections.abc import AsyncGenerator
from datetime import timedelta
from typing import Any
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from twigger_auth.database import Base, get_db
from twigger_auth.main import app
from twigger_auth.models import Account, AuthSession, LinkedIdentity
from twigger_auth.schemas.auth import ClientContext, VerifiedIdentity
from twigger_auth.utils.timezone import utc_now

# SQLite in memory by default; point TEST_DATABASE_URL at PostgreSQL to run against it
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


@pytest_asyncio.fixture(scope="function")
async def async_engine():
    """Create async engine for each test."""
    if TEST_DATABASE_URL.startswith("sqlite"):
        engine = create_async_engine(
            TEST_DATABASE_URL,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_async_engine(TEST_DATABASE_URL, echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest_asyncio.fixture(scope="function")
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_maker() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create an async test client with database session override."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def identity_factory():
    """Build verified identities with unique subject ids and emails."""

    def _make(**overrides: Any) -> VerifiedIdentity:
        unique = uuid4().hex[:12]
        data = {
            "external_subject_id": f"subject-{unique}",
            "email": f"gardener.{unique}@example.com",
            "provider": "google.com",
            "email_verified": True,
        }
        data.update(overrides)
        return VerifiedIdentity(**data)

    return _make


@pytest.fixture
def client_context() -> ClientContext:
    return ClientContext(ip_address="192.168.1.1", user_agent="TestAgent/1.0")


@pytest_asyncio.fixture
async def test_account(db_session: AsyncSession) -> Account:
    """An account registered through google.com with a linked identity."""
    unique = uuid4().hex[:12]
    account = Account(
        external_subject_id=f"google-{unique}",
        email=f"test-{unique}@example.com",
        username=f"test_{unique}",
        email_verified=True,
        photo_url="https://example.com/original.jpg",
        provider="google.com",
    )
    db_session.add(account)
    await db_session.flush()
    db_session.add(
        LinkedIdentity(
            account_id=account.id,
            provider="google.com",
            provider_subject_id=account.external_subject_id,
        )
    )
    await db_session.commit()
    await db_session.refresh(account)
    return account


@pytest_asyncio.fixture
async def make_session(db_session: AsyncSession):
    """Insert sessions directly, e.g. already expired or revoked ones."""

    async def _make(
        account: Account,
        device_id: str | None = None,
        expires_in: timedelta = timedelta(days=30),
        revoked: bool = False,
    ) -> AuthSession:
        now = utc_now()
        session = AuthSession(
            account_id=account.id,
            device_id=device_id,
            created_at=now,
            expires_at=now + expires_in,
            revoked_at=now if revoked else None,
        )
        db_session.add(session)
        await db_session.commit()
        return session

    return _make


@pytest.fixture
def count_rows(db_session: AsyncSession):
    """Count all rows of a model."""

    async def _count(model) -> int:
        result = await db_session.execute(select(func.count()).select_from(model))
        return result.scalar_one()

    return _count
