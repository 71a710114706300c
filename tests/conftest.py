"""
Test fixtures for the OpenVPN Manager API test suite.

This module provides shared fixtures used across all test files:

  - db_engine / session_factory / db_session: Fresh in-memory SQLite
    database for each test
  - make_client: Build an async HTTP test client for an app created with
    custom settings (e.g. rate limiting switched on)
  - client: Test client with the default test settings
  - admin_user / manager_user / managed_user / other_user: Seeded identities
    (managed_user reports to manager_user, other_user reports to nobody)
  - admin_headers / manager_headers / user_headers / other_headers:
    Authorization headers obtained through the real login endpoint
  - seed / login_as / issue_token: factories for ad-hoc identities and tokens
  - vpn_headers: the shared X-VPN-Token the OpenVPN server sends

Key design decisions:
  - In-memory SQLite (sqlite+aiosqlite://) with a StaticPool keeps one
    connection per test, so every session sees the same database and no
    state leaks between tests.
  - We override FastAPI's get_db dependency to inject our test sessions,
    so the application code works exactly as it does in production
    (including committing on domain errors, which lockout relies on).
  - Each test builds its own app through create_app(Settings(...)); the
    in-memory blacklist and rate limiter therefore start empty every time.
  - Identities are seeded directly in the database: there is no signup
    endpoint, and an admin has to exist before anyone can call POST /users.
"""

import os

# The module-level app in app.main needs a secret at import time
os.environ.setdefault("JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import uuid  # noqa: E402
from datetime import timedelta  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import (  # noqa: E402
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.config import Settings  # noqa: E402
from app.database import Base, get_db  # noqa: E402
from app.exceptions import VPNManagerError  # noqa: E402
from app.main import create_app  # noqa: E402
from app.models.user import Role, User  # noqa: E402
from app.security import TokenCodec, hash_password  # noqa: E402


# In-memory SQLite for fast, isolated tests
TEST_DATABASE_URL = "sqlite+aiosqlite://"

TEST_SECRET = "test-secret-not-for-production"
VPN_TOKEN = "vpn-shared-secret"
PASSWORD = "CorrectHorse42!"


def make_settings(**overrides) -> Settings:
    values = {
        "JWT_SECRET": TEST_SECRET,
        "DATABASE_URL": TEST_DATABASE_URL,
        "LOG_LEVEL": "WARNING",
        "RATE_LIMIT_ENABLED": False,
        "LOCKOUT_MAX_ATTEMPTS": 3,
        "LOCKOUT_DURATION_MINUTES": 15,
        "VPN_NETWORK": "10.8.0.0/24",
        "VPN_SERVER_IP": "10.8.0.1",
        "VPN_TOKEN": VPN_TOKEN,
    }
    values.update(overrides)
    return Settings(**values)


@pytest_asyncio.fixture
async def db_engine():
    """Create a fresh async engine with all tables for each test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """Provide an async session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_app(session_factory):
    """Build an app for the given settings overrides, wired to the test database."""

    def _make(**overrides):
        app = create_app(make_settings(**overrides))

        async def override_get_db():
            async with session_factory() as session:
                try:
                    yield session
                    await session.commit()
                except VPNManagerError:
                    await session.commit()
                    raise
                except Exception:
                    await session.rollback()
                    raise

        app.dependency_overrides[get_db] = override_get_db
        return app

    return _make


@pytest_asyncio.fixture
async def make_client(make_app):
    clients = []

    async def _make(**overrides) -> AsyncClient:
        ac = AsyncClient(
            transport=ASGITransport(app=make_app(**overrides)),
            base_url="http://test",
        )
        clients.append(ac)
        return ac

    yield _make

    for ac in clients:
        await ac.aclose()


@pytest_asyncio.fixture
async def client(make_client):
    """Async HTTP test client with the default test settings."""
    return await make_client()


# ---------------------------------------------------------------------------
# Seeded identities
# ---------------------------------------------------------------------------

async def seed_user(
    session_factory,
    username: str,
    role: Role = Role.USER,
    password: str = PASSWORD,
    **fields,
) -> User:
    """Insert a user directly, bypassing the API."""
    values = {
        "first_name": username.capitalize(),
        "last_name": "Tester",
        "email": f"{username}@example.com",
    }
    values.update(fields)
    async with session_factory() as session:
        user = User(
            username=username,
            password_hash=hash_password(password),
            role=role,
            **values,
        )
        session.add(user)
        await session.commit()
        return user


async def login(client: AsyncClient, username: str, password: str = PASSWORD) -> str:
    """Log in through the API and return the bearer token."""
    response = await client.post(
        "/auth/login", json={"username": username, "password": password},
    )
    assert response.status_code == 200, f"Login failed: {response.text}"
    # Keep tests explicit about credentials: no implicit session cookie
    client.cookies.clear()
    return response.json()["token"]


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def password():
    return PASSWORD


@pytest.fixture
def seed(session_factory):
    """seed(username, role=Role.USER, **fields) -> User, inserted directly."""

    async def _seed(username, role=Role.USER, **fields):
        return await seed_user(session_factory, username, role, **fields)

    return _seed


@pytest.fixture
def login_as(client):
    """login_as(username) -> Authorization headers, via POST /auth/login."""

    async def _login_as(username, password=PASSWORD):
        return bearer(await login(client, username, password))

    return _login_as


@pytest.fixture
def issue_token():
    """Sign a token directly, e.g. already expired or for a forged identity."""
    codec = TokenCodec(TEST_SECRET)

    def _issue(user_id, username, role=Role.USER, ttl=timedelta(hours=1), secret=None):
        signer = TokenCodec(secret) if secret else codec
        return signer.issue(user_id, username, role, ttl)

    return _issue


@pytest_asyncio.fixture
async def admin_user(session_factory):
    return await seed_user(session_factory, "admin", Role.ADMIN)


@pytest_asyncio.fixture
async def manager_user(session_factory):
    return await seed_user(session_factory, "manager", Role.MANAGER)


@pytest_asyncio.fixture
async def managed_user(session_factory, manager_user):
    return await seed_user(
        session_factory, "alice", Role.USER,
        manager_id=manager_user.id, vpn_ip="10.8.0.2",
    )


@pytest_asyncio.fixture
async def other_user(session_factory):
    return await seed_user(session_factory, "bob", Role.USER, vpn_ip="10.8.0.3")


@pytest_asyncio.fixture
async def admin_headers(client, admin_user):
    return bearer(await login(client, admin_user.username))


@pytest_asyncio.fixture
async def manager_headers(client, manager_user):
    return bearer(await login(client, manager_user.username))


@pytest_asyncio.fixture
async def user_headers(client, managed_user):
    return bearer(await login(client, managed_user.username))


@pytest_asyncio.fixture
async def other_headers(client, other_user):
    return bearer(await login(client, other_user.username))


@pytest.fixture
def unknown_id():
    return uuid.uuid4()


@pytest.fixture
def vpn_headers():
    return {"X-VPN-Token": VPN_TOKEN}
