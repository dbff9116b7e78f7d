"""Test configuration and fixtures.

Each test gets a fresh database:
1. A per-test SQLite file (or TEST_DATABASE_URL, e.g. a Postgres test database)
2. Tables are created before the test and dropped after it
3. Commits are real, so concurrent-session behaviour can be exercised
4. The application's session factory is bound to the same engine
"""

import os
from collections.abc import AsyncGenerator
from pathlib import Path

from dotenv import load_dotenv

# Load test environment variables before the settings singleton is built
test_env_path = Path(__file__).parent.parent / ".env.test"
load_dotenv(test_env_path, override=True)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from matcha_auth.config.settings import settings  # noqa: E402
from matcha_auth.database import client as db_client  # noqa: E402
from matcha_auth.database.base import Base  # noqa: E402
from matcha_auth.features.auth.oidc.client import FederatedIdentity, OIDCClient, get_oidc_client  # noqa: E402
from matcha_auth.features.auth.oidc.flow import FlowState  # noqa: E402
from matcha_auth.features.auth.password import hash_password  # noqa: E402
from matcha_auth.features.user.email import EmailMessage, get_email_sender  # noqa: E402
from matcha_auth.features.user.models import User, UserStats  # noqa: E402
from matcha_auth.main import create_app  # noqa: E402

DEFAULT_PASSWORD = "password123"


# Database Setup - Function Scope (Fresh Schema Per Test)


@pytest_asyncio.fixture
async def db_engine(tmp_path) -> AsyncGenerator[AsyncEngine]:
    """Create the schema on a fresh database and bind the app's session factory to it."""
    url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = db_client.create_engine_for_url(url, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await db_client.create_tables(engine)
    db_client.bind_session_factory(engine)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await db_client.close_db()


@pytest_asyncio.fixture
async def session(db_engine: AsyncEngine) -> AsyncGenerator[AsyncSession]:
    """A session independent of the ones the app opens per request."""
    async with db_client.get_session_factory()() as s:
        yield s


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine):
    """Factory for extra sessions, e.g. to race two transactions."""
    return db_client.get_session_factory()


# Email & Identity Provider Doubles


class CapturingEmailSender:
    """Records outgoing emails instead of sending them."""

    def __init__(self):
        self.messages: list[EmailMessage] = []

    async def send(self, message: EmailMessage) -> None:
        self.messages.append(message)

    def last_token(self) -> str:
        """Extract the token from the link in the most recent email."""
        body = self.messages[-1].body
        return body.split("token=", 1)[1].split()[0]


class FakeOIDCClient(OIDCClient):
    """Provider double: no network, returns a configurable identity."""

    def __init__(self):
        super().__init__(
            issuer_url="https://accounts.example.test",
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_url="http://test/auth/callback",
        )
        self.identity = FederatedIdentity(
            subject="google-sub-1",
            email="federated@example.com",
            email_verified=True,
            name="Federated User",
            picture="https://example.com/pic.png",
        )
        self.exchanged: list[tuple[str, str]] = []
        self.nonces: list[str] = []

    async def authorization_url(self, flow: FlowState) -> str:
        return f"https://accounts.example.test/auth?state={flow.csrf_token}&code_challenge={flow.code_challenge}"

    async def exchange_code(self, code: str, pkce_verifier: str) -> str:
        self.exchanged.append((code, pkce_verifier))
        return "fake-id-token"

    async def verify_id_token(self, id_token: str, nonce: str) -> FederatedIdentity:
        self.nonces.append(nonce)
        return self.identity


# FastAPI App & Client


@pytest.fixture
def email_sender() -> CapturingEmailSender:
    return CapturingEmailSender()


@pytest.fixture
def fake_oidc() -> FakeOIDCClient:
    return FakeOIDCClient()


@pytest_asyncio.fixture
async def app(db_engine, email_sender, fake_oidc):
    """A fresh application (and rate limiter) per test."""
    application = create_app(settings)
    application.dependency_overrides[get_email_sender] = lambda: email_sender
    application.dependency_overrides[get_oidc_client] = lambda: fake_oidc
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP test client. Cookies persist across requests."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac


# Test User Factories


@pytest_asyncio.fixture
async def make_user(session: AsyncSession):
    """Factory fixture to create committed test users.

    Usage:
        user = await make_user()                         # verified password account
        user = await make_user(email_verified=False)     # awaiting verification
        user = await make_user(password=None, google_id="sub")  # federated only
    """
    counter = 0

    async def _factory(
        email=None,
        username=None,
        password=DEFAULT_PASSWORD,
        email_verified=True,
        **kwargs,
    ) -> User:
        nonlocal counter
        counter += 1

        if email is None:
            email = f"testuser{counter}@example.com"
        if username is None:
            username = f"testuser{counter}"

        user = User(
            email=email,
            username=username,
            password_hash=await hash_password(password) if password is not None else None,
            email_verified=email_verified,
            **kwargs,
        )
        session.add(user)
        await session.flush()
        session.add(UserStats(user_id=user.id))
        await session.commit()
        return user

    yield _factory


@pytest_asyncio.fixture
async def login(client: AsyncClient):
    """Log in through the API and return the token response body."""

    async def _login(email: str, password: str = DEFAULT_PASSWORD) -> dict:
        response = await client.post("/users/login", json={"email": email, "password": password})
        assert response.status_code == 200, response.text
        return response.json()

    return _login
