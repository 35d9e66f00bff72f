"""Shared test fixtures.

Every test gets its own SQLite database file, so tests can open several
connections at once (concurrency tests) without sharing state.
"""

from __future__ import annotations

import os
import tempfile
import time
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path
from typing import Any

import jwt
import pytest
import pytest_asyncio
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from salesdojo.auth.jwt import reset_keys
from salesdojo.config import get_settings
from salesdojo.database import get_session
from salesdojo.db.base import Base
from salesdojo.db.models import Account, ContentItem
from salesdojo.main import create_app
from salesdojo.ratelimit.limiter import build_rate_limiter

TEST_ISSUER = "https://clerk.salesdojo.app"


def _ensure_test_keys() -> bytes:
    """Generate an RSA key pair standing in for the identity provider's signing key."""
    tmpdir = tempfile.mkdtemp(prefix="salesdojo_test_keys_")
    key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    public_path = Path(tmpdir) / "identity_public.pem"
    public_path.write_bytes(
        key.public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
    )

    os.environ["SALESDOJO_IDENTITY_PUBLIC_KEY_PATH"] = str(public_path)
    os.environ["SALESDOJO_IDENTITY_JWT_ISSUER"] = TEST_ISSUER
    os.environ["SALESDOJO_LOG_FORMAT"] = "console"
    get_settings.cache_clear()
    reset_keys()
    return private_pem


_PRIVATE_KEY = _ensure_test_keys()


def make_token(
    sub: str,
    email: str | None = None,
    name: str | None = None,
    expires_in: int = 3600,
    issuer: str = TEST_ISSUER,
) -> str:
    """Sign a session token the way the identity provider would."""
    now = int(time.time())
    claims: dict[str, Any] = {"sub": sub, "iss": issuer, "iat": now, "exp": now + expires_in}
    if email:
        claims["email"] = email
    if name:
        claims["name"] = name
    return jwt.encode(claims, _PRIVATE_KEY, algorithm="RS256")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'salesdojo.db'}",
        connect_args={"timeout": 30},
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for setup and assertions."""
    async with session_factory() as session:
        yield session


AccountFactory = Callable[..., Awaitable[Account]]


@pytest.fixture
def make_account(db_session: AsyncSession) -> AccountFactory:
    """Insert an account. Defaults to a fresh trial signup.

    The returned instance is detached, so its loaded attributes survive
    rollbacks inside the code under test.
    """
    counter = {"n": 0}

    async def _make(external_id: str | None = None, **fields: Any) -> Account:
        counter["n"] += 1
        values: dict[str, Any] = {
            "external_id": external_id or f"user_{counter['n']}",
            "plan": "trial",
            "trial_credits_remaining": 5,
            "trial_purchase_count": 1,
            "tokens_remaining": 0,
        }
        values.update(fields)
        account = Account(**values)
        db_session.add(account)
        await db_session.commit()
        db_session.expunge(account)
        return account

    return _make


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> list[ContentItem]:
    """Two trial personas and one paid boss."""
    items = [
        ContentItem(id="cold_call_basics", name="Cold Call Basics", tier_required="trial"),
        ContentItem(id="gatekeeper", name="The Gatekeeper", tier_required="trial"),
        ContentItem(id="cfo_boss", name="The Skeptical CFO", tier_required="paid", is_boss=True),
    ]
    db_session.add_all(items)
    await db_session.commit()
    return items


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


@pytest.fixture
def app(session_factory: async_sessionmaker[AsyncSession]) -> FastAPI:
    """Application wired to the per-test database and a process-local limiter."""
    application = create_app()

    async def _test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_session] = _test_session
    application.state.rate_limiter = build_rate_limiter("memory")
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth_headers() -> Callable[..., dict[str, str]]:
    """Bearer headers for an identity subject; the account is created on first call."""

    def _headers(sub: str = "user_http", **claims: Any) -> dict[str, str]:
        return {"Authorization": f"Bearer {make_token(sub, **claims)}"}

    return _headers
