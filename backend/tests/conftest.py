"""Pytest configuration and shared fixtures for API and service tests."""

import os
import tempfile

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Set test DB before app imports so config/engine use it
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./test_fittrack.db")
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ENCRYPTION_KEY", "x" * 32)
os.environ.setdefault("UPLOAD_DIR", os.path.join(tempfile.gettempdir(), "fittrack-test-uploads"))
os.environ.setdefault("STRAVA_CLIENT_ID", "12345")
os.environ.setdefault("STRAVA_CLIENT_SECRET", "strava-secret")
os.environ.setdefault("RATE_LIMIT_DEFAULT", "10000/minute")
os.environ["GOOGLE_GEMINI_API_KEY"] = ""

from app.core.auth import create_access_token, hash_password
from app.db.base import Base
from app.db.session import async_session_maker, engine, init_db
from app.main import app
from app.models.user import User
from app.services.http_client import close_http_client, init_http_client


async def _clear_all():
    """Delete all rows, children first, so each test starts clean."""
    async with engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            await conn.execute(table.delete())


@pytest_asyncio.fixture
async def ensure_db():
    """Create tables and the shared HTTP client (the app lifespan does not run under ASGITransport)."""
    await init_db()
    init_http_client(timeout=30.0)
    yield
    await close_http_client()
    # Connections are bound to this test's event loop
    await engine.dispose()


@pytest_asyncio.fixture
async def clean_db(ensure_db):
    await _clear_all()
    yield


@pytest_asyncio.fixture
async def session(clean_db):
    """AsyncSession for service-level tests."""
    async with async_session_maker() as s:
        yield s


@pytest_asyncio.fixture
async def client(clean_db):
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def test_user(clean_db):
    """Create a user via DB (committed) and return (user_id, email, access_token)."""
    async with async_session_maker() as s:
        user = User(
            email="test@test.com",
            password_hash=hash_password("password123"),
        )
        s.add(user)
        await s.commit()
        await s.refresh(user)
        token = create_access_token(user.id, user.email)
        return user.id, user.email, token


@pytest.fixture
def auth_headers(test_user):
    """Return dict of Authorization header for test_user."""
    _, __, token = test_user
    return {"Authorization": f"Bearer {token}"}
