"""Pytest configuration and fixtures."""
import os
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport

# Settings are read at import time, so these must be set before importing app
os.environ.setdefault("MONGODB_URL", "mongodb://localhost:27017")
os.environ.setdefault("JWT_SECRET", "test-secret")

from app.database import get_database
from app.main import app
from app.services.session_timer import SessionTimers
from app.utils.auth import create_access_token
from app.utils.clock import FrozenClock, clock as app_clock
from tests.fakes import FakeDatabase

# A Monday morning
START = datetime(2026, 2, 2, 9, 0, 0)


@pytest.fixture
def fake_db():
    """Fresh in-memory database."""
    return FakeDatabase()


@pytest.fixture
def clock():
    """Clock frozen at START until advanced."""
    return FrozenClock(START)


@pytest.fixture
def timers(clock):
    """In-memory session timers."""
    return SessionTimers(clock=clock)


@pytest.fixture
def auth_headers():
    """Build bearer headers for a user ID."""

    def _headers(user_id: str) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}

    return _headers


@pytest_asyncio.fixture
async def app_client(fake_db):
    """
    Create a test client backed by the in-memory database.

    This fixture:
    - Points the database dependency at a fresh fake database
    - Yields an async HTTP client for testing
    - Resets the application clock afterwards
    """
    app.dependency_overrides[get_database] = lambda: fake_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    app_clock.reset()
