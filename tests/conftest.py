"""Pytest configuration and fixtures."""

import os

import pytest
import pytest_asyncio

# Set test environment variables before imports
os.environ["DATABASE_PATH"] = ":memory:"
os.environ["SYNC_INTERVAL_MINUTES"] = "0"
os.environ["SYNC_CALENDAR_IDS"] = "cal-a,cal-b"
os.environ["PLACEHOLDER_TITLE"] = "Busy"
os.environ["GOOGLE_TOKEN_FILE"] = "/tmp/calsync-test-missing-token.json"


@pytest.fixture(autouse=True)
def fresh_settings():
    """Re-read settings for every test so monkeypatched env vars apply."""
    from calsync.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def test_db():
    """Create a test database."""
    from calsync.database import get_database, close_database
    import calsync.database as db_module

    # Reset the global connection
    db_module._db_connection = None

    db = await get_database()

    yield db

    await close_database()
    db_module._db_connection = None


@pytest.fixture
def fake_backend():
    """In-memory backend with two empty calendars."""
    from tests.fakes import FakeCalendarBackend

    return FakeCalendarBackend()


@pytest.fixture
def client(fake_backend, monkeypatch):
    """Create a test client for the FastAPI app, backed by the fake backend."""
    from fastapi.testclient import TestClient

    import calsync.main as main_module
    from calsync.main import app
    from calsync.sync.google_calendar import get_calendar_backend

    app.dependency_overrides[get_calendar_backend] = lambda: fake_backend
    monkeypatch.setattr(main_module, "get_calendar_backend", lambda: fake_backend)

    with TestClient(app) as c:
        yield c

    app.dependency_overrides.clear()
