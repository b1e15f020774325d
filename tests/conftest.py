import os

# Settings are read at import time
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("ALGORITHM", "HS256")
os.environ["AUTO_CREATE_TABLES"] = "false"

# Imports for testing tools
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import NullPool
from unittest.mock import AsyncMock

# Import your application code
from booking_engine.database import Base
from booking_engine.engine import BookingEngine
from booking_engine.store import SqlStore
from booking_engine import models  # noqa: F401


# --- Test Database Setup ---
@pytest.fixture(scope="function")
def db_url(tmp_path):
    return f"{tmp_path / 'test_bookings.db'}"


@pytest.fixture(scope="function")
def sync_engine(db_url):
    """Creates and drops the booking tables. Also used to seed and inspect rows."""
    engine = create_engine(f"sqlite:///{db_url}")
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture(scope="function")
def db_session(sync_engine):
    """Provides a database session for seeding and asserting."""
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=sync_engine)
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture(scope="function")
def query(sync_engine):
    """
    Runs an ORM query in a fresh session, so rows written by the async
    store are never served from a stale identity map.
    """
    TestingSessionLocal = sessionmaker(bind=sync_engine)

    def _query(model, **filters):
        with TestingSessionLocal() as session:
            return session.query(model).filter_by(**filters).all()

    return _query


@pytest.fixture(scope="function")
def store(sync_engine, db_url):
    """The store under test, pointed at the same SQLite file through aiosqlite."""
    async_engine = create_async_engine(f"sqlite+aiosqlite:///{db_url}", poolclass=NullPool)
    return SqlStore(async_engine)


@pytest.fixture(scope="function")
def booking_engine(store):
    """An engine without the change-event relay, so only the core tables are written."""
    return BookingEngine(store, change_topic=None)


# --- Mocking External Services ---
@pytest.fixture(scope="function", autouse=True)
def mock_background_tasks(mocker):
    """
    Mocks the background tasks (outbox poller and reconciler) and the Redis
    backed limiter that start with the app lifespan.
    """
    mocker.patch("booking_engine.main.run_outbox_poller", new_callable=AsyncMock)
    mocker.patch("booking_engine.main.run_reconciler", new_callable=AsyncMock)
    mocker.patch("booking_engine.main.FastAPILimiter.init", new_callable=AsyncMock)


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(store):
    """Provides a TestClient wired to the test database."""
    from booking_engine.main import app
    from booking_engine.routers import booking_router
    from booking_engine.service import get_booking_engine

    api_engine = BookingEngine(store, change_topic=None)

    app.dependency_overrides[get_booking_engine] = lambda: api_engine
    app.dependency_overrides[booking_router.write_limiter] = lambda: None
    app.dependency_overrides[booking_router.read_limiter] = lambda: None

    with TestClient(app) as c:
        yield c

    # Clean up overrides
    app.dependency_overrides.clear()
