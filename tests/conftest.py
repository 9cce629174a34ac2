"""Pytest configuration and fixtures."""

from datetime import date, datetime, timedelta
from typing import Generator, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from queueapp import models  # noqa: F401
from queueapp.config import Settings, get_settings
from queueapp.live_queue import QueueService
from queueapp.main import app, get_clock, get_store
from queueapp.schemas import QueueItem, QueueStatus
from queueapp.store import MemoryDocumentStore, SqlDocumentStore
from queueapp.writers import CleanupService

# Use in-memory SQLite for tests
TEST_DATABASE_URL = "sqlite:///:memory:"


class FixedClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self.current = now

    def now(self) -> datetime:
        return self.current

    def today(self) -> date:
        return self.current.date()

    def set(self, now: datetime) -> None:
        self.current = now

    def advance(self, **kwargs) -> None:
        self.current = self.current + timedelta(**kwargs)


def make_item(
    number: int,
    joined_at: datetime,
    name: str = "Guest",
    phone: str = "9000000000",
    guests: int = 2,
    wait_minutes: Optional[int] = None,
    table_no: str = "T1",
) -> QueueItem:
    """Build a live queue item, seated after ``wait_minutes`` when given."""
    if wait_minutes is None:
        return QueueItem(
            queue_number=f"A-{number:03d}",
            name=name,
            phone=phone,
            guests=guests,
            joined_at=joined_at,
        )
    return QueueItem(
        queue_number=f"A-{number:03d}",
        name=name,
        phone=phone,
        guests=guests,
        joined_at=joined_at,
        allocated_at=joined_at + timedelta(minutes=wait_minutes),
        table_no=table_no,
        status=QueueStatus.ALLOCATED,
    )


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2026, 3, 10, 13, 15))


@pytest.fixture
def settings() -> Settings:
    return Settings(
        database_url=TEST_DATABASE_URL,
        store_backend="memory",
        archive_cutover_month="2026-01",
        free_monthly_limit=5,
        freemium_grace_customers=3,
        _env_file=None,
    )


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture
def memory_store() -> MemoryDocumentStore:
    return MemoryDocumentStore()


@pytest.fixture
def sql_store(db_engine) -> SqlDocumentStore:
    return SqlDocumentStore(db_engine)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    """Runs the test once against each backend."""
    if request.param == "memory":
        return MemoryDocumentStore()
    return SqlDocumentStore(request.getfixturevalue("db_engine"))


@pytest.fixture
def queue_service(store, clock, settings) -> QueueService:
    return QueueService(store, clock, settings)


@pytest.fixture
def cleanup_service(store, clock, settings) -> CleanupService:
    return CleanupService(store, clock, settings)


@pytest.fixture(scope="function")
def client(sql_store, clock, settings) -> Generator[TestClient, None, None]:
    """Create a test client with store, clock and settings overrides."""
    app.dependency_overrides[get_store] = lambda: sql_store
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_settings] = lambda: settings
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
