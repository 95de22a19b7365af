"""Shared test fixtures for all test modules."""

import contextlib

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import cashier.models  # noqa: F401
from cashier.core import database as db_module
from cashier.core.database import Base, get_db
from cashier.core.dependencies import get_clock
from cashier.core.locks import owner_locks
from cashier.main import app
from cashier.repositories.owner_repository import OwnerRepository
from cashier.schemas.owner import OwnerCreate
from cashier.services.gateway import get_gateway
from tests.gateway_stub import FrozenClock, StubGateway

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test and truncate all data after.

    Patches the module-level engine and SessionLocal so all application code
    uses the in-memory test database. Clears data after each test.
    """
    original_engine = db_module.engine
    original_session = db_module.SessionLocal
    db_module.engine = _test_engine
    db_module.SessionLocal = _TestSessionLocal

    Base.metadata.create_all(bind=_test_engine)

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    owner_locks.reset()
    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture
def db_session():
    """Create a database session for direct service testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def gateway(clock):
    return StubGateway(clock)


@pytest.fixture
def owner(db_session):
    return OwnerRepository(db_session).create(
        OwnerCreate(external_id="user-1", name="Taylor Otwell", email="taylor@example.com")
    )


@pytest.fixture
def client(gateway, clock):
    """Test client wired to the stub gateway and the frozen clock."""
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_clock] = lambda: clock
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
