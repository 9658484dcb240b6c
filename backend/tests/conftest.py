"""Shared test fixtures for all test modules."""

import contextlib
from unittest.mock import MagicMock

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from changeflow.core import cache as cache_module
from changeflow.core import database as db_module
from changeflow.core.cache import RedisCache
from changeflow.core.config import settings
from changeflow.core.database import Base, get_db
from changeflow.core.events import EventBroadcaster
from changeflow.models import Product, Tenant
from changeflow.models.shared import DEFAULT_TENANT_ID

# Create an in-memory SQLite engine with StaticPool so all connections
# share the same database state and there are no file-locking issues.
_test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
_TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=_test_engine)


def _seed_default_tenant(session: Session) -> None:
    """Insert the tenant that requests without X-Tenant-Id act on."""
    tenant = session.query(Tenant).filter(Tenant.id == DEFAULT_TENANT_ID).first()
    if tenant is None:
        session.add(Tenant(id=DEFAULT_TENANT_ID, name="Default Test Tenant", slug="default"))
        session.commit()


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

    session = _TestSessionLocal()
    try:
        _seed_default_tenant(session)
    finally:
        session.close()

    yield
    with _test_engine.connect() as conn:
        conn.execute(text("PRAGMA foreign_keys = OFF"))
        for table in reversed(Base.metadata.sorted_tables):
            with contextlib.suppress(OperationalError):
                conn.execute(table.delete())
        conn.execute(text("PRAGMA foreign_keys = ON"))
        conn.commit()

    db_module.engine = original_engine
    db_module.SessionLocal = original_session


@pytest.fixture(autouse=True)
def disable_cache():
    """Keep tests off Redis; tests that need a cache inject a mocked client."""
    original = settings.CACHE_ENABLED
    settings.CACHE_ENABLED = False
    cache_module.reset_client()
    yield
    settings.CACHE_ENABLED = original
    cache_module.reset_client()


@pytest.fixture
def db_session():
    """Create a database session for direct service and repository testing."""
    gen = get_db()
    db = next(gen)
    try:
        yield db
    finally:
        for _ in gen:
            pass


@pytest.fixture
def default_tenant_id():
    return DEFAULT_TENANT_ID


@pytest.fixture
def redis_client():
    """A MagicMock standing in for a redis-py client."""
    client = MagicMock()
    client.keys.return_value = []
    client.get.return_value = None
    client.lrange.return_value = []
    return client


@pytest.fixture
def mock_cache(redis_client):
    return RedisCache(redis_client)


@pytest.fixture
def broadcaster():
    return MagicMock(spec=EventBroadcaster)


@pytest.fixture
def product(db_session):
    """Product 42 priced at 10, the entity most change tests edit."""
    product = Product(
        id="42",
        tenant_id=DEFAULT_TENANT_ID,
        name="Widget",
        sku="WID-42",
        price=10,
        currency="USD",
        stock=5,
        status="active",
    )
    db_session.add(product)
    db_session.commit()
    db_session.refresh(product)
    return product
