"""
sqlcacher - Test Fixtures

Shared pytest fixtures for all test modules.
"""

from __future__ import annotations

import os
from datetime import datetime
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# =============================================================================
# TEST ENVIRONMENT SETUP
# =============================================================================

os.environ["APP_ENV"] = "testing"
os.environ.pop("REDIS_URL", None)
os.environ.pop("CACHE_KEY_PREFIX", None)
os.environ.pop("CACHE_TTL_SECONDS", None)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")

from sqlcacher.cache.session import CacheSession, cacher  # noqa: E402
from sqlcacher.cache.store import InMemoryCacheStore  # noqa: E402
from sqlcacher.database.client import DatabaseClient  # noqa: E402
from sqlcacher.database.operations import SQLAlchemyDataSource  # noqa: E402

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


# =============================================================================
# Test Models
# =============================================================================


class Base(DeclarativeBase):
    pass


class Vendor(Base):
    __tablename__ = "vendor"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))


class Widget(Base):
    __tablename__ = "widget"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(50))
    price: Mapped[float] = mapped_column(Float)
    quantity: Mapped[int] = mapped_column(Integer, default=0)
    color: Mapped[str | None] = mapped_column(String(20), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime)

    parts: Mapped[list[Part]] = relationship(back_populates="widget", order_by="Part.id")


class Part(Base):
    __tablename__ = "part"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    widget_id: Mapped[int] = mapped_column(ForeignKey("widget.id"))
    vendor_id: Mapped[int | None] = mapped_column(ForeignKey("vendor.id"), nullable=True)
    label: Mapped[str] = mapped_column(String(50))

    widget: Mapped[Widget] = relationship(back_populates="parts")
    vendor: Mapped[Vendor | None] = relationship()


def _seed_rows() -> list[Base]:
    return [
        Vendor(id=1, name="acme"),
        Vendor(id=2, name="globex"),
        Widget(id=1, name="bolt", price=1.5, quantity=10, color="red",
               created_at=datetime(2024, 1, 1, 10, 0)),
        Widget(id=2, name="nut", price=2.25, quantity=0, color=None,
               created_at=datetime(2024, 1, 2)),
        Widget(id=3, name="gear", price=4.0, quantity=5, color="blue",
               created_at=datetime(2024, 1, 3)),
        Widget(id=7, name="spring", price=0.5, quantity=3, color="red",
               created_at=datetime(2024, 1, 7)),
        Part(id=1, widget_id=1, vendor_id=1, label="head"),
        Part(id=2, widget_id=1, vendor_id=None, label="thread"),
        Part(id=3, widget_id=3, vendor_id=2, label="tooth"),
    ]


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture
async def db_client():
    """In-memory SQLite database seeded with widgets, parts and vendors."""
    client = DatabaseClient(url=TEST_DATABASE_URL)
    await client.connect()
    await client.create_all(Base.metadata)

    async with client.session() as session:
        session.add_all(_seed_rows())
        await session.commit()

    yield client
    await client.close()


@pytest.fixture
def datasource(db_client):
    """Data source with every test model registered."""
    return SQLAlchemyDataSource(db_client, base=Base)


# =============================================================================
# Cache Fixtures
# =============================================================================


class FakeClock:
    """Manually advanced clock for expiry tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    """In-memory cache store driven by the fake clock."""
    return InMemoryCacheStore(max_size=100, clock=clock)


@pytest.fixture
def session(datasource, memory_store) -> CacheSession:
    """Cache session bound to the widget model."""
    return cacher(datasource, memory_store).model("widget")


@pytest.fixture
def mock_redis():
    """Create a mock Redis client."""
    redis = AsyncMock()
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.ping = AsyncMock(return_value=True)
    redis.aclose = AsyncMock()
    return redis


@pytest.fixture
def mock_store():
    """Create a mock cache store."""
    store = AsyncMock()
    store.get = AsyncMock(return_value=None)
    store.set = AsyncMock(return_value=True)
    store.delete = AsyncMock(return_value=1)
    return store
