"""
Test configuration: fixtures for async DB, test client, and auth tokens.

Each test gets its own in-memory SQLite database; the app's get_db
dependency is overridden to use it. Auth goes through real signed tokens so
the permission gates are exercised end to end.
"""

import os
from datetime import date, datetime, timedelta, timezone

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from opsportal.core.permissions import Actor
from opsportal.core.security import create_access_token
from opsportal.database import Base, get_db
from opsportal.main import app
from opsportal.schemas.dispatch import BranchPlan, DispatchCreate, DispatchItemPlan

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


def tomorrow() -> date:
    return datetime.now(timezone.utc).date() + timedelta(days=1)


def make_plan(slug: str, name: str, items) -> BranchPlan:
    return BranchPlan(
        branch_slug=slug,
        branch_name=name,
        items=[DispatchItemPlan(name=n, quantity=q, unit=u) for n, q, u in items],
    )


@pytest.fixture
async def test_engine():
    """Fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def test_db(test_engine):
    session_factory = async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    async with session_factory() as session:
        yield session


@pytest.fixture
def dispatcher() -> Actor:
    return Actor(identity="dispatch@example.com", role="dispatcher", name="Dana Dispatcher")


@pytest.fixture
def admin() -> Actor:
    return Actor(identity="admin@example.com", role="admin", name="Head Office")


@pytest.fixture
def north_south_create() -> DispatchCreate:
    """Two branches, 50 KG of rice each."""
    return DispatchCreate(
        delivery_date=tomorrow(),
        branches=[
            make_plan("north", "North Branch", [("Rice", 50, "KG")]),
            make_plan("south", "South Branch", [("Rice", 50, "KG")]),
        ],
    )


@pytest.fixture
def auth_headers():
    """Build bearer headers for a role (and optional branch assignments)."""
    def _headers(role: str = "admin", branches=None, name: str = "Test User", sub: str = None):
        token = create_access_token(
            subject=sub or f"{role}@example.com",
            role=role,
            name=name,
            branches=branches or [],
        )
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
async def client(test_db):
    """Async test client bound to the per-test database."""

    async def override_get_db():
        yield test_db

    app.dependency_overrides[get_db] = override_get_db

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def create_payload():
    return {
        "delivery_date": tomorrow().isoformat(),
        "branches": [
            {
                "branch_slug": "north",
                "branch_name": "North Branch",
                "items": [{"name": "Rice", "quantity": 50, "unit": "KG"}],
            },
            {
                "branch_slug": "south",
                "branch_name": "South Branch",
                "items": [
                    {"name": "Rice", "quantity": 50, "unit": "KG"},
                    {"name": "Bread, Burger Bun", "quantity": 200},
                ],
            },
        ],
    }
