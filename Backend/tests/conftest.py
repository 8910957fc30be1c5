"""
Pytest configuration and fixtures.

Database-backed tests run against a throwaway SQLite file (aiosqlite)
created per test, so no external database is needed. Context unit tests
use FakeDataSource, an in-memory stand-in for the hosted backend.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from vallaroo.core.db import Base
from vallaroo.tenancy.entities import Business, Shop, StaffMember, StaffRole, UserProfile


BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)
TEST_JWT_SECRET = "vallaroo-test-jwt-secret-0123456789abcdef"


# ────────────────────────────────────────────────────────────────
# Entity builders
# ────────────────────────────────────────────────────────────────

def make_business(name: str = "Business", owner_id: Optional[uuid.UUID] = None, age: int = 0) -> Business:
    """`age` = days after BASE_TIME the business was created."""
    return Business(
        id=uuid.uuid4(),
        owner_id=owner_id or uuid.uuid4(),
        name=name,
        created_at=BASE_TIME + timedelta(days=age),
    )


def make_shop(business: Business, name: str = "Shop", age: int = 0) -> Shop:
    return Shop(
        id=uuid.uuid4(),
        business_id=business.id,
        name=name,
        created_at=BASE_TIME + timedelta(days=age),
    )


def make_staff(
    business: Business,
    role: StaffRole,
    shop: Optional[Shop] = None,
    user_id: Optional[uuid.UUID] = None,
) -> StaffMember:
    return StaffMember(
        id=uuid.uuid4(),
        business_id=business.id,
        shop_id=shop.id if shop else None,
        user_id=user_id,
        role=role,
        display_name=role.value.title(),
    )


# ────────────────────────────────────────────────────────────────
# In-memory data source
# ────────────────────────────────────────────────────────────────

class FakeDataSource:
    """ContextDataSource over plain lists; records preference writes."""

    def __init__(
        self,
        businesses: Sequence[Business] = (),
        shops: Sequence[Shop] = (),
        staff: Sequence[StaffMember] = (),
        profile: Optional[UserProfile] = None,
    ):
        self.businesses = list(businesses)
        self.shops = list(shops)
        self.staff = list(staff)
        self.profile = profile
        self.saved_preferences: list[dict] = []
        self.shop_fetches: list[uuid.UUID] = []

    async def get_user_profile(self, user_id):
        return self.profile

    async def list_staff_for_user(self, user_id):
        return [m for m in self.staff if m.user_id in (None, user_id)]

    async def list_owned_businesses(self, user_id):
        return [b for b in self.businesses if b.owner_id == user_id]

    async def get_businesses_by_ids(self, business_ids):
        ids = set(business_ids)
        return [b for b in self.businesses if b.id in ids]

    async def list_shops_for_business(self, business_id):
        self.shop_fetches.append(business_id)
        return [s for s in self.shops if s.business_id == business_id]

    async def save_default_preferences(self, user_id, *, business_id=None, shop_id=None):
        self.saved_preferences.append({"business_id": business_id, "shop_id": shop_id})


@pytest.fixture
def user_id() -> uuid.UUID:
    return uuid.uuid4()


# ────────────────────────────────────────────────────────────────
# Database fixtures
# ────────────────────────────────────────────────────────────────

@pytest.fixture(scope="function")
async def session_factory(tmp_path):
    """
    Session factory bound to a fresh SQLite database file.

    Each test gets its own file, so there is nothing to roll back.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'vallaroo_test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest.fixture(scope="function")
async def async_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
async def client(session_factory):
    """
    FastAPI AsyncClient wired to the test database.

    ASGITransport does not fire startup events, so the context registry is
    installed on app.state here. Auth runs in development mode: tests
    identify themselves with the X-User-Id header.
    """
    from vallaroo.core.config import Settings, get_settings
    from vallaroo.core.db import get_session
    from vallaroo.main import app
    from vallaroo.tenancy.sessions import SessionContextRegistry

    async def override_get_session():
        async with session_factory() as session:
            yield session

    def override_get_settings():
        return Settings(DISABLE_AUTH_CHECKS=True, SUPABASE_JWT_SECRET=TEST_JWT_SECRET)

    registry = SessionContextRegistry.from_session_factory(session_factory)
    app.state.context_registry = registry
    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_settings] = override_get_settings

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    await registry.close_all()
    app.dependency_overrides.clear()
