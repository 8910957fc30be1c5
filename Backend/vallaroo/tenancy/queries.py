"""
User-scoped query helpers for the hosted backend tables.

These functions are the data service consumed by the context core. They
return typed entities (see entities.py), never ORM rows, so the rest of
the core is isolated from the backend schema.

Usage:
    from vallaroo.tenancy.queries import list_staff_for_user, list_shops_for_business

    staff = await list_staff_for_user(session, user_id)
    shops = await list_shops_for_business(session, business_id)
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional, Protocol, Sequence

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .. import models
from .entities import (
    Business,
    Shop,
    StaffMember,
    UserProfile,
    business_from_row,
    map_rows,
    shop_from_row,
    staff_member_from_row,
    user_profile_from_row,
)


logger = logging.getLogger(__name__)


# ────────────────────────────────────────────────────────────────
# Read Queries
# ────────────────────────────────────────────────────────────────

async def get_user_profile(
    session: AsyncSession,
    user_id: uuid.UUID,
) -> Optional[UserProfile]:
    """Get the user's profile (default business/shop), or None."""
    row = await session.get(models.UserProfile, user_id)
    if row is None:
        return None
    return user_profile_from_row(row)


async def list_staff_for_user(
    session: AsyncSession,
    user_id: uuid.UUID,
) -> list[StaffMember]:
    """All role grants held by the user, in backend order."""
    result = await session.execute(
        select(models.StaffMember).where(models.StaffMember.user_id == user_id)
    )
    return map_rows(result.scalars().all(), staff_member_from_row)


async def list_owned_businesses(
    session: AsyncSession,
    user_id: uuid.UUID,
) -> list[Business]:
    """Businesses whose owner is the user."""
    result = await session.execute(
        select(models.Business).where(models.Business.owner_id == user_id)
    )
    return map_rows(result.scalars().all(), business_from_row)


async def get_businesses_by_ids(
    session: AsyncSession,
    business_ids: Sequence[uuid.UUID],
) -> list[Business]:
    """Businesses with the given ids (unknown ids are ignored)."""
    if not business_ids:
        return []
    result = await session.execute(
        select(models.Business).where(models.Business.id.in_(set(business_ids)))
    )
    return map_rows(result.scalars().all(), business_from_row)


async def list_shops_for_business(
    session: AsyncSession,
    business_id: uuid.UUID,
) -> list[Shop]:
    """All shops under one business, in backend order."""
    result = await session.execute(
        select(models.Shop).where(models.Shop.business_id == business_id)
    )
    return map_rows(result.scalars().all(), shop_from_row)


async def count_businesses_owned(session: AsyncSession, user_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(models.Business.id)).where(models.Business.owner_id == user_id)
    )
    return result.scalar_one()


async def count_shops_for_business(session: AsyncSession, business_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(models.Shop.id)).where(models.Shop.business_id == business_id)
    )
    return result.scalar_one()


# ────────────────────────────────────────────────────────────────
# Write Queries
# ────────────────────────────────────────────────────────────────

async def upsert_default_preferences(
    session: AsyncSession,
    user_id: uuid.UUID,
    *,
    business_id: Optional[uuid.UUID] = None,
    shop_id: Optional[uuid.UUID] = None,
) -> None:
    """
    Store the user's default business and/or shop.

    Single INSERT ... ON CONFLICT (id) DO UPDATE, so concurrent writes for
    a user without a profile row cannot collide. Only the values provided
    are written. Does not commit.
    """
    changes = {"updated_at": datetime.now(timezone.utc)}
    if business_id is not None:
        changes["default_business_id"] = business_id
    if shop_id is not None:
        changes["default_shop_id"] = shop_id

    dialect = session.get_bind().dialect.name
    insert = sqlite_insert if dialect == "sqlite" else pg_insert

    stmt = insert(models.UserProfile).values(id=user_id, **changes).on_conflict_do_update(
        index_elements=["id"],
        set_=changes,
    )
    await session.execute(stmt)


# ────────────────────────────────────────────────────────────────
# Data Source
# ────────────────────────────────────────────────────────────────

class ContextDataSource(Protocol):
    """What the context core needs from the backend."""

    async def get_user_profile(self, user_id: uuid.UUID) -> Optional[UserProfile]: ...

    async def list_staff_for_user(self, user_id: uuid.UUID) -> list[StaffMember]: ...

    async def list_owned_businesses(self, user_id: uuid.UUID) -> list[Business]: ...

    async def get_businesses_by_ids(self, business_ids: Sequence[uuid.UUID]) -> list[Business]: ...

    async def list_shops_for_business(self, business_id: uuid.UUID) -> list[Shop]: ...

    async def save_default_preferences(
        self,
        user_id: uuid.UUID,
        *,
        business_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> None: ...


class SqlContextDataSource:
    """
    ContextDataSource backed by the hosted Postgres database.

    Every call opens its own session, so a detached preference write
    never shares a session with the request that spawned it.
    """

    def __init__(self, session_factory: async_sessionmaker):
        self._session_factory = session_factory

    async def get_user_profile(self, user_id: uuid.UUID) -> Optional[UserProfile]:
        async with self._session_factory() as session:
            return await get_user_profile(session, user_id)

    async def list_staff_for_user(self, user_id: uuid.UUID) -> list[StaffMember]:
        async with self._session_factory() as session:
            return await list_staff_for_user(session, user_id)

    async def list_owned_businesses(self, user_id: uuid.UUID) -> list[Business]:
        async with self._session_factory() as session:
            return await list_owned_businesses(session, user_id)

    async def get_businesses_by_ids(self, business_ids: Sequence[uuid.UUID]) -> list[Business]:
        async with self._session_factory() as session:
            return await get_businesses_by_ids(session, business_ids)

    async def list_shops_for_business(self, business_id: uuid.UUID) -> list[Shop]:
        async with self._session_factory() as session:
            return await list_shops_for_business(session, business_id)

    async def save_default_preferences(
        self,
        user_id: uuid.UUID,
        *,
        business_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> None:
        async with self._session_factory() as session:
            await upsert_default_preferences(
                session, user_id, business_id=business_id, shop_id=shop_id
            )
            await session.commit()
        logger.debug(
            f"Saved default preferences for user {user_id}: "
            f"business={business_id}, shop={shop_id}"
        )
