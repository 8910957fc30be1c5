"""
Pure decision functions for the active business / shop / staff role.

Nothing here performs I/O. Given the same inputs every function returns
the same result, which makes the precedence rules easy to test in
isolation from the data service.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Iterable, Optional, Sequence

from .entities import Business, Shop, StaffMember


class TieBreak(str, Enum):
    """How "the first" business/shop is chosen when no default applies."""

    CREATED_AT = "created_at"   # Oldest first, then name, then id
    NAME = "name"               # Case-insensitive name, then id
    FETCH = "fetch"             # Backend order as returned (legacy, unstable)


_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def resolve_active_staff(
    staff_list: Sequence[StaffMember],
    business: Optional[Business],
    shop: Optional[Shop],
) -> Optional[StaffMember]:
    """
    Pick the StaffMember representing the user's role for (business, shop).

    Resolution order (first match wins):
    1. Shop-specific grant for the active shop
    2. Business-level grant for the shop's parent business
    3. Business-level grant for the active business
    4. Any grant under the active business (first in list order)
    5. First grant in the list, or None when the list is empty
    """
    if shop is not None:
        for member in staff_list:
            if member.shop_id == shop.id:
                return member
        for member in staff_list:
            if member.business_id == shop.business_id and member.shop_id is None:
                return member

    if business is not None:
        for member in staff_list:
            if member.business_id == business.id and member.shop_id is None:
                return member
        # Only shop-scoped grants exist for this business. No ranking
        # between them is defined, so list order decides.
        for member in staff_list:
            if member.business_id == business.id:
                return member

    return staff_list[0] if staff_list else None


def merge_accessible_businesses(
    owned: Iterable[Business],
    via_staff: Iterable[Business],
) -> list[Business]:
    """Union of owned and staff-linked businesses, deduplicated by id."""
    seen: set[uuid.UUID] = set()
    merged: list[Business] = []
    for business in [*owned, *via_staff]:
        if business.id in seen:
            continue
        seen.add(business.id)
        merged.append(business)
    return merged


def _created_key(entity) -> tuple:
    created = entity.created_at or _EPOCH
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return (created, entity.name.casefold(), str(entity.id))


def _name_key(entity) -> tuple:
    return (entity.name.casefold(), str(entity.id))


def _ordered(items: Iterable, tie_break: TieBreak) -> list:
    items = list(items)
    tie_break = TieBreak(tie_break)
    if tie_break is TieBreak.CREATED_AT:
        return sorted(items, key=_created_key)
    if tie_break is TieBreak.NAME:
        return sorted(items, key=_name_key)
    return items


def order_businesses(
    businesses: Iterable[Business],
    tie_break: TieBreak = TieBreak.CREATED_AT,
) -> list[Business]:
    return _ordered(businesses, tie_break)


def order_shops(
    shops: Iterable[Shop],
    tie_break: TieBreak = TieBreak.CREATED_AT,
) -> list[Shop]:
    return _ordered(shops, tie_break)


def pick_active_business(
    businesses: Sequence[Business],
    default_business_id: Optional[uuid.UUID],
) -> Optional[Business]:
    """Saved default if still accessible, else the first business."""
    if default_business_id is not None:
        for business in businesses:
            if business.id == default_business_id:
                return business
    return businesses[0] if businesses else None


def pick_active_shop(
    shops: Sequence[Shop],
    default_shop_id: Optional[uuid.UUID],
) -> Optional[Shop]:
    """Saved default if it belongs to the fetched set, else the first shop."""
    if default_shop_id is not None:
        for shop in shops:
            if shop.id == default_shop_id:
                return shop
    return shops[0] if shops else None
