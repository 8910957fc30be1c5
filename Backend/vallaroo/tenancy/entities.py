"""
Typed entities for the active-context core.

Rows coming from the hosted backend (ORM objects or plain mappings, as a
REST-style client returns them) are converted here into frozen
dataclasses. Nothing outside this module touches raw row shapes.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Any, Iterable, Mapping, Optional


logger = logging.getLogger(__name__)


class StaffRole(str, Enum):
    OWNER = "owner"
    PARTNER = "partner"
    MANAGER = "manager"
    CASHIER = "cashier"
    INVENTORY = "inventory"
    STAFF = "staff"
    VIEWER = "viewer"


class InvalidRowError(ValueError):
    """Raised when a backend row cannot be mapped to an entity."""


@dataclass(frozen=True)
class Business:
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    name_ml: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    currency: str = "INR"
    is_verified: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class Shop:
    id: uuid.UUID
    business_id: uuid.UUID
    name: str
    name_ml: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    delivery_available: bool = False
    takeaway_available: bool = False
    subscription_plan: Optional[str] = None
    is_verified: bool = False
    is_hidden: bool = False
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class StaffMember:
    id: uuid.UUID
    business_id: uuid.UUID
    role: StaffRole
    display_name: str
    shop_id: Optional[uuid.UUID] = None
    user_id: Optional[uuid.UUID] = None
    is_active: bool = True

    @property
    def is_business_level(self) -> bool:
        return self.shop_id is None


@dataclass(frozen=True)
class UserProfile:
    id: uuid.UUID
    default_business_id: Optional[uuid.UUID] = None
    default_shop_id: Optional[uuid.UUID] = None


# ────────────────────────────────────────────────────────────────
# Row normalization
# ────────────────────────────────────────────────────────────────

def _get(row: Any, key: str, default: Any = None) -> Any:
    if isinstance(row, Mapping):
        return row.get(key, default)
    return getattr(row, key, default)


def _uuid(value: Any, field_name: str) -> uuid.UUID:
    if isinstance(value, uuid.UUID):
        return value
    if value is None:
        raise InvalidRowError(f"{field_name} is required")
    try:
        return uuid.UUID(str(value))
    except ValueError as e:
        raise InvalidRowError(f"{field_name} is not a valid UUID: {value!r}") from e


def _optional_uuid(value: Any, field_name: str) -> Optional[uuid.UUID]:
    if value is None or value == "":
        return None
    return _uuid(value, field_name)


def parse_role(value: Any) -> StaffRole:
    """Normalize a backend role string (case/whitespace-insensitive)."""
    if isinstance(value, StaffRole):
        return value
    normalized = str(value or "").strip().lower()
    try:
        return StaffRole(normalized)
    except ValueError as e:
        raise InvalidRowError(f"Unknown staff role: {value!r}") from e


def business_from_row(row: Any) -> Business:
    return Business(
        id=_uuid(_get(row, "id"), "business.id"),
        owner_id=_uuid(_get(row, "owner_id"), "business.owner_id"),
        name=_get(row, "name") or "",
        name_ml=_get(row, "name_ml"),
        address_line1=_get(row, "address_line1"),
        city=_get(row, "city"),
        state=_get(row, "state"),
        country=_get(row, "country"),
        currency=_get(row, "currency") or "INR",
        is_verified=bool(_get(row, "is_verified", False)),
        created_at=_get(row, "created_at"),
    )


def shop_from_row(row: Any) -> Shop:
    return Shop(
        id=_uuid(_get(row, "id"), "shop.id"),
        business_id=_uuid(_get(row, "business_id"), "shop.business_id"),
        name=_get(row, "name") or "",
        name_ml=_get(row, "name_ml"),
        address_line1=_get(row, "address_line1"),
        city=_get(row, "city"),
        opening_time=_get(row, "opening_time"),
        closing_time=_get(row, "closing_time"),
        delivery_available=bool(_get(row, "delivery_available", False)),
        takeaway_available=bool(_get(row, "takeaway_available", False)),
        subscription_plan=_get(row, "subscription_plan"),
        is_verified=bool(_get(row, "is_verified", False)),
        is_hidden=bool(_get(row, "is_hidden", False)),
        created_at=_get(row, "created_at"),
    )


def staff_member_from_row(row: Any) -> StaffMember:
    return StaffMember(
        id=_uuid(_get(row, "id"), "staff_member.id"),
        business_id=_uuid(_get(row, "business_id"), "staff_member.business_id"),
        shop_id=_optional_uuid(_get(row, "shop_id"), "staff_member.shop_id"),
        user_id=_optional_uuid(_get(row, "user_id"), "staff_member.user_id"),
        role=parse_role(_get(row, "role")),
        display_name=_get(row, "display_name") or "",
        is_active=_get(row, "is_active", True) is not False,
    )


def user_profile_from_row(row: Any) -> UserProfile:
    return UserProfile(
        id=_uuid(_get(row, "id"), "user_profile.id"),
        default_business_id=_optional_uuid(_get(row, "default_business_id"), "default_business_id"),
        default_shop_id=_optional_uuid(_get(row, "default_shop_id"), "default_shop_id"),
    )


def map_rows(rows: Iterable[Any], mapper) -> list:
    """
    Map many rows, skipping (and logging) rows that fail normalization.

    One malformed row must not hide the rest of the user's data.
    """
    entities = []
    for row in rows:
        try:
            entities.append(mapper(row))
        except InvalidRowError as e:
            logger.warning(f"Skipping malformed row ({mapper.__name__}): {e}")
    return entities
