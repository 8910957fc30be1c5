"""
Active-context package.

Modules:
    entities: typed Business/Shop/StaffMember/UserProfile and row mapping
    resolver: pure precedence rules (active staff, default business/shop)
    queries: backend queries and the SQL-backed data source
    context: BusinessContext, the per-user stateful context
    sessions: per-user context lifecycle and FastAPI dependencies

sessions is not re-exported here; it depends on the auth module, which
itself imports entities from this package.
"""

from .entities import (
    Business,
    Shop,
    StaffMember,
    StaffRole,
    UserProfile,
)
from .resolver import (
    TieBreak,
    resolve_active_staff,
    merge_accessible_businesses,
    order_businesses,
    order_shops,
    pick_active_business,
    pick_active_shop,
)
from .queries import ContextDataSource, SqlContextDataSource
from .context import (
    BusinessContext,
    ContextError,
    ContextSnapshot,
    ContextState,
    ContextSwitchError,
)

__all__ = [
    # Entities
    "Business",
    "Shop",
    "StaffMember",
    "StaffRole",
    "UserProfile",
    # Resolver
    "TieBreak",
    "resolve_active_staff",
    "merge_accessible_businesses",
    "order_businesses",
    "order_shops",
    "pick_active_business",
    "pick_active_shop",
    # Data source
    "ContextDataSource",
    "SqlContextDataSource",
    # Context
    "BusinessContext",
    "ContextError",
    "ContextSnapshot",
    "ContextState",
    "ContextSwitchError",
]
