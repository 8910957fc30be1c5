"""
Active business / shop / staff-role context for one signed-in user.

A BusinessContext is an explicitly owned object: it is created when the
user signs in (see sessions.py) and destroyed on sign-out. It caches the
fetched business/shop/staff lists and exposes the switch operations.

STATES:
    UNINITIALIZED  - before the first load
    NO_BUSINESSES  - the user can access no business; onboarding needed
    ACTIVE         - a business list is loaded; business, shop and staff
                     role are each recomputed on every switch

Only a full reload (load_initial_context / refresh) leaves ACTIVE or
NO_BUSINESSES.

FAILURE MODEL:
    - Backend fetch failures are logged and treated as empty results.
    - Default-preference writes run as detached tasks; their failures are
      logged and never roll back the in-memory switch.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Optional, TypeVar

from .entities import Business, Shop, StaffMember
from .queries import ContextDataSource
from .resolver import (
    TieBreak,
    merge_accessible_businesses,
    order_businesses,
    order_shops,
    pick_active_business,
    pick_active_shop,
    resolve_active_staff,
)


logger = logging.getLogger(__name__)

T = TypeVar("T")


class ContextState(str, Enum):
    UNINITIALIZED = "uninitialized"
    NO_BUSINESSES = "no_businesses"
    ACTIVE = "active"


class ContextError(Exception):
    """Base error for context operations."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ContextSwitchError(ContextError):
    """Raised when a switch targets something outside the user's context."""
    def __init__(self, message: str, business_id: Optional[uuid.UUID] = None):
        self.business_id = business_id
        super().__init__(message)


@dataclass(frozen=True)
class ContextSnapshot:
    """Immutable view of a BusinessContext at one point in time."""

    state: ContextState
    businesses: tuple[Business, ...] = ()
    shops: tuple[Shop, ...] = ()
    staff: tuple[StaffMember, ...] = ()
    active_business: Optional[Business] = None
    active_shop: Optional[Shop] = None
    active_staff: Optional[StaffMember] = None

    @property
    def needs_onboarding(self) -> bool:
        return self.state == ContextState.NO_BUSINESSES


@dataclass
class _ContextData:
    businesses: list[Business] = field(default_factory=list)
    shops: list[Shop] = field(default_factory=list)
    staff: list[StaffMember] = field(default_factory=list)
    active_business: Optional[Business] = None
    active_shop: Optional[Shop] = None
    active_staff: Optional[StaffMember] = None


class BusinessContext:
    """
    Session-scoped active context for one user.

    All mutations are serialized by a single lock, so a switch can never
    interleave with another switch or with a reload.

    Usage:
        ctx = BusinessContext(user_id, SqlContextDataSource(AsyncSessionLocal))
        snapshot = await ctx.load_initial_context()
        if snapshot.needs_onboarding:
            ...  # send the user to business creation
        await ctx.switch_shop(snapshot.shops[1])
        ...
        await ctx.close()
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        data_source: ContextDataSource,
        tie_break: TieBreak = TieBreak.CREATED_AT,
    ):
        self.user_id = user_id
        self._data_source = data_source
        self._tie_break = TieBreak(tie_break)
        self._lock = asyncio.Lock()
        self._pending_writes: set[asyncio.Task] = set()
        self._last_write: Optional[asyncio.Task] = None
        self._state = ContextState.UNINITIALIZED
        self._data = _ContextData()
        self._closed = False

    # ────────────────────────────────────────────────────────────────
    # Read access
    # ────────────────────────────────────────────────────────────────

    @property
    def state(self) -> ContextState:
        return self._state

    @property
    def is_busy(self) -> bool:
        """True while a load or switch is in flight."""
        return self._lock.locked()

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def pending_write_count(self) -> int:
        return len(self._pending_writes)

    def snapshot(self) -> ContextSnapshot:
        data = self._data
        return ContextSnapshot(
            state=self._state,
            businesses=tuple(data.businesses),
            shops=tuple(data.shops),
            staff=tuple(data.staff),
            active_business=data.active_business,
            active_shop=data.active_shop,
            active_staff=data.active_staff,
        )

    def find_business(self, business_id: uuid.UUID) -> Optional[Business]:
        return next((b for b in self._data.businesses if b.id == business_id), None)

    def find_shop(self, shop_id: uuid.UUID) -> Optional[Shop]:
        return next((s for s in self._data.shops if s.id == shop_id), None)

    # ────────────────────────────────────────────────────────────────
    # Operations
    # ────────────────────────────────────────────────────────────────

    async def load_initial_context(self) -> ContextSnapshot:
        """
        Load (or reload) the whole context from the backend.

        Steps:
        1. Profile and staff grants (fetched concurrently)
        2. Accessible businesses: owned + referenced by staff grants
        3. No businesses -> NO_BUSINESSES, nothing active
        4. Active business: saved default if still accessible, else first
        5. Shops of the active business
        6. Active shop: saved default if in that list, else first
        7. Active staff role via resolve_active_staff()
        """
        async with self._lock:
            self._ensure_open()
            user_id = self.user_id

            profile, staff = await asyncio.gather(
                self._fetch("user profile", self._data_source.get_user_profile(user_id), None),
                self._fetch("staff members", self._data_source.list_staff_for_user(user_id), []),
            )

            owned = await self._fetch(
                "owned businesses", self._data_source.list_owned_businesses(user_id), []
            )
            staff_business_ids = list(dict.fromkeys(m.business_id for m in staff))
            via_staff = await self._fetch(
                "staff businesses",
                self._data_source.get_businesses_by_ids(staff_business_ids),
                [],
            )
            businesses = order_businesses(
                merge_accessible_businesses(owned, via_staff), self._tie_break
            )

            if not businesses:
                logger.info(f"User {user_id} has no accessible businesses; onboarding needed")
                self._data = _ContextData(staff=list(staff))
                self._state = ContextState.NO_BUSINESSES
                return self.snapshot()

            default_business_id = profile.default_business_id if profile else None
            default_shop_id = profile.default_shop_id if profile else None

            active_business = pick_active_business(businesses, default_business_id)
            shops = await self._load_shops(active_business.id)
            active_shop = pick_active_shop(shops, default_shop_id)

            self._data = _ContextData(
                businesses=businesses,
                shops=shops,
                staff=list(staff),
                active_business=active_business,
                active_shop=active_shop,
                active_staff=resolve_active_staff(staff, active_business, active_shop),
            )
            self._state = ContextState.ACTIVE

            logger.debug(
                f"Context loaded for user {user_id}: business={active_business.id}, "
                f"shop={active_shop.id if active_shop else None}, "
                f"role={self._data.active_staff.role.value if self._data.active_staff else None}"
            )
            return self.snapshot()

    async def refresh(self) -> ContextSnapshot:
        """Full reload; the only way out of NO_BUSINESSES."""
        return await self.load_initial_context()

    async def switch_business(self, business: Optional[Business]) -> ContextSnapshot:
        """
        Make `business` active (or clear the selection when None).

        The shop list is re-fetched and the first shop becomes active, so
        the active shop always belongs to the active business.
        """
        async with self._lock:
            self._ensure_open()

            if business is None:
                self._data.active_business = None
                self._data.shops = []
                self._data.active_shop = None
                self._data.active_staff = None
                return self.snapshot()

            if self._state != ContextState.ACTIVE or self.find_business(business.id) is None:
                raise ContextSwitchError(
                    f"Business {business.id} is not accessible for user {self.user_id}",
                    business_id=business.id,
                )

            self._data.active_business = business
            # Drop the previous business's shop before the fetch so no
            # reader can see a shop under a different business.
            self._data.shops = []
            self._data.active_shop = None

            shops = await self._load_shops(business.id)
            active_shop = shops[0] if shops else None

            self._data.shops = shops
            self._data.active_shop = active_shop
            self._data.active_staff = resolve_active_staff(self._data.staff, business, active_shop)

            self._save_preferences_in_background(
                business_id=business.id,
                shop_id=active_shop.id if active_shop else None,
            )
            return self.snapshot()

    async def switch_shop(self, shop: Optional[Shop]) -> ContextSnapshot:
        """
        Make `shop` active without re-fetching the shop list.

        The caller must pass a shop of the active business; that is not
        re-checked here (the HTTP layer only offers cached shops).
        """
        async with self._lock:
            self._ensure_open()

            self._data.active_shop = shop
            self._data.active_staff = resolve_active_staff(
                self._data.staff, self._data.active_business, shop
            )

            if shop is not None:
                self._save_preferences_in_background(shop_id=shop.id)
            return self.snapshot()

    # ────────────────────────────────────────────────────────────────
    # Lifecycle
    # ────────────────────────────────────────────────────────────────

    async def wait_for_pending_writes(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight preference writes (errors are already logged)."""
        if not self._pending_writes:
            return
        await asyncio.wait(set(self._pending_writes), timeout=timeout)

    async def close(self, timeout: Optional[float] = 5.0) -> None:
        """Flush pending preference writes, then refuse further use."""
        self._closed = True
        await self.wait_for_pending_writes(timeout=timeout)
        leftovers = [task for task in self._pending_writes if not task.done()]
        for task in leftovers:
            task.cancel()
        if leftovers:
            logger.warning(
                f"Cancelled {len(leftovers)} preference write(s) for user {self.user_id} on close"
            )
            await asyncio.gather(*leftovers, return_exceptions=True)

    # ────────────────────────────────────────────────────────────────
    # Internals
    # ────────────────────────────────────────────────────────────────

    def _ensure_open(self) -> None:
        if self._closed:
            raise ContextError(f"Context for user {self.user_id} is closed")

    async def _load_shops(self, business_id: uuid.UUID) -> list[Shop]:
        shops = await self._fetch(
            "shops", self._data_source.list_shops_for_business(business_id), []
        )
        return order_shops(shops, self._tie_break)

    async def _fetch(self, what: str, call: Awaitable[T], empty: T) -> T:
        try:
            return await call
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Failed to fetch {what} for user {self.user_id}: {e}", exc_info=True)
            return empty

    def _save_preferences_in_background(
        self,
        business_id: Optional[uuid.UUID] = None,
        shop_id: Optional[uuid.UUID] = None,
    ) -> None:
        # Each write waits for the previous one, so they commit in call order
        task = asyncio.create_task(
            self._save_preferences(self._last_write, business_id=business_id, shop_id=shop_id),
            name=f"save-default-preferences:{self.user_id}",
        )
        self._last_write = task
        self._pending_writes.add(task)
        task.add_done_callback(self._pending_writes.discard)

    async def _save_preferences(
        self,
        previous: Optional[asyncio.Task],
        business_id: Optional[uuid.UUID],
        shop_id: Optional[uuid.UUID],
    ) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait({previous})
        try:
            await self._data_source.save_default_preferences(
                self.user_id, business_id=business_id, shop_id=shop_id
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                f"Failed to save default preferences for user {self.user_id} "
                f"(business={business_id}, shop={shop_id}): {e}"
            )
