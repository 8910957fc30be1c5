"""
Tests for the pure active-context decision functions.

Run with: pytest tests/test_resolver.py -v
"""

import random
import uuid
from datetime import datetime

import pytest

from vallaroo.tenancy.entities import Business, Shop, StaffRole
from vallaroo.tenancy.resolver import (
    TieBreak,
    merge_accessible_businesses,
    order_businesses,
    order_shops,
    pick_active_business,
    pick_active_shop,
    resolve_active_staff,
)

from conftest import make_business, make_shop, make_staff


@pytest.fixture
def b1() -> Business:
    return make_business("B1")


@pytest.fixture
def s1(b1) -> Shop:
    return make_shop(b1, "S1")


@pytest.fixture
def s2(b1) -> Shop:
    return make_shop(b1, "S2")


# ============================================================================
# RESOLVE ACTIVE STAFF
# ============================================================================

class TestResolveActiveStaff:
    """Precedence: shop grant > parent business grant > business grant > any > first."""

    def test_shop_grant_beats_business_grant(self, b1, s1):
        cashier = make_staff(b1, StaffRole.CASHIER, shop=s1)
        manager = make_staff(b1, StaffRole.MANAGER)

        result = resolve_active_staff([cashier, manager], b1, s1)

        assert result.role == StaffRole.CASHIER

    def test_business_grant_covers_other_shops(self, b1, s1, s2):
        cashier = make_staff(b1, StaffRole.CASHIER, shop=s1)
        manager = make_staff(b1, StaffRole.MANAGER)

        result = resolve_active_staff([cashier, manager], b1, s2)

        assert result.role == StaffRole.MANAGER

    def test_shop_grant_wins_regardless_of_order(self, b1, s1):
        shop_grant = make_staff(b1, StaffRole.INVENTORY, shop=s1)
        others = [
            make_staff(b1, StaffRole.OWNER),
            make_staff(make_business("Other"), StaffRole.VIEWER),
            make_staff(b1, StaffRole.STAFF, shop=make_shop(b1, "S9")),
        ]
        rng = random.Random(7)
        for _ in range(10):
            staff = [shop_grant, *others]
            rng.shuffle(staff)
            assert resolve_active_staff(staff, b1, s1) == shop_grant

    def test_parent_business_grant_used_for_shop(self, b1, s1):
        """Rule 2 matches on the shop's business even if `business` differs."""
        other = make_business("Other")
        grant = make_staff(b1, StaffRole.PARTNER)

        result = resolve_active_staff([grant], other, s1)

        assert result == grant

    def test_business_only_uses_business_level_grant(self, b1, s1):
        shop_grant = make_staff(b1, StaffRole.CASHIER, shop=s1)
        business_grant = make_staff(b1, StaffRole.MANAGER)

        result = resolve_active_staff([shop_grant, business_grant], b1, None)

        assert result == business_grant

    def test_business_without_business_level_grant_falls_back_to_shop_grant(self, b1, s1):
        shop_grant = make_staff(b1, StaffRole.CASHIER, shop=s1)
        unrelated = make_staff(make_business("Other"), StaffRole.OWNER)

        result = resolve_active_staff([unrelated, shop_grant], b1, None)

        assert result == shop_grant

    def test_shop_with_no_matching_grant_falls_through_to_business_rules(self, b1, s1, s2):
        grant_for_s2 = make_staff(b1, StaffRole.CASHIER, shop=s2)

        result = resolve_active_staff([grant_for_s2], b1, s1)

        # Rule 4: any grant under the active business
        assert result == grant_for_s2

    def test_rule_four_picks_first_in_list_order(self, b1, s1, s2):
        first = make_staff(b1, StaffRole.VIEWER, shop=s2)
        second = make_staff(b1, StaffRole.MANAGER, shop=s1)

        assert resolve_active_staff([first, second], b1, None) == first
        assert resolve_active_staff([second, first], b1, None) == second

    def test_nothing_selected_returns_first(self, b1):
        first = make_staff(b1, StaffRole.STAFF)
        second = make_staff(b1, StaffRole.OWNER)

        assert resolve_active_staff([first, second], None, None) == first

    def test_nothing_selected_empty_list(self):
        assert resolve_active_staff([], None, None) is None

    def test_empty_list_with_selection(self, b1, s1):
        assert resolve_active_staff([], b1, s1) is None
        assert resolve_active_staff([], b1, None) is None

    def test_no_grant_for_business_falls_back_to_first(self, b1, s1):
        """Rule 5 applies when no earlier rule matched."""
        other = make_business("Other")
        grant = make_staff(other, StaffRole.OWNER)

        assert resolve_active_staff([grant], b1, s1) == grant

    def test_is_pure(self, b1, s1):
        staff = [make_staff(b1, StaffRole.MANAGER), make_staff(b1, StaffRole.CASHIER, shop=s1)]
        snapshot = list(staff)

        first = resolve_active_staff(staff, b1, s1)
        second = resolve_active_staff(staff, b1, s1)

        assert first.id == second.id
        assert staff == snapshot


# ============================================================================
# BUSINESS / SHOP DEFAULTS
# ============================================================================

class TestMergeAccessibleBusinesses:

    def test_deduplicates_by_id_keeping_first(self):
        shared = make_business("Shared")
        owned = [shared, make_business("Mine")]
        via_staff = [shared, make_business("Employer")]

        merged = merge_accessible_businesses(owned, via_staff)

        assert [b.name for b in merged] == ["Shared", "Mine", "Employer"]

    def test_empty_inputs(self):
        assert merge_accessible_businesses([], []) == []


class TestOrdering:

    def test_created_at_orders_oldest_first(self):
        newer = make_business("Alpha", age=5)
        older = make_business("Zulu", age=1)

        assert order_businesses([newer, older]) == [older, newer]

    def test_created_at_ties_break_on_name(self):
        b = make_business("beta", age=1)
        a = make_business("Alpha", age=1)

        assert order_businesses([b, a], TieBreak.CREATED_AT) == [a, b]

    def test_missing_created_at_sorts_first(self):
        dated = make_business("Dated", age=1)
        undated = Business(id=uuid.uuid4(), owner_id=uuid.uuid4(), name="Undated")

        assert order_businesses([dated, undated]) == [undated, dated]

    def test_naive_and_aware_timestamps_mix(self):
        aware = make_business("Aware", age=3)
        naive = Business(
            id=uuid.uuid4(), owner_id=uuid.uuid4(), name="Naive",
            created_at=datetime(2025, 1, 2),
        )

        assert order_businesses([aware, naive]) == [naive, aware]

    def test_name_ordering_is_case_insensitive(self):
        b1 = make_business("banana")
        s_upper = make_shop(b1, "Apple", age=9)
        s_lower = make_shop(b1, "cherry", age=0)

        assert order_shops([s_lower, s_upper], TieBreak.NAME) == [s_upper, s_lower]

    def test_fetch_keeps_backend_order(self):
        later = make_business("Later", age=9)
        earlier = make_business("Earlier", age=0)

        assert order_businesses([later, earlier], TieBreak.FETCH) == [later, earlier]

    def test_tie_break_accepts_string(self):
        b = make_business("b")
        a = make_business("a")

        assert order_businesses([b, a], "name") == [a, b]


class TestPickActive:

    def test_default_business_used_when_accessible(self):
        first, second = make_business("First"), make_business("Second")

        assert pick_active_business([first, second], second.id) == second

    def test_stale_default_business_falls_back_to_first(self):
        first, second = make_business("First"), make_business("Second")

        assert pick_active_business([first, second], uuid.uuid4()) == first

    def test_no_default_business(self):
        first = make_business("First")

        assert pick_active_business([first], None) == first
        assert pick_active_business([], None) is None

    def test_default_shop_used_when_in_list(self, b1, s1, s2):
        assert pick_active_shop([s1, s2], s2.id) == s2

    def test_default_shop_of_other_business_ignored(self, b1, s1, s2):
        foreign = make_shop(make_business("Other"), "Foreign")

        assert pick_active_shop([s1, s2], foreign.id) == s1

    def test_no_shops(self):
        assert pick_active_shop([], uuid.uuid4()) is None
