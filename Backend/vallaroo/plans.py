"""
Subscription plan catalogue and plan lookup.

Payment processing happens at the gateway; this module only reads the
user's current subscription to apply business/shop limits.
"""

import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import Subscription


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Plan:
    key: str
    gateway_plan_id: str
    name: str
    price: int
    interval: str
    currency: str
    max_businesses: int
    max_shops_per_business: int


PLANS: dict[str, Plan] = {
    "free": Plan(
        key="free",
        gateway_plan_id="free",
        name="Free Plan",
        price=0,
        interval="monthly",
        currency="INR",
        max_businesses=1,
        max_shops_per_business=1,
    ),
    "basic": Plan(
        key="basic",
        gateway_plan_id="plan_RqnippKbspcMHf",
        name="Standard Plan",
        price=299,
        interval="monthly",
        currency="INR",
        max_businesses=1,
        max_shops_per_business=3,
    ),
    "pro": Plan(
        key="pro",
        gateway_plan_id="plan_RqniqRO8KXxjVz",
        name="Pro Plan",
        price=799,
        interval="monthly",
        currency="INR",
        max_businesses=1,
        max_shops_per_business=10,
    ),
    "enterprise": Plan(
        key="enterprise",
        gateway_plan_id="plan_Rqniqyx2tuGJPz",
        name="Enterprise Plan",
        price=1499,
        interval="monthly",
        currency="INR",
        max_businesses=5,
        max_shops_per_business=50,
    ),
}

FREE_PLAN = PLANS["free"]

# Subscription statuses that grant the plan's limits
ENTITLED_STATUSES = ("active", "authenticated")


def find_plan(plan_id: Optional[str]) -> Optional[Plan]:
    """Look a plan up by catalogue key or by gateway plan id."""
    if not plan_id:
        return None
    if plan_id in PLANS:
        return PLANS[plan_id]
    return next((p for p in PLANS.values() if p.gateway_plan_id == plan_id), None)


async def get_current_user_plan(session: AsyncSession, user_id: uuid.UUID) -> Plan:
    """The plan of the user's entitled subscription, or the free plan."""
    result = await session.execute(
        select(Subscription)
        .where(
            Subscription.user_id == user_id,
            Subscription.status.in_(ENTITLED_STATUSES),
        )
        .order_by(Subscription.created_at.desc())
        .limit(1)
    )
    subscription = result.scalar_one_or_none()
    if subscription is None:
        return FREE_PLAN

    plan = find_plan(subscription.plan_id)
    if plan is None:
        logger.warning(
            f"Unknown plan_id '{subscription.plan_id}' on subscription {subscription.id}; "
            f"using free plan"
        )
        return FREE_PLAN
    return plan


class PlanLimitError(Exception):
    """Raised when creating a business/shop would exceed the plan limit."""
    def __init__(self, message: str, limit: int):
        self.message = message
        self.limit = limit
        super().__init__(message)


def ensure_can_create_business(plan: Plan, owned_count: int) -> None:
    if owned_count >= plan.max_businesses:
        raise PlanLimitError(
            f"You have reached the limit of {plan.max_businesses} business(es) "
            f"for your current {plan.name}. Please upgrade.",
            plan.max_businesses,
        )


def ensure_can_create_shop(plan: Plan, shop_count: int) -> None:
    if shop_count >= plan.max_shops_per_business:
        raise PlanLimitError(
            f"You have reached the limit of {plan.max_shops_per_business} shop(s) "
            f"per business for your current {plan.name}. Please upgrade.",
            plan.max_shops_per_business,
        )
