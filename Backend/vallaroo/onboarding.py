"""
Business and shop onboarding endpoints.

A user with no accessible business gets `needs_onboarding` from
GET /context; these endpoints create the first business (with its owner
role) and its shops, then reload the caller's context.
"""
import logging
import uuid
from datetime import time

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import SHOP_MANAGER_ROLES, get_current_user_id, staff_role_for_business
from .core.db import get_session
from .core.responses import ErrorCodes
from .models import Business, Shop, StaffMember
from .plans import (
    PlanLimitError,
    ensure_can_create_business,
    ensure_can_create_shop,
    get_current_user_plan,
)
from .tenancy.context import ContextState
from .tenancy.entities import StaffRole
from .tenancy.queries import count_businesses_owned, count_shops_for_business
from .tenancy.sessions import SessionContextRegistry, get_context_registry

logger = logging.getLogger(__name__)

router = APIRouter()


# === Request/Response Models ===

def _required_text(v: str, field_name: str) -> str:
    if not v.strip():
        raise ValueError(f"{field_name} cannot be empty or whitespace")
    return v.strip()


class CreateBusinessRequest(BaseModel):
    """Request to create a new business."""
    name: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    name_ml: str | None = Field(None, max_length=100)
    description: str | None = Field(None, max_length=500)
    owner_display_name: str = Field(default="Owner", min_length=1, max_length=100)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _required_text(v, "Business name")

    @field_validator("city")
    @classmethod
    def validate_city(cls, v: str) -> str:
        return _required_text(v, "City")


class CreateShopRequest(BaseModel):
    """Request to create a shop under a business."""
    name: str = Field(..., min_length=1, max_length=100)
    city: str = Field(..., min_length=1, max_length=50)
    name_ml: str | None = Field(None, max_length=100)
    address: str | None = Field(None, max_length=200)
    opening_time: time | None = None
    closing_time: time | None = None
    delivery_available: bool = False
    takeaway_available: bool = False

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _required_text(v, "Shop name")

    @field_validator("city")
    @classmethod
    def validate_city(cls, v: str) -> str:
        return _required_text(v, "City")


class CreatedBusinessResponse(BaseModel):
    id: uuid.UUID
    name: str
    city: str | None
    currency: str
    is_verified: bool

    model_config = {"from_attributes": True}


class CreatedShopResponse(BaseModel):
    id: uuid.UUID
    business_id: uuid.UUID
    name: str
    city: str | None
    is_verified: bool
    is_hidden: bool

    model_config = {"from_attributes": True}


def _plan_limit_error(e: PlanLimitError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail={
            "code": ErrorCodes.PLAN_LIMIT_REACHED,
            "message": e.message,
            "details": {"limit": e.limit},
        },
    )


# === Endpoints ===

@router.post("/businesses", response_model=CreatedBusinessResponse, status_code=201)
async def create_business(
    request: CreateBusinessRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    registry: SessionContextRegistry = Depends(get_context_registry),
):
    """
    Create a business owned by the caller.

    Process:
    1. Check the caller's plan allows another business (409 if not)
    2. Create the business (INR, unverified)
    3. Create the business-level OWNER staff role for the caller
    4. Reload the caller's context and make the new business active
    """
    plan = await get_current_user_plan(db, user_id)
    owned = await count_businesses_owned(db, user_id)
    try:
        ensure_can_create_business(plan, owned)
    except PlanLimitError as e:
        logger.info(f"Business limit reached for user {user_id} ({plan.key})")
        raise _plan_limit_error(e)

    business = Business(
        owner_id=user_id,
        name=request.name,
        name_ml=request.name_ml or None,
        description=request.description or None,
        city=request.city,
        currency="INR",
        is_verified=False,
    )
    db.add(business)
    await db.flush()

    db.add(
        StaffMember(
            business_id=business.id,
            shop_id=None,
            user_id=user_id,
            role=StaffRole.OWNER.value,
            display_name=request.owner_display_name,
        )
    )
    await db.commit()
    await db.refresh(business)

    logger.info(f"Business {business.id} created by user {user_id}")

    ctx = await registry.open(user_id)
    await ctx.refresh()
    created = ctx.find_business(business.id)
    if created is not None:
        await ctx.switch_business(created)

    return CreatedBusinessResponse.model_validate(business)


@router.post(
    "/businesses/{business_id}/shops",
    response_model=CreatedShopResponse,
    status_code=201,
)
async def create_shop(
    business_id: uuid.UUID,
    request: CreateShopRequest,
    user_id: uuid.UUID = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_session),
    registry: SessionContextRegistry = Depends(get_context_registry),
):
    """
    Create a shop under one of the caller's businesses.

    The caller must own the business or hold a business-level owner,
    partner or manager role in it. The shop limit follows the business
    owner's plan.
    """
    ctx = await registry.open(user_id)
    snapshot = ctx.snapshot()
    if snapshot.state == ContextState.UNINITIALIZED:
        snapshot = await ctx.load_initial_context()

    business = ctx.find_business(business_id)
    if business is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={
                "code": ErrorCodes.BUSINESS_NOT_FOUND,
                "message": "Business not found.",
            },
        )

    grant = staff_role_for_business(snapshot.staff, business_id)
    is_owner = business.owner_id == user_id
    if not is_owner and (grant is None or grant.role not in SHOP_MANAGER_ROLES):
        logger.warning(f"User {user_id} may not add shops to business {business_id}")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": ErrorCodes.INSUFFICIENT_ROLE,
                "message": "Access denied. Only owners, partners and managers can add shops.",
            },
        )

    plan = await get_current_user_plan(db, business.owner_id)
    existing = await count_shops_for_business(db, business_id)
    try:
        ensure_can_create_shop(plan, existing)
    except PlanLimitError as e:
        raise _plan_limit_error(e)

    shop = Shop(
        business_id=business_id,
        name=request.name,
        name_ml=request.name_ml or None,
        address_line1=request.address or None,
        city=request.city,
        opening_time=request.opening_time,
        closing_time=request.closing_time,
        delivery_available=request.delivery_available,
        takeaway_available=request.takeaway_available,
        is_verified=False,
        is_hidden=False,
    )
    db.add(shop)
    await db.commit()
    await db.refresh(shop)

    logger.info(f"Shop {shop.id} created under business {business_id} by user {user_id}")

    await ctx.refresh()

    return CreatedShopResponse.model_validate(shop)
