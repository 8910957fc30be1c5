"""
Active-context endpoints.

GET    /context           current context (loaded on first call)
POST   /context/refresh   full reload from the backend
PUT    /context/business  switch active business (null clears it)
PUT    /context/shop      switch active shop (null clears it)
DELETE /context           sign-out: destroy the caller's context

A user without businesses gets a normal 200 with
`needs_onboarding: true`; it is a state, not an error.
"""

import logging
import uuid
from datetime import time
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Response, status
from pydantic import BaseModel

from .auth import get_current_user_id
from .core.responses import ErrorCodes
from .tenancy.context import BusinessContext, ContextSnapshot, ContextSwitchError
from .tenancy.entities import Business, Shop, StaffMember
from .tenancy.sessions import SessionContextRegistry, get_business_context, get_context_registry


logger = logging.getLogger(__name__)

router = APIRouter(prefix="/context", tags=["context"])


# === Response Models ===

class BusinessOut(BaseModel):
    id: uuid.UUID
    owner_id: uuid.UUID
    name: str
    name_ml: Optional[str] = None
    city: Optional[str] = None
    currency: str
    is_verified: bool

    model_config = {"from_attributes": True}


class ShopOut(BaseModel):
    id: uuid.UUID
    business_id: uuid.UUID
    name: str
    name_ml: Optional[str] = None
    address_line1: Optional[str] = None
    city: Optional[str] = None
    opening_time: Optional[time] = None
    closing_time: Optional[time] = None
    delivery_available: bool
    takeaway_available: bool
    subscription_plan: Optional[str] = None
    is_verified: bool
    is_hidden: bool

    model_config = {"from_attributes": True}


class StaffOut(BaseModel):
    id: uuid.UUID
    business_id: uuid.UUID
    shop_id: Optional[uuid.UUID] = None
    role: str
    display_name: str
    is_business_level: bool

    @classmethod
    def from_entity(cls, staff: StaffMember) -> "StaffOut":
        return cls(
            id=staff.id,
            business_id=staff.business_id,
            shop_id=staff.shop_id,
            role=staff.role.value,
            display_name=staff.display_name,
            is_business_level=staff.is_business_level,
        )


class ContextResponse(BaseModel):
    state: str
    needs_onboarding: bool
    businesses: list[BusinessOut]
    shops: list[ShopOut]
    active_business: Optional[BusinessOut] = None
    active_shop: Optional[ShopOut] = None
    active_staff: Optional[StaffOut] = None

    @classmethod
    def from_snapshot(cls, snapshot: ContextSnapshot) -> "ContextResponse":
        def business(b: Optional[Business]) -> Optional[BusinessOut]:
            return BusinessOut.model_validate(b) if b else None

        def shop(s: Optional[Shop]) -> Optional[ShopOut]:
            return ShopOut.model_validate(s) if s else None

        return cls(
            state=snapshot.state.value,
            needs_onboarding=snapshot.needs_onboarding,
            businesses=[BusinessOut.model_validate(b) for b in snapshot.businesses],
            shops=[ShopOut.model_validate(s) for s in snapshot.shops],
            active_business=business(snapshot.active_business),
            active_shop=shop(snapshot.active_shop),
            active_staff=StaffOut.from_entity(snapshot.active_staff) if snapshot.active_staff else None,
        )


class SwitchBusinessRequest(BaseModel):
    business_id: Optional[uuid.UUID] = None


class SwitchShopRequest(BaseModel):
    shop_id: Optional[uuid.UUID] = None


# === Endpoints ===

@router.get("", response_model=ContextResponse)
async def get_context(ctx: BusinessContext = Depends(get_business_context)):
    return ContextResponse.from_snapshot(ctx.snapshot())


@router.post("/refresh", response_model=ContextResponse)
async def refresh_context(ctx: BusinessContext = Depends(get_business_context)):
    snapshot = await ctx.refresh()
    return ContextResponse.from_snapshot(snapshot)


@router.put("/business", response_model=ContextResponse)
async def switch_business(
    request: SwitchBusinessRequest,
    ctx: BusinessContext = Depends(get_business_context),
):
    """
    Switch the active business.

    The business must be one of the caller's accessible businesses
    (404 otherwise). The first shop of the new business becomes active.
    """
    business = None
    if request.business_id is not None:
        business = ctx.find_business(request.business_id)
        if business is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "code": ErrorCodes.BUSINESS_NOT_FOUND,
                    "message": "Business not found.",
                    "details": {"business_id": str(request.business_id)},
                },
            )

    try:
        snapshot = await ctx.switch_business(business)
    except ContextSwitchError as e:
        logger.warning(f"Business switch rejected: {e.message}")
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail={"code": ErrorCodes.BUSINESS_NOT_FOUND, "message": "Business not found."},
        )
    return ContextResponse.from_snapshot(snapshot)


@router.put("/shop", response_model=ContextResponse)
async def switch_shop(
    request: SwitchShopRequest,
    ctx: BusinessContext = Depends(get_business_context),
):
    """
    Switch the active shop.

    Only shops of the active business (the cached shop list) are
    accepted, so the active shop always belongs to the active business.
    """
    shop = None
    if request.shop_id is not None:
        shop = ctx.find_shop(request.shop_id)
        if shop is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={
                    "code": ErrorCodes.SHOP_NOT_FOUND,
                    "message": "Shop not found in the active business.",
                    "details": {"shop_id": str(request.shop_id)},
                },
            )

    snapshot = await ctx.switch_shop(shop)
    return ContextResponse.from_snapshot(snapshot)


@router.delete("", status_code=204)
async def close_context(
    user_id: uuid.UUID = Depends(get_current_user_id),
    registry: SessionContextRegistry = Depends(get_context_registry),
):
    """Sign-out: flush pending preference writes and drop the context."""
    await registry.close(user_id)
    return Response(status_code=204)
