"""
Authentication & Authorization Module

Identity extraction and role-based access control (RBAC) over the
active business context.

USAGE:
    from vallaroo.auth import get_current_user_id

    @router.get("/context")
    async def handler(user_id: uuid.UUID = Depends(get_current_user_id)):
        ...

    # Role gate on the active context:
    staff = require_staff_role(ctx.snapshot(), SHOP_MANAGER_ROLES)
"""

import logging
import uuid
from typing import Iterable, Optional, TYPE_CHECKING

from fastapi import Depends, Header, HTTPException, status

from .core.config import Settings, get_settings
from .core.responses import ErrorCodes
from .tenancy.entities import StaffMember, StaffRole

if TYPE_CHECKING:
    from .tenancy.context import ContextSnapshot


logger = logging.getLogger(__name__)


__all__ = [
    "get_current_user_id",
    "require_staff_role",
    "staff_role_for_business",
    "BUSINESS_ADMIN_ROLES",
    "SHOP_MANAGER_ROLES",
]


BUSINESS_ADMIN_ROLES = frozenset({StaffRole.OWNER, StaffRole.PARTNER})
SHOP_MANAGER_ROLES = frozenset({StaffRole.OWNER, StaffRole.PARTNER, StaffRole.MANAGER})


# ============================================================================
# IDENTITY EXTRACTION
# ============================================================================

def _parse_user_id(raw: Optional[str]) -> uuid.UUID:
    try:
        return uuid.UUID(str(raw))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token: malformed user identifier",
            headers={"WWW-Authenticate": "Bearer"},
        )


async def get_current_user_id(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> uuid.UUID:
    """
    Extract the current user id from a Supabase access token.

    SECURITY BEHAVIOR:

    When DISABLE_AUTH_CHECKS=False (PRODUCTION):
    - REQUIRES a valid Bearer token in the Authorization header
    - X-User-Id header is IGNORED

    When DISABLE_AUTH_CHECKS=True (DEVELOPMENT):
    - Bearer token is still tried first
    - Falls back to the X-User-Id header

    Raises:
        HTTPException 401: If no valid identity could be established
    """
    if authorization:
        if not authorization.startswith("Bearer "):
            logger.warning("Auth failed: Invalid Authorization header format")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid Authorization header format. Expected: Bearer <token>",
                headers={"WWW-Authenticate": "Bearer"},
            )

        from .supabase_auth import verify_supabase_token
        token = authorization.split(" ", 1)[1]
        try:
            payload = verify_supabase_token(token)
        except HTTPException:
            if not settings.disable_auth_checks or not x_user_id:
                raise
            logger.debug("Dev mode: JWT verification failed, trying X-User-Id")
        else:
            user_id = payload.get("sub")
            if not user_id:
                logger.error("JWT verified but missing 'sub' claim")
                raise HTTPException(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    detail="Invalid token: missing user identifier",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            return _parse_user_id(user_id)

    if settings.disable_auth_checks and x_user_id and x_user_id.strip():
        logger.warning(f"Dev mode: Using X-User-Id header: {x_user_id.strip()}")
        return _parse_user_id(x_user_id.strip())

    logger.warning("Authentication failed: No valid JWT token found")
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required. Please sign in.",
        headers={"WWW-Authenticate": "Bearer"},
    )


# ============================================================================
# ROLE-BASED ACCESS CONTROL (RBAC)
# ============================================================================

def require_staff_role(
    snapshot: "ContextSnapshot",
    allowed_roles: Iterable[StaffRole],
) -> StaffMember:
    """
    Require the active staff role to be one of `allowed_roles`.

    Returns:
        The active StaffMember

    Raises:
        HTTPException 403: No active role, or role not allowed
    """
    allowed = {StaffRole(r) for r in allowed_roles}
    staff = snapshot.active_staff

    if staff is None:
        logger.warning("Authorization failed: no active staff role in context")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": ErrorCodes.AUTHORIZATION_DENIED,
                "message": "Access denied. You have no role in the selected business.",
            },
        )

    if staff.role not in allowed:
        allowed_values = sorted(r.value for r in allowed)
        logger.warning(
            f"Authorization failed: role {staff.role.value}, needs one of {allowed_values}"
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": ErrorCodes.INSUFFICIENT_ROLE,
                "message": (
                    f"Access denied. Required role: {', '.join(allowed_values)}. "
                    f"Your role: {staff.role.value}."
                ),
            },
        )

    return staff


def staff_role_for_business(
    staff_list: Iterable[StaffMember],
    business_id: uuid.UUID,
) -> Optional[StaffMember]:
    """Business-level grant for `business_id`, if the user holds one."""
    for member in staff_list:
        if member.business_id == business_id and member.is_business_level:
            return member
    return None
