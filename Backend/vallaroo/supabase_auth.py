"""
Supabase Authentication Module - JWT Verification for FastAPI Backend

This module verifies Supabase access tokens with PyJWT. It handles:
- Legacy projects: HS256 tokens signed with the project JWT secret
- Asymmetric keys: RS256/ES256 tokens checked against the project JWKS
- Validating token expiration and audience
- Extracting the user id (`sub` claim)

Usage:
    from vallaroo.supabase_auth import verify_supabase_token

    payload = verify_supabase_token(token)
    user_id = payload["sub"]
"""

import logging
from functools import lru_cache

import httpx
import jwt
from fastapi import HTTPException, status

from .core.config import get_settings

logger = logging.getLogger(__name__)

ASYMMETRIC_ALGORITHMS = ["RS256", "ES256"]


@lru_cache(maxsize=1)
def fetch_supabase_jwks() -> dict:
    """
    Fetch the project's JWKS from the Supabase auth server.

    This is cached to avoid repeated requests.
    """
    settings = get_settings()
    url = settings.supabase_jwks_url

    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(url, headers={"User-Agent": "Vallaroo-Backend/1.0"})
            response.raise_for_status()
            jwks_data = response.json()
            logger.info("Successfully fetched JWKS from Supabase")
            return jwks_data

    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP {e.response.status_code} fetching JWKS: {e.response.text}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Unable to fetch Supabase JWKS: HTTP Error {e.response.status_code}",
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch JWKS from Supabase: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Unable to fetch Supabase JWKS",
        )


def _signing_key_for(token: str):
    unverified_header = jwt.get_unverified_header(token)
    kid = unverified_header.get("kid")

    if not kid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token header missing key ID (kid)",
            headers={"WWW-Authenticate": "Bearer"},
        )

    for key in fetch_supabase_jwks().get("keys", []):
        if key.get("kid") == kid:
            return jwt.PyJWK.from_dict(key).key

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=f"No matching key found for kid: {kid}",
        headers={"WWW-Authenticate": "Bearer"},
    )


def verify_supabase_token(token: str) -> dict:
    """
    Verify a Supabase access token and return the decoded payload.

    HS256 with SUPABASE_JWT_SECRET when it is configured, otherwise the
    signing key is looked up in the project JWKS.

    Raises:
        HTTPException 401: If token is invalid, expired, or signature doesn't match
    """
    settings = get_settings()

    try:
        if settings.supabase_jwt_secret:
            key = settings.supabase_jwt_secret
            algorithms = ["HS256"]
        else:
            key = _signing_key_for(token)
            algorithms = ASYMMETRIC_ALGORITHMS

        decoded = jwt.decode(
            token,
            key,
            algorithms=algorithms,
            audience=settings.supabase_jwt_audience,
            options={
                "verify_signature": True,
                "verify_exp": True,
                "verify_aud": True,
            },
        )

        logger.debug(f"Token verified for user: {decoded.get('sub')}")
        return decoded

    except jwt.ExpiredSignatureError as e:
        logger.warning("Token verification failed: Token has expired")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has expired",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e

    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
            headers={"WWW-Authenticate": "Bearer"},
        ) from e
