"""
FulfilOps API Dependencies

Dependency injection for DB sessions, auth, and the caller's profile.
"""

import uuid
from collections.abc import AsyncGenerator

import httpx
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from db.models import Profile
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=False)

# Dev profile must match seed_test_data.py
DEV_PROFILE_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


def get_http_transport() -> httpx.AsyncBaseTransport | None:
    """Outbound transport for gateway/courier clients. Tests override this."""
    return None


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": DEV_PROFILE_ID,
            "email": "dev@fulfilops.local",
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_current_profile(
    db: AsyncSession = Depends(get_db),
    user: dict = Depends(get_current_user),
) -> Profile:
    """Load the caller's profile; the token subject is the profile id."""
    try:
        profile_id = uuid.UUID(str(user["sub"]))
    except (KeyError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")

    profile = await db.get(Profile, profile_id)
    if profile is None or not profile.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return profile
