"""
Fleetline API Dependencies

Dependency injection for DB sessions, auth, and role gates.
"""

from collections.abc import AsyncGenerator, Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import get_settings
from core.permissions import Actor, forbid
from db.session import AsyncSessionLocal

settings = get_settings()
security = HTTPBearer(auto_error=not settings.debug)

# Dev user id must match a seeded admin when running with debug=true
DEV_USER_ID = "00000000-0000-0000-0000-000000000001"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        finally:
            await session.close()


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> dict:
    """Decode JWT and return user payload. Bypassed in debug mode."""
    if settings.debug:
        return {
            "sub": DEV_USER_ID,
            "email": "dev@fleetline.dev",
            "role": "admin",
        }

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )

    from core.security import decode_access_token

    payload = decode_access_token(credentials.credentials)
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
        )
    return payload


async def get_current_actor(user: dict = Depends(get_current_user)) -> Actor:
    try:
        return Actor.from_claims(user)
    except (KeyError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token is missing subject or role",
        )


def require_roles(*roles: str) -> Callable:
    """Dependency factory: 403 unless the caller holds one of ``roles``."""

    async def _gate(actor: Actor = Depends(get_current_actor)) -> Actor:
        if actor.role not in roles:
            raise forbid(f"Role '{actor.role}' may not perform this action")
        return actor

    return _gate
