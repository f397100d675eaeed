"""
API dependencies

Callers are identified by JWT bearer tokens issued by the storefront's auth
service. There is no local users table: the token claims are the identity.
"""
from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from catalog_addon.core.security import decode_token

# Optional bearer - doesn't fail if no Authorization header
security = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class CurrentUser:
    id: Optional[int]
    email: Optional[str] = None
    is_admin: bool = False


def user_from_claims(payload: dict) -> CurrentUser:
    sub = payload.get("sub")
    try:
        user_id = int(sub) if sub is not None else None
    except (TypeError, ValueError):
        user_id = None
    return CurrentUser(
        id=user_id,
        email=payload.get("email"),
        is_admin=bool(payload.get("is_admin")) or payload.get("role") == "admin",
    )


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> CurrentUser:
    """Get current authenticated user from the bearer token."""
    if not credentials or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    payload = decode_token(credentials.credentials)

    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    return user_from_claims(payload)


async def get_current_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Require admin user"""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )
    return user
