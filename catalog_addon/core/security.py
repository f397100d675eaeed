"""
JWT access tokens

The storefront's auth service issues tokens; this service only needs to
verify them. Minting is kept for internal tooling (seed scripts, tests) and
uses the same secret and claim layout.
"""
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt

from catalog_addon.core.config import settings

ACCESS_TOKEN_TYPE = "access"


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Sign `data` as an access token. `sub` is stringified for RFC 7519."""
    issued_at = datetime.now(timezone.utc)
    lifetime = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    claims = {**data, "type": ACCESS_TOKEN_TYPE, "jti": uuid.uuid4().hex, "iat": issued_at, "exp": issued_at + lifetime}
    if claims.get("sub") is not None:
        claims["sub"] = str(claims["sub"])

    return jwt.encode(claims, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> Optional[dict]:
    """
    Verify signature and expiry and return the claims of an access token.

    Returns None for anything else (bad signature, expired, refresh token).
    """
    try:
        claims = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except JWTError:
        return None

    if claims.get("type") != ACCESS_TOKEN_TYPE:
        return None
    return claims
