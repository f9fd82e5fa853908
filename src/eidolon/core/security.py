"""Caller identity from JWT bearer tokens."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from pydantic import BaseModel

from .. import config


class TokenPayload(BaseModel):
    """JWT token payload."""
    sub: str  # Author / user identity
    name: Optional[str] = None
    exp: int  # Expiration timestamp
    iat: int  # Issued at timestamp


def create_jwt_token(
    user_id: str,
    name: Optional[str] = None,
    expires_minutes: int = 60,
    secret: Optional[str] = None,
) -> str:
    """
    Create a signed access token.

    Args:
        user_id: Caller identity (becomes `sub`)
        name: Optional display name
        expires_minutes: Token lifetime
        secret: Signing key, defaults to JWT_SECRET

    Returns:
        Encoded JWT token
    """
    now = datetime.now(timezone.utc)
    exp = now + timedelta(minutes=expires_minutes)

    payload = {
        "sub": str(user_id),
        "exp": int(exp.timestamp()),
        "iat": int(now.timestamp()),
    }
    if name:
        payload["name"] = name

    return jwt.encode(payload, secret or config.JWT_SECRET, algorithm=config.JWT_ALGORITHM)


def verify_jwt_token(token: Optional[str], secret: Optional[str] = None) -> Optional[TokenPayload]:
    """Return the payload of a valid token, or None for a missing/invalid/expired one."""
    if not token:
        return None
    if token.lower().startswith("bearer "):
        token = token[7:]
    try:
        payload = jwt.decode(
            token,
            secret or config.JWT_SECRET,
            algorithms=[config.JWT_ALGORITHM],
        )
        return TokenPayload(**payload)
    except (jwt.ExpiredSignatureError, jwt.InvalidTokenError, ValueError):
        return None
