"""Request-scoped dependencies."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..core.security import verify_jwt_token
from ..registry import CharacterRegistry

security = HTTPBearer(auto_error=False)


def get_registry(request: Request) -> CharacterRegistry:
    return request.app.state.registry


async def get_bearer_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[str]:
    """Raw bearer token, or None for anonymous requests."""
    return credentials.credentials if credentials else None


async def get_author(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Dependency resolving the authenticated author identity."""
    payload = verify_jwt_token(credentials.credentials) if credentials else None
    if payload is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return payload.sub
