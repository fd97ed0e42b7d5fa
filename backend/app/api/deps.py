"""Shared FastAPI dependencies."""

import uuid
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.database import get_db
from app.core.security import decode_token
from app.services.lifecycle_coordinator import LifecycleCoordinator

__all__ = ["get_db", "get_current_owner_id", "get_current_superuser", "get_coordinator"]

bearer_scheme = HTTPBearer(auto_error=False)


async def get_token_payload(
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> dict[str, Any]:
    """
    Decode the bearer access token.

    Raises:
        HTTPException: 401 if the token is missing, invalid or not an access token
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    if credentials is None:
        raise credentials_exception

    payload = decode_token(credentials.credentials)
    if payload is None or payload.get("type") != "access":
        raise credentials_exception
    return payload


async def get_current_owner_id(
    request: Request,
    payload: Annotated[dict[str, Any], Depends(get_token_payload)],
) -> uuid.UUID:
    """
    Resolve the owner from a bearer access token.

    The token's ``sub`` claim is the owner UUID.

    Raises:
        HTTPException: 401 if the token is missing, invalid or not an access token
    """
    try:
        owner_id = uuid.UUID(str(payload.get("sub")))
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None

    # Used by the rate limiter key function
    request.state.owner_id = owner_id
    return owner_id


async def get_current_superuser(
    owner_id: Annotated[uuid.UUID, Depends(get_current_owner_id)],
    payload: Annotated[dict[str, Any], Depends(get_token_payload)],
) -> uuid.UUID:
    """
    Owner id of an administrator; tokens carry ``is_superuser: true``.

    Raises:
        HTTPException: 403 if the caller is not a superuser
    """
    if payload.get("is_superuser") is not True:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not enough permissions",
        )
    return owner_id


def get_coordinator(request: Request) -> LifecycleCoordinator:
    """The process-wide coordinator created at startup."""
    return request.app.state.lifecycle_coordinator
