"""Minimal bearer-token auth dependency.

Stub implementation: the bearer token is the user id. Real token validation
belongs to the identity service in front of this API.
"""

from typing import Annotated

from fastapi import Header, HTTPException, status
from pydantic import BaseModel


class AuthenticatedUser(BaseModel):
    """Caller identity resolved from the request."""

    user_id: str


async def get_current_user(
    authorization: Annotated[str | None, Header()] = None,
) -> AuthenticatedUser:
    """Extract the caller from the authorization header.

    Args:
        authorization: Authorization header (e.g., "Bearer <user_id>")

    Returns:
        AuthenticatedUser

    Raises:
        HTTPException: 401 if the header is missing or malformed
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authorization header format",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token = authorization[7:].strip()  # Strip "Bearer "
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Empty bearer token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return AuthenticatedUser(user_id=token)
