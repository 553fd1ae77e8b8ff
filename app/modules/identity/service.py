"""Identity boundary: maps verified bearer tokens to principals."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials

from app.core.enums import RoleEnum
from app.core.security import bearer_scheme, credentials_error, decode_token
from app.modules.identity.schemas import Principal


def principal_from_claims(claims: dict[str, Any]) -> Principal:
    """Build principal from decoded token claims."""
    if claims.get("type", "access") != "access":
        raise credentials_error("Invalid access token")

    subject = claims.get("sub")
    if not subject:
        raise credentials_error("Token subject is missing")
    try:
        principal_id = UUID(str(subject))
    except ValueError as exc:
        raise credentials_error("Token subject is not a valid id") from exc

    try:
        role = RoleEnum(str(claims.get("role", "")).strip().lower())
    except ValueError as exc:
        raise credentials_error("Token role is not recognized") from exc

    return Principal(id=principal_id, role=role)


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    """Resolve currently authenticated principal from bearer token."""
    if credentials is None or not credentials.credentials:
        raise credentials_error("Not authenticated")
    return principal_from_claims(decode_token(credentials.credentials))


def require_roles(*roles: RoleEnum):
    """Dependency factory for role-based access."""

    async def _checker(current_user: Principal = Depends(get_current_user)) -> Principal:
        if current_user.role not in roles:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Operation not permitted for your role",
            )
        return current_user

    return _checker
