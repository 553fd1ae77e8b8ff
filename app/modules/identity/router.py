"""Identity API router."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.modules.identity.schemas import Principal, PrincipalRead
from app.modules.identity.service import get_current_user

router = APIRouter(prefix="/identity", tags=["identity"])


@router.get("/me", response_model=PrincipalRead)
async def get_me(current_user: Principal = Depends(get_current_user)) -> PrincipalRead:
    """Return the principal resolved from the bearer token."""
    return PrincipalRead(id=current_user.id, role=current_user.role)
