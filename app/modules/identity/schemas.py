"""Identity schemas."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from pydantic import BaseModel

from app.core.enums import RoleEnum


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated caller resolved from a verified access token."""

    id: UUID
    role: RoleEnum

    @property
    def is_admin(self) -> bool:
        return self.role == RoleEnum.ADMIN


class PrincipalRead(BaseModel):
    """Current principal response schema."""

    id: UUID
    role: RoleEnum
