"""Reusable pagination helpers."""

from __future__ import annotations

import base64
import binascii
import json
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from fastapi import Query
from pydantic import BaseModel

from app.shared.exceptions import ValidationException

T = TypeVar("T")


class PaginationParams(BaseModel):
    """Pagination query params."""

    limit: int
    offset: int


def get_pagination_params(
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
) -> PaginationParams:
    """FastAPI dependency for pagination params."""
    return PaginationParams(limit=limit, offset=offset)


class Page(BaseModel, Generic[T]):
    """Generic paginated response."""

    items: list[T]
    total: int
    limit: int
    offset: int


def build_page(items: list[T], total: int, params: PaginationParams) -> Page[T]:
    """Build page object from query result and params."""
    return Page(items=items, total=total, limit=params.limit, offset=params.offset)


class CursorParams(BaseModel):
    """Keyset pagination query params."""

    cursor: str | None
    limit: int


def get_cursor_params(
    cursor: str | None = Query(default=None, max_length=256),
    limit: int = Query(default=20, ge=1, le=50),
) -> CursorParams:
    """FastAPI dependency for cursor pagination params."""
    return CursorParams(cursor=cursor, limit=limit)


class CursorPage(BaseModel, Generic[T]):
    """Page of items ordered newest first with an opaque continuation cursor."""

    items: list[T]
    next_cursor: str | None
    limit: int


def encode_cursor(created_at: datetime, item_id: UUID) -> str:
    """Encode a (created_at, id) keyset position as an opaque token."""
    raw = json.dumps({"created_at": created_at.isoformat(), "id": str(item_id)})
    return base64.urlsafe_b64encode(raw.encode("utf-8")).decode("ascii")


def decode_cursor(cursor: str) -> tuple[datetime, UUID]:
    """Decode a cursor produced by encode_cursor."""
    try:
        raw = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
        return datetime.fromisoformat(raw["created_at"]), UUID(raw["id"])
    except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError) as exc:
        raise ValidationException("Invalid pagination cursor") from exc
