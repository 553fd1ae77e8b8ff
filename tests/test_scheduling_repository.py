from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import UUID, uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import IntegrityError

from app.modules.scheduling.repository import SchedulingRepository
from app.shared.exceptions import ConflictException


@dataclass
class FakeSlot:
    id: UUID


class FakeNestedTransaction:
    def __init__(self) -> None:
        self.committed = False
        self.rolled_back = False

    async def commit(self) -> None:
        self.committed = True

    async def rollback(self) -> None:
        self.rolled_back = True


class FakeResult:
    def all(self) -> list:
        return []


class FakeSession:
    def __init__(self, *, flush_error: Exception | None = None) -> None:
        self.flush_error = flush_error
        self.nested: list[FakeNestedTransaction] = []
        self.statements: list = []
        self.deleted: list = []

    async def begin_nested(self) -> FakeNestedTransaction:
        transaction = FakeNestedTransaction()
        self.nested.append(transaction)
        return transaction

    async def execute(self, stmt) -> FakeResult:
        self.statements.append(stmt)
        return FakeResult()

    async def delete(self, instance) -> None:
        self.deleted.append(instance)

    async def flush(self) -> None:
        if self.flush_error is not None:
            raise self.flush_error


@pytest.mark.asyncio
async def test_delete_slot_maps_foreign_key_violation_to_conflict() -> None:
    error = IntegrityError(
        "DELETE FROM availability_occurrences",
        {},
        Exception('update or delete on table "availability_occurrences" violates foreign key constraint'),
    )
    session = FakeSession(flush_error=error)
    repository = SchedulingRepository(session)

    with pytest.raises(ConflictException) as exc:
        await repository.delete_slot(FakeSlot(id=uuid4()))

    assert exc.value.status_code == 409
    (nested,) = session.nested
    assert nested.rolled_back is True
    assert nested.committed is False


@pytest.mark.asyncio
async def test_delete_slot_commits_savepoint_when_nothing_references_it() -> None:
    session = FakeSession()
    slot = FakeSlot(id=uuid4())

    await SchedulingRepository(session).delete_slot(slot)

    (nested,) = session.nested
    assert nested.committed is True
    assert session.deleted == [slot]


@pytest.mark.asyncio
async def test_public_calendar_hides_open_occurrences_of_unpublished_slots() -> None:
    session = FakeSession()

    rows = await SchedulingRepository(session).list_public_calendar(
        uuid4(),
        datetime(2026, 3, 1, tzinfo=UTC),
        datetime(2026, 3, 8, tzinfo=UTC),
    )

    assert rows == []
    (stmt,) = session.statements
    sql = " ".join(str(stmt.compile(dialect=postgresql.dialect())).split())
    assert "availability_slots.status = " in sql
    assert "OR availability_occurrences.status != " in sql
