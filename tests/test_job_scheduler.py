from __future__ import annotations

import asyncio
from datetime import UTC, datetime

import pytest

from app.core.locks import InMemoryLeaseLock
from app.core.scheduler import JobPhase, JobScheduler

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)


class RecordingLock(InMemoryLeaseLock):
    def __init__(self) -> None:
        super().__init__(now_provider=lambda: 0.0)
        self.released: list[str] = []

    async def release(self, name: str, token: str) -> bool:
        self.released.append(name)
        return await super().release(name, token)


def make_phase(name: str, calls: list[str], result: int = 1, error: Exception | None = None) -> JobPhase:
    async def run(now: datetime) -> int:
        assert now == NOW
        calls.append(name)
        if error is not None:
            raise error
        return result

    return JobPhase(name=name, run=run)


@pytest.mark.asyncio
async def test_failing_phase_does_not_stop_later_phases() -> None:
    calls: list[str] = []
    lock = RecordingLock()
    scheduler = JobScheduler(
        "booking-lifecycle",
        [
            make_phase("expire", calls, result=2),
            make_phase("decline", calls, error=RuntimeError("db down")),
            make_phase("remind", calls, result=3),
        ],
        lock,
        lock_ttl_seconds=60,
        now_provider=lambda: NOW,
    )

    result = await scheduler.tick()

    assert result.ran is True
    assert calls == ["expire", "decline", "remind"]
    assert result.processed == {"expire": 2, "remind": 3}
    assert result.failed == ["decline"]
    assert lock.released == ["job:booking-lifecycle"]


@pytest.mark.asyncio
async def test_tick_is_skipped_while_lock_is_held() -> None:
    calls: list[str] = []
    lock = RecordingLock()
    scheduler = JobScheduler(
        "booking-lifecycle",
        [make_phase("expire", calls)],
        lock,
        lock_ttl_seconds=60,
        now_provider=lambda: NOW,
    )
    token = await lock.acquire(scheduler.lock_name, ttl_seconds=60)

    result = await scheduler.tick()

    assert result.ran is False
    assert calls == []
    assert lock.released == []

    await lock.release(scheduler.lock_name, token)
    assert (await scheduler.tick()).ran is True
    assert calls == ["expire"]


@pytest.mark.asyncio
async def test_lock_is_released_when_tick_is_cancelled() -> None:
    lock = RecordingLock()

    async def run(now: datetime) -> int:
        raise asyncio.CancelledError

    scheduler = JobScheduler(
        "booking-lifecycle",
        [JobPhase(name="hang", run=run)],
        lock,
        lock_ttl_seconds=60,
        now_provider=lambda: NOW,
    )

    with pytest.raises(asyncio.CancelledError):
        await scheduler.tick()

    assert lock.released == ["job:booking-lifecycle"]
    assert await lock.acquire(scheduler.lock_name, ttl_seconds=60) is not None


@pytest.mark.asyncio
async def test_run_forever_stops_on_event() -> None:
    calls: list[str] = []
    stop_event = asyncio.Event()

    async def run(now: datetime) -> int:
        calls.append("tick")
        stop_event.set()
        return 0

    scheduler = JobScheduler(
        "booking-lifecycle",
        [JobPhase(name="once", run=run)],
        InMemoryLeaseLock(),
        lock_ttl_seconds=60,
        now_provider=lambda: NOW,
    )

    await asyncio.wait_for(scheduler.run_forever(30, stop_event=stop_event), timeout=1)

    assert calls == ["tick"]
