"""Periodic job scheduler with a cross-process tick lock and isolated phases."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from time import perf_counter

from app.core.locks import LeaseLock
from app.core.metrics import (
    JOB_PHASE_DURATION_SECONDS,
    JOB_PHASE_ITEMS_TOTAL,
    JOB_PHASE_RUNS_TOTAL,
    JOB_TICKS_TOTAL,
)
from app.shared.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class JobPhase:
    """Named unit of one tick; ``run`` returns how many records it advanced."""

    name: str
    run: Callable[[datetime], Awaitable[int]]


@dataclass(slots=True)
class TickResult:
    ran: bool
    processed: dict[str, int] = field(default_factory=dict)
    failed: list[str] = field(default_factory=list)


class JobScheduler:
    """Run phases in order once per tick while holding a lease lock.

    A tick that finds the lock taken is skipped, never queued. A failing phase is
    logged and counted; the phases after it still run.
    """

    def __init__(
        self,
        name: str,
        phases: Sequence[JobPhase],
        lease_lock: LeaseLock,
        *,
        lock_ttl_seconds: int,
        now_provider: Callable[[], datetime] | None = None,
    ) -> None:
        self.name = name
        self.phases = list(phases)
        self.lease_lock = lease_lock
        self.lock_ttl_seconds = lock_ttl_seconds
        self.now_provider = now_provider or utc_now

    @property
    def lock_name(self) -> str:
        return f"job:{self.name}"

    async def tick(self) -> TickResult:
        token = await self.lease_lock.acquire(self.lock_name, ttl_seconds=self.lock_ttl_seconds)
        if token is None:
            JOB_TICKS_TOTAL.labels(job=self.name, outcome="skipped").inc()
            logger.info("Job %s tick skipped, lock is held elsewhere", self.name)
            return TickResult(ran=False)

        result = TickResult(ran=True)
        try:
            now = self.now_provider()
            for phase in self.phases:
                await self._run_phase(phase, now, result)
        finally:
            released = await self.lease_lock.release(self.lock_name, token)
            if not released:
                logger.warning("Job %s lock expired before the tick finished", self.name)

        outcome = "partial" if result.failed else "completed"
        JOB_TICKS_TOTAL.labels(job=self.name, outcome=outcome).inc()
        logger.info("Job %s tick %s: %s", self.name, outcome, result.processed)
        return result

    async def _run_phase(self, phase: JobPhase, now: datetime, result: TickResult) -> None:
        started = perf_counter()
        try:
            processed = await phase.run(now)
        except Exception:
            logger.exception("Job %s phase %s failed", self.name, phase.name)
            JOB_PHASE_RUNS_TOTAL.labels(job=self.name, phase=phase.name, outcome="failed").inc()
            result.failed.append(phase.name)
            return
        finally:
            JOB_PHASE_DURATION_SECONDS.labels(job=self.name, phase=phase.name).observe(
                perf_counter() - started,
            )

        JOB_PHASE_RUNS_TOTAL.labels(job=self.name, phase=phase.name, outcome="succeeded").inc()
        JOB_PHASE_ITEMS_TOTAL.labels(job=self.name, phase=phase.name).inc(processed)
        result.processed[phase.name] = processed

    async def run_forever(
        self,
        interval_seconds: float,
        *,
        stop_event: asyncio.Event | None = None,
    ) -> None:
        """Tick every ``interval_seconds``; an overrunning tick delays the next one."""
        stop_event = stop_event or asyncio.Event()
        loop = asyncio.get_running_loop()
        while not stop_event.is_set():
            started = loop.time()
            try:
                await self.tick()
            except Exception:
                logger.exception("Job %s tick failed", self.name)
                JOB_TICKS_TOTAL.labels(job=self.name, outcome="error").inc()
            delay = max(interval_seconds - (loop.time() - started), 0.0)
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=delay)
            except asyncio.TimeoutError:
                continue
