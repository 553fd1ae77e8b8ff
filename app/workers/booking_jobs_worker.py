"""Executable worker for the booking lifecycle job scheduler."""

from __future__ import annotations

import asyncio
import logging
import os

from app.core.config import get_settings
from app.core.database import close_engine
from app.core.locks import get_lease_lock
from app.core.scheduler import JobScheduler
from app.modules.booking.jobs import BOOKING_JOB_NAME, build_booking_phases

logger = logging.getLogger(__name__)


def build_scheduler() -> JobScheduler:
    settings = get_settings()
    return JobScheduler(
        BOOKING_JOB_NAME,
        build_booking_phases(),
        get_lease_lock(),
        lock_ttl_seconds=settings.job_lock_ttl_seconds,
    )


async def main() -> None:
    """Run once or keep ticking according to worker mode."""
    logging.basicConfig(level=os.getenv("BOOKING_JOBS_WORKER_LOG_LEVEL", "INFO"))
    settings = get_settings()
    mode = os.getenv("BOOKING_JOBS_WORKER_MODE", "loop").strip().lower()
    scheduler = build_scheduler()

    try:
        if mode == "once":
            result = await scheduler.tick()
            logger.info("Booking jobs tick: ran=%s processed=%s failed=%s", result.ran, result.processed, result.failed)
            return
        await scheduler.run_forever(settings.booking_job_interval_seconds)
    finally:
        await close_engine()


if __name__ == "__main__":
    asyncio.run(main())
