"""Executable worker for notifications outbox processing."""

from __future__ import annotations

import asyncio
import logging
import os

from app.core.cache import CacheBackend, build_cache_backend
from app.core.config import get_settings
from app.core.database import SessionLocal
from app.modules.notifications.gateway import DedupingNotificationGateway, InAppNotificationGateway
from app.modules.notifications.outbox_worker import NotificationsOutboxWorker
from app.modules.notifications.repository import NotificationsRepository
from app.modules.outbox.repository import OutboxRepository

logger = logging.getLogger(__name__)


async def run_cycle(cache: CacheBackend) -> dict[str, int]:
    """Run a single outbox processing cycle in one DB transaction."""
    settings = get_settings()
    async with SessionLocal() as session:
        gateway = DedupingNotificationGateway(
            InAppNotificationGateway(NotificationsRepository(session)),
            cache,
            ttl_seconds=settings.notification_dedupe_ttl_seconds,
        )
        worker = NotificationsOutboxWorker(
            outbox_repository=OutboxRepository(session),
            gateway=gateway,
            batch_size=int(os.getenv("OUTBOX_WORKER_BATCH_SIZE", "100")),
            max_retries=int(os.getenv("OUTBOX_WORKER_MAX_RETRIES", "5")),
            base_backoff_seconds=int(os.getenv("OUTBOX_WORKER_BASE_BACKOFF_SECONDS", "30")),
            max_backoff_seconds=int(os.getenv("OUTBOX_WORKER_MAX_BACKOFF_SECONDS", "300")),
        )
        stats = await worker.run_once()
        await session.commit()
        return stats


async def main() -> None:
    """Run once or keep polling according to worker mode."""
    logging.basicConfig(level=os.getenv("OUTBOX_WORKER_LOG_LEVEL", "INFO"))
    mode = os.getenv("OUTBOX_WORKER_MODE", "once").strip().lower()
    poll_seconds = int(os.getenv("OUTBOX_WORKER_POLL_SECONDS", "10"))
    cache = build_cache_backend(get_settings())

    if mode == "once":
        stats = await run_cycle(cache)
        logger.info("Outbox notifications worker stats: %s", stats)
        return

    while True:
        try:
            stats = await run_cycle(cache)
            logger.info("Outbox notifications worker stats: %s", stats)
        except Exception:
            logger.exception("Outbox notifications worker cycle failed")
        await asyncio.sleep(poll_seconds)


if __name__ == "__main__":
    asyncio.run(main())
