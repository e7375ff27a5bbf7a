# ---------------------------
# odoo_sync/workers/jobs_worker.py
# ---------------------------
import asyncio
import logging
import time

from odoo_sync.services import Services

logger = logging.getLogger("uvicorn.error")

CLEANUP_EVERY = 24 * 3600.0


async def run_once(services: Services) -> None:
    """One scheduler tick: reap stuck jobs, then drain a batch."""
    cfg = services.settings
    await services.queue_repo.recover_stale(cfg.SYNC_STALE_TIMEOUT)
    report = await services.sync_engine.process_queue()
    if report.outcomes:
        logger.info("[WORKER] tick: %d completed, %d failed, %d deferred",
                    report.processed, report.failed, report.deferred)


async def worker_loop(stop_event: asyncio.Event, services: Services) -> None:
    interval = max(1.0, float(services.settings.SYNC_WORKER_INTERVAL))
    last_cleanup: float | None = None
    logger.info("[WORKER] started (interval=%.0fs)", interval)

    while not stop_event.is_set():
        try:
            await run_once(services)
            if last_cleanup is None or time.monotonic() - last_cleanup >= CLEANUP_EVERY:
                await services.queue.cleanup(services.settings.SYNC_CLEANUP_DAYS)
                last_cleanup = time.monotonic()
        except Exception:
            # Store outage etc.: log and try again next tick.
            logger.exception("[WORKER] tick failed")

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval)
        except asyncio.TimeoutError:
            continue

    logger.info("[WORKER] stopped")
