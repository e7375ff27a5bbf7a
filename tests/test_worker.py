import asyncio
import logging
from datetime import timedelta

from odoo_sync.config import validate_settings
from odoo_sync.db import utcnow
from odoo_sync.models.jobs import COMPLETED, PENDING, PROCESSING
from odoo_sync.sync.result import SyncContext
from odoo_sync.webhooks.rate_limiter import RateLimiter
from odoo_sync.workers.jobs_worker import run_once, worker_loop

from conftest import make_settings


def test_run_once_reaps_stale_then_processes(harness, odoo):
    async def scenario(s):
        module = s.registry.get("crm")
        await module.save_local("contact", 1, {"name": "Ada"}, SyncContext(importing=True))
        job_id = await s.queue.push("crm", "contact", "create", 1)
        await s.queue_repo.update_status(job_id, PROCESSING)
        # an hour later the job is still marked processing
        s.queue_repo._clock = lambda: utcnow() + timedelta(hours=1)
        await run_once(s)
        return await s.queue_repo.get(job_id)

    job = harness.run(scenario, SYNC_STALE_TIMEOUT=600)
    assert job.status == COMPLETED
    assert odoo.count("create") == 1


def test_worker_loop_stops_on_event(harness):
    async def scenario(s):
        stop = asyncio.Event()
        job_id = await s.queue.push("crm", "contact", "create", 99)
        task = asyncio.create_task(worker_loop(stop, s))
        for _ in range(100):
            job = await s.queue_repo.get(job_id)
            if job.attempts:
                break
            await asyncio.sleep(0.02)
        stop.set()
        await asyncio.wait_for(task, timeout=2)
        return job, task.done()

    job, done = harness.run(scenario, SYNC_WORKER_INTERVAL=1.0)
    # wp_id 99 has no local record: one failed attempt, rescheduled
    assert job.status == PENDING
    assert job.attempts == 1
    assert done


def test_rate_limiter_fixed_window():
    now = [0.0]
    limiter = RateLimiter(limit=2, window=60, clock=lambda: now[0])
    assert [limiter.allow("a"), limiter.allow("a"), limiter.allow("a")] == [True, True, False]
    assert limiter.allow("b")
    now[0] = 60.0
    assert limiter.allow("a")


def test_rate_limiter_disabled():
    limiter = RateLimiter(limit=0)
    assert all(limiter.allow("x") for _ in range(100))


def test_validate_settings():
    assert validate_settings(make_settings()) == []
    problems = validate_settings(make_settings(SYNC_BATCH_SIZE=0, ODOO_URL="https://odoo", ODOO_DB=""))
    assert any("SYNC_BATCH_SIZE" in p for p in problems)
    assert any("ODOO_DB" in p for p in problems)


def test_log_filters_redact_secrets():
    import odoo_sync.logging_filters as lf

    cfg = lf.settings
    old = cfg.ODOO_API_KEY
    cfg.ODOO_API_KEY = "super-secret-key"
    try:
        record = logging.LogRecord("uvicorn.error", logging.INFO, __file__, 1,
                                   "calling with %s", ("super-secret-key",), None)
        lf._SecretRedactFilter().filter(record)
        assert record.getMessage() == "calling with <redacted>"

        html = "<html><head><title>502 Bad Gateway</title></head><body>" + "x" * 500 + "</body></html>"
        record = logging.LogRecord("uvicorn.error", logging.ERROR, __file__, 1, html, (), None)
        lf._HtmlTrimFilter().filter(record)
        assert record.getMessage().startswith("502 Bad Gateway [HTML")
    finally:
        cfg.ODOO_API_KEY = old
