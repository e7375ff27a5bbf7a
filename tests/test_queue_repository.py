import json
from datetime import timedelta

import pytest

from odoo_sync.db import utcnow
from odoo_sync.models.jobs import COMPLETED, FAILED, ODOO_TO_WP, PENDING, PROCESSING, WP_TO_ODOO
from odoo_sync.queue.repository import MAX_ERROR_LENGTH


def test_enqueue_defaults_and_payload(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "create", 7, payload={"source": "hook"})
        job = await s.queue_repo.get(job_id)
        return job

    job = harness.run(scenario)
    assert job.status == PENDING
    assert job.direction == WP_TO_ODOO
    assert job.attempts == 0
    assert job.max_attempts == 3
    assert job.odoo_id == 0
    assert job.priority == 5
    assert json.loads(job.payload) == {"source": "hook"}


def test_enqueue_rejects_invalid_jobs(harness):
    async def scenario(s):
        bad_action = await s.queue.push("crm", "contact", "merge", 1)
        bad_direction = await s.queue_repo.enqueue(module="crm", direction="sideways",
                                                   entity_type="contact", action="create", wp_id=1)
        no_module = await s.queue.push("", "contact", "create", 1)
        return bad_action, bad_direction, no_module, await s.queue.stats()

    bad_action, bad_direction, no_module, stats = harness.run(scenario)
    assert (bad_action, bad_direction, no_module) == (None, None, None)
    assert stats["total"] == 0


def test_priority_is_clamped(harness):
    async def scenario(s):
        a = await s.queue.push("crm", "contact", "create", 1, priority=0)
        b = await s.queue.push("crm", "contact", "create", 2, priority=99)
        return (await s.queue_repo.get(a)).priority, (await s.queue_repo.get(b)).priority

    assert harness.run(scenario) == (1, 10)


def test_fetch_due_order_and_filters(harness):
    async def scenario(s):
        now = utcnow()
        low = await s.queue.push("crm", "contact", "update", 1, priority=8)
        urgent = await s.queue.push("crm", "contact", "update", 2, priority=1)
        later = await s.queue_repo.enqueue(module="crm", direction=WP_TO_ODOO, entity_type="contact",
                                           action="update", wp_id=3, scheduled_at=now + timedelta(hours=1))
        busy = await s.queue.pull("crm", "contact", "update", 40)
        await s.queue_repo.update_status(busy, PROCESSING)
        due = await s.queue_repo.fetch_due(10, now + timedelta(seconds=5))
        return [j.id for j in due], (low, urgent, later, busy)

    due_ids, (low, urgent, later, busy) = harness.run(scenario)
    assert due_ids == [urgent, low]
    assert later not in due_ids and busy not in due_ids


def test_fetch_due_respects_limit(harness):
    async def scenario(s):
        for i in range(5):
            await s.queue.push("crm", "contact", "create", i + 1)
        return await s.queue_repo.fetch_due(3, utcnow() + timedelta(seconds=1))

    assert len(harness.run(scenario)) == 3


def test_update_status_rejects_unknown_fields(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "create", 1)
        with pytest.raises(ValueError):
            await s.queue_repo.update_status(job_id, PENDING, module="other")
        with pytest.raises(ValueError):
            await s.queue_repo.update_status(job_id, "paused")

    harness.run(scenario)


def test_error_message_is_truncated(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "create", 1)
        await s.queue_repo.update_status(job_id, FAILED, error_message="x" * (MAX_ERROR_LENGTH + 500))
        return await s.queue_repo.get(job_id)

    assert len(harness.run(scenario).error_message) == MAX_ERROR_LENGTH


def test_cancel_only_pending(harness):
    async def scenario(s):
        ids = {}
        for status in (PENDING, PROCESSING, COMPLETED, FAILED):
            ids[status] = await s.queue.push("crm", "contact", "create", len(ids) + 1)
            if status != PENDING:
                await s.queue_repo.update_status(ids[status], status)
        return {status: await s.queue.cancel(job_id) for status, job_id in ids.items()}, \
            await s.queue.cancel(99999)

    results, missing = harness.run(scenario)
    assert results == {PENDING: True, PROCESSING: False, COMPLETED: False, FAILED: False}
    assert missing is False


def test_stats_counts_by_status(harness):
    async def scenario(s):
        a = await s.queue.push("crm", "contact", "create", 1)
        await s.queue.push("crm", "contact", "create", 2)
        b = await s.queue.push("crm", "contact", "create", 3)
        await s.queue_repo.update_status(a, COMPLETED, processed_at=utcnow())
        await s.queue_repo.update_status(b, FAILED)
        return await s.queue.stats()

    stats = harness.run(scenario)
    assert stats[PENDING] == 1
    assert stats[COMPLETED] == 1
    assert stats[FAILED] == 1
    assert stats[PROCESSING] == 0
    assert stats["total"] == 3
    assert stats["last_completed_at"] != ""


def test_retry_failed_resets_attempts(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "create", 1)
        await s.queue_repo.update_status(job_id, FAILED, attempts=3, error_message="boom",
                                         processed_at=utcnow())
        count = await s.queue.retry_failed()
        return count, await s.queue_repo.get(job_id)

    count, job = harness.run(scenario)
    assert count == 1
    assert job.status == PENDING
    assert job.attempts == 0
    assert job.processed_at is None


def test_cleanup_removes_old_finished_jobs(harness):
    async def scenario(s):
        old = await s.queue.push("crm", "contact", "create", 1)
        fresh = await s.queue.push("crm", "contact", "create", 2)
        waiting = await s.queue.push("crm", "contact", "create", 3)
        await s.queue_repo.update_status(old, COMPLETED, processed_at=utcnow() - timedelta(days=10))
        await s.queue_repo.update_status(fresh, FAILED, processed_at=utcnow() - timedelta(days=1))
        removed = await s.queue.cleanup(7)
        return removed, [await s.queue_repo.get(i) for i in (old, fresh, waiting)]

    removed, (old, fresh, waiting) = harness.run(scenario)
    assert removed == 1
    assert old is None
    assert fresh is not None and waiting is not None


def test_recover_stale_processing(harness):
    async def scenario(s):
        stuck = await s.queue.push("crm", "contact", "create", 1)
        await s.queue_repo.update_status(stuck, PROCESSING)
        count_now = await s.queue_repo.recover_stale(600)
        count_later = await s.queue_repo.recover_stale(600, now=utcnow() + timedelta(seconds=601))
        return count_now, count_later, await s.queue_repo.get(stuck)

    count_now, count_later, job = harness.run(scenario)
    assert count_now == 0
    assert count_later == 1
    assert job.status == PENDING


def test_list_jobs_paginates(harness):
    async def scenario(s):
        for i in range(5):
            await s.queue.push("crm", "contact", "create", i + 1)
        pull = await s.queue.pull("crm", "contact", "update", 77)
        await s.queue_repo.update_status(pull, FAILED)
        page2 = await s.queue_repo.list_jobs(page=2, per_page=2)
        failed = await s.queue_repo.list_jobs(status=FAILED)
        return page2, failed, pull

    page2, failed, pull = harness.run(scenario)
    assert page2["total"] == 6
    assert page2["pages"] == 3
    assert len(page2["items"]) == 2
    assert [j.id for j in failed["items"]] == [pull]
    assert failed["items"][0].direction == ODOO_TO_WP


def test_get_pending_filters_by_entity(harness):
    async def scenario(s):
        await s.queue.push("crm", "contact", "create", 1)
        await s.queue.push("crm", "company", "create", 2)
        await s.queue.push("shop", "contact", "create", 3)
        return (len(await s.queue.get_pending("crm")),
                len(await s.queue.get_pending("crm", "company")))

    assert harness.run(scenario) == (2, 1)


def test_repeated_changes_fold_into_one_pending_job(harness):
    async def scenario(s):
        first = await s.queue.push("crm", "contact", "update", 7, payload={"v": 1}, priority=6)
        second = await s.queue.push("crm", "contact", "update", 7, payload={"v": 2}, priority=3)
        other = await s.queue.push("crm", "contact", "update", 8)
        pull = await s.queue.pull("crm", "contact", "update", 7)
        return first, second, other, pull, await s.queue_repo.get(first), await s.queue.stats()

    first, second, other, pull, job, stats = harness.run(scenario)
    assert first == second
    assert len({first, other, pull}) == 3
    assert stats["pending"] == 3
    assert json.loads(job.payload) == {"v": 2}
    assert job.priority == 3


def test_update_after_pending_create_keeps_create(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "create", 4)
        await s.queue.push("crm", "contact", "update", 4)
        created = (await s.queue_repo.get(job_id)).action
        await s.queue.push("crm", "contact", "delete", 4)
        return created, (await s.queue_repo.get(job_id)).action

    assert harness.run(scenario) == ("create", "delete")


def test_only_pending_jobs_absorb_new_changes(harness):
    async def scenario(s):
        job_id = await s.queue.push("crm", "contact", "update", 5)
        await s.queue_repo.update_status(job_id, PROCESSING)
        again = await s.queue.push("crm", "contact", "update", 5)
        return job_id, again

    job_id, again = harness.run(scenario)
    assert again != job_id
