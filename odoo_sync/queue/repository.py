# odoo_sync/queue/repository.py
# Durable sync job store (sync_queue table).
from __future__ import annotations

import json
import logging
import math
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odoo_sync.db import utcnow
from odoo_sync.models.jobs import (
    ACTIONS,
    COMPLETED,
    CREATE,
    DIRECTIONS,
    FAILED,
    PENDING,
    PROCESSING,
    STATUSES,
    UPDATE,
    WP_TO_ODOO,
    SyncJob,
)

logger = logging.getLogger("uvicorn.error")

MAX_ERROR_LENGTH = 65535
_UPDATABLE = ("attempts", "error_message", "scheduled_at", "processed_at")


def truncate_error(message: Optional[str], limit: int = MAX_ERROR_LENGTH) -> Optional[str]:
    if message is None:
        return None
    text = " ".join(str(message).split())
    return text[:limit]


def decode_payload(job: SyncJob) -> Dict[str, Any]:
    if not job.payload:
        return {}
    try:
        data = json.loads(job.payload)
    except (TypeError, ValueError):
        logger.warning("[QUEUE] job %s has an undecodable payload", job.id)
        return {}
    return data if isinstance(data, dict) else {"value": data}


def job_to_dict(job: SyncJob) -> Dict[str, Any]:
    def _ts(v: Optional[datetime]) -> Optional[str]:
        return v.isoformat(sep=" ", timespec="seconds") if v else None

    return {
        "id": job.id,
        "module": job.module,
        "direction": job.direction,
        "entity_type": job.entity_type,
        "action": job.action,
        "wp_id": job.wp_id,
        "odoo_id": job.odoo_id,
        "payload": decode_payload(job),
        "priority": job.priority,
        "status": job.status,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "error_message": job.error_message,
        "scheduled_at": _ts(job.scheduled_at),
        "processed_at": _ts(job.processed_at),
        "created_at": _ts(job.created_at),
    }


class SyncQueueRepository:
    """
    Job store. No row-level locking: only one processor runs at a time
    (run-wide lock in SyncEngine), so plain reads/updates are enough.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], *,
                 default_max_attempts: int = 3, clock: Callable[[], datetime] = utcnow):
        self._sessionmaker = sessionmaker
        self.default_max_attempts = default_max_attempts
        self._clock = clock

    async def enqueue(
        self,
        *,
        module: str,
        direction: str,
        entity_type: str,
        action: str,
        wp_id: Optional[int] = None,
        odoo_id: Optional[int] = None,
        payload: Optional[Dict[str, Any]] = None,
        priority: int = 5,
        max_attempts: Optional[int] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> Optional[int]:
        """
        Insert a pending job, or fold the change into the pending job already
        queued for the same entity (same id returned). Returns None when the
        job is invalid or the store is unavailable (callers are hooks; never raise).
        """
        if direction not in DIRECTIONS:
            logger.error("[QUEUE] refusing job with invalid direction=%r", direction)
            return None
        if action not in ACTIONS:
            logger.error("[QUEUE] refusing job with invalid action=%r", action)
            return None
        if not module or not entity_type:
            logger.error("[QUEUE] refusing job without module/entity_type")
            return None

        now = self._clock()
        wp_id, odoo_id = int(wp_id or 0), int(odoo_id or 0)
        priority = max(1, min(10, int(priority)))
        encoded = json.dumps(payload or {}, ensure_ascii=False, default=str)
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    existing = await self._find_pending(session, module, direction, entity_type, wp_id, odoo_id)
                    if existing is not None:
                        # A create still has to happen even if updates follow it.
                        if not (existing.action == CREATE and action == UPDATE):
                            existing.action = action
                        existing.payload = encoded
                        existing.priority = min(int(existing.priority), priority)
                        existing.wp_id = existing.wp_id or wp_id
                        existing.odoo_id = existing.odoo_id or odoo_id
                        existing.updated_at = now
                        job_id = existing.id
                        merged = True
                    else:
                        job = SyncJob(
                            module=module,
                            direction=direction,
                            entity_type=entity_type,
                            action=action,
                            wp_id=wp_id,
                            odoo_id=odoo_id,
                            payload=encoded,
                            priority=priority,
                            status=PENDING,
                            attempts=0,
                            max_attempts=int(max_attempts or self.default_max_attempts),
                            scheduled_at=scheduled_at or now,
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(job)
                        await session.flush()
                        job_id = job.id
                        merged = False
        except Exception as e:
            logger.error("[QUEUE] enqueue failed module=%s entity=%s: %s", module, entity_type, e)
            return None
        if merged:
            logger.debug("[QUEUE] merged into pending job=%s %s/%s %s %s",
                         job_id, module, entity_type, direction, action)
        else:
            logger.debug("[QUEUE] enqueued job=%s %s/%s %s %s", job_id, module, entity_type, direction, action)
        return job_id

    @staticmethod
    async def _find_pending(session: AsyncSession, module: str, direction: str, entity_type: str,
                            wp_id: int, odoo_id: int) -> Optional[SyncJob]:
        """The pending job already queued for the same entity, if any."""
        # Pushes are keyed by the local id, pulls by the Odoo id.
        if direction == WP_TO_ODOO:
            key = (SyncJob.wp_id, wp_id) if wp_id else (SyncJob.odoo_id, odoo_id)
        else:
            key = (SyncJob.odoo_id, odoo_id) if odoo_id else (SyncJob.wp_id, wp_id)
        column, value = key
        if not value:
            return None
        result = await session.execute(
            select(SyncJob)
            .where(
                SyncJob.status == PENDING,
                SyncJob.module == module,
                SyncJob.direction == direction,
                SyncJob.entity_type == entity_type,
                column == value,
            )
            .order_by(SyncJob.id.asc())
            .limit(1)
        )
        return result.scalars().first()

    async def get(self, job_id: int) -> Optional[SyncJob]:
        async with self._sessionmaker() as session:
            return await session.get(SyncJob, int(job_id))

    async def fetch_due(self, limit: int, now: Optional[datetime] = None) -> List[SyncJob]:
        """Up to `limit` pending jobs with scheduled_at <= now, by priority then schedule."""
        now = now or self._clock()
        stmt = (
            select(SyncJob)
            .where(SyncJob.status == PENDING, SyncJob.scheduled_at <= now)
            .order_by(SyncJob.priority.asc(), SyncJob.scheduled_at.asc(), SyncJob.id.asc())
            .limit(max(0, int(limit)))
        )
        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def update_status(self, job_id: int, status: str, **fields: Any) -> bool:
        if status not in STATUSES:
            raise ValueError(f"Unknown job status: {status}")
        values: Dict[str, Any] = {"status": status, "updated_at": self._clock()}
        for key, value in fields.items():
            if key not in _UPDATABLE:
                raise ValueError(f"Field {key!r} cannot be updated")
            values[key] = truncate_error(value) if key == "error_message" else value
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    update(SyncJob).where(SyncJob.id == int(job_id)).values(**values)
                )
        return (result.rowcount or 0) > 0

    async def cancel(self, job_id: int) -> bool:
        """Delete the job only while it is still pending."""
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(SyncJob).where(SyncJob.id == int(job_id), SyncJob.status == PENDING)
                )
        cancelled = (result.rowcount or 0) > 0
        if cancelled:
            logger.info("[QUEUE] job %s cancelled", job_id)
        return cancelled

    async def get_pending(self, module: str, entity_type: Optional[str] = None) -> List[SyncJob]:
        stmt = select(SyncJob).where(SyncJob.module == module, SyncJob.status == PENDING)
        if entity_type is not None:
            stmt = stmt.where(SyncJob.entity_type == entity_type)
        stmt = stmt.order_by(SyncJob.priority.asc(), SyncJob.scheduled_at.asc())
        async with self._sessionmaker() as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def stats(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {s: 0 for s in STATUSES}
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(SyncJob.status, func.count(SyncJob.id)).group_by(SyncJob.status)
            )
            for status, count in rows.all():
                out[status] = int(count)
            last = await session.scalar(
                select(func.max(SyncJob.processed_at)).where(SyncJob.status == COMPLETED)
            )
        out["total"] = sum(out[s] for s in STATUSES)
        out["last_completed_at"] = last.isoformat(sep=" ", timespec="seconds") if last else ""
        return out

    async def list_jobs(self, page: int = 1, per_page: int = 30,
                        status: Optional[str] = None) -> Dict[str, Any]:
        page = max(1, int(page))
        per_page = max(1, min(100, int(per_page)))
        base = select(SyncJob)
        count_stmt = select(func.count(SyncJob.id))
        if status:
            base = base.where(SyncJob.status == status)
            count_stmt = count_stmt.where(SyncJob.status == status)
        async with self._sessionmaker() as session:
            total = int(await session.scalar(count_stmt) or 0)
            result = await session.execute(
                base.order_by(SyncJob.id.desc()).offset((page - 1) * per_page).limit(per_page)
            )
            items = list(result.scalars().all())
        return {
            "items": items,
            "total": total,
            "page": page,
            "pages": max(1, math.ceil(total / per_page)) if total else 0,
        }

    async def retry_failed(self) -> int:
        """
        Operator action: put every failed job back in the queue with a
        fresh attempt budget.
        """
        now = self._clock()
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    update(SyncJob)
                    .where(SyncJob.status == FAILED)
                    .values(status=PENDING, attempts=0, scheduled_at=now,
                            processed_at=None, updated_at=now)
                )
        count = result.rowcount or 0
        logger.info("[QUEUE] %d failed job(s) reset to pending", count)
        return count

    async def cleanup(self, days_old: int = 7) -> int:
        """Delete completed/failed jobs processed more than `days_old` days ago."""
        cutoff = self._clock() - timedelta(days=max(0, int(days_old)))
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(SyncJob).where(
                        SyncJob.status.in_((COMPLETED, FAILED)),
                        SyncJob.processed_at.is_not(None),
                        SyncJob.processed_at < cutoff,
                    )
                )
        count = result.rowcount or 0
        if count:
            logger.info("[QUEUE] cleanup removed %d job(s) older than %d day(s)", count, days_old)
        return count

    async def recover_stale(self, timeout_seconds: float, now: Optional[datetime] = None) -> int:
        """Reset jobs stuck in processing (crashed processor) back to pending."""
        now = now or self._clock()
        cutoff = now - timedelta(seconds=float(timeout_seconds))
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    update(SyncJob)
                    .where(SyncJob.status == PROCESSING, SyncJob.updated_at < cutoff)
                    .values(status=PENDING, updated_at=now)
                )
        count = result.rowcount or 0
        if count:
            logger.warning("[QUEUE] recovered %d stale processing job(s)", count)
        return count
