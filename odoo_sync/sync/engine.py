#===========================================================================
# odoo_sync/sync/engine.py
# Queue processor: run-lock -> fetch due batch -> dispatch jobs one by one.
#
# Retry policy on a caught failure:
#   attempts + 1 >= max_attempts  -> failed (terminal)
#   otherwise                     -> pending, scheduled_at = now + attempts*60s
# Backoff is linear. Classification only sets log severity and the report.
#
# While the circuit breaker is open the run is skipped, and a job that hits
# an open circuit mid-batch is rescheduled without spending an attempt.
#===========================================================================

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from odoo_sync.db import utcnow
from odoo_sync.models.jobs import COMPLETED, FAILED, ODOO_TO_WP, PENDING, PROCESSING, SyncJob
from odoo_sync.modules.base import SyncModule
from odoo_sync.queue.repository import SyncQueueRepository, decode_payload, truncate_error
from odoo_sync.sync.circuit_breaker import OPEN, CircuitBreaker
from odoo_sync.sync.errors import CircuitOpenError, ErrorType, SyncFailed, UnknownModuleError, classify
from odoo_sync.sync.locks import PROCESSOR_LOCK, LockService
from odoo_sync.sync.result import SyncResult

logger = logging.getLogger("uvicorn.error")

RETRY_DELAY_SECONDS = 60
DRY_RUN_NOTE = "[dry-run] adapter not invoked"


@dataclass
class JobOutcome:
    job_id: int
    module: str
    entity_type: str
    direction: str
    action: str
    status: str                 # completed | pending (retry scheduled) | failed
    attempts: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    deferred: bool = False      # put back without spending an attempt

    def to_dict(self) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "module": self.module,
            "entity_type": self.entity_type,
            "direction": self.direction,
            "action": self.action,
            "status": self.status,
            "attempts": self.attempts,
            "error": self.error,
            "error_type": self.error_type,
            "deferred": self.deferred,
        }


@dataclass
class BatchReport:
    locked: bool = True         # False when another processor held the run-lock
    circuit_open: bool = False  # True when the breaker was open at start
    dry_run: bool = False
    processed: int = 0          # completed this run
    failed: int = 0             # failures this run (retry scheduled or terminal)
    deferred: int = 0           # fetched but left pending by the time budget
    outcomes: List[JobOutcome] = field(default_factory=list)

    @property
    def skipped(self) -> bool:
        return not self.locked or self.circuit_open

    @property
    def dispatched_ids(self) -> List[int]:
        return [o.job_id for o in self.outcomes]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "skipped": self.skipped,
            "circuit_open": self.circuit_open,
            "dry_run": self.dry_run,
            "processed": self.processed,
            "failed": self.failed,
            "deferred": self.deferred,
            "jobs": [o.to_dict() for o in self.outcomes],
        }


ModuleResolver = Callable[[str], Optional[SyncModule]]


class SyncEngine:
    def __init__(
        self,
        queue_repo: SyncQueueRepository,
        module_resolver: ModuleResolver,
        lock_service: LockService,
        *,
        notifier: Any = None,
        breaker: Optional[CircuitBreaker] = None,
        batch_size: int = 50,
        batch_time_limit: float = 55.0,
        lock_timeout: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
        monotonic: Callable[[], float] = time.monotonic,
    ):
        self.repo = queue_repo
        self.resolve_module = module_resolver
        self.locks = lock_service
        self.notifier = notifier
        self.breaker = breaker
        self.batch_size = batch_size
        self.batch_time_limit = batch_time_limit
        self.lock_timeout = lock_timeout
        self._clock = clock
        self._monotonic = monotonic

    def _circuit_open(self) -> bool:
        return self.breaker is not None and self.breaker.state == OPEN

    async def process_queue(self, dry_run: bool = False) -> BatchReport:
        """
        One processor run. Returns immediately with zero work when another
        run holds the processor lock, or when the circuit breaker is open
        (Odoo is considered unreachable, so nothing is fetched).

        dry_run applies to this run only; the adapters are never called.
        """
        report = BatchReport(dry_run=dry_run)
        if not dry_run and self._circuit_open():
            logger.info("[ENGINE] circuit breaker open; skipping this run")
            report.circuit_open = True
            return report
        if not await self.locks.acquire(PROCESSOR_LOCK, self.lock_timeout):
            logger.info("[ENGINE] another processor is running; skipping this run")
            report.locked = False
            return report

        try:
            started = self._monotonic()
            jobs = await self.repo.fetch_due(self.batch_size, self._clock())
            if jobs:
                logger.info("[ENGINE] processing %d job(s)%s", len(jobs), " (dry-run)" if dry_run else "")

            for index, job in enumerate(jobs):
                if self._monotonic() - started >= self.batch_time_limit:
                    report.deferred += len(jobs) - index
                    logger.warning("[ENGINE] batch time limit %.0fs reached; %d job(s) left pending",
                                   self.batch_time_limit, len(jobs) - index)
                    break
                if not dry_run and self._circuit_open():
                    report.deferred += len(jobs) - index
                    logger.warning("[ENGINE] circuit breaker opened mid-batch; %d job(s) left pending",
                                   len(jobs) - index)
                    break
                try:
                    outcome = await self._process_job(job, dry_run)
                except Exception as e:
                    # A store write failed; the job keeps whatever status it had
                    # and the stale-job reaper picks it up if it is stuck.
                    logger.exception("[ENGINE] job=%s: could not record job state", job.id)
                    outcome = self._new_outcome(job)
                    outcome.error = truncate_error(str(e) or e.__class__.__name__)
                report.outcomes.append(outcome)
                if outcome.status == COMPLETED:
                    report.processed += 1
                elif outcome.deferred:
                    report.deferred += 1
                else:
                    report.failed += 1
        finally:
            await self.locks.release(PROCESSOR_LOCK)

        if report.outcomes:
            logger.info("[ENGINE] run done: %d completed, %d failed, %d deferred",
                        report.processed, report.failed, report.deferred)
        if self.notifier is not None and not dry_run:
            await self.notifier.check(report.processed, report.failed)
        return report

    @staticmethod
    def _new_outcome(job: SyncJob) -> JobOutcome:
        return JobOutcome(
            job_id=job.id,
            module=job.module,
            entity_type=job.entity_type,
            direction=job.direction,
            action=job.action,
            status=PROCESSING,
            attempts=job.attempts,
        )

    async def _process_job(self, job: SyncJob, dry_run: bool = False) -> JobOutcome:
        outcome = self._new_outcome(job)
        await self.repo.update_status(job.id, PROCESSING)

        if dry_run:
            logger.info("[ENGINE] [dry-run] job=%s %s %s/%s %s wp_id=%s odoo_id=%s",
                        job.id, job.direction, job.module, job.entity_type, job.action,
                        job.wp_id, job.odoo_id)
            await self.repo.update_status(job.id, COMPLETED, processed_at=self._clock(),
                                          error_message=DRY_RUN_NOTE)
            outcome.status = COMPLETED
            return outcome

        try:
            module = self.resolve_module(job.module)
            if module is None:
                raise UnknownModuleError(job.module)

            payload = decode_payload(job)
            if job.direction == ODOO_TO_WP:
                result = await module.pull_from_odoo(job.entity_type, job.action, job.odoo_id,
                                                     job.wp_id, payload)
            else:
                result = await module.push_to_odoo(job.entity_type, job.action, job.wp_id,
                                                   job.odoo_id, payload)
            self._raise_on_failure(result)
        except Exception as e:
            return await self._handle_failure(job, e, outcome)

        await self.repo.update_status(job.id, COMPLETED, processed_at=self._clock(), error_message=None)
        outcome.status = COMPLETED
        logger.debug("[ENGINE] job=%s completed", job.id)
        return outcome

    @staticmethod
    def _raise_on_failure(result: Any) -> None:
        if isinstance(result, SyncResult):
            if not result.success:
                raise SyncFailed(result.message, result.error_type)
        elif result is False:
            raise SyncFailed("Adapter returned failure")

    async def _handle_failure(self, job: SyncJob, error: Exception, outcome: JobOutcome) -> JobOutcome:
        if isinstance(error, CircuitOpenError):
            # Odoo was never called: put the job back as it was.
            scheduled = self._clock() + timedelta(seconds=RETRY_DELAY_SECONDS)
            await self.repo.update_status(job.id, PENDING, scheduled_at=scheduled)
            outcome.status = PENDING
            outcome.deferred = True
            outcome.error = str(error)
            outcome.error_type = ErrorType.TRANSIENT.value
            logger.info("[ENGINE] job=%s deferred: %s", job.id, error)
            return outcome

        error_type = getattr(error, "error_type", None) if isinstance(error, SyncFailed) else None
        error_type = error_type or classify(error)
        message = truncate_error(str(error) or error.__class__.__name__)
        attempts = int(job.attempts) + 1
        now = self._clock()

        outcome.attempts = attempts
        outcome.error = message
        outcome.error_type = error_type.value

        if attempts >= int(job.max_attempts):
            await self.repo.update_status(job.id, FAILED, attempts=attempts,
                                          error_message=message, processed_at=now)
            outcome.status = FAILED
            logger.error("[ENGINE] job=%s %s/%s failed permanently after %d attempt(s) (%s): %s",
                         job.id, job.module, job.entity_type, attempts, error_type.value, message)
            return outcome

        scheduled = now + timedelta(seconds=attempts * RETRY_DELAY_SECONDS)
        await self.repo.update_status(job.id, PENDING, attempts=attempts,
                                      error_message=message, scheduled_at=scheduled)
        outcome.status = PENDING
        log = logger.error if error_type is ErrorType.PERMANENT else logger.warning
        log("[ENGINE] job=%s %s/%s attempt %d/%d failed (%s), retry at %s: %s",
            job.id, job.module, job.entity_type, attempts, job.max_attempts,
            error_type.value, scheduled.isoformat(sep=" ", timespec="seconds"), message)
        return outcome
