#===========================================================================
# odoo_sync/services.py
# Wiring: every long-lived object is built once here and passed explicitly
# to the app, the worker and the CLI.
#===========================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from odoo_sync.config import Settings, settings
from odoo_sync.db import create_engine, init_db, make_sessionmaker
from odoo_sync.mapping.entity_map import EntityMapRepository
from odoo_sync.modules.record_store import RecordStoreModule, parse_module_models
from odoo_sync.modules.registry import ModuleRegistry
from odoo_sync.odoo.client import OdooClient, Transport
from odoo_sync.odoo.jsonrpc import OdooJsonRpc
from odoo_sync.queue.manager import QueueManager
from odoo_sync.queue.repository import SyncQueueRepository
from odoo_sync.sync.circuit_breaker import CircuitBreaker
from odoo_sync.sync.engine import SyncEngine
from odoo_sync.sync.failure_notifier import FailureNotifier
from odoo_sync.sync.locks import DatabaseLockService, LockService
from odoo_sync.sync.reconciler import Reconciler
from odoo_sync.webhooks.rate_limiter import RateLimiter

logger = logging.getLogger("uvicorn.error")


@dataclass
class Services:
    settings: Settings
    db_engine: AsyncEngine
    sessionmaker: async_sessionmaker[AsyncSession]
    queue_repo: SyncQueueRepository
    queue: QueueManager
    entity_map: EntityMapRepository
    breaker: CircuitBreaker
    transport: Any
    locks: LockService
    registry: ModuleRegistry
    notifier: FailureNotifier
    sync_engine: SyncEngine
    reconciler: Reconciler
    rate_limiter: RateLimiter

    async def init(self) -> None:
        await init_db(self.db_engine)

    async def close(self) -> None:
        await self.db_engine.dispose()


def build_services(cfg: Settings = settings, *, dsn: Optional[str] = None,
                   transport: Optional[Transport] = None,
                   lock_service: Optional[LockService] = None) -> Services:
    db_engine = create_engine(dsn or cfg.DATABASE_URL or None)
    sessionmaker = make_sessionmaker(db_engine)

    queue_repo = SyncQueueRepository(sessionmaker, default_max_attempts=cfg.SYNC_MAX_ATTEMPTS)
    queue = QueueManager(queue_repo)
    entity_map = EntityMapRepository(sessionmaker)
    breaker = CircuitBreaker(cfg.CB_FAILURE_THRESHOLD, cfg.CB_RECOVERY_DELAY)
    transport = transport or OdooJsonRpc(
        cfg.ODOO_URL, cfg.ODOO_DB, cfg.ODOO_USER, cfg.ODOO_API_KEY,
        timeout=cfg.ODOO_TIMEOUT, verify=cfg.ODOO_VERIFY_SSL,
    )
    locks = lock_service or DatabaseLockService(
        sessionmaker, lease_seconds=max(300.0, float(cfg.SYNC_STALE_TIMEOUT))
    )

    def client_factory() -> OdooClient:
        return OdooClient(transport, breaker)

    registry = ModuleRegistry()
    for module_id, entries in (cfg.MODULE_MODELS or {}).items():
        if not isinstance(entries, dict):
            logger.warning("[ENGINE] MODULE_MODELS[%r] is not an object; skipped", module_id)
            continue
        models, field_maps = parse_module_models(entries)
        registry.register(RecordStoreModule(
            module_id,
            sessionmaker=sessionmaker,
            client_factory=client_factory,
            entity_map=entity_map,
            locks=locks,
            odoo_models=models,
            field_maps=field_maps,
            queue=queue,
            push_lock_timeout=cfg.PUSH_LOCK_TIMEOUT,
        ))

    notifier = FailureNotifier(cfg.FAILURE_NOTIFY_THRESHOLD, cfg.FAILURE_NOTIFY_COOLDOWN,
                               cfg.ALERT_WEBHOOK_URL)
    sync_engine = SyncEngine(
        queue_repo,
        registry.get,
        locks,
        notifier=notifier,
        breaker=breaker,
        batch_size=cfg.SYNC_BATCH_SIZE,
        batch_time_limit=cfg.SYNC_BATCH_TIME_LIMIT,
        lock_timeout=cfg.SYNC_LOCK_TIMEOUT,
    )

    return Services(
        settings=cfg,
        db_engine=db_engine,
        sessionmaker=sessionmaker,
        queue_repo=queue_repo,
        queue=queue,
        entity_map=entity_map,
        breaker=breaker,
        transport=transport,
        locks=locks,
        registry=registry,
        notifier=notifier,
        sync_engine=sync_engine,
        reconciler=Reconciler(entity_map, client_factory),
        rate_limiter=RateLimiter(cfg.WEBHOOK_RATE_LIMIT, cfg.WEBHOOK_RATE_WINDOW),
    )
