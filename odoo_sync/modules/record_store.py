#===========================================================================
# odoo_sync/modules/record_store.py
# Generic module keeping local entities as JSON rows (local_records table).
# Registered from MODULE_MODELS so the service runs without a plugin adapter.
#===========================================================================

from __future__ import annotations

import json
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odoo_sync.db import utcnow
from odoo_sync.mapping.entity_map import EntityMapRepository
from odoo_sync.models.jobs import CREATE, DELETE, UPDATE
from odoo_sync.models.records import LocalRecord
from odoo_sync.modules.base import OdooModule
from odoo_sync.odoo.client import OdooClient
from odoo_sync.sync.locks import LockService
from odoo_sync.sync.result import SyncContext

logger = logging.getLogger("uvicorn.error")


def parse_module_models(entries: Dict[str, Any]) -> tuple[Dict[str, str], Dict[str, Dict[str, str]]]:
    """
    Accepts {entity_type: "odoo.model"} or
    {entity_type: {"model": "odoo.model", "fields": {local: odoo}}}.
    """
    models: Dict[str, str] = {}
    field_maps: Dict[str, Dict[str, str]] = {}
    for entity_type, value in (entries or {}).items():
        if isinstance(value, str):
            models[entity_type] = value
        elif isinstance(value, dict) and value.get("model"):
            models[entity_type] = str(value["model"])
            fields = value.get("fields") or {}
            if isinstance(fields, dict) and fields:
                field_maps[entity_type] = {str(k): str(v) for k, v in fields.items()}
        else:
            logger.warning("[ENGINE] ignoring bad model entry for entity %r: %r", entity_type, value)
    return models, field_maps


class RecordStoreModule(OdooModule):
    def __init__(
        self,
        module_id: str,
        *,
        sessionmaker: async_sessionmaker[AsyncSession],
        client_factory: Callable[[], OdooClient],
        entity_map: EntityMapRepository,
        locks: LockService,
        odoo_models: Optional[Dict[str, str]] = None,
        field_maps: Optional[Dict[str, Dict[str, str]]] = None,
        queue: Any = None,
        push_lock_timeout: float = 5.0,
    ):
        super().__init__(
            module_id,
            client_factory=client_factory,
            entity_map=entity_map,
            locks=locks,
            odoo_models=odoo_models,
            field_maps=field_maps,
            queue=queue,
            push_lock_timeout=push_lock_timeout,
        )
        self._sessionmaker = sessionmaker

    async def _row(self, session: AsyncSession, entity_type: str, wp_id: int) -> Optional[LocalRecord]:
        return await session.scalar(
            select(LocalRecord).where(
                LocalRecord.id == int(wp_id),
                LocalRecord.module == self.module_id,
                LocalRecord.entity_type == entity_type,
            )
        )

    async def load_local(self, entity_type: str, wp_id: int) -> Optional[Dict[str, Any]]:
        async with self._sessionmaker() as session:
            row = await self._row(session, entity_type, wp_id)
        if row is None:
            return None
        try:
            data = json.loads(row.data or "{}")
        except ValueError:
            logger.warning("[%s] local %s #%s holds invalid JSON", self.module_id, entity_type, wp_id)
            data = {}
        return data if isinstance(data, dict) else {}

    async def save_local(self, entity_type: str, wp_id: int, data: Dict[str, Any],
                         context: SyncContext) -> int:
        raw = json.dumps(data, ensure_ascii=False, default=str)
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await self._row(session, entity_type, wp_id) if wp_id else None
                if row is None:
                    row = LocalRecord(module=self.module_id, entity_type=entity_type, data=raw)
                    if wp_id:
                        row.id = int(wp_id)
                    session.add(row)
                    action = CREATE
                else:
                    row.data = raw
                    row.updated_at = utcnow()
                    action = UPDATE
                await session.flush()
                local_id = int(row.id)
        await self.on_local_change(entity_type, action, local_id, context)
        return local_id

    async def delete_local(self, entity_type: str, wp_id: int, context: SyncContext) -> bool:
        async with self._sessionmaker() as session:
            async with session.begin():
                row = await self._row(session, entity_type, wp_id)
                if row is None:
                    return False
                await session.delete(row)
        await self.on_local_change(entity_type, DELETE, wp_id, context)
        return True

