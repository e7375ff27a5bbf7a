#===========================================================================
# odoo_sync/modules/base.py
# Module adapter contract + generic Odoo push/pull implementation.
#===========================================================================

from __future__ import annotations

import hashlib
import json
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from odoo_sync.mapping.entity_map import EntityMapRepository
from odoo_sync.models.jobs import CREATE, DELETE, UPDATE
from odoo_sync.odoo.client import OdooClient
from odoo_sync.sync.errors import ErrorType, LockTimeoutError
from odoo_sync.sync.locks import LockService, PushLock, push_lock_key
from odoo_sync.sync.result import SyncContext, SyncResult

logger = logging.getLogger("uvicorn.error")


class SyncModule(Protocol):
    """What the engine needs from a module adapter."""

    module_id: str

    async def push_to_odoo(self, entity_type: str, action: str, wp_id: int,
                           odoo_id: int = 0, payload: Optional[Dict[str, Any]] = None) -> Any: ...

    async def pull_from_odoo(self, entity_type: str, action: str, odoo_id: int,
                             wp_id: int = 0, payload: Optional[Dict[str, Any]] = None) -> Any: ...

    def get_odoo_models(self) -> Dict[str, str]: ...


def content_hash(values: Dict[str, Any]) -> str:
    raw = json.dumps(values, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


class OdooModule:
    """
    Base class for adapters mapping one local data model onto Odoo models.

    Subclasses provide load_local / save_local / delete_local and, usually,
    field maps ({local_field: odoo_field}) per entity type.
    """

    name: str = ""

    def __init__(
        self,
        module_id: str,
        *,
        client_factory: Callable[[], OdooClient],
        entity_map: EntityMapRepository,
        locks: LockService,
        odoo_models: Optional[Dict[str, str]] = None,
        field_maps: Optional[Dict[str, Dict[str, str]]] = None,
        queue: Any = None,
        push_lock_timeout: float = 5.0,
    ):
        self.module_id = module_id
        self.name = self.name or module_id
        self._client_factory = client_factory
        self.entity_map = entity_map
        self.locks = locks
        self.odoo_models: Dict[str, str] = dict(odoo_models or {})
        self.field_maps: Dict[str, Dict[str, str]] = dict(field_maps or {})
        self.queue = queue
        self.push_lock_timeout = push_lock_timeout

    # ---------------------------
    # Contract
    # ---------------------------

    def get_odoo_models(self) -> Dict[str, str]:
        return dict(self.odoo_models)

    def get_client(self) -> OdooClient:
        return self._client_factory()

    async def load_local(self, entity_type: str, wp_id: int) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    async def save_local(self, entity_type: str, wp_id: int, data: Dict[str, Any],
                         context: SyncContext) -> int:
        """Create or update the local entity; return its local id."""
        raise NotImplementedError

    async def delete_local(self, entity_type: str, wp_id: int, context: SyncContext) -> bool:
        raise NotImplementedError

    # ---------------------------
    # Field mapping
    # ---------------------------

    def map_to_odoo(self, entity_type: str, data: Dict[str, Any]) -> Dict[str, Any]:
        fmap = self.field_maps.get(entity_type)
        if not fmap:
            return {k: v for k, v in data.items() if k != "id" and v is not None}
        return {odoo_f: data[local_f] for local_f, odoo_f in fmap.items()
                if local_f in data and data[local_f] is not None}

    def map_from_odoo(self, entity_type: str, record: Dict[str, Any]) -> Dict[str, Any]:
        def _scalar(v: Any) -> Any:
            # many2one values come back as [id, display_name]
            if isinstance(v, list) and len(v) == 2 and isinstance(v[0], int):
                return v[0]
            return v

        fmap = self.field_maps.get(entity_type)
        if not fmap:
            return {k: _scalar(v) for k, v in record.items() if k != "id"}
        return {local_f: _scalar(record[odoo_f]) for local_f, odoo_f in fmap.items() if odoo_f in record}

    def _model(self, entity_type: str) -> Optional[str]:
        return self.odoo_models.get(entity_type)

    # ---------------------------
    # Push (local -> Odoo)
    # ---------------------------

    async def push_to_odoo(self, entity_type: str, action: str, wp_id: int,
                           odoo_id: int = 0, payload: Optional[Dict[str, Any]] = None) -> SyncResult:
        model = self._model(entity_type)
        if not model:
            return SyncResult.failure(
                f'Entity type "{entity_type}" is not handled by module "{self.module_id}"',
                ErrorType.PERMANENT,
            )
        client = self.get_client()

        if action == DELETE:
            target = odoo_id or await self.entity_map.get_odoo_id(self.module_id, entity_type, wp_id)
            if target:
                await client.unlink(model, [int(target)])
                logger.info("[%s] unlinked %s #%s (wp_id=%s)", self.module_id, model, target, wp_id)
            await self.entity_map.remove(self.module_id, entity_type, wp_id)
            return SyncResult.ok(target or None)

        data = await self.load_local(entity_type, wp_id)
        if data is None:
            return SyncResult.failure(
                f"{entity_type} {wp_id} not found locally", ErrorType.PERMANENT
            )
        values = self.map_to_odoo(entity_type, data)
        digest = content_hash(values)

        existing = odoo_id or await self.entity_map.get_odoo_id(self.module_id, entity_type, wp_id)
        if existing:
            return await self._push_update(client, model, entity_type, wp_id, int(existing), values, digest)

        # Create path: search-before-create under the push lock.
        try:
            async with PushLock(self.locks, push_lock_key(self.module_id, entity_type, wp_id),
                                self.push_lock_timeout):
                existing = await self.entity_map.get_odoo_id(self.module_id, entity_type, wp_id)
                if existing:
                    logger.info("[%s] %s wp_id=%s already mapped to #%s; skipping create",
                                self.module_id, entity_type, wp_id, existing)
                    return SyncResult.ok(int(existing), "already created")

                new_id = await client.create(model, values)
                try:
                    await self.entity_map.save(self.module_id, entity_type, wp_id, new_id, model, digest)
                except Exception as e:
                    logger.error("[%s] created %s #%s but mapping save failed: %s",
                                 self.module_id, model, new_id, e)
                    return SyncResult.failure(
                        f"Odoo record {new_id} created but mapping save failed: {e}",
                        ErrorType.TRANSIENT,
                        entity_id=new_id,
                    )
        except LockTimeoutError as e:
            return SyncResult.failure(str(e), ErrorType.TRANSIENT)

        logger.info("[%s] created %s #%s for wp_id=%s", self.module_id, model, new_id, wp_id)
        return SyncResult.ok(new_id)

    async def _push_update(self, client: OdooClient, model: str, entity_type: str, wp_id: int,
                           odoo_id: int, values: Dict[str, Any], digest: str) -> SyncResult:
        stored = await self.entity_map.get_sync_hash(self.module_id, entity_type, wp_id)
        if stored and stored == digest:
            logger.debug("[%s] %s wp_id=%s unchanged; skipping write", self.module_id, entity_type, wp_id)
            return SyncResult.ok(odoo_id, "unchanged")
        await client.write(model, [odoo_id], values)
        await self.entity_map.save(self.module_id, entity_type, wp_id, odoo_id, model, digest)
        return SyncResult.ok(odoo_id)

    # ---------------------------
    # Pull (Odoo -> local)
    # ---------------------------

    async def pull_from_odoo(self, entity_type: str, action: str, odoo_id: int,
                             wp_id: int = 0, payload: Optional[Dict[str, Any]] = None) -> SyncResult:
        model = self._model(entity_type)
        if not model:
            return SyncResult.failure(
                f'Entity type "{entity_type}" is not handled by module "{self.module_id}"',
                ErrorType.PERMANENT,
            )
        context = SyncContext(importing=True)

        if action == DELETE:
            target = wp_id or await self.entity_map.get_wp_id(self.module_id, entity_type, odoo_id)
            if target:
                await self.delete_local(entity_type, int(target), context)
                await self.entity_map.remove_by_odoo_id(self.module_id, entity_type, int(odoo_id))
            return SyncResult.ok(target or None)

        fields = list(self.field_maps.get(entity_type, {}).values()) or None
        records = await self.get_client().read(model, [int(odoo_id)], fields)
        if not records:
            return SyncResult.failure(f"Odoo {model} #{odoo_id} not found", ErrorType.PERMANENT)

        data = self.map_from_odoo(entity_type, records[0])
        target = wp_id or await self.entity_map.get_wp_id(self.module_id, entity_type, odoo_id) or 0
        local_id = await self.save_local(entity_type, int(target), data, context)
        # Hash what the local side now holds so the echo push is a no-op.
        digest = content_hash(self.map_to_odoo(entity_type, data))
        await self.entity_map.save(self.module_id, entity_type, local_id, int(odoo_id), model, digest)
        return SyncResult.ok(local_id)

    # ---------------------------
    # Local change hook
    # ---------------------------

    async def on_local_change(self, entity_type: str, action: str, wp_id: int,
                              context: Optional[SyncContext] = None) -> Optional[int]:
        """
        Called after a local write. Enqueues a push unless the write itself
        came from Odoo (context.importing).
        """
        if context is not None and context.importing:
            return None
        if self.queue is None or entity_type not in self.odoo_models:
            return None
        odoo_id = await self.entity_map.get_odoo_id(self.module_id, entity_type, wp_id)
        if action == CREATE and odoo_id:
            action = UPDATE
        return await self.queue.push(self.module_id, entity_type, action, wp_id, odoo_id=odoo_id)
