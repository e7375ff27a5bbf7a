# odoo_sync/sync/reconciler.py
# Out-of-band audit: find mappings whose Odoo record no longer exists.
from __future__ import annotations

import logging
from typing import Callable, Dict, List, TypedDict

from odoo_sync.mapping.entity_map import EntityMapRepository
from odoo_sync.odoo.client import OdooClient

logger = logging.getLogger("uvicorn.error")

SEARCH_CHUNK = 1000


class Orphan(TypedDict):
    wp_id: int
    odoo_id: int


class ReconcileReport(TypedDict):
    checked: int
    orphaned: List[Orphan]
    fixed: int


class Reconciler:
    def __init__(self, entity_map: EntityMapRepository, client_factory: Callable[[], OdooClient]):
        self.entity_map = entity_map
        self._client_factory = client_factory

    async def reconcile(self, module: str, entity_type: str, odoo_model: str,
                        fix: bool = False) -> ReconcileReport:
        mappings = await self.entity_map.get_all(module, entity_type)
        report: ReconcileReport = {"checked": len(mappings), "orphaned": [], "fixed": 0}
        if not mappings:
            return report

        odoo_ids = sorted({m["odoo_id"] for m in mappings})
        client = self._client_factory()
        existing: set[int] = set()
        try:
            for start in range(0, len(odoo_ids), SEARCH_CHUNK):
                chunk = odoo_ids[start:start + SEARCH_CHUNK]
                found = await client.search(
                    odoo_model,
                    [["id", "in", chunk]],
                    context={"active_test": False},
                )
                existing.update(int(i) for i in found)
        except Exception as e:
            # Never guess orphans from a partial answer.
            logger.error("[RECONCILE] %s/%s search on %s failed: %s", module, entity_type, odoo_model, e)
            return report

        orphaned: List[Orphan] = [
            {"wp_id": m["wp_id"], "odoo_id": m["odoo_id"]}
            for m in mappings
            if m["odoo_id"] not in existing
        ]
        report["orphaned"] = orphaned
        logger.info("[RECONCILE] %s/%s: %d checked, %d orphaned",
                    module, entity_type, report["checked"], len(orphaned))

        if fix:
            for o in orphaned:
                if await self.entity_map.remove(module, entity_type, o["wp_id"]):
                    report["fixed"] += 1
            logger.info("[RECONCILE] %s/%s: removed %d orphaned mapping(s)", module, entity_type, report["fixed"])
        return report

    async def reconcile_module(self, module: str, odoo_models: Dict[str, str],
                               fix: bool = False) -> Dict[str, ReconcileReport]:
        return {
            entity_type: await self.reconcile(module, entity_type, model, fix=fix)
            for entity_type, model in odoo_models.items()
        }
