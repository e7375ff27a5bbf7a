# odoo_sync/queue/manager.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from odoo_sync.models.jobs import ODOO_TO_WP, WP_TO_ODOO, SyncJob
from odoo_sync.queue.repository import SyncQueueRepository


class QueueManager:
    """
    Semantic wrapper over the job store used by webhooks, modules and the CLI.
    Built once at wiring time and passed around explicitly.
    """

    def __init__(self, repo: SyncQueueRepository):
        self.repo = repo

    async def push(self, module: str, entity_type: str, action: str, wp_id: int,
                   odoo_id: Optional[int] = None, payload: Optional[Dict[str, Any]] = None,
                   priority: int = 5) -> Optional[int]:
        """Enqueue a WordPress -> Odoo job."""
        return await self.repo.enqueue(
            module=module,
            direction=WP_TO_ODOO,
            entity_type=entity_type,
            action=action,
            wp_id=wp_id,
            odoo_id=odoo_id,
            payload=payload,
            priority=priority,
        )

    async def pull(self, module: str, entity_type: str, action: str, odoo_id: int,
                   wp_id: Optional[int] = None, payload: Optional[Dict[str, Any]] = None,
                   priority: int = 5) -> Optional[int]:
        """Enqueue an Odoo -> WordPress job."""
        return await self.repo.enqueue(
            module=module,
            direction=ODOO_TO_WP,
            entity_type=entity_type,
            action=action,
            wp_id=wp_id,
            odoo_id=odoo_id,
            payload=payload,
            priority=priority,
        )

    async def cancel(self, job_id: int) -> bool:
        return await self.repo.cancel(job_id)

    async def get_pending(self, module: str, entity_type: Optional[str] = None) -> List[SyncJob]:
        return await self.repo.get_pending(module, entity_type)

    async def stats(self) -> Dict[str, Any]:
        return await self.repo.stats()

    async def retry_failed(self) -> int:
        return await self.repo.retry_failed()

    async def cleanup(self, days_old: int = 7) -> int:
        return await self.repo.cleanup(days_old)
