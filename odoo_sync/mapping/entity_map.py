# odoo_sync/mapping/entity_map.py
# Local ID <-> Odoo ID correspondence per (module, entity_type).
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional, TypedDict

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odoo_sync.db import utcnow
from odoo_sync.models.jobs import EntityMap

logger = logging.getLogger("uvicorn.error")


class MappingRow(TypedDict):
    wp_id: int
    odoo_id: int
    odoo_model: str
    sync_hash: Optional[str]


class EntityMapRepository:
    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]):
        self._sessionmaker = sessionmaker

    async def save(self, module: str, entity_type: str, wp_id: int, odoo_id: int,
                   odoo_model: str = "", sync_hash: Optional[str] = None) -> None:
        """Upsert on (module, entity_type, wp_id): one row per local entity."""
        for attempt in (1, 2):
            try:
                async with self._sessionmaker() as session:
                    async with session.begin():
                        row = await session.scalar(
                            select(EntityMap).where(
                                EntityMap.module == module,
                                EntityMap.entity_type == entity_type,
                                EntityMap.wp_id == int(wp_id),
                            )
                        )
                        if row is None:
                            session.add(EntityMap(
                                module=module,
                                entity_type=entity_type,
                                wp_id=int(wp_id),
                                odoo_id=int(odoo_id),
                                odoo_model=odoo_model or "",
                                sync_hash=sync_hash,
                                last_synced_at=utcnow(),
                            ))
                        else:
                            row.odoo_id = int(odoo_id)
                            row.odoo_model = odoo_model or row.odoo_model
                            row.sync_hash = sync_hash
                            row.last_synced_at = utcnow()
                return
            except IntegrityError:
                # Concurrent insert for the same wp_id; second pass updates it.
                if attempt == 2:
                    raise
                logger.debug("[MAP] concurrent insert for %s/%s wp_id=%s, retrying as update",
                             module, entity_type, wp_id)

    async def get_odoo_id(self, module: str, entity_type: str, wp_id: int) -> Optional[int]:
        async with self._sessionmaker() as session:
            return await session.scalar(
                select(EntityMap.odoo_id).where(
                    EntityMap.module == module,
                    EntityMap.entity_type == entity_type,
                    EntityMap.wp_id == int(wp_id),
                )
            )

    async def get_wp_id(self, module: str, entity_type: str, odoo_id: int) -> Optional[int]:
        async with self._sessionmaker() as session:
            return await session.scalar(
                select(EntityMap.wp_id)
                .where(
                    EntityMap.module == module,
                    EntityMap.entity_type == entity_type,
                    EntityMap.odoo_id == int(odoo_id),
                )
                .order_by(EntityMap.id.asc())
                .limit(1)
            )

    async def get_sync_hash(self, module: str, entity_type: str, wp_id: int) -> Optional[str]:
        async with self._sessionmaker() as session:
            return await session.scalar(
                select(EntityMap.sync_hash).where(
                    EntityMap.module == module,
                    EntityMap.entity_type == entity_type,
                    EntityMap.wp_id == int(wp_id),
                )
            )

    async def get_odoo_ids_batch(self, module: str, entity_type: str,
                                 wp_ids: Iterable[int]) -> Dict[int, int]:
        """{wp_id: odoo_id} for the mapped ids among wp_ids, in one query."""
        ids = [int(i) for i in wp_ids]
        if not ids:
            return {}
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(EntityMap.wp_id, EntityMap.odoo_id).where(
                    EntityMap.module == module,
                    EntityMap.entity_type == entity_type,
                    EntityMap.wp_id.in_(ids),
                )
            )
            return {int(w): int(o) for w, o in rows.all()}

    async def get_wp_ids_batch(self, module: str, entity_type: str,
                               odoo_ids: Iterable[int]) -> Dict[int, int]:
        """{odoo_id: wp_id}; the lowest wp_id wins when several map to one record."""
        ids = [int(i) for i in odoo_ids]
        if not ids:
            return {}
        async with self._sessionmaker() as session:
            rows = await session.execute(
                select(EntityMap.odoo_id, EntityMap.wp_id)
                .where(
                    EntityMap.module == module,
                    EntityMap.entity_type == entity_type,
                    EntityMap.odoo_id.in_(ids),
                )
                .order_by(EntityMap.wp_id.asc())
            )
            out: Dict[int, int] = {}
            for o, w in rows.all():
                out.setdefault(int(o), int(w))
            return out

    async def get_all(self, module: str, entity_type: str) -> List[MappingRow]:
        async with self._sessionmaker() as session:
            result = await session.execute(
                select(EntityMap)
                .where(EntityMap.module == module, EntityMap.entity_type == entity_type)
                .order_by(EntityMap.wp_id.asc())
            )
            return [
                {
                    "wp_id": int(r.wp_id),
                    "odoo_id": int(r.odoo_id),
                    "odoo_model": r.odoo_model,
                    "sync_hash": r.sync_hash,
                }
                for r in result.scalars().all()
            ]

    async def remove(self, module: str, entity_type: str, wp_id: int) -> bool:
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(EntityMap).where(
                        EntityMap.module == module,
                        EntityMap.entity_type == entity_type,
                        EntityMap.wp_id == int(wp_id),
                    )
                )
        return (result.rowcount or 0) > 0

    async def remove_by_odoo_id(self, module: str, entity_type: str, odoo_id: int) -> int:
        async with self._sessionmaker() as session:
            async with session.begin():
                result = await session.execute(
                    delete(EntityMap).where(
                        EntityMap.module == module,
                        EntityMap.entity_type == entity_type,
                        EntityMap.odoo_id == int(odoo_id),
                    )
                )
        return result.rowcount or 0
