# odoo_sync/sync/locks.py
# Named advisory locks: run-wide processor mutex and push dedup lock.
from __future__ import annotations

import asyncio
import hashlib
import logging
import uuid
from datetime import timedelta
from typing import Callable, Dict, Optional, Protocol

from sqlalchemy import delete
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from odoo_sync.db import utcnow
from odoo_sync.models.jobs import SyncLock
from odoo_sync.sync.errors import LockTimeoutError

logger = logging.getLogger("uvicorn.error")

PROCESSOR_LOCK = "odoo_sync_processor"

_MAX_LOCK_NAME = 64


class LockService(Protocol):
    async def acquire(self, name: str, timeout: float) -> bool: ...

    async def release(self, name: str) -> None: ...


def push_lock_key(module: str, entity_type: str, wp_id: int) -> str:
    """Deterministic lock name for one logical entity."""
    key = f"odoo_sync_push_{module}_{entity_type}_{int(wp_id)}"
    if len(key) > _MAX_LOCK_NAME:
        digest = hashlib.md5(key.encode("utf-8")).hexdigest()
        key = f"odoo_sync_push_{digest}"
    return key


class LocalLockService:
    """In-process locks. Only excludes callers sharing this event loop."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get(self, name: str) -> asyncio.Lock:
        lock = self._locks.get(name)
        if lock is None:
            lock = self._locks[name] = asyncio.Lock()
        return lock

    async def acquire(self, name: str, timeout: float) -> bool:
        lock = self._get(name)
        if timeout <= 0:
            if lock.locked():
                return False
            await lock.acquire()
            return True
        try:
            await asyncio.wait_for(lock.acquire(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def release(self, name: str) -> None:
        lock = self._locks.get(name)
        if lock is not None and lock.locked():
            lock.release()


class DatabaseLockService:
    """
    Locks stored as rows in sync_locks, shared by every process using the
    same database. A row is the lock; the primary key on name makes the
    insert atomic. Rows carry a lease so a crashed holder cannot block forever.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession], *,
                 lease_seconds: float = 300.0, poll_interval: float = 0.05,
                 owner: Optional[str] = None, clock: Callable = utcnow):
        self._sessionmaker = sessionmaker
        self.lease_seconds = lease_seconds
        self.poll_interval = poll_interval
        self.owner = owner or uuid.uuid4().hex
        self._clock = clock

    async def _try_acquire(self, name: str) -> bool:
        now = self._clock()
        try:
            async with self._sessionmaker() as session:
                async with session.begin():
                    # Reclaim an expired lease left behind by a dead holder.
                    await session.execute(
                        delete(SyncLock).where(SyncLock.name == name, SyncLock.expires_at < now)
                    )
                    session.add(SyncLock(
                        name=name,
                        owner=self.owner,
                        expires_at=now + timedelta(seconds=self.lease_seconds),
                    ))
            return True
        except IntegrityError:
            return False

    async def acquire(self, name: str, timeout: float) -> bool:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + max(0.0, timeout)
        while True:
            if await self._try_acquire(name):
                return True
            remaining = deadline - loop.time()
            if remaining <= 0:
                return False
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def release(self, name: str) -> None:
        async with self._sessionmaker() as session:
            async with session.begin():
                await session.execute(
                    delete(SyncLock).where(SyncLock.name == name, SyncLock.owner == self.owner)
                )


class PushLock:
    """
    async with PushLock(locks, key, timeout): ...

    Raises LockTimeoutError (classified Transient) when the lock is not
    acquired in time. Always releases on exit, including on exceptions.
    """

    def __init__(self, service: LockService, name: str, timeout: float = 5.0):
        self.service = service
        self.name = name
        self.timeout = timeout

    async def __aenter__(self) -> "PushLock":
        if not await self.service.acquire(self.name, self.timeout):
            logger.warning("[LOCK] push lock timeout name=%s timeout=%ss", self.name, self.timeout)
            raise LockTimeoutError(self.name, self.timeout)
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.service.release(self.name)
