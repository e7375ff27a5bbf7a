# odoo_sync/db.py
from __future__ import annotations

import os
import pathlib
import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy.ext.asyncio import (
    create_async_engine,
    AsyncEngine,
    async_sessionmaker,
    AsyncSession,
)
from sqlalchemy.orm import DeclarativeBase

from odoo_sync.config import settings

logger = logging.getLogger("uvicorn.error")


class Base(DeclarativeBase):
    pass


def utcnow() -> datetime:
    """Naive UTC timestamp (SQLite has no timezone-aware DATETIME)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _resolve_dsn(dsn: Optional[str] = None) -> str:
    """
    Prefer an explicit DSN, then settings.DATABASE_URL, then env var DATABASE_URL,
    else default to a local SQLite database under ./data/.
    """
    dsn = (
        dsn
        or getattr(settings, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL")
        or "sqlite+aiosqlite:///./data/odoo_sync.db"
    )

    # If using SQLite, make sure the folder exists so SQLAlchemy can create the file.
    if dsn.startswith("sqlite") and ":memory:" not in dsn:
        try:
            # Handle sqlite+aiosqlite:///./data/odoo_sync.db
            # or sqlite+aiosqlite:////code/data/odoo_sync.db
            sep = "///" if "///" in dsn else "//"
            path_part = dsn.split(sep, 1)[1] if sep in dsn else ""
            if path_part:
                path = pathlib.Path(path_part).resolve()
                path.parent.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.warning("[DB] Could not ensure SQLite directory exists: %s", e)

    return dsn


def create_engine(dsn: Optional[str] = None) -> AsyncEngine:
    """
    Build an AsyncEngine. Called once at wiring time; the engine is passed
    to whoever needs it rather than kept in a module global.
    """
    url = _resolve_dsn(dsn)
    engine = create_async_engine(
        url,
        echo=False,
        pool_pre_ping=True,
    )
    logger.info("[DB] engine initialized for %s", url)
    return engine


def make_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False)


async def init_db(engine: AsyncEngine) -> None:
    """
    Ensure a first connection can be acquired and all tables exist.
    """
    # Register ORM models on Base.metadata before create_all.
    import odoo_sync.models.jobs  # noqa: F401
    import odoo_sync.models.records  # noqa: F401

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        logger.error("[DB] initial connect failed: %s", e)
        raise
