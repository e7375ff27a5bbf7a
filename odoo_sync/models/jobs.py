# odoo_sync/models/jobs.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column
from odoo_sync.db import Base, utcnow

# Job status values
PENDING = "pending"
PROCESSING = "processing"
COMPLETED = "completed"
FAILED = "failed"
STATUSES = (PENDING, PROCESSING, COMPLETED, FAILED)

# Directions
WP_TO_ODOO = "wp_to_odoo"
ODOO_TO_WP = "odoo_to_wp"
DIRECTIONS = (WP_TO_ODOO, ODOO_TO_WP)

# Actions
CREATE = "create"
UPDATE = "update"
DELETE = "delete"
ACTIONS = (CREATE, UPDATE, DELETE)


class SyncJob(Base):
    __tablename__ = "sync_queue"
    __table_args__ = (
        Index("ix_sync_queue_due", "status", "priority", "scheduled_at"),
        Index("ix_sync_queue_entity", "module", "entity_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module: Mapped[str] = mapped_column(String(64))                   # e.g. "crm"
    direction: Mapped[str] = mapped_column(String(16))                # wp_to_odoo | odoo_to_wp
    entity_type: Mapped[str] = mapped_column(String(64))              # e.g. "contact"
    action: Mapped[str] = mapped_column(String(16))                   # create | update | delete
    wp_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    odoo_id: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    payload: Mapped[str | None] = mapped_column(Text, nullable=True)  # json
    priority: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default=PENDING, index=True)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=3, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class EntityMap(Base):
    __tablename__ = "entity_map"
    __table_args__ = (
        UniqueConstraint("module", "entity_type", "wp_id", name="uq_entity_map_wp"),
        Index("ix_entity_map_odoo", "module", "entity_type", "odoo_id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module: Mapped[str] = mapped_column(String(64))
    entity_type: Mapped[str] = mapped_column(String(64))
    wp_id: Mapped[int] = mapped_column(Integer)
    odoo_id: Mapped[int] = mapped_column(Integer)
    odoo_model: Mapped[str] = mapped_column(String(128), default="")
    sync_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    last_synced_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)


class SyncLock(Base):
    __tablename__ = "sync_locks"

    name: Mapped[str] = mapped_column(String(191), primary_key=True)
    owner: Mapped[str] = mapped_column(String(64))
    expires_at: Mapped[datetime] = mapped_column(DateTime)
