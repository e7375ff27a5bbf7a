# odoo_sync/models/records.py
from __future__ import annotations
from datetime import datetime
from sqlalchemy import String, Integer, DateTime, Text, Index
from sqlalchemy.orm import Mapped, mapped_column
from odoo_sync.db import Base, utcnow


class LocalRecord(Base):
    """Local-side copy of an entity, used by the generic record-store module."""
    __tablename__ = "local_records"
    __table_args__ = (
        Index("ix_local_records_entity", "module", "entity_type"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    module: Mapped[str] = mapped_column(String(64))
    entity_type: Mapped[str] = mapped_column(String(64))
    data: Mapped[str] = mapped_column(Text, default="{}")   # json
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow)
