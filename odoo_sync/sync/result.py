# odoo_sync/sync/result.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from odoo_sync.sync.errors import ErrorType


@dataclass(frozen=True)
class SyncResult:
    """
    Outcome of push_to_odoo() / pull_from_odoo().

    entity_id is the Odoo ID for a push and the local ID for a pull.
    """
    success: bool
    entity_id: Optional[int] = None
    message: str = ""
    error_type: Optional[ErrorType] = None

    @classmethod
    def ok(cls, entity_id: Optional[int] = None, message: str = "") -> "SyncResult":
        return cls(True, entity_id, message, None)

    @classmethod
    def failure(cls, message: str, error_type: ErrorType = ErrorType.TRANSIENT,
                entity_id: Optional[int] = None) -> "SyncResult":
        return cls(False, entity_id, message, error_type)

    def __bool__(self) -> bool:
        return self.success


@dataclass(frozen=True)
class SyncContext:
    """
    Per-call dispatch context.

    importing=True marks writes that come from Odoo, so local change
    handlers must not enqueue a push back.
    """
    importing: bool = False
