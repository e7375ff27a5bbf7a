# odoo_sync/odoo/client.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

from odoo_sync.sync.circuit_breaker import CircuitBreaker
from odoo_sync.sync.errors import CircuitOpenError, ErrorType, OdooRpcError, classify

logger = logging.getLogger("uvicorn.error")


class Transport(Protocol):
    async def execute_kw(self, model: str, method: str, args: Optional[List[Any]] = None,
                         kwargs: Optional[Dict[str, Any]] = None) -> Any: ...


class OdooClient:
    """
    ORM-style helpers over a transport, gated by the shared circuit breaker.

    Transport failures count against the breaker; business errors do not
    (Odoo answered, so it is reachable).
    """

    def __init__(self, transport: Transport, breaker: CircuitBreaker):
        self.transport = transport
        self.breaker = breaker

    async def execute(self, model: str, method: str, args: Optional[List[Any]] = None,
                      kwargs: Optional[Dict[str, Any]] = None) -> Any:
        if not self.breaker.is_available():
            raise CircuitOpenError()
        try:
            result = await self.transport.execute_kw(model, method, args or [], kwargs or {})
        except OdooRpcError as e:
            if classify(e) is ErrorType.PERMANENT:
                self.breaker.record_success()
            else:
                self.breaker.record_failure()
            raise
        self.breaker.record_success()
        return result

    async def search(self, model: str, domain: List[Any], *, limit: Optional[int] = None,
                     context: Optional[Dict[str, Any]] = None) -> List[int]:
        kwargs: Dict[str, Any] = {}
        if limit:
            kwargs["limit"] = limit
        if context:
            kwargs["context"] = context
        return list(await self.execute(model, "search", [domain], kwargs) or [])

    async def read(self, model: str, ids: List[int], fields: Optional[List[str]] = None) -> List[Dict[str, Any]]:
        return list(await self.execute(model, "read", [list(ids)], {"fields": fields or []}) or [])

    async def create(self, model: str, values: Dict[str, Any]) -> int:
        new_id = await self.execute(model, "create", [values])
        if isinstance(new_id, list):
            new_id = new_id[0] if new_id else None
        if not new_id:
            raise OdooRpcError(f"Odoo returned no id for {model}.create")
        return int(new_id)

    async def write(self, model: str, ids: List[int], values: Dict[str, Any]) -> bool:
        return bool(await self.execute(model, "write", [list(ids), values]))

    async def unlink(self, model: str, ids: List[int]) -> bool:
        return bool(await self.execute(model, "unlink", [list(ids)]))
