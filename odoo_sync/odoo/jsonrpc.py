#===========================================================================
# odoo_sync/odoo/jsonrpc.py
# Odoo JSON-RPC 2.0 transport (POST /jsonrpc).
# Does NOT retry internally: retry happens at queue level via scheduled_at.
#===========================================================================

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Dict, List, Optional

import httpx

from odoo_sync.sync.errors import OdooAuthError, OdooRpcError

logger = logging.getLogger("uvicorn.error")


class OdooJsonRpc:
    def __init__(self, url: str, database: str, username: str, api_key: str, *,
                 timeout: float = 30.0, verify: bool = True,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.url = (url or "").rstrip("/")
        self.database = database
        self.username = username
        self.api_key = api_key
        self.timeout = timeout
        self.verify = verify
        self._http_client = http_client
        self.uid: Optional[int] = None
        self.server_version: Optional[str] = None
        self._auth_lock = asyncio.Lock()

    async def _post(self, endpoint: str, payload: Dict[str, Any]) -> httpx.Response:
        url = f"{self.url}{endpoint}"
        headers = {"Content-Type": "application/json", "Connection": "keep-alive"}
        if self._http_client is not None:
            return await self._http_client.post(url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self.timeout, verify=self.verify) as client:
            return await client.post(url, json=payload, headers=headers)

    async def rpc_call(self, endpoint: str, params: Dict[str, Any]) -> Any:
        payload = {
            "jsonrpc": "2.0",
            "method": "call",
            "params": params,
            "id": uuid.uuid4().hex[:16],
        }
        if not self.url:
            raise OdooRpcError("Odoo URL is not configured")

        try:
            r = await self._post(endpoint, payload)
        except httpx.TimeoutException as e:
            logger.error("[ODOO] %s timed out: %s", endpoint, e)
            raise OdooRpcError(f"HTTP error: request timed out ({e})") from e
        except httpx.HTTPError as e:
            logger.error("[ODOO] %s HTTP error: %s", endpoint, e)
            raise OdooRpcError(f"HTTP error: {e}") from e

        status = r.status_code
        if status == 429 or status >= 500:
            msg = f"Server error HTTP {status} on {endpoint}."
            logger.error("[ODOO] %s", msg)
            raise OdooRpcError(msg, status_code=status)

        try:
            body = r.json()
        except ValueError:
            raise OdooRpcError(f"Invalid JSON response from Odoo (HTTP {status}).", status_code=status)
        if not isinstance(body, dict):
            raise OdooRpcError(f"Unexpected JSON-RPC response from Odoo (HTTP {status}).", status_code=status)

        if body.get("error"):
            error = body["error"] or {}
            data = error.get("data") or error
            message = data.get("message") or error.get("message") or "Unknown RPC error"
            name = data.get("name") or ""
            context = {"endpoint": endpoint}
            args = params.get("args") or []
            if len(args) > 4:
                context["model"] = args[3]
                context["method"] = args[4]
            logger.error("[ODOO] RPC error %s: %s (%s)", name or "-", message, context)
            # Keep the exception class name in the text: it drives classification.
            label = f"{name.rsplit('.', 1)[-1]}: {message}" if name else message
            raise OdooRpcError(f"Odoo RPC error: {label}", status_code=status if status >= 400 else None)

        return body.get("result")

    async def authenticate(self) -> int:
        uid = await self.rpc_call("/jsonrpc", {
            "service": "common",
            "method": "authenticate",
            "args": [self.database, self.username, self.api_key, {}],
        })
        if not uid:
            raise OdooAuthError("Authentication failed: invalid credentials.")
        self.uid = int(uid)
        try:
            version = await self.rpc_call("/jsonrpc", {"service": "common", "method": "version", "args": []})
            if isinstance(version, dict):
                self.server_version = str(version.get("server_version") or "") or None
        except OdooRpcError as e:
            logger.debug("[ODOO] version lookup failed: %s", e)
        logger.info("[ODOO] authenticated uid=%s url=%s version=%s", self.uid, self.url, self.server_version)
        return self.uid

    async def execute_kw(self, model: str, method: str, args: Optional[List[Any]] = None,
                         kwargs: Optional[Dict[str, Any]] = None) -> Any:
        if self.uid is None:
            async with self._auth_lock:
                # Concurrent first calls share one login.
                if self.uid is None:
                    await self.authenticate()
        return await self.rpc_call("/jsonrpc", {
            "service": "object",
            "method": "execute_kw",
            "args": [
                self.database,
                self.uid,
                self.api_key,
                model,
                method,
                list(args or []),
                dict(kwargs or {}),
            ],
        })
