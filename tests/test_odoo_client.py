import asyncio
import json

import httpx
import pytest

from odoo_sync.odoo.client import OdooClient
from odoo_sync.odoo.jsonrpc import OdooJsonRpc
from odoo_sync.sync.circuit_breaker import CircuitBreaker
from odoo_sync.sync.errors import (
    CircuitOpenError,
    ErrorType,
    OdooAuthError,
    OdooRpcError,
    classify,
)


def _rpc(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return client, OdooJsonRpc("https://odoo.example.com/", "prod", "bot", "k3y-secret", http_client=client)


def _ok(result):
    return httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "result": result})


def test_authenticate_then_execute_kw():
    bodies = []

    def handler(request):
        body = json.loads(request.content)
        bodies.append(body)
        params = body["params"]
        if params["method"] == "authenticate":
            return _ok(7)
        if params["method"] == "version":
            return _ok({"server_version": "17.0"})
        return _ok([1, 2])

    async def scenario():
        client, rpc = _rpc(handler)
        async with client:
            result = await rpc.execute_kw("res.partner", "search", [[]], {"limit": 2})
        return rpc, result

    rpc, result = asyncio.run(scenario())
    assert result == [1, 2]
    assert rpc.uid == 7
    assert rpc.server_version == "17.0"
    assert bodies[-1]["params"]["args"] == ["prod", 7, "k3y-secret", "res.partner", "search", [[]], {"limit": 2}]


def test_concurrent_first_calls_authenticate_once():
    methods = []

    def handler(request):
        method = json.loads(request.content)["params"]["method"]
        methods.append(method)
        if method == "authenticate":
            return _ok(7)
        if method == "version":
            return _ok({"server_version": "17.0"})
        return _ok(True)

    async def scenario():
        client, rpc = _rpc(handler)
        async with client:
            return await asyncio.gather(*(rpc.execute_kw("res.partner", "write", [[i], {}]) for i in range(3)))

    assert asyncio.run(scenario()) == [True, True, True]
    assert methods.count("authenticate") == 1
    assert methods.count("execute_kw") == 3


def test_bad_credentials():
    async def scenario():
        client, rpc = _rpc(lambda request: _ok(False))
        async with client:
            await rpc.authenticate()

    with pytest.raises(OdooAuthError):
        asyncio.run(scenario())


def test_rpc_error_keeps_exception_name():
    def handler(request):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": "1", "error": {
            "code": 200,
            "message": "Odoo Server Error",
            "data": {"name": "odoo.exceptions.ValidationError", "message": "Invalid VAT"},
        }})

    async def scenario():
        client, rpc = _rpc(handler)
        rpc.uid = 1
        async with client:
            await rpc.execute_kw("res.partner", "create", [{}])

    with pytest.raises(OdooRpcError) as exc:
        asyncio.run(scenario())
    assert "ValidationError: Invalid VAT" in str(exc.value)
    assert classify(exc.value) is ErrorType.PERMANENT


def test_server_error_status_is_attached():
    async def scenario():
        client, rpc = _rpc(lambda request: httpx.Response(503, text="<html>down</html>"))
        async with client:
            await rpc.rpc_call("/jsonrpc", {"service": "common", "method": "version", "args": []})

    with pytest.raises(OdooRpcError) as exc:
        asyncio.run(scenario())
    assert exc.value.status_code == 503


def test_network_failure_becomes_rpc_error():
    def handler(request):
        raise httpx.ConnectError("Connection refused", request=request)

    async def scenario():
        client, rpc = _rpc(handler)
        async with client:
            await rpc.rpc_call("/jsonrpc", {})

    with pytest.raises(OdooRpcError) as exc:
        asyncio.run(scenario())
    assert str(exc.value).startswith("HTTP error")
    assert classify(exc.value) is ErrorType.TRANSIENT


class FlakyTransport:
    def __init__(self, errors):
        self.errors = list(errors)
        self.calls = 0

    async def execute_kw(self, model, method, args=None, kwargs=None):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return 5


def test_client_opens_breaker_on_transport_failures():
    transport = FlakyTransport([OdooRpcError("HTTP error: timed out")] * 3)
    breaker = CircuitBreaker(threshold=3, recovery_delay=300)
    client = OdooClient(transport, breaker)

    async def scenario():
        for _ in range(3):
            with pytest.raises(OdooRpcError):
                await client.create("res.partner", {"name": "x"})
        with pytest.raises(CircuitOpenError):
            await client.create("res.partner", {"name": "x"})

    asyncio.run(scenario())
    assert transport.calls == 3


def test_business_errors_do_not_trip_breaker():
    transport = FlakyTransport([OdooRpcError("Odoo RPC error: UserError: nope")] * 3)
    breaker = CircuitBreaker(threshold=3, recovery_delay=300)
    client = OdooClient(transport, breaker)

    async def scenario():
        for _ in range(3):
            with pytest.raises(OdooRpcError):
                await client.write("res.partner", [1], {"name": "x"})
        return await client.create("res.partner", {"name": "x"})

    assert asyncio.run(scenario()) == 5
    assert breaker.is_available()
