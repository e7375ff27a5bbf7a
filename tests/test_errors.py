import httpx
import pytest

from odoo_sync.sync.errors import (
    CircuitOpenError,
    ErrorType,
    LockTimeoutError,
    OdooRpcError,
    SyncFailed,
    classify,
)


def test_business_pattern_beats_status_code():
    err = OdooRpcError("AccessError: no access rights", status_code=500)
    assert classify(err) is ErrorType.PERMANENT


def test_503_with_generic_message_is_transient():
    assert classify(OdooRpcError("Service Unavailable", status_code=503)) is ErrorType.TRANSIENT


def test_unknown_status_and_message_defaults_to_transient():
    assert classify(OdooRpcError("I'm a teapot", status_code=418)) is ErrorType.TRANSIENT


@pytest.mark.parametrize("message", [
    "Odoo RPC error: ValidationError: The field 'name' is required",
    "Access Denied",
    "Odoo RPC error: UserError: You cannot delete a posted entry",
    "Missing required value for field partner_id",
    "duplicate key value violates unique constraint",
])
def test_permanent_patterns(message):
    assert classify(OdooRpcError(message)) is ErrorType.PERMANENT


@pytest.mark.parametrize("message", [
    "HTTP error: connection reset",
    "request timed out",
    "Connection refused",
    "Could not resolve host odoo.example.com",
])
def test_network_patterns(message):
    assert classify(RuntimeError(message)) is ErrorType.TRANSIENT


def test_rate_limit_is_transient():
    assert classify(OdooRpcError("Too many requests", status_code=429)) is ErrorType.TRANSIENT


def test_status_from_httpx_response():
    request = httpx.Request("POST", "https://odoo.example.com/jsonrpc")
    response = httpx.Response(502, request=request)
    err = httpx.HTTPStatusError("Bad gateway", request=request, response=response)
    assert classify(err) is ErrorType.TRANSIENT


def test_lock_and_circuit_errors_are_transient():
    assert classify(LockTimeoutError("odoo_sync_push_crm_contact_1", 5)) is ErrorType.TRANSIENT
    assert classify(CircuitOpenError()) is ErrorType.TRANSIENT


def test_sync_failed_message():
    err = SyncFailed("", ErrorType.PERMANENT)
    assert "failure" in str(err)
    assert err.error_type is ErrorType.PERMANENT
