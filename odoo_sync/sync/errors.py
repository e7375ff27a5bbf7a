# odoo_sync/sync/errors.py
# Exception types raised around Odoo calls and the transient/permanent classifier.
from __future__ import annotations

import enum
from typing import Optional

import httpx


class ErrorType(str, enum.Enum):
    TRANSIENT = "transient"   # network, timeout, 5xx, rate limit, lock contention
    PERMANENT = "permanent"   # access / validation / business rule


class SyncError(Exception):
    """Base class for sync-layer failures."""


class OdooRpcError(SyncError):
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class OdooAuthError(OdooRpcError):
    pass


class CircuitOpenError(OdooRpcError):
    def __init__(self, message: str = "Circuit breaker open: Odoo calls suspended"):
        super().__init__(message, status_code=503)


class LockTimeoutError(SyncError):
    def __init__(self, lock_name: str, timeout: float):
        super().__init__(f"Could not acquire lock {lock_name} within {timeout:g}s")
        self.lock_name = lock_name
        self.timeout = timeout


class UnknownModuleError(SyncError):
    def __init__(self, module: str):
        super().__init__(f'Module "{module}" not found or not registered.')
        self.module = module


class SyncFailed(SyncError):
    """An adapter reported an unsuccessful result without raising."""

    def __init__(self, message: str, error_type: Optional[ErrorType] = None):
        super().__init__(message or "Sync operation reported failure")
        self.error_type = error_type


# Odoo business errors. Checked BEFORE the status code since some
# Odoo versions wrap them in HTTP 500.
_PERMANENT_PATTERNS = (
    "access denied",
    "accesserror",
    "validationerror",
    "usererror",
    "userinputerror",
    "missing required",
    "constraint",
)

_NETWORK_PATTERNS = (
    "http error",
    "timed out",
    "timeout",
    "connection refused",
    "could not resolve",
    "name or service not known",
)


def _status_code(error: BaseException) -> Optional[int]:
    code = getattr(error, "status_code", None)
    if code is None and isinstance(error, httpx.HTTPStatusError):
        code = error.response.status_code
    try:
        return int(code) if code is not None else None
    except (TypeError, ValueError):
        return None


def classify(error: BaseException) -> ErrorType:
    """
    Map a caught failure to Transient or Permanent.

    Precedence: business-error text, then 429/503, then any 5xx, then
    network-failure text. Anything unrecognized is Transient.
    """
    if isinstance(error, (LockTimeoutError, CircuitOpenError)):
        return ErrorType.TRANSIENT

    message = str(error).lower()
    if any(p in message for p in _PERMANENT_PATTERNS):
        return ErrorType.PERMANENT

    code = _status_code(error)
    if code in (429, 503):
        return ErrorType.TRANSIENT
    if code is not None and 500 <= code < 600:
        return ErrorType.TRANSIENT

    if isinstance(error, httpx.TransportError):
        return ErrorType.TRANSIENT
    if any(p in message for p in _NETWORK_PATTERNS):
        return ErrorType.TRANSIENT

    return ErrorType.TRANSIENT
