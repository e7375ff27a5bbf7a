import asyncio
import itertools
from typing import Any, Dict, List, Optional

import pytest

from odoo_sync.config import Settings
from odoo_sync.services import build_services
from odoo_sync.sync.errors import OdooRpcError
from odoo_sync.sync.locks import LocalLockService


class FakeOdoo:
    """In-memory stand-in for the JSON-RPC transport (execute_kw only)."""

    def __init__(self):
        self.records: Dict[str, Dict[int, Dict[str, Any]]] = {}
        self.calls: List[tuple] = []
        self.fail: Optional[Exception] = None
        self.create_delay = 0.0
        self._ids = itertools.count(100)

    def add(self, model: str, record_id: int, **values) -> None:
        self.records.setdefault(model, {})[record_id] = dict(values)

    def count(self, method: str) -> int:
        return sum(1 for _, m, _ in self.calls if m == method)

    async def execute_kw(self, model, method, args=None, kwargs=None):
        args = list(args or [])
        kwargs = dict(kwargs or {})
        self.calls.append((model, method, args))
        if self.fail is not None:
            raise self.fail
        table = self.records.setdefault(model, {})

        if method == "create":
            if self.create_delay:
                await asyncio.sleep(self.create_delay)
            new_id = next(self._ids)
            table[new_id] = dict(args[0])
            return new_id
        if method == "write":
            for i in args[0]:
                table.setdefault(i, {}).update(args[1])
            return True
        if method == "unlink":
            for i in args[0]:
                table.pop(i, None)
            return True
        if method == "read":
            return [dict(table[i], id=i) for i in args[0] if i in table]
        if method == "search":
            ids = sorted(table)
            for term in args[0] if args else []:
                if list(term[:2]) == ["id", "in"]:
                    wanted = set(term[2])
                    ids = [i for i in ids if i in wanted]
            return ids
        raise OdooRpcError(f"unsupported method {method}")


def make_settings(**overrides) -> Settings:
    cfg = Settings()
    cfg.ODOO_URL = ""
    cfg.SYNC_WORKER_ENABLED = False
    cfg.WEBHOOK_TOKEN = "test-token-123"
    cfg.ADMIN_USER = "admin"
    cfg.ADMIN_PASS = "adminpass"
    cfg.MODULE_MODELS = {"crm": {"contact": "res.partner", "company": "res.company"}}
    cfg.PUSH_LOCK_TIMEOUT = 5.0
    cfg.SYNC_LOCK_TIMEOUT = 0.05
    for key, value in overrides.items():
        setattr(cfg, key, value)
    return cfg


class Harness:
    """Builds a fresh service graph on a temp SQLite file for each scenario."""

    def __init__(self, tmp_path):
        self.dsn = f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}"
        self.odoo = FakeOdoo()

    def build(self, **overrides):
        return build_services(
            make_settings(**overrides),
            dsn=self.dsn,
            transport=self.odoo,
            lock_service=LocalLockService(),
        )

    def run(self, scenario, **overrides):
        async def main():
            services = self.build(**overrides)
            await services.init()
            try:
                return await scenario(services)
            finally:
                await services.close()

        return asyncio.run(main())


@pytest.fixture
def harness(tmp_path):
    return Harness(tmp_path)


@pytest.fixture
def odoo(harness):
    return harness.odoo
