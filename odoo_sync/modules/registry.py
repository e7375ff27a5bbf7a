# odoo_sync/modules/registry.py
from __future__ import annotations

import logging
from typing import Dict, List, Optional

from odoo_sync.modules.base import SyncModule

logger = logging.getLogger("uvicorn.error")


class ModuleRegistry:
    """Module adapters by id. `get` is the resolver handed to SyncEngine."""

    def __init__(self) -> None:
        self._modules: Dict[str, SyncModule] = {}

    def register(self, module: SyncModule) -> None:
        if module.module_id in self._modules:
            logger.warning("[ENGINE] module %s registered twice; replacing", module.module_id)
        self._modules[module.module_id] = module

    def get(self, module_id: str) -> Optional[SyncModule]:
        return self._modules.get(module_id)

    def all(self) -> List[SyncModule]:
        return [self._modules[k] for k in sorted(self._modules)]

    def __contains__(self, module_id: object) -> bool:
        return module_id in self._modules

    def __len__(self) -> int:
        return len(self._modules)
