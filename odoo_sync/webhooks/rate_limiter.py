# odoo_sync/webhooks/rate_limiter.py
from __future__ import annotations

import threading
import time
from typing import Callable, Dict, Tuple


class RateLimiter:
    """Fixed-window request counter per key (client address)."""

    def __init__(self, limit: int = 60, window: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.limit = int(limit)
        self.window = float(window)
        self._clock = clock
        self._hits: Dict[str, Tuple[float, int]] = {}
        self._lock = threading.Lock()

    def allow(self, key: str) -> bool:
        if self.limit <= 0:
            return True
        now = self._clock()
        with self._lock:
            started, count = self._hits.get(key, (now, 0))
            if now - started >= self.window:
                started, count = now, 0
            if count >= self.limit:
                self._hits[key] = (started, count)
                return False
            self._hits[key] = (started, count + 1)
            # Drop expired windows so idle clients do not pile up.
            if len(self._hits) > 1024:
                self._hits = {k: v for k, v in self._hits.items() if now - v[0] < self.window}
            return True
