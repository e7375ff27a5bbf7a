# odoo_sync/sync/failure_notifier.py
from __future__ import annotations

import logging
import time
from typing import Callable, Optional

import httpx

logger = logging.getLogger("uvicorn.error")


class FailureNotifier:
    """
    Alerts an operator when runs keep failing.

    The counter accumulates failures across runs that had no success; any
    success resets it. Alerts are rate-limited by `cooldown` seconds.
    """

    def __init__(self, threshold: int = 5, cooldown: float = 3600.0, alert_url: str = "", *,
                 clock: Callable[[], float] = time.time,
                 http_client: Optional[httpx.AsyncClient] = None):
        self.threshold = max(1, int(threshold))
        self.cooldown = float(cooldown)
        self.alert_url = alert_url or ""
        self._clock = clock
        self._http_client = http_client
        self.consecutive_failures = 0
        self.last_notified_at: Optional[float] = None

    async def check(self, successes: int, failures: int) -> bool:
        """Record one run's counts; return True when an alert was sent."""
        if successes > 0:
            self.consecutive_failures = 0
            return False
        if failures <= 0:
            return False

        self.consecutive_failures += failures
        if self.consecutive_failures < self.threshold:
            return False

        now = self._clock()
        if self.last_notified_at is not None and now - self.last_notified_at < self.cooldown:
            return False

        self.last_notified_at = now
        await self.notify(self.consecutive_failures)
        return True

    async def notify(self, count: int) -> None:
        msg = f"Odoo sync: {count} consecutive job failure(s) with no successful job"
        logger.error("[NOTIFY] %s", msg)
        if not self.alert_url:
            return
        body = {"text": msg, "consecutive_failures": count, "threshold": self.threshold}
        try:
            if self._http_client is not None:
                r = await self._http_client.post(self.alert_url, json=body)
            else:
                async with httpx.AsyncClient(timeout=10) as client:
                    r = await client.post(self.alert_url, json=body)
            r.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("[NOTIFY] alert webhook failed: %s", e)
