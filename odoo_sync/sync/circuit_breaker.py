# odoo_sync/sync/circuit_breaker.py
from __future__ import annotations

import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("uvicorn.error")

CLOSED = "closed"
OPEN = "open"
HALF_OPEN = "half_open"

PROBE_TTL = 60.0


class CircuitBreaker:
    """
    Process-wide gate in front of every Odoo call.

    State is derived on each check from two values: a consecutive
    failure counter and the time the circuit opened.

      - closed:    opened_at unset
      - open:      opened_at set, recovery delay not yet elapsed
      - half-open: opened_at set, recovery delay elapsed (one probe call at a time)

    The failure counter is not cleared when the circuit opens, so a single
    failed probe re-opens it. Any success resets everything.

    Only one caller gets the half-open probe slot. The slot is released by
    record_success / record_failure, or expires after probe_ttl seconds so a
    probe that never reported back cannot wedge the circuit.
    """

    def __init__(self, threshold: int = 3, recovery_delay: float = 300.0,
                 clock: Callable[[], float] = time.time, probe_ttl: float = PROBE_TTL):
        self.threshold = max(1, int(threshold))
        self.recovery_delay = float(recovery_delay)
        self._clock = clock
        self._lock = threading.Lock()
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.probe_ttl = float(probe_ttl)
        self._probe_at: Optional[float] = None

    def is_available(self) -> bool:
        with self._lock:
            if self.opened_at is None:
                return True
            now = self._clock()
            if (now - self.opened_at) < self.recovery_delay:
                return False
            if self._probe_at is not None and (now - self._probe_at) < self.probe_ttl:
                return False
            self._probe_at = now
            logger.info("[CB] half-open: allowing probe call")
            return True

    def record_success(self) -> None:
        with self._lock:
            if self.opened_at is not None:
                logger.info("[CB] closed: Odoo connection recovered")
            self.failure_count = 0
            self.opened_at = None
            self._probe_at = None

    def record_failure(self) -> None:
        with self._lock:
            self._probe_at = None
            self.failure_count += 1
            if self.failure_count < self.threshold:
                return
            now = self._clock()
            # Open on first crossing; re-open (restart the delay) after a failed probe.
            if self.opened_at is None or (now - self.opened_at) >= self.recovery_delay:
                self.opened_at = now
                logger.warning(
                    "[CB] opened: Odoo appears unreachable (consecutive_failures=%d, recovery_delay=%ss)",
                    self.failure_count, self.recovery_delay,
                )

    @property
    def state(self) -> str:
        with self._lock:
            if self.opened_at is None:
                return CLOSED
            if (self._clock() - self.opened_at) >= self.recovery_delay:
                return HALF_OPEN
            return OPEN

    def snapshot(self) -> Dict[str, Any]:
        state = self.state
        with self._lock:
            retry_in = None
            if self.opened_at is not None:
                retry_in = max(0.0, self.recovery_delay - (self._clock() - self.opened_at))
            return {
                "state": state,
                "failure_count": self.failure_count,
                "opened_at": self.opened_at,
                "retry_in": retry_in,
                "threshold": self.threshold,
                "recovery_delay": self.recovery_delay,
            }
