"""Circuit breaker for the extraction service.

After repeated failures the adapter stops calling the service for a cooldown
period and answers with its fallback immediately, so a dead upstream costs
callers one timeout each instead of one per turn.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class CircuitBreaker:
    """Closed -> open (after N failures) -> half-open (after cooldown)."""

    failure_threshold: int = 3
    cooldown_seconds: float = 60.0
    label: str = "service"
    clock: object = field(default=time.monotonic, repr=False)

    _consecutive_failures: int = field(default=0, init=False, repr=False)
    _opened_at: Optional[float] = field(default=None, init=False, repr=False)

    @property
    def is_open(self) -> bool:
        return self._opened_at is not None

    def should_try(self) -> bool:
        if self._consecutive_failures < self.failure_threshold:
            return True
        # Half-open: let one probe through once the cooldown has elapsed
        if self._opened_at is not None and (self.clock() - self._opened_at) >= self.cooldown_seconds:
            return True
        return False

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("Circuit breaker closed for %s", self.label)
        self._consecutive_failures = 0
        self._opened_at = None

    def record_failure(self) -> None:
        self._consecutive_failures += 1
        if self._consecutive_failures < self.failure_threshold:
            return
        # A failed half-open probe restarts the cooldown
        reopening = self._opened_at is not None
        self._opened_at = self.clock()
        logger.warning(
            "Circuit breaker %s for %s after %d consecutive failures, skipping for %.0fs",
            "re-opened" if reopening else "OPENED",
            self.label,
            self._consecutive_failures,
            self.cooldown_seconds,
        )
