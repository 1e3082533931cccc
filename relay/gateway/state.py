"""Process-wide dispatch health: consecutive failures and the current backend.

Owned by the gateway and handed to the DispatchEngine and the RecoveryProbe,
which are its only writers. Every mutation happens under one asyncio.Lock;
nothing awaits network I/O while holding it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass

logger = logging.getLogger(__name__)


@dataclass
class FailureSnapshot:
    """Point-in-time copy of the failure state."""

    consecutive_failure_count: int = 0
    current_backend_identifier: str | None = None
    last_failure_timestamp: float | None = None
    last_success_timestamp: float | None = None
    recovery_attempt_count: int = 0

    def to_dict(self) -> dict:
        return asdict(self)


class GlobalFailureState:
    """Lock-guarded failure counters shared by concurrent dispatches."""

    def __init__(
        self,
        current_backend_identifier: str | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._clock = clock
        self._lock = asyncio.Lock()
        self.consecutive_failure_count = 0
        self.current_backend_identifier = current_backend_identifier
        self.last_failure_timestamp: float | None = None
        self.last_success_timestamp: float | None = None
        self.recovery_attempt_count = 0

    async def record_success(self, backend_identifier: str) -> None:
        """A dispatch attempt succeeded: the failure streak is over."""
        async with self._lock:
            if self.consecutive_failure_count:
                logger.info(
                    "Backend %s answered; clearing %d consecutive failures",
                    backend_identifier,
                    self.consecutive_failure_count,
                )
            self.consecutive_failure_count = 0
            self.current_backend_identifier = backend_identifier
            self.last_success_timestamp = self._clock()

    async def record_failure(self) -> int:
        """Count one failed attempt. Returns the new consecutive failure count."""
        async with self._lock:
            self.consecutive_failure_count += 1
            self.last_failure_timestamp = self._clock()
            return self.consecutive_failure_count

    async def begin_recovery_attempt(self, cap: int) -> bool:
        """Claim one recovery sweep.

        Returns False (and resets the recovery counter) once more than ``cap``
        sweeps have been made, meaning the probe should cool down instead.
        """
        async with self._lock:
            if self.recovery_attempt_count > cap:
                self.recovery_attempt_count = 0
                return False
            self.recovery_attempt_count += 1
            return True

    async def record_recovered(self, backend_identifier: str) -> None:
        """A recovery health check succeeded on ``backend_identifier``."""
        async with self._lock:
            self.consecutive_failure_count = 0
            self.recovery_attempt_count = 0
            self.current_backend_identifier = backend_identifier
            self.last_success_timestamp = self._clock()

    def snapshot(self) -> FailureSnapshot:
        return FailureSnapshot(
            consecutive_failure_count=self.consecutive_failure_count,
            current_backend_identifier=self.current_backend_identifier,
            last_failure_timestamp=self.last_failure_timestamp,
            last_success_timestamp=self.last_success_timestamp,
            recovery_attempt_count=self.recovery_attempt_count,
        )
