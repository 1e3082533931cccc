"""Per-client Rate Limiter — fixed window request quota.

Each client identity gets a window that opens on its first request and lasts
``window_seconds``. Within a window at most ``quota`` requests are admitted;
a denied request still counts. Once the window's reset time has passed the
next request starts a fresh window.

A background sweep (every window length) drops expired windows so memory
stays bounded by the number of currently active clients.

Thread-safe via asyncio.Lock (single lock over the window map; no I/O is
done while holding it).
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from relay.core.metrics import RATE_LIMIT_DENIALS

logger = logging.getLogger(__name__)


@dataclass
class ClientWindow:
    """Request counter for a single client within the current window."""

    client_id: str
    request_count: int
    window_reset_time: float  # clock() value after which the window is stale

    def expired(self, now: float) -> bool:
        return now > self.window_reset_time


class ClientRateLimiter:
    """Fixed-window, per-client rate limiter.

    Usage:
        limiter = ClientRateLimiter(quota=10, window_seconds=60)

        if not await limiter.admit(client_ip):
            # 429
            ...
    """

    def __init__(
        self,
        quota: int = 10,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        if quota < 1:
            raise ValueError("quota must be at least 1")
        self.quota = quota
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, ClientWindow] = {}
        self._lock = asyncio.Lock()
        self._sweeper: asyncio.Task | None = None

    async def admit(self, client_id: str) -> bool:
        """Count one request for ``client_id`` and decide whether it may proceed."""
        async with self._lock:
            now = self._clock()
            window = self._windows.get(client_id)

            if window is None or window.expired(now):
                self._windows[client_id] = ClientWindow(
                    client_id=client_id,
                    request_count=1,
                    window_reset_time=now + self.window_seconds,
                )
                return True

            window.request_count += 1
            if window.request_count > self.quota:
                RATE_LIMIT_DENIALS.inc()
                logger.info(
                    "Rate limit exceeded for %s (%d/%d in window)",
                    client_id,
                    window.request_count,
                    self.quota,
                )
                return False

            return True

    async def sweep(self) -> int:
        """Remove expired windows. Returns how many were dropped."""
        async with self._lock:
            now = self._clock()
            stale = [cid for cid, window in self._windows.items() if window.expired(now)]
            for cid in stale:
                del self._windows[cid]

        if stale:
            logger.debug("Rate limiter sweep removed %d expired windows", len(stale))
        return len(stale)

    async def _sweep_forever(self) -> None:
        while True:
            await asyncio.sleep(self.window_seconds)
            await self.sweep()

    def start(self) -> None:
        """Start the periodic sweep task (idempotent)."""
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_forever(), name="rate-limit-sweeper")

    async def stop(self) -> None:
        """Cancel the sweep task."""
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None

    def get_window(self, client_id: str) -> ClientWindow | None:
        return self._windows.get(client_id)

    @property
    def active_clients(self) -> int:
        return len(self._windows)

    def get_stats(self) -> dict:
        return {
            "quota": self.quota,
            "window_seconds": self.window_seconds,
            "active_clients": self.active_clients,
        }
