"""Recovery Probe — background health sweep after sustained dispatch failure.

Triggered by the DispatchEngine once consecutive failures reach the
threshold. Walks the catalog in order with a trivial prompt and a short
timeout; the first backend that answers becomes the current backend and the
failure counters are cleared. If nobody answers, state is left alone and
ordinary dispatches keep trying.

After more than ``attempt_cap`` sweeps without a reset, the probe backs off
for ``cooldown_seconds`` before sweeping again.

Single-flight: triggering while a sweep is running (or a cooldown is pending)
is a no-op. Tasks are owned by the probe and cancelled by ``shutdown()``.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from relay.gateway.backends import BaseBackendClient
from relay.gateway.catalog import BackendCatalog
from relay.gateway.state import GlobalFailureState
from relay.gateway.types import GenerationParameters

logger = logging.getLogger(__name__)

HEALTH_CHECK_PROMPT = "Hello"
HEALTH_CHECK_PARAMETERS = GenerationParameters(
    max_output_tokens=5,
    temperature=1.0,
    top_p=1.0,
    sampling_enabled=False,
)

# Defaults for the probe schedule
RECOVERY_ATTEMPT_CAP = 3
RECOVERY_COOLDOWN = 300.0  # Seconds to wait once the attempt cap is exceeded
PROBE_TIMEOUT = 10.0


class RecoveryProbe:
    """Self-rescheduling, single-flight backend health sweep.

    Usage:
        probe = RecoveryProbe(catalog, client, state)

        probe.trigger()          # fire-and-forget from a request handler
        await probe.run()        # or run a sweep inline
        await probe.shutdown()   # on process exit
    """

    def __init__(
        self,
        catalog: BackendCatalog,
        client: BaseBackendClient,
        state: GlobalFailureState,
        attempt_cap: int = RECOVERY_ATTEMPT_CAP,
        cooldown_seconds: float = RECOVERY_COOLDOWN,
        probe_timeout: float = PROBE_TIMEOUT,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.catalog = catalog
        self.client = client
        self.state = state
        self.attempt_cap = attempt_cap
        self.cooldown_seconds = cooldown_seconds
        self.probe_timeout = probe_timeout
        self._sleep = sleep

        self._running = False
        self._task: asyncio.Task | None = None
        self._cooldown_task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running or (self._task is not None and not self._task.done())

    @property
    def cooling_down(self) -> bool:
        return self._cooldown_task is not None and not self._cooldown_task.done()

    def trigger(self) -> bool:
        """Schedule a sweep in the background. Returns False if one is already in flight."""
        if self.is_running or self.cooling_down:
            return False
        self._task = asyncio.create_task(self.run(), name="recovery-probe")
        return True

    async def run(self) -> str | None:
        """Run one sweep. Returns the identifier of the backend that answered, if any."""
        if self._running:
            return None
        self._running = True
        try:
            if not await self.state.begin_recovery_attempt(self.attempt_cap):
                logger.warning(
                    "Recovery attempts exceeded cap (%d); cooling down for %.0fs",
                    self.attempt_cap,
                    self.cooldown_seconds,
                )
                self._schedule_after_cooldown()
                return None

            logger.info("Recovery sweep started (attempt %d)", self.state.recovery_attempt_count)
            for descriptor in self.catalog:
                try:
                    reply = await self.client.send(
                        descriptor,
                        HEALTH_CHECK_PROMPT,
                        timeout=self.probe_timeout,
                        parameters=HEALTH_CHECK_PARAMETERS,
                    )
                except Exception as e:
                    logger.warning("Health check on %s raised %s: %s", descriptor.identifier, type(e).__name__, e)
                    continue

                if reply.ok:
                    await self.state.record_recovered(descriptor.identifier)
                    logger.info("Recovery sweep: %s is healthy, failure state reset", descriptor.identifier)
                    return descriptor.identifier

                logger.info(
                    "Recovery sweep: %s not ready (%s %s)",
                    descriptor.identifier,
                    reply.outcome.value,
                    reply.error_code,
                )

            logger.warning("Recovery sweep found no healthy backend")
            return None
        finally:
            self._running = False

    def _schedule_after_cooldown(self) -> None:
        if self.cooling_down:
            return
        self._cooldown_task = asyncio.create_task(self._run_after_cooldown(), name="recovery-probe-cooldown")

    async def _run_after_cooldown(self) -> None:
        await self._sleep(self.cooldown_seconds)
        await self.run()

    async def wait_idle(self) -> None:
        """Wait for any in-flight sweep (not a pending cooldown) to finish."""
        if self._task is not None and not self._task.done():
            await self._task

    async def shutdown(self) -> None:
        """Cancel the running sweep and any pending cooldown."""
        for task in (self._task, self._cooldown_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._task = None
        self._cooldown_task = None
