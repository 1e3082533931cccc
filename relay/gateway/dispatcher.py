"""Dispatch Engine — ordered failover across the backend catalog.

Walks the catalog as a bounded search over (backend × attempt):

    TryBackend(i, a)
      SUCCESS                       → Done (normalized result)
      BUSY    and a + 1 < cap(i)    → backoff, TryBackend(i, a + 1)
      BUSY    and cap reached       → TryBackend(i + 1, 0)
      TIMEOUT                       → TryBackend(i + 1, 0)
      ERROR                         → short wait, TryBackend(i + 1, 0)
      i == len(catalog)             → Exhausted

Every failed attempt bumps the global consecutive-failure counter; reaching
the threshold kicks off the RecoveryProbe in the background. Exhaustion is
turned into the connectivity fallback message, so callers always get an
answer. A missing API key is detected before any call and raised as
ConfigurationError.

Backoff strategy (busy backends only):
  delay = min(base * 2^attempt + jitter, max_delay)
  jitter = random(0, base * 0.5)

The delay grows strictly until it reaches max_delay and then stays there.
A loading ETA reported by the service raises the delay, up to max_delay.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from relay.core.exceptions import BackendExhaustedError, ConfigurationError
from relay.core.metrics import DISPATCH_ATTEMPTS, FALLBACK_RESPONSES
from relay.gateway.backends import BaseBackendClient
from relay.gateway.catalog import BackendCatalog
from relay.gateway.formatter import PromptFormatter
from relay.gateway.normalizer import ResponseNormalizer
from relay.gateway.recovery import RecoveryProbe
from relay.gateway.state import GlobalFailureState
from relay.gateway.types import (
    AttemptOutcome,
    BackendDescriptor,
    BackendReply,
    DispatchAttempt,
    FallbackToken,
    NormalizedResult,
)

logger = logging.getLogger(__name__)

# Consecutive failed attempts before the recovery probe is started
FAILURE_THRESHOLD = 5

# Extra time granted on top of the HTTP timeout before an attempt is abandoned
_ABANDON_GRACE_SECONDS = 1.0


@dataclass
class DispatchPolicy:
    """Timeout, backoff and failover knobs for the dispatch engine."""

    base_timeout: float = 30.0
    timeout_increment: float = 15.0
    backoff_base: float = 1.0
    backoff_max: float = 10.0
    failover_delay: float = 0.5  # Wait before moving on after a generic error
    failure_threshold: int = FAILURE_THRESHOLD

    def timeout_for(self, attempt_index: int) -> float:
        return self.base_timeout + attempt_index * self.timeout_increment


def calculate_backoff(
    attempt: int,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
) -> float:
    """Calculate exponential backoff with jitter.

    Formula: min(base * 2^attempt + jitter, max_delay)
    Jitter: random(0, base * 0.5)
    """
    exponential = base_delay * (2**attempt)
    jitter = random.uniform(0, base_delay * 0.5)
    return min(exponential + jitter, max_delay)


class DispatchEngine:
    """Formats, sends, retries, fails over and normalizes one request.

    Usage:
        engine = DispatchEngine(catalog, client, state, probe=probe)
        result = await engine.dispatch("How do I treat dry skin?", locale="en")
        result.text  # generated answer or fallback message
    """

    def __init__(
        self,
        catalog: BackendCatalog,
        client: BaseBackendClient,
        state: GlobalFailureState,
        formatter: PromptFormatter | None = None,
        normalizer: ResponseNormalizer | None = None,
        probe: RecoveryProbe | None = None,
        policy: DispatchPolicy | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.catalog = catalog
        self.client = client
        self.state = state
        self.formatter = formatter or PromptFormatter(catalog)
        self.normalizer = normalizer or ResponseNormalizer(catalog)
        self.probe = probe
        self.policy = policy or DispatchPolicy()
        self._sleep = sleep

    @property
    def max_attempts(self) -> int:
        """Upper bound on network calls a single dispatch can make."""
        return sum(d.max_attempts for d in self.catalog)

    async def dispatch(self, raw_input: str, locale: str | None = None) -> NormalizedResult:
        """Answer ``raw_input``; degrades to the connectivity fallback when every backend fails.

        Raises:
            ConfigurationError: no API key is configured (nothing is sent).
        """
        try:
            return await self._search(raw_input, locale)
        except BackendExhaustedError as e:
            logger.warning("Dispatch exhausted the catalog after %d attempts: %s", e.attempts, e.message)
            FALLBACK_RESPONSES.labels(token=FallbackToken.CONNECTIVITY.value).inc()
            return NormalizedResult(fallback_token=FallbackToken.CONNECTIVITY, attempts=e.attempts)

    async def _search(self, raw_input: str, locale: str | None) -> NormalizedResult:
        if not self.client.has_credentials:
            raise ConfigurationError("The AI service is not configured. Please contact the administrator.")

        trail: list[DispatchAttempt] = []
        backend_index = 0
        attempt_index = 0
        wait = 0.0

        while backend_index < len(self.catalog):
            descriptor = self.catalog[backend_index]
            trail.append(
                DispatchAttempt(
                    backend_identifier=descriptor.identifier,
                    attempt_index=attempt_index,
                    elapsed_wait_before_attempt=wait,
                )
            )

            prompt = self.formatter.format(raw_input, descriptor.identifier, locale)
            reply = await self._call(descriptor, prompt, self.policy.timeout_for(attempt_index))
            DISPATCH_ATTEMPTS.labels(backend=descriptor.identifier, outcome=reply.outcome.value).inc()

            if reply.ok:
                return await self._complete(descriptor, reply, len(trail))

            await self._record_failure()

            if reply.outcome == AttemptOutcome.BUSY and attempt_index + 1 < descriptor.max_attempts:
                wait = calculate_backoff(attempt_index, self.policy.backoff_base, self.policy.backoff_max)
                if reply.estimated_time:
                    # Loading ETA reported by the service, never beyond the backoff cap
                    wait = max(wait, min(reply.estimated_time, self.policy.backoff_max))
                logger.info(
                    "%s busy (%s); retry %d/%d in %.1fs",
                    descriptor.identifier,
                    reply.error_message or reply.error_code,
                    attempt_index + 1,
                    descriptor.max_attempts - 1,
                    wait,
                )
                attempt_index += 1
            else:
                if reply.outcome == AttemptOutcome.ERROR:
                    wait = self.policy.failover_delay
                else:
                    wait = 0.0
                logger.warning(
                    "%s failed (%s %s: %s); failing over",
                    descriptor.identifier,
                    reply.outcome.value,
                    reply.error_code,
                    reply.error_message,
                    extra={"backend": descriptor.identifier},
                )
                backend_index += 1
                attempt_index = 0

            if wait > 0 and backend_index < len(self.catalog):
                await self._sleep(wait)

        raise BackendExhaustedError(
            "Tried " + ", ".join(f"{a.backend_identifier}#{a.attempt_index}" for a in trail),
            attempts=len(trail),
        )

    async def _call(self, descriptor: BackendDescriptor, prompt: str, timeout: float) -> BackendReply:
        """Issue one call; an attempt that overruns its timeout is abandoned as TIMEOUT."""
        try:
            return await asyncio.wait_for(
                self.client.send(descriptor, prompt, timeout=timeout),
                timeout=timeout + _ABANDON_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            return BackendReply(
                backend_identifier=descriptor.identifier,
                outcome=AttemptOutcome.TIMEOUT,
                error_code="TIMEOUT",
                error_message=f"Abandoned after {timeout}s",
            )
        except Exception as e:
            logger.exception("Unexpected error calling %s", descriptor.identifier)
            return BackendReply(
                backend_identifier=descriptor.identifier,
                outcome=AttemptOutcome.ERROR,
                error_code=type(e).__name__,
                error_message=str(e),
            )

    async def _complete(self, descriptor: BackendDescriptor, reply: BackendReply, attempts: int) -> NormalizedResult:
        extracted = self.normalizer.extract(reply.payload, descriptor.identifier)
        # A degraded (too short / empty) answer still counts as a successful dispatch
        await self.state.record_success(descriptor.identifier)

        if isinstance(extracted, FallbackToken):
            FALLBACK_RESPONSES.labels(token=extracted.value).inc()
            return NormalizedResult(fallback_token=extracted, backend_used=descriptor.identifier, attempts=attempts)

        logger.info(
            "Answered by %s after %d attempt(s) in %dms",
            descriptor.identifier,
            attempts,
            reply.latency_ms,
            extra={"backend": descriptor.identifier},
        )
        return NormalizedResult(generated_text=extracted, backend_used=descriptor.identifier, attempts=attempts)

    async def _record_failure(self) -> None:
        failures = await self.state.record_failure()
        if failures >= self.policy.failure_threshold and self.probe is not None:
            if self.probe.trigger():
                logger.warning("%d consecutive failures; recovery probe started", failures)
