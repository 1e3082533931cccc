"""Relay Gateway — facade wiring all dispatch components together.

Main entry point for the HTTP layer:
  1. Validates input (non-empty, bounded length)
  2. Admits the request through the per-client rate limiter
  3. Dispatches through the backend catalog (retry, backoff, failover)
  4. Returns a NormalizedResult (answer or fallback message)

Also exposes the operator surface: status() and warm_up().

Usage:
    gateway = RelayGateway.from_settings(settings)
    gateway.start()

    result = await gateway.generate(client_id="1.2.3.4", inputs="Is SPF 30 enough?")

    await gateway.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

from relay.core.config import Settings
from relay.core.exceptions import AdmissionDeniedError, ConfigurationError, InputValidationError
from relay.gateway.backends import BaseBackendClient, HuggingFaceBackendClient
from relay.gateway.catalog import BackendCatalog, default_catalog
from relay.gateway.dispatcher import DispatchEngine, DispatchPolicy
from relay.gateway.formatter import PromptFormatter
from relay.gateway.normalizer import ResponseNormalizer
from relay.gateway.rate_limiter import ClientRateLimiter
from relay.gateway.recovery import RecoveryProbe
from relay.gateway.state import GlobalFailureState
from relay.gateway.types import NormalizedResult

logger = logging.getLogger(__name__)

WARM_UP_PROMPT = "Hello, can you help me with a skincare question?"
DEFAULT_MAX_INPUT_LENGTH = 4000


class RelayGateway:
    """Owns the shared state objects and hands them to the engine and the probe."""

    def __init__(
        self,
        client: BaseBackendClient,
        catalog: BackendCatalog | None = None,
        rate_limiter: ClientRateLimiter | None = None,
        state: GlobalFailureState | None = None,
        policy: DispatchPolicy | None = None,
        probe: RecoveryProbe | None = None,
        max_input_length: int = DEFAULT_MAX_INPUT_LENGTH,
        min_viable_length: int | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.catalog = catalog or default_catalog()
        self.client = client
        self.rate_limiter = rate_limiter or ClientRateLimiter()
        self.state = state or GlobalFailureState(current_backend_identifier=self.catalog.primary.identifier)
        self.policy = policy or DispatchPolicy()
        self.max_input_length = max_input_length

        self.probe = probe or RecoveryProbe(self.catalog, client, self.state, sleep=sleep)

        normalizer = (
            ResponseNormalizer(self.catalog, min_viable_length)
            if min_viable_length is not None
            else ResponseNormalizer(self.catalog)
        )
        self.engine = DispatchEngine(
            self.catalog,
            client,
            self.state,
            formatter=PromptFormatter(self.catalog),
            normalizer=normalizer,
            probe=self.probe,
            policy=self.policy,
            sleep=sleep,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        client: BaseBackendClient | None = None,
        catalog: BackendCatalog | None = None,
    ) -> RelayGateway:
        """Build a gateway from application settings."""
        catalog = catalog or default_catalog(max_attempts=settings.max_attempts_per_backend)
        client = client or HuggingFaceBackendClient(
            api_key=settings.huggingface_api_key,
            base_url=settings.huggingface_api_url,
        )
        state = GlobalFailureState(current_backend_identifier=catalog.primary.identifier)
        return cls(
            client=client,
            catalog=catalog,
            rate_limiter=ClientRateLimiter(
                quota=settings.rate_limit_quota,
                window_seconds=settings.rate_limit_window_seconds,
            ),
            state=state,
            policy=DispatchPolicy(
                base_timeout=settings.base_timeout_seconds,
                timeout_increment=settings.timeout_increment_seconds,
                backoff_base=settings.backoff_base_seconds,
                backoff_max=settings.backoff_max_seconds,
                failover_delay=settings.failover_delay_seconds,
                failure_threshold=settings.failure_threshold,
            ),
            probe=RecoveryProbe(
                catalog,
                client,
                state,
                attempt_cap=settings.recovery_attempt_cap,
                cooldown_seconds=settings.recovery_cooldown_seconds,
                probe_timeout=settings.probe_timeout_seconds,
            ),
            max_input_length=settings.max_input_length,
            min_viable_length=settings.min_viable_length,
        )

    # -- lifecycle ---------------------------------------------------------

    def start(self) -> None:
        self.rate_limiter.start()
        if not self.client.has_credentials:
            logger.warning("HUGGINGFACE_API_KEY is not set; every generation request will be refused")

    async def shutdown(self) -> None:
        await self.probe.shutdown()
        await self.rate_limiter.stop()

    # -- request path ------------------------------------------------------

    def validate_input(self, inputs: str | None) -> str:
        if inputs is None or not str(inputs).strip():
            raise InputValidationError('The "inputs" field is required')
        if len(inputs) > self.max_input_length:
            raise InputValidationError("The input text exceeds the maximum allowed length")
        return inputs

    async def generate(self, client_id: str, inputs: str | None, language: str | None = None) -> NormalizedResult:
        """Full request cycle: admit, validate, dispatch.

        Raises:
            AdmissionDeniedError: client over quota
            InputValidationError: missing or oversized input
            ConfigurationError: no API key configured
        """
        if not await self.rate_limiter.admit(client_id):
            raise AdmissionDeniedError()

        text = self.validate_input(inputs)
        return await self.engine.dispatch(text, locale=language)

    # -- operator surface --------------------------------------------------

    def status(self) -> dict:
        """Report the current backend, readiness and the failure streak."""
        snapshot = self.state.snapshot()
        is_ready = (
            snapshot.last_success_timestamp is not None
            and snapshot.consecutive_failure_count < self.policy.failure_threshold
        )
        return {
            "current_backend": snapshot.current_backend_identifier,
            "is_ready": is_ready,
            "consecutive_failures": snapshot.consecutive_failure_count,
        }

    async def warm_up(self, client_id: str | None = None) -> dict:
        """Run one dispatch with a priming prompt so the preferred backend gets loaded.

        When ``client_id`` is given the call is admitted through the rate
        limiter first and raises AdmissionDeniedError once the client is over quota.

        status is "success" when any answer came back, "pending" when every
        backend was still unavailable, "error" when the relay is misconfigured.
        """
        if client_id is not None and not await self.rate_limiter.admit(client_id):
            raise AdmissionDeniedError()

        try:
            result = await self.engine.dispatch(WARM_UP_PROMPT)
        except ConfigurationError as e:
            return {"status": "error", "backend": None, "message": e.message}

        if result.backend_used is None:
            return {
                "status": "pending",
                "backend": None,
                "message": "Models are still loading. Please try again in a moment.",
            }
        return {
            "status": "success",
            "backend": result.backend_used,
            "message": f"{result.backend_used} is warmed up",
        }
