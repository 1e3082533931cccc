from __future__ import annotations

from dataclasses import dataclass

import pytest

from relay.gateway.backends import BaseBackendClient
from relay.gateway.catalog import BackendCatalog
from relay.gateway.types import (
    AttemptOutcome,
    BackendDescriptor,
    BackendReply,
    GenerationParameters,
    PromptTemplateKind,
    ResponseExtractionKind,
)


@dataclass
class RecordedCall:
    backend: str
    prompt: str
    timeout: float
    parameters: GenerationParameters | None = None


class FakeBackendClient(BaseBackendClient):
    """Scripted backend client.

    ``behaviors`` maps a backend identifier to one step or a list of steps.
    A step is either an AttemptOutcome (the call fails that way), an Exception
    instance (raised from send), a ready-made BackendReply (returned as is) or
    anything else (returned as the success payload). Lists are consumed one
    step per call; the last step repeats. Unknown backends fail with ERROR.
    """

    def __init__(self, behaviors: dict | None = None, api_key: str = "test-key"):
        super().__init__(api_key)
        self.behaviors = {
            name: list(steps) if isinstance(steps, list) else [steps] for name, steps in (behaviors or {}).items()
        }
        self.calls: list[RecordedCall] = []

    def calls_to(self, backend: str) -> list[RecordedCall]:
        return [c for c in self.calls if c.backend == backend]

    async def send(self, descriptor, prompt, timeout=60.0, parameters=None):
        self.calls.append(RecordedCall(descriptor.identifier, prompt, timeout, parameters))
        steps = self.behaviors.get(descriptor.identifier, [AttemptOutcome.ERROR])
        step = steps.pop(0) if len(steps) > 1 else steps[0]

        if isinstance(step, Exception):
            raise step
        if isinstance(step, BackendReply):
            return step
        if isinstance(step, AttemptOutcome):
            return BackendReply(
                backend_identifier=descriptor.identifier,
                outcome=step,
                error_code=step.value.upper(),
                error_message=f"{descriptor.identifier} {step.value}",
            )
        return BackendReply(backend_identifier=descriptor.identifier, payload=step)


class FakeClock:
    """Manually advanced monotonic clock (seconds)."""

    def __init__(self, now: float = 1_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class SleepRecorder:
    """Drop-in for asyncio.sleep that returns immediately and remembers delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


@dataclass
class TwoBackends:
    catalog: BackendCatalog
    first: str = "test/model-x"
    second: str = "test/model-y"


def make_catalog(*identifiers: str, max_attempts: int = 3) -> BackendCatalog:
    return BackendCatalog(
        BackendDescriptor(
            identifier=identifier,
            prompt_template_kind=PromptTemplateKind.GENERIC,
            response_extraction_kind=ResponseExtractionKind.GENERIC,
            max_attempts=max_attempts,
        )
        for identifier in identifiers
    )


@pytest.fixture
def fake_client_cls():
    return FakeBackendClient


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def catalog_factory():
    return make_catalog


@pytest.fixture
def two_backends():
    return TwoBackends(catalog=make_catalog("test/model-x", "test/model-y"))
