"""Core types and DTOs for the dispatch engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class PromptTemplateKind(str, Enum):
    """How a backend expects its prompt to be laid out."""

    MISTRAL_INSTRUCT = "mistral_instruct"  # <s>[INST] ... [/INST]
    ZEPHYR_CHAT = "zephyr_chat"  # <|system|> / <|user|> / <|assistant|>
    PHI_INSTRUCT = "phi_instruct"  # Instruct: ... Output:
    QUESTION_ANSWER = "question_answer"  # Question: ... Answer:
    GENERIC = "generic"  # Q: ... A:


class ResponseExtractionKind(str, Enum):
    """Which template artifacts to strip from a backend's continuation."""

    MISTRAL_INSTRUCT = "mistral_instruct"
    ZEPHYR_CHAT = "zephyr_chat"
    PHI_INSTRUCT = "phi_instruct"
    QUESTION_ANSWER = "question_answer"
    GENERIC = "generic"


class AttemptOutcome(str, Enum):
    """Classification of a single backend call."""

    SUCCESS = "success"
    BUSY = "busy"  # Model loading / service unavailable: retry in place
    TIMEOUT = "timeout"  # Fail over immediately
    ERROR = "error"  # Anything else: fail over after a short wait


class FallbackToken(str, Enum):
    """User-safe stand-ins for a genuine answer."""

    COULD_NOT_GENERATE = "could_not_generate"
    NEEDS_MORE_DETAIL = "needs_more_detail"
    CONNECTIVITY = "connectivity"


FALLBACK_MESSAGES: dict[FallbackToken, str] = {
    FallbackToken.COULD_NOT_GENERATE: "I couldn't generate a response. Please try rephrasing your question.",
    FallbackToken.NEEDS_MORE_DETAIL: "Could you share a bit more detail so I can give you a helpful answer?",
    FallbackToken.CONNECTIVITY: (
        "I'm having trouble connecting to the AI service right now. Please try again in a moment."
    ),
}


# ---------------------------------------------------------------------------
# Backend catalog entries
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class GenerationParameters:
    """Sampling parameters sent along with every call to a backend."""

    max_output_tokens: int = 256
    temperature: float = 0.7
    top_p: float = 0.95
    sampling_enabled: bool = True

    def to_payload(self) -> dict[str, Any]:
        """Render as the Inference API ``parameters`` object."""
        return {
            "max_new_tokens": self.max_output_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
            "do_sample": self.sampling_enabled,
            "return_full_text": False,
        }


@dataclass(frozen=True)
class BackendDescriptor:
    """One entry of the ordered backend catalog."""

    identifier: str
    priority_rank: int = 0
    generation_parameters: GenerationParameters = field(default_factory=GenerationParameters)
    prompt_template_kind: PromptTemplateKind = PromptTemplateKind.GENERIC
    response_extraction_kind: ResponseExtractionKind = ResponseExtractionKind.GENERIC
    max_attempts: int = 3  # Total calls on this backend before failing over


# ---------------------------------------------------------------------------
# Per-call records
# ---------------------------------------------------------------------------


@dataclass
class DispatchAttempt:
    """A single network call made while walking the catalog."""

    backend_identifier: str
    attempt_index: int = 0
    elapsed_wait_before_attempt: float = 0.0  # Seconds slept before issuing the call


@dataclass
class BackendReply:
    """What the backend client reports back for one call.

    ``payload`` holds the decoded JSON (or raw text) on success; failures carry
    an outcome, a short error code and a message instead of raising.
    """

    backend_identifier: str
    outcome: AttemptOutcome = AttemptOutcome.SUCCESS
    payload: Any = None
    status_code: int = 0
    error_code: str = ""  # e.g. "503", "LOADING", "TIMEOUT", "NO_CREDENTIALS"
    error_message: str = ""
    latency_ms: int = 0
    estimated_time: float | None = None  # Reported by the service while a model loads

    @property
    def ok(self) -> bool:
        return self.outcome == AttemptOutcome.SUCCESS


@dataclass(frozen=True)
class NormalizedResult:
    """Terminal output of one request cycle."""

    generated_text: str | None = None
    fallback_token: FallbackToken | None = None
    backend_used: str | None = None
    attempts: int = 0

    @property
    def is_fallback(self) -> bool:
        return self.fallback_token is not None

    @property
    def text(self) -> str:
        """Text to show the user: the generated answer or the fallback message."""
        if self.fallback_token is not None:
            return FALLBACK_MESSAGES[self.fallback_token]
        return self.generated_text or ""

    def to_dict(self) -> dict:
        """Serialize to the JSON body returned to clients."""
        return {
            "generated_text": self.text,
            "backend": self.backend_used,
            "fallback": self.fallback_token.value if self.fallback_token else None,
        }
