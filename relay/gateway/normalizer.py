"""Response Normalizer — turns raw backend payloads into clean answer text.

Pipeline (deterministic, no I/O):
  1. Coerce the payload shape (list of records, single record, raw string)
     into one continuation string
  2. Empty continuation → COULD_NOT_GENERATE token
  3. Strip backend-specific template artifacts (role markers, [INST] blocks...)
  4. Generic cleanup: leading role labels, echoed question lines
  5. Remove leaked guideline/system-instruction phrases
  6. Trim whitespace
  7. Too short → NEEDS_MORE_DETAIL token

This is idempotent on clean text — can be applied to its own output safely.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable
from typing import Any

from relay.gateway.catalog import BackendCatalog, default_catalog
from relay.gateway.formatter import GUIDELINE_PREAMBLES
from relay.gateway.types import FallbackToken, ResponseExtractionKind

logger = logging.getLogger(__name__)

DEFAULT_MIN_VIABLE_LENGTH = 10

# Keys the Inference API uses for the generated continuation, by task type
_TEXT_KEYS = ("generated_text", "summary_text", "translation_text", "text")

_LEADING_ROLE_LABEL = re.compile(r"^\s*(?:assistant|system|bot|ai|dermi)\s*:\s*", re.IGNORECASE)
_QUESTION_ECHO_LINE = re.compile(r"^\s*(?:q|question|user|human|instruct)\s*:", re.IGNORECASE)
_SPECIAL_TOKENS = re.compile(r"</?s>|\[/?INST\]|<\|(?:system|user|assistant|endoftext|end)\|>")


def _build_denylist() -> list[str]:
    phrases: list[str] = [
        "As an AI language model,",
        "As an AI language model",
        "I am an AI language model.",
    ]
    # Every sentence of every guideline preamble, so a model repeating its
    # instructions does not leak them to the user.
    for preamble in GUIDELINE_PREAMBLES.values():
        for sentence in re.split(r"(?<=[.])\s+", preamble):
            sentence = sentence.strip()
            if sentence:
                phrases.append(sentence)
    # Longest first so a full sentence is removed before any of its fragments
    return sorted(set(phrases), key=len, reverse=True)


LEAKED_INSTRUCTION_DENYLIST: list[str] = _build_denylist()


# ---------------------------------------------------------------------------
# Step 1: payload coercion
# ---------------------------------------------------------------------------


def _text_from_record(record: dict) -> str | None:
    for key in _TEXT_KEYS:
        if key not in record:
            continue
        value = record[key]
        if isinstance(value, str):
            return value
        # A known text key holding null means the backend generated nothing
        if value is None:
            return ""
    return None


def coerce_payload(payload: Any) -> str:
    """Reduce any payload shape the Inference API returns to one string."""
    if payload is None:
        return ""
    if isinstance(payload, str):
        return payload

    if isinstance(payload, (list, tuple)):
        if not payload:
            return ""
        first = payload[0]
        if isinstance(first, str):
            return first
        if isinstance(first, dict):
            text = _text_from_record(first)
            if text is not None:
                return text
        # Nested [[{...}]] as returned by some pipelines
        if isinstance(first, (list, tuple)):
            return coerce_payload(first)

    if isinstance(payload, dict):
        text = _text_from_record(payload)
        if text is not None:
            return text
        if not payload:
            return ""

    # Unknown but non-empty shape: hand back a dump rather than nothing
    return json.dumps(payload, ensure_ascii=False, default=str)


# ---------------------------------------------------------------------------
# Step 3: backend-specific artifact stripping
# ---------------------------------------------------------------------------


def _after_last(text: str, marker: str) -> str:
    index = text.rfind(marker)
    return text[index + len(marker) :] if index != -1 else text


def _before_first(text: str, marker: str) -> str:
    index = text.find(marker)
    return text[:index] if index != -1 else text


def _strip_leading(text: str, pattern: re.Pattern) -> str:
    return pattern.sub("", text, count=1)


# First "Answer:"/"A:" at the start of a line; everything before it is echoed prompt
_ANSWER_MARKER = re.compile(r"(?:^|\n)[ \t]*(?:answer|a)[ \t]*:[ \t]*", re.IGNORECASE)
_LEADING_OUTPUT = re.compile(r"^\s*output\s*:\s*", re.IGNORECASE)


def _strip_mistral(text: str) -> str:
    text = _after_last(text, "[/INST]")
    text = _before_first(text, "[INST]")
    return _SPECIAL_TOKENS.sub("", text)


def _strip_zephyr(text: str) -> str:
    text = _after_last(text, "<|assistant|>")
    text = _before_first(text, "<|user|>")
    return _SPECIAL_TOKENS.sub("", text)


def _strip_phi(text: str) -> str:
    text = _after_last(text, "Output:")
    text = _before_first(text, "Instruct:")
    text = _before_first(text, "<|endoftext|>")
    return _strip_leading(text, _LEADING_OUTPUT)


def _after_answer_marker(text: str) -> str:
    match = _ANSWER_MARKER.search(text)
    return text[match.end() :] if match else text


def _strip_question_answer(text: str) -> str:
    text = _before_first(text, "\nQuestion:")
    return _after_answer_marker(text)


def _strip_generic(text: str) -> str:
    text = _before_first(text, "\nQ:")
    return _after_answer_marker(text)


_ARTIFACT_STRIPPERS: dict[ResponseExtractionKind, Callable[[str], str]] = {
    ResponseExtractionKind.MISTRAL_INSTRUCT: _strip_mistral,
    ResponseExtractionKind.ZEPHYR_CHAT: _strip_zephyr,
    ResponseExtractionKind.PHI_INSTRUCT: _strip_phi,
    ResponseExtractionKind.QUESTION_ANSWER: _strip_question_answer,
    ResponseExtractionKind.GENERIC: _strip_generic,
}


def strip_template_artifacts(text: str, kind: ResponseExtractionKind) -> str:
    """Remove the prompt scaffolding a backend of ``kind`` tends to echo back."""
    stripper = _ARTIFACT_STRIPPERS.get(kind, _strip_generic)
    return stripper(text).strip()


# ---------------------------------------------------------------------------
# Steps 4-6: generic cleanup
# ---------------------------------------------------------------------------


def strip_role_labels_and_echoes(text: str) -> str:
    """Drop leading "Assistant:"-style labels and lines echoing the question."""
    previous = None
    while previous != text:
        previous = text
        text = _strip_leading(text, _LEADING_ROLE_LABEL)

    lines = [line for line in text.splitlines() if not _QUESTION_ECHO_LINE.match(line)]
    return "\n".join(lines)


def remove_leaked_instructions(text: str, denylist: list[str] | None = None) -> str:
    for phrase in denylist if denylist is not None else LEAKED_INSTRUCTION_DENYLIST:
        text = re.sub(re.escape(phrase), "", text, flags=re.IGNORECASE)
    return text


def tidy_whitespace(text: str) -> str:
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


# ---------------------------------------------------------------------------
# Normalizer
# ---------------------------------------------------------------------------


class ResponseNormalizer:
    """Runs the full extraction pipeline for backends of a catalog."""

    def __init__(
        self,
        catalog: BackendCatalog | None = None,
        min_viable_length: int = DEFAULT_MIN_VIABLE_LENGTH,
    ):
        self.catalog = catalog or default_catalog()
        self.min_viable_length = min_viable_length

    def extraction_kind(self, backend_identifier: str | None) -> ResponseExtractionKind:
        descriptor = self.catalog.get(backend_identifier)
        if descriptor is None:
            return ResponseExtractionKind.GENERIC
        return descriptor.response_extraction_kind

    def extract(self, payload: Any, backend_identifier: str | None = None) -> str | FallbackToken:
        """Return clean answer text, or a FallbackToken when there is nothing usable."""
        raw = coerce_payload(payload)
        if not raw.strip():
            logger.info("Empty continuation from %s", backend_identifier)
            return FallbackToken.COULD_NOT_GENERATE

        text = strip_template_artifacts(raw, self.extraction_kind(backend_identifier))
        text = strip_role_labels_and_echoes(text)
        text = remove_leaked_instructions(text)
        text = tidy_whitespace(text)

        if len(text) < self.min_viable_length:
            logger.info(
                "Response from %s too short after cleanup (%d chars)",
                backend_identifier,
                len(text),
            )
            return FallbackToken.NEEDS_MORE_DETAIL

        return text


def extract(
    payload: Any,
    backend_identifier: str | None = None,
    catalog: BackendCatalog | None = None,
    min_viable_length: int = DEFAULT_MIN_VIABLE_LENGTH,
) -> str | FallbackToken:
    """Functional shortcut for ResponseNormalizer(...).extract(...)."""
    return ResponseNormalizer(catalog, min_viable_length).extract(payload, backend_identifier)
