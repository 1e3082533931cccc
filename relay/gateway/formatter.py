"""Prompt Formatter — backend-specific prompt layout.

Turns the raw text a client sent into the prompt a particular backend
expects. Chat-tuned backends get the guideline preamble (localized when
possible); completion-style backends get a bare question/answer frame.

The template is picked from the backend's PromptTemplateKind, so supporting a
new backend means adding a catalog entry, not another branch here. Formatting
is pure and never fails: unknown backends use the generic ``Q:/A:`` frame.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable

from relay.gateway.catalog import BackendCatalog, default_catalog
from relay.gateway.types import PromptTemplateKind

logger = logging.getLogger(__name__)

DEFAULT_LOCALE = "en"

GUIDELINE_PREAMBLES: dict[str, str] = {
    "en": (
        "You are Dermi, a friendly skincare assistant. "
        "Answer clearly and concisely in plain language. "
        "Do not diagnose conditions; recommend seeing a dermatologist when a question needs a medical opinion."
    ),
    "es": (
        "Eres Dermi, un asistente amable de cuidado de la piel. "
        "Responde de forma clara y concisa, con lenguaje sencillo. "
        "No diagnostiques afecciones; recomienda consultar a un dermatólogo cuando la pregunta requiera una opinión médica."
    ),
    "fr": (
        "Tu es Dermi, un assistant bienveillant spécialisé dans les soins de la peau. "
        "Réponds de manière claire et concise, dans un langage simple. "
        "Ne pose pas de diagnostic ; recommande de consulter un dermatologue lorsqu'une question nécessite un avis médical."
    ),
}

# Lines that introduce the user's turn / the model's turn in a transcript-style input
_QUESTION_MARKER = re.compile(r"^\s*(?:user|human|question|q)\s*:\s*", re.IGNORECASE)
_ANSWER_MARKER = re.compile(r"^\s*(?:assistant|ai|bot|answer|a)\s*:", re.IGNORECASE)


def resolve_locale(locale: str | None) -> str:
    """Map ``"es-MX"``/``"FR"``/None onto a supported preamble locale."""
    if not locale:
        return DEFAULT_LOCALE
    primary = locale.strip().lower().replace("_", "-").split("-", 1)[0]
    return primary if primary in GUIDELINE_PREAMBLES else DEFAULT_LOCALE


def extract_question(raw_input: str) -> str:
    """Pull the user's question out of the raw input.

    Clients sometimes send a whole transcript ("User: ...\\nAssistant:").
    The last user turn wins; anything from the following answer marker on is
    dropped. Plain input is returned stripped.
    """
    text = (raw_input or "").strip()
    lines = text.splitlines()

    start = None
    for index, line in enumerate(lines):
        if _QUESTION_MARKER.match(line):
            start = index
    if start is None:
        return text

    collected: list[str] = [_QUESTION_MARKER.sub("", lines[start], count=1)]
    for line in lines[start + 1 :]:
        if _ANSWER_MARKER.match(line):
            break
        collected.append(line)

    question = "\n".join(collected).strip()
    return question or text


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _mistral_instruct(question: str, preamble: str) -> str:
    return f"<s>[INST] {preamble}\n\n{question} [/INST]"


def _zephyr_chat(question: str, preamble: str) -> str:
    return f"<|system|>\n{preamble}</s>\n<|user|>\n{question}</s>\n<|assistant|>\n"


def _phi_instruct(question: str, preamble: str) -> str:
    return f"Instruct: {question}\nOutput:"


def _question_answer(question: str, preamble: str) -> str:
    return f"Question: {question}\nAnswer:"


def _generic(question: str, preamble: str) -> str:
    return f"Q: {question}\nA:"


_TEMPLATES: dict[PromptTemplateKind, Callable[[str, str], str]] = {
    PromptTemplateKind.MISTRAL_INSTRUCT: _mistral_instruct,
    PromptTemplateKind.ZEPHYR_CHAT: _zephyr_chat,
    PromptTemplateKind.PHI_INSTRUCT: _phi_instruct,
    PromptTemplateKind.QUESTION_ANSWER: _question_answer,
    PromptTemplateKind.GENERIC: _generic,
}


class PromptFormatter:
    """Formats raw client input for a specific backend of the catalog."""

    def __init__(self, catalog: BackendCatalog | None = None):
        self.catalog = catalog or default_catalog()

    def template_kind(self, backend_identifier: str) -> PromptTemplateKind:
        descriptor = self.catalog.get(backend_identifier)
        if descriptor is None:
            return PromptTemplateKind.GENERIC
        return descriptor.prompt_template_kind

    def format(self, raw_input: str, backend_identifier: str, locale: str | None = None) -> str:
        question = extract_question(raw_input)
        preamble = GUIDELINE_PREAMBLES[resolve_locale(locale)]
        template = _TEMPLATES.get(self.template_kind(backend_identifier), _generic)
        return template(question, preamble)


def format_prompt(
    raw_input: str,
    backend_identifier: str,
    locale: str | None = None,
    catalog: BackendCatalog | None = None,
) -> str:
    """Functional shortcut for PromptFormatter(catalog).format(...)."""
    return PromptFormatter(catalog).format(raw_input, backend_identifier, locale)
