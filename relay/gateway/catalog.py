"""Backend catalog — the ordered preference list of hosted models.

Adding a backend means adding a descriptor here; the formatter and the
normalizer pick their rules from the descriptor's template/extraction kinds.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import replace

from relay.gateway.types import (
    BackendDescriptor,
    GenerationParameters,
    PromptTemplateKind,
    ResponseExtractionKind,
)


class BackendCatalog:
    """Immutable, ordered collection of BackendDescriptors."""

    def __init__(self, descriptors: Iterable[BackendDescriptor]):
        ordered: list[BackendDescriptor] = []
        for rank, descriptor in enumerate(descriptors):
            # priority_rank always mirrors the position in the catalog
            if descriptor.priority_rank != rank:
                descriptor = replace(descriptor, priority_rank=rank)
            ordered.append(descriptor)

        if not ordered:
            raise ValueError("Backend catalog must contain at least one backend")

        identifiers = [d.identifier for d in ordered]
        if len(set(identifiers)) != len(identifiers):
            raise ValueError(f"Duplicate backend identifiers in catalog: {identifiers}")

        self._descriptors: tuple[BackendDescriptor, ...] = tuple(ordered)
        self._by_identifier = {d.identifier: d for d in self._descriptors}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __iter__(self) -> Iterator[BackendDescriptor]:
        return iter(self._descriptors)

    def __getitem__(self, index: int) -> BackendDescriptor:
        return self._descriptors[index]

    def get(self, identifier: str | None) -> BackendDescriptor | None:
        if identifier is None:
            return None
        return self._by_identifier.get(identifier)

    @property
    def identifiers(self) -> list[str]:
        return [d.identifier for d in self._descriptors]

    @property
    def primary(self) -> BackendDescriptor:
        return self._descriptors[0]

    def with_max_attempts(self, max_attempts: int) -> BackendCatalog:
        """Copy of the catalog with the same per-backend attempt cap everywhere."""
        return BackendCatalog(replace(d, max_attempts=max_attempts) for d in self._descriptors)


DEFAULT_BACKENDS: tuple[BackendDescriptor, ...] = (
    BackendDescriptor(
        identifier="mistralai/Mistral-7B-Instruct-v0.2",
        generation_parameters=GenerationParameters(max_output_tokens=256, temperature=0.7, top_p=0.95),
        prompt_template_kind=PromptTemplateKind.MISTRAL_INSTRUCT,
        response_extraction_kind=ResponseExtractionKind.MISTRAL_INSTRUCT,
    ),
    BackendDescriptor(
        identifier="HuggingFaceH4/zephyr-7b-beta",
        generation_parameters=GenerationParameters(max_output_tokens=256, temperature=0.7, top_p=0.95),
        prompt_template_kind=PromptTemplateKind.ZEPHYR_CHAT,
        response_extraction_kind=ResponseExtractionKind.ZEPHYR_CHAT,
    ),
    BackendDescriptor(
        identifier="microsoft/phi-2",
        generation_parameters=GenerationParameters(max_output_tokens=200, temperature=0.6, top_p=0.9),
        prompt_template_kind=PromptTemplateKind.PHI_INSTRUCT,
        response_extraction_kind=ResponseExtractionKind.PHI_INSTRUCT,
    ),
    BackendDescriptor(
        identifier="google/flan-t5-large",
        # Text2text model: greedy decoding gives the most stable short answers
        generation_parameters=GenerationParameters(
            max_output_tokens=150, temperature=1.0, top_p=1.0, sampling_enabled=False
        ),
        prompt_template_kind=PromptTemplateKind.QUESTION_ANSWER,
        response_extraction_kind=ResponseExtractionKind.QUESTION_ANSWER,
    ),
)


def default_catalog(max_attempts: int | None = None) -> BackendCatalog:
    """Build the default catalog, optionally overriding the per-backend attempt cap."""
    catalog = BackendCatalog(DEFAULT_BACKENDS)
    if max_attempts is not None:
        catalog = catalog.with_max_attempts(max_attempts)
    return catalog
