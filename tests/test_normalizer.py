"""Tests for the response normalization pipeline."""

from __future__ import annotations

import pytest

from relay.gateway.catalog import default_catalog
from relay.gateway.formatter import GUIDELINE_PREAMBLES
from relay.gateway.normalizer import (
    ResponseNormalizer,
    coerce_payload,
    extract,
    remove_leaked_instructions,
    strip_role_labels_and_echoes,
    strip_template_artifacts,
)
from relay.gateway.types import FallbackToken, ResponseExtractionKind

MISTRAL = "mistralai/Mistral-7B-Instruct-v0.2"
ZEPHYR = "HuggingFaceH4/zephyr-7b-beta"
PHI = "microsoft/phi-2"
FLAN = "google/flan-t5-large"
UNKNOWN = "someone/unknown"


class TestCoercePayload:
    def test_list_of_records(self):
        assert coerce_payload([{"generated_text": "Hello"}, {"generated_text": "ignored"}]) == "Hello"

    def test_single_record(self):
        assert coerce_payload({"generated_text": "Hello"}) == "Hello"

    def test_other_text_keys(self):
        assert coerce_payload([{"summary_text": "Short"}]) == "Short"

    def test_raw_string(self):
        assert coerce_payload("Hello") == "Hello"

    def test_list_of_strings(self):
        assert coerce_payload(["Hello"]) == "Hello"

    def test_nested_list(self):
        assert coerce_payload([[{"generated_text": "Nested"}]]) == "Nested"

    @pytest.mark.parametrize(
        "payload",
        [[{"generated_text": None}], {"generated_text": None}, [[{"summary_text": None}]]],
    )
    def test_null_text_is_empty(self, payload):
        assert coerce_payload(payload) == ""

    @pytest.mark.parametrize("payload", [None, [], {}, ""])
    def test_empty_shapes(self, payload):
        assert coerce_payload(payload) == ""

    def test_unknown_shape_is_dumped(self):
        assert coerce_payload({"score": 0.9}) == '{"score": 0.9}'


class TestArtifactStripping:
    def test_strip_leading_answer_marker(self):
        assert strip_template_artifacts("A: ok", ResponseExtractionKind.GENERIC) == "ok"
        assert strip_template_artifacts("A: ok", ResponseExtractionKind.QUESTION_ANSWER) == "ok"

    def test_generic_cuts_follow_up_question(self):
        text = "Use a gentle cleanser.\nQ: And at night?\nA: Same."
        assert strip_template_artifacts(text, ResponseExtractionKind.GENERIC) == "Use a gentle cleanser."

    def test_mistral_echo(self):
        raw = f"<s>[INST] {GUIDELINE_PREAMBLES['en']}\n\nHow do I wash my face? [/INST] Use a gentle cleanser twice a day.</s>"
        assert strip_template_artifacts(raw, ResponseExtractionKind.MISTRAL_INSTRUCT) == (
            "Use a gentle cleanser twice a day."
        )

    def test_zephyr_echo(self):
        raw = (
            f"<|system|>\n{GUIDELINE_PREAMBLES['en']}</s>\n<|user|>\nShower tips?</s>\n"
            "<|assistant|>\nMoisturize right after showering.</s>\n<|user|>\nThanks"
        )
        assert strip_template_artifacts(raw, ResponseExtractionKind.ZEPHYR_CHAT) == (
            "Moisturize right after showering."
        )

    def test_phi_echo(self):
        raw = "Instruct: Sunscreen?\nOutput: Apply sunscreen every two hours outdoors.\nInstruct: Something else"
        assert strip_template_artifacts(raw, ResponseExtractionKind.PHI_INSTRUCT) == (
            "Apply sunscreen every two hours outdoors."
        )


class TestGenericCleanup:
    def test_role_labels_stripped(self):
        assert strip_role_labels_and_echoes("Assistant: Dermi: Drink water.") == "Drink water."

    def test_question_echo_lines_removed(self):
        text = "Question: what is SPF?\nSPF measures protection against UVB rays."
        assert strip_role_labels_and_echoes(text) == "SPF measures protection against UVB rays."

    def test_leaked_instructions_removed_case_insensitive(self):
        text = "YOU ARE DERMI, A FRIENDLY SKINCARE ASSISTANT. Retinol can irritate sensitive skin at first."
        assert remove_leaked_instructions(text).strip() == "Retinol can irritate sensitive skin at first."

    def test_custom_denylist(self):
        assert remove_leaked_instructions("secret rule: be nice. Hello", ["secret rule: be nice."]).strip() == "Hello"


class TestResponseNormalizer:
    @pytest.fixture
    def normalizer(self):
        return ResponseNormalizer(default_catalog())

    def test_clean_answer(self, normalizer):
        payload = [{"generated_text": " Use a gentle, fragrance-free cleanser twice a day. "}]
        assert normalizer.extract(payload, MISTRAL) == "Use a gentle, fragrance-free cleanser twice a day."

    @pytest.mark.parametrize("payload", [None, [], "", "   ", [{"generated_text": ""}], [{"generated_text": None}]])
    def test_empty_continuation(self, normalizer, payload):
        assert normalizer.extract(payload, MISTRAL) == FallbackToken.COULD_NOT_GENERATE

    def test_answer_marker_scenario(self):
        # With the default minimum length "ok" is too short to be useful
        assert extract("A: ok", UNKNOWN) == FallbackToken.NEEDS_MORE_DETAIL
        assert ResponseNormalizer(min_viable_length=2).extract("A: ok", UNKNOWN) == "ok"

    @pytest.mark.parametrize(
        "payload",
        ["Yes.", "A: ok", "Assistant: Sure!", [{"generated_text": "<|assistant|>\nNo.</s>"}], "Q: hi?\nA: fine"],
    )
    def test_short_results_never_leak(self, normalizer, payload):
        assert normalizer.extract(payload, ZEPHYR) == FallbackToken.NEEDS_MORE_DETAIL

    def test_leaked_preamble_only_is_too_short(self, normalizer):
        payload = [{"generated_text": GUIDELINE_PREAMBLES["en"]}]
        assert normalizer.extract(payload, MISTRAL) == FallbackToken.NEEDS_MORE_DETAIL

    def test_full_pipeline_with_echo_and_labels(self, normalizer):
        raw = (
            "Question: What helps with acne?\n"
            "Answer: Assistant: Wash twice daily and avoid touching your face.\n"
            "Question: More?"
        )
        assert normalizer.extract(raw, FLAN) == "Wash twice daily and avoid touching your face."

    def test_unknown_shape_still_yields_text(self, normalizer):
        assert normalizer.extract({"label": "POSITIVE", "score": 0.99}, UNKNOWN) == '{"label": "POSITIVE", "score": 0.99}'

    @pytest.mark.parametrize(
        "text",
        [
            "Use a gentle cleanser twice a day.",
            "Retinol can irritate sensitive skin at first.\n\nStart with two nights a week.",
            "SPF 30 blocks about 97% of UVB rays.",
        ],
    )
    @pytest.mark.parametrize("backend", [MISTRAL, ZEPHYR, PHI, FLAN, UNKNOWN])
    def test_idempotent_on_clean_text(self, normalizer, text, backend):
        once = normalizer.extract(text, backend)
        assert once == text
        assert normalizer.extract(once, backend) == once
