"""Tests for folio.types: validation helpers and value types."""

import math

import pytest

from folio.errors import ConceptIdError, EmbeddingValidationError
from folio.types import (
    BatchRunConfig,
    CurationOutcome,
    CurationReport,
    DedupDecision,
    ProposedConcept,
    Verdict,
    concept_text,
    cosine_similarity,
    is_valid_concept_id,
    validate_concept_id,
    validate_embedding,
    validate_proposed_concepts,
)


class TestValidateEmbedding:
    def test_valid(self):
        assert validate_embedding([1, 2, 3], 3) == [1.0, 2.0, 3.0]

    def test_empty_message(self):
        with pytest.raises(EmbeddingValidationError, match=r"dimension 0 \(expected 1024\)"):
            validate_embedding([], 1024)

    def test_wrong_dimension_message(self):
        with pytest.raises(EmbeddingValidationError, match=r"dimension 768 \(expected 1024\)"):
            validate_embedding([0.0] * 768, 1024)

    @pytest.mark.parametrize("bad", [math.nan, math.inf, -math.inf])
    def test_non_finite(self, bad):
        with pytest.raises(EmbeddingValidationError, match="NaN or Infinity"):
            validate_embedding([0.0, bad], 2)

    def test_non_numeric(self):
        with pytest.raises(EmbeddingValidationError):
            validate_embedding([0.0, "x"], 2)

    @pytest.mark.parametrize("value", [5, 1.5, True, "abcd", {"a": 1}])
    def test_not_a_list(self, value):
        with pytest.raises(EmbeddingValidationError, match="expected a list of floats"):
            validate_embedding(value, 4)

    def test_bool_entries(self):
        with pytest.raises(EmbeddingValidationError, match="bool"):
            validate_embedding([1.0, True], 2)

    def test_tuple_accepted(self):
        assert validate_embedding((0.5, 1), 2) == [0.5, 1.0]


class TestCosineSimilarity:
    def test_identical(self):
        assert cosine_similarity([1, 2, 3], [1, 2, 3]) == pytest.approx(1.0)

    def test_orthogonal(self):
        assert cosine_similarity([1, 0], [0, 1]) == 0.0

    def test_clamped_at_zero(self):
        assert cosine_similarity([1, 0], [-1, 0]) == 0.0

    def test_zero_vector(self):
        assert cosine_similarity([0, 0], [1, 0]) == 0.0


class TestConceptIds:
    @pytest.mark.parametrize("concept_id", [
        "programming/rust",
        "education/spaced-repetition",
        "psychology/flow",
        "meta/note-taking",
    ])
    def test_valid(self, concept_id):
        assert is_valid_concept_id(concept_id)
        validate_concept_id(concept_id)

    @pytest.mark.parametrize("concept_id,fragment", [
        ("", "<category>/<name>"),
        ("rust", "<category>/<name>"),
        ("programming/rust/async", "<category>/<name>"),
        ("Programming/Rust", "lowercase"),
        ("cooking/pasta", "Unknown concept category"),
        ("programming/systems language", "no spaces"),
        ("programming/" + "x" * 31, "longer than 30"),
        ("new/concept", "Unknown concept category"),
        ("programming/concept", "placeholder"),
        ("programming/one-two-three-four-five", "more than 4 words"),
    ])
    def test_invalid(self, concept_id, fragment):
        assert not is_valid_concept_id(concept_id)
        with pytest.raises(ConceptIdError, match=fragment):
            validate_concept_id(concept_id)


class TestProposals:
    def test_embedding_text_with_definition(self):
        p = ProposedConcept("programming/rust", "Rust", definition="Systems language")
        assert p.embedding_text == "Rust: Systems language"

    def test_embedding_text_label_only(self):
        assert ProposedConcept("programming/rust", "Rust").embedding_text == "Rust"
        assert concept_text("Rust", "") == "Rust"

    def test_filter_drops_invalid(self):
        proposals = [
            ProposedConcept("programming/rust", "Rust"),
            ProposedConcept("new/concept", "New"),
            ProposedConcept("design/typography", ""),
            ProposedConcept("writing/style", "One two three four five six"),
        ]
        assert [p.id for p in validate_proposed_concepts(proposals)] == ["programming/rust"]

    def test_filter_none(self):
        assert validate_proposed_concepts(None) == []


class TestBatchRunConfig:
    def test_defaults(self):
        config = BatchRunConfig()
        assert config.batch_size == 20
        assert config.concurrency == 3
        assert config.batch_delay == pytest.approx(0.05)
        assert config.checkpoint_enabled
        assert config.adaptive_sizing

    @pytest.mark.parametrize("kwargs", [
        {"batch_size": 0},
        {"concurrency": 0},
        {"batch_delay": -1.0},
    ])
    def test_rejects_bad_values(self, kwargs):
        with pytest.raises(ValueError):
            BatchRunConfig(**kwargs)

    def test_with_batch_size_copies(self):
        config = BatchRunConfig(batch_size=40)
        smaller = config.with_batch_size(10)
        assert smaller.batch_size == 10
        assert config.batch_size == 40
        assert smaller.concurrency == config.concurrency


class TestDecisions:
    def test_tri_state(self):
        assert DedupDecision(Verdict.DUPLICATE).is_duplicate
        assert DedupDecision(Verdict.DISTINCT).available
        unknown = DedupDecision(Verdict.UNKNOWN)
        assert not unknown.available
        assert not unknown.is_duplicate

    def test_report(self):
        report = CurationReport([
            CurationOutcome("programming/a", True, "novel"),
            CurationOutcome("programming/b", False, "duplicate"),
            CurationOutcome("programming/c", True, "distinct"),
        ])
        assert report.accepted == 2
        assert report.rejected == 1
        assert report.accepted_ids == ["programming/a", "programming/c"]
        assert report.rejected_ids == ["programming/b"]
