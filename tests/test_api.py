"""Tests for folio.api: the Folio store handle."""

import logging

import pytest

from folio.api import TAXONOMY_DB, Folio
from folio.batching import BatchScheduler
from folio.config import StoreConfig
from folio.errors import EmbeddingError
from folio.providers.embeddings import OllamaEmbedding
from folio.providers.llm import OllamaGeneration
from folio.types import BatchRunConfig, ProposedConcept

from tests.conftest import TEST_DIMENSION, MockEmbeddingProvider, ScriptedGenerator


def _config(tmp_path) -> StoreConfig:
    config = StoreConfig(path=tmp_path)
    config.embedding.params["dimension"] = TEST_DIMENSION
    config.batch = BatchRunConfig(batch_size=2, concurrency=1, batch_delay=0.0, adaptive_sizing=False)
    return config


@pytest.fixture
def folio(tmp_path):
    embedder = MockEmbeddingProvider({
        "Rust: Systems language": [1.0, 0.0, 0.0, 0.0],
        "Rust language: Systems language": [0.99, 0.1, 0.0, 0.0],
        "memory safety": [0.9, 0.2, 0.0, 0.0],
    })
    handle = Folio(config=_config(tmp_path), embedder=embedder, generator=ScriptedGenerator("DUPLICATE"))
    yield handle
    handle.close()


class TestFolio:
    def test_creates_store_from_path(self, tmp_path):
        with Folio(tmp_path / "store") as handle:
            assert (tmp_path / "store" / "folio.toml").exists()
            assert (tmp_path / "store" / TAXONOMY_DB).exists()
            assert isinstance(handle._embedder, OllamaEmbedding)
            assert isinstance(handle._generator, OllamaGeneration)
            assert handle.config.embedding_dimension == 1024

    def test_propose_and_reject_duplicate(self, folio):
        first = ProposedConcept("programming/rust", "Rust", definition="Systems language")
        second = ProposedConcept("programming/rust-lang", "Rust language", definition="Systems language")

        report = folio.propose([first, second])

        assert report.accepted_ids == ["programming/rust"]
        assert report.rejected_ids == ["programming/rust-lang"]
        assert [c.id for c in folio.list_concepts()] == ["programming/rust"]

    def test_similar(self, folio):
        folio.propose([ProposedConcept("programming/rust", "Rust", definition="Systems language")])

        found = folio.similar("memory safety", threshold=0.5)

        assert [c.concept.id for c in found] == ["programming/rust"]
        assert folio.similar("memory safety", threshold=0.99) == []

    def test_embed_texts_checkpoints(self, folio, monkeypatch):
        checkpoints = []
        monkeypatch.setattr(folio.store, "checkpoint", lambda: checkpoints.append(1))
        progress = []

        vectors = folio.embed_texts(["a", "b", "c"], on_progress=progress.append)

        assert len(vectors) == 3
        assert len(checkpoints) == 2
        assert progress[-1].percent == 100

    def test_concept_context(self, folio):
        folio.propose([ProposedConcept("programming/rust", "Rust", definition="Systems language")])

        text = folio.concept_context("memory safety")

        assert text.startswith("Available concepts")
        assert "- programming/rust: Rust" in text
        assert folio.concept_context("   ") == "No taxonomy concepts available yet."

    def test_backfill(self, folio):
        folio.store.add_concept(ProposedConcept("programming/go", "Go"))
        assert folio.backfill() == {"pending": 1, "embedded": 1}

    def test_health_reports_status(self, folio):
        status = folio.health()
        assert status["concepts"] == 0
        assert status["embedding_dimension"] == TEST_DIMENSION

    def test_health_propagates_embedding_error(self, tmp_path):
        class DownEmbedder(MockEmbeddingProvider):
            def check_health(self):
                raise EmbeddingError("Model mxbai-embed-large not found")

        with Folio(config=_config(tmp_path), embedder=DownEmbedder(),
                   generator=ScriptedGenerator()) as handle:
            with pytest.raises(EmbeddingError, match="not found"):
                handle.health()

    def test_ops_log_records_decisions(self, folio, tmp_path):
        folio.propose([ProposedConcept("programming/rust", "Rust", definition="Systems language")])
        for handler in logging.getLogger("folio").handlers:
            handler.flush()
        text = (tmp_path / "folio-ops.log").read_text()
        assert "Accepted concept: programming/rust" in text

    def test_close_removes_ops_handler(self, tmp_path):
        handle = Folio(config=_config(tmp_path), embedder=MockEmbeddingProvider(),
                       generator=ScriptedGenerator())
        before = len(logging.getLogger("folio").handlers)
        handle.close()
        assert len(logging.getLogger("folio").handlers) == before - 1
        handle.close()

    def test_injected_scheduler(self, tmp_path):
        scheduler = BatchScheduler(BatchRunConfig(batch_size=1, batch_delay=0.0, adaptive_sizing=False))
        with Folio(config=_config(tmp_path), embedder=MockEmbeddingProvider(),
                   generator=ScriptedGenerator(), scheduler=scheduler) as handle:
            progress = []
            handle.embed_texts(["a", "b", "c"], on_progress=progress.append)
            assert len(progress) == 3
