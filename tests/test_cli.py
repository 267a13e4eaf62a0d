"""Tests for folio.cli: command-line interface."""

import json
from unittest.mock import patch

import pytest
from typer.testing import CliRunner

from folio.api import Folio
from folio.cli import app
from folio.config import StoreConfig
from folio.errors import EmbeddingError
from folio.types import BatchRunConfig, ProposedConcept

from tests.conftest import TEST_DIMENSION, MockEmbeddingProvider, ScriptedGenerator


runner = CliRunner()


@pytest.fixture
def cli_folio(tmp_path):
    """Patch the CLI to open a Folio wired to mock providers."""
    config = StoreConfig(path=tmp_path)
    config.embedding.params["dimension"] = TEST_DIMENSION
    config.batch = BatchRunConfig(batch_size=2, concurrency=1, batch_delay=0.0, adaptive_sizing=False)
    embedder = MockEmbeddingProvider({
        "Rust: Systems language": [1.0, 0.0, 0.0, 0.0],
        "Rust lang: Systems language": [0.98, 0.1, 0.0, 0.0],
        "systems": [0.9, 0.3, 0.0, 0.0],
    })
    handle = Folio(config=config, embedder=embedder, generator=ScriptedGenerator("DUPLICATE"))
    with patch("folio.cli.Folio", return_value=handle) as factory:
        yield handle, factory
    handle.close()


class TestPropose:
    def test_accepts_then_rejects(self, cli_folio):
        result = runner.invoke(app, ["propose", "programming/rust", "Rust", "-d", "Systems language"])
        assert result.exit_code == 0, result.output
        assert "accepted programming/rust (novel)" in result.output

        result = runner.invoke(app, [
            "propose", "programming/rust-lang", "Rust lang", "-d", "Systems language",
        ])
        assert result.exit_code == 0
        assert "rejected programming/rust-lang (duplicate) ~ programming/rust" in result.output

    def test_invalid_id(self, cli_folio):
        result = runner.invoke(app, ["propose", "new/concept", "New"])
        assert result.exit_code == 0
        assert "(invalid)" in result.output

    def test_json_output(self, cli_folio):
        result = runner.invoke(app, [
            "--json", "propose", "programming/rust", "Rust", "-d", "Systems language",
            "--alt", "rust-lang",
        ])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data[0]["id"] == "programming/rust"
        assert data[0]["accepted"] is True
        handle, _ = cli_folio
        assert handle.store.get_concept("programming/rust").alt_labels == ("rust-lang",)

    def test_embedding_failure_exits_1(self, cli_folio):
        handle, _ = cli_folio
        handle._embedder.fail_on.add("Go")
        result = runner.invoke(app, ["propose", "programming/go", "Go"])
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_failure_written_to_error_log(self, cli_folio, tmp_path):
        handle, _ = cli_folio
        handle._embedder.fail_on.add("Go")
        runner.invoke(app, ["propose", "programming/go", "Go"])
        text = (tmp_path / "store" / "folio-errors.log").read_text()
        assert "folio propose" in text
        assert "EmbeddingError" in text


class TestQueries:
    def test_similar(self, cli_folio):
        handle, _ = cli_folio
        handle.propose([ProposedConcept("programming/rust", "Rust", definition="Systems language")])

        result = runner.invoke(app, ["similar", "systems", "--threshold", "0.5"])

        assert result.exit_code == 0
        assert "programming/rust Rust" in result.output

    def test_similar_threshold_range(self, cli_folio):
        result = runner.invoke(app, ["similar", "systems", "--threshold", "1.5"])
        assert result.exit_code != 0

    def test_concepts(self, cli_folio):
        handle, _ = cli_folio
        handle.store.add_concept(ProposedConcept("writing/style", "Style"))
        result = runner.invoke(app, ["concepts"])
        assert result.exit_code == 0
        assert "writing/style Style" in result.output

    def test_backfill(self, cli_folio):
        handle, _ = cli_folio
        handle.store.add_concept(ProposedConcept("writing/style", "Style"))
        result = runner.invoke(app, ["backfill"])
        assert result.exit_code == 0
        assert "Embedded 1 of 1 concepts." in result.output

    def test_backfill_failure_reports_progress(self, cli_folio):
        handle, _ = cli_folio
        for name in ("alpha", "beta", "gamma"):
            handle.store.add_concept(ProposedConcept(f"writing/{name}", name.title()))
        handle._embedder.fail_on.add("Gamma")

        result = runner.invoke(app, ["backfill"])

        assert result.exit_code == 1
        assert "failed after 2/3 items" in result.output
        assert handle.store.get_embedding("writing/alpha") is not None

    def test_context(self, cli_folio, tmp_path):
        handle, _ = cli_folio
        handle.propose([ProposedConcept("programming/rust", "Rust", ("rust-lang",), "Systems language")])
        doc = tmp_path / "notes.md"
        doc.write_text("systems")

        result = runner.invoke(app, ["context", str(doc)])

        assert result.exit_code == 0, result.output
        assert "- programming/rust: Rust (aliases: rust-lang)" in result.output

    def test_context_empty_taxonomy(self, cli_folio, tmp_path):
        doc = tmp_path / "notes.md"
        doc.write_text("systems")
        result = runner.invoke(app, ["context", str(doc)])
        assert "No taxonomy concepts available yet." in result.output


class TestHealth:
    def test_ok(self, cli_folio):
        result = runner.invoke(app, ["--json", "health"])
        assert result.exit_code == 0
        assert json.loads(result.output)["concepts"] == 0

    def test_model_missing(self, cli_folio, tmp_path):
        handle, _ = cli_folio
        handle._embedder.check_health = lambda: (_ for _ in ()).throw(
            EmbeddingError("Model mxbai-embed-large not found. Run: ollama pull mxbai-embed-large")
        )
        result = runner.invoke(app, ["health"])
        assert result.exit_code == 1
        assert "ollama pull" in result.output

    def test_store_option_passed(self, cli_folio, tmp_path):
        _, factory = cli_folio
        runner.invoke(app, ["--store", str(tmp_path / "elsewhere"), "concepts"])
        assert factory.call_args.args[0] == tmp_path / "elsewhere"
