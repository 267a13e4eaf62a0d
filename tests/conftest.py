"""
Shared pytest fixtures for folio tests.

Provides mock providers so no test talks to Ollama or an AI gateway.
"""

import hashlib
import threading
from pathlib import Path

import pytest

from folio.errors import GenerationError
from folio.taxonomy_store import TaxonomyStore


TEST_DIMENSION = 4


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Texts listed in `vectors` get exactly that vector; anything else gets a
    vector derived from its hash. Tests that depend on similarity scores
    should map every text they embed.
    """

    dimension = TEST_DIMENSION
    model_name = "mock-model"

    def __init__(self, vectors: dict[str, list[float]] | None = None, fail_on: set[str] | None = None):
        self.vectors = dict(vectors or {})
        self.fail_on = set(fail_on or ())
        self.calls: list[str] = []
        self._lock = threading.Lock()

    def embed(self, text: str) -> list[float]:
        with self._lock:
            self.calls.append(text)
        if text in self.fail_on:
            from folio.errors import EmbeddingError
            raise EmbeddingError(f"mock failure for {text!r}")
        if text in self.vectors:
            return list(self.vectors[text])
        h = hashlib.md5(text.encode()).digest()
        return [(b + 1) / 256.0 for b in h[:self.dimension]]

    def embed_batch(self, texts: list[str], concurrency: int = 5) -> list[list[float]]:
        return [self.embed(t) for t in texts]


class ScriptedGenerator:
    """
    Generation provider that replays scripted answers.

    Each entry is returned in turn; an Exception entry is raised instead.
    The last entry repeats once the script runs out.
    """

    def __init__(self, *answers):
        self.answers = list(answers) or ["DISTINCT"]
        self.prompts: list[str] = []

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        self.prompts.append(prompt)
        answer = self.answers.pop(0) if len(self.answers) > 1 else self.answers[0]
        if isinstance(answer, Exception):
            raise answer
        return answer


class UnavailableGenerator:
    """Generation provider whose backend is always down."""

    def __init__(self):
        self.calls = 0

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        self.calls += 1
        raise GenerationError("connection refused")


class FakeResponse:
    """Minimal requests.Response stand-in."""

    def __init__(self, status_code=200, json_data=None, text="", lines=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text
        self._lines = lines or []

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("No JSON object could be decoded")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            import requests
            raise requests.HTTPError(f"{self.status_code}", response=self)

    def iter_lines(self):
        return iter(self._lines)


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    """Keep error logs and Ollama host resolution inside the test sandbox."""
    monkeypatch.setenv("FOLIO_STORE_PATH", str(tmp_path / "store"))
    monkeypatch.delenv("OLLAMA_HOST", raising=False)
    monkeypatch.delenv("AI_GATEWAY_API_KEY", raising=False)
    monkeypatch.delenv("AI_GATEWAY_URL", raising=False)


@pytest.fixture
def mock_embedder():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def taxonomy_store(tmp_path: Path):
    """A TaxonomyStore on a temporary database, closed after the test."""
    store = TaxonomyStore(tmp_path / "taxonomy.db", TEST_DIMENSION)
    yield store
    store.close()


@pytest.fixture
def no_sleep():
    """Sleep replacement that records requested delays."""
    delays: list[float] = []
    return delays.append, delays
