"""
Embedding provider backed by a local Ollama server.

Every vector passes through validate_embedding() before it is returned, so
a truncated or corrupt response can never reach the taxonomy store.
Transient failures (refused connections, timeouts, 5xx, 429) are retried
with exponential backoff; validation failures are not.
"""

import logging
import time
from concurrent.futures import ThreadPoolExecutor

import requests

from ..errors import EmbeddingError, EmbeddingValidationError, FolioError, TransientNetworkError
from ..types import DEFAULT_EMBEDDING_DIMENSION, validate_embedding
from .base import get_registry
from .ollama_utils import (
    ollama_base_url,
    ollama_has_model,
    ollama_installed_models,
    ollama_pull_model,
)

logger = logging.getLogger(__name__)

# Retry config: up to MAX_RETRIES after the first attempt,
# sleeping RETRY_BACKOFF_BASE * 2**n between them (0.1s, 0.2s, 0.4s)
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 0.1

# (connect, read)
EMBED_TIMEOUT = (5, 60)

_TRANSIENT_STATUS = frozenset({408, 429, 500, 502, 503, 504})


class OllamaEmbedding:
    """
    Embedding provider using Ollama's /api/embeddings endpoint.

    Respects OLLAMA_HOST env var (default: http://localhost:11434).
    """

    def __init__(
        self,
        model: str = "mxbai-embed-large",
        base_url: str | None = None,
        dimension: int = DEFAULT_EMBEDDING_DIMENSION,
        auto_install: bool = False,
        timeout: tuple[float, float] = EMBED_TIMEOUT,
    ):
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive: {dimension}")
        self.model_name = model
        self.base_url = ollama_base_url(base_url)
        self.auto_install = auto_install
        self.timeout = timeout
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _request(self, text: str) -> list:
        """One embedding call; raises TransientNetworkError for retryable failures."""
        try:
            response = requests.post(
                f"{self.base_url}/api/embeddings",
                json={"model": self.model_name, "prompt": text},
                timeout=self.timeout,
            )
        except (requests.ConnectionError, requests.Timeout) as e:
            raise TransientNetworkError(
                f"Connection to Ollama at {self.base_url} failed: {e}"
            ) from e

        if response.status_code in _TRANSIENT_STATUS:
            raise TransientNetworkError(
                f"Ollama embedding returned HTTP {response.status_code}"
            )
        if not response.ok:
            detail = response.text[:200] if response.text else ""
            raise EmbeddingError(
                f"Ollama embedding failed (model={self.model_name}): "
                f"HTTP {response.status_code} from {self.base_url}. {detail}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise EmbeddingError("Invalid JSON response from Ollama") from e
        if not isinstance(data, dict) or "embedding" not in data:
            raise EmbeddingValidationError("Invalid embedding: response has no 'embedding' field")
        return data["embedding"]

    def embed(self, text: str) -> list[float]:
        """Generate a validated embedding, retrying transient failures."""
        last_error: TransientNetworkError | None = None
        for attempt in range(MAX_RETRIES + 1):
            try:
                raw = self._request(text)
            except TransientNetworkError as e:
                last_error = e
                if attempt < MAX_RETRIES:
                    delay = RETRY_BACKOFF_BASE * (2 ** attempt)
                    logger.debug(
                        "Embedding attempt %d failed, retrying in %.1fs: %s",
                        attempt + 1, delay, e,
                    )
                    time.sleep(delay)
                continue
            return validate_embedding(raw, self._dimension)

        raise EmbeddingError(
            f"Embedding failed after {MAX_RETRIES + 1} attempts: {last_error}"
        ) from last_error

    def embed_batch(self, texts: list[str], concurrency: int = 5) -> list[list[float]]:
        """Embed texts with at most `concurrency` calls in flight, preserving order."""
        if concurrency <= 0:
            raise ValueError(f"concurrency must be positive: {concurrency}")
        if not texts:
            return []
        workers = min(concurrency, len(texts))
        if workers == 1:
            return [self.embed(t) for t in texts]
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="folio-embed") as pool:
            return list(pool.map(self.embed, texts))

    def check_health(self) -> None:
        """
        Verify Ollama is reachable and the configured model is installed.

        Pulls the model when auto_install is set.

        Raises:
            EmbeddingError: If Ollama is down or the model is missing
        """
        try:
            installed = ollama_installed_models(self.base_url)
        except TransientNetworkError as e:
            raise EmbeddingError(str(e)) from e

        if ollama_has_model(installed, self.model_name):
            return
        if not self.auto_install:
            raise EmbeddingError(
                f"Model {self.model_name} not found. Run: ollama pull {self.model_name}"
            )
        try:
            ollama_pull_model(self.base_url, self.model_name)
        except FolioError as e:
            raise EmbeddingError(f"Auto-install failed: {e}") from e


# Register providers
_registry = get_registry()
_registry.register_embedding("ollama", OllamaEmbedding)
