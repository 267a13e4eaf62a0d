"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

from typing import Protocol, runtime_checkable


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider instance must be used for both indexing and querying
    to ensure consistent vectors. Implementations validate every vector
    (dimension, finiteness) before returning it.

    Example implementation:
        class FixedEmbedding:
            dimension = 3

            def embed(self, text: str) -> list[float]:
                return [1.0, 0.0, 0.0]

            def embed_batch(self, texts, concurrency=5):
                return [self.embed(t) for t in texts]
    """

    @property
    def dimension(self) -> int:
        """
        The dimensionality of the embedding vectors.

        This must be consistent across all calls. The taxonomy store
        checks stored vectors against it.
        """
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Raises:
            EmbeddingError: If the vector cannot be produced or is malformed
        """
        ...

    def embed_batch(self, texts: list[str], concurrency: int = 5) -> list[list[float]]:
        """
        Generate embeddings for multiple texts, at most `concurrency` in flight.

        Returns:
            List of embedding vectors in input order
        """
        ...


# -----------------------------------------------------------------------------
# Text Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class GenerationProvider(Protocol):
    """
    Free text in, free text out.

    Used by the duplicate judge. Implementations raise GenerationError for
    every failure they can anticipate (unreachable service, HTTP error,
    missing credentials, malformed body) so callers can degrade gracefully.
    """

    def generate(self, prompt: str, *, system: str | None = None) -> str:
        """
        Send a prompt to the underlying LLM and return its text.

        Raises:
            GenerationError: If no answer could be obtained
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the store configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("ollama", OllamaEmbedding)

        # Later, from config:
        provider = registry.create_embedding("ollama", {"model": "mxbai-embed-large"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._generation_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return
        self._lazy_loaded = True

        # Importing registers the concrete classes
        from . import embeddings  # noqa: F401
        from . import llm  # noqa: F401

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def register_generation(self, name: str, provider_class: type) -> None:
        """Register a text generation provider class."""
        self._generation_providers[name] = provider_class

    @staticmethod
    def _create_provider(kind: str, name: str, providers: dict, params: dict | None):
        """Shared factory logic for all provider types."""
        if name not in providers:
            available = ", ".join(providers.keys()) or "none"
            raise ValueError(
                f"Unknown {kind} provider: '{name}'. "
                f"Available providers: {available}. "
                f"Install missing dependencies or check provider name."
            )
        try:
            return providers[name](**(params or {}))
        except ImportError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}\n"
                f"Install required dependencies."
            ) from e
        except TypeError as e:
            raise RuntimeError(
                f"Failed to create {kind} provider '{name}': {e}"
            ) from e

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("embedding", name, self._embedding_providers, params)

    def create_generation(self, name: str, params: dict | None = None) -> GenerationProvider:
        """Create a text generation provider instance."""
        self._ensure_providers_loaded()
        return self._create_provider("generation", name, self._generation_providers, params)

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())

    def list_generation_providers(self) -> list[str]:
        """List registered generation provider names."""
        self._ensure_providers_loaded()
        return list(self._generation_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
