"""
Provider interfaces for folio services.

Providers are configured per store and handle the remote calls:
- Embedding generation (for similarity retrieval)
- Text generation (for the duplicate judge)

Concrete providers register themselves when their module is imported;
the registry imports them lazily on first use.
"""

from .base import (
    EmbeddingProvider,
    GenerationProvider,
    ProviderRegistry,
    get_registry,
)

__all__ = [
    "EmbeddingProvider",
    "GenerationProvider",
    "ProviderRegistry",
    "get_registry",
]
