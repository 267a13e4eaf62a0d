"""
Core API for the folio taxonomy engine.

A Folio handle owns one store directory:
- propose(): validate → embed → retrieve → judge → persist
- similar(): embed a query → ranked existing concepts
- embed_texts(): gated batch embedding with a checkpoint after each batch
- backfill(): embed stored concepts that have no vector yet
- concept_context(): known concept ids related to a document, for prompting
"""

import logging
from pathlib import Path
from typing import Callable, Iterable, Optional

from .backfill import backfill_concept_embeddings
from .batching import BatchScheduler, EmbeddingPipeline
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .curator import ConceptCurator, format_concepts_for_prompt
from .dedup import DuplicateJudge, SimilarityRetriever
from .providers import EmbeddingProvider, GenerationProvider, get_registry
from .taxonomy_store import TaxonomyStore
from .types import (
    BatchProgress,
    CurationReport,
    ExistingConcept,
    ProposedConcept,
    SimilarityCandidate,
)

logger = logging.getLogger(__name__)

TAXONOMY_DB = "taxonomy.db"


class Folio:
    """
    Handle on a folio store: taxonomy database, providers, and curation.

    Opening a handle loads (or creates) the store configuration and the
    taxonomy database; close() releases both. Providers can be injected
    for tests and custom setups.

    Example:
        with Folio() as folio:
            report = folio.propose([
                ProposedConcept("programming/rust", "Rust", definition="Systems language"),
            ])
            print(report.accepted_ids)
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        embedder: Optional[EmbeddingProvider] = None,
        generator: Optional[GenerationProvider] = None,
        store: Optional[TaxonomyStore] = None,
        scheduler: Optional[BatchScheduler] = None,
    ) -> None:
        """
        Args:
            store_path: Store directory. Defaults to FOLIO_STORE_PATH or ~/.folio.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            embedder: Injected embedding provider (skips registry creation).
            generator: Injected judge backend (skips registry creation).
            store: Injected taxonomy store.
            scheduler: Injected batch scheduler.
        """
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            self._store_path = (
                Path(store_path).expanduser().resolve()
                if store_path is not None
                else get_default_store_path()
            )
            self._config = load_or_create_config(self._store_path)

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        registry = get_registry()
        if embedder is None:
            embedder = registry.create_embedding(
                self._config.embedding.name, self._config.embedding.params,
            )
        if generator is None:
            generator = registry.create_generation(
                self._config.judge.name, self._config.judge.params,
            )
        self._embedder = embedder
        self._generator = generator

        self._store = store or TaxonomyStore(
            self._store_path / TAXONOMY_DB, self._config.embedding_dimension,
        )
        self._scheduler = scheduler or BatchScheduler(self._config.batch)

        dedup = self._config.dedup
        self._curator = ConceptCurator(
            self._embedder,
            self._store,
            DuplicateJudge(self._generator),
            SimilarityRetriever(self._store, dedup.threshold),
            context_threshold=dedup.context_threshold,
            context_limit=dedup.context_limit,
        )

    @property
    def config(self) -> StoreConfig:
        """Public access to store configuration."""
        return self._config

    @property
    def store(self) -> TaxonomyStore:
        return self._store

    @property
    def store_path(self) -> Path:
        return self._store_path

    # -------------------------------------------------------------------------
    # Operations
    # -------------------------------------------------------------------------

    def health(self) -> dict:
        """
        Check the embedding service and report store status.

        Raises:
            EmbeddingError: If the service is down or the model is missing
                (and not auto-installed)
        """
        check = getattr(self._embedder, "check_health", None)
        if check is not None:
            check()
        return {
            "store": str(self._store_path),
            "embedding_model": self._config.embedding.params.get("model"),
            "embedding_dimension": self._config.embedding_dimension,
            "judge": self._config.judge.name,
            "concepts": self._store.count(),
        }

    def propose(self, proposals: Iterable[ProposedConcept]) -> CurationReport:
        """Curate proposed concepts, in order; accepted ones are persisted."""
        return self._curator.curate(proposals)

    def similar(
        self,
        text: str,
        threshold: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> list[SimilarityCandidate]:
        """Existing concepts similar to `text`, best first."""
        if threshold is None:
            threshold = self._config.dedup.threshold
        retriever = SimilarityRetriever(self._store, threshold, limit)
        return retriever.candidates(self._embedder.embed(text))

    def related_concepts(self, content: str) -> list[ExistingConcept]:
        """Concepts related to a document, for prompting an enrichment LLM."""
        return self._curator.related_concepts(content)

    def concept_context(self, content: str) -> str:
        """Related concepts rendered as the id list for an enrichment prompt."""
        return format_concepts_for_prompt(self.related_concepts(content))

    def list_concepts(self) -> list[ExistingConcept]:
        return self._store.list_concepts()

    def embed_texts(
        self,
        texts: list[str],
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> list[list[float]]:
        """Embed texts in gated batches, checkpointing the store after each."""
        pipeline = EmbeddingPipeline(
            self._embedder, self._store.checkpoint, scheduler=self._scheduler,
        )
        return pipeline.embed_texts(texts, on_progress=on_progress)

    def backfill(
        self,
        limit: Optional[int] = None,
        on_progress: Optional[Callable[[BatchProgress], None]] = None,
    ) -> dict:
        """Embed stored concepts that have no embedding yet."""
        return backfill_concept_embeddings(
            self._store,
            self._embedder,
            self._scheduler,
            limit=limit,
            on_progress=on_progress,
        )

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the taxonomy store, provider clients, and ops log handler."""
        if getattr(self, "_store", None) is not None:
            self._store.close()
            self._store = None

        generator = getattr(self, "_generator", None)
        if generator is not None and hasattr(generator, "close"):
            generator.close()

        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
