"""
Generate embeddings for concepts that were stored without one.

Concepts imported from an older taxonomy, or persisted while the embedding
service was down, have no vector and are invisible to duplicate retrieval.
The backfill embeds them in gated batches with a store checkpoint after
each batch, so a long run keeps the write-ahead log bounded.
"""

import logging
from typing import Callable, Optional

from .batching import BatchScheduler
from .types import BatchProgress, ExistingConcept, concept_text

logger = logging.getLogger(__name__)


def backfill_concept_embeddings(
    store,
    embedder,
    scheduler: Optional[BatchScheduler] = None,
    *,
    limit: Optional[int] = None,
    on_progress: Optional[Callable[[BatchProgress], None]] = None,
) -> dict:
    """
    Embed and store every concept lacking an embedding.

    Args:
        store: TaxonomyStore
        embedder: EmbeddingProvider whose dimension matches the store
        scheduler: BatchScheduler to run through; defaults to BatchRunConfig()
        limit: Process at most this many concepts
        on_progress: Called once per completed batch

    Returns:
        Dict with stats: pending, embedded

    Raises:
        BatchRunError: A concept could not be embedded or stored; concepts
            in earlier batches keep their embeddings
    """
    scheduler = scheduler or BatchScheduler()
    pending = store.concepts_missing_embeddings(limit)
    stats = {"pending": len(pending), "embedded": 0}
    if not pending:
        logger.debug("Backfill: every concept has an embedding")
        return stats

    logger.info("Backfill: embedding %d concepts", len(pending))

    def embed_one(concept: ExistingConcept) -> str:
        vector = embedder.embed(concept_text(concept.label, concept.definition))
        store.store_concept_embedding(concept.id, vector)
        return concept.id

    done = scheduler.run(
        pending,
        embed_one,
        after_batch=store.checkpoint,
        on_progress=on_progress,
    )
    stats["embedded"] = len(done)
    logger.info("Backfill: embedded %d concepts", stats["embedded"])
    return stats
