"""
folio - batched embedding and concept deduplication for a knowledge taxonomy.

Embeddings are produced by a local Ollama server in gated batches with a
storage checkpoint after each batch. Proposed taxonomy concepts are accepted
unless an existing concept is both similar by embedding and judged a
duplicate by an LLM.

Example:
    from folio import Folio, ProposedConcept

    with Folio() as folio:
        report = folio.propose([ProposedConcept("programming/rust", "Rust")])
"""

from .api import Folio
from .batching import BatchScheduler, EmbeddingPipeline, process_in_batches
from .errors import (
    BatchRunError,
    CheckpointError,
    EmbeddingError,
    EmbeddingValidationError,
    FolioError,
    GenerationError,
    TransientNetworkError,
    ValidationError,
)
from .types import (
    BatchProgress,
    BatchRunConfig,
    CurationOutcome,
    CurationReport,
    ExistingConcept,
    ProposedConcept,
    Verdict,
)

__all__ = [
    "Folio",
    "BatchScheduler",
    "EmbeddingPipeline",
    "process_in_batches",
    "BatchRunConfig",
    "BatchProgress",
    "ProposedConcept",
    "ExistingConcept",
    "CurationOutcome",
    "CurationReport",
    "Verdict",
    "FolioError",
    "ValidationError",
    "EmbeddingError",
    "EmbeddingValidationError",
    "TransientNetworkError",
    "GenerationError",
    "BatchRunError",
    "CheckpointError",
]
