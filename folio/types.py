"""
Data types for the embedding and concept curation engine.
"""

import logging
import math
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Sequence

from .errors import ConceptIdError, EmbeddingValidationError

logger = logging.getLogger(__name__)


# Embedding dimension of mxbai-embed-large, the default embedding model
DEFAULT_EMBEDDING_DIMENSION = 1024

# Top-level taxonomy categories a proposed concept may live under
CONCEPT_CATEGORIES = frozenset({
    "programming",
    "education",
    "design",
    "business",
    "meta",
    "psychology",
    "research",
    "writing",
})

# Placeholder children the LLM emits when it has nothing real to propose
_GENERIC_CHILDREN = frozenset({"concept", "new"})

MAX_CHILD_LENGTH = 30
MAX_CHILD_WORDS = 4
MAX_LABEL_WORDS = 5


def utc_now() -> str:
    """Current UTC timestamp in canonical format: YYYY-MM-DDTHH:MM:SS."""
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S")


# ---------------------------------------------------------------------------
# Batch processing
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class BatchRunConfig:
    """
    Settings for one batch run.

    Attributes:
        batch_size: Items per batch before the post-batch hook runs
        concurrency: Maximum items in flight within a batch
        batch_delay: Pause between batches, in seconds
        checkpoint_enabled: Whether to run the post-batch hook
        adaptive_sizing: Shrink batch_size under memory pressure at run start
    """
    batch_size: int = 20
    concurrency: int = 3
    batch_delay: float = 0.05
    checkpoint_enabled: bool = True
    adaptive_sizing: bool = True

    def __post_init__(self):
        if self.batch_size <= 0:
            raise ValueError(f"batch_size must be positive: {self.batch_size}")
        if self.concurrency <= 0:
            raise ValueError(f"concurrency must be positive: {self.concurrency}")
        if self.batch_delay < 0:
            raise ValueError(f"batch_delay must not be negative: {self.batch_delay}")

    def with_batch_size(self, batch_size: int) -> "BatchRunConfig":
        return replace(self, batch_size=batch_size)


@dataclass(frozen=True)
class BatchProgress:
    """Progress report emitted once per completed batch."""
    batch_index: int
    total_batches: int
    items_processed: int
    items_total: int
    percent: int


# ---------------------------------------------------------------------------
# Embeddings
# ---------------------------------------------------------------------------

def validate_embedding(embedding: Sequence[float], dimension: int) -> list[float]:
    """
    Check an embedding vector before it is handed to any caller.

    Raises:
        EmbeddingValidationError: If the value is not a list, is empty,
            has the wrong dimension, or holds NaN, infinity or non-numbers
    """
    if embedding is not None and not isinstance(embedding, (list, tuple)):
        raise EmbeddingValidationError(
            f"Invalid embedding: expected a list of floats, got {type(embedding).__name__}"
        )
    if not embedding:
        raise EmbeddingValidationError(
            f"Invalid embedding: dimension 0 (expected {dimension})"
        )
    if len(embedding) != dimension:
        raise EmbeddingValidationError(
            f"Invalid embedding: dimension {len(embedding)} (expected {dimension})"
        )
    if any(isinstance(v, bool) for v in embedding):
        raise EmbeddingValidationError("Invalid embedding: non-numeric value (bool)")
    try:
        values = [float(v) for v in embedding]
    except (TypeError, ValueError) as e:
        raise EmbeddingValidationError(f"Invalid embedding: non-numeric value ({e})") from e
    if not all(math.isfinite(v) for v in values):
        raise EmbeddingValidationError(
            "Invalid embedding: contains non-finite values (NaN or Infinity)"
        )
    return values


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """Cosine similarity clamped to [0, 1]. Zero vectors score 0."""
    dot = 0.0
    norm_a = 0.0
    norm_b = 0.0
    for x, y in zip(a, b):
        dot += x * y
        norm_a += x * x
        norm_b += y * y
    if norm_a == 0.0 or norm_b == 0.0:
        return 0.0
    score = dot / (math.sqrt(norm_a) * math.sqrt(norm_b))
    return min(1.0, max(0.0, score))


# ---------------------------------------------------------------------------
# Taxonomy concepts
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProposedConcept:
    """A new concept suggested by the LLM during enrichment."""
    id: str
    label: str
    alt_labels: tuple[str, ...] = ()
    definition: Optional[str] = None

    @property
    def embedding_text(self) -> str:
        return concept_text(self.label, self.definition)


@dataclass(frozen=True)
class ExistingConcept:
    """A concept already persisted in the taxonomy."""
    id: str
    label: str
    alt_labels: tuple[str, ...] = ()
    definition: Optional[str] = None
    created_at: str = field(default_factory=utc_now)


@dataclass(frozen=True)
class SimilarityCandidate:
    """An existing concept and its cosine similarity to a query embedding."""
    concept: ExistingConcept
    score: float


def concept_text(label: str, definition: Optional[str] = None) -> str:
    """Text that is embedded for a concept: "label: definition" or just the label."""
    if definition:
        return f"{label}: {definition}"
    return label


def validate_concept_id(id: str) -> None:
    """
    Check a proposed concept id has the form "<category>/<short-name>".

    Valid: "programming/rust", "education/spaced-repetition".
    Invalid: titles, sentences, "new/concept", missing slash, spaces,
    uppercase, unknown categories.

    Raises:
        ConceptIdError: describing the first rule the id breaks
    """
    if not id or id.count("/") != 1:
        raise ConceptIdError(f"Concept id must be '<category>/<name>': {id!r}")
    if id != id.lower():
        raise ConceptIdError(f"Concept id must be lowercase: {id!r}")
    parent, child = id.split("/")
    if parent not in CONCEPT_CATEGORIES:
        raise ConceptIdError(
            f"Unknown concept category {parent!r}. "
            f"Allowed: {', '.join(sorted(CONCEPT_CATEGORIES))}"
        )
    if not child or " " in child:
        raise ConceptIdError(f"Concept name must be non-empty with no spaces: {id!r}")
    if len(child) > MAX_CHILD_LENGTH:
        raise ConceptIdError(f"Concept name longer than {MAX_CHILD_LENGTH} characters: {id!r}")
    if child in _GENERIC_CHILDREN:
        raise ConceptIdError(f"Concept name is a placeholder: {id!r}")
    if len(child.split("-")) > MAX_CHILD_WORDS:
        raise ConceptIdError(f"Concept name has more than {MAX_CHILD_WORDS} words: {id!r}")


def is_valid_concept_id(id: str) -> bool:
    try:
        validate_concept_id(id)
    except ConceptIdError:
        return False
    return True


def validate_proposal(proposal: ProposedConcept) -> None:
    """Structural checks on a whole proposal: id format and a short label."""
    if not proposal.label or not proposal.label.strip():
        raise ConceptIdError(f"Concept {proposal.id!r} has no label")
    validate_concept_id(proposal.id)
    if len(proposal.label.split()) > MAX_LABEL_WORDS:
        raise ConceptIdError(f"Concept label is too verbose: {proposal.label!r}")


def validate_proposed_concepts(
    proposals: Optional[Sequence[ProposedConcept]],
) -> list[ProposedConcept]:
    """Filter LLM proposals down to the structurally valid ones."""
    if not proposals:
        return []
    valid = []
    for proposal in proposals:
        try:
            validate_proposal(proposal)
        except ConceptIdError as e:
            logger.info("Rejected invalid proposal: %s", e)
            continue
        valid.append(proposal)
    return valid


# ---------------------------------------------------------------------------
# Deduplication decisions
# ---------------------------------------------------------------------------

class Verdict(Enum):
    """Outcome of asking the judge whether two concepts are the same."""
    DUPLICATE = "duplicate"
    DISTINCT = "distinct"
    UNKNOWN = "unknown"  # judge could not be consulted


@dataclass(frozen=True)
class DedupDecision:
    verdict: Verdict

    @property
    def is_duplicate(self) -> bool:
        return self.verdict is Verdict.DUPLICATE

    @property
    def available(self) -> bool:
        return self.verdict is not Verdict.UNKNOWN


@dataclass(frozen=True)
class CurationOutcome:
    """
    What happened to one proposed concept.

    Attributes:
        concept_id: The proposal's id
        accepted: True if the concept was persisted
        reason: "novel", "distinct", "judge-unavailable", "duplicate",
                "exists", or "invalid"
        collided_with: Id of the existing concept it was compared against
        score: Similarity to collided_with, when a candidate was found
        verdict: Judge verdict, when the judge was consulted
    """
    concept_id: str
    accepted: bool
    reason: str
    collided_with: Optional[str] = None
    score: Optional[float] = None
    verdict: Optional[Verdict] = None


@dataclass
class CurationReport:
    """Accept/reject totals for a curation run."""
    outcomes: list[CurationOutcome] = field(default_factory=list)

    @property
    def accepted(self) -> int:
        return sum(1 for o in self.outcomes if o.accepted)

    @property
    def rejected(self) -> int:
        return sum(1 for o in self.outcomes if not o.accepted)

    @property
    def accepted_ids(self) -> list[str]:
        return [o.concept_id for o in self.outcomes if o.accepted]

    @property
    def rejected_ids(self) -> list[str]:
        return [o.concept_id for o in self.outcomes if not o.accepted]
