"""
Concept curation: accept novel concepts, reject duplicates.

Per proposal:

    validate id ──invalid──▶ REJECT (no embedding, no retrieval)
        │
    id taken ──yes──▶ REJECT
        │
    embed "label: definition"
        │
    retrieve candidates ≥ threshold ──none──▶ ACCEPT
        │
    judge best candidate
        ├── DUPLICATE ──▶ REJECT (record collision)
        ├── DISTINCT  ──▶ ACCEPT
        └── UNKNOWN   ──▶ ACCEPT (fail-open)

ACCEPT persists the concept and its embedding, so every accepted concept is
a retrieval candidate for the next proposal. Judge unavailability admits a
possible duplicate rather than losing a genuinely new concept.
"""

import logging
from typing import Iterable, Optional

from .config import DEFAULT_CONTEXT_LIMIT, DEFAULT_CONTEXT_THRESHOLD
from .dedup import DuplicateJudge, SimilarityRetriever
from .errors import ConceptIdError
from .types import (
    CurationOutcome,
    CurationReport,
    ExistingConcept,
    ProposedConcept,
    validate_proposal,
)

logger = logging.getLogger(__name__)

# Characters of a document used to find related concepts
CONTEXT_SAMPLE_CHARS = 2000


class ConceptCurator:
    """
    Decides whether proposed concepts enter the taxonomy.

    Args:
        embedder: EmbeddingProvider used for proposal text
        store: TaxonomyStore (exists, find_similar, add_concept)
        judge: DuplicateJudge
        retriever: SimilarityRetriever; defaults to one over `store` at 0.75
        context_threshold: Similarity floor for related_concepts()
        context_limit: Maximum concepts returned by related_concepts()
    """

    def __init__(
        self,
        embedder,
        store,
        judge: DuplicateJudge,
        retriever: Optional[SimilarityRetriever] = None,
        *,
        context_threshold: float = DEFAULT_CONTEXT_THRESHOLD,
        context_limit: int = DEFAULT_CONTEXT_LIMIT,
    ):
        self._embedder = embedder
        self._store = store
        self._judge = judge
        self._retriever = retriever or SimilarityRetriever(store)
        self._context_threshold = context_threshold
        self._context_limit = context_limit

    def decide(self, proposal: ProposedConcept) -> CurationOutcome:
        """
        Run one proposal through validation, retrieval, and judging.

        Raises:
            EmbeddingError: If the proposal text cannot be embedded
        """
        try:
            validate_proposal(proposal)
        except ConceptIdError as e:
            logger.info("Rejected invalid concept %r: %s", proposal.id, e)
            return CurationOutcome(proposal.id, accepted=False, reason="invalid")

        if self._store.exists(proposal.id):
            logger.info("Rejected existing concept id: %s", proposal.id)
            return CurationOutcome(
                proposal.id, accepted=False, reason="exists",
                collided_with=proposal.id,
            )

        embedding = self._embedder.embed(proposal.embedding_text)
        best = self._retriever.best(embedding)

        if best is None:
            self._persist(proposal, embedding)
            return CurationOutcome(proposal.id, accepted=True, reason="novel")

        decision = self._judge.judge(proposal, best.concept)
        if decision.is_duplicate:
            logger.info(
                "Rejected duplicate: %r ≈ %r (%s, score %.3f)",
                proposal.label, best.concept.label, best.concept.id, best.score,
            )
            return CurationOutcome(
                proposal.id, accepted=False, reason="duplicate",
                collided_with=best.concept.id, score=best.score,
                verdict=decision.verdict,
            )

        self._persist(proposal, embedding)
        reason = "distinct" if decision.available else "judge-unavailable"
        return CurationOutcome(
            proposal.id, accepted=True, reason=reason,
            collided_with=best.concept.id, score=best.score,
            verdict=decision.verdict,
        )

    def curate(self, proposals: Iterable[ProposedConcept]) -> CurationReport:
        """
        Decide every proposal in order.

        Sequential by necessity: a concept accepted early in the list must
        be visible when later proposals are checked against the store.
        """
        report = CurationReport()
        for proposal in proposals:
            report.outcomes.append(self.decide(proposal))
        if report.outcomes:
            logger.info(
                "Curation: %d accepted, %d rejected",
                report.accepted, report.rejected,
            )
        return report

    def related_concepts(self, content: str) -> list[ExistingConcept]:
        """
        Existing concepts related to a document, for steering the LLM
        toward known ids instead of proposing near-duplicates.
        """
        sample = content[:CONTEXT_SAMPLE_CHARS]
        if not sample.strip():
            return []
        embedding = self._embedder.embed(sample)
        found = self._store.find_similar(
            embedding, self._context_threshold, self._context_limit,
        )
        return [c.concept for c in found]

    def _persist(self, proposal: ProposedConcept, embedding: list[float]) -> None:
        self._store.add_concept(proposal, embedding)
        logger.info("Accepted concept: %s - %r", proposal.id, proposal.label)


def format_concepts_for_prompt(concepts: list[ExistingConcept]) -> str:
    """Render concepts as the id list shown to the enrichment LLM."""
    if not concepts:
        return "No taxonomy concepts available yet."
    lines = []
    for c in concepts:
        aliases = f" (aliases: {', '.join(c.alt_labels)})" if c.alt_labels else ""
        lines.append(f"- {c.id}: {c.label}{aliases}")
    return "Available concepts (use these IDs when applicable):\n" + "\n".join(lines)

