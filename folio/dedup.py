"""
Similarity retrieval and LLM arbitration for proposed concepts.

Embedding similarity finds candidates cheaply but cannot tell synonyms from
related-but-different ideas ("Machine Learning" vs "Deep Learning" score
high). The judge settles that for the single best candidate: if the closest
match is not a duplicate, lower-ranked ones are even less likely to be.
"""

import logging
from typing import Optional, Sequence

from .config import DEFAULT_DEDUP_THRESHOLD
from .errors import GenerationError
from .types import (
    DedupDecision,
    ExistingConcept,
    ProposedConcept,
    SimilarityCandidate,
    Verdict,
)

logger = logging.getLogger(__name__)


JUDGE_PROMPT = """You are a taxonomy curator. Determine if these two concepts are essentially the SAME concept (duplicates that should be merged) or DISTINCT concepts that both belong in a knowledge taxonomy.

PROPOSED CONCEPT:
Name: {proposed_label}
Definition: {proposed_definition}

EXISTING CONCEPT:
Name: {existing_label}
Definition: {existing_definition}

Consider:
- Are they synonyms or alternate names for the same thing? → DUPLICATE
- Are they related but represent different ideas, theories, or domains? → DISTINCT
- Would a subject matter expert consider them separate entries? → DISTINCT

Reply with ONLY one word: DUPLICATE or DISTINCT"""


def build_judge_prompt(proposed: ProposedConcept, existing: ExistingConcept) -> str:
    return JUDGE_PROMPT.format(
        proposed_label=proposed.label,
        proposed_definition=proposed.definition or "(no definition)",
        existing_label=existing.label,
        existing_definition=existing.definition or "(no definition)",
    )


def parse_verdict(answer: str) -> Verdict:
    """Anything that does not contain DUPLICATE counts as DISTINCT."""
    if "DUPLICATE" in (answer or "").upper():
        return Verdict.DUPLICATE
    return Verdict.DISTINCT


class SimilarityRetriever:
    """
    Finds existing concepts similar to a query embedding.

    Args:
        store: Anything with find_similar(embedding, threshold, limit)
        threshold: Minimum cosine similarity for a candidate
        limit: Maximum number of candidates, or None for all
    """

    def __init__(self, store, threshold: float = DEFAULT_DEDUP_THRESHOLD,
                 limit: Optional[int] = None):
        if not 0.0 <= threshold <= 1.0:
            raise ValueError(f"threshold must be between 0 and 1, got {threshold}")
        self._store = store
        self.threshold = threshold
        self.limit = limit

    def candidates(self, embedding: Sequence[float]) -> list[SimilarityCandidate]:
        """Candidates at or above the threshold, best first."""
        found = self._store.find_similar(embedding, self.threshold, self.limit)
        # The store promises ordering; don't rely on it for correctness
        found = [c for c in found if c.score >= self.threshold]
        found.sort(key=lambda c: -c.score)
        return found

    def best(self, embedding: Sequence[float]) -> Optional[SimilarityCandidate]:
        found = self.candidates(embedding)
        return found[0] if found else None


class DuplicateJudge:
    """
    Asks an LLM whether a proposal duplicates an existing concept.

    An unreachable or failing generation provider yields Verdict.UNKNOWN
    instead of an exception; callers decide what unknown means.
    """

    def __init__(self, generator):
        self._generator = generator

    def judge(self, proposed: ProposedConcept, existing: ExistingConcept) -> DedupDecision:
        prompt = build_judge_prompt(proposed, existing)
        try:
            answer = self._generator.generate(prompt)
        except GenerationError as e:
            logger.info("Duplicate judge unavailable: %s", e)
            return DedupDecision(Verdict.UNKNOWN)

        verdict = parse_verdict(answer)
        logger.debug(
            "Judge: %r vs %r -> %s (%r)",
            proposed.label, existing.label, verdict.value, answer[:50],
        )
        return DedupDecision(verdict)
