"""
Taxonomy store using SQLite.

Holds concept records and their embeddings. Similarity search is an
exhaustive cosine scan over the stored vectors; the taxonomy is small
(hundreds to low thousands of concepts) so no index is needed.

The connection is a single-writer resource: every write goes through one
lock, and checkpoint() flushes the write-ahead log so it cannot grow
without bound during long ingestion runs.
"""

import json
import logging
import sqlite3
import threading
from array import array
from pathlib import Path
from typing import Optional, Sequence

from .types import (
    ExistingConcept,
    ProposedConcept,
    SimilarityCandidate,
    cosine_similarity,
    utc_now,
    validate_embedding,
)

logger = logging.getLogger(__name__)


def _pack(vector: Sequence[float]) -> bytes:
    return array("f", vector).tobytes()


def _unpack(blob: bytes) -> list[float]:
    values = array("f")
    values.frombytes(blob)
    return values.tolist()


class TaxonomyStore:
    """
    SQLite-backed store for taxonomy concepts and their embeddings.

    Embeddings are checked against `embedding_dimension` on write, so a
    malformed vector is rejected here even if a caller skipped validation.
    """

    def __init__(self, db_path: Path, embedding_dimension: int):
        """
        Args:
            db_path: Path to SQLite database file
            embedding_dimension: Length every stored embedding must have
        """
        self._db_path = db_path
        self.embedding_dimension = embedding_dimension
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        # WAL so readers don't block the writer; checkpoint() truncates it
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS concepts (
                id TEXT PRIMARY KEY,
                pref_label TEXT NOT NULL,
                alt_labels TEXT NOT NULL DEFAULT '[]',
                definition TEXT,
                created_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS concept_embeddings (
                concept_id TEXT PRIMARY KEY
                    REFERENCES concepts(id) ON DELETE CASCADE,
                embedding BLOB NOT NULL
            )
        """)
        self._conn.commit()

    @staticmethod
    def _row_to_concept(row: sqlite3.Row) -> ExistingConcept:
        return ExistingConcept(
            id=row["id"],
            label=row["pref_label"],
            alt_labels=tuple(json.loads(row["alt_labels"] or "[]")),
            definition=row["definition"],
            created_at=row["created_at"],
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def add_concept(
        self,
        proposal: ProposedConcept,
        embedding: Optional[Sequence[float]] = None,
    ) -> ExistingConcept:
        """
        Insert a new concept, and its embedding when one is given.

        Both rows are written in one transaction; a concept is never
        left behind if its embedding is rejected.

        Raises:
            EmbeddingValidationError: If the embedding has the wrong shape
            ValueError: If a concept with this id already exists
        """
        vector = None
        if embedding is not None:
            vector = validate_embedding(embedding, self.embedding_dimension)
        concept = ExistingConcept(
            id=proposal.id,
            label=proposal.label,
            alt_labels=tuple(proposal.alt_labels),
            definition=proposal.definition,
            created_at=utc_now(),
        )
        with self._lock:
            try:
                self._conn.execute("""
                    INSERT INTO concepts (id, pref_label, alt_labels, definition, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    concept.id,
                    concept.label,
                    json.dumps(list(concept.alt_labels), ensure_ascii=False),
                    concept.definition,
                    concept.created_at,
                ))
                if vector is not None:
                    self._conn.execute(
                        "INSERT INTO concept_embeddings (concept_id, embedding) VALUES (?, ?)",
                        (concept.id, _pack(vector)),
                    )
                self._conn.commit()
            except sqlite3.IntegrityError as e:
                self._conn.rollback()
                raise ValueError(f"Concept already exists: {proposal.id}") from e
        return concept

    def store_concept_embedding(self, concept_id: str, embedding: Sequence[float]) -> None:
        """
        Insert or replace the embedding for an existing concept.

        Raises:
            EmbeddingValidationError: If the vector has the wrong shape
            KeyError: If the concept does not exist
        """
        vector = validate_embedding(embedding, self.embedding_dimension)
        with self._lock:
            exists = self._conn.execute(
                "SELECT 1 FROM concepts WHERE id = ?", (concept_id,)
            ).fetchone()
            if exists is None:
                raise KeyError(f"No such concept: {concept_id}")
            self._conn.execute("""
                INSERT INTO concept_embeddings (concept_id, embedding)
                VALUES (?, ?)
                ON CONFLICT (concept_id) DO UPDATE SET embedding = excluded.embedding
            """, (concept_id, _pack(vector)))
            self._conn.commit()

    def delete_concept(self, concept_id: str) -> bool:
        """Delete a concept and its embedding. Returns True if it existed."""
        with self._lock:
            cursor = self._conn.execute("DELETE FROM concepts WHERE id = ?", (concept_id,))
            self._conn.commit()
        return cursor.rowcount > 0

    def checkpoint(self) -> None:
        """Flush the write-ahead log into the database file and truncate it."""
        with self._lock:
            row = self._conn.execute("PRAGMA wal_checkpoint(TRUNCATE)").fetchone()
        # (busy, wal pages, checkpointed pages); busy=1 means readers held it back
        if row is not None and row[0]:
            raise sqlite3.OperationalError(
                f"WAL checkpoint blocked by active readers on {self._db_path}"
            )

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get_concept(self, concept_id: str) -> Optional[ExistingConcept]:
        row = self._conn.execute(
            "SELECT id, pref_label, alt_labels, definition, created_at "
            "FROM concepts WHERE id = ?",
            (concept_id,),
        ).fetchone()
        return self._row_to_concept(row) if row else None

    def exists(self, concept_id: str) -> bool:
        return self._conn.execute(
            "SELECT 1 FROM concepts WHERE id = ?", (concept_id,)
        ).fetchone() is not None

    def get_embedding(self, concept_id: str) -> Optional[list[float]]:
        row = self._conn.execute(
            "SELECT embedding FROM concept_embeddings WHERE concept_id = ?",
            (concept_id,),
        ).fetchone()
        return _unpack(row["embedding"]) if row else None

    def list_concepts(self) -> list[ExistingConcept]:
        cursor = self._conn.execute(
            "SELECT id, pref_label, alt_labels, definition, created_at "
            "FROM concepts ORDER BY id"
        )
        return [self._row_to_concept(row) for row in cursor.fetchall()]

    def count(self) -> int:
        return self._conn.execute("SELECT COUNT(*) FROM concepts").fetchone()[0]

    def concepts_missing_embeddings(self, limit: Optional[int] = None) -> list[ExistingConcept]:
        """Concepts that have no stored embedding yet, oldest first."""
        sql = """
            SELECT c.id, c.pref_label, c.alt_labels, c.definition, c.created_at
            FROM concepts c
            LEFT JOIN concept_embeddings e ON e.concept_id = c.id
            WHERE e.concept_id IS NULL
            ORDER BY c.created_at, c.id
        """
        params: tuple = ()
        if limit is not None:
            sql += " LIMIT ?"
            params = (limit,)
        cursor = self._conn.execute(sql, params)
        return [self._row_to_concept(row) for row in cursor.fetchall()]

    def find_similar(
        self,
        embedding: Sequence[float],
        threshold: float,
        limit: Optional[int] = None,
    ) -> list[SimilarityCandidate]:
        """
        Concepts whose embedding has cosine similarity >= threshold.

        Returns:
            Candidates ordered by descending score, at most `limit`
        """
        cursor = self._conn.execute("""
            SELECT c.id, c.pref_label, c.alt_labels, c.definition, c.created_at,
                   e.embedding
            FROM concepts c
            JOIN concept_embeddings e ON e.concept_id = c.id
        """)
        candidates = []
        for row in cursor.fetchall():
            score = cosine_similarity(embedding, _unpack(row["embedding"]))
            if score >= threshold:
                candidates.append(SimilarityCandidate(self._row_to_concept(row), score))
        candidates.sort(key=lambda c: (-c.score, c.concept.id))
        if limit is not None:
            candidates = candidates[:limit]
        return candidates

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        """Ensure connection is closed on garbage collection."""
        self.close()
