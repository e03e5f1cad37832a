"""
Chunk store using SQLite.

Chunks live in the same database file as documents. Each document's chunk
set is written as one batch: the previous set is deleted and the new one
inserted inside a single IMMEDIATE transaction, so readers see either the
old set or the new set, never a mix.

Embeddings are stored as JSON arrays and compared in-process with cosine
similarity.
"""

import json
import logging
import math
import sqlite3
import threading
from pathlib import Path
from typing import Iterable, Optional

from .document_store import escape_like
from .errors import ChunkPersistenceError, ClaimLostError
from .types import Chunk, utc_now

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    """dot(a, b) / (|a| * |b|); 0.0 when either vector has zero norm."""
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(x * x for x in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class ChunkStore:
    """
    SQLite-backed store for document chunks and their embeddings.

    The ``documents`` table must already exist in the same database
    (create the DocumentStore first).
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to the SQLite database shared with DocumentStore
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the chunks table."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS chunks (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                document_id TEXT NOT NULL
                    REFERENCES documents(id) ON DELETE CASCADE,
                chunk_index INTEGER NOT NULL,
                chunk_text TEXT NOT NULL,
                embedding TEXT,
                created_at TEXT NOT NULL,
                UNIQUE (document_id, chunk_index)
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_chunks_document
            ON chunks(document_id, chunk_index)
        """)

    @staticmethod
    def _row_to_chunk(row: sqlite3.Row, score: Optional[float] = None) -> Chunk:
        embedding = row["embedding"]
        return Chunk(
            document_id=row["document_id"],
            chunk_index=row["chunk_index"],
            text=row["chunk_text"],
            embedding=json.loads(embedding) if embedding else None,
            score=score,
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def replace_chunks(
        self,
        document_id: str,
        chunks: list[Chunk],
        *,
        claimed_hash: Optional[str] = None,
    ) -> int:
        """
        Atomically replace a document's chunk set.

        Indices must be exactly 0..N-1. On any database error the
        transaction is rolled back, the previous set is left intact and
        ChunkPersistenceError is raised.

        With ``claimed_hash``, the write only happens while the document is
        still ``processing`` with that content hash; otherwise nothing is
        written and ClaimLostError is raised.

        Returns:
            Number of chunks written
        """
        indices = sorted(c.chunk_index for c in chunks)
        if indices != list(range(len(chunks))):
            raise ValueError(
                f"Chunk indices for {document_id} must be contiguous from 0, got {indices}"
            )
        now = utc_now()
        rows = [
            (
                document_id,
                c.chunk_index,
                c.text,
                json.dumps(c.embedding) if c.embedding is not None else None,
                now,
            )
            for c in chunks
        ]

        with self._lock:
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                if claimed_hash is not None:
                    row = self._conn.execute(
                        "SELECT status, content_hash FROM documents WHERE id = ?",
                        (document_id,),
                    ).fetchone()
                    if row is None or row["status"] != "processing" or row["content_hash"] != claimed_hash:
                        self._conn.execute("ROLLBACK")
                        raise ClaimLostError(
                            f"Claim on {document_id} lost before its chunks were written"
                        )
                self._conn.execute("DELETE FROM chunks WHERE document_id = ?", (document_id,))
                self._conn.executemany("""
                    INSERT INTO chunks
                    (document_id, chunk_index, chunk_text, embedding, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, rows)
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                if self._conn.in_transaction:
                    self._conn.execute("ROLLBACK")
                raise ChunkPersistenceError(
                    f"Failed to write {len(rows)} chunks for {document_id}: {e}"
                ) from e

        logger.debug("Wrote %d chunks for %s", len(rows), document_id)
        return len(rows)

    insert_chunks = replace_chunks

    def delete_chunks(self, document_id: str) -> int:
        """Delete all chunks of a document. Returns count deleted."""
        with self._lock:
            cursor = self._conn.execute(
                "DELETE FROM chunks WHERE document_id = ?", (document_id,)
            )
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def count_chunks(self, document_id: str) -> int:
        """Number of chunks stored for a document."""
        return self._conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE document_id = ?", (document_id,)
        ).fetchone()[0]

    def get_chunks_by_index(
        self,
        document_id: str,
        indices: Iterable[int],
    ) -> list[Chunk]:
        """Chunks at the given indices, in index order. Missing indices are omitted."""
        wanted = sorted(set(indices))
        if not wanted:
            return []
        placeholders = ",".join("?" * len(wanted))
        cursor = self._conn.execute(f"""
            SELECT document_id, chunk_index, chunk_text, embedding
            FROM chunks
            WHERE document_id = ? AND chunk_index IN ({placeholders})
            ORDER BY chunk_index
        """, (document_id, *wanted))
        return [self._row_to_chunk(row) for row in cursor]

    def get_chunks(self, document_id: str) -> list[Chunk]:
        """All chunks of a document, in index order."""
        cursor = self._conn.execute("""
            SELECT document_id, chunk_index, chunk_text, embedding
            FROM chunks WHERE document_id = ?
            ORDER BY chunk_index
        """, (document_id,))
        return [self._row_to_chunk(row) for row in cursor]

    def keyword_search(
        self,
        query: str,
        document_id: Optional[str] = None,
        limit: int = 20,
    ) -> list[Chunk]:
        """
        Case-insensitive substring match over chunk text.

        Ranked by number of occurrences, then by position in the document.
        ``score`` holds the occurrence count.
        """
        needle = query.strip().lower()
        if not needle:
            return []
        sql = """
            SELECT document_id, chunk_index, chunk_text, embedding
            FROM chunks WHERE 1=1
        """
        params: list = []
        # LIKE folds ASCII case only, so it can prefilter ASCII needles alone
        if needle.isascii():
            sql += " AND chunk_text LIKE ? ESCAPE '\\'"
            params.append(f"%{escape_like(needle)}%")
        if document_id is not None:
            sql += " AND document_id = ?"
            params.append(document_id)

        hits = []
        for row in self._conn.execute(sql, params):
            occurrences = row["chunk_text"].lower().count(needle)
            if occurrences:
                hits.append(self._row_to_chunk(row, score=float(occurrences)))
        hits.sort(key=lambda c: (-c.score, c.document_id, c.chunk_index))
        return hits[:limit]

    def vector_search(
        self,
        query_vector: list[float],
        document_id: Optional[str] = None,
        k: Optional[int] = 10,
        document_ids: Optional[set[str]] = None,
    ) -> list[Chunk]:
        """
        Chunks ranked by cosine similarity to ``query_vector``.

        Args:
            query_vector: Embedding of the query
            document_id: Restrict to one document's chunks
            k: Maximum number of chunks to return (None for all)
            document_ids: Restrict to this set of documents (None for all)

        Returns:
            Chunks with ``score`` set to the similarity, best first
        """
        if document_ids is not None and not document_ids:
            return []
        sql = """
            SELECT document_id, chunk_index, chunk_text, embedding
            FROM chunks WHERE embedding IS NOT NULL
        """
        params: list = []
        if document_id is not None:
            sql += " AND document_id = ?"
            params.append(document_id)

        scored = []
        for row in self._conn.execute(sql, params):
            if document_ids is not None and row["document_id"] not in document_ids:
                continue
            chunk = self._row_to_chunk(row)
            chunk.score = cosine_similarity(query_vector, chunk.embedding)
            scored.append(chunk)
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:k]

    def stats(self) -> dict:
        """Chunk totals across the store."""
        row = self._conn.execute("""
            SELECT COUNT(*), COUNT(embedding), COUNT(DISTINCT document_id)
            FROM chunks
        """).fetchone()
        return {"chunks": row[0], "embedded_chunks": row[1], "chunked_documents": row[2]}

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

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
        self.close()
