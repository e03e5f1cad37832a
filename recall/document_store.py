"""
Document store using SQLite.

The document store is the source of truth for:
- Document identity (path and id)
- The full raw body and its frontmatter
- Processing status (pending / processing / complete / failed)
- Timestamps

Chunks and their embeddings live in the same database file, in the
``chunks`` table owned by ChunkStore; deleting a document cascades to them.

Status transitions that matter for mutual exclusion are decided by
SQLite itself: ``claim_for_processing`` is a single conditional UPDATE
inside an IMMEDIATE transaction, so of two concurrent callers exactly one
sees rowcount == 1.
"""

import hashlib
import json
import logging
import sqlite3
import threading
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Any, Optional

from .types import (
    CLAIMABLE_STATUSES,
    LIBRARY_PREFIX,
    LIBRARY_TYPES,
    DocumentRecord,
    ProcessingStatus,
    SearchFilters,
    _as_list,
    format_utc,
    parse_date_param,
    parse_utc_timestamp,
    utc_now,
)

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id, path, body, frontmatter_json, status, content_hash, "
    "attempts, last_error, created_at, updated_at"
)


def content_hash(body: str) -> str:
    """SHA-256 of the body, used to detect unchanged re-ingestion."""
    return hashlib.sha256(body.encode("utf-8")).hexdigest()


def escape_like(text: str) -> str:
    """Escape LIKE wildcards; use with ESCAPE '\\'."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _next_timestamp(previous: Optional[str]) -> str:
    """A timestamp strictly after ``previous`` (clock may not have ticked)."""
    now = utc_now()
    if previous and now <= previous:
        now = format_utc(parse_utc_timestamp(previous) + timedelta(microseconds=1))
    return now


def _normalize_frontmatter(frontmatter: Optional[dict[str, Any]]) -> dict[str, Any]:
    fm = dict(frontmatter or {})
    for key in ("tags", "guests"):
        if key in fm:
            fm[key] = _as_list(fm[key])
    return fm


# -----------------------------------------------------------------------------
# Filter adapter
# -----------------------------------------------------------------------------

def _date_expression() -> tuple[str, list]:
    """SQL expression for a document's filter date (first 10 chars: YYYY-MM-DD)."""
    placeholders = ",".join("?" * len(LIBRARY_TYPES))
    expr = f"""substr(CASE
        WHEN d.path LIKE ? OR json_extract(d.frontmatter_json, '$.type') IN ({placeholders})
        THEN COALESCE(json_extract(d.frontmatter_json, '$.published_date'),
                      json_extract(d.frontmatter_json, '$.created_at'), d.created_at)
        ELSE COALESCE(json_extract(d.frontmatter_json, '$.created_at'), d.created_at)
    END, 1, 10)"""
    return expr, [LIBRARY_PREFIX + "%", *sorted(LIBRARY_TYPES)]


def filters_to_sql(filters: Optional[SearchFilters]) -> tuple[str, list]:
    """
    Translate SearchFilters into a WHERE fragment over ``documents d``.

    Returns ("1=1", []) for no filters. All values are bound parameters.

    - file_type: frontmatter ``type`` equals the value
    - tags: any overlap with the frontmatter tag list (case-insensitive)
    - author: substring of ``source_author`` OR of any ``guests`` entry
    - source: ``source`` equals the value, or ``source_url`` contains it
    - after: date >= after (inclusive); before: date < before (exclusive)
    """
    if filters is None or filters.is_empty():
        return "1=1", []

    clauses: list[str] = []
    params: list = []

    if filters.file_type:
        clauses.append("json_extract(d.frontmatter_json, '$.type') = ?")
        params.append(filters.file_type)

    if filters.tags:
        placeholders = ",".join("?" * len(filters.tags))
        clauses.append(
            "EXISTS (SELECT 1 FROM json_each(d.frontmatter_json, '$.tags') t "
            f"WHERE lower(t.value) IN ({placeholders}))"
        )
        params.extend(tag.lower() for tag in filters.tags)

    if filters.author:
        pattern = f"%{escape_like(filters.author)}%"
        clauses.append(
            "(json_extract(d.frontmatter_json, '$.source_author') LIKE ? ESCAPE '\\' "
            "OR EXISTS (SELECT 1 FROM json_each(d.frontmatter_json, '$.guests') g "
            "WHERE g.value LIKE ? ESCAPE '\\'))"
        )
        params.extend([pattern, pattern])

    if filters.source:
        clauses.append(
            "(lower(json_extract(d.frontmatter_json, '$.source')) = lower(?) "
            "OR json_extract(d.frontmatter_json, '$.source_url') LIKE ? ESCAPE '\\')"
        )
        params.extend([filters.source, f"%{escape_like(filters.source)}%"])

    if filters.after or filters.before:
        expr, expr_params = _date_expression()
        if filters.after:
            clauses.append(f"{expr} >= ?")
            params.extend(expr_params)
            params.append(parse_date_param(filters.after))
        if filters.before:
            clauses.append(f"{expr} < ?")
            params.extend(expr_params)
            params.append(parse_date_param(filters.before))

    return " AND ".join(clauses), params


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------

class DocumentStore:
    """
    SQLite-backed store for documents and their processing status.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        self._init_db()

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so we can use BEGIN IMMEDIATE for atomic claims
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")
        # Deletes from this connection must cascade to chunks
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                id TEXT PRIMARY KEY,
                path TEXT NOT NULL UNIQUE,
                body TEXT NOT NULL,
                frontmatter_json TEXT NOT NULL DEFAULT '{}',
                status TEXT NOT NULL DEFAULT 'pending',
                content_hash TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 0,
                last_error TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_status_updated
            ON documents(status, updated_at)
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_documents_updated
            ON documents(updated_at)
        """)

    @property
    def db_path(self) -> Path:
        return self._db_path

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> DocumentRecord:
        return DocumentRecord(
            id=row["id"],
            path=row["path"],
            body=row["body"],
            frontmatter=json.loads(row["frontmatter_json"]),
            status=row["status"],
            content_hash=row["content_hash"],
            attempts=row["attempts"],
            last_error=row["last_error"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def create_or_update(
        self,
        path: str,
        body: str,
        frontmatter: Optional[dict[str, Any]] = None,
    ) -> tuple[DocumentRecord, bool]:
        """
        Insert a document, or replace the body of an existing one.

        A changed body resets the document to ``pending`` and starts a new
        processing cycle; its existing chunks stay searchable until they are
        replaced. An identical body only refreshes the frontmatter.

        Args:
            path: Unique document path (e.g. ``library/some-video.md``)
            body: Full raw text
            frontmatter: Structured metadata (type, tags, source_author, ...)

        Returns:
            (record, changed) where changed is False for an unchanged body
        """
        if not path or not path.strip():
            raise ValueError("Document path must not be empty")
        path = path.strip()
        fm = _normalize_frontmatter(frontmatter)
        fm_json = json.dumps(fm, ensure_ascii=False, default=str)
        digest = content_hash(body)

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    f"SELECT {_COLUMNS} FROM documents WHERE path = ?", (path,)
                ).fetchone()
                if row is None:
                    now = utc_now()
                    doc_id = uuid.uuid4().hex
                    self._conn.execute("""
                        INSERT INTO documents
                        (id, path, body, frontmatter_json, status, content_hash,
                         attempts, last_error, created_at, updated_at)
                        VALUES (?, ?, ?, ?, 'pending', ?, 0, NULL, ?, ?)
                    """, (doc_id, path, body, fm_json, digest, now, now))
                    changed = True
                elif row["content_hash"] == digest:
                    doc_id = row["id"]
                    changed = False
                    if row["frontmatter_json"] != fm_json:
                        self._conn.execute("""
                            UPDATE documents SET frontmatter_json = ?, updated_at = ?
                            WHERE id = ?
                        """, (fm_json, _next_timestamp(row["updated_at"]), doc_id))
                else:
                    doc_id = row["id"]
                    changed = True
                    self._conn.execute("""
                        UPDATE documents
                        SET body = ?, frontmatter_json = ?, content_hash = ?,
                            status = 'pending', attempts = 0, last_error = NULL,
                            updated_at = ?
                        WHERE id = ?
                    """, (body, fm_json, digest, _next_timestamp(row["updated_at"]), doc_id))
                record = self._row_to_record(self._conn.execute(
                    f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (doc_id,)
                ).fetchone())
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise

        if changed:
            logger.info("Stored %s (%d chars) as pending", path, len(body))
        return record, changed

    def delete(self, id: str) -> bool:
        """
        Delete a document and (by cascade) its chunks.

        Returns:
            True if the document existed and was deleted
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM documents WHERE id = ?", (id,))
        return cursor.rowcount > 0

    def _transition(
        self,
        id: str,
        new_status: str,
        from_statuses: tuple[str, ...],
        *,
        error: Optional[str] = None,
        set_error: bool = False,
        bump_attempts: bool = False,
        content_hash: Optional[str] = None,
    ) -> bool:
        """Conditionally move a document between statuses; True if it moved."""
        placeholders = ",".join("?" * len(from_statuses))
        sets = ["status = ?", "updated_at = ?"]
        if set_error:
            sets.append("last_error = ?")
        if bump_attempts:
            sets.append("attempts = attempts + 1")
        where = f"id = ? AND status IN ({placeholders})"
        if content_hash is not None:
            where += " AND content_hash = ?"

        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                row = self._conn.execute(
                    "SELECT updated_at FROM documents WHERE id = ?", (id,)
                ).fetchone()
                if row is None:
                    self._conn.execute("COMMIT")
                    return False
                params: list = [new_status, _next_timestamp(row["updated_at"])]
                if set_error:
                    params.append(error)
                params.append(id)
                params.extend(from_statuses)
                if content_hash is not None:
                    params.append(content_hash)
                cursor = self._conn.execute(
                    f"UPDATE documents SET {', '.join(sets)} WHERE {where}", params
                )
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
        return cursor.rowcount == 1

    def claim_for_processing(self, id: str) -> Optional[DocumentRecord]:
        """
        Atomically move a document from pending/failed to processing.

        This is the only mutual-exclusion point for chunking work: whichever
        caller flips the status first proceeds, every other caller gets None.

        Returns:
            The claimed record (fresh body), or None if the claim was lost
        """
        if not self._transition(
            id, ProcessingStatus.PROCESSING.value, CLAIMABLE_STATUSES,
            bump_attempts=True,
        ):
            return None
        return self.get(id)

    def mark_complete(self, id: str, content_hash: Optional[str] = None) -> bool:
        """
        processing -> complete.

        With ``content_hash``, only completes if the body was not replaced
        while the claim was held.
        """
        return self._transition(
            id, ProcessingStatus.COMPLETE.value,
            (ProcessingStatus.PROCESSING.value,),
            error=None, set_error=True, content_hash=content_hash,
        )

    def release_to_pending(self, id: str, error: Optional[str] = None) -> bool:
        """processing -> pending, recording the error. Used for soft failures."""
        released = self._transition(
            id, ProcessingStatus.PENDING.value,
            (ProcessingStatus.PROCESSING.value,),
            error=error, set_error=True,
        )
        if released:
            logger.info("Released %s back to pending: %s", id, error or "no error")
        return released

    def mark_failed(self, id: str, error: Optional[str] = None) -> bool:
        """processing -> failed. Failed documents are retried by the worker and recovery."""
        failed = self._transition(
            id, ProcessingStatus.FAILED.value,
            (ProcessingStatus.PROCESSING.value,),
            error=error, set_error=True,
        )
        if failed:
            logger.warning("Processing failed for %s: %s", id, error or "unknown")
        return failed

    def release_stale_claims(self, older_than: str) -> list[str]:
        """
        Reset 'processing' claims last touched before ``older_than``.

        A claim that old belongs to a worker that crashed mid-flight.

        Returns:
            Ids of the documents moved back to pending
        """
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                ids = [row["id"] for row in self._conn.execute("""
                    SELECT id FROM documents
                    WHERE status = 'processing' AND updated_at < ?
                """, (older_than,)).fetchall()]
                if ids:
                    placeholders = ",".join("?" * len(ids))
                    self._conn.execute(f"""
                        UPDATE documents
                        SET status = 'pending',
                            last_error = 'stale processing claim released',
                            updated_at = ?
                        WHERE id IN ({placeholders})
                    """, (utc_now(), *ids))
                self._conn.execute("COMMIT")
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
        if ids:
            logger.info("Released %d stale processing claims", len(ids))
        return ids

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, id: str) -> Optional[DocumentRecord]:
        """Get a document by id, or None."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (id,)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_by_path(self, path: str) -> Optional[DocumentRecord]:
        """Get a document by path, or None."""
        row = self._conn.execute(
            f"SELECT {_COLUMNS} FROM documents WHERE path = ?", (path.strip(),)
        ).fetchone()
        return self._row_to_record(row) if row else None

    def get_many(self, ids: list[str]) -> dict[str, DocumentRecord]:
        """
        Get multiple documents by id.

        Returns:
            Dict mapping id -> DocumentRecord (missing ids omitted)
        """
        if not ids:
            return {}
        placeholders = ",".join("?" * len(ids))
        cursor = self._conn.execute(
            f"SELECT {_COLUMNS} FROM documents WHERE id IN ({placeholders})", ids
        )
        return {row["id"]: self._row_to_record(row) for row in cursor}

    def list_pending(
        self,
        limit: Optional[int] = None,
        older_than: Optional[str] = None,
        max_chars: Optional[int] = None,
    ) -> list[DocumentRecord]:
        """
        Documents awaiting processing (pending or failed), oldest first.

        Args:
            limit: Maximum number to return (None for all)
            older_than: Only documents whose updated_at is before this timestamp
            max_chars: Only documents whose body is at most this long
        """
        placeholders = ",".join("?" * len(CLAIMABLE_STATUSES))
        sql = f"SELECT {_COLUMNS} FROM documents WHERE status IN ({placeholders})"
        params: list = list(CLAIMABLE_STATUSES)
        if older_than is not None:
            sql += " AND updated_at < ?"
            params.append(older_than)
        if max_chars is not None:
            sql += " AND length(body) <= ?"
            params.append(max_chars)
        sql += " ORDER BY updated_at ASC"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        return [self._row_to_record(row) for row in self._conn.execute(sql, params)]

    def keyword_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
    ) -> list[DocumentRecord]:
        """
        Case-insensitive substring match over document bodies.

        Ranked by number of occurrences, then by recency (most recently
        updated first), the same ordering the chunk keyword search uses.
        """
        needle = query.strip().lower()
        if not needle:
            return []
        where, params = filters_to_sql(filters)
        sql = f"SELECT {_COLUMNS} FROM documents d WHERE {where}"
        # LIKE folds ASCII case only, so it can prefilter ASCII needles alone
        if needle.isascii():
            sql += " AND d.body LIKE ? ESCAPE '\\'"
            params = [*params, f"%{escape_like(needle)}%"]
        sql += " ORDER BY d.updated_at DESC"

        hits = []
        for row in self._conn.execute(sql, params):
            occurrences = row["body"].lower().count(needle)
            if occurrences:
                hits.append((occurrences, self._row_to_record(row)))
        # Stable: equal counts keep the recency order from SQL
        hits.sort(key=lambda hit: -hit[0])
        return [doc for _, doc in hits[:limit]]

    def browse(
        self,
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
    ) -> list[DocumentRecord]:
        """Documents matching the filters, most recently updated first."""
        where, params = filters_to_sql(filters)
        cursor = self._conn.execute(f"""
            SELECT {_COLUMNS} FROM documents d
            WHERE {where}
            ORDER BY d.updated_at DESC
            LIMIT ?
        """, [*params, limit])
        return [self._row_to_record(row) for row in cursor]

    def matching_ids(self, filters: Optional[SearchFilters]) -> Optional[set[str]]:
        """
        Ids of documents matching the filters.

        Returns None when there are no filters (everything matches).
        """
        if filters is None or filters.is_empty():
            return None
        where, params = filters_to_sql(filters)
        cursor = self._conn.execute(f"SELECT d.id FROM documents d WHERE {where}", params)
        return {row["id"] for row in cursor}

    def count(self) -> int:
        """Count all documents."""
        return self._conn.execute("SELECT COUNT(*) FROM documents").fetchone()[0]

    def stats(self) -> dict:
        """Document counts by processing status."""
        cursor = self._conn.execute(
            "SELECT status, COUNT(*) FROM documents GROUP BY status"
        )
        by_status = {row[0]: row[1] for row in cursor}
        oldest = self._conn.execute(
            "SELECT MIN(updated_at) FROM documents WHERE status IN ('pending', 'failed')"
        ).fetchone()[0]
        return {
            "documents": sum(by_status.values()),
            **{s.value: by_status.get(s.value, 0) for s in ProcessingStatus},
            "oldest_pending": oldest,
            "db_path": str(self._db_path),
        }

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
