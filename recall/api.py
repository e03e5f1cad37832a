"""
Core API for the recall content vault.

The Vault is the composition root: it loads configuration and builds the
stores, embedding client, chunker, processing pipeline, retriever and
sampler explicitly. Nothing is process-global.

Example:
    with Vault() as vault:
        vault.put("library/talk.md", transcript, {"type": "transcript"})
        results = vault.search("attention mechanisms")
"""

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from .chunker import Chunker
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .embedding_client import EmbeddingClient
from .frontmatter import (
    daily_entry,
    daily_frontmatter,
    note_frontmatter,
    slugify,
    split_frontmatter,
)
from .processing import EmbeddingPipeline, ProcessingResult, RecoveryReport
from .protocol import ChunkStoreProtocol, DocumentStoreProtocol
from .retriever import HybridRetriever
from .sampler import ContextSampler, grep_body
from .types import (
    Chunk,
    DocumentRecord,
    RankedResult,
    SampleResult,
    SearchFilters,
    SectionSearch,
)

logger = logging.getLogger(__name__)

# Sections returned when searching inside a large document
SECTION_CHUNK_LIMIT = 5
NOTES_PREFIX = "learnings/"
DAILY_PREFIX = "daily/"


@dataclass
class PutResult:
    """A stored document and what processing did with it on the write path."""
    document: DocumentRecord
    changed: bool
    processing: Optional[ProcessingResult] = None


@dataclass
class DailyNote:
    """Where a journal entry went."""
    path: str
    action: str  # "created" or "appended"
    timestamp: str  # HH:MM heading of the entry
    put: PutResult


class Vault:
    """
    Personal content vault: store long-form text, search it, sample it.

    Writes return as soon as the document is stored. Small documents are
    chunked and embedded inline; larger ones wait for a worker pass
    (``process_pending``) or startup recovery.
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        doc_store: Optional[DocumentStoreProtocol] = None,
        chunk_store: Optional[ChunkStoreProtocol] = None,
        embedding_client: Optional[EmbeddingClient] = None,
        recover_on_start: Optional[bool] = None,
    ) -> None:
        """
        Open (or create) a vault.

        Args:
            store_path: Store directory. Defaults to RECALL_STORE_PATH or ~/.recall.
            config: Pre-loaded StoreConfig (skips filesystem config discovery).
            doc_store: Injected document store (skips default backend creation).
            chunk_store: Injected chunk store (skips default backend creation).
            embedding_client: Injected embedding client (tests, custom providers).
            recover_on_start: Override ``processing.recover_on_start``.
        """
        # --- Config resolution ---
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            if store_path is not None:
                self._store_path = Path(store_path).expanduser().resolve()
            else:
                self._store_path = get_default_store_path()
            self._config = load_or_create_config(self._store_path)

        # --- Persistent operations log ---
        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        # --- Storage backends (injected or factory-created) ---
        if doc_store is not None and chunk_store is not None:
            self._document_store = doc_store
            self._chunk_store = chunk_store
        else:
            from .backend import create_stores
            bundle = create_stores(self._config)
            self._document_store = bundle.doc_store
            self._chunk_store = bundle.chunk_store

        # --- Processing and retrieval ---
        self._embedder = embedding_client or EmbeddingClient(self._config.embedding)
        chunking = self._config.chunking
        self._chunker = Chunker(
            max_chunk_size=chunking.max_chunk_size,
            overlap=chunking.overlap,
            boundary_window=chunking.boundary_window,
        )
        self._pipeline = EmbeddingPipeline(
            self._document_store, self._chunk_store, self._embedder,
            self._chunker, self._config.processing,
        )
        self._retriever = HybridRetriever(
            self._document_store, self._chunk_store, self._embedder,
            self._config.search,
        )
        self._sampler = ContextSampler(
            self._chunk_store, self._embedder, self._chunker,
            rrf_k=self._config.search.rrf_k,
            max_limit=self._config.search.max_limit,
        )

        # --- Startup recovery (Tier 4) in the background ---
        self._recovery_thread: Optional[threading.Thread] = None
        self._stop_recovery = threading.Event()
        self._daily_lock = threading.Lock()
        self.last_recovery: Optional[RecoveryReport] = None
        if recover_on_start is None:
            recover_on_start = self._config.processing.recover_on_start
        if recover_on_start:
            self._recovery_thread = threading.Thread(
                target=self._recover_safe, name="recall-recovery", daemon=True,
            )
            self._recovery_thread.start()

    def _recover_safe(self) -> None:
        """Background-safe wrapper for startup recovery. Logs failures."""
        try:
            self.last_recovery = self._pipeline.recover_stale(stop=self._stop_recovery)
        except Exception as e:
            logger.warning("Startup recovery failed: %s", e)

    def wait_for_recovery(self, timeout: Optional[float] = None) -> Optional[RecoveryReport]:
        """Block until startup recovery (if any) has finished."""
        if self._recovery_thread is not None:
            self._recovery_thread.join(timeout)
        return self.last_recovery

    # -------------------------------------------------------------------------
    # Properties
    # -------------------------------------------------------------------------

    @property
    def store_path(self) -> Path:
        return self._store_path

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def embedding_available(self) -> bool:
        return self._embedder.is_available()

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def put(
        self,
        path: str,
        body: str,
        frontmatter: Optional[dict[str, Any]] = None,
        *,
        process: Optional[bool] = None,
    ) -> PutResult:
        """
        Store a document.

        The document is persisted as pending before anything else happens.
        If its body changed and inline processing is enabled (or ``process``
        is True), small documents are chunked and embedded before returning.
        Processing errors never propagate; see ``PutResult.processing``.

        Args:
            path: Unique document path, e.g. ``library/some-video.md``
            body: Full raw text
            frontmatter: Structured metadata (type, tags, source_author, ...)
            process: Force (True) or skip (False) inline processing
        """
        doc, changed = self._document_store.create_or_update(path, body, frontmatter)
        result = PutResult(document=doc, changed=changed)
        if not changed:
            return result

        if process is None:
            process = self._config.processing.inline_enabled
        if process:
            result.processing = self._pipeline.process_inline_if_small(doc)
            result.document = self._document_store.get(doc.id) or doc
        return result

    def put_file(
        self,
        file_path: str | Path,
        *,
        path: Optional[str] = None,
        frontmatter: Optional[dict[str, Any]] = None,
        process: Optional[bool] = None,
    ) -> PutResult:
        """
        Store a markdown/text file. YAML frontmatter in the file is parsed;
        ``frontmatter`` entries override it.

        Args:
            file_path: File on disk
            path: Document path (defaults to the file name)
        """
        file_path = Path(file_path).expanduser()
        text = file_path.read_text(encoding="utf-8")
        body, file_frontmatter = split_frontmatter(text)
        merged = {**file_frontmatter, **(frontmatter or {})}
        return self.put(path or file_path.name, body, merged, process=process)

    def save_note(
        self,
        title: str,
        content: str,
        *,
        tags: Optional[list[str]] = None,
        source_url: Optional[str] = None,
        process: Optional[bool] = None,
    ) -> PutResult:
        """
        Save a written note under ``learnings/{slug}.md``.

        Raises:
            ValueError: If the title is empty or the path is already taken
        """
        slug = slugify(title)
        if not slug:
            raise ValueError("Title must contain at least one letter or digit")
        path = f"{NOTES_PREFIX}{slug}.md"
        if self._document_store.get_by_path(path) is not None:
            raise ValueError(f"File already exists at {path}. Use a different title.")
        fm = note_frontmatter(tags or [], source_url=source_url, title=title)
        return self.put(path, content, fm, process=process)

    def add_note(
        self,
        content: str,
        *,
        at: Optional[datetime] = None,
        process: Optional[bool] = None,
    ) -> DailyNote:
        """
        Append a timestamped entry to the day's journal, ``daily/YYYY-MM-DD.md``.

        The journal is created with daily frontmatter when it does not exist
        yet. Entries are ``## HH:MM`` headings in local time.

        Raises:
            ValueError: If the content is empty
        """
        if not content.strip():
            raise ValueError("Note content must not be empty")
        at = at or datetime.now().astimezone()
        path = f"{DAILY_PREFIX}{at:%Y-%m-%d}.md"
        entry = daily_entry(content, at)

        with self._daily_lock:
            existing = self._document_store.get_by_path(path)
            if existing is None:
                action = "created"
                put = self.put(path, entry, daily_frontmatter(), process=process)
            else:
                action = "appended"
                put = self.put(path, existing.body + entry, existing.frontmatter, process=process)

        logger.info("Note %s %s", action, path)
        return DailyNote(path=path, action=action, timestamp=f"{at:%H:%M}", put=put)

    def delete(self, path: str) -> bool:
        """Delete a document and its chunks. False if it did not exist."""
        doc = self._document_store.get_by_path(path)
        if doc is None:
            return False
        deleted = self._document_store.delete(doc.id)
        if deleted:
            logger.info("Deleted %s", path)
        return deleted

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, path: str) -> Optional[DocumentRecord]:
        """Document by path, or None."""
        return self._document_store.get_by_path(path)

    def search(
        self,
        query: Optional[str] = None,
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
    ) -> list[RankedResult]:
        """
        Hybrid keyword + semantic search across the vault.

        Raises:
            ValueError: If both query and filters are empty
        """
        return self._retriever.search(query, filters, limit)

    def sample(
        self,
        path: str,
        query: Optional[str] = None,
        limit: Optional[int] = 10,
    ) -> Optional[SampleResult]:
        """Representative chunks of one document, or None if not found."""
        doc = self._document_store.get_by_path(path)
        if doc is None:
            return None
        return self._sampler.sample(doc, query, limit)

    def neighborhood(
        self,
        path: str,
        center: int,
        radius: int = 1,
    ) -> Optional[SampleResult]:
        """Chunks around ``center`` in one document, or None if not found."""
        doc = self._document_store.get_by_path(path)
        if doc is None:
            return None
        return self._sampler.neighborhood(doc, center, radius)

    def read_section(self, path: str, query: str) -> Optional[SectionSearch]:
        """
        Find where ``query`` occurs in one document.

        Bodies under ``search.grep_max_body`` characters are searched line
        by line with two lines of context; larger bodies are searched
        through their chunks.

        Returns:
            SectionSearch, or None if the document does not exist

        Raises:
            ValueError: If the query is empty
        """
        if not query or not query.strip():
            raise ValueError("Search text must not be empty")
        doc = self._document_store.get_by_path(path)
        if doc is None:
            return None
        if len(doc.body) < self._config.search.grep_max_body:
            lines, total = grep_body(doc.body, query)
            return SectionSearch(
                path=doc.path, query=query, mode="grep",
                total_matches=total, lines=lines,
            )
        chunks = self._sampler.relevant_chunks(doc, query, SECTION_CHUNK_LIMIT)
        return SectionSearch(
            path=doc.path, query=query, mode="chunks",
            total_matches=len(chunks), chunks=chunks,
        )

    def chunks(self, path: str) -> Optional[list[Chunk]]:
        """Stored chunks of a document in index order, or None if not found."""
        doc = self._document_store.get_by_path(path)
        if doc is None:
            return None
        return self._chunk_store.get_chunks(doc.id)

    # -------------------------------------------------------------------------
    # Processing
    # -------------------------------------------------------------------------

    def pending(self, limit: Optional[int] = None) -> list[DocumentRecord]:
        """Documents waiting for chunking and embedding, oldest first."""
        return self._pipeline.pending(limit)

    def process_pending(self, limit: int = 10) -> dict:
        """Run one worker pass over the pending queue."""
        return self._pipeline.process_pending(limit)

    def recover(self) -> RecoveryReport:
        """Run a stale-document recovery pass now."""
        return self._pipeline.recover_stale()

    def stats(self) -> dict:
        """Document and chunk counts for the store."""
        return {
            "store_path": str(self._store_path),
            "embedding": self._config.embedding.name if self._config.embedding else None,
            "embedding_available": self._embedder.is_available(),
            **self._document_store.stats(),
            **self._chunk_store.stats(),
        }

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """
        Close resources (stores, ops log).

        Startup recovery is told to stop and joined first: documents it has
        not started stay pending, and the one in flight finishes before the
        stores close under it.
        """
        if getattr(self, "_recovery_thread", None) is not None:
            self._stop_recovery.set()
            self._recovery_thread.join()
            self._recovery_thread = None

        if getattr(self, "_chunk_store", None) is not None:
            self._chunk_store.close()
        if getattr(self, "_document_store", None) is not None:
            self._document_store.close()

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None) is not None:
            from .logging_config import remove_ops_log
            remove_ops_log(self._ops_log_handler)
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
