"""
Chunking and embedding pipeline: the document processing state machine.

    pending -> processing -> complete
    processing -> failed -> (claimed again) -> processing

Tier 1  Vault.put() stores the document as pending and returns.
Tier 2  process_inline_if_small(): documents estimated at no more than
        ``inline_threshold`` chunks are processed synchronously. Errors
        send the document back to pending.
Tier 3  Larger documents stay pending; pending() is the handoff queue for
        a background worker and process_pending() is one such worker pass.
        Worker errors move the document to failed.
Tier 4  recover_stale() re-runs Tier 2 on a bounded batch of documents
        that have sat in pending/failed longer than the staleness window.

The pending/failed -> processing claim is the only mutual exclusion.
No lock is held across an embedding request.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Callable, Optional

from .chunker import Chunker
from .config import ProcessingConfig
from .embedding_client import EmbeddingClient
from .errors import ClaimLostError
from .protocol import ChunkStoreProtocol, DocumentStoreProtocol
from .types import Chunk, DocumentRecord, format_utc

logger = logging.getLogger(__name__)


class ProcessingOutcome(str, Enum):
    COMPLETE = "complete"    # every chunk embedded and stored
    PARTIAL = "partial"      # stored, but some chunks failed to embed and were dropped
    DEFERRED = "deferred"    # left pending (too large, or no embedding backend)
    SKIPPED = "skipped"      # another caller holds the claim, or the body changed
    FAILED = "failed"        # error recorded; document is pending or failed for retry


@dataclass
class ProcessingResult:
    """What happened to one document in one processing attempt."""
    document_id: str
    outcome: ProcessingOutcome
    chunks_stored: int = 0
    chunks_skipped: int = 0
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.outcome in (ProcessingOutcome.COMPLETE, ProcessingOutcome.PARTIAL)


@dataclass
class RecoveryReport:
    """Summary of one startup-recovery pass."""
    released_claims: int = 0
    results: list[ProcessingResult] = field(default_factory=list)

    def count(self, outcome: ProcessingOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def as_dict(self) -> dict:
        return {
            "released_claims": self.released_claims,
            "candidates": len(self.results),
            **{o.value: self.count(o) for o in ProcessingOutcome},
        }


def _error_text(exc: Exception) -> str:
    return f"{type(exc).__name__}: {exc}"


class EmbeddingPipeline:
    """
    Runs the chunk -> embed -> store cycle for documents.

    Args:
        doc_store: Document store (status transitions)
        chunk_store: Chunk store (atomic chunk-set replacement)
        embedder: Embedding client
        chunker: Chunker
        config: Processing thresholds and recovery settings
    """

    def __init__(
        self,
        doc_store: DocumentStoreProtocol,
        chunk_store: ChunkStoreProtocol,
        embedder: EmbeddingClient,
        chunker: Chunker,
        config: Optional[ProcessingConfig] = None,
    ):
        self._docs = doc_store
        self._chunks = chunk_store
        self._embedder = embedder
        self._chunker = chunker
        self._config = config or ProcessingConfig()

    @property
    def config(self) -> ProcessingConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Shared claim -> chunk -> embed -> store path
    # -------------------------------------------------------------------------

    def _process_claimed(
        self,
        document_id: str,
        on_error: Callable[[str, Optional[str]], bool],
    ) -> ProcessingResult:
        claimed = self._docs.claim_for_processing(document_id)
        if claimed is None:
            logger.debug("Claim lost for %s; another caller is processing it", document_id)
            return ProcessingResult(document_id, ProcessingOutcome.SKIPPED)

        try:
            texts = self._chunker.chunk(claimed.body)
            if texts:
                batch = self._embedder.embed_chunks(texts)
                # Renumber survivors so the stored set stays contiguous
                chunks = [
                    Chunk(document_id, i, item.text, item.embedding)
                    for i, item in enumerate(batch.embedded)
                ]
                skipped = len(batch.failures)
            else:
                chunks, skipped = [], 0
            stored = self._chunks.replace_chunks(
                document_id, chunks, claimed_hash=claimed.content_hash,
            )
        except ClaimLostError:
            # Re-ingested or released while embedding; the newer cycle owns the chunk set
            logger.info("%s changed during processing; chunks discarded", claimed.path)
            return ProcessingResult(
                document_id, ProcessingOutcome.SKIPPED,
                error="document changed during processing",
            )
        except Exception as e:
            error = _error_text(e)
            logger.warning("Processing %s failed: %s", claimed.path, error)
            on_error(document_id, error)
            return ProcessingResult(document_id, ProcessingOutcome.FAILED, error=error)

        if not self._docs.mark_complete(document_id, content_hash=claimed.content_hash):
            # Re-ingested while we held the claim; the next pass replaces these chunks
            logger.info("%s changed during processing; left for the next pass", claimed.path)
            return ProcessingResult(
                document_id, ProcessingOutcome.SKIPPED, chunks_stored=stored,
                chunks_skipped=skipped, error="document changed during processing",
            )

        outcome = ProcessingOutcome.PARTIAL if skipped else ProcessingOutcome.COMPLETE
        logger.info(
            "Processed %s: %d chunks stored, %d skipped", claimed.path, stored, skipped
        )
        return ProcessingResult(
            document_id, outcome, chunks_stored=stored, chunks_skipped=skipped
        )

    # -------------------------------------------------------------------------
    # Tier 2: inline if small
    # -------------------------------------------------------------------------

    def process_inline_if_small(self, doc: DocumentRecord) -> ProcessingResult:
        """
        Process a document now if it is small enough, else leave it pending.

        Never raises for embedding or storage errors: the document goes back
        to pending and a FAILED result is returned.
        """
        if not self._embedder.is_available():
            return ProcessingResult(
                doc.id, ProcessingOutcome.DEFERRED, error="embedding unavailable"
            )
        estimate = self._chunker.estimate_chunks(doc.body)
        if estimate > self._config.inline_threshold:
            logger.debug(
                "Deferring %s: ~%d chunks exceeds inline threshold %d",
                doc.path, estimate, self._config.inline_threshold,
            )
            return ProcessingResult(doc.id, ProcessingOutcome.DEFERRED)
        return self._process_claimed(doc.id, self._docs.release_to_pending)

    # -------------------------------------------------------------------------
    # Tier 3: handoff queue and worker pass
    # -------------------------------------------------------------------------

    def pending(self, limit: Optional[int] = None) -> list[DocumentRecord]:
        """Documents waiting for a worker (pending or failed), oldest first."""
        return self._docs.list_pending(limit=limit)

    def process_document(self, document_id: str) -> ProcessingResult:
        """Process one document regardless of size. Errors mark it failed."""
        if not self._embedder.is_available():
            return ProcessingResult(
                document_id, ProcessingOutcome.DEFERRED, error="embedding unavailable"
            )
        return self._process_claimed(document_id, self._docs.mark_failed)

    def process_pending(self, limit: int = 10) -> dict:
        """
        One background-worker pass over the pending queue.

        Args:
            limit: Maximum number of documents to process in this batch

        Returns:
            Dict with: processed, partial, failed, skipped, deferred, errors
        """
        result = {
            "processed": 0, "partial": 0, "failed": 0,
            "skipped": 0, "deferred": 0, "errors": [],
        }
        if not self._embedder.is_available():
            result["deferred"] = len(self._docs.list_pending(limit=limit))
            return result

        for doc in self._docs.list_pending(limit=limit):
            logger.info("Embedding %s (attempt %d)", doc.path, doc.attempts + 1)
            outcome = self.process_document(doc.id)
            if outcome.outcome == ProcessingOutcome.COMPLETE:
                result["processed"] += 1
            elif outcome.outcome == ProcessingOutcome.PARTIAL:
                result["processed"] += 1
                result["partial"] += 1
            elif outcome.outcome == ProcessingOutcome.FAILED:
                result["failed"] += 1
                result["errors"].append(f"{doc.path}: {outcome.error}")
            else:
                result["skipped"] += 1
        return result

    # -------------------------------------------------------------------------
    # Tier 4: startup recovery
    # -------------------------------------------------------------------------

    def recover_stale(
        self,
        now: Optional[datetime] = None,
        stop: Optional[threading.Event] = None,
    ) -> RecoveryReport:
        """
        Re-run Tier 2 on documents abandoned by earlier processes.

        First releases 'processing' claims older than ``stale_claim_minutes``
        (crashed workers). Then picks up to ``recovery_batch`` documents in
        pending/failed that were last updated more than ``stale_minutes``
        ago. Younger documents are left alone so a live worker is not raced.
        Distinct documents run concurrently; each one's chunks are embedded
        sequentially.

        Once ``stop`` is set, documents not yet started are left pending
        and reported as DEFERRED.
        """
        now = now or datetime.now(timezone.utc)
        cfg = self._config
        report = RecoveryReport()

        released = self._docs.release_stale_claims(
            format_utc(now - timedelta(minutes=cfg.stale_claim_minutes))
        )
        report.released_claims = len(released)

        if not self._embedder.is_available():
            logger.debug("Recovery skipped: no embedding backend")
            return report

        # Only documents Tier 2 would accept, so large ones cannot hold every slot
        candidates = self._docs.list_pending(
            limit=cfg.recovery_batch,
            older_than=format_utc(now - timedelta(minutes=cfg.stale_minutes)),
            max_chars=cfg.inline_threshold * self._chunker.max_chunk_size,
        )
        seen = {doc.id for doc in candidates}
        for doc_id in released:
            if len(candidates) >= cfg.recovery_batch:
                break
            if doc_id not in seen:
                doc = self._docs.get(doc_id)
                if doc is not None:
                    candidates.append(doc)
                    seen.add(doc_id)

        if not candidates:
            return report

        def recover_one(doc: DocumentRecord) -> ProcessingResult:
            if stop is not None and stop.is_set():
                return ProcessingResult(doc.id, ProcessingOutcome.DEFERRED)
            return self.process_inline_if_small(doc)

        logger.info("Recovering %d stale document(s)", len(candidates))
        workers = max(1, min(cfg.recovery_workers, len(candidates)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="recall-recovery") as pool:
            report.results = list(pool.map(recover_one, candidates))

        logger.info("Recovery finished: %s", report.as_dict())
        return report
