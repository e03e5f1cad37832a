"""
Context sampling within a single document.

Top relevance matches alone under-cover a long document, so the sampler
mixes the best-matching chunks with positional anchors (introduction,
middle, end) and returns them in document order with labels. Each result
reports the total chunk count and the indices shown, so a caller can ask
for a different neighborhood next time.
"""

import logging
from typing import Optional

from .chunk_store import cosine_similarity
from .chunker import Chunker
from .embedding_client import EmbeddingClient
from .protocol import ChunkStoreProtocol
from .retriever import RRF_K, clamp_limit, rrf_fuse
from .types import (
    Chunk,
    ChunkLabel,
    DocumentRecord,
    GrepMatch,
    SampleResult,
    SampledChunk,
)

logger = logging.getLogger(__name__)

# Introduction, middle and end
ANCHOR_SLOTS = 3
MIN_SAMPLE_LIMIT = ANCHOR_SLOTS
MAX_GREP_MATCHES = 10


def grep_body(
    body: str,
    query: str,
    context_lines: int = 2,
    max_matches: Optional[int] = MAX_GREP_MATCHES,
) -> tuple[list[GrepMatch], int]:
    """
    Case-insensitive line search with surrounding context.

    Returns:
        (matches, total) where matches holds at most ``max_matches``
        entries and total counts every matching line
    """
    needle = query.strip().lower()
    if not needle:
        return [], 0
    lines = body.split("\n")
    matches = []
    total = 0
    for i, line in enumerate(lines):
        if needle not in line.lower():
            continue
        total += 1
        if max_matches is None or len(matches) < max_matches:
            lo = max(0, i - context_lines)
            hi = min(len(lines), i + context_lines + 1)
            matches.append(GrepMatch(line_number=i + 1, line=line, context=lines[lo:hi]))
    return matches, total


class ContextSampler:
    """
    Picks a representative, query-aware subset of one document's chunks.

    Documents that have not been chunked yet (pending, or no embedding
    backend) are chunked in memory so sampling still works on keywords.
    """

    def __init__(
        self,
        chunk_store: ChunkStoreProtocol,
        embedder: EmbeddingClient,
        chunker: Chunker,
        *,
        rrf_k: int = RRF_K,
        max_limit: int = 20,
    ):
        self._chunks = chunk_store
        self._embedder = embedder
        self._chunker = chunker
        self._rrf_k = rrf_k
        self._max_limit = max_limit

    def _load_chunks(self, document: DocumentRecord) -> tuple[list[Chunk], bool]:
        """The document's chunks and whether they came from the store."""
        stored = self._chunks.get_chunks(document.id)
        if stored:
            return stored, True
        texts = self._chunker.chunk(document.body)
        return [Chunk(document.id, i, text) for i, text in enumerate(texts)], False

    def relevant_chunks(
        self,
        document: DocumentRecord,
        query: str,
        limit: int,
        chunks: Optional[list[Chunk]] = None,
        stored: Optional[bool] = None,
    ) -> list[Chunk]:
        """
        Best chunks of one document for a query, fused keyword + vector rank.

        The vector leg is skipped when embeddings are unavailable or the
        query cannot be embedded.
        """
        query = (query or "").strip()
        if limit <= 0 or not query:
            return []
        if chunks is None:
            chunks, stored = self._load_chunks(document)
        if not chunks:
            return []
        by_index = {c.chunk_index: c for c in chunks}

        if stored:
            keyword_hits = self._chunks.keyword_search(
                query, document_id=document.id, limit=len(chunks)
            )
            keyword_ranked = [c.chunk_index for c in keyword_hits]
        else:
            needle = query.lower()
            counted = [(c.text.lower().count(needle), c.chunk_index) for c in chunks]
            counted = [(n, i) for n, i in counted if n]
            counted.sort(key=lambda pair: (-pair[0], pair[1]))
            keyword_ranked = [i for _, i in counted]

        ranked_lists = [keyword_ranked]
        vector_ranked = self._vector_rank(query, chunks)
        if vector_ranked:
            ranked_lists.append(vector_ranked)

        fused = rrf_fuse(ranked_lists, self._rrf_k)
        results = []
        for index, score in fused[:limit]:
            chunk = by_index[index]
            chunk.score = score
            results.append(chunk)
        return results

    def _vector_rank(self, query: str, chunks: list[Chunk]) -> list[int]:
        embedded = [c for c in chunks if c.embedding is not None]
        if not embedded or not self._embedder.is_available():
            return []
        try:
            vector = self._embedder.embed(query)
        except Exception as e:
            logger.warning("Query embedding failed, sampling on keywords only: %s", e)
            return []
        scored = sorted(
            embedded,
            key=lambda c: cosine_similarity(vector, c.embedding),
            reverse=True,
        )
        return [c.chunk_index for c in scored]

    def sample(
        self,
        document: DocumentRecord,
        query: Optional[str] = None,
        limit: Optional[int] = 10,
    ) -> SampleResult:
        """
        Top matches plus positional anchors, in document order.

        With ``limit`` L and T chunks:
        - T <= L: every chunk is returned.
        - Otherwise the top L-3 matches are taken, then the anchors 0,
          T//2 and T-1 are added in that order while room remains. The
          middle anchor is skipped when a top match already lies within
          max(1, T//10) chunks of it.

        The result never holds more than L chunks.
        """
        limit = clamp_limit(limit, 10, self._max_limit, minimum=MIN_SAMPLE_LIMIT)
        chunks, stored = self._load_chunks(document)
        total = len(chunks)
        if total == 0:
            return SampleResult(document.id, document.path, 0, [], document.status)

        middle = total // 2
        if total <= limit:
            top = self.relevant_chunks(document, query or "", total, chunks, stored)
            top_indices = {c.chunk_index for c in top}
            scores = {c.chunk_index: c.score for c in top}
            selected = [c.chunk_index for c in chunks]
            fallback = ChunkLabel.CONTEXT
        else:
            top = self.relevant_chunks(document, query or "", limit - ANCHOR_SLOTS, chunks, stored)
            top_indices = {c.chunk_index for c in top}
            scores = {c.chunk_index: c.score for c in top}
            selected = [c.chunk_index for c in top]
            near = max(1, total // 10)
            for anchor in (0, middle, total - 1):
                if len(selected) >= limit:
                    break
                if anchor in selected:
                    continue
                if anchor == middle and any(abs(i - middle) <= near for i in top_indices):
                    continue
                selected.append(anchor)
            fallback = ChunkLabel.RELEVANT

        by_index = {c.chunk_index: c for c in chunks}
        sampled = [
            SampledChunk(
                chunk_index=index,
                text=by_index[index].text,
                label=self._label(index, total, index in top_indices, fallback).value,
                score=scores.get(index),
            )
            for index in sorted(set(selected))
        ]
        return SampleResult(document.id, document.path, total, sampled, document.status)

    @staticmethod
    def _label(index: int, total: int, is_match: bool, fallback: ChunkLabel) -> ChunkLabel:
        if index == 0:
            return ChunkLabel.INTRODUCTION
        if index == total - 1:
            return ChunkLabel.END
        if index == total // 2:
            return ChunkLabel.MIDDLE
        return ChunkLabel.RELEVANT if is_match else fallback

    def neighborhood(
        self,
        document: DocumentRecord,
        center: int,
        radius: int = 1,
    ) -> SampleResult:
        """Chunks center-radius..center+radius, for follow-up navigation."""
        if radius < 0:
            raise ValueError(f"radius must be non-negative: {radius}")
        total = self._chunks.count_chunks(document.id)
        if total:
            wanted = range(max(0, center - radius), min(total, center + radius + 1))
            chunks = self._chunks.get_chunks_by_index(document.id, wanted)
        else:
            all_chunks, _ = self._load_chunks(document)
            total = len(all_chunks)
            chunks = [c for c in all_chunks if abs(c.chunk_index - center) <= radius]
        sampled = [
            SampledChunk(
                chunk_index=c.chunk_index,
                text=c.text,
                label=self._label(c.chunk_index, total, False, ChunkLabel.CONTEXT).value,
            )
            for c in chunks
        ]
        return SampleResult(document.id, document.path, total, sampled, document.status)
