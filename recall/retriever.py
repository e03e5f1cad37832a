"""
Hybrid retrieval: keyword and semantic rankings fused with Reciprocal Rank Fusion.
"""

import logging
from typing import Hashable, Optional, Sequence

from .config import SearchConfig
from .embedding_client import EmbeddingClient
from .protocol import ChunkStoreProtocol, DocumentStoreProtocol
from .types import Chunk, DocumentRecord, RankedResult, SearchFilters

logger = logging.getLogger(__name__)

RRF_K = 60


def rrf_fuse(
    ranked_lists: Sequence[Sequence[Hashable]],
    k: int = RRF_K,
) -> list[tuple[Hashable, float]]:
    """
    Reciprocal Rank Fusion over ranked id lists (rank 0 = best).

    score(id) = sum over lists containing id of 1 / (k + rank + 1)

    Items present in several lists accumulate every term, so agreement
    between rankings beats a single strong ranking. The sort is stable:
    among equal scores, ids keep their first-seen order, which puts the
    first list's order (keyword) ahead.

    Returns:
        (id, score) pairs, best first
    """
    scores: dict[Hashable, float] = {}
    for ranked in ranked_lists:
        for rank, item_id in enumerate(ranked):
            scores[item_id] = scores.get(item_id, 0.0) + 1.0 / (k + rank + 1)
    return sorted(scores.items(), key=lambda pair: pair[1], reverse=True)


def clamp_limit(limit: Optional[int], default: int, maximum: int, minimum: int = 1) -> int:
    """Clamp a result-count bound into [minimum, maximum]."""
    if limit is None:
        limit = default
    return max(minimum, min(int(limit), maximum))


class HybridRetriever:
    """
    Answers queries over the whole vault.

    The keyword leg always runs. The semantic leg runs only when the
    embedding client is available, and any error in it (including a
    request timeout) degrades the query to keyword-only results.
    """

    def __init__(
        self,
        doc_store: DocumentStoreProtocol,
        chunk_store: ChunkStoreProtocol,
        embedder: EmbeddingClient,
        config: Optional[SearchConfig] = None,
    ):
        self._docs = doc_store
        self._chunks = chunk_store
        self._embedder = embedder
        self._config = config or SearchConfig()

    def search(
        self,
        query: Optional[str],
        filters: Optional[SearchFilters] = None,
        limit: Optional[int] = None,
    ) -> list[RankedResult]:
        """
        Ranked documents for a query.

        Args:
            query: Search text. May be empty only when filters are given
                (filtered browse, newest first, no scores).
            filters: Structural filters applied to both legs
            limit: Result bound, clamped to [1, max_limit]

        Raises:
            ValueError: If both query and filters are empty
        """
        cfg = self._config
        limit = clamp_limit(limit, cfg.default_limit, cfg.max_limit)
        query = (query or "").strip()

        if not query:
            if filters is None or filters.is_empty():
                raise ValueError("Query must not be empty unless filters are given")
            return [
                self._to_result(doc, None, None)
                for doc in self._docs.browse(filters, limit)
            ]

        query = query[:cfg.max_query_chars]
        fetch = limit * 2

        keyword_docs = self._docs.keyword_search(query, filters, fetch)
        docs = {doc.id: doc for doc in keyword_docs}
        ranked_lists = [[doc.id for doc in keyword_docs]]

        best_chunks = self._semantic_leg(query, filters, fetch)
        if best_chunks:
            ranked_lists.append(list(best_chunks))

        fused = rrf_fuse(ranked_lists, cfg.rrf_k)
        missing = [doc_id for doc_id, _ in fused if doc_id not in docs]
        if missing:
            docs.update(self._docs.get_many(missing))

        results = []
        for doc_id, score in fused:
            doc = docs.get(doc_id)
            if doc is None:
                continue  # deleted since the chunk was ranked
            results.append(self._to_result(doc, score, best_chunks.get(doc_id)))
            if len(results) >= limit:
                break
        logger.debug(
            "search %r: %d keyword, %d semantic, %d returned",
            query[:50], len(keyword_docs), len(best_chunks), len(results),
        )
        return results

    def _semantic_leg(
        self,
        query: str,
        filters: Optional[SearchFilters],
        fetch: int,
    ) -> dict[str, Chunk]:
        """Best-matching chunk per document, in descending similarity order.

        Chunks with no positive similarity are not hits.
        """
        if not self._embedder.is_available():
            return {}
        try:
            vector = self._embedder.embed(query)
            allowed = self._docs.matching_ids(filters)
            hits = self._chunks.vector_search(vector, k=None, document_ids=allowed)
        except Exception as e:
            logger.warning("Semantic search unavailable, using keyword results only: %s", e)
            return {}

        best: dict[str, Chunk] = {}
        for chunk in hits:
            if chunk.score <= 0:
                break  # hits are sorted; the rest are unrelated
            if chunk.document_id not in best:
                best[chunk.document_id] = chunk
                if len(best) >= fetch:
                    break
        return best

    def _to_result(
        self,
        doc: DocumentRecord,
        score: Optional[float],
        best_chunk: Optional[Chunk],
    ) -> RankedResult:
        source = best_chunk.text if best_chunk is not None else doc.body
        return RankedResult(
            document_id=doc.id,
            path=doc.path,
            score=score,
            snippet=source[:self._config.snippet_chars],
            tags=doc.tags,
            updated_at=doc.updated_at,
            status=doc.status,
        )
