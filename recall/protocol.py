"""
Protocol definitions for the vault's storage backends.

DocumentStoreProtocol and ChunkStoreProtocol are the seams the processing
pipeline, retriever and sampler depend on. The local SQLite stores
implement them; alternative backends can be plugged in through
``recall.backend``.
"""

from typing import Any, Iterable, Optional, Protocol, runtime_checkable

from .types import Chunk, DocumentRecord, SearchFilters


@runtime_checkable
class DocumentStoreProtocol(Protocol):
    """Documents, their bodies and their processing status."""

    def create_or_update(
        self,
        path: str,
        body: str,
        frontmatter: Optional[dict[str, Any]] = None,
    ) -> tuple[DocumentRecord, bool]: ...

    def get(self, id: str) -> Optional[DocumentRecord]: ...

    def get_by_path(self, path: str) -> Optional[DocumentRecord]: ...

    def get_many(self, ids: list[str]) -> dict[str, DocumentRecord]: ...

    def delete(self, id: str) -> bool: ...

    # -- Status transitions --

    def claim_for_processing(self, id: str) -> Optional[DocumentRecord]: ...

    def mark_complete(self, id: str, content_hash: Optional[str] = None) -> bool: ...

    def release_to_pending(self, id: str, error: Optional[str] = None) -> bool: ...

    def mark_failed(self, id: str, error: Optional[str] = None) -> bool: ...

    def release_stale_claims(self, older_than: str) -> list[str]: ...

    def list_pending(
        self,
        limit: Optional[int] = None,
        older_than: Optional[str] = None,
        max_chars: Optional[int] = None,
    ) -> list[DocumentRecord]: ...

    # -- Queries --

    def keyword_search(
        self,
        query: str,
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
    ) -> list[DocumentRecord]: ...

    def browse(
        self,
        filters: Optional[SearchFilters] = None,
        limit: int = 20,
    ) -> list[DocumentRecord]: ...

    def matching_ids(self, filters: Optional[SearchFilters]) -> Optional[set[str]]: ...

    def stats(self) -> dict: ...

    def close(self) -> None: ...


@runtime_checkable
class ChunkStoreProtocol(Protocol):
    """Chunk sets with embeddings, written atomically per document."""

    def replace_chunks(
        self,
        document_id: str,
        chunks: list[Chunk],
        *,
        claimed_hash: Optional[str] = None,
    ) -> int: ...

    def count_chunks(self, document_id: str) -> int: ...

    def get_chunks(self, document_id: str) -> list[Chunk]: ...

    def get_chunks_by_index(
        self,
        document_id: str,
        indices: Iterable[int],
    ) -> list[Chunk]: ...

    def keyword_search(
        self,
        query: str,
        document_id: Optional[str] = None,
        limit: int = 20,
    ) -> list[Chunk]: ...

    def vector_search(
        self,
        query_vector: list[float],
        document_id: Optional[str] = None,
        k: Optional[int] = 10,
        document_ids: Optional[set[str]] = None,
    ) -> list[Chunk]: ...

    def stats(self) -> dict: ...

    def close(self) -> None: ...
