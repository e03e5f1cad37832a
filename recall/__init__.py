"""
recall - personal content vault with hybrid search.

Long-form text (transcripts, articles, PDFs, notes) is stored as documents,
split into overlapping chunks, embedded, and retrieved by fusing keyword
and semantic rankings with Reciprocal Rank Fusion.

Quick Start:
    from recall import Vault

    vault = Vault()  # uses ~/.recall/ by default
    vault.put("notes/idea.md", "Attention is a soft dictionary lookup.")
    results = vault.search("attention")

Default Setup:
    - Embeddings: OpenAI text-embedding-3-small (when OPENAI_API_KEY is set)
    - Without an API key everything still works on keywords alone
    - Store: ~/.recall/ (override with RECALL_STORE_PATH)
"""

__version__ = "0.3.0"

from .api import PutResult, Vault
from .chunker import Chunker, chunk_text
from .errors import (
    ChunkPersistenceError,
    EmbeddingUnavailableError,
    NoEmbeddingsProducedError,
    RecallError,
)
from .types import (
    Chunk,
    ChunkLabel,
    DocumentRecord,
    ProcessingStatus,
    RankedResult,
    SampleResult,
    SampledChunk,
    SearchFilters,
)

__all__ = [
    "__version__",
    "Vault",
    "PutResult",
    "Chunker",
    "chunk_text",
    "Chunk",
    "ChunkLabel",
    "DocumentRecord",
    "ProcessingStatus",
    "RankedResult",
    "SampleResult",
    "SampledChunk",
    "SearchFilters",
    "RecallError",
    "EmbeddingUnavailableError",
    "NoEmbeddingsProducedError",
    "ChunkPersistenceError",
]
