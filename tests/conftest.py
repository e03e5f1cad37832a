"""
Shared pytest fixtures for recall tests.

Provides mock embedding providers so no test touches the network.
"""

import hashlib
import re

import pytest

from recall.api import Vault
from recall.chunk_store import ChunkStore
from recall.config import StoreConfig
from recall.document_store import DocumentStore
from recall.embedding_client import EmbeddingClient


class MockEmbeddingProvider:
    """
    Deterministic mock embedding provider for testing.

    Generates consistent embeddings based on text hash - no network calls.
    """

    dimension = 64
    model_name = "mock-model"

    def __init__(self):
        self.embed_calls = 0
        self.batch_calls = 0

    def embed(self, text: str) -> list[float]:
        """Generate deterministic embedding from text hash."""
        self.embed_calls += 1
        h = hashlib.md5(text.encode()).hexdigest()
        embedding = []
        for i in range(0, 32, 2):
            val = int(h[i:i+2], 16) / 255.0
            embedding.append(val)
        return (embedding * 4)[:self.dimension]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls += 1
        return [self.embed(t) for t in texts]


class VocabEmbeddingProvider:
    """
    Bag-of-words embeddings over a fixed vocabulary.

    Texts sharing words get similar vectors, so semantic ranking is
    predictable in tests.
    """

    model_name = "mock-vocab"

    def __init__(self, vocab: list[str]):
        self.vocab = [w.lower() for w in vocab]
        self.dimension = len(self.vocab)
        self.embed_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        words = re.findall(r"[a-z0-9]+", text.lower())
        return [float(words.count(w)) for w in self.vocab]

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


class FailingEmbeddingProvider:
    """Raises for texts containing any of ``fail_on`` (or always, if empty)."""

    model_name = "mock-failing"
    dimension = 64

    def __init__(self, fail_on: tuple[str, ...] = (), error: Exception = None):
        self.fail_on = fail_on
        self.error = error or TimeoutError("embedding request timed out")
        self._inner = MockEmbeddingProvider()
        self.embed_calls = 0

    def embed(self, text: str) -> list[float]:
        self.embed_calls += 1
        if not self.fail_on or any(marker in text for marker in self.fail_on):
            raise self.error
        return self._inner.embed(text)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [self.embed(t) for t in texts]


@pytest.fixture
def mock_embedding_provider():
    """Create a fresh MockEmbeddingProvider instance."""
    return MockEmbeddingProvider()


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "recall.db"


@pytest.fixture
def doc_store(db_path):
    store = DocumentStore(db_path)
    yield store
    store.close()


@pytest.fixture
def chunk_store(doc_store, db_path):
    store = ChunkStore(db_path)
    yield store
    store.close()


def make_vault(tmp_path, provider=None, **config_overrides) -> Vault:
    """Open a vault on tmp_path with an injected provider and no startup recovery."""
    config = StoreConfig(path=tmp_path)
    for section, values in config_overrides.items():
        target = getattr(config, section)
        for key, value in values.items():
            setattr(target, key, value)
    client = EmbeddingClient(provider=provider) if provider is not None else EmbeddingClient()
    return Vault(config=config, embedding_client=client, recover_on_start=False)


@pytest.fixture
def vault_factory(tmp_path):
    """Build vaults with a given provider and config overrides; closes them after."""
    opened = []

    def factory(provider=None, path=None, **config_overrides):
        v = make_vault(path or tmp_path, provider, **config_overrides)
        opened.append(v)
        return v

    yield factory
    for v in opened:
        v.close()


@pytest.fixture
def vault(tmp_path, mock_embedding_provider):
    """Vault with deterministic mock embeddings."""
    v = make_vault(tmp_path, mock_embedding_provider)
    yield v
    v.close()


@pytest.fixture
def keyword_vault(tmp_path):
    """Vault with no embedding backend (keyword-only)."""
    v = make_vault(tmp_path)
    yield v
    v.close()


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch, tmp_path):
    """Keep tests away from real API keys and the user's store."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("RECALL_OPENAI_API_KEY", raising=False)
    monkeypatch.setenv("RECALL_STORE_PATH", str(tmp_path / "default-store"))
