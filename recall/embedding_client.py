"""
Embedding client: the process's single handle to the embedding backend.

Constructed explicitly by the composition root (Vault) from configuration.
The underlying provider is created lazily, at most once, and is read-only
afterwards. Availability is a pure function of configuration so that
every caller can branch to keyword-only behaviour without touching the
network.
"""

import logging
import threading
from dataclasses import dataclass, field
from typing import Optional

from .config import ProviderConfig
from .errors import EmbeddingUnavailableError, NoEmbeddingsProducedError
from .providers.base import EmbeddingProvider, ProviderRegistry, get_registry

logger = logging.getLogger(__name__)

# Conservative character budget for a single text (~7.5k tokens)
MAX_EMBED_CHARS = 30000


@dataclass
class EmbeddedChunk:
    """A chunk that embedded successfully; ``index`` is its position in the input."""
    index: int
    text: str
    embedding: list[float]


@dataclass
class EmbeddingBatch:
    """Outcome of embedding a list of chunks one at a time."""
    embedded: list[EmbeddedChunk] = field(default_factory=list)
    failures: dict[int, str] = field(default_factory=dict)

    @property
    def attempted(self) -> int:
        return len(self.embedded) + len(self.failures)

    @property
    def partial(self) -> bool:
        return bool(self.failures) and bool(self.embedded)


class EmbeddingClient:
    """
    Wraps an embedding provider with the vault's failure policy.

    Args:
        provider_config: Provider name and params from the [embedding] section,
            or None when no backend is configured.
        provider: Pre-built provider (tests, custom setups). Makes the client available.
        registry: Provider registry (defaults to the global one).
    """

    def __init__(
        self,
        provider_config: Optional[ProviderConfig] = None,
        *,
        provider: Optional[EmbeddingProvider] = None,
        registry: Optional[ProviderRegistry] = None,
    ):
        self._config = provider_config
        self._registry = registry or get_registry()
        self._provider = provider
        self._init_lock = threading.Lock()
        if provider is not None:
            self._available = True
        elif provider_config is None:
            self._available = False
        else:
            self._available = self._registry.embedding_available(
                provider_config.name, provider_config.params
            )

    def is_available(self) -> bool:
        """True when an embedding backend is configured."""
        return self._available

    @property
    def provider(self) -> EmbeddingProvider:
        """The provider, created on first use."""
        if not self._available:
            raise EmbeddingUnavailableError("No embedding provider configured")
        if self._provider is None:
            with self._init_lock:
                if self._provider is None:
                    logger.info("Creating embedding provider %s", self._config.name)
                    self._provider = self._registry.create_embedding(
                        self._config.name, self._config.params
                    )
        return self._provider

    def embed(self, text: str) -> list[float]:
        """
        Embed one text (typically a query), truncated to MAX_EMBED_CHARS.

        Raises:
            EmbeddingUnavailableError: If no backend is configured
            Exception: Whatever the provider raises (timeouts, API errors)
        """
        return self.provider.embed(text[:MAX_EMBED_CHARS])

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one provider call. All-or-nothing."""
        return self.provider.embed_batch(texts)

    def embed_chunks(self, texts: list[str]) -> EmbeddingBatch:
        """
        Embed chunks one at a time, skipping failures.

        Inputs are assumed to respect the chunker's size bound and are not
        truncated. Requests run sequentially to stay within upstream rate
        limits.

        Raises:
            EmbeddingUnavailableError: If no backend is configured
            NoEmbeddingsProducedError: If every chunk failed
        """
        provider = self.provider
        batch = EmbeddingBatch()
        last_error = None
        for i, text in enumerate(texts):
            try:
                vector = provider.embed(text)
            except Exception as e:
                last_error = f"{type(e).__name__}: {e}"
                batch.failures[i] = last_error
                logger.warning("Embedding failed for chunk %d/%d: %s", i + 1, len(texts), last_error)
                continue
            batch.embedded.append(EmbeddedChunk(index=i, text=text, embedding=vector))

        if texts and not batch.embedded:
            raise NoEmbeddingsProducedError(len(texts), last_error)
        if batch.failures:
            logger.info(
                "Embedded %d of %d chunks (%d skipped)",
                len(batch.embedded), len(texts), len(batch.failures),
            )
        return batch
