"""
Base provider protocols.

These define the interfaces that concrete providers must implement.
Using Protocol for structural subtyping - no explicit inheritance required.
"""

import logging
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Embedding Generation
# -----------------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Generates vector embeddings from text.

    The same provider instance must be used for both indexing and querying
    to ensure consistent vectors.

    Example implementation:
        class OpenAIEmbedding:
            def __init__(self, model: str = "text-embedding-3-small"):
                self._client = OpenAI()
                self.model = model

            @property
            def dimension(self) -> int:
                return 1536

            def embed(self, text: str) -> list[float]:
                response = self._client.embeddings.create(model=self.model, input=text)
                return response.data[0].embedding

            def embed_batch(self, texts: list[str]) -> list[list[float]]:
                response = self._client.embeddings.create(model=self.model, input=texts)
                return [d.embedding for d in response.data]
    """

    @property
    def dimension(self) -> int:
        """
        The dimensionality of the embedding vectors.

        This must be consistent across all calls.
        """
        ...

    def embed(self, text: str) -> list[float]:
        """
        Generate an embedding vector for the given text.

        Args:
            text: The text to embed

        Returns:
            A list of floats representing the embedding vector
        """
        ...

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Generate embeddings for multiple texts in one request.

        Args:
            texts: List of texts to embed

        Returns:
            List of embedding vectors, one per input text
        """
        ...


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------

class ProviderRegistry:
    """
    Registry for discovering and instantiating providers.

    Providers are registered by name and can be instantiated from configuration.
    This allows the store configuration (TOML) to specify providers by name
    rather than requiring code changes.

    Example:
        registry = ProviderRegistry()
        registry.register_embedding("openai", OpenAIEmbedding)

        # Later, from config:
        provider = registry.create_embedding("openai", {"model": "text-embedding-3-small"})
    """

    def __init__(self):
        self._embedding_providers: dict[str, type] = {}
        self._lazy_loaded = False

    def _ensure_providers_loaded(self) -> None:
        """Lazily load all provider modules."""
        if self._lazy_loaded:
            return

        self._lazy_loaded = True

        # Import provider modules to trigger registration
        try:
            from . import embeddings  # noqa: F401
        except ImportError as e:
            logger.debug("Embedding providers unavailable: %s", e)

    def register_embedding(self, name: str, provider_class: type) -> None:
        """Register an embedding provider class."""
        self._embedding_providers[name] = provider_class

    def _provider_class(self, name: str) -> type:
        self._ensure_providers_loaded()
        if name not in self._embedding_providers:
            available = ", ".join(self._embedding_providers.keys()) or "none"
            raise ValueError(
                f"Unknown embedding provider: '{name}'. Available: {available}"
            )
        return self._embedding_providers[name]

    def create_embedding(self, name: str, params: dict | None = None) -> EmbeddingProvider:
        """Create an embedding provider instance."""
        provider_class = self._provider_class(name)
        try:
            return provider_class(**(params or {}))
        except TypeError as e:
            raise ValueError(f"Invalid parameters for embedding provider '{name}': {e}")

    def embedding_available(self, name: str, params: dict | None = None) -> bool:
        """
        Whether a provider could be created from this configuration.

        Decided from configuration alone (credentials present, name known);
        no network access and no provider instantiation.
        """
        try:
            provider_class = self._provider_class(name)
        except ValueError:
            return False
        check = getattr(provider_class, "is_configured", None)
        if check is None:
            return True
        return bool(check(params or {}))

    def list_embedding_providers(self) -> list[str]:
        """List registered embedding provider names."""
        self._ensure_providers_loaded()
        return list(self._embedding_providers.keys())


# Global registry instance
# Concrete providers register themselves on import
_registry = ProviderRegistry()


def get_registry() -> ProviderRegistry:
    """Get the global provider registry."""
    return _registry
