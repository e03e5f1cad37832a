"""
Embedding providers backed by remote APIs.
"""

import os

from .base import get_registry

DEFAULT_TIMEOUT_SECONDS = 30.0

# Known output dimensions; unknown models report the length of their first vector
_MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "text-embedding-ada-002": 1536,
}


def _resolve_api_key(api_key: str | None = None) -> str | None:
    return api_key or os.environ.get("RECALL_OPENAI_API_KEY") or os.environ.get("OPENAI_API_KEY")


class OpenAIEmbedding:
    """
    Embedding provider using OpenAI's embeddings API.

    Requires: RECALL_OPENAI_API_KEY or OPENAI_API_KEY environment variable
    (or an ``api_key`` in the [embedding] config section).

    Requests are bounded by ``timeout`` seconds and are not retried at this
    layer; callers decide what a failure means.
    """

    def __init__(
        self,
        model: str = "text-embedding-3-small",
        api_key: str | None = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        dimensions: int | None = None,
    ):
        try:
            from openai import OpenAI
        except ImportError:
            raise RuntimeError("OpenAIEmbedding requires 'openai' library")

        key = _resolve_api_key(api_key)
        if not key:
            raise ValueError(
                "OpenAI API key required. Set RECALL_OPENAI_API_KEY or OPENAI_API_KEY"
            )

        self.model = model
        self.model_name = model
        self._requested_dimensions = dimensions
        self._dimension = dimensions or _MODEL_DIMENSIONS.get(model)
        self._client = OpenAI(api_key=key, timeout=timeout, max_retries=0)

    @classmethod
    def is_configured(cls, params: dict) -> bool:
        """True when an API key can be resolved from params or environment."""
        return bool(_resolve_api_key(params.get("api_key")))

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = len(self.embed("dimension probe"))
        return self._dimension

    def _create(self, inputs):
        kwargs = {"model": self.model, "input": inputs}
        if self._requested_dimensions:
            kwargs["dimensions"] = self._requested_dimensions
        return self._client.embeddings.create(**kwargs)

    def embed(self, text: str) -> list[float]:
        """Generate an embedding for a single text."""
        response = self._create(text)
        return list(response.data[0].embedding)

    def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for several texts in one request."""
        if not texts:
            return []
        response = self._create(texts)
        ordered = sorted(response.data, key=lambda d: d.index)
        return [list(d.embedding) for d in ordered]


# Register providers
_registry = get_registry()
_registry.register_embedding("openai", OpenAIEmbedding)
