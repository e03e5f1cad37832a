"""
Pluggable storage backend factory.

Creates the storage backends (DocumentStore, ChunkStore) from configuration.
The local backend keeps both tables in one SQLite file. External backends
register via the ``recall.backends`` entry point group and provide::

    def create_stores(config: StoreConfig) -> StoreBundle:
        ...
"""

from typing import NamedTuple

from .config import StoreConfig
from .protocol import ChunkStoreProtocol, DocumentStoreProtocol


class StoreBundle(NamedTuple):
    """Storage backends returned by the factory."""
    doc_store: DocumentStoreProtocol
    chunk_store: ChunkStoreProtocol


def create_stores(config: StoreConfig) -> StoreBundle:
    """
    Create storage backends from configuration.

    For ``backend = "local"`` (default), creates the SQLite stores in
    ``recall.db`` under the store directory. For other values, loads the
    backend via the ``recall.backends`` entry point group.
    """
    if config.backend == "local":
        return _create_local_stores(config)
    return _load_backend(config.backend, config)


def _create_local_stores(config: StoreConfig) -> StoreBundle:
    """Create the default local storage backends."""
    from .chunk_store import ChunkStore
    from .document_store import DocumentStore

    # documents must exist before chunks can reference it
    doc_store = DocumentStore(config.database_path)
    chunk_store = ChunkStore(config.database_path)
    return StoreBundle(doc_store=doc_store, chunk_store=chunk_store)


def _load_backend(name: str, config: StoreConfig) -> StoreBundle:
    """Load a backend by entry point name."""
    from importlib.metadata import entry_points

    eps = entry_points(group="recall.backends")
    for ep in eps:
        if ep.name == name:
            factory = ep.load()
            return factory(config)

    available = [ep.name for ep in eps]
    if available:
        raise ValueError(f"Unknown backend: {name!r}. Available: {available}")
    raise ValueError(f"Unknown backend: {name!r}. No backends registered.")
