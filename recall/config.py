"""
Configuration management for recall stores.

The configuration is stored as a TOML file in the store directory.
It specifies the embedding provider and the chunking, processing and
search parameters.
"""

import os
import tomllib
from dataclasses import dataclass, field, fields
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import tomli_w


CONFIG_FILENAME = "recall.toml"
CONFIG_VERSION = 1
DATABASE_FILENAME = "recall.db"
STORE_PATH_ENV = "RECALL_STORE_PATH"


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChunkingConfig:
    max_chunk_size: int = 6000
    overlap: int = 500
    boundary_window: int = 500


@dataclass
class ProcessingConfig:
    """
    When chunking and embedding happen.

    inline_enabled: run Tier 2 (inline-if-small) on the write path.
        It is a resource-bounded fast path; disable it where memory is tight.
    inline_threshold: max estimated chunks for inline/recovery processing.
    stale_minutes: minimum age before recovery touches a pending document.
    stale_claim_minutes: age after which a 'processing' claim is presumed crashed.
    recovery_batch: max documents per recovery pass.
    recovery_workers: documents processed concurrently during recovery.
    recover_on_start: run recovery in the background when a Vault opens.
    """
    inline_enabled: bool = True
    inline_threshold: int = 5
    stale_minutes: float = 5.0
    stale_claim_minutes: float = 10.0
    recovery_batch: int = 10
    recovery_workers: int = 2
    recover_on_start: bool = True


@dataclass
class SearchConfig:
    rrf_k: int = 60
    default_limit: int = 10
    max_limit: int = 20
    snippet_chars: int = 150
    max_query_chars: int = 30000
    grep_max_body: int = 50000


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    # "local" (SQLite) or the name of a recall.backends entry point
    backend: str = "local"

    # None means no embedding backend: keyword-only operation
    embedding: Optional[ProviderConfig] = None
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    processing: ProcessingConfig = field(default_factory=ProcessingConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """Store directory: RECALL_STORE_PATH, else ~/.recall."""
    env = os.environ.get(STORE_PATH_ENV)
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".recall"


def detect_default_embedding() -> Optional[ProviderConfig]:
    """
    Detect the embedding provider for the current environment.

    OpenAI when an API key is available, otherwise None (keyword-only).
    """
    has_openai_key = bool(
        os.environ.get("RECALL_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )
    if has_openai_key:
        return ProviderConfig("openai", {"model": "text-embedding-3-small"})
    return None


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    return StoreConfig(path=store_path, embedding=detect_default_embedding())


def _section(cls, data: dict):
    """Build a dataclass section from TOML, ignoring unknown keys."""
    known = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in data.items() if k in known})


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding = None
    section = data.get("embedding")
    if section and section.get("name"):
        embedding = ProviderConfig(
            name=section["name"],
            params={k: v for k, v in section.items() if k != "name"},
        )

    try:
        return StoreConfig(
            path=store_path,
            version=version,
            created=data.get("store", {}).get("created", ""),
            backend=data.get("store", {}).get("backend", "local"),
            embedding=embedding,
            chunking=_section(ChunkingConfig, data.get("chunking", {})),
            processing=_section(ProcessingConfig, data.get("processing", {})),
            search=_section(SearchConfig, data.get("search", {})),
        )
    except TypeError as e:
        raise ValueError(f"Invalid config {config_path}: {e}")


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
            "backend": config.backend,
        },
        "chunking": vars(config.chunking).copy(),
        "processing": vars(config.processing).copy(),
        "search": vars(config.search).copy(),
    }
    if config.embedding is not None:
        embedding = {"name": config.embedding.name}
        # Never persist secrets
        embedding.update({k: v for k, v in config.embedding.params.items() if k != "api_key"})
        data["embedding"] = embedding

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    if (store_path / CONFIG_FILENAME).exists():
        return load_config(store_path)
    config = create_default_config(store_path)
    save_config(config)
    return config
