"""
Error types and error logging utilities for recall.

Logs full stack traces for debugging while showing clean messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path


class RecallError(Exception):
    """Base class for recall errors."""


class EmbeddingUnavailableError(RecallError):
    """No embedding backend is configured."""


class NoEmbeddingsProducedError(RecallError):
    """Every chunk in a batch failed to embed."""

    def __init__(self, attempted: int, last_error: str | None = None):
        self.attempted = attempted
        self.last_error = last_error
        msg = f"No embeddings produced for {attempted} chunk(s)"
        if last_error:
            msg += f": {last_error}"
        super().__init__(msg)


class ChunkPersistenceError(RecallError):
    """A chunk batch could not be written. Nothing from the batch is visible."""


class ClaimLostError(RecallError):
    """The processing claim was lost (body replaced or claim released) before chunks were written."""


def _error_log_path() -> Path:
    """Resolve error log path, respecting RECALL_STORE_PATH."""
    store = os.environ.get("RECALL_STORE_PATH")
    if store:
        return Path(store) / "recall-errors.log"
    return Path.home() / ".recall" / "recall-errors.log"


def log_exception(exc: Exception, context: str = "") -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path()
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(log_path, os.O_WRONLY | os.O_CREAT | os.O_APPEND, 0o600)
        with os.fdopen(fd, "a") as f:
            f.write(f"\n{'='*60}\n")
            f.write(f"[{timestamp}]")
            if context:
                f.write(f" {context}")
            f.write("\n")
            f.write("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    except OSError:
        pass  # Can't write error log; don't crash over it
    return log_path
