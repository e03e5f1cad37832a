"""
Logging configuration for recall.

Suppress verbose library output by default for better UX.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

# HTTP client libraries that log every request at INFO
_NOISY_LOGGERS = ("openai", "httpx", "httpcore", "mcp")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("recall",) + _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def configure_ops_log(store_path) -> RotatingFileHandler:
    """Configure a persistent operations log for a store.

    Writes to {store_path}/recall-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        str(store_path / "recall-ops.log"),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    recall_logger = logging.getLogger("recall")
    recall_logger.addHandler(handler)
    # Ensure INFO reaches the ops log even in quiet mode
    if recall_logger.level == logging.NOTSET or recall_logger.level > logging.INFO:
        recall_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler: RotatingFileHandler) -> None:
    """Detach and close an ops log handler created by configure_ops_log."""
    logging.getLogger("recall").removeHandler(handler)
    handler.close()
