"""
Logging configuration for notesum.

Suppress verbose library output by default for better UX.
"""

import logging
import os
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path

OPS_LOG_FILENAME = "notesum-ops.log"

# HTTP and provider SDK loggers that are chatty at INFO
_LIBRARY_LOGGERS = ("httpx", "httpcore", "anthropic", "openai", "urllib3")


def configure_quiet_mode(quiet: bool = True):
    """
    Configure logging to suppress verbose library output.

    This silences:
    - HTTP client request logs from the provider SDKs
    - Library warnings (deprecation, etc.)

    Args:
        quiet: If True, suppress verbose output. If False, show everything.
    """
    if quiet:
        warnings.filterwarnings("ignore")
        for name in _LIBRARY_LOGGERS:
            logging.getLogger(name).setLevel(logging.ERROR)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and getattr(h, "stream", None) == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    for name in ("notesum",) + _LIBRARY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG)


def is_verbose() -> bool:
    """True when NOTESUM_VERBOSE asks for debug output."""
    return os.environ.get("NOTESUM_VERBOSE", "") not in ("", "0")


def configure_ops_log(store_path):
    """Configure a persistent operations log for a notesum store.

    Writes to {store_path}/notesum-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    store_path = Path(store_path)
    store_path.mkdir(parents=True, exist_ok=True)
    log_path = store_path / OPS_LOG_FILENAME

    handler = RotatingFileHandler(
        str(log_path),
        maxBytes=1_000_000,
        backupCount=3,
    )
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s %(levelname)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))

    notesum_logger = logging.getLogger("notesum")
    notesum_logger.addHandler(handler)
    # Ensure notesum logger allows INFO through even in quiet mode
    if notesum_logger.level == logging.NOTSET or notesum_logger.level > logging.INFO:
        notesum_logger.setLevel(logging.INFO)

    return handler


def remove_ops_log(handler) -> None:
    """Detach and close a handler returned by configure_ops_log."""
    logging.getLogger("notesum").removeHandler(handler)
    handler.close()
