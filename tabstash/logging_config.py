"""
Logging configuration for tabstash.

Quiet by default; debug output to stderr on request; a persistent
operations log inside each store.
"""

import logging
import sys
import warnings
from logging.handlers import RotatingFileHandler
from pathlib import Path


def configure_quiet_mode(quiet: bool = True):
    """
    Keep library chatter out of the CLI output.

    Args:
        quiet: If True, only warnings and errors reach stderr.
    """
    if quiet:
        warnings.filterwarnings("ignore", category=DeprecationWarning)
        logging.getLogger("tabstash").setLevel(logging.WARNING)
    else:
        logging.getLogger("tabstash").setLevel(logging.INFO)


def enable_debug_mode():
    """Enable debug-level logging to stderr."""
    warnings.filterwarnings("default")

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Add stderr handler if not already present
    if not any(isinstance(h, logging.StreamHandler) and h.stream == sys.stderr
               for h in root_logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s: %(message)s",
            datefmt="%H:%M:%S"
        ))
        root_logger.addHandler(handler)

    logging.getLogger("tabstash").setLevel(logging.DEBUG)


def configure_ops_log(store_path):
    """Configure a persistent operations log for a store.

    Writes to {store_path}/tabstash-ops.log using a rotating file handler
    (1MB max, 3 backups). Always active regardless of --verbose.
    Returns the handler so it can be removed on close().
    """
    log_path = Path(store_path) / "tabstash-ops.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)
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

    stash_logger = logging.getLogger("tabstash")
    stash_logger.addHandler(handler)
    # Ensure the ops log sees INFO even in quiet mode
    if stash_logger.level == logging.NOTSET or stash_logger.level > logging.INFO:
        stash_logger.setLevel(logging.INFO)

    return handler
