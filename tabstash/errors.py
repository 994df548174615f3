"""
Exceptions and error logging for tabstash.

The CLI logs full stack traces for debugging while showing clean
messages to users.
"""

import os
import traceback
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional


class TabStashError(Exception):
    """Base class for all tabstash errors."""


class ValidationError(TabStashError, ValueError):
    """Rejected input. Nothing was written."""


class DuplicateNameError(ValidationError):
    """A category, project or sub-category name is already taken."""

    def __init__(self, kind: str, name: str):
        self.kind = kind
        self.name = name
        super().__init__(f"A {kind} named {name!r} already exists")


class NotFoundError(TabStashError, KeyError):
    """An explicit lookup targeted an id that does not exist."""

    def __init__(self, kind: str, id: str):
        self.kind = kind
        self.id = id
        super().__init__(f"{kind} not found: {id}")

    def __str__(self) -> str:
        return self.args[0]


class ImportValidationError(ValidationError):
    """A backup document failed schema validation. Nothing was written."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        summary = "; ".join(errors[:5])
        if len(errors) > 5:
            summary += f" (+{len(errors) - 5} more)"
        super().__init__(f"Invalid backup data: {summary}")


class StoreIOError(TabStashError):
    """The key-value store kept failing after all retries."""


class ConflictError(StoreIOError):
    """A read-modify-write lost the version race on every attempt."""


def _error_log_path(store_path: Optional[Path] = None) -> Path:
    """Resolve error log path, respecting TABSTASH_STORE_PATH."""
    if store_path is not None:
        return Path(store_path) / "tabstash-errors.log"
    store = os.environ.get("TABSTASH_STORE_PATH")
    if store:
        return Path(store) / "tabstash-errors.log"
    return Path.home() / ".tabstash" / "tabstash-errors.log"


def log_exception(exc: Exception, context: str = "", store_path: Optional[Path] = None) -> Path:
    """
    Log exception with full traceback to file.

    Args:
        exc: The exception that occurred
        context: Optional context string (e.g., command name)
        store_path: Store directory; defaults to the environment/home store

    Returns:
        Path to the error log file
    """
    log_path = _error_log_path(store_path)
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
