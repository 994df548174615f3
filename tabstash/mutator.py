"""
Read-modify-write over the key-value store.

Every engine operation is a pure function of a ``StateView``: it reads
whatever keys it needs (each read records the key's version), edits the
decoded values, and marks the keys it changed. ``Mutator.mutate``
commits the changed keys with a compare-and-swap over every key that
was read. If another writer got there first the whole operation is
re-run against fresh state, so an interleaved save and expiration
sweep can never overwrite each other.

Within one process writers are also serialized by a re-entrant lock,
which keeps conflicts to the cross-process case.
"""

import logging
import sqlite3
import threading
import time
from typing import Any, Callable, Optional, TypeVar

from .config import RetryConfig
from .errors import ConflictError, StoreIOError
from .protocol import KeyValueStoreProtocol
from .types import (
    CUSTOM_PROJECT_ORDER_KEY,
    CUSTOM_PROJECTS_KEY,
    DOMAIN_CATEGORY_MAPPINGS_KEY,
    DOMAIN_CATEGORY_SETTINGS_KEY,
    PARENT_CATEGORIES_KEY,
    SAVED_TABS_KEY,
    URLS_KEY,
    DomainCategorySettings,
    DomainGroup,
    DomainParentCategoryMapping,
    ParentCategory,
    Project,
    UrlRecord,
    now_ms,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors from the store that are worth another attempt
RETRYABLE_ERRORS = (sqlite3.OperationalError, sqlite3.DatabaseError, OSError)


class StateView:
    """
    Snapshot of the store as seen by one attempt of one operation.

    Keys are fetched lazily on first access. Typed accessors decode the
    stored JSON once and hand out the same list on later calls, so
    edits made in place are kept; call ``mark()`` (or a ``set_*``
    method) for every key you changed.
    """

    def __init__(self, store: KeyValueStoreProtocol, now: int):
        self._store = store
        self.now = now
        self._raw: dict[str, Any] = {}
        self._versions: dict[str, int] = {}
        self._decoded: dict[str, list] = {}
        self._dirty: set[str] = set()

    # ---- Raw access ----

    def _fetch(self, key: str) -> Any:
        if key not in self._versions:
            value, version = self._store.get_versioned([key])[key]
            self._raw[key] = value
            self._versions[key] = version
        return self._raw[key]

    def get(self, key: str, default: Any = None) -> Any:
        """Raw stored value of ``key`` (decoded JSON)."""
        if key in self._decoded:
            raise RuntimeError(f"{key} is held in decoded form; use its typed accessor")
        value = self._fetch(key)
        return default if value is None else value

    def put(self, key: str, value: Any) -> None:
        """Replace the raw value of ``key``."""
        self._fetch(key)
        self._decoded.pop(key, None)
        self._raw[key] = value
        self._dirty.add(key)

    def mark(self, key: str) -> None:
        """Record that the decoded value of ``key`` was edited in place."""
        self._fetch(key)
        self._dirty.add(key)

    # ---- Typed access ----

    def _typed(self, key: str, decode: Callable[[dict], Any]) -> list:
        if key not in self._decoded:
            raw = self._fetch(key)
            items = []
            for entry in raw if isinstance(raw, list) else []:
                if not isinstance(entry, dict):
                    continue
                try:
                    items.append(decode(entry))
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("Skipping malformed %s entry: %s", key, e)
            self._decoded[key] = items
        return self._decoded[key]

    def _set_typed(self, key: str, items: list) -> None:
        self._fetch(key)
        self._decoded[key] = items
        self._dirty.add(key)

    def records(self) -> list[UrlRecord]:
        return self._typed(URLS_KEY, UrlRecord.from_dict)

    def set_records(self, records: list[UrlRecord]) -> None:
        self._set_typed(URLS_KEY, records)

    def mark_records(self) -> None:
        self.mark(URLS_KEY)

    def groups(self) -> list[DomainGroup]:
        return self._typed(SAVED_TABS_KEY, DomainGroup.from_dict)

    def set_groups(self, groups: list[DomainGroup]) -> None:
        self._set_typed(SAVED_TABS_KEY, groups)

    def mark_groups(self) -> None:
        self.mark(SAVED_TABS_KEY)

    def projects(self) -> list[Project]:
        return self._typed(
            CUSTOM_PROJECTS_KEY, lambda d: Project.from_dict(d, default_time=self.now),
        )

    def set_projects(self, projects: list[Project]) -> None:
        self._set_typed(CUSTOM_PROJECTS_KEY, projects)

    def mark_projects(self) -> None:
        self.mark(CUSTOM_PROJECTS_KEY)

    def categories(self) -> list[ParentCategory]:
        return self._typed(PARENT_CATEGORIES_KEY, ParentCategory.from_dict)

    def set_categories(self, categories: list[ParentCategory]) -> None:
        self._set_typed(PARENT_CATEGORIES_KEY, categories)

    def mark_categories(self) -> None:
        self.mark(PARENT_CATEGORIES_KEY)

    def domain_settings(self) -> list[DomainCategorySettings]:
        return self._typed(DOMAIN_CATEGORY_SETTINGS_KEY, DomainCategorySettings.from_dict)

    def set_domain_settings(self, settings: list[DomainCategorySettings]) -> None:
        self._set_typed(DOMAIN_CATEGORY_SETTINGS_KEY, settings)

    def mark_domain_settings(self) -> None:
        self.mark(DOMAIN_CATEGORY_SETTINGS_KEY)

    def mappings(self) -> list[DomainParentCategoryMapping]:
        return self._typed(DOMAIN_CATEGORY_MAPPINGS_KEY, DomainParentCategoryMapping.from_dict)

    def set_mappings(self, mappings: list[DomainParentCategoryMapping]) -> None:
        self._set_typed(DOMAIN_CATEGORY_MAPPINGS_KEY, mappings)

    def mark_mappings(self) -> None:
        self.mark(DOMAIN_CATEGORY_MAPPINGS_KEY)

    def project_order(self) -> list[str]:
        value = self.get(CUSTOM_PROJECT_ORDER_KEY, [])
        return [v for v in value if isinstance(v, str)] if isinstance(value, list) else []

    # ---- Commit support ----

    @property
    def dirty(self) -> set[str]:
        return set(self._dirty)

    @property
    def read_versions(self) -> dict[str, int]:
        return dict(self._versions)

    def encoded_writes(self) -> dict[str, Any]:
        """Stored form of every dirty key."""
        writes = {}
        for key in self._dirty:
            if key in self._decoded:
                writes[key] = [item.to_dict() for item in self._decoded[key]]
            else:
                writes[key] = self._raw[key]
        return writes


class Mutator:
    """
    Runs operations against a key-value store with optimistic concurrency.

    Args:
        store: Versioned key-value store
        retry: Attempt limit and backoff for conflicts and I/O errors
        clock: Millisecond clock; ``StateView.now`` is taken from it once per attempt
    """

    def __init__(
        self,
        store: KeyValueStoreProtocol,
        retry: Optional[RetryConfig] = None,
        clock: Optional[Callable[[], int]] = None,
    ):
        self._store = store
        self._retry = retry or RetryConfig()
        self._clock = clock or now_ms
        self._lock = threading.RLock()

    @property
    def store(self) -> KeyValueStoreProtocol:
        return self._store

    def now(self) -> int:
        return self._clock()

    def _backoff(self, attempt: int) -> float:
        delay = self._retry.backoff_base * (2 ** (attempt - 1))
        return min(delay, self._retry.backoff_max)

    def mutate(self, fn: Callable[[StateView], T], *, name: str = "") -> T:
        """
        Run ``fn`` and commit the keys it marked dirty.

        ``fn`` may run more than once and must not have side effects
        outside the view. Exceptions it raises propagate unchanged and
        nothing is written.

        Raises:
            ConflictError: Every attempt lost the version race
            StoreIOError: The store kept failing
        """
        label = name or getattr(fn, "__name__", "mutation")
        last_error: Optional[Exception] = None
        conflicted = False

        with self._lock:
            for attempt in range(1, self._retry.max_attempts + 1):
                if attempt > 1:
                    time.sleep(self._backoff(attempt - 1))
                view = StateView(self._store, self._clock())
                try:
                    result = fn(view)
                    if not view.dirty:
                        return result
                    expected = view.read_versions
                    if self._store.commit(expected, view.encoded_writes()):
                        return result
                    conflicted = True
                    logger.warning(
                        "%s: concurrent write detected, retrying (attempt %d/%d)",
                        label, attempt, self._retry.max_attempts,
                    )
                except RETRYABLE_ERRORS as e:
                    last_error = e
                    conflicted = False
                    logger.warning(
                        "%s: store error on attempt %d/%d: %s",
                        label, attempt, self._retry.max_attempts, e,
                    )

        if conflicted:
            raise ConflictError(
                f"{label}: gave up after {self._retry.max_attempts} conflicting attempts"
            )
        raise StoreIOError(
            f"{label}: store failed after {self._retry.max_attempts} attempts: {last_error}"
        ) from last_error

    def read(self, fn: Callable[[StateView], T]) -> T:
        """Run a read-only ``fn``; anything it marks dirty is discarded."""
        last_error: Optional[Exception] = None
        for attempt in range(1, self._retry.max_attempts + 1):
            if attempt > 1:
                time.sleep(self._backoff(attempt - 1))
            try:
                return fn(StateView(self._store, self._clock()))
            except RETRYABLE_ERRORS as e:
                last_error = e
                logger.warning("Store read failed on attempt %d: %s", attempt, e)
        raise StoreIOError(f"Store read failed: {last_error}") from last_error
