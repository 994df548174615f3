"""
Protocol definitions for the key-value backend.

The engine only needs an ordered key -> JSON document store with
per-key versions. SQLite is the default (kv_store.KeyValueStore);
anything satisfying KeyValueStoreProtocol can be injected into TabStash.
"""

from typing import Any, Callable, Optional, Protocol, runtime_checkable

from .kv_store import StorageChange

ChangeListener = Callable[[dict[str, StorageChange]], None]


@runtime_checkable
class KeyValueStoreProtocol(Protocol):
    """Versioned key -> JSON value storage with change notifications."""

    def get(self, keys: list[str]) -> dict[str, Any]: ...

    def get_versioned(self, keys: list[str]) -> dict[str, tuple[Optional[Any], int]]: ...

    def set(self, values: dict[str, Any]) -> None: ...

    def commit(
        self,
        expected: dict[str, int],
        writes: dict[str, Any],
    ) -> bool: ...

    def delete(self, keys: list[str]) -> int: ...

    def keys(self) -> list[str]: ...

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]: ...

    def close(self) -> None: ...
