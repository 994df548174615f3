"""
Core API for the tab stash.

``TabStash`` opens (or creates) a store directory, runs pending schema
migrations and exposes the engine components:

- urls: canonical URL records
- groups: domain groups and tab saving
- projects: user projects
- categories: parent categories and sub-category rules
- migrations, gc, expiration, backup, settings
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from .backup import BackupManager
from .categories import CategoryStore
from .config import StoreConfig, get_default_store_path, load_or_create_config
from .expiration import ExpirationScheduler
from .gc import GarbageCollector
from .groups import DomainGroupStore
from .kv_store import KeyValueStore, StorageChange
from .migration import MigrationEngine, MigrationReport
from .mutator import Mutator
from .projects import ProjectStore
from .protocol import KeyValueStoreProtocol
from .settings import SettingsStore
from .urls import UrlRecordStore

logger = logging.getLogger(__name__)


class TabStash:
    """
    Persistent stash of browser tabs.

    Example:
        with TabStash() as ts:
            ts.groups.save_tabs([{"url": "https://a.com/1", "title": "Foo"}])
            for group in ts.groups.list_groups():
                print(group.domain, len(group.url_ids))
    """

    def __init__(
        self,
        store_path: Optional[str | Path] = None,
        *,
        config: Optional[StoreConfig] = None,
        kv_store: Optional[KeyValueStoreProtocol] = None,
        clock: Optional[Callable[[], int]] = None,
        run_migrations: bool = True,
    ) -> None:
        """
        Open a store.

        Args:
            store_path: Store directory. Defaults to TABSTASH_STORE_PATH or ~/.tabstash.
            config: Pre-loaded StoreConfig (skips reading tabstash.toml)
            kv_store: Injected key-value store (skips opening tabstash.db)
            clock: Millisecond clock, for tests
            run_migrations: Apply pending schema migrations on open
        """
        if config is not None:
            self._config = config
            self._store_path = config.path
        else:
            self._store_path = (
                Path(store_path).expanduser().resolve()
                if store_path is not None else get_default_store_path()
            )
            self._config = load_or_create_config(self._store_path)

        from .logging_config import configure_ops_log
        self._ops_log_handler = configure_ops_log(self._store_path)

        self._owns_store = kv_store is None
        self._kv: KeyValueStoreProtocol = (
            kv_store if kv_store is not None else KeyValueStore(self._config.db_path)
        )
        self._mutator = Mutator(self._kv, retry=self._config.retry, clock=clock)

        self.urls = UrlRecordStore(self._mutator)
        self.groups = DomainGroupStore(self._mutator)
        self.projects = ProjectStore(self._mutator, default_name=self._config.default_project_name)
        self.categories = CategoryStore(self._mutator)
        self.migrations = MigrationEngine(self._mutator)
        self.gc = GarbageCollector(self._mutator)
        self.expiration = ExpirationScheduler(
            self._mutator, interval_seconds=self._config.sweep_interval_seconds,
        )
        self.backup = BackupManager(self._mutator)
        self.settings = SettingsStore(self._mutator)

        self.last_migration: Optional[MigrationReport] = None
        if run_migrations:
            self.last_migration = self.migrations.run()

        logger.debug("Opened tab stash at %s", self._store_path)

    @property
    def config(self) -> StoreConfig:
        return self._config

    @property
    def store_path(self) -> Path:
        return self._store_path

    def subscribe(self, listener: Callable[[dict[str, StorageChange]], None]) -> Callable[[], None]:
        """
        Register for change notifications from the underlying store.

        Returns:
            A function that unsubscribes the listener
        """
        return self._kv.subscribe(listener)

    def close(self) -> None:
        """Stop the expiration timer and release the store."""
        if hasattr(self, "expiration"):
            self.expiration.stop()

        if getattr(self, "_owns_store", False) and getattr(self, "_kv", None) is not None:
            self._kv.close()
            self._kv = None

        # Remove ops log handler to avoid handler accumulation
        if getattr(self, "_ops_log_handler", None) is not None:
            logging.getLogger("tabstash").removeHandler(self._ops_log_handler)
            self._ops_log_handler.close()
            self._ops_log_handler = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
