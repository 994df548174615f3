"""
Tab Stash

Persistent storage for browser tabs: canonical URL records shared by
domain groups and user projects, parent categories with keyword-based
sub-categories, schema migration, garbage collection and age-based
expiry.

Quick Start:
    from tabstash import TabStash

    with TabStash() as ts:   # uses ~/.tabstash/
        ts.groups.save_tabs([{"url": "https://a.com/1", "title": "Foo"}])
        ts.expiration.sweep()

CLI Usage:
    tabstash save https://a.com/1
    tabstash list --urls
    tabstash data export backup.json

Environment Variables:
    TABSTASH_STORE_PATH  - Override default store location
    TABSTASH_VERBOSE     - Set to 1 for debug logging to stderr
"""

from .api import TabStash
from .errors import (
    ConflictError,
    DuplicateNameError,
    ImportValidationError,
    NotFoundError,
    StoreIOError,
    TabStashError,
    ValidationError,
)
from .expiration import AutoDeletePeriod
from .kv_store import KeyValueStore, StorageChange
from .types import (
    DomainCategorySettings,
    DomainGroup,
    DomainParentCategoryMapping,
    ParentCategory,
    Project,
    ProjectUrl,
    TabInfo,
    UrlRecord,
)

__version__ = "0.1.0"
__all__ = [
    "TabStash",
    "KeyValueStore",
    "StorageChange",
    "AutoDeletePeriod",
    "UrlRecord",
    "DomainGroup",
    "Project",
    "ProjectUrl",
    "ParentCategory",
    "DomainCategorySettings",
    "DomainParentCategoryMapping",
    "TabInfo",
    "TabStashError",
    "ValidationError",
    "DuplicateNameError",
    "NotFoundError",
    "ImportValidationError",
    "StoreIOError",
    "ConflictError",
]
