"""
Shared pytest fixtures for tabstash tests.

Every test gets a fresh store directory under tmp_path and a fake
millisecond clock so that savedAt values and expiry are deterministic.
"""

from pathlib import Path
from typing import Any

import pytest

from tabstash.api import TabStash
from tabstash.config import DB_FILENAME
from tabstash.kv_store import KeyValueStore


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store_path(tmp_path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def stash(store_path, clock):
    """An open TabStash on an empty store."""
    ts = TabStash(store_path, clock=clock)
    yield ts
    ts.close()


def seed_store(store_path: Path, values: dict[str, Any]) -> None:
    """Write raw documents into a store before it is opened."""
    store_path.mkdir(parents=True, exist_ok=True)
    with KeyValueStore(store_path / DB_FILENAME) as kv:
        kv.set(values)


def read_raw(store_path: Path, *keys: str) -> dict[str, Any]:
    """Stored JSON documents for ``keys`` (all keys if none given)."""
    with KeyValueStore(store_path / DB_FILENAME) as kv:
        return kv.get(list(keys) if keys else kv.keys())


def assert_referential_integrity(ts: TabStash) -> None:
    """Every id a collection refers to has a URL record; no group is empty."""
    known = {r.id for r in ts.urls.list_all()}
    for group in ts.groups.list_groups():
        assert group.url_ids, f"empty group {group.domain}"
        assert len(group.url_ids) == len(set(group.url_ids))
        assert set(group.url_ids) <= known
        assert set(group.url_sub_categories) <= set(group.url_ids)
    for project in ts.projects.list_projects():
        assert set(project.url_ids) <= known
