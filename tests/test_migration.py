"""
Tests for the schema migrations run on open.

Stores are seeded with raw legacy documents (inline URL entries,
category member arrays) before TabStash touches them.
"""

import pytest

from conftest import assert_referential_integrity, read_raw, seed_store
from tabstash import migration
from tabstash.api import TabStash
from tabstash.config import DB_FILENAME
from tabstash.kv_store import KeyValueStore


LEGACY = {
    "savedTabs": [
        {
            "id": "g1",
            "domain": "https://a.com",
            "savedAt": 1000,
            "parentCategoryId": "c1",
            "subCategories": ["Docs"],
            "categoryKeywords": [{"categoryName": "Docs", "keywords": ["manual"]}],
            "urls": [
                {"url": "https://a.com/1", "title": "One", "savedAt": 500, "subCategory": "Docs"},
                {"url": "https://a.com/2", "title": "Two", "favIconUrl": "https://a.com/f.ico"},
            ],
        },
        {
            "id": "g2",
            "domain": "https://b.com",
            "savedAt": 2000,
            "urls": [{"url": "https://b.com/1", "title": "B"}],
        },
        {"id": "g3", "domain": "https://empty.com", "savedAt": 3000, "urls": []},
    ],
    "customProjects": [
        {
            "id": "p1",
            "name": "Research",
            "createdAt": 300,
            "updatedAt": 300,
            "urls": [
                {"url": "https://a.com/1", "title": "One, longer", "notes": "n", "category": "Papers"},
                {"url": "https://c.com/1", "title": "C", "savedAt": 42},
            ],
        },
    ],
    "parentCategories": [
        {"id": "c1", "name": "Work", "domains": ["g1"], "domainNames": []},
        {"id": "c2", "name": "Home", "domains": [], "domainNames": ["https://b.com"]},
    ],
}


@pytest.fixture
def legacy_store(store_path):
    seed_store(store_path, LEGACY)
    return store_path


@pytest.fixture
def migrated(legacy_store, clock):
    ts = TabStash(legacy_store, clock=clock)
    yield ts
    ts.close()


def _snapshot(store_path):
    with KeyValueStore(store_path / DB_FILENAME) as kv:
        return kv.get_versioned(kv.keys())


class TestUrlMigration:
    """Inline URL entries become shared records."""

    def test_records_created_once_per_url(self, migrated):
        urls = sorted(r.url for r in migrated.urls.list_all())
        assert urls == ["https://a.com/1", "https://a.com/2", "https://b.com/1", "https://c.com/1"]
        assert_referential_integrity(migrated)

    def test_saved_at_preserved_with_group_fallback(self, migrated):
        saved = {r.url: r.saved_at for r in migrated.urls.list_all()}
        assert saved["https://a.com/1"] == 500
        assert saved["https://a.com/2"] == 1000
        assert saved["https://b.com/1"] == 2000
        assert saved["https://c.com/1"] == 42

    def test_longer_title_wins_and_favicon_kept(self, migrated):
        assert migrated.urls.find_by_url("https://a.com/1").title == "One, longer"
        assert migrated.urls.find_by_url("https://a.com/2").fav_icon_url == "https://a.com/f.ico"

    def test_group_sub_categories_preserved(self, migrated):
        group = migrated.groups.get_group("g1")
        one = migrated.urls.find_by_url("https://a.com/1")
        assert group.url_sub_categories == {one.id: "Docs"}
        assert group.sub_categories == ["Docs"]
        assert group.category_keywords[0].keywords == ["manual"]

    def test_project_notes_and_category_preserved(self, migrated):
        urls = migrated.projects.project_urls("p1")
        assert [(u.url, u.notes, u.category) for u in urls] == [
            ("https://a.com/1", "n", "Papers"),
            ("https://c.com/1", None, None),
        ]
        assert migrated.projects.get_project("p1").categories == ["Papers"]

    def test_empty_legacy_group_dropped(self, migrated):
        assert migrated.groups.find_by_domain("https://empty.com") is None
        assert migrated.last_migration.empty_groups_removed == 1

    def test_inline_arrays_removed_from_storage(self, migrated, legacy_store):
        raw = read_raw(legacy_store, "savedTabs", "customProjects", "urlsMigrationCompleted")
        assert all("urls" not in g and "urlIds" in g for g in raw["savedTabs"])
        assert all("urls" not in p and "urlIds" in p for p in raw["customProjects"])
        assert raw["urlsMigrationCompleted"] is True

    def test_report(self, migrated):
        report = migrated.last_migration
        assert report.urls_migrated and report.mappings_migrated
        assert report.records_created == 4
        assert report.groups_migrated == 2
        assert report.projects_migrated == 1

    def test_legacy_timestamp_used_for_saved_at(self, store_path, clock):
        seed_store(store_path, {
            "savedTabs": [{
                "id": "g1", "domain": "https://a.com", "savedAt": 9000,
                "urls": [{"url": "https://a.com/1", "timestamp": 1000}],
            }],
        })
        with TabStash(store_path, clock=clock) as ts:
            assert ts.urls.find_by_url("https://a.com/1").saved_at == 1000


class TestCategoryMappingMigration:
    """Legacy member arrays fold into the domain mappings."""

    def test_mappings_from_ids_and_names(self, migrated):
        mappings = {m.domain: m.category_id for m in migrated.categories.get_domain_category_mappings()}
        assert mappings == {"https://a.com": "c1", "https://b.com": "c2"}

    def test_derived_members(self, migrated):
        categories = {c.id: c for c in migrated.categories.list_categories()}
        assert categories["c1"].domains == ["g1"]
        assert categories["c1"].domain_names == ["https://a.com"]
        assert categories["c2"].domains == ["g2"]
        assert migrated.groups.get_group("g1").parent_category_id == "c1"

    def test_member_arrays_dropped_from_storage(self, migrated, legacy_store):
        raw = read_raw(legacy_store, "parentCategories", "savedTabs", "categoryMappingsMigrated")
        assert raw["parentCategories"] == [
            {"id": "c1", "name": "Work"}, {"id": "c2", "name": "Home"},
        ]
        assert all("parentCategoryId" not in g for g in raw["savedTabs"])
        assert raw["categoryMappingsMigrated"] is True

    def test_first_category_wins_on_conflict(self, store_path, clock):
        seed_store(store_path, {
            "savedTabs": [{"id": "g1", "domain": "https://a.com", "urlIds": []}],
            "parentCategories": [
                {"id": "c1", "name": "Work", "domainNames": ["https://a.com"]},
                {"id": "c2", "name": "Home", "domainNames": ["https://a.com"]},
            ],
        })
        with TabStash(store_path, clock=clock) as ts:
            mappings = ts.categories.get_domain_category_mappings()
            assert [(m.domain, m.category_id) for m in mappings] == [("https://a.com", "c1")]

    def test_unknown_category_ids_ignored(self, store_path, clock):
        seed_store(store_path, {
            "savedTabs": [{
                "id": "g1", "domain": "https://a.com", "parentCategoryId": "gone",
                "urls": [{"url": "https://a.com/1"}],
            }],
        })
        with TabStash(store_path, clock=clock) as ts:
            assert ts.categories.get_domain_category_mappings() == []


class TestIdempotence:
    """Running the migrations again changes nothing."""

    def test_second_run_is_noop(self, migrated, legacy_store):
        before = _snapshot(legacy_store)
        report = migrated.migrations.run()
        assert not report.changed
        assert _snapshot(legacy_store) == before

    def test_reopen_is_noop(self, migrated, legacy_store, clock):
        before = _snapshot(legacy_store)
        migrated.close()
        with TabStash(legacy_store, clock=clock) as again:
            assert not again.last_migration.changed
        assert _snapshot(legacy_store) == before

    def test_fresh_store_marks_complete(self, stash):
        assert stash.migrations.is_complete()

    def test_skipped_on_request(self, legacy_store, clock):
        with TabStash(legacy_store, clock=clock, run_migrations=False) as ts:
            assert not ts.migrations.is_complete()
            assert ts.last_migration is None

    def test_failed_migration_leaves_store_untouched(self, legacy_store, clock, monkeypatch):
        def broken(view, report):
            raise RuntimeError("crash mid-migration")

        monkeypatch.setattr(migration, "migrate_inline_urls", broken)
        with pytest.raises(RuntimeError):
            TabStash(legacy_store, clock=clock)
        raw = read_raw(legacy_store, "savedTabs", "urlsMigrationCompleted")
        assert "urlsMigrationCompleted" not in raw
        by_id = {g["id"]: g for g in raw["savedTabs"]}
        assert len(by_id["g1"]["urls"]) == 2
        assert "urls" not in read_raw(legacy_store)

        monkeypatch.undo()
        with TabStash(legacy_store, clock=clock) as ts:
            assert ts.last_migration.urls_migrated
            assert len(ts.urls.list_all()) == 4
