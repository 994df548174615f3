"""
Tests for backup export and import (merge and replace).
"""

import json

import pytest

from conftest import assert_referential_integrity, read_raw
from tabstash.api import TabStash
from tabstash.backup import validate_backup
from tabstash.errors import ImportValidationError, ValidationError


def _settings(**overrides):
    settings = {
        "removeTabAfterOpen": True,
        "excludePatterns": ["chrome://"],
        "enableCategories": True,
        "showSavedTime": False,
        "clickBehavior": "saveSameDomainTabs",
    }
    settings.update(overrides)
    return settings


def _backup(saved_tabs, parent_categories=(), **settings):
    return {
        "version": "1.0.0",
        "timestamp": "2024-01-01T00:00:00+00:00",
        "userSettings": _settings(**settings),
        "parentCategories": list(parent_categories),
        "savedTabs": list(saved_tabs),
    }


def _group(stash, domain):
    return stash.groups.find_by_domain(domain)


class TestExport:
    """export_data() writes URLs inline per group."""

    def test_shape(self, stash, clock):
        group = stash.groups.save_tabs([
            {"url": "https://a.com/1", "title": "Foo", "favIconUrl": "https://a.com/f.ico"},
        ])[0]
        category = stash.categories.create_parent_category("Work")
        stash.categories.assign_domain_to_category(group.id, category.id)
        stash.categories.add_sub_category(group.id, "Docs", ["foo"])

        data = stash.backup.export_data()

        assert set(data) == {"version", "timestamp", "userSettings", "parentCategories", "savedTabs"}
        assert data["parentCategories"] == [{
            "id": category.id, "name": "Work",
            "domains": [group.id], "domainNames": ["https://a.com"],
        }]
        [tab_group] = data["savedTabs"]
        assert tab_group["domain"] == "https://a.com"
        assert tab_group["parentCategoryId"] == category.id
        assert tab_group["savedAt"] == clock.now
        assert tab_group["urls"] == [{
            "url": "https://a.com/1", "title": "Foo", "favIconUrl": "https://a.com/f.ico",
            "subCategory": "Docs", "savedAt": clock.now,
        }]
        assert data["userSettings"]["autoDeletePeriod"] == "never"

    def test_export_is_json_and_valid(self, stash):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        data = json.loads(json.dumps(stash.backup.export_data()))
        assert validate_backup(data).saved_tabs[0].domain == "https://a.com"

    def test_export_then_replace_into_empty_store(self, stash, tmp_path, clock):
        stash.groups.save_tabs([
            {"url": "https://a.com/1", "title": "Foo"},
            {"url": "https://b.com/1", "title": "Bar"},
        ])
        data = stash.backup.export_data()
        with TabStash(tmp_path / "other", clock=clock) as other:
            other.backup.import_data(data, mode="replace")
            assert sorted(g.domain for g in other.groups.list_groups()) == [
                "https://a.com", "https://b.com",
            ]
            assert other.urls.find_by_url("https://a.com/1").title == "Foo"


class TestValidation:
    """Malformed backups are rejected before anything is written."""

    @pytest.mark.parametrize("bad", [
        {},
        _backup([{"id": "g", "domain": "https://a.com", "urls": [{"title": "no url"}]}]),
        _backup([{"id": "g", "domain": "https://a.com", "urls": []}], clickBehavior="explode"),
        _backup([{"id": "g", "domain": "https://a.com", "urls": "nope"}]),
        _backup([], autoDeletePeriod="fortnight"),
        _backup([], parent_categories=[{"id": "c", "name": ""}]),
    ])
    def test_rejected(self, stash, store_path, bad):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        before = read_raw(store_path)
        with pytest.raises(ImportValidationError) as exc_info:
            stash.backup.import_data(bad)
        assert exc_info.value.errors
        assert read_raw(store_path) == before

    def test_not_json(self, stash):
        with pytest.raises(ImportValidationError):
            stash.backup.import_data("{not json")

    def test_json_text_accepted(self, stash):
        text = json.dumps(_backup([{"id": "g", "domain": "https://a.com", "urls": [{"url": "https://a.com/1"}]}]))
        assert stash.backup.import_data(text)["added_domains"] == 1

    def test_unknown_mode(self, stash):
        with pytest.raises(ValidationError):
            stash.backup.import_data(_backup([]), mode="append")

    def test_sub_category_objects_normalized(self):
        backup = validate_backup(_backup([{
            "id": "g", "domain": "https://a.com", "urls": [],
            "subCategories": ["Docs", {"name": "News"}, "Docs"],
        }]))
        assert backup.saved_tabs[0].sub_categories == ["Docs", "News"]

    def test_legacy_period_spelling_accepted(self):
        assert validate_backup(_backup([], autoDeletePeriod="7days")).user_settings.auto_delete_period == "7days"


class TestMerge:
    """Merge import unions by domain; local data wins."""

    def test_url_union_local_wins(self, stash):
        stash.groups.save_tabs([{"url": "https://a.com/1", "title": "Local"}])
        result = stash.backup.import_data(_backup([{
            "id": "remote-id", "domain": "https://a.com",
            "urls": [
                {"url": "https://a.com/1", "title": "Remote"},
                {"url": "https://a.com/2", "title": "Two", "savedAt": 77},
            ],
        }]))

        group = _group(stash, "https://a.com")
        urls = [r.url for r in stash.groups.urls_for_group(group.id)]
        assert urls == ["https://a.com/1", "https://a.com/2"]
        assert stash.urls.find_by_url("https://a.com/1").title == "Local"
        assert stash.urls.find_by_url("https://a.com/2").saved_at == 77
        assert result == {"added_categories": 0, "added_domains": 0, "merged_domains": 1, "urls": 1}
        assert_referential_integrity(stash)

    def test_oldest_saved_at_wins(self, stash, clock):
        clock.now = 100
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com", "savedAt": 50,
            "urls": [{"url": "https://a.com/1"}],
        }]))
        assert _group(stash, "https://a.com").saved_at == 50

    def test_legacy_url_timestamp_kept(self, stash):
        stash.groups.save_tabs([{"url": "https://old.com/1"}])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://old.com", "savedAt": 5000,
            "urls": [
                {"url": "https://old.com/a", "timestamp": 1000},
                {"url": "https://old.com/b", "timestamp": 1000, "savedAt": 2000},
            ],
        }]))
        assert stash.urls.find_by_url("https://old.com/a").saved_at == 1000
        assert stash.urls.find_by_url("https://old.com/b").saved_at == 2000

    def test_newer_import_keeps_local_saved_at(self, stash, clock):
        clock.now = 100
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com", "savedAt": 500,
            "urls": [{"url": "https://a.com/1"}],
        }]))
        assert _group(stash, "https://a.com").saved_at == 100

    def test_local_sub_category_label_wins(self, stash):
        group = stash.groups.save_tabs([{"url": "https://a.com/1"}])[0]
        stash.categories.add_sub_category(group.id, "Mine")
        stash.groups.set_url_sub_category(group.id, "https://a.com/1", "Mine")
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com", "subCategories": ["Theirs"],
            "urls": [
                {"url": "https://a.com/1", "subCategory": "Theirs"},
                {"url": "https://a.com/2", "subCategory": "Theirs"},
            ],
        }]))
        merged = _group(stash, "https://a.com")
        labels = {stash.urls.get(k).url: v for k, v in merged.url_sub_categories.items()}
        assert labels == {"https://a.com/1": "Mine", "https://a.com/2": "Theirs"}
        assert merged.sub_categories == ["Mine", "Theirs"]

    def test_keywords_unioned_by_name(self, stash):
        group = stash.groups.save_tabs([{"url": "https://a.com/1"}])[0]
        stash.categories.set_category_keywords(group.id, "Billing", ["invoice"])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com", "urls": [{"url": "https://a.com/1"}],
            "categoryKeywords": [
                {"categoryName": "Billing", "keywords": ["receipt", "invoice"]},
                {"categoryName": "News", "keywords": ["daily"]},
            ],
        }]))
        rules = {k.category_name: k.keywords for k in _group(stash, "https://a.com").category_keywords}
        assert rules == {"Billing": ["invoice", "receipt"], "News": ["daily"]}

    def test_colliding_group_id_gets_fresh_id(self, stash):
        local = stash.groups.save_tabs([{"url": "https://a.com/1"}])[0]
        stash.backup.import_data(_backup([{
            "id": local.id, "domain": "https://b.com", "urls": [{"url": "https://b.com/1"}],
        }]))
        imported = _group(stash, "https://b.com")
        assert imported.id != local.id
        assert _group(stash, "https://a.com").id == local.id

    def test_empty_imported_group_not_created(self, stash):
        result = stash.backup.import_data(_backup([{"id": "g", "domain": "https://a.com", "urls": []}]))
        assert result["added_domains"] == 0
        assert stash.groups.list_groups() == []

    def test_categories_and_mappings(self, stash):
        local = stash.groups.save_tabs([{"url": "https://a.com/1"}])[0]
        work = stash.categories.create_parent_category("Work")
        stash.categories.assign_domain_to_category(local.id, work.id)

        result = stash.backup.import_data(_backup(
            [{"id": "g2", "domain": "https://b.com", "urls": [{"url": "https://b.com/1"}]}],
            parent_categories=[
                {"id": "c-home", "name": "Home", "domainNames": ["https://a.com", "https://b.com"]},
                {"id": "c-other", "name": "work", "domains": []},
            ],
        ))

        names = sorted(c.name for c in stash.categories.list_categories())
        assert names == ["Home", "Work"]
        mappings = {m.domain: m.category_id for m in stash.categories.get_domain_category_mappings()}
        assert mappings["https://a.com"] == work.id
        assert mappings["https://b.com"] == "c-home"
        assert result["added_categories"] == 1
        assert result["added_domains"] == 1

    def test_settings_merged(self, stash):
        stash.settings.update_user_settings(excludePatterns=["chrome://", "mail.local"])
        stash.backup.import_data(_backup([], excludePatterns=["chrome://", "ads.example"], showSavedTime=True))
        settings = stash.settings.get_user_settings()
        assert settings["excludePatterns"] == ["chrome://", "mail.local", "ads.example"]
        assert settings["showSavedTime"] is True

    def test_merge_twice_is_stable(self, stash):
        backup = _backup([{
            "id": "g", "domain": "https://a.com", "savedAt": 10,
            "urls": [{"url": "https://a.com/1", "title": "One"}],
        }])
        stash.backup.import_data(backup)
        first = stash.groups.list_groups()
        second_result = stash.backup.import_data(backup)
        assert second_result["urls"] == 0
        assert stash.groups.list_groups() == first


class TestReplace:
    """Replace import overwrites groups, categories and settings."""

    def test_overwrites(self, stash):
        stash.groups.save_tabs([{"url": "https://old.com/1"}])
        stash.categories.create_parent_category("Old")
        stash.settings.update_user_settings(showSavedTime=True, excludePatterns=["x"])

        result = stash.backup.import_data(_backup(
            [{
                "id": "g", "domain": "https://a.com", "parentCategoryId": "c1",
                "urls": [{"url": "https://a.com/1", "title": "New"}],
            }],
            parent_categories=[{"id": "c1", "name": "Fresh"}],
        ), mode="replace")

        assert [g.domain for g in stash.groups.list_groups()] == ["https://a.com"]
        assert [c.name for c in stash.categories.list_categories()] == ["Fresh"]
        assert _group(stash, "https://a.com").parent_category_id == "c1"
        settings = stash.settings.get_user_settings()
        assert settings["showSavedTime"] is False
        assert settings["excludePatterns"] == ["chrome://"]
        # Records only the old groups referenced are gone
        assert stash.urls.find_by_url("https://old.com/1") is None
        assert result["added_domains"] == 1
        assert_referential_integrity(stash)

    def test_imported_title_overwrites(self, stash):
        stash.groups.save_tabs([{"url": "https://a.com/1", "title": "Local"}])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com", "urls": [{"url": "https://a.com/1", "title": "Remote"}],
        }]), mode="replace")
        assert stash.urls.find_by_url("https://a.com/1").title == "Remote"

    def test_legacy_url_timestamp_kept(self, stash):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        stash.backup.import_data(_backup([{
            "id": "g", "domain": "https://a.com",
            "urls": [{"url": "https://a.com/1", "timestamp": 1000}],
        }]), mode="replace")
        assert stash.urls.find_by_url("https://a.com/1").saved_at == 1000

    def test_project_records_survive(self, stash):
        project = stash.projects.create_project("Research")
        stash.projects.add_url_to_project(project.id, "https://p.com/1")
        stash.backup.import_data(_backup([]), mode="replace")
        assert stash.groups.list_groups() == []
        assert [u.url for u in stash.projects.project_urls(project.id)] == ["https://p.com/1"]

    def test_duplicate_category_names_rejected(self, stash, store_path):
        before = read_raw(store_path)
        with pytest.raises(ImportValidationError):
            stash.backup.import_data(_backup([], parent_categories=[
                {"id": "a", "name": "Work"}, {"id": "b", "name": "WORK"},
            ]), mode="replace")
        assert read_raw(store_path) == before
