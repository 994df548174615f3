"""Tests for user projects."""

import pytest

from conftest import assert_referential_integrity, read_raw
from tabstash.errors import DuplicateNameError, NotFoundError, ValidationError


class TestLifecycle:
    """Create, rename, delete and order projects."""

    def test_create(self, stash, clock):
        project = stash.projects.create_project("Research", "papers")
        assert project.name == "Research"
        assert project.description == "papers"
        assert project.created_at == project.updated_at == clock.now
        assert stash.projects.get_project(project.id).name == "Research"

    def test_duplicate_name_ignores_case(self, stash):
        stash.projects.create_project("Research")
        with pytest.raises(DuplicateNameError) as exc_info:
            stash.projects.create_project(" research ")
        assert exc_info.value.kind == "project"

    def test_empty_name(self, stash):
        with pytest.raises(ValidationError):
            stash.projects.create_project("  ")

    def test_rename(self, stash, clock):
        project = stash.projects.create_project("Research")
        clock.advance(10)
        renamed = stash.projects.rename_project(project.id, "Reading")
        assert renamed.name == "Reading"
        assert renamed.updated_at == clock.now

    def test_rename_to_taken_name(self, stash):
        stash.projects.create_project("Research")
        other = stash.projects.create_project("Reading")
        with pytest.raises(DuplicateNameError):
            stash.projects.rename_project(other.id, "RESEARCH")

    def test_rename_missing(self, stash):
        assert stash.projects.rename_project("missing", "X") is None

    def test_delete_keeps_records(self, stash, store_path):
        project = stash.projects.create_project("Research")
        stash.projects.add_url_to_project(project.id, "https://a.com/1", "Foo")
        stash.projects.set_project_order([project.id])

        assert stash.projects.delete_project(project.id) is True

        assert stash.projects.list_projects() == []
        assert stash.urls.find_by_url("https://a.com/1") is not None
        assert read_raw(store_path, "customProjectOrder")["customProjectOrder"] == []
        assert stash.projects.delete_project(project.id) is False

    def test_get_missing(self, stash):
        with pytest.raises(NotFoundError):
            stash.projects.get_project("missing")

    def test_order(self, stash):
        a = stash.projects.create_project("A")
        stash.projects.create_project("B")
        c = stash.projects.create_project("C")
        stash.projects.set_project_order([c.id, "unknown", a.id])
        assert [p.name for p in stash.projects.list_projects()] == ["C", "A", "B"]

    def test_default_project_created_once(self, stash):
        first = stash.projects.ensure_default_project()
        again = stash.projects.ensure_default_project()
        assert first.name == "Default Project"
        assert again.id == first.id
        assert len(stash.projects.list_projects()) == 1

    def test_default_project_is_first_existing(self, stash):
        existing = stash.projects.create_project("Mine")
        assert stash.projects.ensure_default_project().id == existing.id


class TestProjectUrls:
    """URLs inside a project share records with the domain groups."""

    @pytest.fixture
    def project(self, stash):
        return stash.projects.create_project("Research")

    def test_add_files_into_domain_group(self, stash, project):
        record = stash.projects.add_url_to_project(project.id, "https://a.com/1", "Foo")
        group = stash.groups.find_by_domain("https://a.com")
        assert group.url_ids == [record.id]
        assert stash.projects.get_project(project.id).url_ids == [record.id]
        assert_referential_integrity(stash)

    def test_shares_existing_record(self, stash, project):
        stash.groups.save_tabs([{"url": "https://a.com/1", "title": "Foo"}])
        stash.projects.add_url_to_project(project.id, "https://a.com/1")
        assert len(stash.urls.list_all()) == 1

    def test_notes_and_category(self, stash, project):
        stash.projects.add_url_to_project(
            project.id, "https://a.com/1", "Foo", notes="read later", category="Papers",
        )
        urls = stash.projects.project_urls(project.id)
        assert [(u.url, u.title, u.notes, u.category) for u in urls] == [
            ("https://a.com/1", "Foo", "read later", "Papers"),
        ]
        assert stash.projects.get_project(project.id).categories == ["Papers"]

    def test_add_to_missing_project(self, stash):
        assert stash.projects.add_url_to_project("missing", "https://a.com/1") is None
        assert stash.urls.list_all() == []

    def test_remove_also_leaves_domain_groups(self, stash, project):
        stash.projects.add_url_to_project(project.id, "https://a.com/1")
        assert stash.projects.remove_url_from_project(project.id, "https://a.com/1") is True
        assert stash.projects.get_project(project.id).url_ids == []
        assert stash.groups.list_groups() == []
        assert stash.projects.remove_url_from_project(project.id, "https://a.com/1") is False

    def test_empty_project_survives(self, stash, project):
        stash.projects.add_url_to_project(project.id, "https://a.com/1")
        stash.projects.remove_url_from_project(project.id, "https://a.com/1")
        assert [p.id for p in stash.projects.list_projects()] == [project.id]

    def test_reorder(self, stash, project):
        for i in range(1, 4):
            stash.projects.add_url_to_project(project.id, f"https://a.com/{i}")
        stash.projects.reorder_project_urls(project.id, ["https://a.com/3", "https://a.com/1"])
        urls = [u.url for u in stash.projects.project_urls(project.id)]
        assert urls == ["https://a.com/3", "https://a.com/1", "https://a.com/2"]

    def test_reorder_rejects_foreign_url(self, stash, project):
        stash.projects.add_url_to_project(project.id, "https://a.com/1")
        with pytest.raises(ValidationError):
            stash.projects.reorder_project_urls(project.id, ["https://b.com/1"])

    def test_sync_creates_default_project(self, stash):
        project = stash.projects.sync_to_default_project([
            {"url": "https://a.com/1", "title": "Foo"},
            {"url": "https://b.com/1"},
        ])
        assert project.name == "Default Project"
        assert len(stash.projects.get_project(project.id).url_ids) == 2
        assert len(stash.groups.list_groups()) == 2

    def test_project_urls_missing(self, stash):
        with pytest.raises(NotFoundError):
            stash.projects.project_urls("missing")


class TestProjectCategories:
    """Project-local categories."""

    @pytest.fixture
    def project(self, stash):
        project = stash.projects.create_project("Research")
        stash.projects.add_project_category(project.id, "Papers")
        stash.projects.add_project_category(project.id, "Talks")
        stash.projects.add_url_to_project(project.id, "https://a.com/1", category="Papers")
        return project

    def test_set_category_and_notes(self, stash, project):
        assert stash.projects.set_project_url_category(project.id, "https://a.com/1", "Talks")
        assert stash.projects.set_project_url_notes(project.id, "https://a.com/1", "good")
        url = stash.projects.project_urls(project.id)[0]
        assert (url.category, url.notes) == ("Talks", "good")

    def test_unknown_category_rejected(self, stash, project):
        with pytest.raises(ValidationError):
            stash.projects.set_project_url_category(project.id, "https://a.com/1", "Nope")

    def test_rename_category(self, stash, project):
        assert stash.projects.rename_project_category(project.id, "Papers", "Articles")
        updated = stash.projects.get_project(project.id)
        assert updated.categories == ["Articles", "Talks"]
        assert updated.category_order == ["Articles", "Talks"]
        assert stash.projects.project_urls(project.id)[0].category == "Articles"

    def test_rename_category_to_existing(self, stash, project):
        with pytest.raises(DuplicateNameError):
            stash.projects.rename_project_category(project.id, "Papers", "Talks")

    def test_remove_category_uncategorizes_urls(self, stash, project):
        assert stash.projects.remove_project_category(project.id, "Papers")
        assert stash.projects.get_project(project.id).categories == ["Talks"]
        assert stash.projects.project_urls(project.id)[0].category is None

    def test_category_order(self, stash, project):
        stash.projects.set_project_category_order(project.id, ["Talks", "Papers"])
        assert stash.projects.get_project(project.id).category_order == ["Talks", "Papers"]
        with pytest.raises(ValidationError):
            stash.projects.set_project_category_order(project.id, ["Nope"])
