"""Tests for the canonical URL record store."""

from conftest import read_raw


class TestUpsert:
    """upsert() is keyed on the URL string."""

    def test_same_url_never_duplicates(self, stash, clock):
        first = stash.urls.upsert("https://a.com/1", "Foo")
        for _ in range(3):
            clock.advance(1000)
            again = stash.urls.upsert("https://a.com/1", "Foo")
            assert again.id == first.id
        records = stash.urls.list_all()
        assert [r.url for r in records] == ["https://a.com/1"]

    def test_refreshes_title_and_saved_at(self, stash, clock):
        first = stash.urls.upsert("https://a.com/1", "Old")
        clock.advance(5000)
        updated = stash.urls.upsert("https://a.com/1", "New", "https://a.com/icon.png")
        assert updated.title == "New"
        assert updated.fav_icon_url == "https://a.com/icon.png"
        assert updated.saved_at == first.saved_at + 5000

    def test_empty_title_keeps_existing(self, stash):
        stash.urls.upsert("https://a.com/1", "Keep me")
        assert stash.urls.upsert("https://a.com/1").title == "Keep me"

    def test_new_record_without_title_uses_url(self, stash):
        assert stash.urls.upsert("https://a.com/1").title == "https://a.com/1"

    def test_stored_shape(self, stash, store_path, clock):
        record = stash.urls.upsert("https://a.com/1", "Foo")
        stored = read_raw(store_path, "urls")["urls"]
        assert stored == [{
            "id": record.id, "url": "https://a.com/1", "title": "Foo", "savedAt": clock.now,
        }]


class TestLookup:
    """find_by_url and get_by_ids."""

    def test_find_by_url(self, stash):
        record = stash.urls.upsert("https://a.com/1", "Foo")
        assert stash.urls.find_by_url("https://a.com/1") == record
        assert stash.urls.find_by_url("https://a.com/2") is None

    def test_get_by_ids_keeps_order_and_skips_unknown(self, stash):
        a = stash.urls.upsert("https://a.com/1")
        b = stash.urls.upsert("https://a.com/2")
        result = stash.urls.get_by_ids([b.id, "nope", a.id])
        assert [r.id for r in result] == [b.id, a.id]


class TestDelete:
    """Records can only be deleted once nothing refers to them."""

    def test_referenced_record_is_kept(self, stash):
        stash.groups.save_tabs([{"url": "https://a.com/1", "title": "Foo"}])
        record = stash.urls.find_by_url("https://a.com/1")
        assert stash.urls.is_referenced(record.id)
        assert stash.urls.delete(record.id) is False
        assert stash.urls.find_by_url("https://a.com/1") is not None

    def test_unreferenced_record_is_deleted(self, stash):
        record = stash.urls.upsert("https://a.com/1")
        assert not stash.urls.is_referenced(record.id)
        assert stash.urls.delete(record.id) is True
        assert stash.urls.list_all() == []

    def test_unknown_id(self, stash):
        assert stash.urls.delete("missing") is False
