"""
Tests for auto-delete periods and the expiration sweep.
"""

import time

import pytest

from conftest import assert_referential_integrity, seed_store
from tabstash.api import TabStash
from tabstash.errors import ValidationError
from tabstash.expiration import (
    DAY_MS,
    AutoDeletePeriod,
    expiration_ms,
    is_period_shortening,
    parse_period,
)


class TestPeriods:

    @pytest.mark.parametrize("value,expected", [
        ("never", AutoDeletePeriod.NEVER),
        ("30s", AutoDeletePeriod.SECONDS_30),
        ("7d", AutoDeletePeriod.DAYS_7),
        ("7days", AutoDeletePeriod.DAYS_7),
        ("1hour", AutoDeletePeriod.HOUR_1),
        ("30sec", AutoDeletePeriod.SECONDS_30),
        ("", AutoDeletePeriod.NEVER),
        (None, AutoDeletePeriod.NEVER),
        (AutoDeletePeriod.DAY_1, AutoDeletePeriod.DAY_1),
    ])
    def test_parse(self, value, expected):
        assert parse_period(value) is expected

    def test_unknown(self):
        with pytest.raises(ValidationError):
            parse_period("fortnight")

    def test_lengths(self):
        assert expiration_ms("never") is None
        assert expiration_ms("30s") == 30_000
        assert expiration_ms("14days") == 14 * DAY_MS

    @pytest.mark.parametrize("current,new,shortening", [
        ("never", "7d", True),
        ("7d", "never", False),
        ("30d", "7d", True),
        ("7d", "30d", False),
        ("7d", "7days", False),
    ])
    def test_shortening(self, current, new, shortening):
        assert is_period_shortening(current, new) is shortening


class TestSweep:

    def test_expires_old_urls_only(self, stash, clock):
        stash.groups.save_tabs([{"url": "https://a.com/old"}, {"url": "https://b.com/old"}])
        clock.advance(2 * DAY_MS)
        stash.groups.save_tabs([{"url": "https://a.com/new"}])
        stash.settings.update_user_settings(autoDeletePeriod="1d")

        result = stash.expiration.sweep()

        assert result.urls_removed == 2
        assert result.groups_removed == 1
        assert result.period is AutoDeletePeriod.DAY_1
        groups = stash.groups.list_groups()
        assert [g.domain for g in groups] == ["https://a.com"]
        assert [r.url for r in stash.groups.urls_for_group(groups[0].id)] == ["https://a.com/new"]
        assert_referential_integrity(stash)

    def test_removed_group_remembers_sub_categories(self, stash, clock):
        group = stash.groups.save_tabs([{"url": "https://a.com/1"}])[0]
        stash.categories.add_sub_category(group.id, "Docs", ["manual"])
        clock.advance(2 * DAY_MS)
        stash.expiration.sweep("1d")
        assert stash.groups.list_groups() == []
        settings = stash.categories.get_domain_category_settings()
        assert [(s.domain, s.sub_categories) for s in settings] == [("https://a.com", ["Docs"])]

    def test_never_keeps_everything(self, stash, clock):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        clock.advance(1000 * DAY_MS)
        result = stash.expiration.sweep()
        assert result.urls_removed == 0
        assert result.period is AutoDeletePeriod.NEVER
        assert len(stash.groups.list_groups()) == 1

    def test_unknown_stored_period_is_never(self, stash, clock):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        stash.settings.update_user_settings(autoDeletePeriod="fortnight")
        clock.advance(1000 * DAY_MS)
        assert stash.expiration.sweep().urls_removed == 0

    def test_projects_untouched(self, stash, clock):
        project = stash.projects.create_project("Research")
        stash.projects.add_url_to_project(project.id, "https://a.com/1")
        clock.advance(2 * DAY_MS)
        stash.expiration.sweep("1d")
        assert stash.groups.list_groups() == []
        assert [u.url for u in stash.projects.project_urls(project.id)] == ["https://a.com/1"]

    def test_falls_back_to_group_saved_at(self, store_path, clock):
        seed_store(store_path, {
            "urls": [
                {"id": "u1", "url": "https://a.com/1", "title": "x", "savedAt": 0},
                {"id": "u2", "url": "https://a.com/2", "title": "y", "savedAt": clock.now},
            ],
            "savedTabs": [{
                "id": "g1", "domain": "https://a.com", "urlIds": ["u1", "u2"],
                "savedAt": clock.now - 2 * DAY_MS,
            }],
            "urlsMigrationCompleted": True,
            "categoryMappingsMigrated": True,
        })
        with TabStash(store_path, clock=clock) as ts:
            assert ts.expiration.sweep("1d").urls_removed == 1
            assert ts.groups.get_group("g1").url_ids == ["u2"]

    def test_bad_override(self, stash):
        with pytest.raises(ValidationError):
            stash.expiration.sweep("fortnight")


class TestScheduler:

    def test_start_and_stop(self, stash, clock):
        stash.groups.save_tabs([{"url": "https://a.com/1"}])
        stash.settings.update_user_settings(autoDeletePeriod="30s")
        clock.advance(60_000)

        scheduler = stash.expiration
        scheduler._interval = 0.01
        scheduler.start()
        scheduler.start()
        assert scheduler.running

        deadline = time.monotonic() + 5
        while stash.groups.list_groups() and time.monotonic() < deadline:
            time.sleep(0.01)
        scheduler.stop()

        assert stash.groups.list_groups() == []
        assert not scheduler.running

    def test_stop_without_start(self, stash):
        stash.expiration.stop()
        assert not stash.expiration.running

    def test_close_stops_scheduler(self, store_path, clock):
        ts = TabStash(store_path, clock=clock)
        ts.expiration.start()
        ts.close()
        assert not ts.expiration.running
