"""
One-way schema upgrades, run on every open.

Two migrations, each guarded by its own persisted flag so that a
completed run is never repeated:

1. ``urlsMigrationCompleted``: groups and projects that still carry
   inline ``urls`` entries are converted to ``urlIds`` referencing
   canonical records. Per-URL ``savedAt``, group sub-categories and
   project notes/categories are preserved.
2. ``categoryMappingsMigrated``: the legacy ``domains``/``domainNames``
   arrays of parent categories (and ``parentCategoryId`` on groups) are
   folded into the single domain -> category mapping list.

Each migration commits atomically together with its flag; a crash in
the middle leaves the store as it was and the next open tries again.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from .groups import drop_groups, find_group
from .mutator import Mutator, StateView
from .types import (
    CATEGORY_MAPPINGS_FLAG,
    URLS_MIGRATION_FLAG,
    DomainParentCategoryMapping,
    ProjectUrlMeta,
    UrlRecord,
)
from .urls import new_id

logger = logging.getLogger(__name__)


@dataclass
class MigrationReport:
    """What a migration run did."""
    urls_migrated: bool = False
    mappings_migrated: bool = False
    records_created: int = 0
    groups_migrated: int = 0
    projects_migrated: int = 0
    empty_groups_removed: int = 0
    mappings_created: int = 0

    @property
    def changed(self) -> bool:
        return self.urls_migrated or self.mappings_migrated


class InlineUrlAbsorber:
    """
    Turns legacy inline URL entries into record ids.

    Existing records are reused by URL; a longer inline title replaces
    the stored one. New records take the entry's ``savedAt`` (or the legacy
    ``timestamp``), else the fallback, else now.
    """

    def __init__(self, view: StateView):
        self._view = view
        self._by_url: dict[str, UrlRecord] = {r.url: r for r in view.records()}
        self.created = 0

    def absorb(self, entry: dict, fallback_saved_at: Optional[int]) -> Optional[UrlRecord]:
        url = entry.get("url")
        if not isinstance(url, str) or not url:
            logger.warning("Dropping inline URL entry without a URL: %r", entry)
            return None
        title = entry.get("title") or ""
        record = self._by_url.get(url)
        if record is None:
            saved_at = entry.get("savedAt") or entry.get("timestamp") or fallback_saved_at or self._view.now
            record = UrlRecord(
                id=new_id(), url=url, title=title or url, saved_at=int(saved_at),
                fav_icon_url=entry.get("favIconUrl") or None,
            )
            self._view.records().append(record)
            self._by_url[url] = record
            self.created += 1
        elif title and len(title) > len(record.title):
            record.title = title
        self._view.mark_records()
        return record


def migrate_inline_urls(view: StateView, report: MigrationReport) -> None:
    absorber = InlineUrlAbsorber(view)

    for group in view.groups():
        if not group.legacy_urls:
            continue
        for entry in group.legacy_urls:
            if not isinstance(entry, dict):
                continue
            record = absorber.absorb(entry, group.saved_at)
            if record is None:
                continue
            if record.id not in group.url_ids:
                group.url_ids.append(record.id)
            sub = entry.get("subCategory")
            if isinstance(sub, str) and sub:
                group.url_sub_categories[record.id] = sub
                if sub not in group.sub_categories:
                    group.sub_categories.append(sub)
        group.legacy_urls = None
        report.groups_migrated += 1
        view.mark_groups()

    for project in view.projects():
        if not project.legacy_urls:
            continue
        for entry in project.legacy_urls:
            if not isinstance(entry, dict):
                continue
            record = absorber.absorb(entry, project.created_at)
            if record is None:
                continue
            if record.id not in project.url_ids:
                project.url_ids.append(record.id)
            notes = entry.get("notes") or None
            category = entry.get("category") or None
            if notes or category:
                project.url_metadata[record.id] = ProjectUrlMeta(notes=notes, category=category)
                if category and category not in project.categories:
                    project.categories.append(category)
        project.legacy_urls = None
        report.projects_migrated += 1
        view.mark_projects()

    empty = [g.id for g in view.groups() if not g.url_ids]
    if empty:
        report.empty_groups_removed = len(drop_groups(view, empty))

    report.records_created = absorber.created


def migrate_category_mappings(view: StateView, report: MigrationReport) -> None:
    mappings = view.mappings()
    mapped = {m.domain for m in mappings}
    known = {c.id for c in view.categories()}

    def add(domain: str, category_id: str) -> None:
        if domain and domain not in mapped and category_id in known:
            mappings.append(DomainParentCategoryMapping(domain=domain, category_id=category_id))
            mapped.add(domain)
            report.mappings_created += 1

    # Explicit mappings first, then category arrays, then per-group ids
    for category in view.categories():
        for domain in category.domain_names:
            add(domain, category.id)
        for group_id in category.domains:
            group = find_group(view, group_id)
            if group is not None:
                add(group.domain, category.id)
    for group in view.groups():
        if group.parent_category_id:
            add(group.domain, group.parent_category_id)
            view.mark_groups()

    view.mark_mappings()
    # Rewritten without member arrays
    view.mark_categories()


class MigrationEngine:
    """Runs the pending schema migrations."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    def is_complete(self) -> bool:
        def run(view: StateView) -> bool:
            return bool(view.get(URLS_MIGRATION_FLAG)) and bool(view.get(CATEGORY_MAPPINGS_FLAG))
        return self._mutator.read(run)

    def run(self) -> MigrationReport:
        """
        Apply whatever migrations have not run yet.

        Safe to call on every start; once both flags are set this reads
        two keys and writes nothing.
        """
        report = MigrationReport()

        def urls(view: StateView) -> Any:
            if view.get(URLS_MIGRATION_FLAG):
                return None
            step = MigrationReport(urls_migrated=True)
            migrate_inline_urls(view, step)
            view.put(URLS_MIGRATION_FLAG, True)
            return step

        def mappings(view: StateView) -> Any:
            if view.get(CATEGORY_MAPPINGS_FLAG):
                return None
            step = MigrationReport(mappings_migrated=True)
            migrate_category_mappings(view, step)
            view.put(CATEGORY_MAPPINGS_FLAG, True)
            return step

        # Mappings first: groups rewritten by the URL migration lose parentCategoryId
        step = self._mutator.mutate(mappings, name="migrate_category_mappings")
        if step is not None:
            report.mappings_migrated = True
            report.mappings_created = step.mappings_created
            logger.info("Category mapping migration: %d mapping(s) created", step.mappings_created)
        else:
            logger.debug("Category mapping migration already complete")

        step = self._mutator.mutate(urls, name="migrate_urls")
        if step is not None:
            report.urls_migrated = True
            report.records_created = step.records_created
            report.groups_migrated = step.groups_migrated
            report.projects_migrated = step.projects_migrated
            report.empty_groups_removed = step.empty_groups_removed
            logger.info(
                "URL storage migration: %d record(s) created, %d group(s), %d project(s) converted",
                step.records_created, step.groups_migrated, step.projects_migrated,
            )
        else:
            logger.debug("URL storage migration already complete")

        return report
