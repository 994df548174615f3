"""
Domain groups: saved URLs collected per ``scheme://hostname``.

A group never exists without URLs. Removing its last URL (or removing
the group outright) first copies its sub-categories and keyword rules
into the per-domain settings, so saving the same domain again later
brings the configuration back.

The group's parent category is not stored on the group. It is looked
up from the domain mappings whenever groups are handed out.
"""

import logging
from typing import Iterable, Optional, Union

from .autocategorize import categorize_group
from .errors import NotFoundError, ValidationError
from .mutator import Mutator, StateView
from .settings import user_settings
from .types import (
    UNCATEGORIZED,
    DomainCategorySettings,
    DomainGroup,
    SubCategoryKeyword,
    TabInfo,
    UrlRecord,
    extract_domain,
)
from .urls import find_record, new_id, records_by_id, upsert_record

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# View-level helpers (shared with the category, project and sweep code)
# ---------------------------------------------------------------------------

def find_group(view: StateView, group_id: str) -> Optional[DomainGroup]:
    for group in view.groups():
        if group.id == group_id:
            return group
    return None


def find_group_by_domain(view: StateView, domain: str) -> Optional[DomainGroup]:
    for group in view.groups():
        if group.domain == domain:
            return group
    return None


def attach_parent_ids(view: StateView, groups: list[DomainGroup]) -> list[DomainGroup]:
    """Fill in ``parent_category_id`` from the domain mappings."""
    known = {c.id for c in view.categories()}
    by_domain = {
        m.domain: m.category_id for m in view.mappings() if m.category_id in known
    }
    for group in groups:
        group.parent_category_id = by_domain.get(group.domain)
    return groups


def find_domain_settings(view: StateView, domain: str) -> Optional[DomainCategorySettings]:
    for settings in view.domain_settings():
        if settings.domain == domain:
            return settings
    return None


def store_domain_settings(
    view: StateView,
    domain: str,
    sub_categories: list[str],
    category_keywords: list[SubCategoryKeyword],
) -> None:
    """Create or overwrite the durable settings for ``domain``."""
    subs = list(sub_categories)
    keywords = [SubCategoryKeyword(k.category_name, list(k.keywords)) for k in category_keywords]
    existing = find_domain_settings(view, domain)
    if existing is None:
        view.domain_settings().append(DomainCategorySettings(domain, subs, keywords))
        view.mark_domain_settings()
        return
    if existing.sub_categories != subs or existing.category_keywords != keywords:
        existing.sub_categories = subs
        existing.category_keywords = keywords
        view.mark_domain_settings()


def restore_category_settings(view: StateView, group: DomainGroup) -> None:
    """Copy remembered sub-categories and keyword rules onto a new group."""
    settings = find_domain_settings(view, group.domain)
    if settings is None:
        return
    group.sub_categories = list(settings.sub_categories)
    group.category_keywords = [
        SubCategoryKeyword(k.category_name, list(k.keywords)) for k in settings.category_keywords
    ]
    logger.debug("Restored category settings for %s", group.domain)


def drop_groups(view: StateView, group_ids: Iterable[str]) -> list[DomainGroup]:
    """
    Delete groups, remembering each one's category configuration first.

    The domain -> parent category mapping is left in place, so the
    assignment also survives.
    """
    doomed = set(group_ids)
    groups = view.groups()
    removed = [g for g in groups if g.id in doomed]
    if not removed:
        return []
    for group in removed:
        store_domain_settings(view, group.domain, group.sub_categories, group.category_keywords)
    view.set_groups([g for g in groups if g.id not in doomed])
    for group in removed:
        logger.info("Removed domain group %s (%s)", group.id, group.domain)
    return removed


def detach_url_ids(view: StateView, group: DomainGroup, url_ids: Iterable[str]) -> bool:
    """
    Remove URL ids from a group, cascading to group removal when it empties.

    Returns:
        True if anything was removed
    """
    doomed = set(url_ids) & set(group.url_ids)
    if not doomed:
        return False
    group.url_ids = [i for i in group.url_ids if i not in doomed]
    for url_id in doomed:
        group.url_sub_categories.pop(url_id, None)
    view.mark_groups()
    if not group.url_ids:
        drop_groups(view, [group.id])
    return True


def ensure_group_for_domain(view: StateView, domain: str) -> DomainGroup:
    """Existing group for ``domain`` or a new one with its remembered settings."""
    group = find_group_by_domain(view, domain)
    if group is not None:
        return group
    group = DomainGroup(id=new_id(), domain=domain, saved_at=view.now)
    restore_category_settings(view, group)
    view.groups().append(group)
    view.mark_groups()
    logger.info("Created domain group %s for %s", group.id, domain)
    return group


def file_record(view: StateView, record: UrlRecord) -> Optional[DomainGroup]:
    """Add a record to the group of its domain (creating the group if needed)."""
    domain = extract_domain(record.url)
    if domain is None:
        logger.warning("Cannot group URL without a scheme: %s", record.url)
        return None
    group = ensure_group_for_domain(view, domain)
    if record.id not in group.url_ids:
        group.url_ids.append(record.id)
        view.mark_groups()
    return group


def remove_url_from_groups(view: StateView, url: str) -> int:
    """Remove ``url`` from every group. Returns the number of groups touched."""
    record = find_record(view, url)
    if record is None:
        return 0
    touched = 0
    for group in list(view.groups()):
        if detach_url_ids(view, group, [record.id]):
            touched += 1
    return touched


def _is_excluded(tab: TabInfo, patterns: list[str], exclude_pinned: bool) -> bool:
    if exclude_pinned and tab.pinned:
        return True
    return any(pattern and pattern in tab.url for pattern in patterns)


class DomainGroupStore:
    """Domain groups (the ``savedTabs`` key)."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    # ---- Queries ----

    def list_groups(self) -> list[DomainGroup]:
        return self._mutator.read(lambda view: attach_parent_ids(view, list(view.groups())))

    def get_group(self, group_id: str) -> Optional[DomainGroup]:
        def run(view: StateView) -> Optional[DomainGroup]:
            group = find_group(view, group_id)
            return attach_parent_ids(view, [group])[0] if group else None
        return self._mutator.read(run)

    def find_by_domain(self, domain: str) -> Optional[DomainGroup]:
        def run(view: StateView) -> Optional[DomainGroup]:
            group = find_group_by_domain(view, domain)
            return attach_parent_ids(view, [group])[0] if group else None
        return self._mutator.read(run)

    def urls_for_group(self, group_id: str) -> list[UrlRecord]:
        """
        URL records of a group in display order.

        Raises:
            NotFoundError: No such group
        """
        def run(view: StateView) -> list[UrlRecord]:
            group = find_group(view, group_id)
            if group is None:
                raise NotFoundError("domain group", group_id)
            by_id = records_by_id(view)
            return [by_id[i] for i in group.url_ids if i in by_id]
        return self._mutator.read(run)

    # ---- Write Operations ----

    def save_tabs(self, tabs: Iterable[Union[TabInfo, dict]]) -> list[DomainGroup]:
        """
        Save browser tabs into their domain groups.

        Tabs without a URL, matching an exclude pattern, pinned (when the
        settings say so) or without a parsable scheme are skipped.

        Returns:
            The groups that received URLs
        """
        tabs = [t if isinstance(t, TabInfo) else TabInfo.from_dict(t) for t in tabs]

        def run(view: StateView) -> list[DomainGroup]:
            settings = user_settings(view)
            patterns = [p for p in settings.get("excludePatterns") or [] if isinstance(p, str)]
            exclude_pinned = bool(settings.get("excludePinnedTabs", True))

            touched: dict[str, DomainGroup] = {}
            for tab in tabs:
                if not tab.url or _is_excluded(tab, patterns, exclude_pinned):
                    continue
                domain = extract_domain(tab.url)
                if domain is None:
                    logger.warning("Skipping unparsable URL: %s", tab.url)
                    continue
                group = ensure_group_for_domain(view, domain)
                record = upsert_record(view, tab.url, tab.title, tab.fav_icon_url)
                if record.id not in group.url_ids:
                    group.url_ids.append(record.id)
                    view.mark_groups()
                touched[group.id] = group

            if touched:
                by_id = records_by_id(view)
                for group in touched.values():
                    if categorize_group(group, by_id):
                        view.mark_groups()
            return attach_parent_ids(view, list(touched.values()))

        groups = self._mutator.mutate(run, name="save_tabs")
        logger.info("Saved %d tab(s) into %d group(s)", len(tabs), len(groups))
        return groups

    def add_url(
        self,
        group_id: str,
        url: str,
        title: str = "",
        fav_icon_url: Optional[str] = None,
    ) -> Optional[UrlRecord]:
        """
        Reference ``url`` from a group, creating its record if needed.

        Adding a URL the group already holds changes nothing but the
        record's title and timestamp.

        Returns:
            The URL record, or None if the group does not exist
        """
        def run(view: StateView) -> Optional[UrlRecord]:
            group = find_group(view, group_id)
            if group is None:
                return None
            record = upsert_record(view, url, title, fav_icon_url)
            if record.id not in group.url_ids:
                group.url_ids.append(record.id)
                view.mark_groups()
            return record

        record = self._mutator.mutate(run, name="add_url")
        if record is None:
            logger.warning("add_url: domain group %s not found", group_id)
        return record

    def remove_url(self, group_id: str, url: str) -> bool:
        """
        Drop ``url`` from a group. A group left empty is removed.

        Returns:
            True if the URL was in the group
        """
        def run(view: StateView) -> Optional[bool]:
            group = find_group(view, group_id)
            if group is None:
                return None
            record = find_record(view, url)
            if record is None:
                return False
            return detach_url_ids(view, group, [record.id])

        removed = self._mutator.mutate(run, name="remove_url")
        if removed is None:
            logger.warning("remove_url: domain group %s not found", group_id)
            return False
        if removed:
            logger.info("Removed %s from group %s", url, group_id)
        return removed

    def remove_url_everywhere(self, url: str) -> int:
        """Drop ``url`` from every domain group. Returns the number of groups touched."""
        touched = self._mutator.mutate(
            lambda view: remove_url_from_groups(view, url), name="remove_url_everywhere",
        )
        if touched:
            logger.info("Removed %s from %d group(s)", url, touched)
        return touched

    def remove_group(self, group_id: str) -> bool:
        """Delete a group, remembering its category configuration."""
        removed = self._mutator.mutate(
            lambda view: bool(drop_groups(view, [group_id])), name="remove_group",
        )
        if not removed:
            logger.warning("remove_group: domain group %s not found", group_id)
        return removed

    def set_url_sub_category(self, group_id: str, url: str, name: Optional[str]) -> bool:
        """
        Label a URL with one of the group's sub-categories (None clears it).

        Raises:
            ValidationError: ``name`` is not a sub-category of the group
        """
        def run(view: StateView) -> bool:
            group = find_group(view, group_id)
            if group is None:
                logger.warning("set_url_sub_category: domain group %s not found", group_id)
                return False
            record = find_record(view, url)
            if record is None or record.id not in group.url_ids:
                logger.warning("set_url_sub_category: %s is not in group %s", url, group_id)
                return False
            if name is None or name == UNCATEGORIZED:
                if group.url_sub_categories.pop(record.id, None) is not None:
                    view.mark_groups()
                return True
            if name not in group.sub_categories:
                raise ValidationError(f"Unknown sub-category {name!r} for {group.domain}")
            if group.url_sub_categories.get(record.id) != name:
                group.url_sub_categories[record.id] = name
                view.mark_groups()
            return True

        return self._mutator.mutate(run, name="set_url_sub_category")

    def set_sub_category_order(
        self,
        group_id: str,
        order: list[str],
        include_uncategorized: bool = False,
    ) -> bool:
        """
        Set the display order of a group's sub-categories.

        With ``include_uncategorized`` the order may place the
        uncategorized bucket among the named ones.
        """
        def run(view: StateView) -> bool:
            group = find_group(view, group_id)
            if group is None:
                logger.warning("set_sub_category_order: domain group %s not found", group_id)
                return False
            allowed = set(group.sub_categories)
            if include_uncategorized:
                allowed.add(UNCATEGORIZED)
            unknown = [n for n in order if n not in allowed]
            if unknown:
                raise ValidationError(f"Unknown sub-categories: {', '.join(unknown)}")
            order_list = list(dict.fromkeys(order))
            if include_uncategorized:
                group.sub_category_order_with_uncategorized = order_list
                group.sub_category_order = [n for n in order_list if n != UNCATEGORIZED]
            else:
                group.sub_category_order = order_list
            view.mark_groups()
            return True

        return self._mutator.mutate(run, name="set_sub_category_order")
