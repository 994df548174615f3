"""
Parent categories and per-domain sub-categories.

Domain membership of parent categories has exactly one source of
truth: the ``domainCategoryMappings`` list (domain -> category id).
Stored categories carry only ``id`` and ``name``; the ``domains``
(group ids) and ``domainNames`` views are recomputed from the mappings
every time categories are read, so they cannot disagree and a domain
can belong to at most one category.

Sub-categories live on the domain group and are mirrored into the
durable per-domain settings on every edit.
"""

import logging
from typing import Iterable, Optional

from .autocategorize import categorize_group
from .errors import DuplicateNameError, NotFoundError, ValidationError
from .groups import find_group, store_domain_settings
from .mutator import Mutator, StateView
from .types import (
    NO_CATEGORY,
    UNCATEGORIZED,
    DomainCategorySettings,
    DomainGroup,
    DomainParentCategoryMapping,
    ParentCategory,
    SubCategoryKeyword,
    validate_category_name,
)
from .urls import new_id, records_by_id

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# View-level helpers
# ---------------------------------------------------------------------------

def with_members(view: StateView, categories: list[ParentCategory]) -> list[ParentCategory]:
    """Copies of ``categories`` with ``domains``/``domain_names`` derived from the mappings."""
    group_ids = {g.domain: g.id for g in view.groups()}
    result = []
    for category in categories:
        names = [m.domain for m in view.mappings() if m.category_id == category.id]
        result.append(ParentCategory(
            id=category.id,
            name=category.name,
            domains=[group_ids[d] for d in names if d in group_ids],
            domain_names=names,
        ))
    return result


def find_category(view: StateView, category_id: str) -> Optional[ParentCategory]:
    for category in view.categories():
        if category.id == category_id:
            return category
    return None


def _check_unique_name(view: StateView, name: str, exclude_id: Optional[str] = None) -> None:
    lowered = name.lower()
    for category in view.categories():
        if category.id != exclude_id and category.name.lower() == lowered:
            raise DuplicateNameError("category", name)


def set_domain_mapping(view: StateView, domain: str, category_id: Optional[str]) -> bool:
    """Point ``domain`` at ``category_id`` (None removes it). Returns True if changed."""
    mappings = view.mappings()
    current = [m for m in mappings if m.domain == domain]
    if category_id is None:
        if not current:
            return False
        view.set_mappings([m for m in mappings if m.domain != domain])
        return True
    if len(current) == 1 and current[0].category_id == category_id:
        return False
    kept = [m for m in mappings if m.domain != domain]
    kept.append(DomainParentCategoryMapping(domain=domain, category_id=category_id))
    view.set_mappings(kept)
    return True


def mirror_group_settings(view: StateView, group: DomainGroup) -> None:
    store_domain_settings(view, group.domain, group.sub_categories, group.category_keywords)


def _validate_sub_category_name(name: str) -> str:
    trimmed = validate_category_name(name, kind="sub-category")
    if trimmed == UNCATEGORIZED:
        raise ValidationError(f"{UNCATEGORIZED!r} is reserved")
    return trimmed


def _clean_keywords(keywords: Iterable[str]) -> list[str]:
    cleaned = []
    for kw in keywords:
        kw = kw.strip()
        if kw and kw not in cleaned:
            cleaned.append(kw)
    return cleaned


class CategoryStore:
    """Parent categories, domain mappings and sub-category rules."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    def _mutate_group(self, group_id: str, fn, name: str):
        """Run ``fn(view, group)`` on an existing group; log and return None if missing."""
        def run(view: StateView):
            group = find_group(view, group_id)
            if group is None:
                return None
            return fn(view, group)

        result = self._mutator.mutate(run, name=name)
        if result is None:
            logger.warning("%s: domain group %s not found", name, group_id)
        return result

    # -------------------------------------------------------------------------
    # Parent categories
    # -------------------------------------------------------------------------

    def list_categories(self) -> list[ParentCategory]:
        return self._mutator.read(lambda view: with_members(view, view.categories()))

    def get_category(self, category_id: str) -> ParentCategory:
        """
        Raises:
            NotFoundError: No such category
        """
        def run(view: StateView) -> ParentCategory:
            category = find_category(view, category_id)
            if category is None:
                raise NotFoundError("category", category_id)
            return with_members(view, [category])[0]
        return self._mutator.read(run)

    def find_category_by_domain(self, domain: str) -> Optional[ParentCategory]:
        """Category the domain string is mapped to, if any."""
        def run(view: StateView) -> Optional[ParentCategory]:
            for mapping in view.mappings():
                if mapping.domain == domain:
                    category = find_category(view, mapping.category_id)
                    if category is not None:
                        return with_members(view, [category])[0]
            return None
        return self._mutator.read(run)

    def create_parent_category(self, name: str) -> ParentCategory:
        """
        Create an empty parent category.

        Raises:
            ValidationError: Empty or over-long name
            DuplicateNameError: A category with the same name (ignoring case) exists
        """
        name = validate_category_name(name)

        def run(view: StateView) -> ParentCategory:
            _check_unique_name(view, name)
            category = ParentCategory(id=new_id(), name=name)
            view.categories().append(category)
            view.mark_categories()
            return category

        category = self._mutator.mutate(run, name="create_parent_category")
        logger.info("Created category %s (%s)", category.name, category.id)
        return category

    def rename_parent_category(self, category_id: str, name: str) -> Optional[ParentCategory]:
        name = validate_category_name(name)

        def run(view: StateView) -> Optional[ParentCategory]:
            category = find_category(view, category_id)
            if category is None:
                return None
            _check_unique_name(view, name, exclude_id=category_id)
            if category.name != name:
                category.name = name
                view.mark_categories()
            return with_members(view, [category])[0]

        category = self._mutator.mutate(run, name="rename_parent_category")
        if category is None:
            logger.warning("rename_parent_category: category %s not found", category_id)
        return category

    def delete_parent_category(self, category_id: str) -> bool:
        """
        Delete a category and every domain mapping pointing at it.

        Domain sub-category settings are untouched.
        """
        def run(view: StateView) -> Optional[list[str]]:
            category = find_category(view, category_id)
            if category is None:
                return None
            view.set_categories([c for c in view.categories() if c.id != category_id])
            mappings = view.mappings()
            affected = [m.domain for m in mappings if m.category_id == category_id]
            if affected:
                view.set_mappings([m for m in mappings if m.category_id != category_id])
            return affected

        affected = self._mutator.mutate(run, name="delete_parent_category")
        if affected is None:
            logger.warning("delete_parent_category: category %s not found", category_id)
            return False
        logger.info("Deleted category %s; unmapped domains: %s", category_id, ", ".join(affected))
        return True

    def assign_domain_to_category(self, group_id: str, category_id: str) -> bool:
        """
        Move a domain group into a category, or out of all of them with ``"none"``.

        The domain is removed from whatever category held it before.
        """
        def run(view: StateView) -> Optional[bool]:
            group = find_group(view, group_id)
            if group is None:
                logger.warning("assign_domain_to_category: domain group %s not found", group_id)
                return None
            if category_id == NO_CATEGORY:
                set_domain_mapping(view, group.domain, None)
                return True
            if find_category(view, category_id) is None:
                logger.warning("assign_domain_to_category: category %s not found", category_id)
                return None
            set_domain_mapping(view, group.domain, category_id)
            return True

        result = self._mutator.mutate(run, name="assign_domain_to_category")
        if result:
            logger.info("Assigned group %s to category %s", group_id, category_id)
        return bool(result)

    # -------------------------------------------------------------------------
    # Durable per-domain settings and mappings
    # -------------------------------------------------------------------------

    def get_domain_category_settings(self) -> list[DomainCategorySettings]:
        return self._mutator.read(lambda view: list(view.domain_settings()))

    def update_domain_category_settings(
        self,
        domain: str,
        sub_categories: list[str],
        category_keywords: list[SubCategoryKeyword],
    ) -> None:
        self._mutator.mutate(
            lambda view: store_domain_settings(view, domain, sub_categories, category_keywords),
            name="update_domain_category_settings",
        )

    def get_domain_category_mappings(self) -> list[DomainParentCategoryMapping]:
        return self._mutator.read(lambda view: list(view.mappings()))

    def update_domain_category_mapping(self, domain: str, category_id: Optional[str]) -> bool:
        """Map a domain string to a category (None removes the mapping)."""
        def run(view: StateView) -> bool:
            if category_id is not None and find_category(view, category_id) is None:
                raise NotFoundError("category", category_id)
            return set_domain_mapping(view, domain, category_id)
        return self._mutator.mutate(run, name="update_domain_category_mapping")

    # -------------------------------------------------------------------------
    # Sub-categories
    # -------------------------------------------------------------------------

    def add_sub_category(self, group_id: str, name: str, keywords: Iterable[str] = ()) -> bool:
        """Add a sub-category (and optionally its keywords) to a group."""
        name = _validate_sub_category_name(name)
        keywords = _clean_keywords(keywords)

        def run(view: StateView, group: DomainGroup) -> bool:
            if name not in group.sub_categories:
                group.sub_categories.append(name)
                view.mark_groups()
            if keywords:
                _set_rule(group, name, keywords)
                categorize_group(group, records_by_id(view))
                view.mark_groups()
            mirror_group_settings(view, group)
            return True

        return bool(self._mutate_group(group_id, run, "add_sub_category"))

    def set_category_keywords(self, group_id: str, name: str, keywords: Iterable[str]) -> bool:
        """Replace the keywords of a sub-category and re-run auto-categorization."""
        name = _validate_sub_category_name(name)
        keywords = _clean_keywords(keywords)

        def run(view: StateView, group: DomainGroup) -> bool:
            if name not in group.sub_categories:
                group.sub_categories.append(name)
            _set_rule(group, name, keywords)
            categorize_group(group, records_by_id(view))
            view.mark_groups()
            mirror_group_settings(view, group)
            return True

        return bool(self._mutate_group(group_id, run, "set_category_keywords"))

    def auto_categorize_tabs(self, group_id: str) -> int:
        """
        Label the group's URLs from its keyword rules (first matching rule wins).

        Returns:
            Number of URLs relabeled
        """
        def run(view: StateView, group: DomainGroup) -> int:
            changed = categorize_group(group, records_by_id(view))
            if changed:
                view.mark_groups()
            return changed

        changed = self._mutate_group(group_id, run, "auto_categorize_tabs") or 0
        if changed:
            logger.info("Auto-categorized %d URL(s) in group %s", changed, group_id)
        return changed

    def rename_sub_category(self, group_id: str, old_name: str, new_name: str) -> bool:
        """
        Rename a sub-category everywhere it is referenced within the group.

        Raises:
            DuplicateNameError: ``new_name`` is already a sub-category of the group
        """
        new_name = _validate_sub_category_name(new_name)

        def run(view: StateView, group: DomainGroup) -> bool:
            if old_name not in group.sub_categories:
                logger.warning("rename_sub_category: %r not in group %s", old_name, group_id)
                return False
            if new_name == old_name:
                return True
            if new_name in group.sub_categories:
                raise DuplicateNameError("sub-category", new_name)

            def swap(n: str) -> str:
                return new_name if n == old_name else n

            group.sub_categories = [swap(n) for n in group.sub_categories]
            for rule in group.category_keywords:
                rule.category_name = swap(rule.category_name)
            group.url_sub_categories = {k: swap(v) for k, v in group.url_sub_categories.items()}
            group.sub_category_order = [swap(n) for n in group.sub_category_order]
            group.sub_category_order_with_uncategorized = [
                swap(n) for n in group.sub_category_order_with_uncategorized
            ]
            view.mark_groups()
            mirror_group_settings(view, group)
            return True

        renamed = bool(self._mutate_group(group_id, run, "rename_sub_category"))
        if renamed:
            logger.info("Renamed sub-category %r -> %r in group %s", old_name, new_name, group_id)
        return renamed

    def remove_sub_category(self, group_id: str, name: str) -> bool:
        """Delete a sub-category; its URLs become uncategorized."""
        def run(view: StateView, group: DomainGroup) -> bool:
            if name not in group.sub_categories:
                return False
            group.sub_categories = [n for n in group.sub_categories if n != name]
            group.category_keywords = [r for r in group.category_keywords if r.category_name != name]
            group.url_sub_categories = {
                k: v for k, v in group.url_sub_categories.items() if v != name
            }
            group.sub_category_order = [n for n in group.sub_category_order if n != name]
            group.sub_category_order_with_uncategorized = [
                n for n in group.sub_category_order_with_uncategorized if n != name
            ]
            view.mark_groups()
            mirror_group_settings(view, group)
            return True

        removed = bool(self._mutate_group(group_id, run, "remove_sub_category"))
        if removed:
            logger.info("Removed sub-category %r from group %s", name, group_id)
        return removed


def _set_rule(group: DomainGroup, name: str, keywords: list[str]) -> None:
    for rule in group.category_keywords:
        if rule.category_name == name:
            rule.keywords = list(keywords)
            return
    group.category_keywords.append(SubCategoryKeyword(category_name=name, keywords=list(keywords)))
