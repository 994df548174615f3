"""
Keyword-based sub-category assignment.

For each URL in a group the lower-cased title is tested against the
group's keyword rules in order; the first rule with any keyword
contained in the title decides the label. A URL no rule matches keeps
whatever label it already had.
"""

from typing import Optional

from .types import DomainGroup, SubCategoryKeyword, UrlRecord


def match_sub_category(title: str, rules: list[SubCategoryKeyword]) -> Optional[str]:
    """Name of the first rule matching ``title``, or None."""
    title_lower = (title or "").lower()
    for rule in rules:
        if rule.matches(title_lower):
            return rule.category_name
    return None


def categorize_group(group: DomainGroup, records: dict[str, UrlRecord]) -> int:
    """
    Relabel the URLs of ``group`` in place.

    Args:
        group: Group to update
        records: URL records by id

    Returns:
        Number of URLs whose label changed
    """
    if not group.category_keywords:
        return 0
    changed = 0
    for url_id in group.url_ids:
        record = records.get(url_id)
        if record is None:
            continue
        label = match_sub_category(record.title, group.category_keywords)
        if label is not None and group.url_sub_categories.get(url_id) != label:
            group.url_sub_categories[url_id] = label
            changed += 1
    return changed
