"""
Reclaiming URL records.

Records are never deleted as a side effect of removing them from a
collection; these passes clean up afterwards. Both are idempotent.
"""

import logging
from dataclasses import dataclass

from .mutator import Mutator, StateView
from .types import UrlRecord
from .urls import referenced_ids

logger = logging.getLogger(__name__)


@dataclass
class DedupResult:
    """Outcome of a deduplication pass."""
    removed: int = 0
    groups_rewritten: int = 0
    projects_rewritten: int = 0


def _rewrite(ids: list[str], replace: dict[str, str]) -> list[str]:
    result = []
    for i in ids:
        i = replace.get(i, i)
        if i not in result:
            result.append(i)
    return result


def deduplicate(view: StateView) -> DedupResult:
    """Merge records sharing a URL into the one saved most recently."""
    result = DedupResult()
    survivors: dict[str, UrlRecord] = {}
    replace: dict[str, str] = {}
    for record in view.records():
        kept = survivors.get(record.url)
        if kept is None:
            survivors[record.url] = record
        elif record.saved_at > kept.saved_at:
            replace[kept.id] = record.id
            survivors[record.url] = record
        else:
            replace[record.id] = kept.id
    if not replace:
        return result

    # Chains like a -> b -> c collapse to the final survivor
    for loser in list(replace):
        target = replace[loser]
        while target in replace:
            target = replace[target]
        replace[loser] = target

    for group in view.groups():
        if not any(i in replace for i in group.url_ids):
            continue
        group.url_ids = _rewrite(group.url_ids, replace)
        subs = {}
        for url_id, name in group.url_sub_categories.items():
            target = replace.get(url_id, url_id)
            # The survivor's own label wins over a label carried by a loser
            if target not in subs or url_id == target:
                subs[target] = name
        group.url_sub_categories = subs
        result.groups_rewritten += 1
    if result.groups_rewritten:
        view.mark_groups()

    for project in view.projects():
        if not any(i in replace for i in project.url_ids):
            continue
        project.url_ids = _rewrite(project.url_ids, replace)
        meta = {}
        for url_id, value in project.url_metadata.items():
            target = replace.get(url_id, url_id)
            if target not in meta or url_id == target:
                meta[target] = value
        project.url_metadata = meta
        result.projects_rewritten += 1
    if result.projects_rewritten:
        view.mark_projects()

    view.set_records([r for r in view.records() if r.id not in replace])
    result.removed = len(replace)
    return result


def cleanup(view: StateView) -> int:
    """Delete every record no group or project references."""
    keep = referenced_ids(view)
    records = view.records()
    kept = [r for r in records if r.id in keep]
    removed = len(records) - len(kept)
    if removed:
        view.set_records(kept)
    return removed


class GarbageCollector:
    """Unreferenced-record cleanup and duplicate merging."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    def cleanup_unreferenced_urls(self) -> int:
        """
        Delete URL records that no collection refers to.

        Returns:
            Number of records deleted
        """
        removed = self._mutator.mutate(cleanup, name="cleanup_unreferenced_urls")
        if removed:
            logger.info("Deleted %d unreferenced URL record(s)", removed)
        else:
            logger.debug("No unreferenced URL records")
        return removed

    def deduplicate_url_records(self) -> DedupResult:
        """
        Collapse records sharing a URL, keeping the newest, and point every
        reference at the survivor.
        """
        result = self._mutator.mutate(deduplicate, name="deduplicate_url_records")
        if result.removed:
            logger.info(
                "Merged %d duplicate URL record(s); rewrote %d group(s), %d project(s)",
                result.removed, result.groups_rewritten, result.projects_rewritten,
            )
        return result
