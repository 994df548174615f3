"""
URL record store.

One canonical record per URL string; collections hold record ids.
Module-level functions operate on a StateView so that the collection
and migration code can compose them into a single atomic mutation.
"""

import logging
import uuid
from typing import Optional

from .mutator import Mutator, StateView
from .types import UrlRecord

logger = logging.getLogger(__name__)


def new_id() -> str:
    """Fresh surrogate id for records, groups, projects and categories."""
    return str(uuid.uuid4())


def find_record(view: StateView, url: str) -> Optional[UrlRecord]:
    for record in view.records():
        if record.url == url:
            return record
    return None


def records_by_id(view: StateView) -> dict[str, UrlRecord]:
    return {r.id: r for r in view.records()}


def upsert_record(
    view: StateView,
    url: str,
    title: str = "",
    fav_icon_url: Optional[str] = None,
    saved_at: Optional[int] = None,
) -> UrlRecord:
    """
    Insert or refresh the record for ``url``.

    An existing record keeps its id; its title and favicon are replaced
    when new ones are given and ``savedAt`` moves to ``saved_at`` (or now).
    """
    stamp = view.now if saved_at is None else saved_at
    record = find_record(view, url)
    if record is not None:
        changed = False
        if title and record.title != title:
            record.title = title
            changed = True
        if fav_icon_url and record.fav_icon_url != fav_icon_url:
            record.fav_icon_url = fav_icon_url
            changed = True
        if record.saved_at != stamp:
            record.saved_at = stamp
            changed = True
        if changed:
            view.mark_records()
        return record

    record = UrlRecord(
        id=new_id(), url=url, title=title or url,
        saved_at=stamp, fav_icon_url=fav_icon_url or None,
    )
    view.records().append(record)
    view.mark_records()
    logger.debug("Created URL record %s for %s", record.id, url)
    return record


def referenced_ids(view: StateView) -> set[str]:
    """Ids referenced by any domain group or project."""
    ids: set[str] = set()
    for group in view.groups():
        ids.update(group.url_ids)
    for project in view.projects():
        ids.update(project.url_ids)
    return ids


class UrlRecordStore:
    """Canonical deduplicated URL records (the ``urls`` key)."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    def list_all(self) -> list[UrlRecord]:
        return self._mutator.read(lambda view: list(view.records()))

    def find_by_url(self, url: str) -> Optional[UrlRecord]:
        return self._mutator.read(lambda view: find_record(view, url))

    def get(self, id: str) -> Optional[UrlRecord]:
        return self._mutator.read(lambda view: records_by_id(view).get(id))

    def get_by_ids(self, ids: list[str]) -> list[UrlRecord]:
        """Records for ``ids`` in the given order; unknown ids are skipped."""
        def run(view: StateView) -> list[UrlRecord]:
            by_id = records_by_id(view)
            return [by_id[i] for i in ids if i in by_id]
        return self._mutator.read(run)

    def upsert(self, url: str, title: str = "", fav_icon_url: Optional[str] = None) -> UrlRecord:
        """Create or refresh the record for ``url``. Never creates a duplicate."""
        return self._mutator.mutate(
            lambda view: upsert_record(view, url, title, fav_icon_url),
            name="upsert",
        )

    def is_referenced(self, id: str) -> bool:
        return self._mutator.read(lambda view: id in referenced_ids(view))

    def delete(self, id: str) -> bool:
        """
        Delete a record that no collection references.

        Returns:
            True if deleted; False if referenced or unknown
        """
        def run(view: StateView) -> bool:
            if id in referenced_ids(view):
                logger.debug("Not deleting URL record %s: still referenced", id)
                return False
            records = view.records()
            kept = [r for r in records if r.id != id]
            if len(kept) == len(records):
                return False
            view.set_records(kept)
            return True

        deleted = self._mutator.mutate(run, name="delete_url_record")
        if deleted:
            logger.info("Deleted URL record %s", id)
        return deleted
