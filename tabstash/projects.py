"""
User-defined projects.

A project holds an ordered list of URL record ids plus per-URL notes
and a project-local category. Emptying a project is fine; projects are
only deleted on request, and deleting one never deletes URL records
(the garbage collector reclaims them once nothing else refers to them).
"""

import logging
from typing import Iterable, Optional, Union

from .errors import DuplicateNameError, NotFoundError, ValidationError
from .groups import file_record, remove_url_from_groups
from .mutator import Mutator, StateView
from .types import (
    CUSTOM_PROJECT_ORDER_KEY,
    Project,
    ProjectUrl,
    ProjectUrlMeta,
    TabInfo,
    UrlRecord,
)
from .urls import find_record, new_id, records_by_id, upsert_record

logger = logging.getLogger(__name__)

DEFAULT_PROJECT_DESCRIPTION = "Created automatically"


# ---------------------------------------------------------------------------
# View-level helpers
# ---------------------------------------------------------------------------

def ordered_projects(view: StateView) -> list[Project]:
    """Projects in display order; projects missing from the order go last."""
    order = {pid: i for i, pid in enumerate(view.project_order())}
    projects = list(view.projects())
    if not order:
        return projects
    return sorted(projects, key=lambda p: order.get(p.id, len(order)))


def find_project(view: StateView, project_id: str) -> Optional[Project]:
    for project in view.projects():
        if project.id == project_id:
            return project
    return None


def _validate_name(name: str, kind: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError(f"{kind} name must not be empty")
    return name.strip()


def _check_unique(view: StateView, name: str, exclude_id: Optional[str] = None) -> None:
    lowered = name.lower()
    for project in view.projects():
        if project.id != exclude_id and project.name.lower() == lowered:
            raise DuplicateNameError("project", name)


def create_project_in(view: StateView, name: str, description: Optional[str] = None) -> Project:
    _check_unique(view, name)
    project = Project(
        id=new_id(), name=name, created_at=view.now, updated_at=view.now,
        description=description or None,
    )
    view.projects().append(project)
    view.mark_projects()
    return project


def add_record_to_project(
    view: StateView,
    project: Project,
    record: UrlRecord,
    notes: Optional[str] = None,
    category: Optional[str] = None,
) -> bool:
    """
    Reference a record from a project and file it into its domain group.

    Returns:
        True if the URL was new to the project
    """
    is_new = record.id not in project.url_ids
    if is_new:
        project.url_ids.append(record.id)
        file_record(view, record)
    if notes or category:
        if category and category not in project.categories:
            project.categories.append(category)
            project.category_order.append(category)
        project.url_metadata[record.id] = ProjectUrlMeta(notes=notes, category=category)
    project.updated_at = view.now
    view.mark_projects()
    return is_new


class ProjectStore:
    """Projects (the ``customProjects`` and ``customProjectOrder`` keys)."""

    def __init__(self, mutator: Mutator, default_name: str = "Default Project"):
        self._mutator = mutator
        self._default_name = default_name

    def _mutate_project(self, project_id: str, fn, name: str):
        """Run ``fn(view, project)``; log and return None if the project is gone."""
        def run(view: StateView):
            project = find_project(view, project_id)
            if project is None:
                return None
            return fn(view, project)

        result = self._mutator.mutate(run, name=name)
        if result is None:
            logger.warning("%s: project %s not found", name, project_id)
        return result

    # ---- Queries ----

    def list_projects(self) -> list[Project]:
        return self._mutator.read(ordered_projects)

    def get_project(self, project_id: str) -> Project:
        """
        Raises:
            NotFoundError: No such project
        """
        def run(view: StateView) -> Project:
            project = find_project(view, project_id)
            if project is None:
                raise NotFoundError("project", project_id)
            return project
        return self._mutator.read(run)

    def project_urls(self, project_id: str) -> list[ProjectUrl]:
        """
        URLs of a project with their notes and categories, in project order.

        Raises:
            NotFoundError: No such project
        """
        def run(view: StateView) -> list[ProjectUrl]:
            project = find_project(view, project_id)
            if project is None:
                raise NotFoundError("project", project_id)
            by_id = records_by_id(view)
            result = []
            for url_id in project.url_ids:
                record = by_id.get(url_id)
                if record is None:
                    continue
                meta = project.url_metadata.get(url_id, ProjectUrlMeta())
                result.append(ProjectUrl(record, notes=meta.notes, category=meta.category))
            return result
        return self._mutator.read(run)

    # ---- Project lifecycle ----

    def create_project(self, name: str, description: Optional[str] = None) -> Project:
        """
        Raises:
            ValidationError: Empty name
            DuplicateNameError: Name already used (ignoring case)
        """
        name = _validate_name(name, "project")
        project = self._mutator.mutate(
            lambda view: create_project_in(view, name, description), name="create_project",
        )
        logger.info("Created project %s (%s)", project.name, project.id)
        return project

    def rename_project(self, project_id: str, name: str) -> Optional[Project]:
        name = _validate_name(name, "project")

        def run(view: StateView, project: Project) -> Project:
            _check_unique(view, name, exclude_id=project_id)
            if project.name != name:
                project.name = name
                project.updated_at = view.now
                view.mark_projects()
            return project

        return self._mutate_project(project_id, run, "rename_project")

    def delete_project(self, project_id: str) -> bool:
        def run(view: StateView) -> bool:
            projects = view.projects()
            kept = [p for p in projects if p.id != project_id]
            if len(kept) == len(projects):
                return False
            view.set_projects(kept)
            order = view.project_order()
            if project_id in order:
                view.put(CUSTOM_PROJECT_ORDER_KEY, [i for i in order if i != project_id])
            return True

        deleted = self._mutator.mutate(run, name="delete_project")
        if deleted:
            logger.info("Deleted project %s", project_id)
        else:
            logger.warning("delete_project: project %s not found", project_id)
        return deleted

    def ensure_default_project(self) -> Project:
        """First project in display order, creating the default one if there are none."""
        def run(view: StateView) -> Project:
            projects = ordered_projects(view)
            if projects:
                return projects[0]
            logger.info("No projects yet; creating %r", self._default_name)
            return create_project_in(view, self._default_name, DEFAULT_PROJECT_DESCRIPTION)
        return self._mutator.mutate(run, name="ensure_default_project")

    def set_project_order(self, project_ids: list[str]) -> None:
        def run(view: StateView) -> None:
            known = {p.id for p in view.projects()}
            order = [pid for pid in dict.fromkeys(project_ids) if pid in known]
            if order != view.project_order():
                view.put(CUSTOM_PROJECT_ORDER_KEY, order)
        self._mutator.mutate(run, name="set_project_order")

    # ---- URLs ----

    def add_url_to_project(
        self,
        project_id: str,
        url: str,
        title: str = "",
        notes: Optional[str] = None,
        category: Optional[str] = None,
    ) -> Optional[UrlRecord]:
        """
        Add a URL to a project. A URL new to the project is also filed
        into its domain group.

        Returns:
            The URL record, or None if the project does not exist
        """
        def run(view: StateView, project: Project) -> UrlRecord:
            record = upsert_record(view, url, title)
            add_record_to_project(view, project, record, notes, category)
            return record

        return self._mutate_project(project_id, run, "add_url_to_project")

    def remove_url_from_project(self, project_id: str, url: str) -> bool:
        """
        Remove a URL from a project and from the domain groups.

        Returns:
            True if the project held the URL
        """
        def run(view: StateView, project: Project) -> bool:
            record = find_record(view, url)
            found = record is not None and record.id in project.url_ids
            if found:
                project.url_ids = [i for i in project.url_ids if i != record.id]
                project.url_metadata.pop(record.id, None)
            project.updated_at = view.now
            view.mark_projects()
            remove_url_from_groups(view, url)
            return found

        removed = self._mutate_project(project_id, run, "remove_url_from_project")
        if removed:
            logger.info("Removed %s from project %s", url, project_id)
        return bool(removed)

    def sync_to_default_project(self, entries: Iterable[Union[TabInfo, dict]]) -> Project:
        """Add saved URLs to the first project, creating the default project if needed."""
        entries = [e if isinstance(e, TabInfo) else TabInfo.from_dict(e) for e in entries]

        def run(view: StateView) -> Project:
            projects = ordered_projects(view)
            if projects:
                project = projects[0]
            else:
                project = create_project_in(view, self._default_name, DEFAULT_PROJECT_DESCRIPTION)
            for entry in entries:
                if not entry.url:
                    continue
                record = upsert_record(view, entry.url, entry.title, entry.fav_icon_url)
                add_record_to_project(view, project, record)
            return project

        project = self._mutator.mutate(run, name="sync_to_default_project")
        logger.info("Synced %d URL(s) to project %s", len(entries), project.name)
        return project

    def set_project_url_category(self, project_id: str, url: str, category: Optional[str]) -> bool:
        def run(view: StateView, project: Project) -> bool:
            record = find_record(view, url)
            if record is None or record.id not in project.url_ids:
                return False
            if category and category not in project.categories:
                raise ValidationError(f"Unknown project category {category!r}")
            meta = project.url_metadata.setdefault(record.id, ProjectUrlMeta())
            meta.category = category or None
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "set_project_url_category"))

    def set_project_url_notes(self, project_id: str, url: str, notes: Optional[str]) -> bool:
        def run(view: StateView, project: Project) -> bool:
            record = find_record(view, url)
            if record is None or record.id not in project.url_ids:
                return False
            meta = project.url_metadata.setdefault(record.id, ProjectUrlMeta())
            meta.notes = notes or None
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "set_project_url_notes"))

    def reorder_project_urls(self, project_id: str, urls: list[str]) -> bool:
        """
        Put the project's URLs in the given order.

        URLs of the project left out of ``urls`` keep their relative order
        after the listed ones.

        Raises:
            ValidationError: ``urls`` names a URL the project does not hold
        """
        def run(view: StateView, project: Project) -> bool:
            by_url = {r.url: r.id for r in view.records() if r.id in project.url_ids}
            unknown = [u for u in urls if u not in by_url]
            if unknown:
                raise ValidationError(f"Not in project: {', '.join(unknown)}")
            head = list(dict.fromkeys(by_url[u] for u in urls))
            new_order = head + [i for i in project.url_ids if i not in head]
            if new_order != project.url_ids:
                project.url_ids = new_order
                project.updated_at = view.now
                view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "reorder_project_urls"))

    # ---- Project categories ----

    def add_project_category(self, project_id: str, name: str) -> bool:
        name = _validate_name(name, "project category")

        def run(view: StateView, project: Project) -> bool:
            if name in project.categories:
                return True
            project.categories.append(name)
            project.category_order.append(name)
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "add_project_category"))

    def remove_project_category(self, project_id: str, name: str) -> bool:
        """Remove a category; URLs filed under it become uncategorized."""
        def run(view: StateView, project: Project) -> bool:
            if name not in project.categories:
                return False
            project.categories = [c for c in project.categories if c != name]
            project.category_order = [c for c in project.category_order if c != name]
            for meta in project.url_metadata.values():
                if meta.category == name:
                    meta.category = None
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "remove_project_category"))

    def rename_project_category(self, project_id: str, old_name: str, new_name: str) -> bool:
        """
        Raises:
            DuplicateNameError: ``new_name`` already exists in the project
        """
        new_name = _validate_name(new_name, "project category")

        def run(view: StateView, project: Project) -> bool:
            if old_name not in project.categories:
                return False
            if new_name == old_name:
                return True
            if new_name in project.categories:
                raise DuplicateNameError("project category", new_name)

            def swap(n: str) -> str:
                return new_name if n == old_name else n

            project.categories = [swap(c) for c in project.categories]
            project.category_order = [swap(c) for c in project.category_order]
            for meta in project.url_metadata.values():
                if meta.category == old_name:
                    meta.category = new_name
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "rename_project_category"))

    def set_project_category_order(self, project_id: str, order: list[str]) -> bool:
        def run(view: StateView, project: Project) -> bool:
            unknown = [c for c in order if c not in project.categories]
            if unknown:
                raise ValidationError(f"Unknown project categories: {', '.join(unknown)}")
            project.category_order = list(dict.fromkeys(order))
            project.updated_at = view.now
            view.mark_projects()
            return True

        return bool(self._mutate_project(project_id, run, "set_project_category_order"))
