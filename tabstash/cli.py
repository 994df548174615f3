"""
CLI interface for the tab stash.

Usage:
    tabstash save https://example.com/a https://example.com/b
    tabstash list
    tabstash category create Work
    tabstash data export backup.json
"""

import json
import os
import sys
from dataclasses import asdict, is_dataclass
from pathlib import Path
from typing import Any, Optional

import typer
from typing_extensions import Annotated

from .api import TabStash
from .logging_config import configure_quiet_mode, enable_debug_mode
from .types import NO_CATEGORY, TabInfo

# Set TABSTASH_VERBOSE=1 to enable debug mode via environment
if os.environ.get("TABSTASH_VERBOSE") == "1":
    enable_debug_mode()
else:
    configure_quiet_mode(quiet=True)


def _version_callback(value: bool):
    if value:
        from importlib.metadata import version
        print(f"tabstash {version('tabstash')}")
        raise typer.Exit()


def _verbose_callback(value: bool):
    if value:
        enable_debug_mode()


# Global state for CLI options
_json_output = False
_store_override: Optional[Path] = None


def _json_callback(value: bool):
    global _json_output
    _json_output = value


def _get_json_output() -> bool:
    return _json_output


def _store_callback(value: Optional[Path]):
    global _store_override
    if value is not None:
        _store_override = value


def _get_store_override() -> Optional[Path]:
    return _store_override


app = typer.Typer(
    name="tabstash",
    help="Stash browser tabs by domain and project.",
    no_args_is_help=True,
    rich_markup_mode=None,
)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option(
        "--verbose", "-v",
        help="Enable debug-level logging to stderr",
        callback=_verbose_callback,
        is_eager=True,
    )] = False,
    output_json: Annotated[bool, typer.Option(
        "--json", "-j",
        help="Output as JSON",
        callback=_json_callback,
        is_eager=True,
    )] = False,
    version: Annotated[Optional[bool], typer.Option(
        "--version",
        help="Show version and exit",
        callback=_version_callback,
        is_eager=True,
    )] = None,
    store: Annotated[Optional[Path], typer.Option(
        "--store", "-s",
        envvar="TABSTASH_STORE_PATH",
        help="Path to the store directory",
        callback=_store_callback,
        is_eager=True,
    )] = None,
):
    """Stash browser tabs by domain and project."""


# -----------------------------------------------------------------------------
# Common Options
# -----------------------------------------------------------------------------

StoreOption = Annotated[
    Optional[Path],
    typer.Option(
        "--store", "-s",
        envvar="TABSTASH_STORE_PATH",
        help="Path to the store directory (default: ~/.tabstash/)"
    )
]


def _get_stash(store: Optional[Path]) -> TabStash:
    """Open the store, reporting failures as a one-line error."""
    import atexit

    actual_store = store if store is not None else _get_store_override()
    try:
        ts = TabStash(actual_store)
    except Exception as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1)
    atexit.register(ts.close)
    return ts


def _to_jsonable(value: Any) -> Any:
    if hasattr(value, "to_dict"):
        return value.to_dict()
    if is_dataclass(value):
        return asdict(value)
    if isinstance(value, list):
        return [_to_jsonable(v) for v in value]
    return value


def _echo_json(value: Any) -> None:
    typer.echo(json.dumps(_to_jsonable(value), indent=2, ensure_ascii=False))


def _fail(message: str) -> None:
    typer.echo(f"Error: {message}", err=True)
    raise typer.Exit(1)


# -----------------------------------------------------------------------------
# Tabs and domain groups
# -----------------------------------------------------------------------------

@app.command()
def save(
    urls: Annotated[list[str], typer.Argument(help="URLs to save")],
    title: Annotated[Optional[str], typer.Option(
        "--title", "-t", help="Title (applies to every URL given)"
    )] = None,
    project: Annotated[bool, typer.Option(
        "--project", "-p", help="Also add the URLs to the first project"
    )] = False,
    store: StoreOption = None,
):
    """Save URLs into their domain groups."""
    ts = _get_stash(store)
    tabs = [TabInfo(url=u, title=title or "") for u in urls]
    groups = ts.groups.save_tabs(tabs)
    if project:
        ts.projects.sync_to_default_project(tabs)
    if _get_json_output():
        _echo_json(groups)
        return
    for group in groups:
        typer.echo(f"{group.id}  {group.domain}  ({len(group.url_ids)} URLs)")


@app.command("list")
def list_groups(
    show_urls: Annotated[bool, typer.Option(
        "--urls", "-u", help="Show the URLs in each group"
    )] = False,
    store: StoreOption = None,
):
    """List domain groups."""
    ts = _get_stash(store)
    groups = ts.groups.list_groups()
    if _get_json_output():
        _echo_json(groups)
        return
    if not groups:
        typer.echo("No saved tabs.", err=True)
        return
    categories = {c.id: c.name for c in ts.categories.list_categories()}
    for group in groups:
        label = categories.get(group.parent_category_id or "", "")
        suffix = f"  [{label}]" if label else ""
        typer.echo(f"{group.id}  {group.domain}  ({len(group.url_ids)} URLs){suffix}")
        if show_urls:
            for record in ts.groups.urls_for_group(group.id):
                sub = group.url_sub_categories.get(record.id)
                sub_label = f" <{sub}>" if sub else ""
                typer.echo(f"    {record.url}  {record.title}{sub_label}")


@app.command()
def remove(
    url: Annotated[str, typer.Argument(help="URL to remove")],
    group_id: Annotated[Optional[str], typer.Option(
        "--group", "-g", help="Only remove from this domain group"
    )] = None,
    store: StoreOption = None,
):
    """Remove a URL from the domain groups."""
    ts = _get_stash(store)
    if group_id:
        if not ts.groups.remove_url(group_id, url):
            _fail(f"{url} is not in group {group_id}")
        typer.echo(f"Removed {url}", err=True)
        return
    touched = ts.groups.remove_url_everywhere(url)
    if not touched:
        _fail(f"{url} is not saved")
    typer.echo(f"Removed {url} from {touched} group(s)", err=True)


@app.command()
def keywords(
    group_id: Annotated[str, typer.Argument(help="Domain group ID")],
    name: Annotated[str, typer.Argument(help="Sub-category name")],
    words: Annotated[list[str], typer.Argument(help="Keywords matched against titles")],
    store: StoreOption = None,
):
    """Set the keywords of a sub-category and re-categorize the group."""
    ts = _get_stash(store)
    if not ts.categories.set_category_keywords(group_id, name, words):
        _fail(f"domain group not found: {group_id}")
    typer.echo(f"{name}: {', '.join(words)}", err=True)


# -----------------------------------------------------------------------------
# Parent categories
# -----------------------------------------------------------------------------

category_app = typer.Typer(
    name="category",
    help="Parent categories for domain groups.",
    rich_markup_mode=None,
)
app.add_typer(category_app)


@category_app.command("list")
def category_list(store: StoreOption = None):
    """List parent categories and their domains."""
    ts = _get_stash(store)
    categories = ts.categories.list_categories()
    if _get_json_output():
        typer.echo(json.dumps(
            [c.to_dict(include_members=True) for c in categories], indent=2, ensure_ascii=False,
        ))
        return
    for category in categories:
        domains = ", ".join(category.domain_names) or "-"
        typer.echo(f"{category.id}  {category.name}  {domains}")


@category_app.command("create")
def category_create(
    name: Annotated[str, typer.Argument(help="Category name")],
    store: StoreOption = None,
):
    """Create a parent category."""
    ts = _get_stash(store)
    category = ts.categories.create_parent_category(name)
    typer.echo(category.id)


@category_app.command("rename")
def category_rename(
    category_id: Annotated[str, typer.Argument(help="Category ID")],
    name: Annotated[str, typer.Argument(help="New name")],
    store: StoreOption = None,
):
    """Rename a parent category."""
    ts = _get_stash(store)
    if ts.categories.rename_parent_category(category_id, name) is None:
        _fail(f"category not found: {category_id}")


@category_app.command("delete")
def category_delete(
    category_id: Annotated[str, typer.Argument(help="Category ID")],
    store: StoreOption = None,
):
    """Delete a parent category. Its domains become uncategorized."""
    ts = _get_stash(store)
    if not ts.categories.delete_parent_category(category_id):
        _fail(f"category not found: {category_id}")


@category_app.command("assign")
def category_assign(
    group_id: Annotated[str, typer.Argument(help="Domain group ID")],
    category_id: Annotated[str, typer.Argument(help=f"Category ID, or '{NO_CATEGORY}'")],
    store: StoreOption = None,
):
    """Move a domain group into a parent category."""
    ts = _get_stash(store)
    if not ts.categories.assign_domain_to_category(group_id, category_id):
        _fail(f"group {group_id} or category {category_id} not found")


# -----------------------------------------------------------------------------
# Projects
# -----------------------------------------------------------------------------

project_app = typer.Typer(
    name="project",
    help="User projects.",
    rich_markup_mode=None,
)
app.add_typer(project_app)


@project_app.command("list")
def project_list(store: StoreOption = None):
    """List projects in display order."""
    ts = _get_stash(store)
    projects = ts.projects.list_projects()
    if _get_json_output():
        _echo_json(projects)
        return
    for project in projects:
        typer.echo(f"{project.id}  {project.name}  ({len(project.url_ids)} URLs)")


@project_app.command("create")
def project_create(
    name: Annotated[str, typer.Argument(help="Project name")],
    description: Annotated[Optional[str], typer.Option(
        "--description", "-d", help="Description"
    )] = None,
    store: StoreOption = None,
):
    """Create a project."""
    ts = _get_stash(store)
    project = ts.projects.create_project(name, description)
    typer.echo(project.id)


@project_app.command("add")
def project_add(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    url: Annotated[str, typer.Argument(help="URL to add")],
    title: Annotated[str, typer.Option("--title", "-t", help="Title")] = "",
    notes: Annotated[Optional[str], typer.Option("--notes", "-n", help="Notes")] = None,
    category: Annotated[Optional[str], typer.Option(
        "--category", "-c", help="Project category"
    )] = None,
    store: StoreOption = None,
):
    """Add a URL to a project."""
    ts = _get_stash(store)
    if ts.projects.add_url_to_project(project_id, url, title, notes=notes, category=category) is None:
        _fail(f"project not found: {project_id}")


@project_app.command("remove")
def project_remove(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    url: Annotated[str, typer.Argument(help="URL to remove")],
    store: StoreOption = None,
):
    """Remove a URL from a project."""
    ts = _get_stash(store)
    if not ts.projects.remove_url_from_project(project_id, url):
        _fail(f"{url} is not in project {project_id}")


@project_app.command("delete")
def project_delete(
    project_id: Annotated[str, typer.Argument(help="Project ID")],
    store: StoreOption = None,
):
    """Delete a project. Its URLs stay in the domain groups."""
    ts = _get_stash(store)
    if not ts.projects.delete_project(project_id):
        _fail(f"project not found: {project_id}")


# -----------------------------------------------------------------------------
# Maintenance
# -----------------------------------------------------------------------------

@app.command()
def gc(store: StoreOption = None):
    """Delete URL records nothing refers to."""
    ts = _get_stash(store)
    removed = ts.gc.cleanup_unreferenced_urls()
    typer.echo(f"Deleted {removed} unreferenced URL record(s)", err=True)


@app.command()
def dedup(store: StoreOption = None):
    """Merge URL records that share a URL."""
    ts = _get_stash(store)
    result = ts.gc.deduplicate_url_records()
    if _get_json_output():
        _echo_json(result)
        return
    typer.echo(f"Merged {result.removed} duplicate record(s)", err=True)


@app.command()
def sweep(
    period: Annotated[Optional[str], typer.Option(
        "--period", "-p", help="Auto-delete period to apply instead of the stored setting"
    )] = None,
    store: StoreOption = None,
):
    """Run one expiration sweep now."""
    ts = _get_stash(store)
    result = ts.expiration.sweep(period)
    if _get_json_output():
        typer.echo(json.dumps({
            "urls_removed": result.urls_removed,
            "groups_removed": result.groups_removed,
            "period": result.period.value,
        }))
        return
    typer.echo(
        f"Expired {result.urls_removed} URL(s), removed {result.groups_removed} group(s) "
        f"(period: {result.period.value})",
        err=True,
    )


@app.command()
def migrate(store: StoreOption = None):
    """Apply pending schema migrations."""
    ts = _get_stash(store)
    report = ts.last_migration
    if report is None or not report.changed:
        typer.echo("Store is up to date", err=True)
        return
    if _get_json_output():
        _echo_json(report)
        return
    typer.echo(
        f"Migrated: {report.records_created} record(s) created, "
        f"{report.groups_migrated} group(s), {report.projects_migrated} project(s), "
        f"{report.mappings_created} category mapping(s)",
        err=True,
    )


# -----------------------------------------------------------------------------
# Data Management
# -----------------------------------------------------------------------------

data_app = typer.Typer(
    name="data",
    help="Data management: export, import.",
    rich_markup_mode=None,
)
app.add_typer(data_app)


@data_app.command("export")
def data_export(
    output: Annotated[str, typer.Argument(
        help="Output file path (use '-' for stdout)"
    )],
    store: StoreOption = None,
):
    """Export the stash to a JSON backup."""
    ts = _get_stash(store)
    data = ts.backup.export_data()
    text = json.dumps(data, indent=2, ensure_ascii=False) + "\n"
    if output == "-":
        sys.stdout.write(text)
        return
    Path(output).write_text(text, encoding="utf-8")
    url_count = sum(len(g["urls"]) for g in data["savedTabs"])
    typer.echo(
        f"Exported {len(data['savedTabs'])} domain group(s), {url_count} URL(s), "
        f"{len(data['parentCategories'])} categories to {output}",
        err=True,
    )


@data_app.command("import")
def data_import(
    file: Annotated[str, typer.Argument(help="JSON backup file to import")],
    mode: Annotated[str, typer.Option(
        "--mode", "-m", help="Import mode: merge (union with local) or replace (overwrite)"
    )] = "merge",
    yes: Annotated[bool, typer.Option(
        "--yes", "-y", help="Don't ask before replacing"
    )] = False,
    store: StoreOption = None,
):
    """Import a JSON backup."""
    if mode not in ("merge", "replace"):
        _fail(f"--mode must be 'merge' or 'replace', got '{mode}'")

    if file == "-":
        text = sys.stdin.read()
    else:
        path = Path(file)
        if not path.exists():
            _fail(f"file not found: {file}")
        text = path.read_text(encoding="utf-8")

    if mode == "replace" and not yes:
        if not typer.confirm("This will overwrite saved tabs, categories and settings. Continue?"):
            raise typer.Exit(0)

    ts = _get_stash(store)
    stats = ts.backup.import_data(text, mode=mode)
    if _get_json_output():
        typer.echo(json.dumps(stats))
        return
    typer.echo(
        f"Imported {stats['urls']} URL(s): {stats['added_domains']} new domain(s), "
        f"{stats['merged_domains']} merged, {stats['added_categories']} new categories",
        err=True,
    )


# -----------------------------------------------------------------------------
# Settings
# -----------------------------------------------------------------------------

settings_app = typer.Typer(
    name="settings",
    help="User settings stored with the tabs.",
    rich_markup_mode=None,
)
app.add_typer(settings_app)


@settings_app.command("show")
def settings_show(store: StoreOption = None):
    """Show user settings."""
    ts = _get_stash(store)
    typer.echo(json.dumps(ts.settings.get_user_settings(), indent=2, ensure_ascii=False))


@settings_app.command("set-ttl")
def settings_set_ttl(
    period: Annotated[str, typer.Argument(
        help="never, 30s, 1m, 1h, 1d, 7d, 14d, 30d, 180d or 365d"
    )],
    store: StoreOption = None,
):
    """Set the auto-delete period."""
    from .expiration import is_period_shortening, parse_period

    new = parse_period(period)
    ts = _get_stash(store)
    current = ts.settings.get_user_settings().get("autoDeletePeriod")
    ts.settings.update_user_settings(autoDeletePeriod=new.value)
    if new.value != "never" and is_period_shortening(current or "never", new):
        typer.echo("Period shortened; older tabs go on the next sweep.", err=True)
    typer.echo(f"autoDeletePeriod = {new.value}", err=True)


# -----------------------------------------------------------------------------
# Entry point
# -----------------------------------------------------------------------------

def main():
    try:
        app()
    except SystemExit:
        raise  # Let typer handle exit codes
    except KeyboardInterrupt:
        raise SystemExit(130)  # Standard exit code for Ctrl+C
    except Exception as e:
        # Log full traceback to file, show clean message to user
        from .errors import log_exception
        log_path = log_exception(e, context="tabstash CLI", store_path=_get_store_override())
        typer.echo(f"Error: {e}", err=True)
        typer.echo(f"Details logged to {log_path}", err=True)
        raise SystemExit(1)


if __name__ == "__main__":
    main()
