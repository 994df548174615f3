"""
Backup export and import.

The backup document keeps URLs inline in each domain group
(``savedTabs[].urls``) so that it stays readable and portable. Imports
are validated in full with pydantic before anything is written, then
normalized into URL records the same way the schema migration does.

Merge imports match domain groups by domain string, never by id: ids
from another installation may belong to different domains here. When
both sides know a URL the local record is kept as is.
"""

import copy
import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional, Union

import pydantic
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import ImportValidationError, ValidationError
from .expiration import parse_period
from .gc import cleanup
from .groups import attach_parent_ids
from .categories import with_members
from .mutator import Mutator, StateView
from .settings import DEFAULT_USER_SETTINGS, merge_imported_settings, user_settings
from .types import (
    USER_SETTINGS_KEY,
    DomainGroup,
    DomainParentCategoryMapping,
    ParentCategory,
    SubCategoryKeyword,
    UrlRecord,
)
from .urls import new_id, records_by_id

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0.0"


# ---------------------------------------------------------------------------
# Backup schema
# ---------------------------------------------------------------------------

class _Model(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class BackupUrl(_Model):
    url: str = Field(min_length=1)
    title: Optional[str] = None
    fav_icon_url: Optional[str] = None
    sub_category: Optional[str] = None
    saved_at: Optional[int] = None
    # Older exports stamped URLs with ``timestamp`` instead of ``savedAt``
    timestamp: Optional[int] = None


class BackupKeyword(_Model):
    category_name: str
    keywords: list[str] = Field(default_factory=list)


class BackupSettings(_Model):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    remove_tab_after_open: bool
    exclude_patterns: list[str]
    enable_categories: bool
    show_saved_time: bool
    auto_delete_period: Optional[str] = None
    click_behavior: Literal[
        "saveCurrentTab", "saveWindowTabs", "saveSameDomainTabs", "saveAllWindowsTabs",
    ]

    @field_validator("auto_delete_period")
    @classmethod
    def _known_period(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            try:
                parse_period(value)
            except ValidationError as e:
                raise ValueError(str(e)) from None
        return value


class BackupCategory(_Model):
    id: str
    name: str = Field(min_length=1)
    domains: list[str] = Field(default_factory=list)
    domain_names: list[str] = Field(default_factory=list)


class BackupGroup(_Model):
    id: str
    domain: str = Field(min_length=1)
    urls: list[BackupUrl]
    parent_category_id: Optional[str] = None
    sub_categories: list[str] = Field(default_factory=list)
    category_keywords: list[BackupKeyword] = Field(default_factory=list)
    sub_category_order: list[str] = Field(default_factory=list)
    sub_category_order_with_uncategorized: list[str] = Field(default_factory=list)
    saved_at: Optional[int] = None

    @field_validator("sub_categories", mode="before")
    @classmethod
    def _sub_category_names(cls, value: Any) -> Any:
        # Older exports wrote sub-categories as {"name": ...} objects
        if not isinstance(value, list):
            return value
        names = []
        for item in value:
            if isinstance(item, dict) and isinstance(item.get("name"), str):
                item = item["name"]
            if isinstance(item, str) and item not in names:
                names.append(item)
            elif not isinstance(item, str):
                raise ValueError(f"sub-category must be a string or {{name}} object, got {item!r}")
        return names


class BackupData(_Model):
    version: str
    timestamp: str
    user_settings: BackupSettings
    parent_categories: list[BackupCategory]
    saved_tabs: list[BackupGroup]


def validate_backup(data: Union[str, bytes, dict]) -> BackupData:
    """
    Parse and validate a backup document.

    Raises:
        ImportValidationError: Not JSON, or not a valid backup
    """
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except json.JSONDecodeError as e:
            raise ImportValidationError([f"not valid JSON: {e}"]) from None
    if not isinstance(data, dict):
        raise ImportValidationError(["backup must be a JSON object"])
    try:
        return BackupData.model_validate(data)
    except pydantic.ValidationError as e:
        messages = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        ]
        raise ImportValidationError(messages) from None


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def build_export(view: StateView, version: str = BACKUP_FORMAT_VERSION) -> dict:
    records = records_by_id(view)
    groups = attach_parent_ids(view, list(view.groups()))
    saved_tabs = []
    for group in groups:
        urls = []
        for url_id in group.url_ids:
            record = records.get(url_id)
            if record is None:
                continue
            entry: dict[str, Any] = {"url": record.url, "title": record.title}
            if record.fav_icon_url:
                entry["favIconUrl"] = record.fav_icon_url
            if url_id in group.url_sub_categories:
                entry["subCategory"] = group.url_sub_categories[url_id]
            entry["savedAt"] = record.saved_at
            urls.append(entry)
        exported = {
            "id": group.id,
            "domain": group.domain,
            "urls": urls,
            "subCategories": list(group.sub_categories),
            "categoryKeywords": [k.to_dict() for k in group.category_keywords],
            "subCategoryOrder": list(group.sub_category_order),
            "subCategoryOrderWithUncategorized": list(group.sub_category_order_with_uncategorized),
        }
        if group.parent_category_id:
            exported["parentCategoryId"] = group.parent_category_id
        if group.saved_at is not None:
            exported["savedAt"] = group.saved_at
        saved_tabs.append(exported)

    return {
        "version": version,
        "timestamp": datetime.fromtimestamp(view.now / 1000, tz=timezone.utc).isoformat(),
        "userSettings": user_settings(view),
        "parentCategories": [
            c.to_dict(include_members=True) for c in with_members(view, view.categories())
        ],
        "savedTabs": saved_tabs,
    }


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

class _Importer:
    """Applies a validated backup to one StateView."""

    def __init__(self, view: StateView, backup: BackupData):
        self.view = view
        self.backup = backup
        self.by_url: dict[str, UrlRecord] = {r.url: r for r in view.records()}
        self.counts = {"added_categories": 0, "added_domains": 0, "merged_domains": 0, "urls": 0}

    # ---- records ----

    def record_for(self, entry: BackupUrl, fallback_saved_at: Optional[int], overwrite: bool) -> UrlRecord:
        record = self.by_url.get(entry.url)
        saved_at = entry.saved_at or entry.timestamp or fallback_saved_at or self.view.now
        if record is None:
            record = UrlRecord(
                id=new_id(), url=entry.url, title=entry.title or entry.url,
                saved_at=saved_at, fav_icon_url=entry.fav_icon_url or None,
            )
            self.view.records().append(record)
            self.by_url[entry.url] = record
            self.view.mark_records()
        elif overwrite:
            record.title = entry.title or record.title
            record.fav_icon_url = entry.fav_icon_url or record.fav_icon_url
            record.saved_at = saved_at
            self.view.mark_records()
        return record

    # ---- categories ----

    def imported_domain_categories(self, id_map: dict[str, str]) -> list[tuple[str, str]]:
        """(domain, local category id) pairs the backup asserts, in priority order."""
        group_domains = {g.id: g.domain for g in self.backup.saved_tabs}
        pairs = []
        for category in self.backup.parent_categories:
            target = id_map.get(category.id, category.id)
            for domain in category.domain_names:
                pairs.append((domain, target))
            for group_id in category.domains:
                if group_id in group_domains:
                    pairs.append((group_domains[group_id], target))
        for group in self.backup.saved_tabs:
            if group.parent_category_id:
                pairs.append((group.domain, id_map.get(group.parent_category_id, group.parent_category_id)))
        return pairs

    def merge_categories(self) -> dict[str, str]:
        """Add unknown categories; returns imported id -> local id."""
        categories = self.view.categories()
        by_id = {c.id: c for c in categories}
        by_name = {c.name.lower(): c for c in categories}
        id_map: dict[str, str] = {}
        for imported in self.backup.parent_categories:
            existing = by_id.get(imported.id)
            same_name = by_name.get(imported.name.lower())
            if existing is not None:
                id_map[imported.id] = existing.id
                if imported.name != existing.name and (same_name is None or same_name is existing):
                    by_name.pop(existing.name.lower(), None)
                    existing.name = imported.name
                    by_name[imported.name.lower()] = existing
                    self.view.mark_categories()
            elif same_name is not None:
                # Same name under another id: fold into the local category
                id_map[imported.id] = same_name.id
            else:
                category = ParentCategory(id=imported.id, name=imported.name)
                categories.append(category)
                by_id[category.id] = category
                by_name[category.name.lower()] = category
                id_map[imported.id] = category.id
                self.counts["added_categories"] += 1
                self.view.mark_categories()

        mappings = self.view.mappings()
        mapped = {m.domain for m in mappings}
        for domain, category_id in self.imported_domain_categories(id_map):
            if domain not in mapped and category_id in by_id:
                mappings.append(DomainParentCategoryMapping(domain=domain, category_id=category_id))
                mapped.add(domain)
                self.view.mark_mappings()
        return id_map

    # ---- groups ----

    def merge_group(self, local: DomainGroup, imported: BackupGroup) -> None:
        for entry in imported.urls:
            record = self.record_for(entry, imported.saved_at, overwrite=False)
            if record.id not in local.url_ids:
                local.url_ids.append(record.id)
                self.counts["urls"] += 1
            if entry.sub_category and record.id not in local.url_sub_categories:
                local.url_sub_categories[record.id] = entry.sub_category

        for name in imported.sub_categories:
            if name not in local.sub_categories:
                local.sub_categories.append(name)
        for name in local.url_sub_categories.values():
            if name not in local.sub_categories:
                local.sub_categories.append(name)

        rules = {r.category_name: r for r in local.category_keywords}
        for kw in imported.category_keywords:
            rule = rules.get(kw.category_name)
            if rule is None:
                rule = SubCategoryKeyword(kw.category_name, [])
                local.category_keywords.append(rule)
                rules[kw.category_name] = rule
            for word in kw.keywords:
                if word not in rule.keywords:
                    rule.keywords.append(word)

        if local.saved_at is not None and imported.saved_at is not None:
            local.saved_at = min(local.saved_at, imported.saved_at)
        elif local.saved_at is None:
            local.saved_at = imported.saved_at

    def new_group(self, imported: BackupGroup, used_ids: set[str], overwrite: bool) -> Optional[DomainGroup]:
        group_id = imported.id if imported.id not in used_ids else new_id()
        group = DomainGroup(
            id=group_id,
            domain=imported.domain,
            sub_categories=list(imported.sub_categories),
            category_keywords=[
                SubCategoryKeyword(k.category_name, list(dict.fromkeys(k.keywords)))
                for k in imported.category_keywords
            ],
            sub_category_order=list(imported.sub_category_order),
            sub_category_order_with_uncategorized=list(imported.sub_category_order_with_uncategorized),
            saved_at=imported.saved_at,
        )
        for entry in imported.urls:
            record = self.record_for(entry, imported.saved_at, overwrite=overwrite)
            if record.id in group.url_ids:
                continue
            group.url_ids.append(record.id)
            self.counts["urls"] += 1
            if entry.sub_category:
                group.url_sub_categories[record.id] = entry.sub_category
                if entry.sub_category not in group.sub_categories:
                    group.sub_categories.append(entry.sub_category)
        if not group.url_ids:
            logger.debug("Skipping imported group %s: no URLs", imported.domain)
            return None
        used_ids.add(group.id)
        return group

    def merge(self) -> None:
        view = self.view
        imported_settings = self.backup.user_settings.model_dump(by_alias=True, exclude_none=True)
        merged = merge_imported_settings(user_settings(view), imported_settings)
        if merged != view.get(USER_SETTINGS_KEY, {}):
            view.put(USER_SETTINGS_KEY, merged)

        self.merge_categories()

        groups = view.groups()
        by_domain = {g.domain: g for g in groups}
        used_ids = {g.id for g in groups}
        for imported in self.backup.saved_tabs:
            local = by_domain.get(imported.domain)
            if local is not None:
                self.merge_group(local, imported)
                self.counts["merged_domains"] += 1
            else:
                group = self.new_group(imported, used_ids, overwrite=False)
                if group is None:
                    continue
                groups.append(group)
                by_domain[group.domain] = group
                self.counts["added_domains"] += 1
        view.mark_groups()

    def replace(self) -> None:
        view = self.view
        names = [c.name.lower() for c in self.backup.parent_categories]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ImportValidationError([f"duplicate category name: {n}" for n in duplicates])

        settings = copy.deepcopy(DEFAULT_USER_SETTINGS)
        settings.update(self.backup.user_settings.model_dump(by_alias=True, exclude_none=True))
        view.put(USER_SETTINGS_KEY, settings)

        view.set_categories([
            ParentCategory(id=c.id, name=c.name) for c in self.backup.parent_categories
        ])
        self.counts["added_categories"] = len(self.backup.parent_categories)
        known = {c.id for c in self.backup.parent_categories}
        mappings: list[DomainParentCategoryMapping] = []
        mapped: set[str] = set()
        for domain, category_id in self.imported_domain_categories({}):
            if domain not in mapped and category_id in known:
                mappings.append(DomainParentCategoryMapping(domain=domain, category_id=category_id))
                mapped.add(domain)
        view.set_mappings(mappings)

        groups: list[DomainGroup] = []
        used_ids: set[str] = set()
        by_domain: dict[str, DomainGroup] = {}
        for imported in self.backup.saved_tabs:
            if imported.domain in by_domain:
                self.merge_group(by_domain[imported.domain], imported)
                continue
            group = self.new_group(imported, used_ids, overwrite=True)
            if group is None:
                continue
            groups.append(group)
            by_domain[group.domain] = group
            self.counts["added_domains"] += 1
        view.set_groups(groups)
        cleanup(view)


class BackupManager:
    """Export to and import from the portable backup document."""

    def __init__(self, mutator: Mutator, version: str = BACKUP_FORMAT_VERSION):
        self._mutator = mutator
        self._version = version

    def export_data(self) -> dict:
        return self._mutator.read(lambda view: build_export(view, self._version))

    def import_data(
        self,
        data: Union[str, bytes, dict],
        mode: Literal["merge", "replace"] = "merge",
    ) -> dict[str, int]:
        """
        Import a backup.

        Args:
            data: Backup document (parsed or raw JSON)
            mode: "merge" unions the backup into the store; "replace"
                overwrites settings, categories and domain groups

        Returns:
            Counts: added_categories, added_domains, merged_domains, urls

        Raises:
            ImportValidationError: The backup is malformed; nothing was written
        """
        if mode not in ("merge", "replace"):
            raise ValidationError(f"Unknown import mode: {mode!r}")
        backup = validate_backup(data)

        def run(view: StateView) -> dict[str, int]:
            importer = _Importer(view, backup)
            if mode == "merge":
                importer.merge()
            else:
                importer.replace()
            return importer.counts

        counts = self._mutator.mutate(run, name=f"import_{mode}")
        logger.info(
            "Imported backup (%s, version %s): %d categories added, %d domains added, "
            "%d domains merged, %d URLs",
            mode, backup.version, counts["added_categories"], counts["added_domains"],
            counts["merged_domains"], counts["urls"],
        )
        return counts
