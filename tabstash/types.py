"""
Data types for the tab stash.

Every persisted value is a JSON document under a named key in the
key-value store. The dataclasses here are the decoded form; ``to_dict``
produces the stored (camelCase) shape and ``from_dict`` accepts it back,
tolerating the optional fields older stores may lack.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

from .errors import ValidationError


# Storage keys (each an independent document in the KV store)
URLS_KEY = "urls"
SAVED_TABS_KEY = "savedTabs"
CUSTOM_PROJECTS_KEY = "customProjects"
CUSTOM_PROJECT_ORDER_KEY = "customProjectOrder"
PARENT_CATEGORIES_KEY = "parentCategories"
DOMAIN_CATEGORY_SETTINGS_KEY = "domainCategorySettings"
DOMAIN_CATEGORY_MAPPINGS_KEY = "domainCategoryMappings"
URLS_MIGRATION_FLAG = "urlsMigrationCompleted"
CATEGORY_MAPPINGS_FLAG = "categoryMappingsMigrated"
USER_SETTINGS_KEY = "userSettings"

# Sentinel accepted by assign_domain_to_category to clear membership
NO_CATEGORY = "none"

# Display label for URLs without a sub-category
UNCATEGORIZED = "__uncategorized"

MAX_CATEGORY_NAME_LENGTH = 25


def now_ms() -> int:
    """Current time as integer milliseconds since the epoch.

    All ``savedAt``/``createdAt``/``updatedAt`` values are stored in this unit.
    """
    return int(time.time() * 1000)


def extract_domain(url: str) -> Optional[str]:
    """Return the grouping key for a URL: ``scheme://hostname``.

    Returns None for strings that do not parse as an absolute URL.
    """
    if not url:
        return None
    try:
        parsed = urlparse(url.strip())
        hostname = parsed.hostname or ""
    except ValueError:
        return None
    if not parsed.scheme:
        return None
    return f"{parsed.scheme}://{hostname}"


def validate_category_name(name: str, *, kind: str = "category") -> str:
    """Trim and validate a category or project name. Returns the trimmed name."""
    if not isinstance(name, str):
        raise ValidationError(f"{kind} name must be a string")
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError(f"{kind} name must not be empty")
    if len(trimmed) > MAX_CATEGORY_NAME_LENGTH:
        raise ValidationError(
            f"{kind} name must be {MAX_CATEGORY_NAME_LENGTH} characters or fewer: {trimmed!r}"
        )
    return trimmed


def _unique(items) -> list:
    """De-duplicate preserving first occurrence."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


def _str_list(value: Any) -> list[str]:
    if not isinstance(value, list):
        return []
    return [v for v in value if isinstance(v, str)]


@dataclass
class UrlRecord:
    """A canonical, deduplicated URL. ``url`` is the natural key."""
    id: str
    url: str
    title: str
    saved_at: int
    fav_icon_url: Optional[str] = None

    def to_dict(self) -> dict:
        d = {"id": self.id, "url": self.url, "title": self.title, "savedAt": self.saved_at}
        if self.fav_icon_url:
            d["favIconUrl"] = self.fav_icon_url
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "UrlRecord":
        return cls(
            id=d["id"],
            url=d["url"],
            title=d.get("title") or "",
            saved_at=int(d.get("savedAt") or 0),
            fav_icon_url=d.get("favIconUrl"),
        )


@dataclass
class SubCategoryKeyword:
    """Keyword rule: titles containing any keyword belong to ``category_name``."""
    category_name: str
    keywords: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"categoryName": self.category_name, "keywords": list(self.keywords)}

    @classmethod
    def from_dict(cls, d: dict) -> "SubCategoryKeyword":
        return cls(category_name=d["categoryName"], keywords=_str_list(d.get("keywords")))

    def matches(self, title_lower: str) -> bool:
        return any(kw and kw.lower() in title_lower for kw in self.keywords)


@dataclass
class DomainGroup:
    """
    All saved URLs of one domain.

    Invariants maintained by DomainGroupStore:
    - ``url_ids`` has no duplicates and is never empty for a stored group
    - every key of ``url_sub_categories`` is in ``url_ids``

    ``parent_category_id`` is derived from the domain mapping on read and
    is never written back as an independent copy.
    """
    id: str
    domain: str
    url_ids: list[str] = field(default_factory=list)
    url_sub_categories: dict[str, str] = field(default_factory=dict)
    sub_categories: list[str] = field(default_factory=list)
    category_keywords: list[SubCategoryKeyword] = field(default_factory=list)
    sub_category_order: list[str] = field(default_factory=list)
    sub_category_order_with_uncategorized: list[str] = field(default_factory=list)
    saved_at: Optional[int] = None
    parent_category_id: Optional[str] = None
    # Inline entries of the pre-normalization shape, kept until migrated
    legacy_urls: Optional[list[dict]] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "domain": self.domain,
            "urlIds": list(self.url_ids),
            "urlSubCategories": dict(self.url_sub_categories),
            "subCategories": list(self.sub_categories),
            "categoryKeywords": [k.to_dict() for k in self.category_keywords],
            "subCategoryOrder": list(self.sub_category_order),
            "subCategoryOrderWithUncategorized": list(self.sub_category_order_with_uncategorized),
        }
        if self.saved_at is not None:
            d["savedAt"] = self.saved_at
        if self.legacy_urls is not None:
            d["urls"] = self.legacy_urls
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "DomainGroup":
        keywords = [
            SubCategoryKeyword.from_dict(k)
            for k in d.get("categoryKeywords") or []
            if isinstance(k, dict) and isinstance(k.get("categoryName"), str)
        ]
        url_ids = _unique(_str_list(d.get("urlIds")))
        subs = d.get("urlSubCategories")
        if not isinstance(subs, dict):
            subs = {}
        legacy = d.get("urls")
        return cls(
            id=d["id"],
            domain=d["domain"],
            url_ids=url_ids,
            url_sub_categories={k: v for k, v in subs.items() if k in url_ids and v},
            sub_categories=_unique(_str_list(d.get("subCategories"))),
            category_keywords=keywords,
            sub_category_order=_str_list(d.get("subCategoryOrder")),
            sub_category_order_with_uncategorized=_str_list(d.get("subCategoryOrderWithUncategorized")),
            saved_at=d.get("savedAt"),
            parent_category_id=d.get("parentCategoryId"),
            legacy_urls=legacy if isinstance(legacy, list) and legacy else None,
        )


@dataclass
class ProjectUrlMeta:
    """Per-URL notes and category inside one project."""
    notes: Optional[str] = None
    category: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.notes and not self.category

    def to_dict(self) -> dict:
        d = {}
        if self.notes:
            d["notes"] = self.notes
        if self.category:
            d["category"] = self.category
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ProjectUrlMeta":
        return cls(notes=d.get("notes") or None, category=d.get("category") or None)


@dataclass
class Project:
    """A user-defined collection of URLs. ``name`` is unique case-insensitively."""
    id: str
    name: str
    created_at: int
    updated_at: int
    description: Optional[str] = None
    url_ids: list[str] = field(default_factory=list)
    url_metadata: dict[str, ProjectUrlMeta] = field(default_factory=dict)
    categories: list[str] = field(default_factory=list)
    category_order: list[str] = field(default_factory=list)
    legacy_urls: Optional[list[dict]] = None

    def to_dict(self) -> dict:
        d: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "urlIds": list(self.url_ids),
            "urlMetadata": {
                k: v.to_dict() for k, v in self.url_metadata.items() if not v.is_empty()
            },
            "categories": list(self.categories),
            "categoryOrder": list(self.category_order),
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
        if self.description:
            d["description"] = self.description
        if self.legacy_urls is not None:
            d["urls"] = self.legacy_urls
        return d

    @classmethod
    def from_dict(cls, d: dict, *, default_time: int = 0) -> "Project":
        url_ids = _unique(_str_list(d.get("urlIds")))
        meta = d.get("urlMetadata")
        if not isinstance(meta, dict):
            meta = {}
        legacy = d.get("urls")
        return cls(
            id=d["id"],
            name=d["name"],
            created_at=d.get("createdAt") or default_time,
            updated_at=d.get("updatedAt") or default_time,
            description=d.get("description"),
            url_ids=url_ids,
            url_metadata={
                k: ProjectUrlMeta.from_dict(v)
                for k, v in meta.items()
                if k in url_ids and isinstance(v, dict)
            },
            categories=_unique(_str_list(d.get("categories"))),
            category_order=_str_list(d.get("categoryOrder")),
            legacy_urls=legacy if isinstance(legacy, list) and legacy else None,
        )


@dataclass
class ParentCategory:
    """
    A top-level grouping of domains.

    Only ``id`` and ``name`` are stored. Membership lives in the
    domain mappings; ``domain_names`` and ``domains`` (group ids) are
    filled in from them whenever categories are read.
    """
    id: str
    name: str
    domains: list[str] = field(default_factory=list)
    domain_names: list[str] = field(default_factory=list)

    def to_dict(self, *, include_members: bool = False) -> dict:
        d: dict[str, Any] = {"id": self.id, "name": self.name}
        if include_members:
            d["domains"] = list(self.domains)
            d["domainNames"] = list(self.domain_names)
        return d

    @classmethod
    def from_dict(cls, d: dict) -> "ParentCategory":
        return cls(
            id=d["id"],
            name=d["name"],
            domains=_str_list(d.get("domains")),
            domain_names=_str_list(d.get("domainNames")),
        )


@dataclass
class DomainCategorySettings:
    """Category configuration of a domain that outlives its DomainGroup."""
    domain: str
    sub_categories: list[str] = field(default_factory=list)
    category_keywords: list[SubCategoryKeyword] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "domain": self.domain,
            "subCategories": list(self.sub_categories),
            "categoryKeywords": [k.to_dict() for k in self.category_keywords],
        }

    @classmethod
    def from_dict(cls, d: dict) -> "DomainCategorySettings":
        return cls(
            domain=d["domain"],
            sub_categories=_str_list(d.get("subCategories")),
            category_keywords=[
                SubCategoryKeyword.from_dict(k)
                for k in d.get("categoryKeywords") or []
                if isinstance(k, dict) and isinstance(k.get("categoryName"), str)
            ],
        )


@dataclass
class DomainParentCategoryMapping:
    """Authoritative domain -> parent category assignment."""
    domain: str
    category_id: str

    def to_dict(self) -> dict:
        return {"domain": self.domain, "categoryId": self.category_id}

    @classmethod
    def from_dict(cls, d: dict) -> "DomainParentCategoryMapping":
        return cls(domain=d["domain"], category_id=d["categoryId"])


@dataclass(frozen=True)
class TabInfo:
    """A browser tab as handed to save_tabs()."""
    url: str
    title: str = ""
    fav_icon_url: Optional[str] = None
    pinned: bool = False

    @classmethod
    def from_dict(cls, d: dict) -> "TabInfo":
        return cls(
            url=d.get("url") or "",
            title=d.get("title") or "",
            fav_icon_url=d.get("favIconUrl"),
            pinned=bool(d.get("pinned", False)),
        )


@dataclass(frozen=True)
class ProjectUrl:
    """A URL record as seen from inside a project."""
    record: UrlRecord
    notes: Optional[str] = None
    category: Optional[str] = None

    @property
    def url(self) -> str:
        return self.record.url

    @property
    def title(self) -> str:
        return self.record.title
