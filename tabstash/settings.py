"""
User settings stored under the ``userSettings`` key.

The engine consumes a few of these (exclude patterns, pinned-tab
handling, the auto-delete period); the rest belong to the UI and are
carried through untouched.
"""

import copy
import logging
from typing import Any

from .mutator import Mutator, StateView
from .types import USER_SETTINGS_KEY

logger = logging.getLogger(__name__)

DEFAULT_USER_SETTINGS: dict[str, Any] = {
    "removeTabAfterOpen": True,
    "excludePatterns": ["chrome-extension://", "chrome://"],
    "enableCategories": True,
    "autoDeletePeriod": "never",
    "showSavedTime": False,
    "clickBehavior": "saveSameDomainTabs",
    "excludePinnedTabs": True,
    "openUrlInBackground": True,
    "openAllInNewWindow": False,
    "confirmDeleteAll": False,
    "confirmDeleteEach": False,
    "colors": {},
}


def user_settings(view: StateView) -> dict[str, Any]:
    """Stored settings merged over the defaults."""
    stored = view.get(USER_SETTINGS_KEY, {})
    merged = copy.deepcopy(DEFAULT_USER_SETTINGS)
    if isinstance(stored, dict):
        merged.update(stored)
    return merged


def merge_imported_settings(local: dict[str, Any], imported: dict[str, Any]) -> dict[str, Any]:
    """Imported keys win, except that exclude patterns are unioned."""
    merged = {**local, **imported}
    patterns = list(local.get("excludePatterns") or [])
    for pattern in imported.get("excludePatterns") or []:
        if pattern not in patterns:
            patterns.append(pattern)
    merged["excludePatterns"] = patterns
    return merged


class SettingsStore:
    """Read and write the ``userSettings`` document."""

    def __init__(self, mutator: Mutator):
        self._mutator = mutator

    def get_user_settings(self) -> dict[str, Any]:
        return self._mutator.read(user_settings)

    def save_user_settings(self, settings: dict[str, Any]) -> None:
        """Replace the stored settings wholesale."""
        def run(view: StateView) -> None:
            view.put(USER_SETTINGS_KEY, dict(settings))
        self._mutator.mutate(run, name="save_user_settings")

    def update_user_settings(self, **changes: Any) -> dict[str, Any]:
        """Change individual settings, keeping everything else."""
        def run(view: StateView) -> dict[str, Any]:
            merged = user_settings(view)
            merged.update(changes)
            if merged != view.get(USER_SETTINGS_KEY, {}):
                view.put(USER_SETTINGS_KEY, merged)
            return merged

        result = self._mutator.mutate(run, name="update_user_settings")
        logger.info("Updated settings: %s", ", ".join(sorted(changes)))
        return result
