from __future__ import annotations

import copy
import json
import logging
from pathlib import Path
from typing import Any

from .config import DEFAULT_WINDOW_BOUNDS, SETTINGS_FILE
from .fileio import read_json, write_json_atomic

logger = logging.getLogger(__name__)


DEFAULT_SETTINGS: dict[str, Any] = {
    "lineFeed": "LF",
    "autoIndent": True,
    "indentChar": "tab",
    "tabSize": 8,
    "indentSize": 8,
    "wordWrap": True,
    "defaultImageWidth": None,
}


class SettingsStore:
    """Editor preferences in a flat JSON object merged over DEFAULT_SETTINGS.

    Values are not validated; unknown keys round-trip untouched.
    """

    def __init__(self, path: Path = SETTINGS_FILE) -> None:
        self.path = Path(path)

    def load(self) -> dict[str, Any]:
        settings = copy.deepcopy(DEFAULT_SETTINGS)
        if not self.path.exists():
            return settings
        try:
            saved = read_json(self.path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read settings %s: %s", self.path, exc)
            return settings
        if not isinstance(saved, dict):
            logger.error("Settings root must be an object; using defaults")
            return settings
        settings.update(saved)
        return settings

    def save(self, partial: dict[str, Any]) -> bool:
        merged = self.load()
        merged.update(partial)
        try:
            write_json_atomic(self.path, merged)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save settings %s: %s", self.path, exc)
            return False
        return True

    def get_window_bounds(self) -> dict[str, int]:
        bounds = self.load().get("windowBounds")
        if isinstance(bounds, dict) and "width" in bounds and "height" in bounds:
            return dict(bounds)
        return dict(DEFAULT_WINDOW_BOUNDS)

    def save_window_bounds(self, bounds: dict[str, int]) -> bool:
        return self.save({"windowBounds": dict(bounds)})
