"""The session file: which tabs were open, in what order, with what content.

Two shapes share one file. The legacy shape lists paths only:
    {"openFiles": [...], "savedAt": ...}
The full shape describes every tab:
    {"tabs": [...], "tabOrder": [...], "activeTabId": ..., "savedAt": ...}
A "tabs" key marks the full shape.
"""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .config import SESSION_FILE
from .fileio import read_json, write_json_atomic
from .models import PersistedTab, SessionSnapshot

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SessionStore:
    def __init__(self, path: Path = SESSION_FILE) -> None:
        self.path = Path(path)

    def _read(self) -> Optional[dict[str, Any]]:
        if not self.path.exists():
            return None
        try:
            data = read_json(self.path)
        except (OSError, json.JSONDecodeError) as exc:
            logger.error("Failed to read session %s: %s", self.path, exc)
            return None
        if not isinstance(data, dict):
            logger.error("Session root must be an object: %s", self.path)
            return None
        return data

    def _write(self, payload: dict[str, Any]) -> bool:
        try:
            write_json_atomic(self.path, payload)
        except (OSError, TypeError, ValueError) as exc:
            logger.error("Failed to save session %s: %s", self.path, exc)
            return False
        return True

    def load_legacy(self) -> list[str]:
        data = self._read()
        if data is None:
            return []
        files = data.get("openFiles")
        if not isinstance(files, list):
            return []
        return [f for f in files if isinstance(f, str) and f]

    def save_legacy(self, file_paths: list[str]) -> bool:
        return self._write({"openFiles": list(file_paths), "savedAt": _now_iso()})

    def load_full(self) -> Optional[SessionSnapshot]:
        """Return the full snapshot, or None when there is nothing to restore.

        None covers a missing or corrupt file and the legacy shape; callers
        then fall back to load_legacy() or a blank tab.
        """
        data = self._read()
        if data is None or "tabs" not in data:
            return None
        try:
            return SessionSnapshot.model_validate(data)
        except ValidationError as exc:
            logger.error("Session file %s has an invalid snapshot: %s", self.path, exc)
            return None

    def save_full(self, snapshot: SessionSnapshot) -> bool:
        payload = snapshot.to_json_dict()
        payload["savedAt"] = _now_iso()
        return self._write(payload)

    def save_tab_incremental(self, tab_view: PersistedTab) -> bool:
        """Upsert one tab into the persisted snapshot without touching the rest."""
        session = self._read() or {}
        tabs = session.get("tabs")
        if not isinstance(tabs, list):
            tabs = []
        tab_data = tab_view.to_json_dict()
        for index, existing in enumerate(tabs):
            if isinstance(existing, dict) and existing.get("id") == tab_view.id:
                tabs[index] = tab_data
                break
        else:
            tabs.append(tab_data)
        session["tabs"] = tabs
        session["savedAt"] = _now_iso()
        return self._write(session)
