from __future__ import annotations

import re
from pathlib import Path

from .exceptions import UnsafePathError


_TAB_ID_RE = re.compile(r"^tab-[0-9]+-[0-9]+$")


def normalize_tab_id(tab_id: str) -> str:
    """Validate a tab id before it is used as a directory name.

    Tab ids come back from the session file and from HTTP paths, so they are
    checked strictly to keep them from naming anything outside the temp root.
    """
    if not isinstance(tab_id, str):
        raise UnsafePathError("Invalid tab id")
    tab_id = tab_id.strip()
    if not _TAB_ID_RE.match(tab_id):
        raise UnsafePathError("Invalid tab id")
    return tab_id


def is_safe_basename(name: str) -> bool:
    """Allow only simple filenames (no directories)."""
    if not isinstance(name, str) or not name:
        return False
    if name in (".", ".."):
        return False
    if name != Path(name).name:
        return False
    if "/" in name or "\\" in name:
        return False
    return True


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    Used for asset names read from archives, session files and HTTP paths.
    """
    base_dir = Path(base_dir).resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    if base_dir not in resolved.parents:
        raise UnsafePathError("Path traversal attempt")
    return resolved
