"""Per-tab scratch directories for images not yet committed to an archive."""
from __future__ import annotations

import base64
import binascii
import logging
import re
import shutil
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from .config import ALLOWED_IMAGE_EXTS, TEMP_ROOT
from .exceptions import UnsafePathError
from .security import is_safe_basename, normalize_tab_id, safe_join

logger = logging.getLogger(__name__)

_TAB_DIR_RE = re.compile(r"^tab-[0-9]+-[0-9]+$")


@dataclass(frozen=True)
class StoredAsset:
    asset_name: str
    path: str


def guess_extension_from_content_type(content_type: Optional[str]) -> str:
    if not content_type:
        return ".png"
    ct = content_type.split(";")[0].strip().lower()
    return {
        "image/png": ".png",
        "image/jpeg": ".jpg",
        "image/jpg": ".jpg",
        "image/gif": ".gif",
        "image/webp": ".webp",
        "image/svg+xml": ".svg",
    }.get(ct, ".png")


class TempAssetStore:
    """Owns TEMP_ROOT/<tab id>/ for every live tab.

    Directories map one-to-one onto tab ids; nothing else writes into them.
    """

    def __init__(self, root: Path = TEMP_ROOT) -> None:
        self.root = Path(root).resolve()
        self._dirs: dict[str, Path] = {}

    @property
    def allocated_ids(self) -> list[str]:
        return list(self._dirs)

    def allocate(self, tab_id: str) -> Path:
        tab_id = normalize_tab_id(tab_id)
        tab_dir = self._dirs.get(tab_id)
        if tab_dir is None:
            tab_dir = safe_join(self.root, tab_id)
            self._dirs[tab_id] = tab_dir
        tab_dir.mkdir(parents=True, exist_ok=True)
        return tab_dir

    def directory(self, tab_id: str) -> Optional[Path]:
        return self._dirs.get(tab_id)

    def release(self, tab_id: str) -> None:
        tab_dir = self._dirs.pop(tab_id, None)
        if tab_dir is not None and tab_dir.exists():
            shutil.rmtree(tab_dir, ignore_errors=True)

    def release_all(self) -> int:
        released = 0
        for tab_id in list(self._dirs):
            self.release(tab_id)
            released += 1
        return released

    def write_asset(self, tab_id: str, data: bytes, content_type: Optional[str] = None) -> StoredAsset:
        """Store pasted image bytes under a fresh <uuid4>.<ext> name."""
        tab_dir = self.allocate(tab_id)
        ext = guess_extension_from_content_type(content_type)
        if ext not in ALLOWED_IMAGE_EXTS:
            ext = ".png"
        asset_name = f"{uuid.uuid4()}{ext}"
        dest = safe_join(tab_dir, asset_name)
        dest.write_bytes(data)
        return StoredAsset(asset_name=asset_name, path=str(dest))

    def read_assets_as_base64(self, tab_id: str, asset_names: Iterable[str]) -> dict[str, str]:
        tab_dir = self._dirs.get(tab_id)
        if tab_dir is None:
            return {}
        encoded: dict[str, str] = {}
        for name in asset_names:
            if not is_safe_basename(name):
                continue
            path = tab_dir / name
            try:
                encoded[name] = base64.b64encode(path.read_bytes()).decode("ascii")
            except OSError as exc:
                logger.warning("Pending asset %s unavailable for tab %s: %s", name, tab_id, exc)
        return encoded

    def restore_assets_from_base64(self, tab_id: str, image_data: dict[str, str]) -> dict[str, str]:
        tab_dir = self.allocate(tab_id)
        restored: dict[str, str] = {}
        for name, encoded in image_data.items():
            try:
                dest = safe_join(tab_dir, name)
                dest.write_bytes(base64.b64decode(encoded, validate=True))
            except (UnsafePathError, binascii.Error, ValueError, OSError) as exc:
                logger.warning("Could not restore asset %s for tab %s: %s", name, tab_id, exc)
                continue
            restored[name] = str(dest)
        return restored

    def sweep(self, except_ids: Iterable[str] = ()) -> int:
        """Delete tab directories under root that belong to no live tab.

        Only directories named like tab ids are touched. Returns the number
        deleted.
        """
        keep = set(except_ids) | set(self._dirs)
        if not self.root.exists():
            return 0
        deleted = 0
        for child in self.root.iterdir():
            if not child.is_dir() or child.name in keep:
                continue
            if not _TAB_DIR_RE.match(child.name):
                continue
            shutil.rmtree(child, ignore_errors=True)
            deleted += 1
        return deleted
