"""Read and write .txti archives.

A .txti file is a ZIP with one content.json entry ({"content": [...]} plus any
extra metadata keys) and the referenced images under assets/.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from pydantic import ValidationError

from .config import ASSETS_PREFIX, CONTENT_ENTRY
from .exceptions import ArchiveFormatError, UnsafePathError
from .models import ContentItem, dump_content, parse_content
from .security import is_safe_basename, safe_join

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArchiveContents:
    content: list[ContentItem]
    asset_names: list[str]
    metadata: dict[str, Any] = field(default_factory=dict)  # unrecognised top-level keys


def _asset_members(zf: zipfile.ZipFile) -> list[zipfile.ZipInfo]:
    members = []
    prefix = f"{ASSETS_PREFIX}/"
    for info in zf.infolist():
        if info.is_dir() or not info.filename.startswith(prefix):
            continue
        name = info.filename[len(prefix):]
        if not is_safe_basename(name):
            # Nested or traversal-looking names are never extracted.
            logger.warning("Skipping unsafe asset entry %r", info.filename)
            continue
        members.append(info)
    return members


def _open_zip(path: Path) -> zipfile.ZipFile:
    try:
        return zipfile.ZipFile(path)
    except zipfile.BadZipFile as exc:
        raise ArchiveFormatError(f"{path.name} is not a .txti document") from exc


def _parse_payload(raw: bytes) -> tuple[list[ContentItem], dict[str, Any]]:
    try:
        payload = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise ArchiveFormatError(f"{CONTENT_ENTRY} is not valid JSON") from exc

    metadata: dict[str, Any] = {}
    if isinstance(payload, list):
        # Early versions stored the bare item list.
        items = payload
    elif isinstance(payload, dict) and isinstance(payload.get("content"), list):
        items = payload["content"]
        metadata = {k: v for k, v in payload.items() if k != "content"}
    else:
        raise ArchiveFormatError(f"{CONTENT_ENTRY} has no content list")

    try:
        return parse_content(items), metadata
    except ValidationError as exc:
        raise ArchiveFormatError(f"{CONTENT_ENTRY} contains invalid items") from exc


def read_structured_content_sync(path: str | os.PathLike) -> ArchiveContents:
    path = Path(path)
    with _open_zip(path) as zf:
        try:
            raw = zf.read(CONTENT_ENTRY)
        except KeyError as exc:
            raise ArchiveFormatError(f"Invalid .txti file: missing {CONTENT_ENTRY}") from exc
        except zipfile.BadZipFile as exc:
            raise ArchiveFormatError(f"{path.name} is corrupt") from exc
        content, metadata = _parse_payload(raw)
        names = [Path(info.filename).name for info in _asset_members(zf)]
    return ArchiveContents(content=content, asset_names=names, metadata=metadata)


async def read_structured_content(path: str | os.PathLike) -> ArchiveContents:
    """Read content.json and list asset names without extracting any bytes.

    Raises ArchiveFormatError for foreign/corrupt files and OSError when the
    file cannot be read.
    """
    return await asyncio.to_thread(read_structured_content_sync, path)


def _extract_one(path: Path, member: str, dest: Path) -> None:
    # Each worker opens its own handle; ZipFile objects are not shared across threads.
    with zipfile.ZipFile(path) as zf:
        data = zf.read(member)
    dest.write_bytes(data)


async def extract_assets(path: str | os.PathLike, dest_dir: str | os.PathLike) -> dict[str, str]:
    """Extract every asset into dest_dir concurrently.

    Returns asset name -> absolute path for each asset that was written. A
    failing asset is logged and left out; only an unreadable archive raises.
    """
    path = Path(path)
    dest_dir = Path(dest_dir)
    await asyncio.to_thread(dest_dir.mkdir, parents=True, exist_ok=True)

    def _list_members() -> list[str]:
        with _open_zip(path) as zf:
            return [info.filename for info in _asset_members(zf)]

    members = await asyncio.to_thread(_list_members)

    jobs = []
    targets = []
    for member in members:
        name = Path(member).name
        try:
            dest = safe_join(dest_dir, name)
        except UnsafePathError:
            logger.warning("Skipping asset with unsafe name %r", name)
            continue
        targets.append((name, dest))
        jobs.append(asyncio.to_thread(_extract_one, path, member, dest))

    results = await asyncio.gather(*jobs, return_exceptions=True)

    extracted: dict[str, str] = {}
    for (name, dest), result in zip(targets, results):
        if isinstance(result, BaseException):
            logger.warning("Failed to extract asset %s from %s: %s", name, path, result)
            continue
        extracted[name] = str(dest)
    return extracted


def write_archive_sync(
    content: list[ContentItem],
    asset_map: dict[str, str],
    output_path: str | os.PathLike,
    metadata: Optional[dict[str, Any]] = None,
) -> list[str]:
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    payload: dict[str, Any] = dict(metadata or {})
    payload["content"] = dump_content(content)

    written: list[str] = []
    fd, tmp_name = tempfile.mkstemp(prefix=f".{output_path.name}.", suffix=".tmp", dir=output_path.parent)
    os.close(fd)
    tmp_path = Path(tmp_name)
    try:
        with zipfile.ZipFile(tmp_path, mode="w", compression=zipfile.ZIP_DEFLATED) as zf:
            zf.writestr(CONTENT_ENTRY, json.dumps(payload, indent=2, ensure_ascii=False))
            for asset_name, source_path in asset_map.items():
                if not is_safe_basename(asset_name):
                    logger.warning("Skipping asset with unsafe name %r", asset_name)
                    continue
                try:
                    data = Path(source_path).read_bytes()
                except OSError as exc:
                    logger.warning("Failed to read image %s: %s", source_path, exc)
                    continue
                zf.writestr(f"{ASSETS_PREFIX}/{asset_name}", data)
                written.append(asset_name)
        os.replace(tmp_path, output_path)
    except BaseException:
        tmp_path.unlink(missing_ok=True)
        raise
    return written


async def write_archive(
    content: list[ContentItem],
    asset_map: dict[str, str],
    output_path: str | os.PathLike,
    metadata: Optional[dict[str, Any]] = None,
) -> list[str]:
    """Write a fresh archive atomically; returns the asset names included.

    Unreadable asset sources are skipped with a warning. The archive is built
    next to output_path and moved into place, so a failed write leaves any
    previous file untouched.
    """
    return await asyncio.to_thread(write_archive_sync, content, asset_map, output_path, metadata)
