from __future__ import annotations

import re
from typing import Optional

from .config import ARCHIVE_EXTENSION, DRAFT_TITLE_MAX, HEADER_TITLE_MAX, TAB_TITLE_MAX, UNTITLED
from .models import Tab, content_text


MODIFIED_MARK = "●"


def get_filename(file_path: Optional[str]) -> str:
    if not file_path:
        return UNTITLED
    return re.split(r"[/\\]", file_path)[-1] or UNTITLED


def truncate_title(title: str, max_length: int) -> str:
    """Cut a title to max_length characters.

    Names ending in .txti keep the extension behind a hyphen, so with a limit
    of 15 "verylongfilename.txti" becomes "verylongf-.txti".
    """
    if len(title) <= max_length:
        return title
    ext = ARCHIVE_EXTENSION
    if title.endswith(ext):
        max_basename = max(0, max_length - 1 - len(ext))
        basename = title[: -len(ext)]
        return f"{basename[:max_basename]}-{ext}"
    return title[:max_length]


def truncate_tab_title(title: str) -> str:
    return truncate_title(title, TAB_TITLE_MAX)


def truncate_header_title(title: str) -> str:
    return truncate_title(title, HEADER_TITLE_MAX)


def draft_title_from_text(text: str) -> str:
    for line in (text or "").splitlines():
        stripped = line.strip()
        if stripped:
            return stripped[:DRAFT_TITLE_MAX]
    return UNTITLED


def draft_title_from_content(content: list) -> str:
    return draft_title_from_text(content_text(content))


def derive_title(tab: Tab) -> str:
    if tab.file_path:
        return get_filename(tab.file_path)
    return draft_title_from_content(tab.content)


def format_directory_path(file_path: Optional[str]) -> str:
    """Return the last two directory segments of a path, e.g. "docs/notes/"."""
    if not file_path:
        return "Draft"
    parts = file_path.replace("\\", "/").split("/")
    parts.pop()
    if not parts:
        return ""
    relevant = parts[-2:]
    return "/".join(relevant) + "/"


def header_text(tab: Tab) -> str:
    """Header readout: "Draft - <title>" for drafts, "<dir>/<name>" otherwise."""
    if tab.file_path:
        text = format_directory_path(tab.file_path) + truncate_header_title(get_filename(tab.file_path))
    else:
        text = f"Draft - {truncate_header_title(tab.title)}"
    if tab.modified:
        text = f"{text} {MODIFIED_MARK}"
    return text


def suggested_save_name(tab: Tab) -> str:
    if tab.file_path:
        return tab.file_path
    if tab.title == UNTITLED:
        return f"{UNTITLED}{ARCHIVE_EXTENSION}"
    name = tab.title
    if not name.endswith(ARCHIVE_EXTENSION):
        name += ARCHIVE_EXTENSION
    return name
