"""Convert between editor HTML and content item lists.

The browser editor is a contenteditable element whose top-level children are
paragraphs, divs, images and line breaks. Images carry their asset name in
data-filename and an optional pixel width in data-width.
"""
from __future__ import annotations

import re
from pathlib import Path
from typing import Callable, Optional

from bs4 import BeautifulSoup
from bs4.element import Comment, NavigableString, Tag

from .models import ContentItem, ImageItem, Tab, TextItem, UnsavedChoice

AssetUrl = Callable[[Tab, str, str], str]

_LEADING_INT_RE = re.compile(r"^\s*(\d+)")
_LINE_BREAK_RE = re.compile(r"\r?\n")


def _parse_width(value: object) -> Optional[int]:
    m = _LEADING_INT_RE.match(str(value or ""))
    if not m:
        return None
    return int(m.group(1))


def _text_items(text: str) -> list[TextItem]:
    return [TextItem(val=line) for line in _LINE_BREAK_RE.split(text) if line.strip()]


def _image_item(tag: Tag) -> Optional[ImageItem]:
    filename = tag.get("data-filename")
    if not filename:
        return None
    return ImageItem(src=str(filename), width=_parse_width(tag.get("data-width")))


def html_to_content(html: str) -> list[ContentItem]:
    soup = BeautifulSoup(html or "", "html.parser")
    items: list[ContentItem] = []
    for child in soup.contents:
        if isinstance(child, Comment):
            continue
        if isinstance(child, NavigableString):
            items.extend(_text_items(str(child)))
            continue
        if not isinstance(child, Tag):
            continue

        name = (child.name or "").lower()
        if name == "img":
            image = _image_item(child)
            if image is not None:
                items.append(image)
        elif name in ("div", "p"):
            items.extend(_text_items(child.get_text()))
            for img in child.find_all("img"):
                image = _image_item(img)
                if image is not None:
                    items.append(image)
        elif name == "br":
            items.append(TextItem(val="\n"))
    return items


def file_uri(tab: Tab, asset_name: str, path: str) -> str:
    return Path(path).as_uri()


def content_to_html(tab: Tab, asset_url: AssetUrl = file_uri) -> str:
    """Render a tab's content with placeholders for assets not on disk yet.

    Images of a saved tab whose archive has not been extracted get a
    "loading" placeholder; images with no file anywhere are "unavailable".
    """
    soup = BeautifulSoup("", "html.parser")
    for item in tab.content:
        if isinstance(item, TextItem):
            p = soup.new_tag("p")
            p.string = item.val
            soup.append(p)
            continue

        img = soup.new_tag("img")
        img["data-filename"] = item.src
        if item.width:
            img["style"] = f"width: {item.width}px;"
            img["data-width"] = str(item.width)

        path = tab.asset_path(item.src)
        if path:
            img["src"] = asset_url(tab, item.src, path)
        elif tab.file_path and not tab.assets_loaded:
            img["class"] = ["loading"]
            img["alt"] = f"Loading: {item.src}"
        else:
            img["class"] = ["unavailable"]
            img["alt"] = f"Unavailable: {item.src}"
        soup.append(img)
    return str(soup)


class HtmlSurface:
    """Single visible editor backed by an HTML string.

    Holds whatever the front-end last reported as the editor's HTML and
    renders tabs back into HTML. The prompt methods answer from the values
    queued by the caller and fall back to "no answer" (None / cancel).
    """

    def __init__(self, asset_url: AssetUrl = file_uri) -> None:
        self.asset_url = asset_url
        self.html: Optional[str] = None
        self.rendered_tab_id: Optional[str] = None
        self.changed_tab_ids: list[str] = []
        self.next_save_path: Optional[str] = None
        self.next_choice: Optional[UnsavedChoice] = None
        self.last_prompt_titles: list[str] = []

    def serialize_visible_content(self, tab_id: str) -> Optional[list[ContentItem]]:
        if self.html is None or self.rendered_tab_id != tab_id:
            return None
        return html_to_content(self.html)

    def render_content(self, tab: Tab) -> None:
        self.html = content_to_html(tab, self.asset_url)
        self.rendered_tab_id = tab.id

    def show_empty(self) -> None:
        self.html = None
        self.rendered_tab_id = None

    def notify_tab_changed(self, tab_id: str) -> None:
        self.changed_tab_ids.append(tab_id)

    async def prompt_save_path(self, suggested_name: str) -> Optional[str]:
        path, self.next_save_path = self.next_save_path, None
        return path

    async def prompt_unsaved_changes(self, title: str) -> UnsavedChoice:
        return await self.prompt_unsaved_changes_batch([title])

    async def prompt_unsaved_changes_batch(self, titles: list[str]) -> UnsavedChoice:
        self.last_prompt_titles = list(titles)
        choice, self.next_choice = self.next_choice, None
        return choice or UnsavedChoice.CANCEL
