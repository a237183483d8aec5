"""Runtime collection of open tabs for one editor window.

The registry is the only thing that mutates tabs. It drives the archive
codec, the temp asset store and the session store, and talks to the UI only
through the EditorSurface passed to its constructor.
"""
from __future__ import annotations

import functools
import itertools
import logging
import os
import time
from typing import Optional, Protocol

from . import archive
from .assets import TempAssetStore
from .config import SESSION_DEBOUNCE_SECONDS
from .debounce import Debouncer
from .exceptions import ArchiveFormatError, UnsafePathError
from .models import ContentItem, ImageItem, OperationResult, SessionSnapshot, Tab, UnsavedChoice
from .security import normalize_tab_id
from .session import SessionStore
from .titles import derive_title, get_filename, suggested_save_name

logger = logging.getLogger(__name__)

_tab_counter = itertools.count(1)


def generate_tab_id() -> str:
    return f"tab-{int(time.time() * 1000)}-{next(_tab_counter)}"


def normalize_path(path: str) -> str:
    return os.path.normcase(os.path.abspath(os.path.expanduser(path)))


class EditorSurface(Protocol):
    def serialize_visible_content(self, tab_id: str) -> Optional[list[ContentItem]]: ...

    def render_content(self, tab: Tab) -> None: ...

    def show_empty(self) -> None: ...

    def notify_tab_changed(self, tab_id: str) -> None: ...

    async def prompt_save_path(self, suggested_name: str) -> Optional[str]: ...

    async def prompt_unsaved_changes(self, title: str) -> UnsavedChoice: ...

    async def prompt_unsaved_changes_batch(self, titles: list[str]) -> UnsavedChoice: ...


def _guarded(method):
    """Turn unexpected exceptions into a failed OperationResult."""

    @functools.wraps(method)
    async def wrapper(self, *args, **kwargs):
        try:
            return await method(self, *args, **kwargs)
        except Exception as exc:
            logger.exception("Unexpected error in %s", method.__name__)
            return OperationResult.failure(str(exc) or exc.__class__.__name__, "unexpected")

    return wrapper


class TabRegistry:
    def __init__(
        self,
        surface: EditorSurface,
        assets: TempAssetStore,
        session_store: Optional[SessionStore] = None,
        debounce_seconds: float = SESSION_DEBOUNCE_SECONDS,
    ) -> None:
        self.surface = surface
        self.assets = assets
        # Only the window that owns the session file has a store attached.
        self.session_store = session_store
        self.tabs: dict[str, Tab] = {}
        self.tab_order: list[str] = []
        self.active_tab_id: Optional[str] = None
        self._persist = Debouncer(debounce_seconds, name="session")
        self._full_write_pending = False
        self._dirty_tab_ids: set[str] = set()

    # ------------------------------------------------------------------
    # Queries

    @property
    def active_tab(self) -> Optional[Tab]:
        if self.active_tab_id is None:
            return None
        return self.tabs.get(self.active_tab_id)

    def ordered_tabs(self) -> list[Tab]:
        return [self.tabs[tab_id] for tab_id in self.tab_order]

    def find_by_path(self, path: str) -> Optional[Tab]:
        wanted = normalize_path(path)
        for tab in self.tabs.values():
            if tab.file_path and normalize_path(tab.file_path) == wanted:
                return tab
        return None

    def dirty_tabs(self) -> list[Tab]:
        return [tab for tab in self.ordered_tabs() if tab.modified]

    # ------------------------------------------------------------------
    # Lifecycle

    @_guarded
    async def create_tab(self, content: Optional[list[ContentItem]] = None) -> OperationResult:
        tab_id = generate_tab_id()
        while tab_id in self.tabs:
            tab_id = generate_tab_id()
        self.assets.allocate(tab_id)
        tab = Tab(id=tab_id, content=list(content or []))
        tab.title = derive_title(tab)
        self._insert(tab)
        await self.switch_to(tab_id)
        return OperationResult.success(tab_id)

    @_guarded
    async def open_file(self, path: str) -> OperationResult:
        existing = self.find_by_path(path)
        if existing is not None:
            await self.switch_to(existing.id)
            return OperationResult.success(existing.id)

        file_path = os.path.abspath(os.path.expanduser(path))
        try:
            contents = await archive.read_structured_content(file_path)
        except ArchiveFormatError as exc:
            logger.warning("Failed to open %s: %s", file_path, exc)
            return OperationResult.failure(str(exc), "format")
        except OSError as exc:
            logger.warning("Failed to open %s: %s", file_path, exc)
            return OperationResult.failure(str(exc), "io")

        tab_id = generate_tab_id()
        while tab_id in self.tabs:
            tab_id = generate_tab_id()
        self.assets.allocate(tab_id)
        tab = Tab(
            id=tab_id,
            file_path=file_path,
            title=get_filename(file_path),
            content=list(contents.content),
            archive_metadata=dict(contents.metadata),
        )
        self._insert(tab)
        await self.switch_to(tab_id)
        return OperationResult.success(tab_id)

    @_guarded
    async def switch_to(self, tab_id: str) -> OperationResult:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return OperationResult.failure(f"Unknown tab {tab_id}", "unknown")
        if self.active_tab_id == tab_id:
            return OperationResult.success(tab_id)

        self._capture_active()
        previous = self.active_tab_id
        self.active_tab_id = tab_id

        self.surface.render_content(tab)
        if tab.file_path and not tab.assets_loaded:
            await self._load_assets(tab)
            # Another switch may have happened while extracting.
            if self.active_tab_id == tab_id:
                self.surface.render_content(tab)

        if previous is not None and previous in self.tabs:
            self.surface.notify_tab_changed(previous)
        self.surface.notify_tab_changed(tab_id)
        self._request_persist()
        return OperationResult.success(tab_id)

    @_guarded
    async def save(self, tab_id: Optional[str] = None, save_as: bool = False) -> OperationResult:
        tab_id = tab_id or self.active_tab_id
        tab = self.tabs.get(tab_id) if tab_id else None
        if tab is None:
            return OperationResult.failure("No tab to save", "unknown")

        target = tab.file_path
        if target is None or save_as:
            target = await self.surface.prompt_save_path(suggested_save_name(tab))
            if not target:
                return OperationResult.failure("Save cancelled", "cancelled", tab_id)
            target = os.path.abspath(os.path.expanduser(target))

        if tab_id == self.active_tab_id:
            self._capture_active()
        if tab.file_path and not tab.assets_loaded:
            # Committed images live only in the old archive until extracted.
            await self._load_assets(tab)

        try:
            await archive.write_archive(tab.content, tab.asset_map(), target, metadata=tab.archive_metadata)
        except OSError as exc:
            logger.warning("Failed to save %s: %s", target, exc)
            return OperationResult.failure(str(exc), "io", tab_id)

        tab.file_path = target
        tab.title = get_filename(target)
        tab.modified = False
        tab.committed_assets.update(tab.pending_assets)
        tab.pending_assets.clear()
        tab.assets_loaded = True
        self.surface.notify_tab_changed(tab_id)
        self._request_persist()
        return OperationResult.success(tab_id)

    @_guarded
    async def close_tab(self, tab_id: str, force: bool = False) -> OperationResult:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return OperationResult.failure(f"Unknown tab {tab_id}", "unknown")

        if tab.modified and not force:
            choice = await self.surface.prompt_unsaved_changes(tab.title)
            if choice == UnsavedChoice.CANCEL:
                return OperationResult.failure("Close cancelled", "cancelled", tab_id)
            if choice == UnsavedChoice.SAVE:
                result = await self.save(tab_id)
                if not result.ok:
                    return result

        self.assets.release(tab_id)
        del self.tabs[tab_id]
        self.tab_order.remove(tab_id)
        self._dirty_tab_ids.discard(tab_id)

        if self.active_tab_id == tab_id:
            self.active_tab_id = None
            if self.tab_order:
                await self.switch_to(self.tab_order[0])
            else:
                self.surface.show_empty()
        self.surface.notify_tab_changed(tab_id)
        self._request_persist()
        return OperationResult.success(tab_id)

    # ------------------------------------------------------------------
    # Edits

    def mark_modified(self, tab_id: Optional[str] = None) -> None:
        """Record an edit made directly in the visible editor."""
        tab_id = tab_id or self.active_tab_id
        tab = self.tabs.get(tab_id) if tab_id else None
        if tab is None:
            return
        if tab_id == self.active_tab_id:
            self._capture_active()
        self._after_edit(tab)

    def update_content(self, tab_id: str, content: list[ContentItem]) -> OperationResult:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return OperationResult.failure(f"Unknown tab {tab_id}", "unknown")
        tab.content = list(content)
        if tab_id == self.active_tab_id:
            self.surface.render_content(tab)
        self._after_edit(tab)
        return OperationResult.success(tab_id)

    def paste_image(
        self,
        tab_id: str,
        data: bytes,
        content_type: Optional[str] = None,
        width: Optional[int] = None,
    ) -> OperationResult:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return OperationResult.failure(f"Unknown tab {tab_id}", "unknown")
        if tab_id == self.active_tab_id:
            self._capture_active()
        try:
            stored = self.assets.write_asset(tab_id, data, content_type)
        except OSError as exc:
            logger.warning("Failed to store pasted image for %s: %s", tab_id, exc)
            return OperationResult.failure(str(exc), "io", tab_id)
        tab.pending_assets[stored.asset_name] = stored.path
        tab.content.append(ImageItem(src=stored.asset_name, width=width))
        if tab_id == self.active_tab_id:
            self.surface.render_content(tab)
        self._after_edit(tab)
        return OperationResult(ok=True, tab_id=tab_id, asset_name=stored.asset_name)

    def set_image_width(self, tab_id: str, asset_name: str, width: int) -> OperationResult:
        tab = self.tabs.get(tab_id)
        if tab is None:
            return OperationResult.failure(f"Unknown tab {tab_id}", "unknown")
        if tab_id == self.active_tab_id:
            self._capture_active()
        images = [item for item in tab.content if isinstance(item, ImageItem) and item.src == asset_name]
        if not images:
            return OperationResult.failure(f"No image {asset_name}", "unknown", tab_id)
        for item in images:
            item.width = width
        if tab_id == self.active_tab_id:
            self.surface.render_content(tab)
        self._after_edit(tab)
        return OperationResult.success(tab_id)

    def move_tab(self, tab_id: str, target_id: str, before: bool = True) -> bool:
        """Reorder by drag and drop: put tab_id before or after target_id."""
        if tab_id == target_id or tab_id not in self.tabs or target_id not in self.tabs:
            return False
        self.tab_order.remove(tab_id)
        index = self.tab_order.index(target_id)
        if not before:
            index += 1
        self.tab_order.insert(index, tab_id)
        self._request_persist()
        return True

    # ------------------------------------------------------------------
    # Session persistence

    def snapshot(self) -> SessionSnapshot:
        self._capture_active()
        views = []
        for tab in self.ordered_tabs():
            temp_image_data = None
            if tab.is_draft and tab.pending_assets:
                temp_image_data = self.assets.read_assets_as_base64(tab.id, list(tab.pending_assets))
            views.append(tab.persisted_view(temp_image_data))
        return SessionSnapshot(tabs=views, tab_order=list(self.tab_order), active_tab_id=self.active_tab_id)

    async def flush_session(self) -> None:
        """Write a full snapshot now instead of waiting for the debounce."""
        if self.session_store is None:
            return
        self._full_write_pending = True
        if not self._persist.pending:
            self._persist.schedule(self._write_session)
        await self._persist.flush_now()

    def cancel_pending_persist(self) -> None:
        self._persist.cancel_pending()
        self._full_write_pending = False
        self._dirty_tab_ids.clear()

    @_guarded
    async def restore_session(self) -> OperationResult:
        """Rebuild tabs from the session file, the legacy list, or a blank tab."""
        snapshot = self.session_store.load_full() if self.session_store else None
        if snapshot is None or not snapshot.tabs:
            legacy = self.session_store.load_legacy() if self.session_store else []
            opened = False
            for path in legacy:
                result = await self.open_file(path)
                opened = opened or result.ok
            if not opened:
                await self.create_tab()
            return OperationResult.success(self.active_tab_id)

        for saved in snapshot.tabs:
            try:
                tab_id = normalize_tab_id(saved.id)
            except UnsafePathError:
                logger.warning("Skipping persisted tab with invalid id %r", saved.id)
                continue
            if tab_id in self.tabs:
                continue
            self.assets.allocate(tab_id)
            tab = Tab(
                id=tab_id,
                file_path=saved.file_path,
                title=saved.title,
                modified=saved.modified,
                content=list(saved.content),
            )
            if saved.temp_image_data:
                tab.pending_assets = self.assets.restore_assets_from_base64(tab_id, saved.temp_image_data)
            self.tabs[tab_id] = tab

        order = [tab_id for tab_id in snapshot.tab_order if tab_id in self.tabs]
        order = list(dict.fromkeys(order))
        order += [tab_id for tab_id in self.tabs if tab_id not in order]
        self.tab_order = order

        if not self.tab_order:
            await self.create_tab()
            return OperationResult.success(self.active_tab_id)

        active_id = snapshot.active_tab_id if snapshot.active_tab_id in self.tabs else self.tab_order[0]
        await self.switch_to(active_id)
        return OperationResult.success(active_id)

    async def shutdown(self, persist: bool = True) -> None:
        """Flush (or drop) pending session writes and release every temp dir."""
        if persist:
            await self.flush_session()
        else:
            self.cancel_pending_persist()
        for tab_id in list(self.tabs):
            self.assets.release(tab_id)

    # ------------------------------------------------------------------
    # Internals

    def _insert(self, tab: Tab) -> None:
        self.tabs[tab.id] = tab
        self.tab_order.append(tab.id)

    def _capture_active(self) -> None:
        tab = self.active_tab
        if tab is None:
            return
        live = self.surface.serialize_visible_content(tab.id)
        if live is not None:
            tab.content = list(live)

    def _after_edit(self, tab: Tab) -> None:
        tab.modified = True
        if tab.is_draft:
            tab.title = derive_title(tab)
        self.surface.notify_tab_changed(tab.id)
        self._request_persist(tab.id)

    async def _load_assets(self, tab: Tab) -> bool:
        dest = self.assets.allocate(tab.id)
        try:
            extracted = await archive.extract_assets(tab.file_path, dest)
        except (ArchiveFormatError, OSError) as exc:
            logger.warning("Could not load images for %s: %s", tab.file_path, exc)
            return False
        for name, path in extracted.items():
            if name not in tab.pending_assets:
                tab.committed_assets[name] = path
        tab.assets_loaded = True
        return True

    def _request_persist(self, tab_id: Optional[str] = None) -> None:
        if self.session_store is None:
            return
        if tab_id is None:
            self._full_write_pending = True
        else:
            self._dirty_tab_ids.add(tab_id)
        self._persist.schedule(self._write_session)

    async def _write_session(self) -> None:
        store = self.session_store
        if store is None:
            return
        full, self._full_write_pending = self._full_write_pending, False
        dirty, self._dirty_tab_ids = self._dirty_tab_ids, set()
        if full:
            store.save_full(self.snapshot())
            return
        self._capture_active()
        for tab_id in dirty:
            tab = self.tabs.get(tab_id)
            if tab is None:
                continue
            temp_image_data = None
            if tab.is_draft and tab.pending_assets:
                temp_image_data = self.assets.read_assets_as_base64(tab.id, list(tab.pending_assets))
            store.save_tab_incremental(tab.persisted_view(temp_image_data))
