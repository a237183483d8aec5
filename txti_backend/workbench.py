"""Process-wide application state: stores, windows, and session ownership."""
from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from .assets import TempAssetStore
from .close import CloseCoordinator, CloseOutcome
from .config import SESSION_DEBOUNCE_SECONDS, WINDOW_BOUNDS_DEBOUNCE_SECONDS, WINDOW_CASCADE_OFFSET
from .debounce import Debouncer
from .registry import EditorSurface, TabRegistry
from .session import SessionStore
from .settings import SettingsStore

logger = logging.getLogger(__name__)

SurfaceFactory = Callable[[str], EditorSurface]


def cascade_bounds(bounds: dict[str, Any], open_windows: int) -> dict[str, Any]:
    """Offset a new window from the saved position by the number already open."""
    offset = open_windows * WINDOW_CASCADE_OFFSET
    cascaded = dict(bounds)
    cascaded["x"] = (bounds.get("x") or 0) + offset
    cascaded["y"] = (bounds.get("y") or 0) + offset
    return cascaded


@dataclass
class EditorWindow:
    id: str
    surface: EditorSurface
    registry: TabRegistry
    bounds: dict[str, Any] = field(default_factory=dict)
    maximized: bool = False


class Workbench:
    """Owns the stores and every open window.

    Exactly one window (the session owner) writes the session file. When it
    closes while others stay open, the next window takes over and writes its
    own snapshot straight away.
    """

    def __init__(
        self,
        surface_factory: SurfaceFactory,
        settings_store: Optional[SettingsStore] = None,
        session_store: Optional[SessionStore] = None,
        asset_store: Optional[TempAssetStore] = None,
        debounce_seconds: float = SESSION_DEBOUNCE_SECONDS,
    ) -> None:
        self.surface_factory = surface_factory
        self.settings_store = settings_store or SettingsStore()
        self.session_store = session_store or SessionStore()
        self.assets = asset_store or TempAssetStore()
        self.debounce_seconds = debounce_seconds
        self.windows: dict[str, EditorWindow] = {}
        self.session_owner_id: Optional[str] = None
        self.coordinator = CloseCoordinator(self)
        self._window_ids = itertools.count(1)
        self._bounds_debouncer = Debouncer(WINDOW_BOUNDS_DEBOUNCE_SECONDS, name="window-bounds")

    async def open_window(self, first: bool = False) -> EditorWindow:
        """Open a window. The first window restores the session; others start blank."""
        window_id = f"win-{next(self._window_ids)}"
        bounds = self.settings_store.get_window_bounds()
        if not first and self.windows:
            bounds = cascade_bounds(bounds, len(self.windows))

        surface = self.surface_factory(window_id)
        registry = TabRegistry(surface, self.assets, debounce_seconds=self.debounce_seconds)
        window = EditorWindow(id=window_id, surface=surface, registry=registry, bounds=bounds)
        self.windows[window_id] = window

        if self.session_owner_id is None:
            self.session_owner_id = window_id
            registry.session_store = self.session_store

        if first and self.session_owner_id == window_id:
            await registry.restore_session()
            self.assets.sweep(self.live_tab_ids())
        else:
            await registry.create_tab()
        logger.info("Opened window %s", window_id)
        return window

    def live_tab_ids(self) -> set[str]:
        ids: set[str] = set()
        for window in self.windows.values():
            ids.update(window.registry.tabs)
        return ids

    def find_tab(self, tab_id: str) -> Optional[EditorWindow]:
        for window in self.windows.values():
            if tab_id in window.registry.tabs:
                return window
        return None

    async def request_close(self, window_id: str) -> CloseOutcome:
        return await self.coordinator.request_close(window_id)

    async def force_close(self, window_id: str) -> None:
        """Close a window without asking about unsaved tabs."""
        window = self.windows.pop(window_id)
        was_owner = self.session_owner_id == window_id
        if not self.windows:
            # Last window: its state is the session.
            await window.registry.shutdown(persist=True)
            self.session_owner_id = None
            logger.info("Closed last window %s", window_id)
            return

        await window.registry.shutdown(persist=False)
        window.registry.session_store = None
        if was_owner:
            new_owner = next(iter(self.windows.values()))
            self.session_owner_id = new_owner.id
            new_owner.registry.session_store = self.session_store
            await new_owner.registry.flush_session()
            logger.info("Session ownership moved from %s to %s", window_id, new_owner.id)
        logger.info("Closed window %s", window_id)

    def update_window_bounds(self, window_id: str, bounds: dict[str, Any], maximized: bool = False) -> None:
        """Record a resize/move; persisted after a quiet period unless maximized."""
        window = self.windows.get(window_id)
        if window is None:
            return
        window.maximized = maximized
        if maximized:
            return
        window.bounds = dict(bounds)
        snapshot = dict(bounds)

        async def _save() -> None:
            self.settings_store.save_window_bounds(snapshot)

        self._bounds_debouncer.schedule(_save)

    async def shutdown(self) -> None:
        """Flush pending writes and sweep every temp directory."""
        for window_id in list(self.windows):
            window = self.windows.pop(window_id)
            await window.registry.shutdown(persist=window_id == self.session_owner_id)
        self.session_owner_id = None
        await self._bounds_debouncer.flush_now()
        self.assets.release_all()
