from typing import Optional

import pytest

from txti_backend.assets import TempAssetStore
from txti_backend.content import HtmlSurface
from txti_backend.models import Tab, UnsavedChoice
from txti_backend.registry import TabRegistry
from txti_backend.session import SessionStore
from txti_backend.settings import SettingsStore
from txti_backend.workbench import Workbench

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"not-really-a-png" * 4
DEBOUNCE = 0.05


class RecordingSurface(HtmlSurface):
    """HtmlSurface that records renders and answers prompts from queues."""

    def __init__(self) -> None:
        super().__init__()
        self.renders: list[tuple[str, bool]] = []
        self.empty_shown = 0
        self.save_paths: list[Optional[str]] = []
        self.choices: list[UnsavedChoice] = []
        self.suggested_names: list[str] = []
        self.prompted_titles: list[list[str]] = []

    def type_text(self, text: str) -> None:
        self.html = "".join(f"<p>{line}</p>" for line in text.split("\n"))

    def render_content(self, tab: Tab) -> None:
        super().render_content(tab)
        self.renders.append((tab.id, tab.assets_loaded))

    def show_empty(self) -> None:
        super().show_empty()
        self.empty_shown += 1

    async def prompt_save_path(self, suggested_name: str) -> Optional[str]:
        self.suggested_names.append(suggested_name)
        return self.save_paths.pop(0) if self.save_paths else None

    async def prompt_unsaved_changes_batch(self, titles: list[str]) -> UnsavedChoice:
        self.prompted_titles.append(list(titles))
        return self.choices.pop(0) if self.choices else UnsavedChoice.CANCEL


class CountingSessionStore(SessionStore):
    def __init__(self, path) -> None:
        super().__init__(path)
        self.full_writes = 0
        self.tab_writes = 0

    def save_full(self, snapshot) -> bool:
        self.full_writes += 1
        return super().save_full(snapshot)

    def save_tab_incremental(self, tab_view) -> bool:
        self.tab_writes += 1
        return super().save_tab_incremental(tab_view)


def assert_consistent(registry: TabRegistry) -> None:
    assert sorted(registry.tab_order) == sorted(registry.tabs)
    assert len(set(registry.tab_order)) == len(registry.tab_order)
    if registry.active_tab_id is not None:
        assert registry.active_tab_id in registry.tabs
        assert registry.active_tab_id in registry.tab_order


@pytest.fixture
def asset_store(tmp_path):
    return TempAssetStore(tmp_path / "scratch")


@pytest.fixture
def session_store(tmp_path):
    return CountingSessionStore(tmp_path / "data" / "session.json")


@pytest.fixture
def settings_store(tmp_path):
    return SettingsStore(tmp_path / "data" / "settings.json")


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def registry(surface, asset_store, session_store):
    return TabRegistry(surface, asset_store, session_store=session_store, debounce_seconds=DEBOUNCE)


@pytest.fixture
def make_registry(tmp_path, session_store):
    """Build an independent registry, as a fresh process would."""
    counter = {"n": 0}

    def _make(with_session: bool = True) -> TabRegistry:
        counter["n"] += 1
        store = TempAssetStore(tmp_path / f"scratch-{counter['n']}")
        return TabRegistry(
            RecordingSurface(),
            store,
            session_store=session_store if with_session else None,
            debounce_seconds=DEBOUNCE,
        )

    return _make


@pytest.fixture
def make_workbench(tmp_path, settings_store, session_store):
    def _make() -> Workbench:
        return Workbench(
            surface_factory=lambda window_id: RecordingSurface(),
            settings_store=settings_store,
            session_store=session_store,
            asset_store=TempAssetStore(tmp_path / "scratch"),
            debounce_seconds=DEBOUNCE,
        )

    return _make
