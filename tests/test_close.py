import asyncio
import json

from txti_backend.close import CloseOutcome, save_all
from txti_backend.models import UnsavedChoice
from txti_backend.workbench import cascade_bounds


def _type(window, text):
    window.surface.type_text(text)
    window.registry.mark_modified()


def test_last_window_closes_without_prompt(make_workbench, session_store):
    async def scenario():
        bench = make_workbench()
        window = await bench.open_window(first=True)
        _type(window, "never saved")

        assert await bench.request_close(window.id) == CloseOutcome.CLOSED
        assert bench.windows == {}
        assert window.surface.prompted_titles == []

        saved = json.loads(session_store.path.read_text())
        assert saved["tabs"][0]["modified"] is True
        assert saved["tabs"][0]["content"] == [{"type": "text", "val": "never saved"}]

    asyncio.run(scenario())


def test_other_window_asks_once_for_all_dirty_tabs(make_workbench):
    async def scenario():
        bench = make_workbench()
        await bench.open_window(first=True)
        second = await bench.open_window()
        _type(second, "one")
        await second.registry.create_tab()
        _type(second, "two")

        second.surface.choices.append(UnsavedChoice.CANCEL)
        assert await bench.request_close(second.id) == CloseOutcome.CANCELLED
        assert second.id in bench.windows
        assert all(tab.modified for tab in second.registry.tabs.values())

        second.surface.choices.append(UnsavedChoice.DISCARD)
        assert await bench.request_close(second.id) == CloseOutcome.CLOSED
        assert second.id not in bench.windows
        assert second.surface.prompted_titles == [["one", "two"], ["one", "two"]]

    asyncio.run(scenario())


def test_clean_window_closes_without_prompt(make_workbench):
    async def scenario():
        bench = make_workbench()
        await bench.open_window(first=True)
        second = await bench.open_window()
        assert await bench.request_close(second.id) == CloseOutcome.CLOSED
        assert second.surface.prompted_titles == []

    asyncio.run(scenario())


def test_save_choice_saves_every_dirty_tab(tmp_path, make_workbench):
    async def scenario():
        bench = make_workbench()
        await bench.open_window(first=True)
        second = await bench.open_window()
        _type(second, "alpha")
        await second.registry.create_tab()
        _type(second, "beta")

        second.surface.choices.append(UnsavedChoice.SAVE)
        second.surface.save_paths += [str(tmp_path / "a.txti"), str(tmp_path / "b.txti")]
        assert await bench.request_close(second.id) == CloseOutcome.CLOSED
        assert (tmp_path / "a.txti").exists()
        assert (tmp_path / "b.txti").exists()

    asyncio.run(scenario())


def test_cancelled_save_keeps_window_open(make_workbench):
    async def scenario():
        bench = make_workbench()
        await bench.open_window(first=True)
        second = await bench.open_window()
        _type(second, "unsaved")
        second.surface.choices.append(UnsavedChoice.SAVE)

        assert await bench.request_close(second.id) == CloseOutcome.SAVE_FAILED
        assert second.id in bench.windows
        assert second.registry.active_tab.modified is True

    asyncio.run(scenario())


def test_save_all_returns_to_original_tab(tmp_path, registry, surface):
    async def scenario():
        dirty = (await registry.create_tab()).tab_id
        surface.type_text("dirty one")
        registry.mark_modified()
        current = (await registry.create_tab()).tab_id

        surface.save_paths.append(str(tmp_path / "dirty.txti"))
        assert await save_all(registry, [registry.tabs[dirty]]) is True
        assert registry.active_tab_id == current
        assert registry.tabs[dirty].modified is False

        surface.type_text("now this one")
        registry.mark_modified()
        assert await save_all(registry, registry.dirty_tabs()) is False
        assert registry.active_tab_id == current

    asyncio.run(scenario())


def test_discarded_owner_tabs_do_not_come_back(make_workbench):
    async def scenario():
        bench = make_workbench()
        owner = await bench.open_window(first=True)
        _type(owner, "owner draft")
        await owner.registry.flush_session()
        other = await bench.open_window()
        _type(other, "survivor")

        owner.surface.choices.append(UnsavedChoice.DISCARD)
        assert await bench.request_close(owner.id) == CloseOutcome.CLOSED
        assert bench.session_owner_id == other.id
        assert await bench.request_close(other.id) == CloseOutcome.CLOSED

        restarted = make_workbench()
        window = await restarted.open_window(first=True)
        titles = [tab.title for tab in window.registry.ordered_tabs()]
        assert titles == ["survivor"]
        await restarted.shutdown()

    asyncio.run(scenario())


def test_quit_closes_every_window(make_workbench, session_store):
    async def scenario():
        bench = make_workbench()
        owner = await bench.open_window(first=True)
        _type(owner, "kept")
        other = await bench.open_window()
        _type(other, "dropped")
        other.surface.choices.append(UnsavedChoice.DISCARD)

        assert await bench.coordinator.request_quit() == CloseOutcome.CLOSED
        assert bench.windows == {}
        assert owner.surface.prompted_titles == []
        saved = json.loads(session_store.path.read_text())
        assert [tab["title"] for tab in saved["tabs"]] == ["kept"]

    asyncio.run(scenario())


def test_new_windows_cascade_from_saved_bounds(make_workbench, settings_store):
    settings_store.save_window_bounds({"x": 100, "y": 50, "width": 900, "height": 700})

    async def scenario():
        bench = make_workbench()
        first = await bench.open_window(first=True)
        second = await bench.open_window()
        third = await bench.open_window()
        assert (first.bounds["x"], first.bounds["y"]) == (100, 50)
        assert (second.bounds["x"], second.bounds["y"]) == (130, 80)
        assert third.bounds["x"] == 160
        assert third.bounds["width"] == 900
        await bench.shutdown()

    asyncio.run(scenario())


def test_cascade_without_saved_position():
    bounds = cascade_bounds({"width": 1200, "height": 800}, 1)
    assert bounds == {"width": 1200, "height": 800, "x": 30, "y": 30}


def test_window_bounds_saved_unless_maximized(make_workbench, settings_store):
    async def scenario():
        bench = make_workbench()
        window = await bench.open_window(first=True)
        bench.update_window_bounds(window.id, {"x": 5, "y": 6, "width": 640, "height": 480})
        bench.update_window_bounds(window.id, {"x": 0, "y": 0, "width": 9999, "height": 9999}, maximized=True)
        assert window.maximized is True
        await bench.shutdown()

    asyncio.run(scenario())
    assert settings_store.get_window_bounds() == {"x": 5, "y": 6, "width": 640, "height": 480}
