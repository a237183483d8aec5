from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Optional

from fastapi import FastAPI, File, HTTPException, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from txti_backend.config import ALLOWED_IMAGE_EXTS, MAX_IMAGE_UPLOAD_BYTES
from txti_backend.content import HtmlSurface, html_to_content
from txti_backend.models import OperationResult, Tab, UnsavedChoice
from txti_backend.security import is_safe_basename
from txti_backend.titles import header_text, truncate_tab_title
from txti_backend.workbench import EditorWindow, Workbench

logger = logging.getLogger(__name__)

BASE_DIR = Path(__file__).resolve().parent
WEB_DIR = BASE_DIR / "web"


class OpenRequest(BaseModel):
    path: str


class ContentRequest(BaseModel):
    html: str


class SaveRequest(BaseModel):
    path: Optional[str] = None
    save_as: bool = False


class ChoiceRequest(BaseModel):
    choice: Optional[UnsavedChoice] = None


class MoveRequest(BaseModel):
    target_id: str
    before: bool = True


class WidthRequest(BaseModel):
    width: int


class BoundsRequest(BaseModel):
    width: int
    height: int
    x: Optional[int] = None
    y: Optional[int] = None
    maximized: bool = False


def asset_route_url(tab: Tab, asset_name: str, path: str) -> str:
    return f"/t/{tab.id}/assets/{asset_name}"


def build_workbench() -> Workbench:
    return Workbench(surface_factory=lambda window_id: HtmlSurface(asset_url=asset_route_url))


@asynccontextmanager
async def lifespan(app: FastAPI):
    # One window is open from the start and restores the previous session.
    workbench = build_workbench()
    app.state.workbench = workbench
    await workbench.open_window(first=True)
    try:
        yield
    finally:
        await workbench.shutdown()


app = FastAPI(lifespan=lifespan)

# The editor page may be opened from disk (file:// sends Origin: null).
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def _no_cache_static_assets(request: Request, call_next):
    response = await call_next(request)
    path = (request.url.path or "").lower()
    if path.endswith((".css", ".js", ".html")) and not path.startswith("/api/"):
        response.headers["Cache-Control"] = "no-store"
    return response


_STATUS_BY_KIND = {"format": 400, "cancelled": 409, "unknown": 404, "io": 500, "unexpected": 500}


def _workbench(request: Request) -> Workbench:
    return request.app.state.workbench


def _window(request: Request, window_id: str) -> EditorWindow:
    window = _workbench(request).windows.get(window_id)
    if window is None:
        raise HTTPException(status_code=404, detail="Window not found")
    return window


def _surface(window: EditorWindow) -> HtmlSurface:
    return window.surface  # type: ignore[return-value]


def _raise_for(result: OperationResult) -> None:
    if not result.ok:
        raise HTTPException(status_code=_STATUS_BY_KIND.get(result.error_kind or "", 500), detail=result.message)


def _tab_state(tab: Tab) -> dict[str, Any]:
    return {
        "id": tab.id,
        "title": tab.title,
        "display_title": truncate_tab_title(tab.title),
        "header": header_text(tab),
        "file_path": tab.file_path,
        "modified": tab.modified,
        "assets_loaded": tab.assets_loaded,
    }


def _window_state(window: EditorWindow) -> dict[str, Any]:
    registry = window.registry
    return {
        "window_id": window.id,
        "bounds": window.bounds,
        "maximized": window.maximized,
        "active_tab_id": registry.active_tab_id,
        "tab_order": list(registry.tab_order),
        "tabs": [_tab_state(tab) for tab in registry.ordered_tabs()],
        "html": _surface(window).html,
    }


@app.get("/api/windows")
async def list_windows(request: Request) -> JSONResponse:
    wb = _workbench(request)
    return JSONResponse(
        {
            "session_owner": wb.session_owner_id,
            "windows": [_window_state(w) for w in wb.windows.values()],
        }
    )


@app.post("/api/windows")
async def new_window(request: Request) -> JSONResponse:
    window = await _workbench(request).open_window(first=False)
    return JSONResponse(_window_state(window))


@app.get("/api/windows/{window_id}")
async def get_window(window_id: str, request: Request) -> JSONResponse:
    return JSONResponse(_window_state(_window(request, window_id)))


@app.post("/api/windows/{window_id}/close")
async def close_window(window_id: str, request: Request, payload: Optional[ChoiceRequest] = None) -> JSONResponse:
    """Ask to close a window.

    When dirty tabs need a decision and none was supplied, the response lists
    their titles with outcome "cancelled"; the client asks the user and calls
    again with a choice.
    """
    window = _window(request, window_id)
    surface = _surface(window)
    surface.next_choice = payload.choice if payload else None
    surface.last_prompt_titles = []
    outcome = await _workbench(request).request_close(window_id)
    return JSONResponse({"outcome": outcome.value, "dirty_titles": surface.last_prompt_titles})


@app.post("/api/quit")
async def quit_app(request: Request, payload: Optional[ChoiceRequest] = None) -> JSONResponse:
    """Close every window, asking once per window that holds unsaved tabs.

    The choice, when given, answers every window's prompt. On "cancelled"
    the windows still open are left as they are.
    """
    wb = _workbench(request)
    surfaces = [_surface(w) for w in wb.windows.values()]
    for surface in surfaces:
        surface.next_choice = payload.choice if payload else None
        surface.last_prompt_titles = []
    outcome = await wb.coordinator.request_quit()
    dirty_titles = [title for surface in surfaces for title in surface.last_prompt_titles]
    return JSONResponse({"outcome": outcome.value, "dirty_titles": dirty_titles})


@app.put("/api/windows/{window_id}/bounds")
async def update_bounds(window_id: str, payload: BoundsRequest, request: Request) -> JSONResponse:
    _window(request, window_id)
    bounds = payload.model_dump(exclude={"maximized"}, exclude_none=True)
    _workbench(request).update_window_bounds(window_id, bounds, maximized=payload.maximized)
    return JSONResponse({"ok": True})


@app.post("/api/windows/{window_id}/tabs")
async def create_tab(window_id: str, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    _raise_for(await window.registry.create_tab())
    return JSONResponse(_window_state(window))


@app.post("/api/windows/{window_id}/open")
async def open_file(window_id: str, payload: OpenRequest, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    _raise_for(await window.registry.open_file(payload.path))
    return JSONResponse(_window_state(window))


@app.post("/api/windows/{window_id}/tabs/{tab_id}/activate")
async def activate_tab(window_id: str, tab_id: str, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    _raise_for(await window.registry.switch_to(tab_id))
    return JSONResponse(_window_state(window))


@app.put("/api/windows/{window_id}/tabs/{tab_id}/content")
async def update_content(window_id: str, tab_id: str, payload: ContentRequest, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    registry = window.registry
    if registry.active_tab_id == tab_id:
        surface = _surface(window)
        surface.html = payload.html
        surface.rendered_tab_id = tab_id
    _raise_for(registry.update_content(tab_id, html_to_content(payload.html)))
    return JSONResponse(_tab_state(registry.tabs[tab_id]))


@app.post("/api/windows/{window_id}/tabs/{tab_id}/save")
async def save_tab(window_id: str, tab_id: str, payload: SaveRequest, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    _surface(window).next_save_path = payload.path
    _raise_for(await window.registry.save(tab_id, save_as=payload.save_as))
    return JSONResponse(_tab_state(window.registry.tabs[tab_id]))


@app.post("/api/windows/{window_id}/tabs/{tab_id}/close")
async def close_tab(window_id: str, tab_id: str, request: Request, payload: Optional[ChoiceRequest] = None) -> JSONResponse:
    window = _window(request, window_id)
    _surface(window).next_choice = payload.choice if payload else None
    _raise_for(await window.registry.close_tab(tab_id))
    return JSONResponse(_window_state(window))


@app.post("/api/windows/{window_id}/tabs/{tab_id}/move")
async def move_tab(window_id: str, tab_id: str, payload: MoveRequest, request: Request) -> JSONResponse:
    window = _window(request, window_id)
    if not window.registry.move_tab(tab_id, payload.target_id, before=payload.before):
        raise HTTPException(status_code=400, detail="Cannot move tab")
    return JSONResponse(_window_state(window))


@app.post("/api/windows/{window_id}/tabs/{tab_id}/paste-image")
async def paste_image(window_id: str, tab_id: str, request: Request, file: UploadFile = File(...)) -> JSONResponse:
    window = _window(request, window_id)

    # Limit read to prevent accidental huge clipboard uploads.
    data = await file.read(MAX_IMAGE_UPLOAD_BYTES + 1)
    if len(data) > MAX_IMAGE_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Image too large")

    width = _workbench(request).settings_store.load().get("defaultImageWidth")
    result = window.registry.paste_image(
        tab_id, data, file.content_type, width=width if isinstance(width, int) else None
    )
    _raise_for(result)
    return JSONResponse({"asset_name": result.asset_name, "url": f"/t/{tab_id}/assets/{result.asset_name}"})


@app.put("/api/windows/{window_id}/tabs/{tab_id}/images/{asset_name}/width")
async def resize_image(
    window_id: str, tab_id: str, asset_name: str, payload: WidthRequest, request: Request
) -> JSONResponse:
    window = _window(request, window_id)
    _raise_for(window.registry.set_image_width(tab_id, asset_name, payload.width))
    return JSONResponse(_tab_state(window.registry.tabs[tab_id]))


@app.get("/t/{tab_id}/assets/{filename}")
async def get_asset(tab_id: str, filename: str, request: Request) -> Response:
    """Serve a tab's image from its pending or committed assets only."""
    if not is_safe_basename(filename) or Path(filename).suffix.lower() not in ALLOWED_IMAGE_EXTS:
        raise HTTPException(status_code=404, detail="Not found")
    window = _workbench(request).find_tab(tab_id)
    if window is None:
        raise HTTPException(status_code=404, detail="Not found")
    path = window.registry.tabs[tab_id].asset_path(filename)
    if not path or not Path(path).is_file():
        raise HTTPException(status_code=404, detail="Not found")
    return FileResponse(path, headers={"Cache-Control": "no-store", "X-Content-Type-Options": "nosniff"})


@app.get("/api/settings")
async def get_settings(request: Request) -> JSONResponse:
    return JSONResponse(_workbench(request).settings_store.load())


@app.post("/api/settings")
async def save_settings(payload: dict[str, Any], request: Request) -> JSONResponse:
    ok = _workbench(request).settings_store.save(payload)
    return JSONResponse({"ok": ok}, status_code=200 if ok else 500)


# Front-end files, when present, are served from ./web at '/'.
# Define API routes above, then mount static at '/'.
if WEB_DIR.is_dir():
    app.mount("/", StaticFiles(directory=str(WEB_DIR), html=True), name="static")

