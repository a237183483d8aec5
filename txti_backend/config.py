from __future__ import annotations

import os
import tempfile
from pathlib import Path


# Per-user data directory holding session.json and settings.json.
# Override with env var TXTI_DATA_DIR.
_data_raw = os.environ.get("TXTI_DATA_DIR")
if _data_raw and _data_raw.strip():
    DATA_DIR = Path(_data_raw)
else:
    DATA_DIR = Path.home() / ".txti-editor"
DATA_DIR = DATA_DIR.resolve()

SESSION_FILE = DATA_DIR / "session.json"
SETTINGS_FILE = DATA_DIR / "settings.json"

# Scratch root; every live tab gets its own subdirectory named after its id.
_temp_raw = os.environ.get("TXTI_TEMP_ROOT")
if _temp_raw and _temp_raw.strip():
    TEMP_ROOT = Path(_temp_raw)
else:
    TEMP_ROOT = Path(tempfile.gettempdir()) / "txti-editor"
TEMP_ROOT = TEMP_ROOT.resolve()

# Quiet period before a burst of edits is written to the session file.
SESSION_DEBOUNCE_SECONDS = float(os.environ.get("TXTI_SESSION_DEBOUNCE_SECONDS", "0.5"))
WINDOW_BOUNDS_DEBOUNCE_SECONDS = 0.5

MAX_IMAGE_UPLOAD_BYTES = int(os.environ.get("TXTI_MAX_IMAGE_UPLOAD_BYTES", str(10 * 1024 * 1024)))  # 10MB

# Archive layout.
ARCHIVE_EXTENSION = ".txti"
CONTENT_ENTRY = "content.json"
ASSETS_PREFIX = "assets"

ALLOWED_IMAGE_EXTS = {".png", ".jpg", ".jpeg", ".gif", ".webp", ".svg"}

# Titles.
UNTITLED = "Untitled"
TAB_TITLE_MAX = 15
HEADER_TITLE_MAX = 30
DRAFT_TITLE_MAX = 255

DEFAULT_WINDOW_BOUNDS = {"width": 1200, "height": 800}
WINDOW_CASCADE_OFFSET = 30
