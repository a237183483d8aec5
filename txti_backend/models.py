from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from .config import UNTITLED


class TextItem(BaseModel):
    type: Literal["text"] = "text"
    val: str


class ImageItem(BaseModel):
    type: Literal["img"] = "img"
    src: str  # asset name inside the archive / temp dir
    width: Optional[int] = None


ContentItem = Annotated[Union[TextItem, ImageItem], Field(discriminator="type")]

_content_adapter = TypeAdapter(list[ContentItem])


def parse_content(raw: Any) -> list[ContentItem]:
    """Validate a JSON-decoded content list. Raises pydantic.ValidationError."""
    return _content_adapter.validate_python(raw)


def dump_content(items: list[ContentItem]) -> list[dict]:
    return [item.model_dump(exclude_none=True) for item in items]


def content_text(items: list[ContentItem]) -> str:
    return "\n".join(item.val for item in items if isinstance(item, TextItem))


class PersistedTab(BaseModel):
    """A tab as written to the session file.

    Asset maps are not persisted; they are re-derived on restore. Drafts carry
    their pending images as base64 in tempImageData so pasted images survive a
    restart.
    """

    model_config = ConfigDict(populate_by_name=True)

    id: str
    file_path: Optional[str] = Field(default=None, alias="filePath")
    title: str = UNTITLED
    modified: bool = False
    content: list[ContentItem] = Field(default_factory=list)
    temp_image_data: dict[str, str] = Field(default_factory=dict, alias="tempImageData")

    def to_json_dict(self) -> dict:
        data = self.model_dump(by_alias=True, exclude={"content", "temp_image_data"})
        data["content"] = dump_content(self.content)
        if self.temp_image_data:
            data["tempImageData"] = dict(self.temp_image_data)
        return data


class SessionSnapshot(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    tabs: list[PersistedTab] = Field(default_factory=list)
    tab_order: list[str] = Field(default_factory=list, alias="tabOrder")
    active_tab_id: Optional[str] = Field(default=None, alias="activeTabId")
    saved_at: Optional[str] = Field(default=None, alias="savedAt")

    def to_json_dict(self) -> dict:
        return {
            "tabs": [tab.to_json_dict() for tab in self.tabs],
            "tabOrder": list(self.tab_order),
            "activeTabId": self.active_tab_id,
            "savedAt": self.saved_at,
        }


@dataclass
class Tab:
    """One open document.

    committed_assets maps asset names to files whose bytes are already inside
    the archive at file_path; pending_assets maps names to scratch files that
    no archive holds yet. A name lives in at most one of the two.
    """

    id: str
    file_path: Optional[str] = None
    title: str = UNTITLED
    modified: bool = False
    content: list = field(default_factory=list)
    committed_assets: dict[str, str] = field(default_factory=dict)
    pending_assets: dict[str, str] = field(default_factory=dict)
    assets_loaded: bool = False
    archive_metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_draft(self) -> bool:
        return self.file_path is None

    def asset_map(self) -> dict[str, str]:
        merged = dict(self.committed_assets)
        merged.update(self.pending_assets)
        return merged

    def asset_path(self, asset_name: str) -> Optional[str]:
        return self.pending_assets.get(asset_name) or self.committed_assets.get(asset_name)

    def persisted_view(self, temp_image_data: Optional[dict[str, str]] = None) -> PersistedTab:
        return PersistedTab(
            id=self.id,
            file_path=self.file_path,
            title=self.title,
            modified=self.modified,
            content=list(self.content),
            temp_image_data=temp_image_data or {},
        )


class UnsavedChoice(str, Enum):
    SAVE = "save"
    DISCARD = "discard"
    CANCEL = "cancel"


@dataclass(frozen=True)
class OperationResult:
    """Outcome of a registry operation as seen by the UI layer."""

    ok: bool
    tab_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None  # "io" | "format" | "cancelled" | "unknown" | "unexpected"
    asset_name: Optional[str] = None

    @classmethod
    def success(cls, tab_id: Optional[str] = None) -> "OperationResult":
        return cls(ok=True, tab_id=tab_id)

    @classmethod
    def failure(cls, error: str, kind: str, tab_id: Optional[str] = None) -> "OperationResult":
        return cls(ok=False, tab_id=tab_id, error=error, error_kind=kind)

    @property
    def cancelled(self) -> bool:
        return self.error_kind == "cancelled"

    @property
    def message(self) -> str:
        if self.ok:
            return ""
        if self.error_kind == "format":
            return f"Not a valid document: {self.error}"
        if self.error_kind == "io":
            return f"Could not access file: {self.error}"
        return self.error or "Operation failed"
