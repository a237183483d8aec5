from __future__ import annotations

import logging
from enum import Enum
from typing import TYPE_CHECKING

from .models import Tab, UnsavedChoice
from .registry import TabRegistry

if TYPE_CHECKING:
    from .workbench import Workbench

logger = logging.getLogger(__name__)


class CloseOutcome(str, Enum):
    CLOSED = "closed"
    CANCELLED = "cancelled"
    SAVE_FAILED = "save-failed"


async def save_all(registry: TabRegistry, tabs: list[Tab]) -> bool:
    """Switch to and save each tab in turn, then return to the original tab.

    Stops at the first save that is cancelled or fails.
    """
    original = registry.active_tab_id
    try:
        for tab in tabs:
            if tab.id not in registry.tabs:
                continue
            await registry.switch_to(tab.id)
            result = await registry.save(tab.id)
            if not result.ok:
                logger.info("Save of %s did not complete: %s", tab.title, result.message)
                return False
        return True
    finally:
        if original in registry.tabs and registry.active_tab_id != original:
            await registry.switch_to(original)


class CloseCoordinator:
    """Decides whether a window may close when it holds unsaved tabs.

    The last window always closes without asking: its tabs are in the session
    file and come back on restart. Any other window asks once for all of its
    dirty tabs.
    """

    def __init__(self, workbench: "Workbench") -> None:
        self.workbench = workbench

    async def request_close(self, window_id: str) -> CloseOutcome:
        window = self.workbench.windows[window_id]
        if len(self.workbench.windows) == 1:
            await self.workbench.force_close(window_id)
            return CloseOutcome.CLOSED

        dirty = window.registry.dirty_tabs()
        if not dirty:
            await self.workbench.force_close(window_id)
            return CloseOutcome.CLOSED

        choice = await window.surface.prompt_unsaved_changes_batch([tab.title for tab in dirty])
        if choice == UnsavedChoice.CANCEL:
            return CloseOutcome.CANCELLED
        if choice == UnsavedChoice.SAVE:
            if not await save_all(window.registry, dirty):
                return CloseOutcome.SAVE_FAILED

        await self.workbench.force_close(window_id)
        return CloseOutcome.CLOSED

    async def request_quit(self) -> CloseOutcome:
        """Close every window; the session owner goes last so it is the last window."""
        owner = self.workbench.session_owner_id
        others = [wid for wid in self.workbench.windows if wid != owner]
        for window_id in others:
            outcome = await self.request_close(window_id)
            if outcome != CloseOutcome.CLOSED:
                return outcome
        for window_id in list(self.workbench.windows):
            outcome = await self.request_close(window_id)
            if outcome != CloseOutcome.CLOSED:
                return outcome
        await self.workbench.shutdown()
        return CloseOutcome.CLOSED
