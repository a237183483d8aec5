from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

AsyncOp = Callable[[], Awaitable[Any]]


class Debouncer:
    """Coalesce bursts of requests into one call after a quiet period.

    schedule() resets the timer and replaces the pending operation. An
    operation that has already started is never cancelled; it runs to
    completion alongside whatever is scheduled next.
    """

    def __init__(self, delay: float, name: str = "debounce") -> None:
        self.delay = delay
        self.name = name
        self._handle: Optional[asyncio.TimerHandle] = None
        self._pending: Optional[AsyncOp] = None
        self._inflight: set[asyncio.Task] = set()

    @property
    def pending(self) -> bool:
        return self._pending is not None

    def schedule(self, op: AsyncOp) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._pending = op
        self._handle = loop.call_later(self.delay, self._fire)

    def cancel_pending(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending = None

    async def flush_now(self) -> None:
        """Run the pending operation immediately and wait for in-flight runs."""
        op = self._pending
        self.cancel_pending()
        if op is not None:
            await self._run(op)
        if self._inflight:
            await asyncio.gather(*list(self._inflight))

    def _fire(self) -> None:
        self._handle = None
        op, self._pending = self._pending, None
        if op is None:
            return
        task = asyncio.ensure_future(self._run(op))
        self._inflight.add(task)
        task.add_done_callback(self._inflight.discard)

    async def _run(self, op: AsyncOp) -> None:
        try:
            await op()
        except Exception:
            logger.exception("[%s] debounced operation failed", self.name)
