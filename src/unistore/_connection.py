"""Single-flight execution: concurrent callers share one in-flight attempt."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")


class SingleFlight(Generic[T]):
    """Collapse concurrent calls onto one running task.

    While a call is in flight, further callers await the same task instead of
    starting another one. Once it finishes the slot is cleared, so a later
    call starts a fresh attempt.
    """

    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._task: asyncio.Task[T] | None = None
        self.started = 0

    @property
    def in_flight(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run(self, factory: Callable[[], Awaitable[T]]) -> T:
        """Start ``factory()`` unless an attempt is already running, then await it."""
        async with self._lock:
            if self._task is None or self._task.done():
                self.started += 1
                self._task = asyncio.ensure_future(factory())
                self._task.add_done_callback(self._clear)
            task = self._task
        # shield: one caller being cancelled must not cancel the shared attempt
        return await asyncio.shield(task)

    def _clear(self, task: asyncio.Task[T]) -> None:
        if self._task is task:
            self._task = None
