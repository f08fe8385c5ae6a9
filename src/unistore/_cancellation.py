"""Cancellation tokens for long-running batch operations.

Create one :class:`CancellationTokenSource` per operation, pass its ``token``
to the operation and call :meth:`CancellationTokenSource.cancel` to stop it.
Operations check the token between entries; work already dispatched finishes.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from unistore._errors import OperationCancelled

if TYPE_CHECKING:
    from collections.abc import Callable

log = logging.getLogger(__name__)


class CancellationToken:
    """Read-only view of a cancellation request."""

    __slots__ = ("_source",)

    def __init__(self, source: CancellationTokenSource) -> None:
        self._source = source

    @property
    def is_cancelled(self) -> bool:
        return self._source.is_cancelled

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register ``callback`` to run on cancellation; returns an unsubscribe function.

        If cancellation already happened the callback runs immediately.
        """
        return self._source._subscribe(callback)

    def raise_if_cancelled(self) -> None:
        """:raises OperationCancelled: If cancellation has been requested."""
        if self._source.is_cancelled:
            raise OperationCancelled()


class CancellationTokenSource:
    """Controls a :class:`CancellationToken`."""

    def __init__(self) -> None:
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []
        self._token = CancellationToken(self)

    @property
    def token(self) -> CancellationToken:
        return self._token

    @property
    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cancellation. Only the first call has an effect."""
        if self._cancelled:
            return
        self._cancelled = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                log.exception("Cancellation callback failed")

    def linked(self) -> CancellationTokenSource:
        """Create a child source that is cancelled together with this one."""
        child = CancellationTokenSource()
        self._subscribe(child.cancel)
        return child

    def _subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        if self._cancelled:
            callback()
            return lambda: None
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe


def _never_cancelled() -> CancellationToken:
    return CancellationTokenSource().token


NEVER_CANCELLED = _never_cancelled()
"""Token that is never cancelled; the default for optional cancellation."""
