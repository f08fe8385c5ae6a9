"""Progress events for long-running transfers."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable


def percentage(transferred: int, total: int) -> int:
    """``round(transferred / total * 100)``, or ``0`` when ``total`` is zero."""
    if total <= 0:
        return 0
    return round(transferred / total * 100)


@dataclasses.dataclass(frozen=True)
class ProgressEvent:
    """Snapshot of a transfer in progress.

    :param operation: What is happening (e.g. ``"upload"``, ``"download"``).
    :param bytes_transferred: Bytes done so far.
    :param total_bytes: Total bytes, when known.
    :param percentage: ``0``-``100``; see :func:`percentage`.
    :param current_file: Path of the file being processed.
    :param files_processed: Files finished so far, for batch operations.
    :param total_files: Total files, for batch operations.
    """

    operation: str
    bytes_transferred: int
    total_bytes: int | None
    percentage: int
    current_file: str | None = None
    files_processed: int | None = None
    total_files: int | None = None


def report_progress(
    on_progress: Callable[[ProgressEvent], None] | None,
    operation: str,
    bytes_transferred: int,
    total_bytes: int,
    current_file: str | None = None,
) -> None:
    """Emit a byte-based progress event if a callback is registered."""
    if on_progress is None:
        return
    on_progress(
        ProgressEvent(
            operation=operation,
            bytes_transferred=bytes_transferred,
            total_bytes=total_bytes,
            percentage=percentage(bytes_transferred, total_bytes),
            current_file=current_file,
        )
    )


class ItemCounter:
    """Count-based progress for batch operations.

    ``advance`` is the only way to move forward, so the reported count is
    strictly increasing and never exceeds ``total``.

    :param operation: Operation name for emitted events.
    :param total: Number of items in the batch.
    :param on_progress: Callback receiving one event per finished item.
    """

    def __init__(
        self,
        operation: str,
        total: int,
        on_progress: Callable[[ProgressEvent], None] | None = None,
    ) -> None:
        self._operation = operation
        self._total = total
        self._on_progress = on_progress
        self._done = 0
        self._bytes = 0

    @property
    def done(self) -> int:
        return self._done

    @property
    def total(self) -> int:
        return self._total

    def advance(self, current_file: str, nbytes: int = 0) -> None:
        """Mark one more item as finished.

        :raises ValueError: If the batch is already complete.
        """
        if self._done >= self._total:
            raise ValueError(f"{self._operation}: all {self._total} items already reported")
        self._done += 1
        self._bytes += nbytes
        if self._on_progress is not None:
            self._on_progress(
                ProgressEvent(
                    operation=self._operation,
                    bytes_transferred=self._bytes,
                    total_bytes=None,
                    percentage=percentage(self._done, self._total),
                    current_file=current_file,
                    files_processed=self._done,
                    total_files=self._total,
                )
            )
