"""Per-call option objects for provider operations."""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from unistore._cancellation import CancellationToken
    from unistore._types import ProgressCallback


@dataclasses.dataclass(frozen=True)
class ReadOptions:
    """Options for :meth:`Provider.read`.

    :param offset: First byte to return.
    :param length: Number of bytes to return; ``None`` reads to the end.
    :param on_progress: Receives byte-based progress events.
    """

    offset: int = 0
    length: int | None = None
    on_progress: ProgressCallback | None = None

    @property
    def is_ranged(self) -> bool:
        return self.offset > 0 or self.length is not None


@dataclasses.dataclass(frozen=True)
class WriteOptions:
    """Options for :meth:`Provider.write`.

    :param overwrite: If ``False``, fail with ``ALREADY_EXISTS`` when the target exists.
    :param content_type: MIME type for backends that store one.
    :param on_progress: Receives byte-based progress events.
    """

    overwrite: bool = True
    content_type: str | None = None
    on_progress: ProgressCallback | None = None


@dataclasses.dataclass(frozen=True)
class DeleteOptions:
    """Options for :meth:`Provider.delete`.

    :param recursive: Delete directories together with their contents.
    """

    recursive: bool = False


@dataclasses.dataclass(frozen=True)
class TransferOptions:
    """Options for move, copy, download and upload.

    :param recursive: Treat a directory source as a whole tree.
    :param overwrite: Replace existing targets.
    :param on_progress: Receives count-based progress for tree transfers.
    :param cancellation: Checked between entries of a tree transfer.
    """

    recursive: bool = False
    overwrite: bool = False
    on_progress: ProgressCallback | None = None
    cancellation: CancellationToken | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.cancellation is not None and self.cancellation.is_cancelled
