"""Immutable entry models returned by providers."""

from __future__ import annotations

import dataclasses
import enum
import re
import secrets
import time
from typing import TYPE_CHECKING, Any

from unistore._path import name_of
from unistore._result import OperationResult

if TYPE_CHECKING:
    from datetime import datetime

_ENTRY_ID_PATTERN = re.compile(r"^entry_[a-z0-9]+_[a-f0-9]{16}$")
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_entry_id() -> str:
    """Generate a unique entry id of the form ``entry_<timestamp>_<random>``."""
    return f"entry_{_base36(int(time.time() * 1000))}_{secrets.token_hex(8)}"


def is_valid_entry_id(entry_id: str) -> bool:
    return bool(_ENTRY_ID_PATTERN.match(entry_id))


class EntryType(enum.Enum):
    """Kind of node in a provider namespace."""

    FILE = "file"
    DIRECTORY = "directory"
    BUCKET = "bucket"
    SYMLINK = "symlink"


@dataclasses.dataclass(frozen=True, eq=False)
class Entry:
    """Immutable snapshot of a file, directory, bucket or symlink.

    :param id: Opaque identifier, stable within one listing.
    :param name: Final path segment. Derived from ``path`` when empty.
    :param type: Kind of entry.
    :param path: Backend-relative path; trailing slash for directory-like entries.
    :param size: Size in bytes, if known.
    :param modified: Last modification time, if known.
    :param metadata: Provider-specific fields (permissions, storage class, etag, ...).
    :raises ValueError: If ``name`` disagrees with the last segment of ``path``.
    """

    id: str
    name: str
    type: EntryType
    path: str
    size: int | None = None
    modified: datetime | None = None
    metadata: dict[str, Any] = dataclasses.field(default_factory=dict)

    def __post_init__(self) -> None:
        expected = name_of(self.path)
        if not self.name:
            object.__setattr__(self, "name", expected)
        elif expected and self.name != expected:
            raise ValueError(f"Entry name {self.name!r} does not match path {self.path!r}")

    @property
    def is_directory(self) -> bool:
        return self.type in (EntryType.DIRECTORY, EntryType.BUCKET)

    @property
    def is_virtual(self) -> bool:
        return False

    def replace(self, **changes: Any) -> Entry:
        """Return a copy with ``changes`` applied; ``name`` follows a changed ``path``."""
        if "path" in changes and "name" not in changes:
            changes["name"] = name_of(changes["path"])
        return dataclasses.replace(self, **changes)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Entry):
            return self.path == other.path and self.is_virtual == other.is_virtual
        return NotImplemented

    def __hash__(self) -> int:
        return hash((self.path, self.is_virtual))


@dataclasses.dataclass(frozen=True, eq=False)
class VirtualEntry(Entry):
    """Display-only entry standing in for the target of a pending operation.

    :param pending_operation_id: Id of the pending operation that produces it.
    :param pending_type: Value of that operation's type (``"move"``, ``"copy"``, ``"create"``).
    """

    pending_operation_id: str = ""
    pending_type: str = ""

    @property
    def is_virtual(self) -> bool:
        return True


@dataclasses.dataclass(frozen=True)
class ListOptions:
    """Options for :meth:`Provider.list`.

    :param limit: Maximum number of entries to return.
    :param continuation_token: Token from a previous :class:`ListResult`.
    :param recursive: Include entries of all subdirectories.
    """

    limit: int | None = None
    continuation_token: str | None = None
    recursive: bool = False


@dataclasses.dataclass(frozen=True)
class ListResult:
    """One page of a directory listing."""

    entries: list[Entry]
    continuation_token: str | None = None
    has_more: bool = False


def paginate(entries: list[Entry], options: ListOptions | None) -> OperationResult[ListResult]:
    """Slice a full listing according to ``options`` using offset tokens.

    A token that is not an offset this function handed out yields an
    ``INVALID_CONTINUATION_TOKEN`` error result.
    """
    if options is None or options.limit is None:
        return OperationResult.success(ListResult(entries=entries))
    token = options.continuation_token
    if not token:
        start = 0
    elif token.isascii() and token.isdigit():
        start = int(token)
    else:
        return OperationResult.generic_error("INVALID_CONTINUATION_TOKEN", f"Invalid continuation token: {token!r}")
    end = start + options.limit
    has_more = end < len(entries)
    return OperationResult.success(
        ListResult(
            entries=entries[start:end],
            continuation_token=str(end) if has_more else None,
            has_more=has_more,
        )
    )
