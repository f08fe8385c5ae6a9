"""Capability enum and CapabilitySet."""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator


class Capability(enum.Enum):
    """Operations a provider instance may support."""

    # Core operations
    LIST = "list"
    READ = "read"
    WRITE = "write"
    DELETE = "delete"

    # Navigation
    MKDIR = "mkdir"
    RMDIR = "rmdir"

    # File management
    MOVE = "move"
    COPY = "copy"
    SERVER_SIDE_COPY = "server_side_copy"

    # Transfers
    DOWNLOAD = "download"
    UPLOAD = "upload"
    RESUME = "resume"

    # Advanced
    PERMISSIONS = "permissions"
    SYMLINKS = "symlinks"
    CONNECTION = "connection"
    CONTAINERS = "containers"
    METADATA = "metadata"
    PRESIGNED_URLS = "presigned_urls"
    BATCH_DELETE = "batch_delete"


class CapabilitySet:
    """Immutable snapshot of the capabilities of a provider.

    :param capabilities: The supported capabilities.
    """

    __slots__ = ("_caps",)
    _caps: frozenset[Capability]

    def __init__(self, capabilities: Iterable[Capability] = ()) -> None:
        object.__setattr__(self, "_caps", frozenset(capabilities))

    def supports(self, cap: Capability) -> bool:
        """Check whether a capability is supported."""
        return cap in self._caps

    def supports_all(self, *caps: Capability) -> bool:
        """Check whether every capability in ``caps`` is supported."""
        return all(c in self._caps for c in caps)

    def __contains__(self, cap: object) -> bool:
        return cap in self._caps

    def __iter__(self) -> Iterator[Capability]:
        return iter(self._caps)

    def __len__(self) -> int:
        return len(self._caps)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, CapabilitySet):
            return self._caps == other._caps
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._caps)

    def __repr__(self) -> str:
        names = sorted(c.name for c in self._caps)
        return f"CapabilitySet({{{', '.join(names)}}})"

    def __setattr__(self, name: str, value: object) -> None:
        raise AttributeError("CapabilitySet is immutable")

    def __delattr__(self, name: str) -> None:
        raise AttributeError("CapabilitySet is immutable")
