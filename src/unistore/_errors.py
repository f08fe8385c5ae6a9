"""Exceptions for programming errors and user-facing error descriptions.

Expected failures (missing files, denied access, dropped connections) are never
raised: providers report them as :class:`~unistore._result.OperationResult`
values. The exceptions below signal misuse of the API.
"""

from __future__ import annotations

import dataclasses
from typing import TYPE_CHECKING, Optional

from unistore._result import OperationStatus

if TYPE_CHECKING:
    from unistore._result import OperationResult


class UnistoreError(Exception):
    """Base class for all unistore exceptions.

    :param message: Human-readable error description.
    :param path: The path involved in the error, if any.
    :param provider: The provider name involved, if any.
    """

    def __init__(self, message: str = "", *, path: Optional[str] = None, provider: Optional[str] = None) -> None:
        self.path = path
        self.provider = provider
        super().__init__(message)

    def __str__(self) -> str:
        parts = [super().__str__()]
        if self.path is not None:
            parts.append(f"path={self.path!r}")
        if self.provider is not None:
            parts.append(f"provider={self.provider!r}")
        return " | ".join(parts) if len(parts) > 1 else parts[0]

    def __repr__(self) -> str:
        cls = type(self).__name__
        args = [repr(super().__str__())]
        if self.path is not None:
            args.append(f"path={self.path!r}")
        if self.provider is not None:
            args.append(f"provider={self.provider!r}")
        return f"{cls}({', '.join(args)})"


class InvalidPath(UnistoreError):
    """Raised for malformed or unsafe paths."""


class InvalidProfile(UnistoreError):
    """Raised when a profile cannot be turned into a provider."""


class ProviderNotAvailable(UnistoreError):
    """Raised when a profile names a provider type with no registered implementation."""


class OperationCancelled(UnistoreError):
    """Raised by a cancellation token; converted to a ``CANCELLED`` result at operation boundaries."""

    def __init__(self, message: str = "Operation was cancelled") -> None:
        super().__init__(message)


# region: user-facing descriptions

_TITLES: dict[OperationStatus, str] = {
    OperationStatus.SUCCESS: "Success",
    OperationStatus.NOT_FOUND: "Not Found",
    OperationStatus.PERMISSION_DENIED: "Access Denied",
    OperationStatus.CONNECTION_FAILED: "Connection Failed",
    OperationStatus.ALREADY_EXISTS: "Already Exists",
    OperationStatus.UNIMPLEMENTED: "Not Supported",
    OperationStatus.CANCELLED: "Cancelled",
    OperationStatus.ERROR: "Error",
}

_DEFAULT_MESSAGES: dict[OperationStatus, str] = {
    OperationStatus.SUCCESS: "Operation completed successfully",
    OperationStatus.NOT_FOUND: "The requested file or directory could not be found",
    OperationStatus.PERMISSION_DENIED: "You do not have permission to perform this operation",
    OperationStatus.CONNECTION_FAILED: "Failed to connect to the storage provider",
    OperationStatus.ALREADY_EXISTS: "The destination already exists",
    OperationStatus.UNIMPLEMENTED: "This operation is not supported by the current storage provider",
    OperationStatus.CANCELLED: "The operation was cancelled",
    OperationStatus.ERROR: "An unexpected error occurred",
}

_ACTIONS: dict[OperationStatus, str] = {
    OperationStatus.NOT_FOUND: "Check that the path is correct and try again",
    OperationStatus.PERMISSION_DENIED: "Verify your credentials and access permissions",
    OperationStatus.CONNECTION_FAILED: "Check your network connection and try again",
    OperationStatus.ALREADY_EXISTS: "Choose another name or enable overwrite",
    OperationStatus.UNIMPLEMENTED: "This feature is not available for this storage type",
    OperationStatus.CANCELLED: "Start a new operation if needed",
}


@dataclasses.dataclass(frozen=True)
class UserError:
    """Display-ready description of a failed result.

    :param title: Short title, e.g. ``"Access Denied"``.
    :param message: Detailed message from the provider, or a default.
    :param can_retry: Whether retrying may help.
    :param is_unsupported: Whether the provider lacks the operation entirely.
    :param action: Suggested next step, if any.
    :param code: Provider error code, for diagnostics.
    """

    title: str
    message: str
    can_retry: bool
    is_unsupported: bool
    action: str | None = None
    code: str | None = None


def describe(result: OperationResult[object]) -> UserError:
    """Build a :class:`UserError` for ``result``."""
    error = result.error
    return UserError(
        title=_TITLES[result.status],
        message=error.message if error and error.message else _DEFAULT_MESSAGES[result.status],
        can_retry=error.retryable if error else False,
        is_unsupported=result.status is OperationStatus.UNIMPLEMENTED,
        action=_ACTIONS.get(result.status),
        code=error.code if error else None,
    )


def format_error(
    result: OperationResult[object],
    *,
    max_length: int = 120,
    include_code: bool = False,
    include_action: bool = True,
) -> str:
    """Render ``result`` as a single status-bar line, truncated to ``max_length``."""
    user_error = describe(result)
    text = user_error.message
    if include_code and user_error.code:
        text += f" ({user_error.code})"
    if include_action and user_error.action:
        text += f". {user_error.action}"
    if len(text) > max_length:
        text = text[: max_length - 3] + "..."
    return text


# endregion
