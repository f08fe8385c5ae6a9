"""Typed operation outcomes shared by every provider.

Every provider operation returns an :class:`OperationResult` instead of raising
for expected failures, so composed operations can short-circuit explicitly.
"""

from __future__ import annotations

import dataclasses
import enum
from typing import TYPE_CHECKING, Any, Generic, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

T = TypeVar("T")
U = TypeVar("U")


class OperationStatus(enum.Enum):
    """Outcome category of an operation."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    CONNECTION_FAILED = "connection_failed"
    ALREADY_EXISTS = "already_exists"
    UNIMPLEMENTED = "unimplemented"
    CANCELLED = "cancelled"
    ERROR = "error"


@dataclasses.dataclass(frozen=True)
class OperationError:
    """Details of a failed operation.

    :param code: Error code for programmatic handling (e.g. ``"NOT_FOUND"``).
    :param message: Human-readable description.
    :param retryable: Advisory hint for the retry wrapper.
    :param cause: The original backend error, if any.
    :param details: Extra context (e.g. a failed cleanup step).
    """

    code: str
    message: str
    retryable: bool = False
    cause: BaseException | None = dataclasses.field(default=None, compare=False)
    details: dict[str, object] = dataclasses.field(default_factory=dict, compare=False)


@dataclasses.dataclass(frozen=True)
class OperationResult(Generic[T]):
    """Either ``SUCCESS`` with optional ``data``, or a failure status with an ``error``.

    :raises ValueError: If the status and the populated fields disagree.
    """

    status: OperationStatus
    data: T | None = None
    error: OperationError | None = None

    def __post_init__(self) -> None:
        if self.status is OperationStatus.SUCCESS:
            if self.error is not None:
                raise ValueError("A successful result cannot carry an error")
        else:
            if self.error is None:
                raise ValueError(f"A {self.status.value} result must carry an error")
            if self.data is not None:
                raise ValueError(f"A {self.status.value} result cannot carry data")

    @property
    def ok(self) -> bool:
        return self.status is OperationStatus.SUCCESS

    def map(self, fn: Callable[[T], U]) -> OperationResult[U]:
        """Transform the data of a successful result; failures pass through unchanged."""
        if self.status is OperationStatus.SUCCESS:
            return OperationResult(OperationStatus.SUCCESS, fn(self.data))  # type: ignore[arg-type]
        return self  # type: ignore[return-value]

    # region: factories

    @classmethod
    def success(cls, data: Any = None) -> OperationResult[Any]:
        return cls(OperationStatus.SUCCESS, data)

    @classmethod
    def not_found(cls, path: str) -> OperationResult[Any]:
        return cls(OperationStatus.NOT_FOUND, error=OperationError("NOT_FOUND", f"Path not found: {path}"))

    @classmethod
    def permission_denied(cls, path: str) -> OperationResult[Any]:
        return cls(
            OperationStatus.PERMISSION_DENIED,
            error=OperationError("PERMISSION_DENIED", f"Access denied: {path}"),
        )

    @classmethod
    def connection_failed(cls, message: str, cause: BaseException | None = None) -> OperationResult[Any]:
        return cls(
            OperationStatus.CONNECTION_FAILED,
            error=OperationError("CONNECTION_FAILED", message, retryable=True, cause=cause),
        )

    @classmethod
    def already_exists(cls, path: str) -> OperationResult[Any]:
        return cls(
            OperationStatus.ALREADY_EXISTS,
            error=OperationError("ALREADY_EXISTS", f"Already exists: {path}"),
        )

    @classmethod
    def unimplemented(cls, operation: str) -> OperationResult[Any]:
        return cls(
            OperationStatus.UNIMPLEMENTED,
            error=OperationError("UNIMPLEMENTED", f"{operation} not supported by this provider"),
        )

    @classmethod
    def cancelled(cls) -> OperationResult[Any]:
        return cls(OperationStatus.CANCELLED, error=OperationError("CANCELLED", "Operation was cancelled"))

    @classmethod
    def generic_error(
        cls,
        code: str,
        message: str,
        retryable: bool = False,
        cause: BaseException | None = None,
        details: dict[str, object] | None = None,
    ) -> OperationResult[Any]:
        return cls(
            OperationStatus.ERROR,
            error=OperationError(code, message, retryable=retryable, cause=cause, details=dict(details or {})),
        )

    # endregion


def is_success(result: OperationResult[Any]) -> bool:
    return result.status is OperationStatus.SUCCESS


def is_error(result: OperationResult[Any]) -> bool:
    return result.status is not OperationStatus.SUCCESS


def is_unimplemented(result: OperationResult[Any]) -> bool:
    return result.status is OperationStatus.UNIMPLEMENTED


def is_cancelled(result: OperationResult[Any]) -> bool:
    return result.status is OperationStatus.CANCELLED
