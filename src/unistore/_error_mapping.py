"""Shared shape of the per-backend error-mapping tables.

Each provider declares an :class:`ErrorTable`: an ordered list of
:class:`ErrorRule` entries that translate native error signals (exception
types, ``errno`` values, SDK error codes, message fragments) into the
backend-agnostic :class:`~unistore._result.OperationStatus` taxonomy. The first
matching rule wins; anything unmatched becomes ``ERROR`` with the table's
default code.
"""

from __future__ import annotations

import dataclasses
import errno as errno_mod
from typing import Any

from unistore._result import OperationError, OperationResult, OperationStatus


def native_code(exc: BaseException) -> str | None:
    """Best-effort SDK error code: botocore ``Error.Code``, then an ``errno`` name, then ``.code``."""
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        code = response.get("Error", {}).get("Code")
        if code:
            return str(code)
    err = getattr(exc, "errno", None)
    if isinstance(err, int) and err in errno_mod.errorcode:
        return errno_mod.errorcode[err]
    code = getattr(exc, "code", None)
    return str(code) if code is not None else None


def http_status(exc: BaseException) -> int | None:
    response = getattr(exc, "response", None)
    if isinstance(response, dict):
        status = response.get("ResponseMetadata", {}).get("HTTPStatusCode")
        if isinstance(status, int):
            return status
    status = getattr(exc, "status", None)
    return status if isinstance(status, int) else None


@dataclasses.dataclass(frozen=True)
class ErrorRule:
    """One row of an error-mapping table.

    A rule matches when any of its criteria match. A rule without criteria never
    matches.

    :param status: Status to report on a match.
    :param exception_types: Exception classes (``isinstance`` check).
    :param errnos: ``errno`` values.
    :param codes: Native error codes as returned by :func:`native_code`.
    :param http_statuses: HTTP status codes.
    :param message_contains: Case-insensitive fragments of ``str(exc)``.
    :param code: Error code to report; defaults to the status' canonical code.
    :param retryable: Retry hint; defaults to ``True`` only for ``CONNECTION_FAILED``.
    """

    status: OperationStatus
    exception_types: tuple[type[BaseException], ...] = ()
    errnos: frozenset[int] = frozenset()
    codes: frozenset[str] = frozenset()
    http_statuses: frozenset[int] = frozenset()
    message_contains: tuple[str, ...] = ()
    code: str | None = None
    retryable: bool | None = None

    def matches(self, exc: BaseException) -> bool:
        if self.exception_types and isinstance(exc, self.exception_types):
            return True
        if self.errnos and getattr(exc, "errno", None) in self.errnos:
            return True
        if self.codes and native_code(exc) in self.codes:
            return True
        if self.http_statuses and http_status(exc) in self.http_statuses:
            return True
        if self.message_contains:
            text = str(exc).lower()
            return any(fragment.lower() in text for fragment in self.message_contains)
        return False


_CANONICAL_CODES: dict[OperationStatus, str] = {
    OperationStatus.NOT_FOUND: "NOT_FOUND",
    OperationStatus.PERMISSION_DENIED: "PERMISSION_DENIED",
    OperationStatus.CONNECTION_FAILED: "CONNECTION_FAILED",
    OperationStatus.ALREADY_EXISTS: "ALREADY_EXISTS",
    OperationStatus.UNIMPLEMENTED: "UNIMPLEMENTED",
    OperationStatus.CANCELLED: "CANCELLED",
}

_MESSAGES: dict[OperationStatus, str] = {
    OperationStatus.NOT_FOUND: "Path not found: {path}",
    OperationStatus.PERMISSION_DENIED: "Access denied: {path}",
    OperationStatus.ALREADY_EXISTS: "Already exists: {path}",
    OperationStatus.UNIMPLEMENTED: "{operation} not supported by this provider",
}


@dataclasses.dataclass(frozen=True)
class ErrorTable:
    """Ordered mapping from native errors to results for one backend.

    :param provider: Provider name, used in messages.
    :param rules: Rules evaluated in order.
    :param default_code: Error code for unmatched errors.
    """

    provider: str
    rules: tuple[ErrorRule, ...]
    default_code: str = "ERROR"

    def classify(self, exc: BaseException) -> ErrorRule | None:
        for rule in self.rules:
            if rule.matches(exc):
                return rule
        return None

    def to_result(self, exc: BaseException, *, path: str = "", operation: str = "") -> OperationResult[Any]:
        """Translate ``exc`` into a failed result carrying ``exc`` as its cause."""
        rule = self.classify(exc)
        detail = str(exc) or type(exc).__name__
        if rule is None:
            label = f"{self.provider} {operation}".strip()
            return OperationResult.generic_error(self.default_code, f"{label} failed: {detail}", cause=exc)
        status = rule.status
        code = rule.code or _CANONICAL_CODES.get(status, self.default_code)
        template = _MESSAGES.get(status)
        message = template.format(path=path, operation=operation) if template else f"{detail}"
        retryable = rule.retryable if rule.retryable is not None else status is OperationStatus.CONNECTION_FAILED
        return OperationResult(status, error=OperationError(code, message, retryable=retryable, cause=exc))


COMMON_RULES: tuple[ErrorRule, ...] = (
    ErrorRule(
        OperationStatus.NOT_FOUND,
        exception_types=(FileNotFoundError,),
        errnos=frozenset({errno_mod.ENOENT}),
    ),
    ErrorRule(
        OperationStatus.PERMISSION_DENIED,
        exception_types=(PermissionError,),
        errnos=frozenset({errno_mod.EACCES, errno_mod.EPERM}),
    ),
    ErrorRule(
        OperationStatus.ALREADY_EXISTS,
        exception_types=(FileExistsError,),
        errnos=frozenset({errno_mod.EEXIST}),
    ),
    ErrorRule(
        OperationStatus.CONNECTION_FAILED,
        exception_types=(ConnectionError, TimeoutError),
        errnos=frozenset({errno_mod.ECONNREFUSED, errno_mod.ECONNRESET, errno_mod.ETIMEDOUT, errno_mod.EHOSTUNREACH}),
    ),
)
"""Rules for the builtin ``OSError`` family; backend tables append them after their own rules."""

LOCAL_FS_ERRORS = ErrorTable("local", COMMON_RULES)
"""Table for local-filesystem side effects of transfers."""
