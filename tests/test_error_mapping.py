"""Tests for error-mapping tables."""

from __future__ import annotations

import errno

import pytest

from unistore._error_mapping import COMMON_RULES, LOCAL_FS_ERRORS, ErrorRule, ErrorTable, http_status, native_code
from unistore._result import OperationStatus


class _SdkError(Exception):
    """Looks like a botocore ClientError."""

    def __init__(self, code: str, status: int = 400) -> None:
        super().__init__(f"An error occurred ({code})")
        self.response = {"Error": {"Code": code}, "ResponseMetadata": {"HTTPStatusCode": status}}


class _HttpError(Exception):
    def __init__(self, code: int) -> None:
        super().__init__(f"HTTP {code}")
        self.code = code
        self.status = code


class TestNativeCode:
    def test_botocore_code(self) -> None:
        assert native_code(_SdkError("NoSuchKey")) == "NoSuchKey"

    def test_errno_name(self) -> None:
        assert native_code(OSError(errno.ENOTEMPTY, "not empty")) == "ENOTEMPTY"

    def test_code_attribute(self) -> None:
        assert native_code(_HttpError(404)) == "404"

    def test_none(self) -> None:
        assert native_code(RuntimeError("x")) is None

    def test_http_status(self) -> None:
        assert http_status(_SdkError("AccessDenied", 403)) == 403
        assert http_status(_HttpError(503)) == 503
        assert http_status(RuntimeError("x")) is None


class TestErrorRule:
    def test_no_criteria_never_matches(self) -> None:
        assert not ErrorRule(OperationStatus.ERROR).matches(RuntimeError("x"))

    def test_exception_type(self) -> None:
        assert ErrorRule(OperationStatus.NOT_FOUND, exception_types=(KeyError,)).matches(KeyError("k"))

    def test_message_fragment_case_insensitive(self) -> None:
        rule = ErrorRule(OperationStatus.CONNECTION_FAILED, message_contains=("connection reset",))
        assert rule.matches(RuntimeError("Connection RESET by peer"))
        assert not rule.matches(RuntimeError("other"))

    def test_http_status(self) -> None:
        rule = ErrorRule(OperationStatus.PERMISSION_DENIED, http_statuses=frozenset({403}))
        assert rule.matches(_SdkError("Whatever", 403))


class TestErrorTable:
    table = ErrorTable(
        "demo",
        (
            ErrorRule(OperationStatus.NOT_FOUND, codes=frozenset({"NoSuchKey"})),
            ErrorRule(OperationStatus.ERROR, codes=frozenset({"SlowDown"}), code="THROTTLED", retryable=True),
            *COMMON_RULES,
        ),
        default_code="DEMO_ERROR",
    )

    def test_first_match_wins(self) -> None:
        r = self.table.to_result(_SdkError("NoSuchKey"), path="a.txt", operation="read")
        assert r.status is OperationStatus.NOT_FOUND
        assert r.error is not None
        assert r.error.code == "NOT_FOUND"
        assert r.error.message == "Path not found: a.txt"

    def test_custom_code_and_retryable(self) -> None:
        exc = _SdkError("SlowDown", 503)
        r = self.table.to_result(exc, path="a.txt", operation="write")
        assert r.status is OperationStatus.ERROR
        assert r.error is not None
        assert r.error.code == "THROTTLED"
        assert r.error.retryable
        assert r.error.cause is exc

    def test_unmatched_uses_default_code(self) -> None:
        r = self.table.to_result(RuntimeError("kaboom"), path="a.txt", operation="read")
        assert r.status is OperationStatus.ERROR
        assert r.error is not None
        assert r.error.code == "DEMO_ERROR"
        assert r.error.message == "demo read failed: kaboom"
        assert not r.error.retryable

    def test_connection_failures_retryable_by_default(self) -> None:
        r = self.table.to_result(ConnectionResetError("reset"), operation="list")
        assert r.status is OperationStatus.CONNECTION_FAILED
        assert r.error is not None
        assert r.error.retryable

    def test_empty_message_uses_type_name(self) -> None:
        r = self.table.to_result(RuntimeError(), operation="read")
        assert r.error is not None
        assert r.error.message.endswith("RuntimeError")


class TestLocalTable:
    @pytest.mark.parametrize(
        ("exc", "status"),
        [
            (FileNotFoundError("x"), OperationStatus.NOT_FOUND),
            (PermissionError("x"), OperationStatus.PERMISSION_DENIED),
            (FileExistsError("x"), OperationStatus.ALREADY_EXISTS),
            (OSError(errno.EACCES, "denied"), OperationStatus.PERMISSION_DENIED),
            (TimeoutError("x"), OperationStatus.CONNECTION_FAILED),
            (IsADirectoryError("x"), OperationStatus.ERROR),
        ],
    )
    def test_builtin_oserrors(self, exc: BaseException, status: OperationStatus) -> None:
        assert LOCAL_FS_ERRORS.to_result(exc).status is status
