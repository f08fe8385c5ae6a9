"""Tests for the retry wrapper."""

from __future__ import annotations

import errno
from typing import Any

import pytest

from unistore._errors import OperationCancelled
from unistore._result import OperationResult
from unistore._retry import (
    NO_RETRY,
    S3_RETRY_POLICY,
    RetryPolicy,
    call_with_retry,
    default_is_retryable,
    is_retryable_result,
)


class _Recorder:
    """Fake sleep that records requested delays in milliseconds."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(round(seconds * 1000, 6))


class _Flaky:
    """Callable failing ``failures`` times before returning ``value``."""

    def __init__(self, failures: list[Any], value: Any = "ok") -> None:
        self._failures = list(failures)
        self._value = value
        self.calls = 0

    async def __call__(self) -> Any:
        self.calls += 1
        if self._failures:
            outcome = self._failures.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self._value


class TestRetryPolicy:
    def test_defaults(self) -> None:
        p = RetryPolicy()
        assert p.max_attempts == 3
        assert p.base_delay_ms == 100
        assert p.max_delay_ms == 30_000
        assert p.jitter == 0.0

    def test_exponential_delay(self) -> None:
        p = RetryPolicy(base_delay_ms=100, max_delay_ms=1000)
        assert [p.delay_ms(n) for n in range(1, 6)] == [100, 200, 400, 800, 1000]

    def test_invalid_attempts(self) -> None:
        with pytest.raises(ValueError, match="max_attempts"):
            RetryPolicy(max_attempts=0)

    @pytest.mark.parametrize("jitter", [-0.1, 1.5])
    def test_invalid_jitter(self, jitter: float) -> None:
        with pytest.raises(ValueError, match="jitter"):
            RetryPolicy(jitter=jitter)

    def test_s3_policy(self) -> None:
        assert S3_RETRY_POLICY.max_attempts == 5
        assert S3_RETRY_POLICY.base_delay_ms == 50
        assert S3_RETRY_POLICY.jitter == 0.2


class TestDefaultIsRetryable:
    @pytest.mark.parametrize(
        "exc",
        [
            ConnectionResetError("reset"),
            TimeoutError("slow"),
            OSError(errno.ETIMEDOUT, "timed out"),
        ],
    )
    def test_transient(self, exc: BaseException) -> None:
        assert default_is_retryable(exc)

    @pytest.mark.parametrize("exc", [FileNotFoundError("x"), ValueError("x"), OperationCancelled()])
    def test_permanent(self, exc: BaseException) -> None:
        assert not default_is_retryable(exc)

    def test_throttling_code(self) -> None:
        exc = RuntimeError("slow down")
        exc.response = {"Error": {"Code": "SlowDown"}}  # type: ignore[attr-defined]
        assert default_is_retryable(exc)


class TestIsRetryableResult:
    def test_connection_failure(self) -> None:
        assert is_retryable_result(OperationResult.connection_failed("down"))

    def test_success(self) -> None:
        assert not is_retryable_result(OperationResult.success())

    def test_flagged_error(self) -> None:
        assert is_retryable_result(OperationResult.generic_error("THROTTLED", "x", retryable=True))
        assert not is_retryable_result(OperationResult.generic_error("X", "x"))

    def test_plain_value(self) -> None:
        assert not is_retryable_result(b"bytes")


class TestCallWithRetry:
    @pytest.mark.asyncio
    async def test_success_first_try(self) -> None:
        fn = _Flaky([])
        sleep = _Recorder()
        assert await call_with_retry(fn, RetryPolicy(), sleep=sleep) == "ok"
        assert fn.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_backoff_delays(self) -> None:
        fn = _Flaky([ConnectionResetError("a"), ConnectionResetError("b"), ConnectionResetError("c")])
        sleep = _Recorder()
        policy = RetryPolicy(max_attempts=4, base_delay_ms=100, max_delay_ms=250)
        assert await call_with_retry(fn, policy, sleep=sleep) == "ok"
        assert fn.calls == 4
        assert sleep.delays == [100, 200, 250]

    @pytest.mark.asyncio
    async def test_jitter_shortens_delay(self) -> None:
        fn = _Flaky([TimeoutError("slow")])
        sleep = _Recorder()
        policy = RetryPolicy(base_delay_ms=100, jitter=0.5)
        await call_with_retry(fn, policy, sleep=sleep, rng=lambda: 1.0)
        assert sleep.delays == [50]

    @pytest.mark.asyncio
    async def test_exhaustion_reraises_last_exception(self) -> None:
        fn = _Flaky([ConnectionResetError("1"), ConnectionResetError("2"), ConnectionResetError("3")])
        with pytest.raises(ConnectionResetError, match="3"):
            await call_with_retry(fn, RetryPolicy(max_attempts=3), sleep=_Recorder())
        assert fn.calls == 3

    @pytest.mark.asyncio
    async def test_non_retryable_exception_not_retried(self) -> None:
        fn = _Flaky([FileNotFoundError("gone")])
        with pytest.raises(FileNotFoundError):
            await call_with_retry(fn, RetryPolicy(), sleep=_Recorder())
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_retryable_result_retried(self) -> None:
        fn = _Flaky([OperationResult.connection_failed("down")], value=OperationResult.success(b"x"))
        result = await call_with_retry(fn, RetryPolicy(), sleep=_Recorder())
        assert result.ok
        assert fn.calls == 2

    @pytest.mark.asyncio
    async def test_exhaustion_returns_last_result(self) -> None:
        failures = [OperationResult.connection_failed(f"down {i}") for i in range(3)]
        fn = _Flaky(failures)
        result = await call_with_retry(fn, RetryPolicy(max_attempts=2), sleep=_Recorder())
        assert not result.ok
        assert result.error.message == "down 1"
        assert fn.calls == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "failure",
        [
            OperationResult.not_found("a"),
            OperationResult.permission_denied("a"),
            OperationResult.unimplemented("move"),
            OperationResult.already_exists("a"),
            OperationResult.cancelled(),
        ],
    )
    async def test_permanent_results_not_retried(self, failure: OperationResult[Any]) -> None:
        fn = _Flaky([failure])
        result = await call_with_retry(fn, RetryPolicy(), sleep=_Recorder())
        assert result is failure
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_no_retry_policy(self) -> None:
        fn = _Flaky([ConnectionResetError("x")])
        with pytest.raises(ConnectionResetError):
            await call_with_retry(fn, NO_RETRY, sleep=_Recorder())
        assert fn.calls == 1

    @pytest.mark.asyncio
    async def test_custom_predicate(self) -> None:
        fn = _Flaky([KeyError("transient in this protocol")])
        policy = RetryPolicy(is_retryable=lambda exc: isinstance(exc, KeyError))
        assert await call_with_retry(fn, policy, sleep=_Recorder()) == "ok"
        assert fn.calls == 2
