"""Retry with exponential backoff around single transport calls.

This is the only place transient failures are retried. Providers pass a
:class:`RetryPolicy` carrying their own ``is_retryable`` predicate, since what
counts as transient differs per wire protocol.
"""

from __future__ import annotations

import asyncio
import dataclasses
import errno
import logging
import random
from typing import TYPE_CHECKING, Any, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    retry_if_result,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from unistore._error_mapping import http_status, native_code
from unistore._errors import OperationCancelled
from unistore._result import OperationResult, OperationStatus

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

T = TypeVar("T")

log = logging.getLogger(__name__)

NEVER_RETRIED = frozenset(
    {
        OperationStatus.UNIMPLEMENTED,
        OperationStatus.NOT_FOUND,
        OperationStatus.PERMISSION_DENIED,
        OperationStatus.ALREADY_EXISTS,
        OperationStatus.CANCELLED,
    }
)

_RETRYABLE_HTTP_STATUS = frozenset({429, 500, 502, 503, 504})

_RETRYABLE_CODES = frozenset(
    {
        "SlowDown",
        "RequestTimeout",
        "ServiceUnavailable",
        "RequestLimitExceeded",
        "ThrottlingException",
        "ProvisionedThroughputExceededException",
        "NetworkingError",
        "TimeoutError",
        "ECONNRESET",
        "EHOSTUNREACH",
        "ETIMEDOUT",
    }
)

_RETRYABLE_ERRNOS = frozenset({errno.ECONNRESET, errno.ETIMEDOUT, errno.EHOSTUNREACH, errno.ECONNABORTED})


def default_is_retryable(exc: BaseException) -> bool:
    """Classify network-level and throttling failures as transient."""
    if isinstance(exc, (OperationCancelled, asyncio.CancelledError)):
        return False
    if isinstance(exc, (ConnectionError, TimeoutError)):
        return True
    if isinstance(exc, OSError) and exc.errno in _RETRYABLE_ERRNOS:
        return True
    if http_status(exc) in _RETRYABLE_HTTP_STATUS:
        return True
    return native_code(exc) in _RETRYABLE_CODES


def never_retry(exc: BaseException) -> bool:
    return False


@dataclasses.dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry a call.

    :param max_attempts: Total attempts including the first one.
    :param base_delay_ms: Delay after the first failure.
    :param max_delay_ms: Upper bound for any single delay.
    :param jitter: Fraction (``0``-``1``) by which a delay may be randomly shortened.
    :param is_retryable: Predicate deciding whether a raised exception is transient.
    """

    max_attempts: int = 3
    base_delay_ms: int = 100
    max_delay_ms: int = 30_000
    jitter: float = 0.0
    is_retryable: Callable[[BaseException], bool] = default_is_retryable

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if not 0.0 <= self.jitter <= 1.0:
            raise ValueError("jitter must be between 0 and 1")

    def delay_ms(self, attempt: int) -> float:
        """Un-jittered delay after failed attempt number ``attempt`` (1-based)."""
        return float(min(self.max_delay_ms, self.base_delay_ms * 2 ** (attempt - 1)))


NO_RETRY = RetryPolicy(max_attempts=1, is_retryable=never_retry)

S3_RETRY_POLICY = RetryPolicy(max_attempts=5, base_delay_ms=50, max_delay_ms=60_000, jitter=0.2)


class _wait_backoff(wait_base):  # noqa: N801
    def __init__(self, policy: RetryPolicy, rng: Callable[[], float]) -> None:
        self._policy = policy
        self._rng = rng

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._policy.delay_ms(retry_state.attempt_number)
        if self._policy.jitter:
            delay *= 1.0 - self._policy.jitter * self._rng()
        return delay / 1000.0


def is_retryable_result(value: object) -> bool:
    """``True`` for failed results flagged retryable, excluding statuses that never heal."""
    if not isinstance(value, OperationResult) or value.ok or value.error is None:
        return False
    return value.error.retryable and value.status not in NEVER_RETRIED


def _return_last_outcome(retry_state: RetryCallState) -> Any:
    # Re-raises the last exception, or returns the last failing result.
    assert retry_state.outcome is not None
    return retry_state.outcome.result()


async def call_with_retry(
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy | None = None,
    *,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    rng: Callable[[], float] = random.random,
    logger: logging.Logger | None = None,
) -> T:
    """Await ``fn()`` and retry it under ``policy``.

    ``fn`` may fail by raising or by returning a failed
    :class:`~unistore._result.OperationResult`. When attempts run out, the last
    failure propagates unchanged.

    :param fn: Zero-argument coroutine function performing one transport call.
    :param policy: Retry policy; defaults to :class:`RetryPolicy()`.
    :param sleep: Awaitable sleep, replaceable in tests.
    :param rng: Random source for jitter, replaceable in tests.
    :param logger: Logger for retry warnings.
    """
    policy = policy or RetryPolicy()
    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=_wait_backoff(policy, rng),
        retry=retry_if_exception(policy.is_retryable) | retry_if_result(is_retryable_result),
        before_sleep=before_sleep_log(logger or log, logging.WARNING),  # type: ignore[arg-type,unused-ignore]
        retry_error_callback=_return_last_outcome,
        sleep=sleep,
    )
    return await retrying(fn)
