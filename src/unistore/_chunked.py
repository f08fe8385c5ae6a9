"""Size-based chunked (multipart) upload driver.

Payloads below the threshold go out in one call. Larger payloads are split into
fixed-size parts, each part sent through the retry wrapper, and the upload is
aborted if any step fails so no orphaned parts are left behind.
"""

from __future__ import annotations

import asyncio
import dataclasses
import functools
import logging
from typing import TYPE_CHECKING, Protocol

from unistore._progress import report_progress
from unistore._result import OperationResult
from unistore._retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Iterator

    from unistore._cancellation import CancellationToken
    from unistore._error_mapping import ErrorTable
    from unistore._types import ProgressCallback

log = logging.getLogger(__name__)

CHUNK_THRESHOLD = 5 * 1024 * 1024
PART_SIZE = 5 * 1024 * 1024


def should_use_chunked(size: int, threshold: int = CHUNK_THRESHOLD) -> bool:
    """Payloads of exactly ``threshold`` bytes are already chunked."""
    return size >= threshold


@dataclasses.dataclass(frozen=True)
class Part:
    """Byte range ``[start, end)`` of part ``number`` (1-based)."""

    number: int
    start: int
    end: int

    @property
    def size(self) -> int:
        return self.end - self.start


@dataclasses.dataclass(frozen=True)
class CompletedPart:
    number: int
    etag: str


def split_parts(total: int, part_size: int = PART_SIZE) -> Iterator[Part]:
    """Yield consecutive parts covering ``total`` bytes; only the last may be short.

    :raises ValueError: If ``part_size`` is not positive.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    number = 1
    for start in range(0, total, part_size):
        yield Part(number, start, min(start + part_size, total))
        number += 1


class MultipartSession(Protocol):
    """One multipart upload on the backend.

    Methods raise backend-native exceptions; the driver maps them.
    ``abort`` must be safe to call whether or not ``start`` succeeded.
    """

    async def start(self) -> None: ...

    async def upload_part(self, part: Part, data: bytes) -> CompletedPart: ...

    async def complete(self, parts: list[CompletedPart]) -> None: ...

    async def abort(self) -> None: ...


async def upload_chunked(
    data: bytes,
    *,
    key: str,
    write_single: Callable[[bytes], Awaitable[OperationResult[None]]],
    open_session: Callable[[], MultipartSession],
    error_table: ErrorTable,
    on_progress: ProgressCallback | None = None,
    cancellation: CancellationToken | None = None,
    threshold: int = CHUNK_THRESHOLD,
    part_size: int = PART_SIZE,
    retry_policy: RetryPolicy | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    logger: logging.Logger | None = None,
) -> OperationResult[None]:
    """Upload ``data`` to ``key`` in one call or in parts, depending on its size.

    :param write_single: Sends a payload below the threshold in one call.
    :param open_session: Creates the multipart session for larger payloads.
    :param error_table: Maps exceptions raised by the session.
    :param on_progress: Receives byte-based progress: 0 % and 100 % for a
        single call, one event after every part otherwise.
    :param cancellation: Checked before every part.
    :param retry_policy: Applied to every session call.
    """
    logger = logger or log
    total = len(data)
    if not should_use_chunked(total, threshold):
        report_progress(on_progress, "upload", 0, total, key)
        result = await write_single(data)
        if result.ok:
            report_progress(on_progress, "upload", total, total, key)
        return result

    parts = list(split_parts(total, part_size))
    logger.debug("Starting chunked upload of %r: %d bytes in %d parts", key, total, len(parts))
    session = open_session()
    policy = retry_policy or RetryPolicy()
    try:
        await call_with_retry(session.start, policy, sleep=sleep, logger=logger)
        completed: list[CompletedPart] = []
        for part in parts:
            if cancellation is not None and cancellation.is_cancelled:
                logger.info("Chunked upload of %r cancelled before part %d", key, part.number)
                await _abort(session, key, logger)
                return OperationResult.cancelled()
            upload = functools.partial(session.upload_part, part, data[part.start : part.end])
            completed.append(await call_with_retry(upload, policy, sleep=sleep, logger=logger))
            report_progress(on_progress, "upload", part.end, total, key)
        await call_with_retry(functools.partial(session.complete, completed), policy, sleep=sleep, logger=logger)
    except asyncio.CancelledError:
        logger.info("Chunked upload of %r interrupted, aborting", key)
        await asyncio.shield(_abort(session, key, logger))
        raise
    except Exception as exc:
        logger.error("Chunked upload of %r failed: %s", key, exc)
        failure: OperationResult[None] = error_table.to_result(exc, path=key, operation="upload")
        abort_error = await _abort(session, key, logger)
        if abort_error is not None and failure.error is not None:
            details = {**failure.error.details, "abort_error": abort_error}
            failure = dataclasses.replace(failure, error=dataclasses.replace(failure.error, details=details))
        return failure
    logger.debug("Chunked upload of %r completed", key)
    return OperationResult.success()


async def _abort(session: MultipartSession, key: str, logger: logging.Logger) -> str | None:
    """Abort ``session``; return the abort error's description instead of raising it."""
    try:
        await session.abort()
    except Exception as exc:
        logger.error("Failed to abort chunked upload of %r: %s", key, exc)
        return str(exc) or type(exc).__name__
    return None
