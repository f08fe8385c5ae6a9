"""GCS provider tests that need no cloud access.

Requires: gcsfs. Skipped if it is not installed.
"""

from __future__ import annotations

import pytest

pytest.importorskip("gcsfs", reason="gcsfs not installed")

from unistore._capabilities import Capability  # noqa: E402
from unistore._result import OperationStatus  # noqa: E402
from unistore.backends._gcs import GCS_ERROR_TABLE, GCSProvider  # noqa: E402


class _HttpError(Exception):
    """Shaped like gcsfs' HttpError."""

    def __init__(self, code: int) -> None:
        super().__init__(f"HTTP {code}")
        self.code = code


class TestGCSProvider:
    def test_identity(self) -> None:
        provider = GCSProvider("media", project_id="proj")
        assert provider.name == "gcs"
        assert provider.display_name == "Google Cloud Storage (media)"
        assert GCSProvider(project_id="proj").display_name == "Google Cloud Storage (proj)"

    def test_directories_are_implicit(self) -> None:
        caps = GCSProvider("media").capabilities
        assert Capability.MKDIR not in caps
        assert caps.supports_all(Capability.SERVER_SIDE_COPY, Capability.CONTAINERS)

    @pytest.mark.asyncio
    async def test_mkdir_unimplemented(self) -> None:
        result = await GCSProvider("media").mkdir("folder")
        assert result.status is OperationStatus.UNIMPLEMENTED


class TestGCSErrorMapping:
    @pytest.mark.parametrize(
        ("code", "status"),
        [
            (404, OperationStatus.NOT_FOUND),
            (401, OperationStatus.PERMISSION_DENIED),
            (403, OperationStatus.PERMISSION_DENIED),
            (412, OperationStatus.ALREADY_EXISTS),
            (503, OperationStatus.ERROR),
        ],
    )
    def test_http_codes(self, code: int, status: OperationStatus) -> None:
        assert GCS_ERROR_TABLE.to_result(_HttpError(code)).status is status

    def test_throttling_is_retryable(self) -> None:
        result = GCS_ERROR_TABLE.to_result(_HttpError(429))
        assert result.error is not None
        assert result.error.code == "THROTTLED"
        assert result.error.retryable

    def test_builtin_errors(self) -> None:
        assert GCS_ERROR_TABLE.to_result(FileNotFoundError("x")).status is OperationStatus.NOT_FOUND
