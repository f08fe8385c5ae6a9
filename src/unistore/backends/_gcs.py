"""Google Cloud Storage provider using gcsfs."""

from __future__ import annotations

import errno
from typing import TYPE_CHECKING, Any

import gcsfs  # type: ignore[import-untyped]

from unistore._capabilities import Capability
from unistore._error_mapping import COMMON_RULES, ErrorRule, ErrorTable
from unistore._result import OperationStatus
from unistore.backends._fsspec import FsspecProvider, NoContainerSelected

if TYPE_CHECKING:
    import logging

    from unistore._retry import RetryPolicy

# gcsfs raises HttpError with an integer ``code`` for statuses it does not
# translate into builtin OSErrors itself.
GCS_ERROR_TABLE = ErrorTable(
    "gcs",
    (
        ErrorRule(OperationStatus.NOT_FOUND, codes=frozenset({"404"})),
        ErrorRule(OperationStatus.PERMISSION_DENIED, codes=frozenset({"401", "403"})),
        ErrorRule(OperationStatus.ALREADY_EXISTS, codes=frozenset({"409", "412"})),
        ErrorRule(
            OperationStatus.ERROR,
            codes=frozenset({"429", "500", "502", "503", "504"}),
            code="THROTTLED",
            retryable=True,
        ),
        ErrorRule(OperationStatus.ERROR, errnos=frozenset({errno.ENOTEMPTY}), code="DIRECTORY_NOT_EMPTY"),
        ErrorRule(OperationStatus.ERROR, exception_types=(NoContainerSelected,), code="NO_CONTAINER"),
        *COMMON_RULES,
    ),
    default_code="GCS_ERROR",
)


class GCSProvider(FsspecProvider):
    """Google Cloud Storage provider using gcsfs.

    Directories are implicit prefixes, so there is no ``mkdir``; gcsfs
    performs resumable uploads for large payloads on its own.

    :param bucket: Bucket name; without one, listing the root lists buckets.
    :param project_id: Project used for bucket listing.
    :param key_file_path: Service-account JSON key file.
    :param use_application_default: Use Application Default Credentials.
    :param endpoint: Custom endpoint URL (e.g. a local emulator).
    :param client_options: Additional options passed to gcsfs.
    :param fs: Pre-built ``GCSFileSystem``.
    """

    error_table = GCS_ERROR_TABLE

    def __init__(
        self,
        bucket: str | None = None,
        *,
        project_id: str | None = None,
        key_file_path: str | None = None,
        use_application_default: bool = False,
        endpoint: str | None = None,
        client_options: dict[str, Any] | None = None,
        fs: Any = None,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(bucket, fs=fs, logger=logger, retry_policy=retry_policy)
        self._project_id = project_id
        self._key_file_path = key_file_path
        self._use_application_default = use_application_default
        self._endpoint = endpoint
        self._client_options = client_options or {}
        self._add_capability(
            Capability.LIST,
            Capability.READ,
            Capability.WRITE,
            Capability.DELETE,
            Capability.COPY,
            Capability.SERVER_SIDE_COPY,
            Capability.DOWNLOAD,
            Capability.UPLOAD,
            Capability.METADATA,
            Capability.PRESIGNED_URLS,
            Capability.BATCH_DELETE,
            Capability.CONTAINERS,
        )

    @property
    def name(self) -> str:
        return "gcs"

    @property
    def display_name(self) -> str:
        return f"Google Cloud Storage ({self._container or self._project_id or '*'})"

    def _make_fs(self) -> Any:
        opts: dict[str, Any] = dict(self._client_options)
        if self._project_id is not None:
            opts["project"] = self._project_id
        if self._key_file_path is not None:
            opts["token"] = self._key_file_path
        elif self._use_application_default:
            opts["token"] = "google_default"
        if self._endpoint is not None:
            opts["endpoint_url"] = self._endpoint
        return gcsfs.GCSFileSystem(**opts)
