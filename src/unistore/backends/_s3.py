"""S3-compatible object storage provider using s3fs."""

from __future__ import annotations

import asyncio
import errno
from typing import TYPE_CHECKING, Any

import s3fs  # type: ignore[import-untyped]

from unistore._capabilities import Capability
from unistore._chunked import CompletedPart, Part
from unistore._error_mapping import COMMON_RULES, ErrorRule, ErrorTable
from unistore._result import OperationResult, OperationStatus
from unistore._retry import S3_RETRY_POLICY
from unistore.backends._fsspec import FsspecProvider, NoContainerSelected

if TYPE_CHECKING:
    import logging

    from unistore._retry import RetryPolicy

S3_ERROR_TABLE = ErrorTable(
    "s3",
    (
        ErrorRule(
            OperationStatus.NOT_FOUND,
            codes=frozenset({"NoSuchKey", "NoSuchBucket", "NotFound", "404"}),
            http_statuses=frozenset({404}),
        ),
        ErrorRule(
            OperationStatus.PERMISSION_DENIED,
            codes=frozenset({"AccessDenied", "InvalidAccessKeyId", "SignatureDoesNotMatch", "403"}),
            http_statuses=frozenset({403}),
        ),
        ErrorRule(
            OperationStatus.ALREADY_EXISTS,
            codes=frozenset({"BucketAlreadyExists", "BucketAlreadyOwnedByYou"}),
        ),
        ErrorRule(
            OperationStatus.ERROR,
            codes=frozenset({"SlowDown", "ThrottlingException", "RequestLimitExceeded", "ServiceUnavailable"}),
            http_statuses=frozenset({429, 503}),
            code="THROTTLED",
            retryable=True,
        ),
        ErrorRule(OperationStatus.ERROR, errnos=frozenset({errno.ENOTEMPTY}), code="DIRECTORY_NOT_EMPTY"),
        ErrorRule(OperationStatus.ERROR, exception_types=(NoContainerSelected,), code="NO_CONTAINER"),
        ErrorRule(
            OperationStatus.CONNECTION_FAILED,
            message_contains=("could not connect to the endpoint", "connect timeout", "endpoint url"),
        ),
        *COMMON_RULES,
    ),
    default_code="S3_ERROR",
)


class S3MultipartSession:
    """One S3 multipart upload driven through ``S3FileSystem.call_s3``."""

    def __init__(self, fs: Any, bucket: str, key: str, content_type: str | None = None) -> None:
        self._fs = fs
        self._bucket = bucket
        self._key = key
        self._content_type = content_type
        self.upload_id: str | None = None

    def _s3(self, method: str, **kwargs: Any) -> Any:
        return self._fs.call_s3(method, Bucket=self._bucket, Key=self._key, **kwargs)

    async def start(self) -> None:
        extra = {"ContentType": self._content_type} if self._content_type else {}
        response = await asyncio.to_thread(self._s3, "create_multipart_upload", **extra)
        self.upload_id = response["UploadId"]

    async def upload_part(self, part: Part, data: bytes) -> CompletedPart:
        response = await asyncio.to_thread(
            self._s3, "upload_part", UploadId=self.upload_id, PartNumber=part.number, Body=data
        )
        return CompletedPart(part.number, response["ETag"])

    async def complete(self, parts: list[CompletedPart]) -> None:
        upload = {"Parts": [{"ETag": p.etag, "PartNumber": p.number} for p in parts]}
        await asyncio.to_thread(
            self._s3, "complete_multipart_upload", UploadId=self.upload_id, MultipartUpload=upload
        )
        self._fs.invalidate_cache(f"{self._bucket}/{self._key}")

    async def abort(self) -> None:
        if self.upload_id is None:
            return
        await asyncio.to_thread(self._s3, "abort_multipart_upload", UploadId=self.upload_id)
        self.upload_id = None


class S3Provider(FsspecProvider):
    """S3-compatible object storage provider using s3fs.

    Payloads of 5 MiB and more are sent as multipart uploads.

    :param bucket: Bucket name; without one, listing the root lists buckets.
    :param region: AWS region name.
    :param endpoint: Custom endpoint URL (e.g. for MinIO).
    :param access_key_id: AWS access key ID.
    :param secret_access_key: AWS secret access key.
    :param session_token: Temporary session token.
    :param profile: Named profile from the AWS config files.
    :param force_path_style: Use path-style addressing (most S3-compatible servers need it).
    :param client_options: Additional options passed to s3fs.
    :param fs: Pre-built ``S3FileSystem``.
    """

    error_table = S3_ERROR_TABLE
    default_retry_policy = S3_RETRY_POLICY
    # s3fs hands extra pipe_file kwargs straight to put_object
    _content_type_kwarg = "ContentType"

    def __init__(
        self,
        bucket: str | None = None,
        *,
        region: str | None = None,
        endpoint: str | None = None,
        access_key_id: str | None = None,
        secret_access_key: str | None = None,
        session_token: str | None = None,
        profile: str | None = None,
        force_path_style: bool = False,
        client_options: dict[str, Any] | None = None,
        fs: Any = None,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(bucket, fs=fs, logger=logger, retry_policy=retry_policy)
        self._region = region
        self._endpoint = endpoint
        self._access_key_id = access_key_id
        self._secret_access_key = secret_access_key
        self._session_token = session_token
        self._profile = profile
        self._force_path_style = force_path_style
        self._client_options = client_options or {}
        self._add_capability(
            Capability.LIST,
            Capability.READ,
            Capability.WRITE,
            Capability.DELETE,
            Capability.MKDIR,
            Capability.RMDIR,
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
        return "s3"

    @property
    def display_name(self) -> str:
        where = self._endpoint or "AWS"
        return f"S3 ({self._container or '*'} @ {where})"

    def _make_fs(self) -> Any:
        opts: dict[str, Any] = dict(self._client_options)
        if self._endpoint is not None:
            opts["endpoint_url"] = self._endpoint
        if self._access_key_id is not None:
            opts["key"] = self._access_key_id
        if self._secret_access_key is not None:
            opts["secret"] = self._secret_access_key
        if self._session_token is not None:
            opts["token"] = self._session_token
        if self._profile is not None:
            opts["profile"] = self._profile
        if self._region is not None:
            client_kwargs: dict[str, Any] = opts.setdefault("client_kwargs", {})
            client_kwargs["region_name"] = self._region
        if self._force_path_style:
            config_kwargs: dict[str, Any] = opts.setdefault("config_kwargs", {})
            config_kwargs["s3"] = {"addressing_style": "path"}
        opts.setdefault("anon", False)
        return s3fs.S3FileSystem(**opts)

    def _put_directory_marker(self, remote: str) -> None:
        bucket, _, key = remote.partition("/")
        if not key:
            return
        self._fs.call_s3("put_object", Bucket=bucket, Key=key.rstrip("/") + "/", Body=b"")
        self._fs.invalidate_cache(remote)

    def _multipart_session(self, path: str, content_type: str | None) -> S3MultipartSession | None:
        if not self._container:
            return None
        bucket, _, key = self._remote(path).partition("/")
        return S3MultipartSession(self._fs, bucket, key, content_type)

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> OperationResult[None]:
        """Replace the user metadata of an object (server-side copy onto itself)."""
        return await self._call("set_metadata", path, lambda: self._fs.setxattr(self._remote(path), **metadata))
