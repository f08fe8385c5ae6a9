"""Shared base for object stores reached through an fsspec filesystem (s3fs, gcsfs)."""

from __future__ import annotations

import abc
import errno
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from unistore._capabilities import Capability
from unistore._chunked import MultipartSession, should_use_chunked, upload_chunked
from unistore._entry import Entry, EntryType, ListOptions, ListResult, generate_entry_id, paginate
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, normalize, strip_slash
from unistore._progress import report_progress
from unistore._provider import Provider
from unistore._result import OperationResult

if TYPE_CHECKING:
    import logging

    from unistore._retry import RetryPolicy
    from unistore._types import Content


class NoContainerSelected(LookupError):
    """Raised inside blocking primitives when a path needs a bucket and none is set."""


class FsspecProvider(Provider):
    """Provider over a lazily created fsspec filesystem rooted at a bucket.

    Subclasses build the filesystem in :meth:`_make_fs` and may supply a
    multipart session through :meth:`_multipart_session`.

    :param bucket: Bucket to work in; can be chosen later with :meth:`set_container`.
    :param fs: Pre-built filesystem, used instead of :meth:`_make_fs`.
    """

    #: Keyword the filesystem's ``pipe_file`` takes the MIME type under.
    _content_type_kwarg = "content_type"

    def __init__(
        self,
        bucket: str | None = None,
        *,
        fs: Any = None,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(logger=logger, retry_policy=retry_policy)
        self._container = bucket.strip("/") if bucket else None
        self._fs_instance: Any = fs

    # region: lazy filesystem
    @abc.abstractmethod
    def _make_fs(self) -> Any:
        """Create the fsspec filesystem."""

    @property
    def _fs(self) -> Any:
        if self._fs_instance is None:
            self._fs_instance = self._make_fs()
        return self._fs_instance

    async def disconnect(self) -> OperationResult[None]:
        """Drop the filesystem and its cached instances; the next call builds a fresh one."""
        if self._fs_instance is not None:
            self._fs_instance.clear_instance_cache()
            self._fs_instance = None
        return await super().disconnect()

    # endregion

    # region: path helpers
    def _remote(self, path: str) -> str:
        if not self._container:
            raise NoContainerSelected(f"No {self.name} bucket selected")
        key = strip_slash(normalize(path))
        return f"{self._container}/{key}" if key else self._container

    def _key(self, remote: str) -> str:
        prefix = f"{self._container}/"
        name = remote.rstrip("/")
        return name[len(prefix) :] if name.startswith(prefix) else name

    def _info_to_entry(self, info: dict[str, Any]) -> Entry:
        key = self._key(info["name"])
        is_dir = info.get("type") == "directory"
        metadata = {
            k: str(info[src])
            for k, src in (("etag", "ETag"), ("storage_class", "StorageClass"), ("content_type", "ContentType"))
            if info.get(src)
        }
        for k in ("etag", "storageClass", "contentType", "generation"):
            if info.get(k):
                metadata.setdefault(k, str(info[k]))
        return Entry(
            id=generate_entry_id(),
            name="",
            type=EntryType.DIRECTORY if is_dir else EntryType.FILE,
            path=as_directory(key) if is_dir else key,
            size=None if is_dir else int(info.get("size", info.get("Size", 0)) or 0),
            modified=_modified(info),
            metadata=metadata,
        )

    # endregion

    # region: blocking primitives
    def _list_sync(self, path: str, recursive: bool) -> list[Entry]:
        remote = self._remote(path)
        if recursive:
            found: dict[str, dict[str, Any]] = self._fs.find(remote, detail=True, withdirs=True)
            infos = [info for name, info in found.items() if name.rstrip("/") != remote]
        else:
            infos = [info for info in self._fs.ls(remote, detail=True) if info["name"].rstrip("/") != remote]
        if not infos and strip_slash(normalize(path)) and not self._fs.exists(remote):
            raise FileNotFoundError(path)
        return sorted((self._info_to_entry(info) for info in infos), key=lambda e: e.path)

    def _write_sync(self, path: str, data: bytes, overwrite: bool, content_type: str | None) -> None:
        remote = self._remote(path)
        if not overwrite and self._fs.exists(remote):
            raise FileExistsError(path)
        kwargs = {self._content_type_kwarg: content_type} if content_type else {}
        self._fs.pipe_file(remote, data, **kwargs)

    def _delete_sync(self, path: str, recursive: bool) -> None:
        remote = self._remote(path)
        info = self._fs.info(remote)
        if info.get("type") == "directory":
            children = [i for i in self._fs.ls(remote, detail=False) if i.rstrip("/") != remote]
            if children and not recursive:
                raise OSError(errno.ENOTEMPTY, "Directory not empty", path)
            self._fs.rm(remote, recursive=True)
        else:
            self._fs.rm_file(remote)
        self._fs.invalidate_cache(remote)

    def _copy_sync(self, source: str, destination: str, overwrite: bool, recursive: bool) -> None:
        src = self._remote(source)
        dst = self._remote(destination)
        info = self._fs.info(src)
        if not overwrite and self._fs.exists(dst):
            raise FileExistsError(destination)
        if info.get("type") != "directory":
            self._fs.copy(src, dst)
        elif recursive:
            self._fs.copy(src, dst, recursive=True)
        else:
            self._put_directory_marker(dst)
        self._fs.invalidate_cache(dst)

    def _put_directory_marker(self, remote: str) -> None:  # noqa: B027
        """Create an empty ``<remote>/`` object; backends with implicit directories do nothing."""

    # endregion

    # region: containers
    async def list_containers(self) -> OperationResult[list[Entry]]:
        def buckets() -> list[Entry]:
            return [
                Entry(id=generate_entry_id(), name="", type=EntryType.BUCKET, path=as_directory(info["name"]))
                for info in self._fs.ls("", detail=True)
            ]

        return await self._call("list_containers", "", buckets)

    async def set_container(self, name: str) -> OperationResult[None]:
        bucket = name.strip("/")
        found = await self._call("set_container", bucket, self._fs.exists, bucket)
        if not found.ok:
            return found  # type: ignore[return-value]
        if not found.data:
            return OperationResult.not_found(bucket)
        self._container = bucket
        self._log.debug("Switched %s bucket to %r", self.name, bucket)
        return OperationResult.success()

    # endregion

    # region: read operations
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        if not self._container and not strip_slash(normalize(path)):
            containers = await self.list_containers()
            if not containers.ok:
                return containers  # type: ignore[return-value]
            return paginate(containers.data or [], options)
        recursive = options is not None and options.recursive
        listed = await self._call("list", path, self._list_sync, path, recursive)
        if not listed.ok:
            return listed  # type: ignore[return-value]
        return paginate(listed.data or [], options)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        def info() -> Entry:
            return self._info_to_entry(self._fs.info(self._remote(path)))

        return await self._call("get_metadata", path, info)

    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        options = options or ReadOptions()
        end = None if options.length is None else options.offset + options.length

        def cat() -> bytes:
            return bytes(self._fs.cat_file(self._remote(path), start=options.offset or None, end=end))

        result = await self._call("read", path, cat)
        if result.ok and result.data is not None:
            report_progress(options.on_progress, "download", len(result.data), len(result.data), path)
        return result

    # endregion

    # region: write operations
    def _multipart_session(self, path: str, content_type: str | None) -> MultipartSession | None:
        """Multipart session for ``path``; ``None`` sends every payload in one call."""
        return None

    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        options = options or WriteOptions()
        data = content.encode() if isinstance(content, str) else bytes(content)

        async def write_single(payload: bytes) -> OperationResult[None]:
            return await self._call(
                "write", path, self._write_sync, path, payload, options.overwrite, options.content_type
            )

        session = self._multipart_session(path, options.content_type)
        if session is None:
            report_progress(options.on_progress, "upload", 0, len(data), path)
            result = await write_single(data)
            if result.ok:
                report_progress(options.on_progress, "upload", len(data), len(data), path)
            return result
        if not options.overwrite and should_use_chunked(len(data)):
            exists = await self.exists(path)
            if not exists.ok:
                return exists  # type: ignore[return-value]
            if exists.data:
                return OperationResult.already_exists(path)
        return await upload_chunked(
            data,
            key=path,
            write_single=write_single,
            open_session=lambda: session,
            error_table=self.error_table,
            on_progress=options.on_progress,
            retry_policy=self._retry_policy,
            logger=self._log,
        )

    async def mkdir(self, path: str) -> OperationResult[None]:
        if not self.has_capability(Capability.MKDIR):
            return OperationResult.unimplemented("mkdir")
        return await self._call("mkdir", path, lambda: self._put_directory_marker(self._remote(path)))

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        recursive = options is not None and options.recursive
        return await self._call("delete", path, self._delete_sync, path, recursive)

    async def _native_copy(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return await self._call(
            "copy", source, self._copy_sync, source, destination, options.overwrite, options.recursive
        )

    async def get_presigned_url(self, path: str, *, expires_in: int = 3600) -> OperationResult[str]:
        def sign() -> str:
            return str(self._fs.sign(self._remote(path), expiration=expires_in))

        return await self._call("get_presigned_url", path, sign)

    # endregion


def _modified(info: dict[str, Any]) -> datetime | None:
    value = info.get("LastModified") or info.get("updated") or info.get("mtime")
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    elif isinstance(value, (int, float)):
        value = datetime.fromtimestamp(value, tz=timezone.utc)
    if isinstance(value, datetime) and value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value if isinstance(value, datetime) else None
