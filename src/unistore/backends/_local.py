"""Local filesystem provider: stdlib-only reference implementation."""

from __future__ import annotations

import errno
import os
import shutil
import stat
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from unistore._capabilities import Capability
from unistore._entry import Entry, EntryType, ListOptions, ListResult, generate_entry_id, paginate
from unistore._error_mapping import COMMON_RULES, ErrorRule, ErrorTable
from unistore._errors import InvalidPath
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, normalize
from unistore._progress import report_progress
from unistore._provider import Provider
from unistore._result import OperationResult, OperationStatus
from unistore._retry import NO_RETRY

if TYPE_CHECKING:
    import logging

    from unistore._retry import RetryPolicy
    from unistore._types import Content, ProgressCallback

LOCAL_ERROR_TABLE = ErrorTable(
    "local",
    (
        ErrorRule(
            OperationStatus.ERROR,
            errnos=frozenset({errno.ENOTEMPTY}),
            code="DIRECTORY_NOT_EMPTY",
        ),
        ErrorRule(OperationStatus.ERROR, exception_types=(IsADirectoryError,), code="IS_DIRECTORY"),
        ErrorRule(OperationStatus.ERROR, exception_types=(NotADirectoryError,), code="NOT_A_DIRECTORY"),
        *COMMON_RULES,
    ),
    default_code="LOCAL_ERROR",
)


class LocalProvider(Provider):
    """Provider for a directory on the local filesystem.

    :param base_path: Root directory; every provider path resolves below it.
        Created if missing.
    """

    error_table = LOCAL_ERROR_TABLE
    default_retry_policy = NO_RETRY

    def __init__(
        self,
        base_path: str,
        *,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(logger=logger, retry_policy=retry_policy)
        self._root = Path(base_path).expanduser().resolve()
        self._root.mkdir(parents=True, exist_ok=True)
        self._add_capability(
            Capability.LIST,
            Capability.READ,
            Capability.WRITE,
            Capability.DELETE,
            Capability.MKDIR,
            Capability.RMDIR,
            Capability.MOVE,
            Capability.COPY,
            Capability.DOWNLOAD,
            Capability.UPLOAD,
            Capability.METADATA,
            Capability.PERMISSIONS,
            Capability.SYMLINKS,
        )

    @property
    def name(self) -> str:
        return "local"

    @property
    def display_name(self) -> str:
        return f"Local ({self._root})"

    @property
    def root(self) -> Path:
        return self._root

    # region: path safety
    def _resolve(self, path: str) -> Path:
        """Resolve a provider path to an absolute path within root.

        ``.resolve()`` follows symlinks to their real target, and
        ``relative_to(self._root)`` then rejects any path that escapes the
        root, including symlinks pointing outside it.

        :raises InvalidPath: If the resolved path escapes the root.
        """
        key = normalize(path)
        resolved = (self._root / key).resolve()
        try:
            resolved.relative_to(self._root)
        except ValueError:
            raise InvalidPath(f"Path escapes root directory: {path}", path=path, provider=self.name) from None
        return resolved

    def _key(self, full: Path) -> str:
        rel = full.relative_to(self._root).as_posix()
        return "" if rel == "." else rel

    def _to_entry(self, full: Path) -> Entry:
        st = full.lstat()
        key = self._key(full)
        if stat.S_ISLNK(st.st_mode):
            kind = EntryType.SYMLINK
        elif stat.S_ISDIR(st.st_mode):
            kind = EntryType.DIRECTORY
            key = as_directory(key)
        else:
            kind = EntryType.FILE
        return Entry(
            id=generate_entry_id(),
            name="",
            type=kind,
            path=key,
            size=st.st_size if kind is EntryType.FILE else None,
            modified=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
            metadata={"permissions": oct(stat.S_IMODE(st.st_mode))},
        )

    # endregion

    # region: blocking primitives
    def _list_sync(self, path: str, recursive: bool) -> list[Entry]:
        full = self._resolve(path)
        if not full.exists():
            raise FileNotFoundError(errno.ENOENT, "Directory not found", path)
        if not full.is_dir():
            raise NotADirectoryError(errno.ENOTDIR, "Not a directory", path)
        children = full.rglob("*") if recursive else full.iterdir()
        return [self._to_entry(child) for child in sorted(children)]

    def _read_sync(self, path: str, offset: int, length: int | None) -> bytes:
        with self._resolve(path).open("rb") as f:
            if offset:
                f.seek(offset)
            return f.read() if length is None else f.read(length)

    def _write_sync(self, path: str, data: bytes, overwrite: bool) -> None:
        full = self._resolve(path)
        full.parent.mkdir(parents=True, exist_ok=True)
        with full.open("wb" if overwrite else "xb") as f:
            f.write(data)

    def _delete_sync(self, path: str, recursive: bool) -> None:
        full = self._resolve(path)
        if full == self._root:
            raise PermissionError(errno.EPERM, "Refusing to delete the provider root", path)
        if full.is_dir() and not full.is_symlink():
            if recursive:
                shutil.rmtree(full)
            else:
                full.rmdir()
        else:
            full.unlink()

    def _relocate_sync(self, source: str, destination: str, overwrite: bool, keep_source: bool) -> None:
        src = self._resolve(source)
        dst = self._resolve(destination)
        if not src.exists():
            raise FileNotFoundError(errno.ENOENT, "Source not found", source)
        if dst.exists():
            if not overwrite:
                raise FileExistsError(errno.EEXIST, "Destination already exists", destination)
            if dst.is_dir() and not keep_source:
                shutil.rmtree(dst)
        dst.parent.mkdir(parents=True, exist_ok=True)
        if not keep_source:
            shutil.move(str(src), str(dst))
        elif src.is_dir():
            shutil.copytree(src, dst, dirs_exist_ok=overwrite)
        else:
            shutil.copy2(src, dst)

    # endregion

    # region: read operations
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        recursive = options is not None and options.recursive
        listed = await self._call("list", path, self._list_sync, path, recursive)
        if not listed.ok:
            return listed  # type: ignore[return-value]
        return paginate(listed.data or [], options)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        def stat_entry() -> Entry:
            full = self._resolve(path)
            if full == self._root:
                return Entry(id=generate_entry_id(), name="", type=EntryType.DIRECTORY, path="")
            return self._to_entry(full)

        return await self._call("get_metadata", path, stat_entry)

    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        options = options or ReadOptions()
        result = await self._call("read", path, self._read_sync, path, options.offset, options.length)
        if result.ok and result.data is not None:
            report_progress(options.on_progress, "download", len(result.data), len(result.data), path)
        return result

    async def read_symlink(self, path: str) -> OperationResult[str]:
        def target() -> str:
            return os.readlink(self._root / normalize(path))

        return await self._call("read_symlink", path, target)

    # endregion

    # region: write operations
    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        options = options or WriteOptions()
        data = content.encode() if isinstance(content, str) else content
        report_progress(options.on_progress, "upload", 0, len(data), path)
        result = await self._call("write", path, self._write_sync, path, data, options.overwrite)
        if result.ok:
            report_progress(options.on_progress, "upload", len(data), len(data), path)
        return result

    async def mkdir(self, path: str) -> OperationResult[None]:
        return await self._call("mkdir", path, lambda: self._resolve(path).mkdir(parents=True, exist_ok=True))

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        recursive = options is not None and options.recursive
        return await self._call("delete", path, self._delete_sync, path, recursive)

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        return await self._call("set_permissions", path, lambda: self._resolve(path).chmod(mode))

    async def _native_move(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return await self._call("move", source, self._relocate_sync, source, destination, options.overwrite, False)

    async def _native_copy(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return await self._call("copy", source, self._relocate_sync, source, destination, options.overwrite, True)

    # endregion

    # region: local transfers
    async def _download_file(
        self, remote_path: str, local_path: Path, on_progress: ProgressCallback | None = None
    ) -> OperationResult[None]:
        def copy_out() -> int:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(self._resolve(remote_path), local_path)
            return local_path.stat().st_size

        result = await self._call("download", remote_path, copy_out)
        if not result.ok:
            return result  # type: ignore[return-value]
        size = result.data or 0
        report_progress(on_progress, "download", size, size, remote_path)
        return OperationResult.success()

    async def _upload_file(
        self,
        local_path: Path,
        remote_path: str,
        options: TransferOptions,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[None]:
        def copy_in() -> int:
            target = self._resolve(remote_path)
            if target.exists() and not options.overwrite:
                raise FileExistsError(errno.EEXIST, "Destination already exists", remote_path)
            target.parent.mkdir(parents=True, exist_ok=True)
            shutil.copy2(local_path, target)
            return target.stat().st_size

        result = await self._call("upload", remote_path, copy_in)
        if not result.ok:
            return result  # type: ignore[return-value]
        size = result.data or 0
        report_progress(on_progress, "upload", size, size, remote_path)
        return OperationResult.success()

    # endregion
