"""FTP/FTPS provider using the standard library's ftplib."""

from __future__ import annotations

import asyncio
import errno
import ftplib
import io
import threading
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from unistore._capabilities import Capability
from unistore._entry import Entry, EntryType, ListOptions, ListResult, generate_entry_id, paginate
from unistore._error_mapping import COMMON_RULES, ErrorRule, ErrorTable
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, name_of, normalize, parent_of, strip_slash
from unistore._progress import report_progress
from unistore._provider import Provider
from unistore._result import OperationResult, OperationStatus
from unistore._retry import RetryPolicy, default_is_retryable

if TYPE_CHECKING:
    import logging
    from collections.abc import Callable

    from unistore._types import Content, ProgressCallback

_BLOCK_SIZE = 8192
_MLSD_FACTS = ["type", "size", "modify", "unix.mode"]


def is_transient_ftp_error(exc: BaseException) -> bool:
    """4xx replies and dropped control connections are worth retrying."""
    if isinstance(exc, (ftplib.error_temp, EOFError)):
        return True
    return default_is_retryable(exc)


FTP_RETRY_POLICY = RetryPolicy(max_attempts=3, base_delay_ms=500, max_delay_ms=5_000, is_retryable=is_transient_ftp_error)

# ftplib reports server replies as exceptions whose text starts with the reply code.
FTP_ERROR_TABLE = ErrorTable(
    "ftp",
    (
        ErrorRule(OperationStatus.PERMISSION_DENIED, message_contains=("530 ",), code="AUTH_FAILED"),
        ErrorRule(OperationStatus.PERMISSION_DENIED, message_contains=("permission denied", "553 ")),
        ErrorRule(OperationStatus.NOT_FOUND, message_contains=("550 ",)),
        ErrorRule(OperationStatus.ERROR, errnos=frozenset({errno.ENOTEMPTY}), code="DIRECTORY_NOT_EMPTY"),
        ErrorRule(OperationStatus.CONNECTION_FAILED, exception_types=(EOFError,), message_contains=("421 ",)),
        ErrorRule(OperationStatus.ERROR, exception_types=(ftplib.error_temp,), code="FTP_TEMPORARY", retryable=True),
        *COMMON_RULES,
    ),
    default_code="FTP_ERROR",
)


def _parse_modify(value: str | None) -> datetime | None:
    """Parse an MLSD ``modify`` fact (``YYYYMMDDHHMMSS[.sss]``, always UTC)."""
    if not value:
        return None
    return datetime.strptime(value[:14], "%Y%m%d%H%M%S").replace(tzinfo=timezone.utc)


class FTPProvider(Provider):
    """FTP provider; ``secure=True`` switches to explicit FTPS.

    Listings rely on ``MLSD`` (RFC 3659). One control connection is shared, so
    blocking calls are serialized.

    :param host: Server hostname.
    :param port: Control port (default: 21).
    :param username: Login name (default: anonymous).
    :param password: Login password.
    :param secure: Use explicit TLS (``AUTH TLS``) with a protected data channel.
    :param passive: Use passive mode for data connections.
    :param base_path: Directory all provider paths are relative to.
    :param timeout: Socket timeout in seconds.
    :param encoding: Encoding of file names on the control connection.
    :param ftp_factory: Creates the unconnected ``ftplib.FTP`` object; for tests.
    """

    error_table = FTP_ERROR_TABLE
    default_retry_policy = FTP_RETRY_POLICY

    def __init__(
        self,
        host: str,
        *,
        port: int = 21,
        username: str = "anonymous",
        password: str = "",
        secure: bool = False,
        passive: bool = True,
        base_path: str = "/",
        timeout: float = 30,
        encoding: str = "utf-8",
        ftp_factory: Callable[[], ftplib.FTP] | None = None,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        super().__init__(logger=logger, retry_policy=retry_policy)
        self._host = host
        self._port = int(port)
        self._username = username
        self._password = password
        self._secure = secure
        self._passive = passive
        self._base_path = "/" + base_path.strip("/")
        self._timeout = timeout
        self._encoding = encoding
        self._ftp_factory = ftp_factory
        self._client: ftplib.FTP | None = None
        self._lock = threading.Lock()
        self._add_capability(
            Capability.LIST,
            Capability.READ,
            Capability.WRITE,
            Capability.DELETE,
            Capability.MKDIR,
            Capability.RMDIR,
            Capability.MOVE,
            Capability.DOWNLOAD,
            Capability.UPLOAD,
            Capability.METADATA,
            Capability.CONNECTION,
        )

    @property
    def name(self) -> str:
        return "ftp"

    @property
    def display_name(self) -> str:
        scheme = "FTPS" if self._secure else "FTP"
        return f"{scheme} ({self._username}@{self._host}:{self._port}{self._base_path})"

    # region: connection
    async def _do_connect(self) -> None:
        await asyncio.to_thread(self._connect_sync)

    async def _do_disconnect(self) -> None:
        await asyncio.to_thread(self._close_client)

    def _connect_sync(self) -> None:
        self._close_client()
        if self._ftp_factory is not None:
            ftp = self._ftp_factory()
        elif self._secure:
            ftp = ftplib.FTP_TLS(encoding=self._encoding)
        else:
            ftp = ftplib.FTP(encoding=self._encoding)
        self._log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
        ftp.connect(self._host, self._port, timeout=self._timeout)
        ftp.login(self._username, self._password)
        if isinstance(ftp, ftplib.FTP_TLS):
            ftp.prot_p()
        ftp.set_pasv(self._passive)
        self._client = ftp

    def _close_client(self) -> None:
        if self._client is None:
            return
        client, self._client = self._client, None
        try:
            client.quit()
        except (OSError, EOFError, ftplib.Error) as exc:
            self._log.debug("QUIT failed, closing socket: %s", exc)
            client.close()

    @property
    def _ftp(self) -> ftplib.FTP:
        if self._client is None:
            raise ConnectionResetError(errno.ECONNRESET, "FTP session is not open")
        return self._client

    async def _ftp_call(self, operation: str, path: str, fn: Callable[..., Any], *args: Any) -> OperationResult[Any]:
        def locked() -> Any:
            with self._lock:
                return fn(*args)

        return await self._call(operation, path, locked)

    # endregion

    # region: path helpers
    def _full_path(self, path: str) -> str:
        key = strip_slash(normalize(path))
        if not key:
            return self._base_path
        return f"/{key}" if self._base_path == "/" else f"{self._base_path}/{key}"

    def _to_entry(self, key: str, facts: dict[str, str]) -> Entry:
        is_dir = facts.get("type", "").lower() == "dir"
        metadata: dict[str, Any] = {}
        if "unix.mode" in facts:
            metadata["permissions"] = facts["unix.mode"]
        return Entry(
            id=generate_entry_id(),
            name="",
            type=EntryType.DIRECTORY if is_dir else EntryType.FILE,
            path=as_directory(key) if is_dir else key,
            size=None if is_dir else int(facts.get("size", 0)),
            modified=_parse_modify(facts.get("modify")),
            metadata=metadata,
        )

    def _children(self, key: str) -> list[tuple[str, dict[str, str]]]:
        listing = self._ftp.mlsd(self._full_path(key), facts=_MLSD_FACTS)
        return sorted(
            (name, facts)
            for name, facts in listing
            if name not in (".", "..") and facts.get("type", "").lower() not in ("cdir", "pdir")
        )

    def _lookup(self, key: str) -> dict[str, str] | None:
        """MLSD facts of ``key`` taken from its parent listing; ``None`` if absent."""
        key = strip_slash(key)
        if not key:
            return {"type": "dir"}
        wanted = name_of(key)
        try:
            siblings = self._children(strip_slash(parent_of(key)))
        except ftplib.error_perm as exc:
            # 550: the parent directory does not exist either
            if str(exc).startswith("550"):
                return None
            raise
        for name, facts in siblings:
            if name == wanted:
                return facts
        return None

    def _ensure_dirs(self, key: str) -> None:
        current = ""
        for segment in strip_slash(key).split("/"):
            if not segment:
                continue
            current = f"{current}/{segment}" if current else segment
            facts = self._lookup(current)
            if facts is None:
                self._ftp.mkd(self._full_path(current))
            elif facts.get("type", "").lower() != "dir":
                raise NotADirectoryError(errno.ENOTDIR, "Not a directory", current)

    # endregion

    # region: blocking primitives
    def _list_sync(self, path: str, recursive: bool) -> list[Entry]:
        prefix = strip_slash(normalize(path))
        entries: list[Entry] = []
        for name, facts in self._children(prefix):
            key = f"{prefix}/{name}" if prefix else name
            entry = self._to_entry(key, facts)
            entries.append(entry)
            if recursive and entry.type is EntryType.DIRECTORY:
                entries.extend(self._list_sync(key, True))
        return entries

    def _metadata_sync(self, path: str) -> Entry:
        key = strip_slash(normalize(path))
        facts = self._lookup(key)
        if facts is None:
            raise FileNotFoundError(errno.ENOENT, "Not found", path)
        return self._to_entry(key, facts)

    def _read_sync(self, path: str, offset: int, length: int | None) -> bytes:
        buf = io.BytesIO()
        self._ftp.retrbinary(f"RETR {self._full_path(path)}", buf.write, blocksize=_BLOCK_SIZE, rest=offset or None)
        data = buf.getvalue()
        return data if length is None else data[:length]

    def _write_sync(self, path: str, data: bytes, overwrite: bool, on_progress: ProgressCallback | None) -> None:
        key = strip_slash(normalize(path))
        existing = self._lookup(key)
        if existing is not None:
            if existing.get("type", "").lower() == "dir":
                raise IsADirectoryError(errno.EISDIR, "Is a directory", path)
            if not overwrite:
                raise FileExistsError(errno.EEXIST, "File already exists", path)
        self._ensure_dirs(parent_of(key))
        sent = 0

        def progress(block: bytes) -> None:
            nonlocal sent
            sent += len(block)
            report_progress(on_progress, "upload", sent, len(data), path)

        self._ftp.storbinary(f"STOR {self._full_path(key)}", io.BytesIO(data), blocksize=_BLOCK_SIZE, callback=progress)

    def _delete_sync(self, path: str, recursive: bool) -> None:
        key = strip_slash(normalize(path))
        if not key:
            raise PermissionError(errno.EPERM, "Refusing to delete the base path", path)
        facts = self._lookup(key)
        if facts is None:
            raise FileNotFoundError(errno.ENOENT, "Not found", path)
        if facts.get("type", "").lower() != "dir":
            self._ftp.delete(self._full_path(key))
        elif recursive:
            self._rmtree(key)
        elif self._children(key):
            raise OSError(errno.ENOTEMPTY, "Directory not empty", path)
        else:
            self._ftp.rmd(self._full_path(key))

    def _rmtree(self, key: str) -> None:
        for name, facts in self._children(key):
            child = f"{key}/{name}"
            if facts.get("type", "").lower() == "dir":
                self._rmtree(child)
            else:
                self._ftp.delete(self._full_path(child))
        self._ftp.rmd(self._full_path(key))

    def _rename_sync(self, source: str, destination: str, overwrite: bool) -> None:
        src = strip_slash(normalize(source))
        dst = strip_slash(normalize(destination))
        if self._lookup(src) is None:
            raise FileNotFoundError(errno.ENOENT, "Source not found", source)
        existing = self._lookup(dst)
        if existing is not None:
            if not overwrite:
                raise FileExistsError(errno.EEXIST, "Destination already exists", destination)
            if existing.get("type", "").lower() == "dir":
                self._rmtree(dst)
            else:
                self._ftp.delete(self._full_path(dst))
        self._ensure_dirs(parent_of(dst))
        self._ftp.rename(self._full_path(src), self._full_path(dst))

    # endregion

    # region: operations
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        recursive = options is not None and options.recursive
        listed = await self._ftp_call("list", path, self._list_sync, path, recursive)
        if not listed.ok:
            return listed
        return paginate(listed.data or [], options)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        return await self._ftp_call("get_metadata", path, self._metadata_sync, path)

    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        options = options or ReadOptions()
        result = await self._ftp_call("read", path, self._read_sync, path, options.offset, options.length)
        if result.ok and result.data is not None:
            report_progress(options.on_progress, "download", len(result.data), len(result.data), path)
        return result

    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        options = options or WriteOptions()
        data = content.encode() if isinstance(content, str) else bytes(content)
        report_progress(options.on_progress, "upload", 0, len(data), path)
        return await self._ftp_call("write", path, self._write_sync, path, data, options.overwrite, options.on_progress)

    async def mkdir(self, path: str) -> OperationResult[None]:
        return await self._ftp_call("mkdir", path, self._ensure_dirs, strip_slash(normalize(path)))

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        recursive = options is not None and options.recursive
        return await self._ftp_call("delete", path, self._delete_sync, path, recursive)

    async def _native_move(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return await self._ftp_call("move", source, self._rename_sync, source, destination, options.overwrite)

    # endregion
