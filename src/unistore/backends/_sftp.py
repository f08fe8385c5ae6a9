"""SFTP provider using pure paramiko."""

from __future__ import annotations

import asyncio
import errno
import os
import re
import stat
import uuid
from datetime import datetime, timezone
from enum import Enum
from io import StringIO
from typing import TYPE_CHECKING, Any

import paramiko

from unistore._capabilities import Capability
from unistore._entry import Entry, EntryType, ListOptions, ListResult, generate_entry_id, paginate
from unistore._error_mapping import COMMON_RULES, ErrorRule, ErrorTable
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, normalize, strip_slash
from unistore._progress import report_progress
from unistore._provider import Provider
from unistore._result import OperationResult, OperationStatus
from unistore._retry import RetryPolicy, default_is_retryable

if TYPE_CHECKING:
    import logging
    from pathlib import Path

    from unistore._types import Content, ProgressCallback

# RFC 4253 compliant chunk size for SFTP data transfer
_CHUNK_SIZE = 32768


# region: host key policy
class HostKeyPolicy(Enum):
    """Controls how unknown remote host keys are handled.

    :cvar STRICT: Reject unknown hosts (production default).
    :cvar TRUST_ON_FIRST_USE: Save on first connect, verify after.
    :cvar AUTO_ADD: Accept any key (dev/testing ONLY).
    """

    STRICT = "strict"
    TRUST_ON_FIRST_USE = "tofu"
    AUTO_ADD = "auto"


# endregion

# region: PEM handling
_NON_BASE64_PATTERN = re.compile(r"[^A-Za-z\d+/=]")
_PEM_SEPARATOR = "-----"


def _sanitize_pem(pem_content: str) -> str:
    """Normalize PEM line separators (secret stores often flatten newlines into blanks)."""
    parts = pem_content.split(_PEM_SEPARATOR)
    if len(parts) != 5:
        raise ValueError("Invalid PEM structure (expected 5 parts).")

    payload = parts[2]
    separators = set(_NON_BASE64_PATTERN.findall(payload))
    if len(separators) != 1:
        raise ValueError(f"Unexpected PEM characters: {sorted(separators)}")

    parts[2] = payload.replace(separators.pop(), "\n")
    return _PEM_SEPARATOR.join(parts)


def load_private_key(pem: str, passphrase: str | None = None) -> paramiko.PKey:
    """Load an RSA private key from a PEM string.

    Key files are handed to paramiko directly (``key_filename``), which detects
    the key type itself.
    """
    with StringIO(_sanitize_pem(pem)) as buf:
        return paramiko.RSAKey.from_private_key(buf, password=passphrase)


# endregion

# region: retry and error mapping
def is_transient_ssh_error(exc: BaseException) -> bool:
    """SSH-level failures other than rejected credentials or host keys are worth retrying."""
    if isinstance(exc, (paramiko.AuthenticationException, paramiko.BadHostKeyException)):
        return False
    if isinstance(exc, (paramiko.SSHException, EOFError)):
        return True
    return default_is_retryable(exc)


SFTP_RETRY_POLICY = RetryPolicy(
    max_attempts=3, base_delay_ms=2000, max_delay_ms=10_000, is_retryable=is_transient_ssh_error
)

SFTP_ERROR_TABLE = ErrorTable(
    "sftp",
    (
        ErrorRule(
            OperationStatus.PERMISSION_DENIED,
            exception_types=(paramiko.AuthenticationException,),
            code="AUTH_FAILED",
        ),
        ErrorRule(
            OperationStatus.PERMISSION_DENIED,
            exception_types=(paramiko.BadHostKeyException,),
            code="HOST_KEY_MISMATCH",
        ),
        ErrorRule(OperationStatus.ERROR, errnos=frozenset({errno.ENOTEMPTY}), code="DIRECTORY_NOT_EMPTY"),
        ErrorRule(
            OperationStatus.CONNECTION_FAILED,
            exception_types=(paramiko.SSHException, EOFError, paramiko.ssh_exception.NoValidConnectionsError),
        ),
        *COMMON_RULES,
    ),
    default_code="SFTP_ERROR",
)

# endregion

_HOST_KEYS_ENV = "SFTP_KNOWN_HOST_KEYS"
_AUTH_METHODS = ("password", "key", "agent")


def _load_host_keys_from_string(ssh: paramiko.SSHClient, keys_content: str) -> None:
    """Parse a known_hosts-formatted string into an SSHClient's host keys."""
    import tempfile

    with tempfile.NamedTemporaryFile(mode="w", suffix=".known_hosts", delete=True) as tmp:
        tmp.write(keys_content)
        tmp.flush()
        ssh.load_host_keys(tmp.name)


class SFTPProvider(Provider):
    """SFTP provider using pure paramiko.

    The connection is opened on first use (or by :meth:`connect`) and shared by
    all operations. SFTP has no containers; the base path plays that role.

    :param host: SFTP server hostname (required, non-empty).
    :param port: SSH port (default: 22).
    :param username: SSH username.
    :param auth_method: ``"password"``, ``"key"`` or ``"agent"``.
    :param password: SSH password.
    :param private_key_path: Key file for ``"key"`` auth.
    :param private_key: PEM string, used instead of a key file.
    :param passphrase: Passphrase of the private key.
    :param base_path: Root path on the remote server (default: ``/``).
    :param host_key_policy: Host key verification policy (enum or its value).
    :param known_host_keys: Known hosts string (code-level override).
    :param host_keys_path: Path to known_hosts file (default: ``~/.ssh/known_hosts``).
    :param timeout: SSH connection timeout in seconds.
    :param connect_kwargs: Extra kwargs passed to ``SSHClient.connect()``.
    """

    error_table = SFTP_ERROR_TABLE
    default_retry_policy = SFTP_RETRY_POLICY

    def __init__(
        self,
        host: str,
        *,
        port: int = 22,
        username: str | None = None,
        auth_method: str = "password",
        password: str | None = None,
        private_key_path: str | None = None,
        private_key: str | None = None,
        passphrase: str | None = None,
        base_path: str = "/",
        host_key_policy: HostKeyPolicy | str = HostKeyPolicy.STRICT,
        known_host_keys: str | None = None,
        host_keys_path: str | None = None,
        timeout: int = 10,
        connect_kwargs: dict[str, Any] | None = None,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        if not host or not host.strip():
            raise ValueError("host must be a non-empty string")
        if auth_method not in _AUTH_METHODS:
            raise ValueError(f"auth_method must be one of {_AUTH_METHODS}, got {auth_method!r}")
        super().__init__(logger=logger, retry_policy=retry_policy)
        self._host = host
        self._port = int(port)
        self._username = username
        self._auth_method = auth_method
        self._password = password
        self._private_key_path = private_key_path
        self._private_key = private_key
        self._passphrase = passphrase
        self._container = "/" + base_path.strip("/")
        self._host_key_policy = HostKeyPolicy(host_key_policy)
        self._host_keys_path = host_keys_path
        self._timeout = timeout
        self._connect_kwargs = connect_kwargs or {}
        self._resolved_host_keys = known_host_keys or os.environ.get(_HOST_KEYS_ENV)

        self._ssh_client: paramiko.SSHClient | None = None
        self._sftp_client: paramiko.SFTPClient | None = None
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
            Capability.PERMISSIONS,
            Capability.SYMLINKS,
            Capability.CONNECTION,
            Capability.CONTAINERS,
        )

    @property
    def name(self) -> str:
        return "sftp"

    @property
    def display_name(self) -> str:
        return f"SFTP ({self._username or ''}@{self._host}:{self._port}{self._container})"

    @property
    def base_path(self) -> str:
        return self._container or "/"

    # region: connection
    async def _do_connect(self) -> None:
        await asyncio.to_thread(self._connect_sync)

    async def _do_disconnect(self) -> None:
        await asyncio.to_thread(self._close_clients)

    def _connect_sync(self) -> None:
        self._close_clients()
        ssh = self._create_ssh_client()
        self._log.info("Connecting to %s:%d as %s", self._host, self._port, self._username)
        ssh.connect(
            hostname=self._host,
            port=self._port,
            username=self._username,
            timeout=self._timeout,
            banner_timeout=self._timeout,
            auth_timeout=self._timeout,
            channel_timeout=self._timeout,
            **self._auth_kwargs(),
            **self._connect_kwargs,
        )
        self._ssh_client = ssh
        self._sftp_client = ssh.open_sftp()
        self._log.info("SFTP connection established.")

    def _auth_kwargs(self) -> dict[str, Any]:
        if self._auth_method == "agent":
            return {"allow_agent": True, "look_for_keys": True}
        if self._auth_method == "key":
            if self._private_key:
                return {
                    "pkey": load_private_key(self._private_key, self._passphrase),
                    "allow_agent": False,
                    "look_for_keys": False,
                }
            return {
                "key_filename": os.path.expanduser(self._private_key_path or ""),
                "passphrase": self._passphrase,
                "allow_agent": False,
                "look_for_keys": False,
            }
        return {"password": self._password, "allow_agent": False, "look_for_keys": False}

    def _create_ssh_client(self) -> paramiko.SSHClient:
        """Create and configure an SSHClient with host key policy."""
        ssh = paramiko.SSHClient()

        if self._resolved_host_keys:
            _load_host_keys_from_string(ssh, self._resolved_host_keys)
        elif self._host_key_policy in (HostKeyPolicy.STRICT, HostKeyPolicy.TRUST_ON_FIRST_USE):
            keys_path = self._host_keys_path or os.path.expanduser("~/.ssh/known_hosts")
            if os.path.isfile(keys_path):
                ssh.load_host_keys(keys_path)

        if self._host_key_policy is HostKeyPolicy.TRUST_ON_FIRST_USE:
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        elif self._host_key_policy is HostKeyPolicy.AUTO_ADD:
            self._log.warning("AUTO_ADD host key policy -- NOT safe for production.")
            ssh.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        else:
            ssh.set_missing_host_key_policy(paramiko.RejectPolicy())
        return ssh

    def _close_clients(self) -> None:
        """Close SFTP and SSH clients if open."""
        for client in (self._sftp_client, self._ssh_client):
            if client is None:
                continue
            try:
                client.close()
            except (OSError, EOFError, paramiko.SSHException) as exc:
                self._log.debug("Ignoring error while closing %s: %s", type(client).__name__, exc)
        self._sftp_client = None
        self._ssh_client = None

    @property
    def _sftp(self) -> paramiko.SFTPClient:
        if self._sftp_client is None:
            raise ConnectionResetError(errno.ECONNRESET, "SFTP session is not open")
        return self._sftp_client

    # endregion

    # region: path helpers
    def _sftp_path(self, path: str) -> str:
        """Convert a provider path to an absolute SFTP path."""
        key = strip_slash(normalize(path))
        base = self.base_path
        if not key:
            return base
        return f"/{key}" if base == "/" else f"{base}/{key}"

    def _ensure_parent_dirs(self, sftp_path: str) -> None:
        """Create parent directories for the given SFTP path if they don't exist."""
        parent = sftp_path.rsplit("/", 1)[0]
        if not parent or parent == self.base_path:
            return
        current = ""
        for part in parent.strip("/").split("/"):
            current = f"{current}/{part}"
            try:
                self._sftp.stat(current)
            except FileNotFoundError:
                self._sftp.mkdir(current)

    def _exists(self, sftp_path: str) -> bool:
        try:
            self._sftp.stat(sftp_path)
        except FileNotFoundError:
            return False
        return True

    def _to_entry(self, key: str, attrs: paramiko.SFTPAttributes) -> Entry:
        mode = attrs.st_mode or 0
        if stat.S_ISLNK(mode):
            kind = EntryType.SYMLINK
        elif stat.S_ISDIR(mode):
            kind = EntryType.DIRECTORY
            key = as_directory(key)
        else:
            kind = EntryType.FILE
        modified = datetime.fromtimestamp(attrs.st_mtime, tz=timezone.utc) if attrs.st_mtime is not None else None
        metadata: dict[str, Any] = {"permissions": oct(stat.S_IMODE(mode))}
        if attrs.st_uid is not None:
            metadata["uid"] = attrs.st_uid
        if attrs.st_gid is not None:
            metadata["gid"] = attrs.st_gid
        return Entry(
            id=generate_entry_id(),
            name="",
            type=kind,
            path=key,
            size=int(attrs.st_size or 0) if kind is EntryType.FILE else None,
            modified=modified,
            metadata=metadata,
        )

    # endregion

    # region: blocking primitives
    def _list_sync(self, path: str, recursive: bool) -> list[Entry]:
        prefix = strip_slash(normalize(path))
        entries: list[Entry] = []
        for attrs in sorted(self._sftp.listdir_attr(self._sftp_path(prefix)), key=lambda a: a.filename):
            key = f"{prefix}/{attrs.filename}" if prefix else attrs.filename
            entry = self._to_entry(key, attrs)
            entries.append(entry)
            if recursive and entry.type is EntryType.DIRECTORY:
                entries.extend(self._list_sync(key, True))
        return entries

    def _metadata_sync(self, path: str) -> Entry:
        key = strip_slash(normalize(path))
        return self._to_entry(key, self._sftp.lstat(self._sftp_path(key)))

    def _read_sync(self, path: str, offset: int, length: int | None) -> bytes:
        with self._sftp.file(self._sftp_path(path), "r") as f:
            if offset:
                f.seek(offset)
            elif length is None:
                f.prefetch()
            return bytes(f.read() if length is None else f.read(length))

    def _write_sync(self, path: str, data: bytes, overwrite: bool) -> None:
        """Write to a temp file next to the target, then rename it into place."""
        sftp_path = self._sftp_path(path)
        if not overwrite and self._exists(sftp_path):
            raise FileExistsError(errno.EEXIST, "File already exists", path)
        self._ensure_parent_dirs(sftp_path)
        parent, _, name = sftp_path.rpartition("/")
        tmp_path = f"{parent}/.~tmp.{name}.{uuid.uuid4().hex[:8]}"
        try:
            with self._sftp.file(tmp_path, "w") as f:
                f.set_pipelined(True)
                for start in range(0, len(data), _CHUNK_SIZE):
                    f.write(data[start : start + _CHUNK_SIZE])
            self._sftp.posix_rename(tmp_path, sftp_path)
        except Exception:
            if self._exists(tmp_path):
                self._sftp.remove(tmp_path)
            raise

    def _mkdir_sync(self, path: str) -> None:
        sftp_path = self._sftp_path(path)
        if self._exists(sftp_path):
            return
        self._ensure_parent_dirs(sftp_path)
        self._sftp.mkdir(sftp_path)

    def _delete_sync(self, path: str, recursive: bool) -> None:
        sftp_path = self._sftp_path(path)
        if sftp_path == self.base_path:
            raise PermissionError(errno.EPERM, "Refusing to delete the base path", path)
        attrs = self._sftp.lstat(sftp_path)
        if not stat.S_ISDIR(attrs.st_mode or 0):
            self._sftp.remove(sftp_path)
        elif recursive:
            self._rmtree(sftp_path)
        elif self._sftp.listdir(sftp_path):
            raise OSError(errno.ENOTEMPTY, "Directory not empty", path)
        else:
            self._sftp.rmdir(sftp_path)

    def _rmtree(self, sftp_path: str) -> None:
        """Recursively remove a directory tree, bottom-up."""
        for attr in self._sftp.listdir_attr(sftp_path):
            child = f"{sftp_path}/{attr.filename}"
            if stat.S_ISDIR(attr.st_mode or 0):
                self._rmtree(child)
            else:
                self._sftp.remove(child)
        self._sftp.rmdir(sftp_path)

    def _rename_sync(self, source: str, destination: str, overwrite: bool) -> None:
        src = self._sftp_path(source)
        dst = self._sftp_path(destination)
        self._sftp.stat(src)
        if self._exists(dst):
            if not overwrite:
                raise FileExistsError(errno.EEXIST, "Destination already exists", destination)
            attrs = self._sftp.stat(dst)
            if stat.S_ISDIR(attrs.st_mode or 0):
                self._rmtree(dst)
        self._ensure_parent_dirs(dst)
        self._sftp.posix_rename(src, dst)

    # endregion

    # region: containers
    async def list_containers(self) -> OperationResult[list[Entry]]:
        base = self.base_path
        entry = Entry(
            id=generate_entry_id(),
            name="root" if base == "/" else base.rsplit("/", 1)[-1],
            type=EntryType.DIRECTORY,
            path=as_directory(base),
            metadata={"virtual_container": True, "base_path": base},
        )
        return OperationResult.success([entry])

    async def set_container(self, name: str) -> OperationResult[None]:
        self._container = "/" + name.strip("/")
        self._log.debug("SFTP base path changed to %s", self._container)
        return OperationResult.success()

    # endregion

    # region: read operations
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        recursive = options is not None and options.recursive
        listed = await self._call("list", path, self._list_sync, path, recursive)
        if not listed.ok:
            return listed  # type: ignore[return-value]
        return paginate(listed.data or [], options)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        return await self._call("get_metadata", path, self._metadata_sync, path)

    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        options = options or ReadOptions()
        result = await self._call("read", path, self._read_sync, path, options.offset, options.length)
        if result.ok and result.data is not None:
            report_progress(options.on_progress, "download", len(result.data), len(result.data), path)
        return result

    async def read_symlink(self, path: str) -> OperationResult[str]:
        return await self._call("read_symlink", path, lambda: self._sftp.readlink(self._sftp_path(path)))

    # endregion

    # region: write operations
    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        options = options or WriteOptions()
        data = content.encode() if isinstance(content, str) else bytes(content)
        report_progress(options.on_progress, "upload", 0, len(data), path)
        result = await self._call("write", path, self._write_sync, path, data, options.overwrite)
        if result.ok:
            report_progress(options.on_progress, "upload", len(data), len(data), path)
        return result

    async def mkdir(self, path: str) -> OperationResult[None]:
        return await self._call("mkdir", path, self._mkdir_sync, path)

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        recursive = options is not None and options.recursive
        return await self._call("delete", path, self._delete_sync, path, recursive)

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        return await self._call("set_permissions", path, lambda: self._sftp.chmod(self._sftp_path(path), mode))

    async def _native_move(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return await self._call("move", source, self._rename_sync, source, destination, options.overwrite)

    # endregion

    # region: local transfers
    async def _download_file(
        self, remote_path: str, local_path: Path, on_progress: ProgressCallback | None = None
    ) -> OperationResult[None]:
        def fetch() -> None:
            local_path.parent.mkdir(parents=True, exist_ok=True)
            self._sftp.get(
                self._sftp_path(remote_path),
                str(local_path),
                callback=lambda done, total: report_progress(on_progress, "download", done, total, remote_path),
            )

        return await self._call("download", remote_path, fetch)

    async def _upload_file(
        self,
        local_path: Path,
        remote_path: str,
        options: TransferOptions,
        on_progress: ProgressCallback | None = None,
    ) -> OperationResult[None]:
        def send() -> None:
            target = self._sftp_path(remote_path)
            if not options.overwrite and self._exists(target):
                raise FileExistsError(errno.EEXIST, "Destination already exists", remote_path)
            self._ensure_parent_dirs(target)
            self._sftp.put(
                str(local_path),
                target,
                callback=lambda done, total: report_progress(on_progress, "upload", done, total, remote_path),
            )

        return await self._call("upload", remote_path, send)

    # endregion
