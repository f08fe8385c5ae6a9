"""Provider abstract base class: the contract every storage backend implements."""

from __future__ import annotations

import abc
import asyncio
import enum
import logging
from pathlib import Path
from typing import TYPE_CHECKING, Any, ClassVar, TypeVar, cast

from unistore import _dispatch
from unistore._capabilities import Capability, CapabilitySet
from unistore._connection import SingleFlight
from unistore._error_mapping import COMMON_RULES, LOCAL_FS_ERRORS, ErrorTable
from unistore._errors import UnistoreError
from unistore._options import ReadOptions, TransferOptions, WriteOptions
from unistore._result import OperationResult, OperationStatus
from unistore._retry import RetryPolicy, call_with_retry

if TYPE_CHECKING:
    from collections.abc import Callable

    from unistore._entry import Entry, ListOptions, ListResult
    from unistore._options import DeleteOptions
    from unistore._types import Content, PathLike, ProgressCallback

T = TypeVar("T")

log = logging.getLogger(__name__)


class ConnectionState(enum.Enum):
    """Lifecycle state of a provider's connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    FAILED = "failed"


class Provider(abc.ABC):
    """Abstract base class for all storage providers.

    Every operation returns an :class:`~unistore._result.OperationResult`.
    Backend-native exceptions must never leak: they are mapped through the
    provider's :attr:`error_table` at the primitive boundary.

    Subclasses declare what they support by calling :meth:`_add_capability`
    during construction. Operations a subclass does not override report
    ``UNIMPLEMENTED``. ``move`` and ``copy`` are composed by the dispatcher
    from whatever primitives are declared and are not overridden per backend.

    :param logger: Logger for this instance; defaults to the module logger of
        the concrete class.
    :param retry_policy: Policy applied to every transport call; defaults to
        :attr:`default_retry_policy`.
    """

    error_table: ClassVar[ErrorTable] = ErrorTable("provider", COMMON_RULES)
    default_retry_policy: ClassVar[RetryPolicy] = RetryPolicy()

    def __init__(self, *, logger: logging.Logger | None = None, retry_policy: RetryPolicy | None = None) -> None:
        self._capabilities: set[Capability] = set()
        self._log = logger or logging.getLogger(type(self).__module__)
        self._retry_policy = retry_policy or self.default_retry_policy
        self._connect_flight: SingleFlight[OperationResult[None]] = SingleFlight()
        self._state = ConnectionState.DISCONNECTED
        self._state_listeners: list[Callable[[ConnectionState], None]] = []
        self._container: str | None = None

    # region: identity
    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Unique identifier for this provider type (e.g. ``'local'``, ``'s3'``)."""

    @property
    def display_name(self) -> str:
        """Human-readable name; defaults to :attr:`name`."""
        return self.name

    @property
    def logger(self) -> logging.Logger:
        return self._log

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, state={self._state.value!r})"

    # endregion

    # region: capabilities
    @property
    def capabilities(self) -> CapabilitySet:
        """Snapshot of the declared capabilities."""
        return CapabilitySet(self._capabilities)

    def has_capability(self, capability: Capability) -> bool:
        return capability in self._capabilities

    def _add_capability(self, *capabilities: Capability) -> None:
        self._capabilities.update(capabilities)

    def _remove_capability(self, capability: Capability) -> None:
        self._capabilities.discard(capability)

    # endregion

    # region: lifecycle
    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def on_state_change(self, listener: Callable[[ConnectionState], None]) -> Callable[[], None]:
        """Register ``listener`` for connection state transitions; returns an unsubscribe function."""
        self._state_listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._state_listeners:
                self._state_listeners.remove(listener)

        return unsubscribe

    def _set_state(self, state: ConnectionState) -> None:
        if state is self._state:
            return
        self._state = state
        for listener in list(self._state_listeners):
            listener(state)

    async def connect(self) -> OperationResult[None]:
        """Establish the connection.

        Concurrent callers share a single attempt and all observe its result.
        Connecting an already connected provider succeeds immediately.
        """
        if self._state is ConnectionState.CONNECTED:
            return OperationResult.success()
        return await self._connect_flight.run(self._connect_once)

    async def _connect_once(self) -> OperationResult[None]:
        self._set_state(ConnectionState.CONNECTING)
        self._log.debug("Connecting %s", self.display_name)
        try:
            await call_with_retry(self._do_connect, self._retry_policy, logger=self._log)
        except UnistoreError:
            self._set_state(ConnectionState.FAILED)
            raise
        except Exception as exc:
            self._set_state(ConnectionState.FAILED)
            self._log.error("Connection to %s failed: %s", self.display_name, exc)
            result: OperationResult[None] = self.error_table.to_result(exc, operation="connect")
            if result.status is OperationStatus.ERROR:
                assert result.error is not None
                return OperationResult.connection_failed(result.error.message, cause=exc)
            return result
        self._set_state(ConnectionState.CONNECTED)
        self._log.info("Connected to %s", self.display_name)
        return OperationResult.success()

    async def disconnect(self) -> OperationResult[None]:
        """Close the connection. Disconnecting twice is a no-op."""
        if self._state is ConnectionState.DISCONNECTED:
            return OperationResult.success()
        try:
            await self._do_disconnect()
        except Exception as exc:
            self._log.warning("Error while disconnecting %s: %s", self.display_name, exc)
            return self.error_table.to_result(exc, operation="disconnect")
        finally:
            self._set_state(ConnectionState.DISCONNECTED)
        self._log.debug("Disconnected %s", self.display_name)
        return OperationResult.success()

    async def _do_connect(self) -> None:  # noqa: B027
        """Open the underlying session. Raise native errors; they are retried and mapped."""

    async def _do_disconnect(self) -> None:  # noqa: B027
        """Release the underlying session. Default is a no-op."""

    async def _ensure_connected(self) -> OperationResult[None]:
        """Connect lazily for connection-oriented providers."""
        if not self.has_capability(Capability.CONNECTION) or self.is_connected():
            return OperationResult.success()
        return await self.connect()

    async def __aenter__(self) -> Provider:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.disconnect()

    # endregion

    # region: transport helpers
    async def _call(self, operation: str, path: str, fn: Callable[..., T], *args: Any, **kwargs: Any) -> OperationResult[T]:
        """Run blocking ``fn`` in a worker thread under the retry policy.

        Connection-oriented providers connect first. Native exceptions that
        survive the retries are translated through :attr:`error_table`.
        :class:`~unistore._errors.UnistoreError` is a programming error and
        propagates.
        """
        connected = await self._ensure_connected()
        if not connected.ok:
            return connected  # type: ignore[return-value]

        async def attempt() -> T:
            return await asyncio.to_thread(fn, *args, **kwargs)

        try:
            value = await call_with_retry(attempt, self._retry_policy, logger=self._log)
        except UnistoreError:
            raise
        except Exception as exc:
            self._log.debug("%s %s %r failed: %r", self.name, operation, path, exc)
            return self.error_table.to_result(exc, path=path, operation=operation)
        return OperationResult.success(value)

    # endregion

    # region: containers
    async def list_containers(self) -> OperationResult[list[Entry]]:
        """List top-level containers (buckets, shares, base directories)."""
        return OperationResult.unimplemented("list_containers")

    async def set_container(self, name: str) -> OperationResult[None]:
        """Select the container subsequent paths are resolved against."""
        return OperationResult.unimplemented("set_container")

    def get_container(self) -> str | None:
        return self._container

    # endregion

    # region: mandatory operations
    @abc.abstractmethod
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        """List the entries directly under ``path`` (all descendants with ``recursive``)."""

    @abc.abstractmethod
    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        """Describe a single file or directory."""

    @abc.abstractmethod
    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        """Read file content, optionally a byte range."""

    async def exists(self, path: str) -> OperationResult[bool]:
        """``success(True/False)``; only failures other than ``NOT_FOUND`` are errors."""
        meta = await self.get_metadata(path)
        if meta.ok:
            return OperationResult.success(True)
        if meta.status is OperationStatus.NOT_FOUND:
            return OperationResult.success(False)
        return cast("OperationResult[bool]", meta)

    # endregion

    # region: optional operations
    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        return OperationResult.unimplemented("write")

    async def mkdir(self, path: str) -> OperationResult[None]:
        return OperationResult.unimplemented("mkdir")

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        return OperationResult.unimplemented("delete")

    async def set_metadata(self, path: str, metadata: dict[str, str]) -> OperationResult[None]:
        return OperationResult.unimplemented("set_metadata")

    async def get_presigned_url(self, path: str, *, expires_in: int = 3600) -> OperationResult[str]:
        return OperationResult.unimplemented("get_presigned_url")

    async def read_symlink(self, path: str) -> OperationResult[str]:
        return OperationResult.unimplemented("read_symlink")

    async def set_permissions(self, path: str, mode: int) -> OperationResult[None]:
        return OperationResult.unimplemented("set_permissions")

    async def _native_move(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return OperationResult.unimplemented("move")

    async def _native_copy(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        return OperationResult.unimplemented("copy")

    # endregion

    # region: composed operations
    async def move(self, source: str, destination: str, options: TransferOptions | None = None) -> OperationResult[None]:
        """Move ``source`` to ``destination`` using the best available strategy."""
        return await _dispatch.move(self, source, destination, options or TransferOptions())

    async def copy(self, source: str, destination: str, options: TransferOptions | None = None) -> OperationResult[None]:
        """Copy ``source`` to ``destination`` using the best available strategy."""
        return await _dispatch.copy(self, source, destination, options or TransferOptions())

    async def download_to_local(
        self, remote_path: str, local_path: PathLike, options: TransferOptions | None = None
    ) -> OperationResult[None]:
        """Download a file, or a directory tree with ``recursive``, to the local filesystem."""
        if not self.has_capability(Capability.DOWNLOAD):
            return OperationResult.unimplemented("download_to_local")
        return await _dispatch.download_tree(self, remote_path, Path(local_path), options or TransferOptions())

    async def upload_from_local(
        self, local_path: PathLike, remote_path: str, options: TransferOptions | None = None
    ) -> OperationResult[None]:
        """Upload a local file, or a directory tree with ``recursive``."""
        if not self.has_capability(Capability.UPLOAD):
            return OperationResult.unimplemented("upload_from_local")
        return await _dispatch.upload_tree(self, Path(local_path), remote_path, options or TransferOptions())

    async def _download_file(
        self, remote_path: str, local_path: Path, on_progress: ProgressCallback | None = None
    ) -> OperationResult[None]:
        """Fetch one file. Default: :meth:`read`, then write locally creating parent directories."""
        content = await self.read(remote_path, ReadOptions(on_progress=on_progress))
        if not content.ok:
            return cast("OperationResult[None]", content)
        assert content.data is not None
        try:
            await asyncio.to_thread(_write_local, local_path, content.data)
        except OSError as exc:
            return LOCAL_FS_ERRORS.to_result(exc, path=str(local_path), operation="download")
        return OperationResult.success()

    async def _upload_file(
        self, local_path: Path, remote_path: str, options: TransferOptions, on_progress: ProgressCallback | None = None
    ) -> OperationResult[None]:
        """Send one file. Default: read it locally, then :meth:`write`."""
        try:
            data = await asyncio.to_thread(local_path.read_bytes)
        except OSError as exc:
            return LOCAL_FS_ERRORS.to_result(exc, path=str(local_path), operation="upload")
        return await self.write(remote_path, data, WriteOptions(overwrite=options.overwrite, on_progress=on_progress))

    # endregion


def _write_local(path: Path, data: bytes) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(data)
