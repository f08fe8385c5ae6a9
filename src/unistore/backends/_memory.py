"""In-memory provider with configurable capabilities and injectable failures."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from unistore._capabilities import Capability
from unistore._entry import Entry, EntryType, ListOptions, ListResult, generate_entry_id, paginate
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, is_child_of, normalize, parent_of, strip_slash
from unistore._progress import report_progress
from unistore._provider import Provider
from unistore._result import OperationResult, OperationStatus

if TYPE_CHECKING:
    import logging
    from collections.abc import Iterable, Mapping

    from unistore._retry import RetryPolicy
    from unistore._types import Content

DEFAULT_CAPABILITIES = frozenset(
    {
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
        Capability.CONTAINERS,
    }
)

Failure = OperationStatus | OperationResult[Any]


class MockProvider(Provider):
    """Provider backed by dictionaries, for tests and demos.

    Every public operation is appended to :attr:`calls` as ``(operation,
    *paths)`` before anything else happens, so tests can assert exactly which
    primitives a composed operation issued.

    :param capabilities: Declared capabilities; defaults to :data:`DEFAULT_CAPABILITIES`.
    :param files: Initial files, path to content.
    :param directories: Initial (empty) directories.
    :param fail_operations: Operation name to the status (or complete result)
        it should fail with.
    :param connect_errors: Exceptions raised by successive connection attempts.
    :param containers: Names returned by :meth:`list_containers`.
    :param latency_ms: Simulated delay before every operation.
    """

    def __init__(
        self,
        *,
        capabilities: Iterable[Capability] | None = None,
        files: Mapping[str, Content] | None = None,
        directories: Iterable[str] = (),
        fail_operations: Mapping[str, Failure] | None = None,
        connect_errors: Iterable[BaseException] = (),
        containers: Iterable[str] = ("bucket-1", "bucket-2"),
        latency_ms: int = 0,
        logger: logging.Logger | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        super().__init__(logger=logger, retry_policy=retry_policy)
        self._add_capability(*(DEFAULT_CAPABILITIES if capabilities is None else capabilities))
        self._files: dict[str, bytes] = {}
        self._dirs: set[str] = set()
        self._failures: dict[str, Failure] = dict(fail_operations or {})
        self._connect_errors = list(connect_errors)
        self._containers = list(containers)
        self._latency = latency_ms / 1000.0
        self.calls: list[tuple[str, ...]] = []
        self.connect_attempts = 0
        for directory in directories:
            self.add_directory(directory)
        for path, content in (files or {}).items():
            self.add_file(path, content)

    @property
    def name(self) -> str:
        return "mock"

    @property
    def display_name(self) -> str:
        return "Mock Storage Provider"

    # region: test helpers
    def grant(self, *capabilities: Capability) -> None:
        self._add_capability(*capabilities)

    def revoke(self, *capabilities: Capability) -> None:
        for capability in capabilities:
            self._remove_capability(capability)

    def fail(self, operation: str, failure: Failure = OperationStatus.ERROR) -> None:
        """Make every later call of ``operation`` fail."""
        self._failures[operation] = failure

    def heal(self, operation: str | None = None) -> None:
        """Stop failing ``operation``, or every operation."""
        if operation is None:
            self._failures.clear()
        else:
            self._failures.pop(operation, None)

    @property
    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    def clear_calls(self) -> None:
        self.calls.clear()

    @property
    def files(self) -> dict[str, bytes]:
        return dict(self._files)

    @property
    def directories(self) -> set[str]:
        return set(self._dirs)

    def add_file(self, path: str, content: Content) -> None:
        key = normalize(path, directory=False)
        self._files[key] = content.encode() if isinstance(content, str) else bytes(content)
        self._add_parents(key)

    def add_directory(self, path: str) -> None:
        key = normalize(path, directory=True)
        if key:
            self._dirs.add(key)
            self._add_parents(key)

    def _add_parents(self, path: str) -> None:
        parent = parent_of(path)
        while parent:
            self._dirs.add(parent)
            parent = parent_of(parent)

    # endregion

    # region: internals
    async def _enter(self, operation: str, *paths: str) -> OperationResult[Any] | None:
        """Record the call, simulate latency and return an injected failure, if any."""
        self.calls.append((operation, *paths))
        if self._latency:
            await asyncio.sleep(self._latency)
        failure = self._failures.get(operation)
        if failure is not None:
            return _failure_result(failure, operation, paths[0] if paths else "")
        connected = await self._ensure_connected()
        if not connected.ok:
            return connected
        return None

    def _is_dir(self, path: str) -> bool:
        return path == "" or as_directory(path) in self._dirs

    def _exists(self, path: str) -> bool:
        return strip_slash(path) in self._files or self._is_dir(path)

    def _subtree(self, directory: str) -> tuple[list[str], list[str]]:
        prefix = as_directory(directory)
        files = [p for p in self._files if p.startswith(prefix)]
        dirs = [d for d in self._dirs if d.startswith(prefix)]
        return files, dirs

    def _entry(self, path: str) -> Entry:
        if path in self._files:
            return Entry(
                id=generate_entry_id(),
                name="",
                type=EntryType.FILE,
                path=path,
                size=len(self._files[path]),
                modified=datetime.now(tz=timezone.utc),
            )
        return Entry(id=generate_entry_id(), name="", type=EntryType.DIRECTORY, path=as_directory(path))

    async def _do_connect(self) -> None:
        self.connect_attempts += 1
        if self._latency:
            await asyncio.sleep(self._latency)
        if self._connect_errors:
            raise self._connect_errors.pop(0)

    # endregion

    # region: read operations
    async def list(self, path: str, options: ListOptions | None = None) -> OperationResult[ListResult]:
        if (failure := await self._enter("list", path)) is not None:
            return failure
        directory = normalize(path, directory=True)
        if not self._is_dir(directory):
            return OperationResult.not_found(path)
        recursive = options is not None and options.recursive
        if recursive:
            children = [p for p in (*self._files, *self._dirs) if p.startswith(directory) and p != directory]
        else:
            children = [p for p in (*self._files, *self._dirs) if is_child_of(p, directory)]
        entries = [self._entry(p) for p in sorted(children)]
        return paginate(entries, options)

    async def get_metadata(self, path: str) -> OperationResult[Entry]:
        if (failure := await self._enter("get_metadata", path)) is not None:
            return failure
        key = normalize(path)
        if strip_slash(key) in self._files:
            return OperationResult.success(self._entry(strip_slash(key)))
        if key and self._is_dir(key):
            return OperationResult.success(self._entry(key))
        return OperationResult.not_found(path)

    async def read(self, path: str, options: ReadOptions | None = None) -> OperationResult[bytes]:
        if (failure := await self._enter("read", path)) is not None:
            return failure
        key = normalize(path, directory=False)
        if key not in self._files:
            return OperationResult.not_found(path)
        options = options or ReadOptions()
        data = self._files[key]
        if options.is_ranged:
            end = None if options.length is None else options.offset + options.length
            data = data[options.offset : end]
        report_progress(options.on_progress, "download", len(data), len(data), key)
        return OperationResult.success(data)

    # endregion

    # region: write operations
    async def write(self, path: str, content: Content, options: WriteOptions | None = None) -> OperationResult[None]:
        if (failure := await self._enter("write", path)) is not None:
            return failure
        options = options or WriteOptions()
        key = normalize(path, directory=False)
        if not key:
            return OperationResult.generic_error("INVALID_PATH", "Cannot write to the root")
        if self._is_dir(key):
            return OperationResult.generic_error("IS_DIRECTORY", f"Is a directory: {path}")
        if not options.overwrite and key in self._files:
            return OperationResult.already_exists(path)
        data = content.encode() if isinstance(content, str) else bytes(content)
        report_progress(options.on_progress, "upload", 0, len(data), key)
        self.add_file(key, data)
        report_progress(options.on_progress, "upload", len(data), len(data), key)
        return OperationResult.success()

    async def mkdir(self, path: str) -> OperationResult[None]:
        if (failure := await self._enter("mkdir", path)) is not None:
            return failure
        key = normalize(path, directory=True)
        if strip_slash(key) in self._files:
            return OperationResult.already_exists(path)
        self.add_directory(key)
        return OperationResult.success()

    async def delete(self, path: str, options: DeleteOptions | None = None) -> OperationResult[None]:
        if (failure := await self._enter("delete", path)) is not None:
            return failure
        key = normalize(path)
        if strip_slash(key) in self._files:
            del self._files[strip_slash(key)]
            return OperationResult.success()
        if not key or not self._is_dir(key):
            return OperationResult.not_found(path)
        files, dirs = self._subtree(key)
        nested = [d for d in dirs if d != as_directory(key)]
        if (files or nested) and not (options and options.recursive):
            return OperationResult.generic_error("DIRECTORY_NOT_EMPTY", f"Directory not empty: {path}")
        for f in files:
            del self._files[f]
        for d in dirs:
            self._dirs.discard(d)
        return OperationResult.success()

    async def _native_move(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        if (failure := await self._enter("move", source, destination)) is not None:
            return failure
        return self._relocate(source, destination, options, keep_source=False)

    async def _native_copy(self, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
        if (failure := await self._enter("copy", source, destination)) is not None:
            return failure
        return self._relocate(source, destination, options, keep_source=True)

    def _relocate(
        self, source: str, destination: str, options: TransferOptions, *, keep_source: bool
    ) -> OperationResult[None]:
        src = normalize(source)
        if strip_slash(src) in self._files:
            dst = normalize(destination, directory=False)
            if not options.overwrite and self._exists(dst):
                return OperationResult.already_exists(destination)
            data = self._files[strip_slash(src)]
            if not keep_source:
                del self._files[strip_slash(src)]
            self.add_file(dst, data)
            return OperationResult.success()
        if not src or not self._is_dir(src):
            return OperationResult.not_found(source)
        src_dir = as_directory(src)
        dst_dir = normalize(destination, directory=True)
        if not options.overwrite and self._exists(dst_dir):
            return OperationResult.already_exists(destination)
        files, dirs = self._subtree(src_dir)
        moved_files = {f: self._files[f] for f in files}
        if not keep_source:
            for f in files:
                del self._files[f]
            for d in dirs:
                self._dirs.discard(d)
        for d in dirs:
            self.add_directory(dst_dir + d[len(src_dir) :])
        for f, data in moved_files.items():
            self.add_file(dst_dir + f[len(src_dir) :], data)
        self.add_directory(dst_dir)
        return OperationResult.success()

    # endregion

    # region: containers
    async def list_containers(self) -> OperationResult[list[Entry]]:
        if (failure := await self._enter("list_containers")) is not None:
            return failure
        if not self.has_capability(Capability.CONTAINERS):
            return OperationResult.unimplemented("list_containers")
        return OperationResult.success(
            [Entry(id=generate_entry_id(), name=name, type=EntryType.BUCKET, path=f"{name}/") for name in self._containers]
        )

    async def set_container(self, name: str) -> OperationResult[None]:
        if (failure := await self._enter("set_container", name)) is not None:
            return failure
        if not self.has_capability(Capability.CONTAINERS):
            return OperationResult.unimplemented("set_container")
        if name not in self._containers:
            return OperationResult.not_found(name)
        self._container = name
        return OperationResult.success()

    # endregion


def _failure_result(failure: Failure, operation: str, path: str) -> OperationResult[Any]:
    if isinstance(failure, OperationResult):
        return failure
    if failure is OperationStatus.NOT_FOUND:
        return OperationResult.not_found(path)
    if failure is OperationStatus.PERMISSION_DENIED:
        return OperationResult.permission_denied(path)
    if failure is OperationStatus.CONNECTION_FAILED:
        return OperationResult.connection_failed(f"Simulated {operation} connection failure")
    if failure is OperationStatus.ALREADY_EXISTS:
        return OperationResult.already_exists(path)
    if failure is OperationStatus.UNIMPLEMENTED:
        return OperationResult.unimplemented(operation)
    if failure is OperationStatus.CANCELLED:
        return OperationResult.cancelled()
    return OperationResult.generic_error("MOCK_ERROR", f"Simulated {operation} failure")
