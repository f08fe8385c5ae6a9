"""Move/copy fallback chains and recursive tree transfers.

Strategies are chosen from the provider's declared capabilities only, never by
trial: a native primitive always wins, composed strategies come next, and a
provider that lacks every strategy gets ``UNIMPLEMENTED`` without any call
being made.

Composed strategies are not transactional. When a later step fails, earlier
steps are not undone; the failing step's result is returned unchanged.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any, cast

from unistore._capabilities import Capability
from unistore._entry import ListOptions
from unistore._error_mapping import LOCAL_FS_ERRORS
from unistore._options import DeleteOptions, WriteOptions
from unistore._path import as_directory, is_directory_path, join, relative_to
from unistore._progress import ItemCounter
from unistore._result import OperationResult

if TYPE_CHECKING:
    from pathlib import Path

    from unistore._cancellation import CancellationToken
    from unistore._entry import Entry
    from unistore._options import TransferOptions
    from unistore._provider import Provider

log = logging.getLogger(__name__)


def _failed(result: OperationResult[Any]) -> OperationResult[None]:
    return cast("OperationResult[None]", result)


# region: move / copy
async def move(provider: Provider, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
    """Move via native move, else copy + delete, else read + write + delete."""
    caps = provider.capabilities
    if Capability.MOVE in caps:
        log.debug("move %r -> %r: native", source, destination)
        return await provider._native_move(source, destination, options)
    if caps.supports_all(Capability.COPY, Capability.DELETE):
        log.debug("move %r -> %r: copy + delete", source, destination)
        copied = await provider.copy(source, destination, options)
        if not copied.ok:
            return copied
        return await provider.delete(source, DeleteOptions(recursive=options.recursive))
    if caps.supports_all(Capability.READ, Capability.WRITE, Capability.DELETE):
        log.debug("move %r -> %r: read + write + delete", source, destination)
        if options.recursive and is_directory_path(source):
            return await _transfer_tree(provider, "move", source, destination, options)
        return await _transfer_file(provider, source, destination, options, remove_source=True)
    return OperationResult.unimplemented("move")


async def copy(provider: Provider, source: str, destination: str, options: TransferOptions) -> OperationResult[None]:
    """Copy via native (or server-side) copy, else read + write."""
    caps = provider.capabilities
    if Capability.COPY in caps or Capability.SERVER_SIDE_COPY in caps:
        log.debug("copy %r -> %r: native", source, destination)
        return await provider._native_copy(source, destination, options)
    if caps.supports_all(Capability.READ, Capability.WRITE):
        log.debug("copy %r -> %r: read + write", source, destination)
        if options.recursive and is_directory_path(source):
            return await _transfer_tree(provider, "copy", source, destination, options)
        return await _transfer_file(provider, source, destination, options, remove_source=False)
    return OperationResult.unimplemented("copy")


async def _transfer_file(
    provider: Provider, source: str, destination: str, options: TransferOptions, *, remove_source: bool
) -> OperationResult[None]:
    content = await provider.read(source)
    if not content.ok:
        return _failed(content)
    assert content.data is not None
    written = await provider.write(destination, content.data, WriteOptions(overwrite=options.overwrite))
    if not written.ok or not remove_source:
        return written
    return await provider.delete(source)


async def _transfer_tree(
    provider: Provider, operation: str, source: str, destination: str, options: TransferOptions
) -> OperationResult[None]:
    """Recreate every directory under ``source``, then transfer each file, in listing order."""
    root = as_directory(source)
    walked = await walk_tree(provider, root, options.cancellation)
    if not walked.ok:
        return _failed(walked)
    assert walked.data is not None
    directories, files = walked.data
    if Capability.MKDIR in provider.capabilities:
        for directory in directories:
            if options.is_cancelled:
                return OperationResult.cancelled()
            target = join(destination, relative_to(directory, root))
            if not target:
                continue
            made = await provider.mkdir(target)
            if not made.ok:
                return made
    elif bare := _bare_directories(directories, files):
        log.warning("%s of %r needs mkdir for empty directories %s", operation, source, bare)
        return OperationResult.unimplemented("mkdir")
    counter = ItemCounter(operation, len(files), options.on_progress)
    remove_source = operation == "move"
    for entry in files:
        if options.is_cancelled:
            log.info("%s of %r cancelled after %d of %d files", operation, source, counter.done, counter.total)
            return OperationResult.cancelled()
        target = join(destination, relative_to(entry.path, root))
        result = await _transfer_file(provider, entry.path, target, options, remove_source=remove_source)
        if not result.ok:
            return result
        counter.advance(entry.path, entry.size or 0)
    if remove_source:
        return await provider.delete(source, DeleteOptions(recursive=True))
    return OperationResult.success()


def _bare_directories(directories: list[str], files: list[Entry]) -> list[str]:
    """Directories with no file anywhere below them."""
    return [d for d in directories if not any(f.path.startswith(d) for f in files)]


# endregion


# region: tree walking
async def walk_tree(
    provider: Provider, directory: str, cancellation: CancellationToken | None = None
) -> OperationResult[tuple[list[str], list[Entry]]]:
    """Collect ``(directories, files)`` below ``directory`` depth-first.

    ``directories`` starts with ``directory`` itself and lists each directory
    before anything inside it, so creating them in order never needs a parent
    that does not exist yet.
    """
    root = as_directory(directory)
    directories: list[str] = [root]
    files: list[Entry] = []
    walked = await _walk(provider, root, directories, files, cancellation)
    if not walked.ok:
        return cast("OperationResult[tuple[list[str], list[Entry]]]", walked)
    return OperationResult.success((directories, files))


async def _walk(
    provider: Provider,
    directory: str,
    directories: list[str],
    files: list[Entry],
    cancellation: CancellationToken | None,
) -> OperationResult[None]:
    token: str | None = None
    while True:
        if cancellation is not None and cancellation.is_cancelled:
            return OperationResult.cancelled()
        page = await provider.list(directory, ListOptions(continuation_token=token))
        if not page.ok:
            return _failed(page)
        assert page.data is not None
        for entry in page.data.entries:
            if entry.path == directory:
                continue
            if entry.is_directory:
                directories.append(as_directory(entry.path))
                nested = await _walk(provider, as_directory(entry.path), directories, files, cancellation)
                if not nested.ok:
                    return nested
            else:
                files.append(entry)
        if not page.data.has_more:
            return OperationResult.success()
        token = page.data.continuation_token


# endregion


# region: local transfers
async def download_tree(provider: Provider, remote_path: str, local_path: Path, options: TransferOptions) -> OperationResult[None]:
    """Download one file, or with ``recursive`` a whole directory, below ``local_path``."""
    if options.is_cancelled:
        return OperationResult.cancelled()
    if not options.recursive:
        return await provider._download_file(remote_path, local_path, options.on_progress)
    root = remote_path
    if not is_directory_path(root):
        meta = await provider.get_metadata(root)
        if not meta.ok:
            return _failed(meta)
        assert meta.data is not None
        if not meta.data.is_directory:
            return await provider._download_file(remote_path, local_path, options.on_progress)
        root = as_directory(root)
    walked = await walk_tree(provider, root, options.cancellation)
    if not walked.ok:
        return _failed(walked)
    assert walked.data is not None
    directories, files = walked.data
    local_dirs = [local_path.joinpath(*relative_to(d, root).split("/")) for d in directories]
    try:
        for directory in local_dirs:
            await asyncio.to_thread(directory.mkdir, parents=True, exist_ok=True)
    except OSError as exc:
        return LOCAL_FS_ERRORS.to_result(exc, path=str(local_path), operation="download")
    counter = ItemCounter("download", len(files), options.on_progress)
    for entry in files:
        if options.is_cancelled:
            log.info("Download of %r cancelled after %d of %d files", root, counter.done, counter.total)
            return OperationResult.cancelled()
        target = local_path.joinpath(*relative_to(entry.path, root).split("/"))
        result = await provider._download_file(entry.path, target)
        if not result.ok:
            return result
        counter.advance(entry.path, entry.size or 0)
    return OperationResult.success()


async def upload_tree(provider: Provider, local_path: Path, remote_path: str, options: TransferOptions) -> OperationResult[None]:
    """Upload one file, or with ``recursive`` a whole local directory, below ``remote_path``.

    A directory ``remote_path`` (trailing slash) receives a single file under its
    own name.
    """
    if options.is_cancelled:
        return OperationResult.cancelled()
    is_dir = await asyncio.to_thread(local_path.is_dir)
    if not is_dir:
        target = join(remote_path, local_path.name) if is_directory_path(remote_path) and remote_path else remote_path
        return await provider._upload_file(local_path, target, options, options.on_progress)
    if not options.recursive:
        return OperationResult.generic_error("IS_DIRECTORY", f"{local_path} is a directory; upload it with recursive=True")
    try:
        files = await asyncio.to_thread(_local_files, local_path)
    except OSError as exc:
        return LOCAL_FS_ERRORS.to_result(exc, path=str(local_path), operation="upload")
    root = as_directory(remote_path)
    counter = ItemCounter("upload", len(files), options.on_progress)
    for file, size in files:
        if options.is_cancelled:
            log.info("Upload of %s cancelled after %d of %d files", local_path, counter.done, counter.total)
            return OperationResult.cancelled()
        target = f"{root}{file.relative_to(local_path).as_posix()}"
        result = await provider._upload_file(file, target, options)
        if not result.ok:
            return result
        counter.advance(target, size)
    log.debug("Uploaded %d files from %s to %r", counter.done, local_path, root)
    return OperationResult.success()


def _local_files(directory: Path) -> list[tuple[Path, int]]:
    return [(p, p.stat().st_size) for p in sorted(directory.rglob("*")) if p.is_file()]


# endregion
