"""Pending-operations staging: queue changes, preview them, then commit or discard.

Nothing staged here touches a provider until :meth:`PendingOperationsStore.commit`
replays the queue. Until then, listings are decorated through
:meth:`PendingOperationsStore.overlay`: sources of pending deletes and moves are
suppressed, renamed entries get a new label, and the destinations of pending
moves, copies and creations show up as :class:`~unistore._entry.VirtualEntry`
objects.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
import time
import uuid
from collections.abc import Callable
from typing import TYPE_CHECKING, Union

from unistore._entry import Entry, EntryType, VirtualEntry
from unistore._errors import InvalidPath, UnistoreError
from unistore._options import DeleteOptions, TransferOptions, WriteOptions
from unistore._path import as_directory, is_child_of, join, name_of, normalize, sibling
from unistore._progress import ItemCounter
from unistore._result import OperationResult, OperationStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

    from unistore._cancellation import CancellationToken
    from unistore._provider import Provider
    from unistore._types import ProgressCallback

log = logging.getLogger(__name__)

EntryOrPath = Union[Entry, str]


class PendingOperationType(enum.Enum):
    CREATE = "create"
    DELETE = "delete"
    MOVE = "move"
    COPY = "copy"
    RENAME = "rename"


def generate_operation_id() -> str:
    return f"op_{uuid.uuid4().hex[:16]}"


# region: operations
@dataclasses.dataclass(frozen=True)
class PendingOperation:
    """A queued, not yet committed change.

    Use the classmethod constructors rather than filling the fields by hand.

    :param id: Unique operation id.
    :param type: What the operation does.
    :param entry: The entry the user acted on (absent for ``CREATE``).
    :param path: Subject path of ``DELETE``, ``RENAME`` and ``CREATE``.
    :param source: Source path of ``MOVE`` and ``COPY``.
    :param destination: Full target path of ``MOVE`` and ``COPY``.
    :param recursive: Apply to a whole directory tree.
    :param new_name: New final segment for ``RENAME``.
    :param entry_type: Kind of node a ``CREATE`` makes.
    :param created_at: Epoch seconds when the operation was staged.
    """

    id: str
    type: PendingOperationType
    entry: Entry | None = None
    path: str | None = None
    source: str | None = None
    destination: str | None = None
    recursive: bool = False
    new_name: str | None = None
    entry_type: EntryType | None = None
    created_at: float = dataclasses.field(default_factory=time.time)

    def __post_init__(self) -> None:
        kind = self.type
        if kind in (PendingOperationType.MOVE, PendingOperationType.COPY):
            if self.source is None or self.destination is None:
                raise ValueError(f"{kind.value} operation needs a source and a destination")
        elif self.path is None:
            raise ValueError(f"{kind.value} operation needs a path")
        if kind is PendingOperationType.RENAME and not self.new_name:
            raise ValueError("rename operation needs a new name")
        if kind is PendingOperationType.CREATE and self.entry_type is None:
            raise ValueError("create operation needs an entry type")

    @classmethod
    def delete(cls, entry: Entry) -> PendingOperation:
        return cls(
            id=generate_operation_id(),
            type=PendingOperationType.DELETE,
            entry=entry,
            path=entry.path,
            recursive=entry.is_directory,
        )

    @classmethod
    def move(cls, entry: Entry, destination: str) -> PendingOperation:
        return cls(
            id=generate_operation_id(),
            type=PendingOperationType.MOVE,
            entry=entry,
            source=entry.path,
            destination=normalize(destination, directory=entry.is_directory),
            recursive=entry.is_directory,
        )

    @classmethod
    def copy(cls, entry: Entry, destination: str) -> PendingOperation:
        return cls(
            id=generate_operation_id(),
            type=PendingOperationType.COPY,
            entry=entry,
            source=entry.path,
            destination=normalize(destination, directory=entry.is_directory),
            recursive=entry.is_directory,
        )

    @classmethod
    def rename(cls, entry: Entry, new_name: str) -> PendingOperation:
        """:raises InvalidPath: If ``new_name`` is empty or contains a slash."""
        if not new_name or "/" in new_name or new_name in (".", ".."):
            raise InvalidPath(f"Invalid name: {new_name!r}", path=entry.path)
        return cls(
            id=generate_operation_id(),
            type=PendingOperationType.RENAME,
            entry=entry,
            path=entry.path,
            new_name=new_name,
            recursive=entry.is_directory,
        )

    @classmethod
    def create(cls, path: str, entry_type: EntryType = EntryType.FILE) -> PendingOperation:
        is_dir = entry_type in (EntryType.DIRECTORY, EntryType.BUCKET)
        target = normalize(path, directory=is_dir)
        if not target:
            raise InvalidPath("Cannot create the root", path=path)
        return cls(
            id=generate_operation_id(),
            type=PendingOperationType.CREATE,
            path=target,
            entry_type=entry_type,
        )

    @property
    def subject_path(self) -> str:
        """The path the operation acts on: ``source`` for move/copy, ``path`` otherwise."""
        return self.source if self.source is not None else self.path or ""

    @property
    def target_path(self) -> str | None:
        """The path the operation lands on; ``None`` for deletions."""
        if self.type in (PendingOperationType.MOVE, PendingOperationType.COPY):
            return self.destination
        if self.type is PendingOperationType.RENAME:
            assert self.path is not None and self.new_name is not None
            return sibling(self.path, self.new_name)
        if self.type is PendingOperationType.CREATE:
            return self.path
        return None

    def touches(self, directory: str) -> bool:
        """``True`` if the subject or the target lies inside ``directory``."""
        prefix = as_directory(directory)
        paths = (self.subject_path, self.target_path)
        return any(p is not None and p.startswith(prefix) for p in paths)

    def describe(self) -> str:
        if self.type is PendingOperationType.DELETE:
            return f"delete {self.path}"
        if self.type is PendingOperationType.CREATE:
            return f"create {self.path}"
        return f"{self.type.value} {self.subject_path} -> {self.target_path}"


# endregion


# region: display state
@dataclasses.dataclass(frozen=True)
class EntryState:
    """How pending operations affect the display of one path."""

    is_deleted: bool = False
    is_moved_away: bool = False
    is_moved_here: bool = False
    is_copied_here: bool = False
    is_renamed: bool = False
    is_created: bool = False
    new_name: str | None = None
    move_destination: str | None = None

    @property
    def is_suppressed(self) -> bool:
        """Whether the real entry should be hidden or dimmed."""
        return self.is_deleted or self.is_moved_away

    @property
    def is_pending(self) -> bool:
        return self != _CLEAN_STATE


_CLEAN_STATE = EntryState()


@dataclasses.dataclass(frozen=True)
class ListingOverlay:
    """A directory listing decorated with pending changes.

    :param entries: The real entries, in listing order.
    :param states: Display state per real entry path; only affected paths appear.
    :param virtual_entries: Pending destinations landing in the directory.
    """

    entries: list[Entry]
    states: dict[str, EntryState]
    virtual_entries: list[VirtualEntry]

    def state_of(self, entry: Entry) -> EntryState:
        return self.states.get(entry.path, _CLEAN_STATE)

    def label_of(self, entry: Entry) -> str:
        """Display name: the pending new name of a renamed entry, else its name."""
        return self.state_of(entry).new_name or entry.name

    @property
    def suppressed(self) -> list[Entry]:
        return [e for e in self.entries if self.state_of(e).is_suppressed]

    @property
    def visible(self) -> list[Entry]:
        """Real entries that are not suppressed, followed by the virtual entries."""
        real: list[Entry] = [e for e in self.entries if not self.state_of(e).is_suppressed]
        return real + list(self.virtual_entries)


# endregion


# region: clipboard
class ClipboardMode(enum.Enum):
    CUT = "cut"
    COPY = "copy"


@dataclasses.dataclass(frozen=True)
class Clipboard:
    entries: tuple[Entry, ...]
    mode: ClipboardMode
    timestamp: float = dataclasses.field(default_factory=time.time)

    @property
    def is_cut(self) -> bool:
        return self.mode is ClipboardMode.CUT


# endregion


# region: commit results
@dataclasses.dataclass(frozen=True)
class CommitOutcome:
    operation: PendingOperation
    result: OperationResult[None]


@dataclasses.dataclass(frozen=True)
class CommitReport:
    """Per-operation results of one commit, in queue order."""

    outcomes: list[CommitOutcome]

    @property
    def succeeded(self) -> list[PendingOperation]:
        return [o.operation for o in self.outcomes if o.result.ok]

    @property
    def failed(self) -> list[PendingOperation]:
        """Operations that ran and failed (cancelled ones are listed in :attr:`cancelled`)."""
        return [
            o.operation for o in self.outcomes if not o.result.ok and o.result.status is not OperationStatus.CANCELLED
        ]

    @property
    def cancelled(self) -> list[PendingOperation]:
        return [o.operation for o in self.outcomes if o.result.status is OperationStatus.CANCELLED]

    @property
    def ok(self) -> bool:
        return all(o.result.ok for o in self.outcomes)

    def result_for(self, operation_id: str) -> OperationResult[None] | None:
        for outcome in self.outcomes:
            if outcome.operation.id == operation_id:
                return outcome.result
        return None


# endregion


class StoreChange(enum.Enum):
    """Reason passed to listeners of :meth:`PendingOperationsStore.subscribe`."""

    STAGED = "staged"
    REMOVED = "removed"
    UNDONE = "undone"
    REDONE = "redone"
    CLIPBOARD = "clipboard"
    COMMITTED = "committed"
    DISCARDED = "discarded"


Listener = Callable[[StoreChange, tuple[PendingOperation, ...]], None]


class PendingOperationsStore:
    """Queue of pending operations with clipboard, undo/redo and commit.

    Listeners registered with :meth:`subscribe` are called after every change
    with the reason and the operations involved.

    :param logger: Logger for commit progress; defaults to the module logger.
    """

    def __init__(self, *, logger: logging.Logger | None = None) -> None:
        self._log = logger or log
        self._operations: list[PendingOperation] = []
        self._clipboard: Clipboard | None = None
        self._undo: list[tuple[PendingOperation, ...]] = []
        self._redo: list[tuple[PendingOperation, ...]] = []
        self._listeners: list[Listener] = []
        self._committing = False

    def __repr__(self) -> str:
        return f"PendingOperationsStore(pending={len(self._operations)}, clipboard={self._clipboard is not None})"

    def __len__(self) -> int:
        return len(self._operations)

    # region: notification
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener(change, operations)``; returns an unsubscribe function."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, change: StoreChange, operations: Iterable[PendingOperation] = ()) -> None:
        ops = tuple(operations)
        for listener in list(self._listeners):
            listener(change, ops)

    def _checkpoint(self) -> None:
        self._undo.append(tuple(self._operations))
        self._redo.clear()

    # endregion

    # region: queries
    @property
    def operations(self) -> list[PendingOperation]:
        return list(self._operations)

    def operations_for_path(self, directory: str) -> list[PendingOperation]:
        """Operations whose subject or target lies inside ``directory``."""
        return [op for op in self._operations if op.touches(directory)]

    @property
    def has_pending_changes(self) -> bool:
        return bool(self._operations)

    @property
    def pending_count(self) -> int:
        return len(self._operations)

    def get_operation(self, operation_id: str) -> PendingOperation | None:
        for op in self._operations:
            if op.id == operation_id:
                return op
        return None

    def get_entry_state(self, entry: EntryOrPath) -> EntryState:
        path = entry.path if isinstance(entry, Entry) else entry
        flags: dict[str, object] = {}
        for op in self._operations:
            if op.type is PendingOperationType.DELETE and op.path == path:
                flags["is_deleted"] = True
            elif op.type is PendingOperationType.MOVE:
                if op.source == path:
                    flags["is_moved_away"] = True
                    flags["move_destination"] = op.destination
                if op.destination == path:
                    flags["is_moved_here"] = True
            elif op.type is PendingOperationType.COPY and op.destination == path:
                flags["is_copied_here"] = True
            elif op.type is PendingOperationType.RENAME and op.path == path:
                flags["is_renamed"] = True
                flags["new_name"] = op.new_name
            elif op.type is PendingOperationType.CREATE and op.path == path:
                flags["is_created"] = True
        if not flags:
            return _CLEAN_STATE
        return EntryState(**flags)  # type: ignore[arg-type]

    def should_filter_entry(self, entry: EntryOrPath) -> bool:
        """``True`` if the entry is the source of a pending delete or move."""
        return self.get_entry_state(entry).is_suppressed

    def get_virtual_entries(self, directory: str) -> list[VirtualEntry]:
        """Virtual entries for pending move/copy destinations and creations directly in ``directory``."""
        virtual: list[VirtualEntry] = []
        for op in self._operations:
            target = op.target_path
            if target is None or op.type is PendingOperationType.RENAME:
                continue
            if not is_child_of(target, directory):
                continue
            virtual.append(self._virtual_entry(op, target))
        return virtual

    @staticmethod
    def _virtual_entry(op: PendingOperation, target: str) -> VirtualEntry:
        if op.type is PendingOperationType.CREATE:
            assert op.entry_type is not None
            return VirtualEntry(
                id=f"virtual-{op.id}",
                name=name_of(target),
                type=op.entry_type,
                path=target,
                pending_operation_id=op.id,
                pending_type=op.type.value,
            )
        assert op.entry is not None
        return VirtualEntry(
            id=f"virtual-{op.id}",
            name=name_of(target),
            type=op.entry.type,
            path=target,
            size=op.entry.size,
            modified=op.entry.modified,
            metadata=dict(op.entry.metadata),
            pending_operation_id=op.id,
            pending_type=op.type.value,
        )

    def overlay(self, directory: str, entries: Iterable[Entry]) -> ListingOverlay:
        """Decorate the real listing of ``directory`` with pending changes."""
        real = list(entries)
        states: dict[str, EntryState] = {}
        for entry in real:
            state = self.get_entry_state(entry)
            if state.is_pending:
                states[entry.path] = state
        return ListingOverlay(entries=real, states=states, virtual_entries=self.get_virtual_entries(directory))

    # endregion

    # region: staging
    def stage(self, *operations: PendingOperation) -> None:
        """Append ``operations`` to the queue as one undoable step."""
        if not operations:
            return
        self._checkpoint()
        self._operations.extend(operations)
        self._notify(StoreChange.STAGED, operations)

    def mark_for_deletion(self, entry: Entry) -> PendingOperation:
        """Stage deletion of ``entry``; marking an already marked path returns the existing operation."""
        for op in self._operations:
            if op.type is PendingOperationType.DELETE and op.path == entry.path:
                return op
        op = PendingOperation.delete(entry)
        self.stage(op)
        return op

    def unmark_for_deletion(self, path: str) -> bool:
        """Drop the pending deletion of ``path``; returns ``False`` if there was none."""
        removed = [op for op in self._operations if op.type is PendingOperationType.DELETE and op.path == path]
        if not removed:
            return False
        self._checkpoint()
        self._operations = [op for op in self._operations if op not in removed]
        self._notify(StoreChange.REMOVED, removed)
        return True

    def toggle_deletion(self, entry: Entry) -> bool:
        """Flip the deletion mark of ``entry``; returns whether it is marked afterwards."""
        if self.unmark_for_deletion(entry.path):
            return False
        self.mark_for_deletion(entry)
        return True

    def is_marked_for_deletion(self, path: str) -> bool:
        return any(op.type is PendingOperationType.DELETE and op.path == path for op in self._operations)

    def rename(self, entry: Entry, new_name: str) -> PendingOperation:
        """Stage a rename, replacing any earlier pending rename of the same path."""
        op = PendingOperation.rename(entry, new_name)
        self._checkpoint()
        replaced = [o for o in self._operations if o.type is PendingOperationType.RENAME and o.path == entry.path]
        self._operations = [o for o in self._operations if o not in replaced]
        self._operations.append(op)
        if replaced:
            self._notify(StoreChange.REMOVED, replaced)
        self._notify(StoreChange.STAGED, (op,))
        return op

    def create(self, path: str, entry_type: EntryType = EntryType.FILE) -> PendingOperation:
        op = PendingOperation.create(path, entry_type)
        self.stage(op)
        return op

    def remove_operation(self, operation_id: str) -> bool:
        op = self.get_operation(operation_id)
        if op is None:
            return False
        self._checkpoint()
        self._operations.remove(op)
        self._notify(StoreChange.REMOVED, (op,))
        return True

    # endregion

    # region: clipboard
    @property
    def clipboard(self) -> Clipboard | None:
        return self._clipboard

    @property
    def has_clipboard_content(self) -> bool:
        return self._clipboard is not None and bool(self._clipboard.entries)

    def cut(self, entries: Iterable[Entry]) -> None:
        self._clipboard = Clipboard(tuple(entries), ClipboardMode.CUT)
        self._notify(StoreChange.CLIPBOARD)

    def copy(self, entries: Iterable[Entry]) -> None:
        self._clipboard = Clipboard(tuple(entries), ClipboardMode.COPY)
        self._notify(StoreChange.CLIPBOARD)

    def clear_clipboard(self) -> None:
        if self._clipboard is None:
            return
        self._clipboard = None
        self._notify(StoreChange.CLIPBOARD)

    def paste(self, destination_dir: str) -> list[PendingOperation]:
        """Stage the clipboard into ``destination_dir``.

        A cut becomes ``MOVE`` operations and empties the clipboard; a copy
        becomes ``COPY`` operations and stays available for further pastes.
        Cutting an entry into the directory it already lives in is skipped.

        :raises InvalidPath: If a directory would be pasted into itself, or a
            copy would land on its own source.
        """
        clipboard = self._clipboard
        if clipboard is None:
            return []
        target_dir = as_directory(normalize(destination_dir)) if destination_dir else ""
        ops: list[PendingOperation] = []
        for entry in clipboard.entries:
            destination = join(target_dir, entry.name)
            source = entry.path
            if entry.is_directory:
                destination = as_directory(destination)
                source = as_directory(source)
                if target_dir.startswith(source):
                    raise InvalidPath(f"Cannot paste {entry.path!r} into itself", path=target_dir)
            if destination == source:
                if clipboard.is_cut:
                    continue
                raise InvalidPath(f"Copy of {entry.path!r} would overwrite its source", path=destination)
            if clipboard.is_cut:
                ops.append(PendingOperation.move(entry, destination))
            else:
                ops.append(PendingOperation.copy(entry, destination))
        self.stage(*ops)
        if clipboard.is_cut:
            self._clipboard = None
            self._notify(StoreChange.CLIPBOARD)
        return ops

    # endregion

    # region: history
    @property
    def can_undo(self) -> bool:
        return bool(self._undo)

    @property
    def can_redo(self) -> bool:
        return bool(self._redo)

    def undo(self) -> bool:
        """Restore the queue as it was before the last change; ``False`` if there is nothing to undo."""
        if not self._undo:
            return False
        self._redo.append(tuple(self._operations))
        self._operations = list(self._undo.pop())
        self._notify(StoreChange.UNDONE, self._operations)
        return True

    def redo(self) -> bool:
        if not self._redo:
            return False
        self._undo.append(tuple(self._operations))
        self._operations = list(self._redo.pop())
        self._notify(StoreChange.REDONE, self._operations)
        return True

    # endregion

    # region: commit / discard
    def discard(self) -> list[PendingOperation]:
        """Drop every pending operation, the clipboard and the history.

        Makes no provider calls. Returns the discarded operations, which are
        also reported to listeners.
        """
        discarded = list(self._operations)
        self._operations = []
        self._clipboard = None
        self._undo.clear()
        self._redo.clear()
        self._notify(StoreChange.DISCARDED, discarded)
        return discarded

    async def commit(
        self,
        provider: Provider,
        *,
        on_progress: ProgressCallback | None = None,
        cancellation: CancellationToken | None = None,
    ) -> CommitReport:
        """Replay the queue against ``provider`` in the order it was staged.

        Each operation runs whether or not earlier ones failed, and nothing is
        rolled back. Successful operations leave the queue; failed ones stay so
        the caller can retry them. Once ``cancellation`` fires, the remaining
        operations are reported as ``CANCELLED`` and stay queued.

        :raises UnistoreError: If a commit is already running on this store.
        """
        if self._committing:
            raise UnistoreError("A commit is already in progress")
        self._committing = True
        pending = list(self._operations)
        counter = ItemCounter("commit", len(pending), on_progress)
        outcomes: list[CommitOutcome] = []
        self._log.info("Committing %d pending operations to %s", len(pending), provider.display_name)
        try:
            for op in pending:
                if cancellation is not None and cancellation.is_cancelled:
                    outcomes.append(CommitOutcome(op, OperationResult.cancelled()))
                    continue
                result = await self._apply(provider, op, cancellation)
                outcomes.append(CommitOutcome(op, result))
                if result.ok:
                    self._log.debug("Committed %s", op.describe())
                else:
                    assert result.error is not None
                    self._log.warning("Failed to commit %s: %s", op.describe(), result.error.message)
                counter.advance(op.subject_path)
        finally:
            self._committing = False
            self._finish_commit(outcomes)
        report = CommitReport(outcomes)
        if report.cancelled:
            self._log.info("Commit cancelled; %d operations left queued", len(report.cancelled))
        return report

    def _finish_commit(self, outcomes: list[CommitOutcome]) -> None:
        committed = [o.operation for o in outcomes if o.result.ok]
        if not committed:
            return
        done = {op.id for op in committed}
        self._operations = [op for op in self._operations if op.id not in done]
        # snapshots taken before the commit would resurrect committed operations
        self._undo.clear()
        self._redo.clear()
        self._notify(StoreChange.COMMITTED, committed)

    async def _apply(
        self, provider: Provider, op: PendingOperation, cancellation: CancellationToken | None
    ) -> OperationResult[None]:
        transfer = TransferOptions(recursive=op.recursive, cancellation=cancellation)
        if op.type is PendingOperationType.DELETE:
            assert op.path is not None
            return await provider.delete(op.path, DeleteOptions(recursive=op.recursive))
        if op.type is PendingOperationType.MOVE:
            assert op.source is not None and op.destination is not None
            return await provider.move(op.source, op.destination, transfer)
        if op.type is PendingOperationType.COPY:
            assert op.source is not None and op.destination is not None
            return await provider.copy(op.source, op.destination, transfer)
        if op.type is PendingOperationType.RENAME:
            assert op.path is not None and op.target_path is not None
            return await provider.move(op.path, op.target_path, transfer)
        assert op.path is not None
        if op.entry_type in (EntryType.DIRECTORY, EntryType.BUCKET):
            return await provider.mkdir(op.path)
        return await provider.write(op.path, b"", WriteOptions(overwrite=False))

    # endregion
