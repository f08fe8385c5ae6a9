"""FTP provider tests against an in-memory stand-in for ``ftplib.FTP``."""

from __future__ import annotations

import ftplib
import posixpath
from typing import TYPE_CHECKING, Any

import pytest
import pytest_asyncio

from unistore._capabilities import Capability
from unistore._entry import EntryType, ListOptions
from unistore._options import DeleteOptions, ReadOptions, TransferOptions, WriteOptions
from unistore._progress import ProgressEvent
from unistore._provider import ConnectionState
from unistore._result import OperationStatus
from unistore._retry import RetryPolicy
from unistore.backends._ftp import FTP_ERROR_TABLE, FTPProvider, is_transient_ftp_error

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Callable, Iterator


class FakeFTP:
    """In-memory server reached through the subset of ``ftplib.FTP`` the provider uses.

    :param directories: Directories that exist up front (``/`` always does).
    :param password: The only password ``login`` accepts.
    """

    def __init__(self, directories: tuple[str, ...] = (), password: str = "secret") -> None:
        self.files: dict[str, bytes] = {}
        self.dirs: set[str] = {"/", *directories}
        self.password = password
        self.commands: list[str] = []
        self.failures: dict[str, list[BaseException]] = {}
        self.connected_to: tuple[str, int] | None = None
        self.passive: bool | None = None
        self.closed = False
        self.quit_error: BaseException | None = None

    def _record(self, command: str) -> None:
        self.commands.append(command)
        pending = self.failures.get(command)
        if pending:
            raise pending.pop(0)

    def _missing(self, path: str) -> ftplib.error_perm:
        return ftplib.error_perm(f"550 {path}: No such file or directory")

    # control connection
    def connect(self, host: str, port: int, timeout: float) -> str:
        self._record("connect")
        self.connected_to = (host, port)
        return "220 ready"

    def login(self, user: str, passwd: str) -> str:
        self._record("login")
        if passwd != self.password:
            raise ftplib.error_perm("530 Login incorrect.")
        return "230 Login successful."

    def set_pasv(self, val: bool) -> None:
        self.passive = val

    def quit(self) -> str:
        self._record("quit")
        if self.quit_error is not None:
            raise self.quit_error
        return "221 Goodbye."

    def close(self) -> None:
        self.closed = True

    # listings
    def mlsd(self, path: str = "", facts: list[str] | None = None) -> Iterator[tuple[str, dict[str, str]]]:
        self._record("mlsd")
        if path not in self.dirs:
            raise self._missing(path)
        yield ".", {"type": "cdir"}
        for d in sorted(self.dirs):
            if d != "/" and posixpath.dirname(d) == path:
                yield posixpath.basename(d), {"type": "dir", "modify": "20240102030405", "unix.mode": "0755"}
        for f, data in sorted(self.files.items()):
            if posixpath.dirname(f) == path:
                yield posixpath.basename(f), {
                    "type": "file",
                    "size": str(len(data)),
                    "modify": "20240102030405.123",
                    "unix.mode": "0644",
                }

    # transfers
    def retrbinary(
        self, cmd: str, callback: Callable[[bytes], Any], blocksize: int = 8192, rest: int | None = None
    ) -> str:
        self._record("retrbinary")
        path = cmd.removeprefix("RETR ")
        if path not in self.files:
            raise self._missing(path)
        data = self.files[path][rest or 0 :]
        for start in range(0, len(data), blocksize):
            callback(data[start : start + blocksize])
        return "226 Transfer complete."

    def storbinary(
        self, cmd: str, fp: Any, blocksize: int = 8192, callback: Callable[[bytes], Any] | None = None
    ) -> str:
        self._record("storbinary")
        path = cmd.removeprefix("STOR ")
        if posixpath.dirname(path) not in self.dirs:
            raise ftplib.error_perm(f"553 Could not create file {path}")
        chunks = []
        while block := fp.read(blocksize):
            chunks.append(block)
            if callback is not None:
                callback(block)
        self.files[path] = b"".join(chunks)
        return "226 Transfer complete."

    # namespace
    def mkd(self, path: str) -> str:
        self._record("mkd")
        if posixpath.dirname(path) not in self.dirs or path in self.dirs or path in self.files:
            raise ftplib.error_perm(f"550 Create directory operation failed: {path}")
        self.dirs.add(path)
        return path

    def rmd(self, path: str) -> str:
        self._record("rmd")
        if path not in self.dirs:
            raise self._missing(path)
        if any(p.startswith(path + "/") for p in (*self.dirs, *self.files)):
            raise ftplib.error_perm(f"550 Remove directory operation failed: {path}")
        self.dirs.discard(path)
        return "250 Remove directory operation successful."

    def delete(self, path: str) -> str:
        self._record("delete")
        if path not in self.files:
            raise self._missing(path)
        del self.files[path]
        return "250 Delete operation successful."

    def rename(self, fromname: str, toname: str) -> str:
        self._record("rename")
        if fromname in self.files:
            self.files[toname] = self.files.pop(fromname)
        elif fromname in self.dirs:
            prefix = fromname + "/"
            self.dirs = {toname + d[len(fromname) :] if d == fromname or d.startswith(prefix) else d for d in self.dirs}
            self.files = {
                (toname + f[len(fromname) :] if f.startswith(prefix) else f): data for f, data in self.files.items()
            }
        else:
            raise self._missing(fromname)
        return "250 Rename successful."


@pytest.fixture()
def server() -> FakeFTP:
    return FakeFTP(directories=("/srv",))


def _provider(server: FakeFTP, **kwargs: Any) -> FTPProvider:
    options: dict[str, Any] = {
        "username": "alice",
        "password": "secret",
        "base_path": "/srv",
        "ftp_factory": lambda: server,
        "retry_policy": RetryPolicy(max_attempts=3, base_delay_ms=1),
        **kwargs,
    }
    return FTPProvider("ftp.example.com", **options)


@pytest_asyncio.fixture()
async def ftp(server: FakeFTP) -> AsyncIterator[FTPProvider]:
    provider = _provider(server)
    yield provider
    await provider.disconnect()


class TestFTPConstruction:
    def test_empty_host_raises(self) -> None:
        with pytest.raises(ValueError, match="host"):
            FTPProvider(" ")

    def test_capabilities(self) -> None:
        caps = FTPProvider("ftp.example.com").capabilities
        assert caps.supports_all(Capability.CONNECTION, Capability.MOVE, Capability.MKDIR)
        assert Capability.COPY not in caps
        assert Capability.PERMISSIONS not in caps

    def test_display_name(self) -> None:
        assert FTPProvider("h", secure=True, username="bob", base_path="data").display_name == "FTPS (bob@h:21/data)"

    def test_full_path(self) -> None:
        provider = FTPProvider("h", base_path="/srv/")
        assert provider._full_path("") == "/srv"
        assert provider._full_path("a/b.txt") == "/srv/a/b.txt"
        assert FTPProvider("h")._full_path("a/") == "/a"


class TestFTPErrorMapping:
    @pytest.mark.parametrize(
        ("exc", "status", "code"),
        [
            (ftplib.error_perm("530 Login incorrect."), OperationStatus.PERMISSION_DENIED, "AUTH_FAILED"),
            (ftplib.error_perm("553 Could not create file."), OperationStatus.PERMISSION_DENIED, "PERMISSION_DENIED"),
            (ftplib.error_perm("550 No such file."), OperationStatus.NOT_FOUND, "NOT_FOUND"),
            (ftplib.error_temp("421 Timeout."), OperationStatus.CONNECTION_FAILED, "CONNECTION_FAILED"),
            (ftplib.error_temp("450 Busy."), OperationStatus.ERROR, "FTP_TEMPORARY"),
            (EOFError(), OperationStatus.CONNECTION_FAILED, "CONNECTION_FAILED"),
            (ftplib.error_reply("200 Unexpected."), OperationStatus.ERROR, "FTP_ERROR"),
        ],
    )
    def test_replies(self, exc: BaseException, status: OperationStatus, code: str) -> None:
        result = FTP_ERROR_TABLE.to_result(exc, path="x", operation="read")
        assert result.status is status
        assert result.error is not None
        assert result.error.code == code

    @pytest.mark.parametrize(
        ("exc", "transient"),
        [
            (ftplib.error_temp("450 Busy."), True),
            (EOFError(), True),
            (ftplib.error_perm("550 No such file."), False),
            (ConnectionResetError(), True),
        ],
    )
    def test_transient_errors(self, exc: BaseException, transient: bool) -> None:
        assert is_transient_ftp_error(exc) is transient


class TestFTPConnection:
    @pytest.mark.asyncio
    async def test_connects_lazily(self, ftp: FTPProvider, server: FakeFTP) -> None:
        assert server.connected_to is None
        await ftp.list("")
        assert server.connected_to == ("ftp.example.com", 21)
        assert server.passive is True
        assert ftp.state is ConnectionState.CONNECTED

    @pytest.mark.asyncio
    async def test_wrong_password(self, server: FakeFTP) -> None:
        provider = _provider(server, password="nope")
        result = await provider.connect()
        assert result.status is OperationStatus.PERMISSION_DENIED
        assert result.error is not None
        assert result.error.code == "AUTH_FAILED"
        assert provider.state is ConnectionState.FAILED
        assert server.commands.count("login") == 1

    @pytest.mark.asyncio
    async def test_disconnect_sends_quit(self, ftp: FTPProvider, server: FakeFTP) -> None:
        await ftp.connect()
        assert (await ftp.disconnect()).ok
        assert "quit" in server.commands
        assert not server.closed

    @pytest.mark.asyncio
    async def test_failed_quit_closes_socket(self, ftp: FTPProvider, server: FakeFTP) -> None:
        await ftp.connect()
        server.quit_error = EOFError()
        assert (await ftp.disconnect()).ok
        assert server.closed

    @pytest.mark.asyncio
    async def test_temporary_reply_is_retried(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a.txt"] = b"abc"
        server.failures["retrbinary"] = [ftplib.error_temp("450 Busy.")]
        result = await ftp.read("a.txt")
        assert result.data == b"abc"
        assert server.commands.count("retrbinary") == 2


class TestFTPFiles:
    @pytest.mark.asyncio
    async def test_write_under_base_path(self, ftp: FTPProvider, server: FakeFTP) -> None:
        assert (await ftp.write("docs/a.txt", b"hello")).ok
        assert server.files == {"/srv/docs/a.txt": b"hello"}
        assert "/srv/docs" in server.dirs

    @pytest.mark.asyncio
    async def test_read_and_ranged_read(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/digits.txt"] = b"0123456789"
        assert (await ftp.read("digits.txt")).data == b"0123456789"
        assert (await ftp.read("digits.txt", ReadOptions(offset=2, length=3))).data == b"234"

    @pytest.mark.asyncio
    async def test_read_missing(self, ftp: FTPProvider) -> None:
        result = await ftp.read("nope.txt")
        assert result.status is OperationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_write_progress(self, ftp: FTPProvider) -> None:
        events: list[ProgressEvent] = []
        await ftp.write("a.txt", b"x" * 10_000, WriteOptions(on_progress=events.append))
        assert [e.bytes_transferred for e in events] == [0, 8192, 10_000]
        assert events[-1].percentage == 100

    @pytest.mark.asyncio
    async def test_overwrite_refused(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a.txt"] = b"old"
        result = await ftp.write("a.txt", b"new", WriteOptions(overwrite=False))
        assert result.status is OperationStatus.ALREADY_EXISTS
        assert server.files["/srv/a.txt"] == b"old"

    @pytest.mark.asyncio
    async def test_write_onto_directory(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.dirs.add("/srv/folder")
        result = await ftp.write("folder", b"x")
        assert not result.ok
        assert "/srv/folder" in server.dirs

    @pytest.mark.asyncio
    async def test_metadata(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a.txt"] = b"abc"
        meta = await ftp.get_metadata("a.txt")
        entry = meta.data
        assert entry is not None
        assert entry.type is EntryType.FILE
        assert entry.size == 3
        assert entry.modified is not None
        assert entry.modified.year == 2024
        assert entry.metadata["permissions"] == "0644"
        assert (await ftp.get_metadata("b.txt")).status is OperationStatus.NOT_FOUND


class TestFTPDirectories:
    @pytest.mark.asyncio
    async def test_list(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.dirs.update({"/srv/dir", "/srv/dir/sub"})
        server.files.update({"/srv/top.txt": b"1", "/srv/dir/a.txt": b"2", "/srv/dir/sub/b.txt": b"3"})
        listed = await ftp.list("")
        assert listed.data is not None
        assert [e.path for e in listed.data.entries] == ["dir/", "top.txt"]
        deep = await ftp.list("dir", ListOptions(recursive=True))
        assert deep.data is not None
        assert [e.path for e in deep.data.entries] == ["dir/a.txt", "dir/sub/", "dir/sub/b.txt"]

    @pytest.mark.asyncio
    async def test_list_missing(self, ftp: FTPProvider) -> None:
        assert (await ftp.list("ghost")).status is OperationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_mkdir_nested(self, ftp: FTPProvider, server: FakeFTP) -> None:
        assert (await ftp.mkdir("a/b/")).ok
        assert {"/srv/a", "/srv/a/b"} <= server.dirs
        assert (await ftp.mkdir("a/b")).ok

    @pytest.mark.asyncio
    async def test_mkdir_through_file(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a"] = b"x"
        result = await ftp.mkdir("a/b")
        assert result.status is OperationStatus.ERROR
        assert result.error is not None
        assert isinstance(result.error.cause, NotADirectoryError)

    @pytest.mark.asyncio
    async def test_delete(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.dirs.update({"/srv/tree", "/srv/tree/sub"})
        server.files.update({"/srv/tree/a.txt": b"a", "/srv/tree/sub/b.txt": b"b"})
        refused = await ftp.delete("tree/")
        assert refused.error is not None
        assert refused.error.code == "DIRECTORY_NOT_EMPTY"
        assert (await ftp.delete("tree/", DeleteOptions(recursive=True))).ok
        assert server.files == {}
        assert server.dirs == {"/", "/srv"}

    @pytest.mark.asyncio
    async def test_base_path_delete_refused(self, ftp: FTPProvider) -> None:
        assert (await ftp.delete("")).status is OperationStatus.PERMISSION_DENIED


class TestFTPMoveCopy:
    @pytest.mark.asyncio
    async def test_move_is_a_rename(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a.txt"] = b"a"
        assert (await ftp.move("a.txt", "sub/b.txt")).ok
        assert server.files == {"/srv/sub/b.txt": b"a"}
        assert "rename" in server.commands

    @pytest.mark.asyncio
    async def test_move_onto_existing(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files.update({"/srv/a.txt": b"a", "/srv/b.txt": b"b"})
        assert (await ftp.move("a.txt", "b.txt")).status is OperationStatus.ALREADY_EXISTS
        assert (await ftp.move("a.txt", "b.txt", TransferOptions(overwrite=True))).ok
        assert server.files == {"/srv/b.txt": b"a"}

    @pytest.mark.asyncio
    async def test_copy_reads_then_writes(self, ftp: FTPProvider, server: FakeFTP) -> None:
        server.files["/srv/a.txt"] = b"a"
        assert (await ftp.copy("a.txt", "c.txt")).ok
        assert server.files == {"/srv/a.txt": b"a", "/srv/c.txt": b"a"}
        assert "rename" not in server.commands
