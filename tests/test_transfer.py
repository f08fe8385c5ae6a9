"""Tests for downloads to and uploads from the local filesystem."""

from __future__ import annotations

from pathlib import Path

import pytest

from unistore._cancellation import CancellationTokenSource
from unistore._capabilities import Capability
from unistore._options import TransferOptions
from unistore._progress import ProgressEvent
from unistore._result import OperationStatus
from unistore.backends import MockProvider


def _make_tree(root: Path) -> Path:
    (root / "sub").mkdir(parents=True)
    (root / "a.txt").write_bytes(b"alpha")
    (root / "sub" / "b.txt").write_bytes(b"beta")
    return root


class TestDownload:
    @pytest.mark.asyncio
    async def test_single_file(self, mock: MockProvider, tmp_path: Path) -> None:
        target = tmp_path / "nested" / "readme.txt"
        events: list[ProgressEvent] = []
        result = await mock.download_to_local("docs/readme.txt", target, TransferOptions(on_progress=events.append))
        assert result.ok
        assert target.read_bytes() == b"hello"
        assert events[-1].percentage == 100

    @pytest.mark.asyncio
    async def test_tree(self, mock: MockProvider, tmp_path: Path) -> None:
        events: list[ProgressEvent] = []
        result = await mock.download_to_local("docs", tmp_path / "out", TransferOptions(recursive=True, on_progress=events.append))
        assert result.ok
        assert (tmp_path / "out" / "readme.txt").read_bytes() == b"hello"
        assert (tmp_path / "out" / "guide" / "intro.md").read_bytes() == b"# intro"
        assert [(e.files_processed, e.total_files) for e in events] == [(1, 2), (2, 2)]

    @pytest.mark.asyncio
    async def test_tree_keeps_empty_directories(self, mock: MockProvider, tmp_path: Path) -> None:
        mock.add_directory("docs/drafts/")
        result = await mock.download_to_local("docs/", tmp_path / "out", TransferOptions(recursive=True))
        assert result.ok
        assert (tmp_path / "out" / "drafts").is_dir()
        assert list((tmp_path / "out" / "drafts").iterdir()) == []

    @pytest.mark.asyncio
    async def test_recursive_on_file(self, mock: MockProvider, tmp_path: Path) -> None:
        result = await mock.download_to_local("top.bin", tmp_path / "top.bin", TransferOptions(recursive=True))
        assert result.ok
        assert (tmp_path / "top.bin").read_bytes() == b"\x00\x01\x02"

    @pytest.mark.asyncio
    async def test_missing(self, mock: MockProvider, tmp_path: Path) -> None:
        result = await mock.download_to_local("nope.txt", tmp_path / "nope.txt")
        assert result.status is OperationStatus.NOT_FOUND
        assert not (tmp_path / "nope.txt").exists()

    @pytest.mark.asyncio
    async def test_unsupported(self, mock: MockProvider, tmp_path: Path) -> None:
        mock.revoke(Capability.DOWNLOAD)
        result = await mock.download_to_local("top.bin", tmp_path / "top.bin")
        assert result.status is OperationStatus.UNIMPLEMENTED
        assert mock.calls == []

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, mock: MockProvider, tmp_path: Path) -> None:
        source = CancellationTokenSource()
        source.cancel()
        result = await mock.download_to_local("docs/", tmp_path, TransferOptions(recursive=True, cancellation=source.token))
        assert result.status is OperationStatus.CANCELLED
        assert mock.calls == []


class TestUpload:
    @pytest.mark.asyncio
    async def test_single_file(self, tmp_path: Path) -> None:
        provider = MockProvider()
        local = _make_tree(tmp_path / "src") / "a.txt"
        assert (await provider.upload_from_local(local, "remote/a.txt")).ok
        assert provider.files == {"remote/a.txt": b"alpha"}

    @pytest.mark.asyncio
    async def test_single_file_into_directory(self, tmp_path: Path) -> None:
        provider = MockProvider()
        local = _make_tree(tmp_path / "src") / "a.txt"
        assert (await provider.upload_from_local(local, "incoming/")).ok
        assert "incoming/a.txt" in provider.files

    @pytest.mark.asyncio
    async def test_tree(self, tmp_path: Path) -> None:
        provider = MockProvider()
        root = _make_tree(tmp_path / "src")
        events: list[ProgressEvent] = []
        result = await provider.upload_from_local(root, "up", TransferOptions(recursive=True, on_progress=events.append))
        assert result.ok
        assert provider.files == {"up/a.txt": b"alpha", "up/sub/b.txt": b"beta"}
        assert [e.current_file for e in events] == ["up/a.txt", "up/sub/b.txt"]
        assert events[-1].bytes_transferred == 9

    @pytest.mark.asyncio
    async def test_directory_needs_recursive(self, tmp_path: Path) -> None:
        provider = MockProvider()
        result = await provider.upload_from_local(_make_tree(tmp_path / "src"), "up")
        assert result.status is OperationStatus.ERROR
        assert result.error.code == "IS_DIRECTORY"
        assert provider.calls == []

    @pytest.mark.asyncio
    async def test_existing_target_not_overwritten(self, tmp_path: Path) -> None:
        provider = MockProvider(files={"remote/a.txt": b"old"})
        local = _make_tree(tmp_path / "src") / "a.txt"
        result = await provider.upload_from_local(local, "remote/a.txt")
        assert result.status is OperationStatus.ALREADY_EXISTS
        result = await provider.upload_from_local(local, "remote/a.txt", TransferOptions(overwrite=True))
        assert result.ok
        assert provider.files["remote/a.txt"] == b"alpha"

    @pytest.mark.asyncio
    async def test_missing_local_file(self, tmp_path: Path) -> None:
        provider = MockProvider()
        result = await provider.upload_from_local(tmp_path / "missing.txt", "x.txt")
        assert result.status is OperationStatus.NOT_FOUND

    @pytest.mark.asyncio
    async def test_failure_stops_tree(self, tmp_path: Path) -> None:
        provider = MockProvider()
        provider.fail("write", OperationStatus.PERMISSION_DENIED)
        result = await provider.upload_from_local(_make_tree(tmp_path / "src"), "up", TransferOptions(recursive=True))
        assert result.status is OperationStatus.PERMISSION_DENIED
        assert provider.call_names == ["write"]
