"""Backend test fixtures -- parameterized for conformance testing."""

from __future__ import annotations

import importlib.util
import shutil
import socket
import tempfile
import uuid
from typing import TYPE_CHECKING

import pytest
import pytest_asyncio

from unistore.backends import LocalProvider

if TYPE_CHECKING:
    from collections.abc import AsyncIterator, Iterator

    from tests.backends.sftp_server import SFTPTestServer
    from unistore._provider import Provider


def _installed(*modules: str) -> bool:
    return all(importlib.util.find_spec(name) is not None for name in modules)


S3_AVAILABLE = _installed("moto", "s3fs", "boto3")
SFTP_AVAILABLE = _installed("paramiko")

MOTO_CREDENTIALS = {"access_key_id": "testing", "secret_access_key": "testing", "region": "us-east-1"}


def _free_port() -> int:
    with socket.socket() as s:
        s.bind(("", 0))
        return s.getsockname()[1]


@pytest.fixture(scope="session")
def moto_server() -> Iterator[str | None]:
    """Start a moto HTTP server for the test session.

    Server mode keeps s3fs/aiobotocore on a real HTTP connection instead of
    patched botocore internals.
    """
    if not S3_AVAILABLE:
        yield None
        return
    from moto.moto_server.threaded_moto_server import ThreadedMotoServer

    port = _free_port()
    server = ThreadedMotoServer(port=port, verbose=False)
    server.start()
    yield f"http://127.0.0.1:{port}"
    server.stop()


@pytest.fixture(scope="session")
def sftp_server() -> Iterator[SFTPTestServer | None]:
    """Start an in-process SFTP server for the test session."""
    if not SFTP_AVAILABLE:
        yield None
        return
    from tests.backends.sftp_server import SFTPTestServer

    root = tempfile.mkdtemp(prefix="unistore_sftp_")
    with SFTPTestServer(root) as server:
        yield server
    shutil.rmtree(root, ignore_errors=True)


def make_bucket(endpoint: str) -> str:
    import boto3

    bucket = f"unistore-{uuid.uuid4().hex[:8]}"
    client = boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id="testing",
        aws_secret_access_key="testing",
        region_name="us-east-1",
    )
    client.create_bucket(Bucket=bucket)
    return bucket


_s3_param = pytest.param(
    "s3",
    marks=pytest.mark.skipif(not S3_AVAILABLE, reason="moto/s3fs not installed"),
)

_sftp_param = pytest.param(
    "sftp",
    marks=pytest.mark.skipif(not SFTP_AVAILABLE, reason="paramiko not installed"),
)


@pytest_asyncio.fixture(params=["local", _s3_param, _sftp_param])
async def provider(
    request: pytest.FixtureRequest,
    moto_server: str | None,
    sftp_server: SFTPTestServer | None,
) -> AsyncIterator[Provider]:
    """Parameterized provider fixture. Add new backends here."""
    if request.param == "local":
        with tempfile.TemporaryDirectory() as tmp:
            p: Provider = LocalProvider(tmp)
            yield p
            await p.disconnect()
    elif request.param == "s3":
        from unistore.backends._s3 import S3Provider

        assert moto_server is not None
        p = S3Provider(make_bucket(moto_server), endpoint=moto_server, **MOTO_CREDENTIALS)
        yield p
        await p.disconnect()
    elif request.param == "sftp":
        from unistore.backends._sftp import HostKeyPolicy, SFTPProvider

        assert sftp_server is not None
        p = SFTPProvider(
            "127.0.0.1",
            port=sftp_server.port,
            username="testuser",
            password="testpass",
            base_path=f"/test_{uuid.uuid4().hex[:8]}",
            host_key_policy=HostKeyPolicy.AUTO_ADD,
        )
        created = await p.mkdir("")
        assert created.ok, created.error
        yield p
        await p.disconnect()
    else:
        pytest.skip(f"Unknown backend: {request.param}")
