"""Tests for the provider factory and registry."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import pytest

from unistore._errors import InvalidProfile, ProviderNotAvailable
from unistore._factory import Registry, create_provider, register_provider, unregister_provider
from unistore._profile import Profile
from unistore._provider import ConnectionState
from unistore.backends import FTPProvider, LocalProvider, MockProvider


class _ShareProvider(MockProvider):
    """Application-supplied provider for a type without a bundled implementation."""

    def __init__(self, host: str, share: str, **kwargs: Any) -> None:
        super().__init__(containers=[share], **kwargs)
        self.host = host


@pytest.fixture
def smb_registered() -> Iterator[None]:
    register_provider("smb", _ShareProvider)
    yield
    unregister_provider("smb")


class TestCreateProvider:
    def test_local(self, tmp_path: Path) -> None:
        provider = create_provider(Profile(id="l", provider="local", config={"base_path": str(tmp_path)}))
        assert isinstance(provider, LocalProvider)
        assert provider.root == tmp_path.resolve()

    def test_mock(self) -> None:
        assert isinstance(create_provider(Profile(id="m", provider="mock")), MockProvider)

    def test_ftp_needs_no_extra(self) -> None:
        provider = create_provider(Profile(id="f", provider="ftp", config={"host": "ftp.example.com"}))
        assert isinstance(provider, FTPProvider)

    def test_dependencies_passed_through(self) -> None:
        logger = logging.getLogger("custom")
        provider = create_provider(Profile(id="m", provider="mock"), logger=logger)
        assert provider.logger is logger

    def test_unbundled_type_not_available(self) -> None:
        profile = Profile(id="s", provider="smb", config={"host": "h", "share": "data"})
        with pytest.raises(ProviderNotAvailable, match="smb") as exc_info:
            create_provider(profile)
        assert exc_info.value.provider == "smb"

    @pytest.mark.asyncio
    @pytest.mark.usefixtures("smb_registered")
    async def test_registered_type(self) -> None:
        provider = create_provider(Profile(id="s", provider="smb", config={"host": "nas", "share": "data"}))
        assert isinstance(provider, _ShareProvider)
        assert provider.host == "nas"
        assert (await provider.list_containers()).data[0].name == "data"

    def test_invalid_profile_rejected_before_resolving(self) -> None:
        with pytest.raises(InvalidProfile):
            create_provider(Profile(id="l", provider="local"))

    def test_unknown_option(self) -> None:
        with pytest.raises(InvalidProfile, match="Invalid options"):
            create_provider(Profile(id="m", provider="mock", config={"colour": "blue"}))


class TestRegistry:
    def test_lazy_and_cached(self) -> None:
        registry = Registry([Profile(id="m", provider="mock")])
        first = registry.get_provider("m")
        assert registry.get_provider("m") is first

    def test_unknown_profile(self) -> None:
        registry = Registry([Profile(id="m", provider="mock")])
        with pytest.raises(KeyError, match="Unknown profile 'x'"):
            registry.get_provider("x")

    def test_duplicate_ids(self) -> None:
        with pytest.raises(InvalidProfile, match="Duplicate"):
            Registry([Profile(id="m", provider="mock"), Profile(id="m", provider="mock")])

    def test_profiles_validated_on_construction(self) -> None:
        with pytest.raises(InvalidProfile):
            Registry([Profile(id="f", provider="ftp")])

    def test_profiles(self) -> None:
        profiles = [Profile(id="a", provider="mock"), Profile(id="b", provider="mock")]
        assert Registry(profiles).profiles == profiles

    @pytest.mark.asyncio
    async def test_context_manager_disconnects(self) -> None:
        async with Registry([Profile(id="m", provider="mock")]) as registry:
            provider = registry.get_provider("m")
            await provider.connect()
            assert provider.is_connected()
        assert provider.state is ConnectionState.DISCONNECTED
