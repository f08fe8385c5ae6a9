"""Shared test fixtures and marker registration."""

from __future__ import annotations

import pytest

from unistore.backends import MockProvider


def pytest_configure(config: object) -> None:
    """Register custom markers."""
    if isinstance(config, pytest.Config):
        config.addinivalue_line("markers", "integration: requires external services")


@pytest.fixture
def mock() -> MockProvider:
    """A mock provider seeded with a small tree."""
    provider = MockProvider()
    provider.add_file("docs/readme.txt", b"hello")
    provider.add_file("docs/guide/intro.md", b"# intro")
    provider.add_file("top.bin", b"\x00\x01\x02")
    return provider
