"""Pytest configuration for redis-topology tests."""

from unittest.mock import MagicMock

import pytest
from fakes import make_client

from redistopology.registry import ConnectionRegistry, format_address


@pytest.fixture
def clients() -> dict[str, MagicMock]:
    """Mock clients by address; filled in by tests before use."""
    return {}


@pytest.fixture
def registry(clients: dict[str, MagicMock]) -> ConnectionRegistry:
    """Registry handing out the mock clients of the ``clients`` fixture."""

    def factory(host: str, port: int) -> MagicMock:
        return clients.setdefault(format_address(host, port), make_client())

    return ConnectionRegistry(client_factory=factory)
