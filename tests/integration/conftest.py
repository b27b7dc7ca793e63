"""Integration test fixtures for redis-topology.

These tests require a running redis shard monitored by sentinel, with the
shard registered in sentinel as "shard01".
"""

import os
from collections.abc import AsyncIterator

import pytest

from redistopology.registry import ConnectionRegistry

REDIS_TOPOLOGY_SENTINEL = os.environ.get("REDIS_TOPOLOGY_SENTINEL", "redis://localhost:26379")
REDIS_TOPOLOGY_SHARD = os.environ.get(
    "REDIS_TOPOLOGY_SHARD", "redis://localhost:6379,redis://localhost:6380"
)


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "integration: marks tests as requiring a sentinel cluster")


@pytest.fixture
def topology() -> dict[str, dict[str, str]]:
    """Get the test cluster topology."""
    servers = REDIS_TOPOLOGY_SHARD.split(",")
    return {
        "shard01": {f"redis-{i}": uri for i, uri in enumerate(servers)},
        "sentinel": {"sentinel-0": REDIS_TOPOLOGY_SENTINEL},
    }


@pytest.fixture
async def live_registry() -> AsyncIterator[ConnectionRegistry]:
    async with ConnectionRegistry(command_timeout=2.0, connect_timeout=2.0) as registry:
        yield registry
