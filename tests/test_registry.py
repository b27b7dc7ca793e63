"""Tests for the connection registry."""

import asyncio
from unittest.mock import MagicMock

import pytest
from fakes import make_client

from redistopology.exceptions import ConfigurationError
from redistopology.registry import ConnectionRegistry, format_address, parse_address


class TestParseAddress:
    def test_host_port(self) -> None:
        assert parse_address("127.0.0.1:6379") == ("127.0.0.1", 6379)

    def test_redis_uri(self) -> None:
        assert parse_address("redis://redis-shard0-0.svc:6379/0") == ("redis-shard0-0.svc", 6379)

    def test_missing_port(self) -> None:
        with pytest.raises(ConfigurationError, match="expected host:port"):
            parse_address("host")

    def test_bad_port(self) -> None:
        with pytest.raises(ConfigurationError, match="invalid address"):
            parse_address("redis://host:port")

    def test_format_ipv6(self) -> None:
        assert format_address("::1", 6379) == "[::1]:6379"


class TestConnectionRegistry:
    def test_default_client(self) -> None:
        registry = ConnectionRegistry(command_timeout=1.0, connect_timeout=2.0)
        client = registry.get("redis://127.0.0.1:6379")

        kwargs = client.connection_pool.connection_kwargs
        assert kwargs["host"] == "127.0.0.1"
        assert kwargs["port"] == 6379
        assert kwargs["socket_timeout"] == 1.0

    def test_get_is_idempotent_per_address(self) -> None:
        created: list[tuple[str, int]] = []

        def factory(host: str, port: int) -> MagicMock:
            created.append((host, port))
            return make_client()

        registry = ConnectionRegistry(client_factory=factory)

        first = registry.get("127.0.0.1:6379")
        second = registry.get("redis://127.0.0.1:6379")
        other = registry.get("127.0.0.2:6379")

        assert first is second
        assert other is not first
        assert created == [("127.0.0.1", 6379), ("127.0.0.2", 6379)]
        assert len(registry) == 2
        assert "127.0.0.1:6379" in registry

    async def test_concurrent_get_creates_one_client(self) -> None:
        created: list[str] = []

        def factory(host: str, port: int) -> MagicMock:
            created.append(f"{host}:{port}")
            return make_client()

        registry = ConnectionRegistry(client_factory=factory)

        async def get() -> MagicMock:
            await asyncio.sleep(0)
            return registry.get("10.0.0.1:6379")

        handles = await asyncio.gather(*(get() for _ in range(10)))

        assert created == ["10.0.0.1:6379"]
        assert all(h is handles[0] for h in handles)

    def test_factory_error_is_returned_to_caller(self) -> None:
        def factory(host: str, port: int) -> MagicMock:
            raise OSError("no route to host")

        registry = ConnectionRegistry(client_factory=factory)

        with pytest.raises(OSError, match="no route"):
            registry.get("10.0.0.1:6379")
        assert len(registry) == 0

    async def test_close(self) -> None:
        clients = [make_client(), make_client()]
        registry = ConnectionRegistry(client_factory=lambda host, port: clients.pop())

        a = registry.get("10.0.0.1:6379")
        b = registry.get("10.0.0.2:6379")

        async with registry:
            pass

        a.aclose.assert_awaited_once()
        b.aclose.assert_awaited_once()
        assert len(registry) == 0
