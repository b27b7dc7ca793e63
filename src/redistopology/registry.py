"""Registry of redis connections keyed by server address."""

import threading
from collections.abc import Callable
from typing import Any
from urllib.parse import urlsplit

from loguru import logger
from redis.asyncio import Redis

from redistopology.exceptions import ConfigurationError
from redistopology.settings import TopologySettings

ClientFactory = Callable[[str, int], Redis]


def parse_address(address: str) -> tuple[str, int]:
    """Split "host:port" or "redis://host:port" into (host, port)."""
    target = address if "://" in address else f"redis://{address}"
    try:
        parts = urlsplit(target)
        host, port = parts.hostname, parts.port
    except ValueError as e:
        raise ConfigurationError(f"invalid address {address!r}: {e}", address=address) from e

    if not host or port is None:
        raise ConfigurationError(f"invalid address {address!r}: expected host:port", address=address)

    return host, port


def format_address(host: str, port: int | str) -> str:
    if ":" in host:
        return f"[{host}]:{port}"
    return f"{host}:{port}"


class ConnectionRegistry:
    """Hands out one shared client per address, creating it on first use."""

    def __init__(
        self,
        *,
        command_timeout: float = 5.0,
        connect_timeout: float = 5.0,
        client_factory: ClientFactory | None = None,
    ) -> None:
        """Initialize an empty registry.

        Args:
            command_timeout: Socket timeout for commands, in seconds
            connect_timeout: Socket connect timeout, in seconds
            client_factory: Builds a client for (host, port); defaults to redis.asyncio.Redis
        """
        self._command_timeout = command_timeout
        self._connect_timeout = connect_timeout
        self._client_factory = client_factory or self._default_client
        self._clients: dict[str, Redis] = {}
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls, settings: TopologySettings, client_factory: ClientFactory | None = None
    ) -> "ConnectionRegistry":
        return cls(
            command_timeout=settings.command_timeout,
            connect_timeout=settings.connect_timeout,
            client_factory=client_factory,
        )

    def _default_client(self, host: str, port: int) -> Redis:
        return Redis(
            host=host,
            port=port,
            decode_responses=True,
            socket_timeout=self._command_timeout,
            socket_connect_timeout=self._connect_timeout,
        )

    def get(self, address: str) -> Redis:
        """Get the client for an address, creating it if needed."""
        host, port = parse_address(address)
        key = format_address(host, port)

        with self._lock:
            client = self._clients.get(key)
            if client is None:
                client = self._client_factory(host, port)
                self._clients[key] = client
                logger.debug("registered redis client for {}", key)

        return client

    def __contains__(self, address: str) -> bool:
        host, port = parse_address(address)
        return format_address(host, port) in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    async def close(self) -> None:
        """Close every client in the registry."""
        with self._lock:
            clients = list(self._clients.values())
            self._clients.clear()

        for client in clients:
            await client.aclose()

    async def __aenter__(self) -> "ConnectionRegistry":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
