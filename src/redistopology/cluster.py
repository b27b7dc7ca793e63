"""Sharded cluster discovery."""

import asyncio
from collections.abc import Awaitable, Iterable, Mapping

from loguru import logger

from redistopology.exceptions import (
    ClusterDiscoveryError,
    ConfigurationError,
    DiscoveryErrors,
    NodeUnreachableError,
    ShardDiscoveryError,
)
from redistopology.node import Node
from redistopology.policy import DiscoveryPolicy
from redistopology.registry import ConnectionRegistry
from redistopology.sentinel import SentinelNode, select_healthy_sentinel
from redistopology.shard import Shard

SENTINEL_GROUP = "sentinel"

Topology = Mapping[str, Mapping[str, str]]


class Cluster:
    """A set of shards, optionally monitored by sentinels."""

    def __init__(
        self,
        shards: Iterable[Shard],
        sentinels: Iterable[SentinelNode] = (),
        *,
        sentinel_timeout: float = 5.0,
    ) -> None:
        """Initialize a cluster.

        Args:
            shards: Shards of the cluster; names must be unique
            sentinels: Sentinel servers monitoring the shards
            sentinel_timeout: Time allowed to find a healthy sentinel
        """
        self._shards: dict[str, Shard] = {}
        for shard in sorted(shards, key=lambda s: s.name):
            if shard.name in self._shards:
                raise ConfigurationError(f"duplicate shard name {shard.name}")
            self._shards[shard.name] = shard

        self._sentinels = sorted(set(sentinels), key=lambda s: s.address)
        self._sentinel_timeout = sentinel_timeout

    @classmethod
    def from_topology(
        cls,
        topology: Topology,
        registry: ConnectionRegistry,
        *,
        timeout: float = 5.0,
        sentinel_timeout: float = 5.0,
    ) -> "Cluster":
        """Create a cluster from a {group: {alias: connection URI}} mapping.

        The "sentinel" group lists sentinel servers, every other group is a
        shard.
        """
        shards: list[Shard] = []
        sentinels: list[SentinelNode] = []

        for group, servers in topology.items():
            if group == SENTINEL_GROUP:
                sentinels.extend(
                    SentinelNode.from_registry(uri, registry, alias=alias, timeout=timeout)
                    for alias, uri in servers.items()
                )
            else:
                shards.append(Shard.from_topology(group, servers, registry, timeout=timeout))

        return cls(shards, sentinels, sentinel_timeout=sentinel_timeout)

    @classmethod
    async def from_sentinel(
        cls,
        sentinel_uris: Mapping[str, str],
        registry: ConnectionRegistry,
        *,
        timeout: float = 5.0,
        sentinel_timeout: float = 5.0,
    ) -> "Cluster":
        """Create a cluster with the shards a healthy sentinel monitors.

        Shards start empty and learn their servers from sentinel discovery.
        """
        sentinels = [
            SentinelNode.from_registry(uri, registry, alias=alias, timeout=timeout)
            for alias, uri in sentinel_uris.items()
        ]
        sentinel = await select_healthy_sentinel(sentinels, timeout=sentinel_timeout)
        names = await sentinel.masters()
        shards = [Shard(name, registry=registry, timeout=timeout) for name in names]
        return cls(shards, sentinels, sentinel_timeout=sentinel_timeout)

    @property
    def shards(self) -> list[Shard]:
        """Shards sorted by name."""
        return list(self._shards.values())

    @property
    def sentinels(self) -> list[SentinelNode]:
        return list(self._sentinels)

    @property
    def has_sentinels(self) -> bool:
        return bool(self._sentinels)

    def shard_names(self) -> list[str]:
        return list(self._shards)

    def get_shard(self, name: str) -> Shard | None:
        return self._shards.get(name)

    def lookup_node(self, address: str) -> Node | None:
        """Find a server by address in any shard."""
        for shard in self._shards.values():
            node = shard.get_node(address)
            if node is not None:
                return node
        return None

    async def discover(self, policy: DiscoveryPolicy) -> DiscoveryErrors:
        """Discover every shard from the servers' self-reported roles."""
        return await self._gather(shard.discover(policy) for shard in self._shards.values())

    async def sentinel_discover(self, policy: DiscoveryPolicy) -> DiscoveryErrors:
        """Discover every shard as seen from a healthy sentinel."""
        try:
            sentinel = await select_healthy_sentinel(self._sentinels, timeout=self._sentinel_timeout)
        except NodeUnreachableError as e:
            logger.error("{}", e)
            raise ClusterDiscoveryError([e]) from e

        logger.debug("using sentinel {} for discovery", sentinel.label)
        return await self._gather(
            shard.discover(policy, sentinel) for shard in self._shards.values()
        )

    async def _gather(self, discoveries: Iterable[Awaitable[DiscoveryErrors]]) -> DiscoveryErrors:
        """Run shard discoveries concurrently and sort failures from warnings."""
        results = await asyncio.gather(*discoveries, return_exceptions=True)

        tolerated = DiscoveryErrors()
        failed = ClusterDiscoveryError()
        for result in results:
            # shards return their tolerated errors, which are exceptions too
            if isinstance(result, ShardDiscoveryError):
                logger.error("{}", result)
                failed.append(result)
            elif isinstance(result, DiscoveryErrors):
                tolerated.extend(result)
            else:
                raise result

        if failed:
            raise failed
        return tolerated
