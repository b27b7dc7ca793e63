"""Routing target selection for the sharding proxy."""

import enum
from dataclasses import dataclass

from loguru import logger

from redistopology.cluster import Cluster
from redistopology.metrics import NullRecorder, SignalRecorder
from redistopology.node import Node
from redistopology.policy import DiscoveryPolicy


class TargetKind(enum.Enum):
    """What a proxy server pool routes to."""

    MASTERS = "masters"
    REPLICAS_RW = "replicas-rw"


@dataclass(frozen=True)
class RoutingTarget:
    """The server a shard is routed to."""

    address: str
    alias: str | None = None

    @classmethod
    def from_node(cls, node: Node) -> "RoutingTarget":
        return cls(address=node.address, alias=node.alias)


RoutingMap = dict[str, RoutingTarget]


@dataclass(frozen=True)
class RoutingTargets:
    """Routing maps computed by one selection pass."""

    masters: RoutingMap
    replicas: RoutingMap | None = None

    def get(self, kind: TargetKind) -> RoutingMap | None:
        if kind == TargetKind.MASTERS:
            return self.masters
        return self.replicas


class TargetSelector:
    """Discovers a cluster and picks the routing target of each shard."""

    def __init__(self, name: str, recorder: SignalRecorder | None = None) -> None:
        """Initialize the selector.

        Args:
            name: Identifier of the routing config, used to key signals
            recorder: Receives the replica/fallback signal of each shard
        """
        self.name = name
        self._recorder = recorder if recorder is not None else NullRecorder()

    async def select(self, cluster: Cluster, policy: DiscoveryPolicy) -> RoutingTargets:
        """Discover the cluster and compute the routing maps.

        Sentinel and master failures propagate. Replica failures are logged
        and the affected shards fall back to their master.
        """
        if cluster.has_sentinels:
            tolerated = await cluster.sentinel_discover(policy)
        else:
            tolerated = await cluster.discover(policy)

        if tolerated:
            logger.warning("{}: discovery completed with errors: {}", self.name, tolerated)

        masters = self.masters(cluster)
        if not policy.include_replicas:
            return RoutingTargets(masters=masters)

        return RoutingTargets(masters=masters, replicas=self.replicas_with_fallback(cluster))

    def masters(self, cluster: Cluster) -> RoutingMap:
        """Map every shard to its master; fails if any shard lacks exactly one."""
        return {shard.name: RoutingTarget.from_node(shard.get_master()) for shard in cluster.shards}

    def replicas_with_fallback(self, cluster: Cluster) -> RoutingMap:
        """Map every shard to its first RW replica, or to its master if it has none."""
        targets: RoutingMap = {}

        for shard in cluster.shards:
            replicas = shard.get_replicas_rw()
            if replicas:
                targets[shard.name] = RoutingTarget.from_node(replicas[0])
                self._recorder.record_replica_target(self.name, shard.name, True)
            else:
                master = shard.get_master()
                targets[shard.name] = RoutingTarget.from_node(master)
                self._recorder.record_replica_target(self.name, shard.name, False)
                logger.warning(
                    "{}: no RW replica available for shard {}, falling back to master {}",
                    self.name,
                    shard.name,
                    master.label,
                )

        return targets
