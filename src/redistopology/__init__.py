"""Topology discovery and routing targets for sentinel-monitored redis shards."""

from redistopology.cluster import Cluster, Topology
from redistopology.exceptions import (
    BootstrapError,
    ClusterDiscoveryError,
    ConfigurationError,
    ConvergenceError,
    DiscoveryErrors,
    ErrorKind,
    ErrorScope,
    NodeUnreachableError,
    ProtocolError,
    ShardDiscoveryError,
    TopologyError,
    WrongMasterCountError,
)
from redistopology.metrics import NullRecorder, PrometheusRecorder, SignalRecorder
from redistopology.node import Node, NodeState, Role
from redistopology.policy import MASTERS_ONLY, WITH_REPLICAS, WITH_RW_REPLICAS, DiscoveryPolicy
from redistopology.reconcile import Reconciler
from redistopology.registry import ConnectionRegistry
from redistopology.sentinel import MonitorReport, SentinelNode
from redistopology.settings import TopologySettings
from redistopology.shard import Shard
from redistopology.targets import RoutingMap, RoutingTarget, RoutingTargets, TargetKind, TargetSelector

__all__ = [
    "select_targets",
    "Cluster",
    "Topology",
    "Shard",
    "Node",
    "NodeState",
    "Role",
    "SentinelNode",
    "MonitorReport",
    "ConnectionRegistry",
    "DiscoveryPolicy",
    "MASTERS_ONLY",
    "WITH_REPLICAS",
    "WITH_RW_REPLICAS",
    "TargetSelector",
    "TargetKind",
    "RoutingTarget",
    "RoutingTargets",
    "RoutingMap",
    "SignalRecorder",
    "PrometheusRecorder",
    "NullRecorder",
    "Reconciler",
    "TopologySettings",
    "TopologyError",
    "ErrorKind",
    "ErrorScope",
    "NodeUnreachableError",
    "ConvergenceError",
    "WrongMasterCountError",
    "ProtocolError",
    "ConfigurationError",
    "BootstrapError",
    "DiscoveryErrors",
    "ShardDiscoveryError",
    "ClusterDiscoveryError",
]

__version__ = "0.1.0"


async def select_targets(
    name: str,
    topology: Topology,
    registry: ConnectionRegistry,
    *,
    policy: DiscoveryPolicy = MASTERS_ONLY,
    recorder: SignalRecorder | None = None,
    timeout: float = 5.0,
) -> RoutingTargets:
    """Discover a topology once and return its routing targets.

    Args:
        name: Identifier of the routing config
        topology: {group: {alias: connection URI}}; the "sentinel" group lists sentinels
        registry: Connection registry, reusable across calls
        policy: Whether replicas are discovered
        recorder: Receives the replica/fallback signal of each shard
        timeout: Command deadline in seconds

    Returns:
        The routing maps for masters and, with replicas, RW replicas
    """
    cluster = Cluster.from_topology(topology, registry, timeout=timeout, sentinel_timeout=timeout)
    selector = TargetSelector(name, recorder)
    return await selector.select(cluster, policy)
