"""Periodic reconciliation of routing targets."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

from redistopology.cluster import SENTINEL_GROUP, Cluster, Topology
from redistopology.exceptions import ConfigurationError, TopologyError
from redistopology.metrics import PrometheusRecorder, SignalRecorder
from redistopology.policy import MASTERS_ONLY, DiscoveryPolicy
from redistopology.registry import ConnectionRegistry
from redistopology.retry import retry_with_backoff
from redistopology.settings import TopologySettings
from redistopology.targets import RoutingTargets, TargetSelector

TargetsCallback = Callable[[RoutingTargets], Awaitable[None]]


class Reconciler:
    """Rebuilds the routing targets of a topology on a fixed interval.

    Each pass builds a fresh cluster (sharing the connection registry),
    selects targets and hands them to ``on_targets``. Retryable errors are
    retried with backoff within a pass; a pass that still fails is logged and
    the loop waits for the next one.
    """

    def __init__(
        self,
        name: str,
        topology: Topology,
        *,
        policy: DiscoveryPolicy = MASTERS_ONLY,
        settings: TopologySettings | None = None,
        registry: ConnectionRegistry | None = None,
        recorder: SignalRecorder | None = None,
        on_targets: TargetsCallback | None = None,
    ) -> None:
        if not topology:
            raise ConfigurationError(f"empty topology for {name}")

        self._topology = topology
        self._policy = policy
        self._settings = settings or TopologySettings()
        self._owns_registry = registry is None
        self._registry = registry or ConnectionRegistry.from_settings(self._settings)
        self.recorder = recorder if recorder is not None else PrometheusRecorder.from_settings(self._settings)
        self._selector = TargetSelector(name, self.recorder)
        self._on_targets = on_targets
        self._stopped = asyncio.Event()
        self.last_targets: RoutingTargets | None = None

    @property
    def name(self) -> str:
        return self._selector.name

    async def build_cluster(self) -> Cluster:
        """Build the cluster from the topology; sentinel-only topologies ask sentinel for shards."""
        if set(self._topology) == {SENTINEL_GROUP}:
            return await Cluster.from_sentinel(
                self._topology[SENTINEL_GROUP],
                self._registry,
                timeout=self._settings.command_timeout,
                sentinel_timeout=self._settings.sentinel_ping_timeout,
            )
        return Cluster.from_topology(
            self._topology,
            self._registry,
            timeout=self._settings.command_timeout,
            sentinel_timeout=self._settings.sentinel_ping_timeout,
        )

    async def run_once(self) -> RoutingTargets:
        """Run one pass, retrying retryable errors."""

        async def attempt() -> RoutingTargets:
            cluster = await self.build_cluster()
            return await self._selector.select(cluster, self._policy)

        targets = await retry_with_backoff(attempt, max_attempts=self._settings.max_attempts)
        self.last_targets = targets
        if self._on_targets is not None:
            await self._on_targets(targets)
        return targets

    async def run(self) -> None:
        """Reconcile until stop() is called."""
        self._stopped.clear()
        while not self._stopped.is_set():
            try:
                targets = await self.run_once()
                logger.info(
                    "{}: routing {} shards",
                    self.name,
                    len(targets.masters),
                )
            except TopologyError as e:
                logger.error("{}: reconciliation failed: {}", self.name, e)

            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self._settings.reconcile_interval)
            except TimeoutError:
                continue

    def stop(self) -> None:
        self._stopped.set()

    async def close(self) -> None:
        """Stop the loop and close connections if the registry is ours."""
        self.stop()
        if self._owns_registry:
            await self._registry.close()

    async def __aenter__(self) -> "Reconciler":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
