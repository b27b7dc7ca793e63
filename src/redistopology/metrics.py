"""Routing signal recorders."""

from typing import Protocol

from prometheus_client import CollectorRegistry, Gauge

from redistopology.settings import TopologySettings


class SignalRecorder(Protocol):
    """Receives the per-shard outcome of read-write replica selection."""

    def record_replica_target(self, routing_config: str, shard: str, genuine: bool) -> None:
        """Record whether a shard routes to a real replica (True) or its master (False)."""
        ...


class NullRecorder:
    """Recorder that drops every signal."""

    def record_replica_target(self, routing_config: str, shard: str, genuine: bool) -> None:
        pass


class PrometheusRecorder:
    """Exports the replica selection outcome as a gauge."""

    def __init__(
        self,
        registry: CollectorRegistry | None = None,
        *,
        namespace: str = "redis_topology",
    ) -> None:
        """Create the gauge.

        Args:
            registry: Registry the gauge is registered with. Pass
                prometheus_client.REGISTRY to export it process-wide.
            namespace: Metric namespace
        """
        self.registry = registry if registry is not None else CollectorRegistry()
        self.metric_name = f"{namespace}_replica_rw_configured" if namespace else "replica_rw_configured"
        self.gauge = Gauge(
            "replica_rw_configured",
            "1 if the routing config points to a RW replica, 0 if it falls back to the master",
            ["routing_config", "shard"],
            namespace=namespace,
            registry=self.registry,
        )

    @classmethod
    def from_settings(
        cls, settings: TopologySettings, registry: CollectorRegistry | None = None
    ) -> "PrometheusRecorder":
        return cls(registry, namespace=settings.metrics_namespace)

    def record_replica_target(self, routing_config: str, shard: str, genuine: bool) -> None:
        self.gauge.labels(routing_config=routing_config, shard=shard).set(1 if genuine else 0)

    def value(self, routing_config: str, shard: str) -> float | None:
        """Read back the current gauge value for a shard."""
        return self.registry.get_sample_value(
            self.metric_name, {"routing_config": routing_config, "shard": shard}
        )
