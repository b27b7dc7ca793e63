"""Tests for signal recorders."""

from prometheus_client import CollectorRegistry

from redistopology.metrics import NullRecorder, PrometheusRecorder
from redistopology.settings import TopologySettings


class TestPrometheusRecorder:
    def test_records_per_shard(self) -> None:
        registry = CollectorRegistry()
        recorder = PrometheusRecorder(registry)

        recorder.record_replica_target("twem-config", "shard01", True)
        recorder.record_replica_target("twem-config", "shard02", False)

        assert recorder.value("twem-config", "shard01") == 1
        assert recorder.value("twem-config", "shard02") == 0
        assert (
            registry.get_sample_value(
                "redis_topology_replica_rw_configured",
                {"routing_config": "twem-config", "shard": "shard01"},
            )
            == 1
        )

    def test_overwrites_value(self) -> None:
        recorder = PrometheusRecorder()

        recorder.record_replica_target("twem-config", "shard01", True)
        recorder.record_replica_target("twem-config", "shard01", False)

        assert recorder.value("twem-config", "shard01") == 0

    def test_namespace(self) -> None:
        recorder = PrometheusRecorder(namespace="saas_twemproxyconfig")

        recorder.record_replica_target("twem-config", "shard01", True)

        assert recorder.metric_name == "saas_twemproxyconfig_replica_rw_configured"
        assert recorder.value("twem-config", "shard01") == 1

    def test_unrecorded_shard(self) -> None:
        assert PrometheusRecorder().value("twem-config", "shard01") is None


class TestNullRecorder:
    def test_discards(self) -> None:
        NullRecorder().record_replica_target("twem-config", "shard01", True)


class TestFromSettings:
    def test_namespace_from_settings(self) -> None:
        recorder = PrometheusRecorder.from_settings(TopologySettings(metrics_namespace="proxy"))

        recorder.record_replica_target("twem-config", "shard01", False)

        assert recorder.metric_name == "proxy_replica_rw_configured"
        assert recorder.value("twem-config", "shard01") == 0
