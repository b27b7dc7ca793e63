"""Tests for the reconciliation loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import ROLE_MASTER, make_client, make_sentinel_client, role_slave, sentinel_state

from redistopology.exceptions import ClusterDiscoveryError, ConfigurationError
from redistopology.metrics import PrometheusRecorder
from redistopology.policy import WITH_REPLICAS
from redistopology.reconcile import Reconciler
from redistopology.registry import ConnectionRegistry
from redistopology.settings import TopologySettings
from redistopology.targets import RoutingTargets

SENTINEL_ONLY = {"sentinel": {"sentinel-0": "redis://127.0.0.3:26379"}}


@pytest.fixture
def settings() -> TopologySettings:
    return TopologySettings(reconcile_interval=0.01, max_attempts=3, command_timeout=1.0)


def setup_clients(clients: dict[str, MagicMock]) -> None:
    clients["127.0.0.1:2000"] = make_client(ROLE_MASTER)
    clients["127.0.0.1:2001"] = make_client(role_slave("127.0.0.1", 2000))
    clients["127.0.0.3:26379"] = make_sentinel_client(
        masters={"shard01": sentinel_state("127.0.0.1:2000")},
        replicas={"shard01": [sentinel_state("127.0.0.1:2001", "slave")]},
    )


class TestTopologySettings:
    def test_defaults(self) -> None:
        settings = TopologySettings()
        assert settings.command_timeout == 5.0
        assert settings.max_attempts == 5

    def test_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("REDIS_TOPOLOGY_COMMAND_TIMEOUT", "0.5")
        monkeypatch.setenv("REDIS_TOPOLOGY_MAX_ATTEMPTS", "2")

        settings = TopologySettings()

        assert settings.command_timeout == 0.5
        assert settings.max_attempts == 2


class TestReconciler:
    def test_empty_topology(self) -> None:
        with pytest.raises(ConfigurationError, match="empty topology"):
            Reconciler("twem-config", {})

    async def test_run_once_from_sentinel(
        self,
        clients: dict[str, MagicMock],
        registry: ConnectionRegistry,
        settings: TopologySettings,
    ) -> None:
        setup_clients(clients)
        on_targets = AsyncMock()
        reconciler = Reconciler(
            "twem-config",
            SENTINEL_ONLY,
            policy=WITH_REPLICAS,
            settings=settings,
            registry=registry,
            on_targets=on_targets,
        )

        targets = await reconciler.run_once()

        assert targets.masters["shard01"].address == "127.0.0.1:2000"
        assert targets.replicas["shard01"].address == "127.0.0.1:2001"
        assert reconciler.last_targets is targets
        on_targets.assert_awaited_once_with(targets)

    async def test_retries_until_converged(
        self,
        clients: dict[str, MagicMock],
        registry: ConnectionRegistry,
        settings: TopologySettings,
    ) -> None:
        setup_clients(clients)
        clients["127.0.0.1:2000"].role.side_effect = [
            role_slave("127.0.0.1", 2001),
            ROLE_MASTER,
        ]
        reconciler = Reconciler("twem-config", SENTINEL_ONLY, settings=settings, registry=registry)

        targets = await reconciler.run_once()

        assert targets.masters["shard01"].address == "127.0.0.1:2000"
        assert clients["127.0.0.1:2000"].role.await_count == 2

    async def test_gives_up_after_max_attempts(
        self,
        clients: dict[str, MagicMock],
        registry: ConnectionRegistry,
        settings: TopologySettings,
    ) -> None:
        setup_clients(clients)
        clients["127.0.0.1:2000"].role.return_value = role_slave("127.0.0.1", 2001)
        reconciler = Reconciler("twem-config", SENTINEL_ONLY, settings=settings, registry=registry)

        with pytest.raises(ClusterDiscoveryError, match="not yet converged"):
            await reconciler.run_once()

        assert clients["127.0.0.1:2000"].role.await_count == settings.max_attempts
        assert reconciler.last_targets is None

    async def test_run_until_stopped(
        self,
        clients: dict[str, MagicMock],
        registry: ConnectionRegistry,
        settings: TopologySettings,
    ) -> None:
        setup_clients(clients)
        passes: list[RoutingTargets] = []
        reconciler: Reconciler | None = None

        async def on_targets(targets: RoutingTargets) -> None:
            passes.append(targets)
            if len(passes) == 2:
                reconciler.stop()

        reconciler = Reconciler(
            "twem-config",
            SENTINEL_ONLY,
            settings=settings,
            registry=registry,
            on_targets=on_targets,
        )

        await asyncio.wait_for(reconciler.run(), timeout=1)

        assert len(passes) == 2
        assert passes[0] is not passes[1]

    async def test_close_owned_registry(self, settings: TopologySettings) -> None:
        async with Reconciler("twem-config", SENTINEL_ONLY, settings=settings) as reconciler:
            reconciler._registry.get("127.0.0.1:2000")

        assert len(reconciler._registry) == 0

    async def test_default_recorder_uses_metrics_namespace(
        self, clients: dict[str, MagicMock], registry: ConnectionRegistry
    ) -> None:
        setup_clients(clients)
        settings = TopologySettings(metrics_namespace="saas_twemproxyconfig")
        reconciler = Reconciler(
            "twem-config", SENTINEL_ONLY, policy=WITH_REPLICAS, settings=settings, registry=registry
        )

        await reconciler.run_once()

        assert isinstance(reconciler.recorder, PrometheusRecorder)
        assert reconciler.recorder.metric_name == "saas_twemproxyconfig_replica_rw_configured"
        assert reconciler.recorder.value("twem-config", "shard01") == 1
