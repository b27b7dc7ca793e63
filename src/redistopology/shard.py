"""Shard discovery and bootstrap."""

import asyncio
from collections.abc import Iterable, Mapping

from loguru import logger

from redistopology.exceptions import (
    BootstrapError,
    ConfigurationError,
    ConvergenceError,
    DiscoveryErrors,
    ErrorScope,
    ShardDiscoveryError,
    TopologyError,
    WrongMasterCountError,
)
from redistopology.node import Node, NodeState, Role
from redistopology.policy import DiscoveryPolicy
from redistopology.registry import ConnectionRegistry, format_address, parse_address
from redistopology.sentinel import MonitorReport, SentinelNode


class Shard:
    """A master and its replicas, kept sorted by address."""

    def __init__(
        self,
        name: str,
        nodes: Iterable[Node] = (),
        *,
        registry: ConnectionRegistry | None = None,
        timeout: float = 5.0,
    ) -> None:
        """Initialize a shard.

        Args:
            name: Shard name, as known to sentinel
            nodes: Initial members; duplicates by address are dropped
            registry: Used to create nodes first seen during discovery
            timeout: Command deadline for nodes created by the shard
        """
        self.name = name
        self._registry = registry
        self._timeout = timeout
        self._nodes: dict[str, Node] = {}
        for node in nodes:
            self._add(node)

    @classmethod
    def from_topology(
        cls,
        name: str,
        servers: Mapping[str, str],
        registry: ConnectionRegistry,
        *,
        timeout: float = 5.0,
    ) -> "Shard":
        """Create a shard from an {alias: connection URI} mapping.

        A key equal to its URI is not an alias and leaves the node unlabelled.
        """
        nodes = [
            Node.from_registry(uri, registry, alias=alias if alias != uri else None, timeout=timeout)
            for alias, uri in servers.items()
        ]
        return cls(name, nodes, registry=registry, timeout=timeout)

    def _add(self, node: Node) -> Node:
        existing = self._nodes.get(node.address)
        if existing is not None:
            if existing.alias is None:
                existing.alias = node.alias
            return existing

        self._nodes[node.address] = node
        self._nodes = dict(sorted(self._nodes.items()))
        return node

    def _resolve(self, address: str) -> Node:
        host, port = parse_address(address)
        node = self._nodes.get(format_address(host, port))
        if node is not None:
            return node

        if self._registry is None:
            raise ConfigurationError(
                f"shard {self.name} has no registry to reach new server {address}",
                address=address,
            )
        logger.info("shard {}: adding server {} reported by sentinel", self.name, address)
        return self._add(Node.from_registry(address, self._registry, timeout=self._timeout))

    @property
    def nodes(self) -> list[Node]:
        """Members sorted by address."""
        return list(self._nodes.values())

    def get_node(self, address: str) -> Node | None:
        host, port = parse_address(address)
        return self._nodes.get(format_address(host, port))

    def __repr__(self) -> str:
        return f"Shard({self.name!r}, nodes={[n.address for n in self._nodes.values()]!r})"

    def get_master(self) -> Node:
        """Return the only master of the shard."""
        masters = [node for node in self._nodes.values() if node.role == Role.MASTER]
        if len(masters) != 1:
            raise WrongMasterCountError(self.name, len(masters))
        return masters[0]

    def get_replicas(self) -> list[Node]:
        """Confirmed replicas, sorted by address."""
        return [node for node in self._nodes.values() if node.role == Role.SLAVE]

    def get_replicas_rw(self) -> list[Node]:
        """Confirmed replicas not known to be read-only, sorted by address."""
        return [node for node in self.get_replicas() if node.read_only is not True]

    async def discover(
        self, policy: DiscoveryPolicy, sentinel: SentinelNode | None = None
    ) -> DiscoveryErrors:
        """Refresh the role of every member.

        With a sentinel, its view is confirmed against the servers. Without
        one, each server reports its own role.

        Returns the errors that were tolerated (failed replicas or servers).
        Raises ShardDiscoveryError if the sentinel or the master could not
        be confirmed.
        """
        for node in self._nodes.values():
            node.reset()

        if sentinel is None:
            return await self._discover_self_reported(policy)
        return await self._discover_from_sentinel(policy, sentinel)

    async def _discover_self_reported(self, policy: DiscoveryPolicy) -> DiscoveryErrors:
        nodes = self.nodes
        results = await asyncio.gather(*(self._probe(node, policy) for node in nodes))
        errors = DiscoveryErrors(error for error in results if error is not None)
        for error in errors:
            logger.warning("shard {}: {}", self.name, error)
        return errors

    async def _probe(self, node: Node, policy: DiscoveryPolicy) -> TopologyError | None:
        try:
            await node.discover(policy)
        except TopologyError as e:
            node.state = NodeState.FAILED
            return e

        if node.role == Role.MASTER:
            node.state = NodeState.CONFIRMED_MASTER
        else:
            node.state = NodeState.CONFIRMED_SLAVE
        return None

    async def _discover_from_sentinel(
        self, policy: DiscoveryPolicy, sentinel: SentinelNode
    ) -> DiscoveryErrors:
        try:
            report = await sentinel.master(self.name)
        except TopologyError as e:
            raise ShardDiscoveryError(self.name, [e]) from e

        master = self._resolve(report.address)
        await self._confirm_master(master, report, policy)

        if not policy.include_replicas:
            return DiscoveryErrors()

        try:
            reports = await sentinel.replicas(self.name)
        except TopologyError as e:
            raise ShardDiscoveryError(self.name, [e]) from e

        reports = [r for r in reports if r.address != master.address]
        results = await asyncio.gather(
            *(self._confirm_replica(self._resolve(r.address), r, policy) for r in reports)
        )
        errors = DiscoveryErrors(error for error in results if error is not None)
        for error in errors:
            logger.warning("shard {}: {}", self.name, error)
        return errors

    async def _confirm_master(
        self, master: Node, report: MonitorReport, policy: DiscoveryPolicy
    ) -> None:
        if report.is_down:
            master.state = NodeState.EXCLUDED
            error = ConvergenceError(
                f"master {master.label} is flagged {','.join(sorted(report.flags))} by sentinel",
                address=master.address,
                scope=ErrorScope.MASTER,
            )
            raise ShardDiscoveryError(self.name, [error])

        try:
            await master.discover(policy)
        except TopologyError as e:
            master.reset()
            master.state = NodeState.FAILED
            error = ConvergenceError(
                f"unable to confirm role of master {master.label}: {e}",
                address=master.address,
                scope=ErrorScope.MASTER,
            )
            error.__cause__ = e
            raise ShardDiscoveryError(self.name, [error]) from e

        if master.role != Role.MASTER:
            # sentinel has not yet converged with the server's own view
            master.reset()
            master.state = NodeState.FAILED
            error = ConvergenceError(
                f"sentinel config has not yet converged for {master.label}",
                address=master.address,
                scope=ErrorScope.MASTER,
            )
            raise ShardDiscoveryError(self.name, [error])

        master.state = NodeState.CONFIRMED_MASTER

    async def _confirm_replica(
        self, node: Node, report: MonitorReport, policy: DiscoveryPolicy
    ) -> TopologyError | None:
        if report.is_down:
            node.state = NodeState.EXCLUDED
            logger.debug(
                "shard {}: skipping replica {} flagged {}",
                self.name,
                node.label,
                ",".join(sorted(report.flags)),
            )
            return None

        try:
            await node.discover(policy)
        except TopologyError as e:
            node.reset()
            node.state = NodeState.FAILED
            error = ConvergenceError(
                f"unable to confirm role of replica {node.label}: {e}",
                address=node.address,
                scope=ErrorScope.REPLICA,
            )
            error.__cause__ = e
            return error

        if node.role != Role.SLAVE:
            node.reset()
            node.state = NodeState.FAILED
            return ConvergenceError(
                f"sentinel config has not yet converged for replica {node.label}",
                address=node.address,
                scope=ErrorScope.REPLICA,
            )

        node.state = NodeState.CONFIRMED_SLAVE
        return None

    async def init(self, master_index: int = 0) -> list[str]:
        """Assign roles to servers that were never configured.

        The server at ``master_index`` becomes master and every other
        unassigned server a replica of it. Servers that already report a
        master, or a replica of a real master, are left untouched.

        Returns the addresses of the servers that were reconfigured.
        """
        nodes = self.nodes
        if not 0 <= master_index < len(nodes):
            raise ConfigurationError(
                f"master index {master_index} out of range for shard {self.name} "
                f"with {len(nodes)} servers"
            )

        target = nodes[master_index]
        changed: list[str] = []

        for idx, node in enumerate(nodes):
            try:
                role, master_host = await node.role_info()

                if role == Role.SLAVE and node.is_unassigned(master_host):
                    if idx == master_index:
                        await node.promote()
                        node.role = Role.MASTER
                        logger.info("shard {}: configured {} as master", self.name, node.address)
                    else:
                        await node.attach_replica_of(target.host, target.port)
                        node.role = Role.SLAVE
                        logger.info(
                            "shard {}: configured {} as slave of {}",
                            self.name,
                            node.address,
                            target.address,
                        )
                    changed.append(node.address)
                else:
                    node.role = role
            except TopologyError as e:
                raise BootstrapError(
                    f"unable to bootstrap {node.address} in shard {self.name}: {e}",
                    address=node.address,
                    changed=list(changed),
                ) from e

        return changed
