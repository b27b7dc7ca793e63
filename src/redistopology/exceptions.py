"""Exceptions for redis topology discovery."""

import enum
from collections.abc import Iterable, Iterator


class ErrorKind(enum.Enum):
    """Classification of a topology error."""

    NODE_UNREACHABLE = "node-unreachable"
    CONVERGENCE = "convergence"
    INVARIANT_VIOLATION = "invariant-violation"
    PROTOCOL = "protocol"
    CONFIGURATION = "configuration"


class ErrorScope(enum.Enum):
    """Where in the discovery protocol an error was raised."""

    MONITOR = "monitor"
    MASTER = "master"
    REPLICA = "replica"
    NODE = "node"


RETRYABLE_KINDS = frozenset({ErrorKind.NODE_UNREACHABLE, ErrorKind.CONVERGENCE})


class TopologyError(Exception):
    """Base exception for topology errors."""

    kind: ErrorKind = ErrorKind.PROTOCOL

    def __init__(
        self,
        message: str,
        *,
        address: str | None = None,
        scope: ErrorScope = ErrorScope.NODE,
    ) -> None:
        self.message = message
        self.address = address
        self.scope = scope
        super().__init__(message)

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class NodeUnreachableError(TopologyError):
    """Transport failure or timeout talking to a node or sentinel."""

    kind = ErrorKind.NODE_UNREACHABLE


class ConvergenceError(TopologyError):
    """Sentinel and the data node do not agree (yet) on a role."""

    kind = ErrorKind.CONVERGENCE


class WrongMasterCountError(TopologyError):
    """Zero or several nodes of a shard hold the master role."""

    kind = ErrorKind.INVARIANT_VIOLATION

    def __init__(self, shard: str, count: int) -> None:
        self.shard = shard
        self.count = count
        super().__init__(
            f"wrong master count for shard {shard}: {count} != 1",
            scope=ErrorScope.MASTER,
        )


class ProtocolError(TopologyError):
    """Unexpected reply from a redis or sentinel server."""

    kind = ErrorKind.PROTOCOL


class ConfigurationError(TopologyError):
    """Invalid topology description or argument."""

    kind = ErrorKind.CONFIGURATION


class BootstrapError(TopologyError):
    """A role-change command failed while bootstrapping a shard.

    ``changed`` holds the nodes already reconfigured before the failure.
    """

    def __init__(self, message: str, *, address: str, changed: list[str]) -> None:
        self.changed = changed
        super().__init__(message, address=address, scope=ErrorScope.NODE)

    @property
    def kind(self) -> ErrorKind:  # type: ignore[override]
        cause = self.__cause__
        return cause.kind if isinstance(cause, TopologyError) else ErrorKind.PROTOCOL


class DiscoveryErrors(TopologyError):
    """Ordered collection of classified errors from one discovery pass."""

    def __init__(self, errors: Iterable[TopologyError] = ()) -> None:
        self.errors: list[TopologyError] = list(errors)
        super().__init__(self._describe())

    def _describe(self) -> str:
        return "; ".join(
            str(e) if isinstance(e, DiscoveryErrors) else f"[{e.kind.value}] {e}" for e in self.errors
        )

    def __str__(self) -> str:
        return self._describe()

    def __iter__(self) -> Iterator[TopologyError]:
        return iter(self.errors)

    def __len__(self) -> int:
        return len(self.errors)

    def __bool__(self) -> bool:
        return bool(self.errors)

    def append(self, error: TopologyError) -> None:
        self.errors.append(error)

    def extend(self, errors: Iterable[TopologyError]) -> None:
        self.errors.extend(errors)

    def flatten(self) -> list[TopologyError]:
        """Return the leaf errors, expanding nested collections."""
        leaves: list[TopologyError] = []
        for error in self.errors:
            if isinstance(error, DiscoveryErrors):
                leaves.extend(error.flatten())
            else:
                leaves.append(error)
        return leaves

    def has(self, *, kind: ErrorKind | None = None, scope: ErrorScope | None = None) -> bool:
        """Check whether any leaf error matches the given classification."""
        return any(
            (kind is None or e.kind == kind) and (scope is None or e.scope == scope)
            for e in self.flatten()
        )

    @property
    def retryable(self) -> bool:
        leaves = self.flatten()
        return bool(leaves) and all(e.retryable for e in leaves)

    def error_or_none(self) -> "DiscoveryErrors | None":
        """Return self if any error was collected, None otherwise."""
        return self if self.errors else None


class ShardDiscoveryError(DiscoveryErrors):
    """Discovery of a shard failed on the sentinel or master path."""

    def __init__(self, shard: str, errors: Iterable[TopologyError]) -> None:
        self.shard = shard
        super().__init__(errors)

    def _describe(self) -> str:
        return f"errors occurred for shard {self.shard}: '{super()._describe()}'"


class ClusterDiscoveryError(DiscoveryErrors):
    """One or more shards failed discovery."""
