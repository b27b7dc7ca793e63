"""Redis server nodes and their roles."""

import asyncio
import enum
from collections.abc import Awaitable
from typing import Any, Self, TypeVar

from redis.asyncio import Redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError
from redis.exceptions import TimeoutError as RedisTimeoutError

from redistopology.exceptions import ErrorScope, NodeUnreachableError, ProtocolError
from redistopology.policy import DiscoveryPolicy
from redistopology.registry import ConnectionRegistry, format_address, parse_address

T = TypeVar("T")

LOOPBACK_HOSTS = frozenset({"127.0.0.1", "localhost", "::1"})


class Role(enum.Enum):
    """Role of a redis server as last corroborated by discovery."""

    UNKNOWN = "unknown"
    MASTER = "master"
    SLAVE = "slave"


class NodeState(enum.Enum):
    """Outcome of the current discovery pass for a node."""

    UNCONFIRMED = "unconfirmed"
    CONFIRMED_MASTER = "confirmed-master"
    CONFIRMED_SLAVE = "confirmed-slave"
    EXCLUDED = "excluded"
    FAILED = "failed"


def _text(value: Any) -> str:
    if isinstance(value, bytes):
        return value.decode()
    return str(value)


def parse_role_reply(reply: Any) -> tuple[Role, str | None]:
    """Parse a ROLE reply into (role, host the server replicates from)."""
    if not isinstance(reply, list | tuple) or not reply:
        raise ProtocolError(f"unexpected ROLE reply: {reply!r}")

    name = _text(reply[0])
    if name == "master":
        return Role.MASTER, None
    if name == "slave":
        if len(reply) < 2:
            raise ProtocolError(f"unexpected ROLE reply: {reply!r}")
        return Role.SLAVE, _text(reply[1])

    raise ProtocolError(f"unsupported role {name!r}")


class RedisServer:
    """A single redis or sentinel server reached through a shared client."""

    scope = ErrorScope.NODE

    def __init__(
        self,
        address: str,
        client: Redis,
        *,
        alias: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        """Initialize the server handle (does not connect).

        Args:
            address: Server address in "host:port" or "redis://host:port" format
            client: Client obtained from a ConnectionRegistry
            alias: Human readable label, never used for identity
            timeout: Deadline for each command in seconds
        """
        self._host, self._port = parse_address(address)
        self._address = format_address(self._host, self._port)
        self._client = client
        self._timeout = timeout
        self.alias = alias

    @classmethod
    def from_registry(
        cls,
        address: str,
        registry: ConnectionRegistry,
        *,
        alias: str | None = None,
        timeout: float = 5.0,
    ) -> Self:
        return cls(address, registry.get(address), alias=alias, timeout=timeout)

    @property
    def address(self) -> str:
        return self._address

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        return self._port

    @property
    def label(self) -> str:
        """Alias if set, address otherwise."""
        return self.alias or self._address

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RedisServer):
            return NotImplemented
        return self._address == other._address

    def __hash__(self) -> int:
        return hash(self._address)

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self._address!r}, alias={self.alias!r})"

    async def _call(self, command: str, awaitable: Awaitable[T]) -> T:
        """Await a command under the deadline, translating transport errors."""
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except TimeoutError as e:
            raise NodeUnreachableError(
                f"{command} on {self._address} timed out", address=self._address, scope=self.scope
            ) from e
        except (RedisConnectionError, RedisTimeoutError, OSError) as e:
            raise NodeUnreachableError(
                f"{command} on {self._address} failed: {e}", address=self._address, scope=self.scope
            ) from e
        except RedisError as e:
            raise ProtocolError(
                f"{command} on {self._address} failed: {e}", address=self._address, scope=self.scope
            ) from e

    async def ping(self) -> None:
        """Check that the server answers."""
        await self._call("PING", self._client.ping())


class Node(RedisServer):
    """A redis data server belonging to a shard."""

    def __init__(
        self,
        address: str,
        client: Redis,
        *,
        alias: str | None = None,
        timeout: float = 5.0,
    ) -> None:
        super().__init__(address, client, alias=alias, timeout=timeout)
        self.role = Role.UNKNOWN
        self.state = NodeState.UNCONFIRMED
        self.read_only: bool | None = None

    def reset(self) -> None:
        """Forget everything learned in a previous pass."""
        self.role = Role.UNKNOWN
        self.state = NodeState.UNCONFIRMED
        self.read_only = None

    async def role_info(self) -> tuple[Role, str | None]:
        """Return the raw role and, for replicas, the host replicated from."""
        reply = await self._call("ROLE", self._client.role())
        try:
            return parse_role_reply(reply)
        except ProtocolError as e:
            raise ProtocolError(
                f"{e.message} from {self._address}", address=self._address, scope=self.scope
            ) from e

    async def discover(self, policy: DiscoveryPolicy) -> None:
        """Ask the server for its role and record it.

        The role stays UNKNOWN if any command fails.
        """
        self.role = Role.UNKNOWN
        self.read_only = None

        role, _ = await self.role_info()
        if role == Role.SLAVE and policy.require_read_write:
            self.read_only = await self.is_read_only()

        self.role = role

    async def is_read_only(self) -> bool:
        """Read the slave-read-only setting."""
        reply = await self._call("CONFIG GET", self._client.config_get("slave-read-only"))
        if isinstance(reply, dict):
            value = reply.get("slave-read-only", reply.get("replica-read-only"))
        else:
            value = None
        return value is None or _text(value) != "no"

    def is_unassigned(self, master_host: str | None) -> bool:
        """True if a replica points at loopback or its own host, i.e. was never assigned a master."""
        return master_host in LOOPBACK_HOSTS or master_host == self._host

    async def promote(self) -> None:
        """Turn the server into a master (SLAVEOF NO ONE)."""
        await self._call("SLAVEOF", self._client.slaveof())

    async def attach_replica_of(self, host: str, port: int | str) -> None:
        """Make the server replicate from host:port."""
        await self._call("SLAVEOF", self._client.slaveof(host, int(port)))
