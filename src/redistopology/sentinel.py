"""Sentinel monitor client."""

import asyncio
import re
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from redistopology.exceptions import ErrorScope, NodeUnreachableError, ProtocolError, TopologyError
from redistopology.node import RedisServer
from redistopology.registry import format_address

DOWN_FLAGS = frozenset({"s_down", "o_down"})


def parse_flags(flags: Any) -> frozenset[str]:
    """Split a sentinel flags field ("slave,s_down") into tokens."""
    if flags is None:
        return frozenset()
    if isinstance(flags, bytes):
        flags = flags.decode()
    if isinstance(flags, str):
        return frozenset(token for token in re.split(r"[,\s]+", flags) if token)
    return frozenset(str(token) for token in flags)


@dataclass(frozen=True)
class MonitorReport:
    """A server as reported by sentinel."""

    address: str
    flags: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_down(self) -> bool:
        return bool(self.flags & DOWN_FLAGS)

    @classmethod
    def from_state(cls, state: Mapping[str, Any]) -> "MonitorReport":
        """Build a report from a parsed SENTINEL MASTER/SLAVES entry."""
        try:
            ip, port = state["ip"], state["port"]
        except KeyError as e:
            raise ProtocolError(
                f"sentinel reply is missing {e.args[0]!r}: {dict(state)!r}", scope=ErrorScope.MONITOR
            ) from e

        flags = parse_flags(state.get("flags"))
        if state.get("is_sdown"):
            flags |= {"s_down"}
        if state.get("is_odown"):
            flags |= {"o_down"}

        return cls(address=format_address(str(ip), int(port)), flags=flags)


class SentinelNode(RedisServer):
    """A sentinel server answering for the shards it monitors."""

    scope = ErrorScope.MONITOR

    async def master(self, shard: str) -> MonitorReport:
        """Report the master sentinel holds for a shard."""
        state = await self._call("SENTINEL MASTER", self._client.sentinel_master(shard))
        if not isinstance(state, Mapping):
            raise ProtocolError(
                f"unexpected SENTINEL MASTER reply for {shard}: {state!r}",
                address=self.address,
                scope=self.scope,
            )
        return MonitorReport.from_state(state)

    async def replicas(self, shard: str) -> list[MonitorReport]:
        """Report the replicas sentinel holds for a shard."""
        states = await self._call("SENTINEL SLAVES", self._client.sentinel_slaves(shard))
        if not isinstance(states, Sequence):
            raise ProtocolError(
                f"unexpected SENTINEL SLAVES reply for {shard}: {states!r}",
                address=self.address,
                scope=self.scope,
            )
        return [MonitorReport.from_state(state) for state in states]

    async def masters(self) -> list[str]:
        """Return the names of all monitored shards, sorted."""
        states = await self._call("SENTINEL MASTERS", self._client.sentinel_masters())
        if isinstance(states, Mapping):
            return sorted(states)
        if isinstance(states, Sequence):
            return sorted(state["name"] for state in states)
        raise ProtocolError(
            f"unexpected SENTINEL MASTERS reply: {states!r}", address=self.address, scope=self.scope
        )


async def select_healthy_sentinel(
    sentinels: Sequence[SentinelNode], timeout: float = 5.0
) -> SentinelNode:
    """Ping all sentinels concurrently and return the first one to answer."""
    if not sentinels:
        raise NodeUnreachableError("no sentinel servers configured", scope=ErrorScope.MONITOR)

    async def probe(sentinel: SentinelNode) -> SentinelNode:
        await sentinel.ping()
        return sentinel

    tasks = [asyncio.create_task(probe(s)) for s in sentinels]
    try:
        async with asyncio.timeout(timeout):
            for next_done in asyncio.as_completed(tasks):
                try:
                    return await next_done
                except TopologyError as e:
                    logger.debug("sentinel unhealthy: {}", e)
    except TimeoutError:
        pass
    finally:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    raise NodeUnreachableError("unable to find a healthy sentinel server", scope=ErrorScope.MONITOR)
