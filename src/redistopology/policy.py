"""Discovery policies."""

from dataclasses import dataclass


@dataclass(frozen=True)
class DiscoveryPolicy:
    """Controls how much of a shard is discovered.

    Masters are always discovered. ``include_replicas`` adds replica
    discovery, which read-write replica targets depend on.
    ``require_read_write`` additionally reads ``slave-read-only`` from each
    replica and only treats writable replicas as read-write targets.
    """

    include_replicas: bool = False
    require_read_write: bool = False


MASTERS_ONLY = DiscoveryPolicy(include_replicas=False)
WITH_REPLICAS = DiscoveryPolicy(include_replicas=True)
WITH_RW_REPLICAS = DiscoveryPolicy(include_replicas=True, require_read_write=True)
