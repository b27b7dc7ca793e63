"""Runtime settings for topology discovery."""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class TopologySettings(BaseSettings):
    """Timeouts and naming used by discovery and the reconciliation loop."""

    model_config = SettingsConfigDict(env_prefix="REDIS_TOPOLOGY_", extra="ignore")

    command_timeout: float = Field(
        5.0, description="Deadline in seconds for a single command against a node."
    )
    connect_timeout: float = Field(
        5.0, description="Deadline in seconds for establishing a TCP connection."
    )
    sentinel_ping_timeout: float = Field(
        5.0, description="Time allowed for any sentinel to answer a PING."
    )
    metrics_namespace: str = Field(
        "redis_topology", description="Namespace of the exported Prometheus gauge."
    )
    reconcile_interval: float = Field(
        30.0, description="Seconds between two reconciliation passes."
    )
    max_attempts: int = Field(
        5, description="Attempts per reconciliation pass for retryable errors."
    )
