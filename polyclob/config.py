"""
Configuration management for the polyclob client.

Loads settings from environment variables with validation.
"""

from typing import Optional
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .exceptions import ConfigurationError


class ClientSettings(BaseSettings):
    """
    Client settings.

    Loads from environment variables with POLYCLOB_ prefix.
    """
    model_config = SettingsConfigDict(
        env_prefix="POLYCLOB_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    # API URLs
    clob_url: str = Field(
        default="https://clob.polymarket.com",
        description="CLOB API URL"
    )
    gamma_url: str = Field(
        default="https://gamma-api.polymarket.com",
        description="Gamma API URL"
    )
    relay_url: str = Field(
        default="https://relayer-v2.polymarket.com",
        description="Gasless relayer URL"
    )

    # Chain configuration
    chain_id: int = Field(default=137, description="Polygon chain ID")
    rpc_url: Optional[str] = Field(None, description="Polygon RPC URL (gas estimation)")

    # Timeouts
    request_timeout: float = Field(default=30.0, ge=1.0, description="Request timeout (seconds)")
    connect_timeout: float = Field(default=10.0, ge=1.0, description="Connection timeout (seconds)")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_requests: bool = Field(default=False, description="Log all HTTP requests")

    # Metrics
    enable_metrics: bool = Field(default=True, description="Collect Prometheus metrics")

    # WebSocket channels
    ws_url: str = Field(
        default="wss://ws-subscriptions-clob.polymarket.com/ws",
        description="WebSocket base URL (channel kind is appended)"
    )
    ws_buffer_size: int = Field(default=1000, ge=1, description="Bounded inbound message buffer")
    ws_reconnect: bool = Field(default=True, description="Reconnect and resubscribe on drop")
    ws_reconnect_delay: float = Field(default=5.0, ge=0.0, description="WS reconnect delay")
    ws_max_reconnects: int = Field(default=10, ge=0, description="Max WS reconnect attempts")
    ws_ping_interval: float = Field(default=10.0, ge=1.0, description="PING keepalive interval")

    # Connection pooling
    pool_connections: int = Field(default=10, ge=1, le=200,
                                  description="HTTP connection pool size")
    pool_maxsize: int = Field(default=50, ge=1, le=500,
                              description="Max connections per pool")

    def __repr__(self) -> str:
        """Safe repr without sensitive data."""
        return (
            f"ClientSettings("
            f"clob_url={self.clob_url}, "
            f"chain_id={self.chain_id}"
            ")"
        )


class RetryQuotaConfig(BaseModel):
    """
    Retry and quota tuning shared by every request executor.

    Immutable once built so one value can be handed to several executors.
    """
    model_config = ConfigDict(frozen=True)

    max_retries: int = Field(default=3, ge=0, le=20)
    base_delay: float = Field(default=0.5, gt=0.0, description="Backoff base (seconds)")
    max_delay: float = Field(default=10.0, gt=0.0, description="Backoff cap (seconds)")
    jitter_ratio: float = Field(default=0.25, ge=0.0, le=1.0)
    default_quota_capacity: int = Field(default=9000, ge=1)
    default_refill_rate: float = Field(default=900.0, gt=0.0, description="Tokens per second")
    block_on_quota: bool = Field(default=True, description="Wait for tokens instead of rejecting")
    max_quota_wait: float = Field(default=60.0, ge=0.0)

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryQuotaConfig":
        if self.max_delay < self.base_delay:
            raise ValueError("max_delay must be >= base_delay")
        return self


class ContractConfig(BaseModel):
    """On-chain addresses for one network."""
    model_config = ConfigDict(frozen=True)

    chain_id: int
    exchange: str
    neg_risk_exchange: str
    neg_risk_adapter: str
    collateral: str
    conditional_tokens: str
    safe_factory: str
    safe_multisend: str
    proxy_factory: Optional[str] = None
    relay_hub: Optional[str] = None


CONTRACTS = {
    137: ContractConfig(
        chain_id=137,
        exchange="0x4bFb41d5B3570DeFd03C39a9A4D8dE6Bd8B8982E",
        neg_risk_exchange="0xC5d563A36AE78145C45a50134d48A1215220f80a",
        neg_risk_adapter="0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296",
        collateral="0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174",
        conditional_tokens="0x4D97DCd97eC945f40cF65F87097ACe5EA0476045",
        safe_factory="0xaacFeEa03eb1561C4e67d661e40682Bd20E3541b",
        safe_multisend="0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761",
        proxy_factory="0xaB45c5A4B0c941a2F231C04C3f49182e1A254052",
        relay_hub="0xD216153c06E857cD7f72665E0aF1d7D82172F494",
    ),
    80002: ContractConfig(
        chain_id=80002,
        exchange="0xdFE02Eb6733538f8Ea35D585af8DE5958AD99E40",
        neg_risk_exchange="0xC5d563A36AE78145C45a50134d48A1215220f80a",
        neg_risk_adapter="0xd91E80cF2E7be2e162c6513ceD06f1dD0dA35296",
        collateral="0x9c4e1703476e875070ee25b56a58b008cfb8fa78",
        conditional_tokens="0x69308FB512518e39F9b16112fA8d994F4e2Bf8bB",
        safe_factory="0xaacFeEa03eb1561C4e67d661e40682Bd20E3541b",
        safe_multisend="0xA238CBeb142c10Ef7Ad8442C6D1f9E89e07e7761",
    ),
}


def get_contract_config(chain_id: int) -> ContractConfig:
    """
    Get contract addresses for a chain.

    Raises:
        ConfigurationError: If the chain is not supported
    """
    try:
        return CONTRACTS[chain_id]
    except KeyError:
        raise ConfigurationError(
            f"Unsupported chain id {chain_id}",
            {"supported": sorted(CONTRACTS)}
        ) from None
