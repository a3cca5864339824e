from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict
from yarl import URL

from block_gateway.errors import ConfigurationError


class Settings(BaseSettings):
    """Settings configuration class for the block gateway service."""

    app_name: str = "block-gateway"
    version: str = "1.0.0"

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001

    # Chain RPC Configuration
    rpc_url: str = "http://localhost:8545"
    ws_url: Optional[str] = None
    chain_id: Optional[int] = None
    rpc_timeout: float = 10.0
    contract_address: Optional[str] = None
    private_key: Optional[str] = None

    @property
    def rpc_endpoint(self) -> URL:
        """
        Validated HTTP(S) endpoint of the chain RPC provider.

        :return: RPC URL.
        """
        url = URL(self.rpc_url)
        if url.scheme not in ("http", "https") or not url.host:
            raise ConfigurationError(f"Malformed RPC URL: {self.rpc_url}")
        return url

    @property
    def ws_endpoint(self) -> URL:
        """
        Assemble the push-subscription URL, derived from the RPC URL when unset.

        :return: websocket URL.
        """
        if self.ws_url:
            return URL(self.ws_url)
        rpc = self.rpc_endpoint
        return rpc.with_scheme("wss" if rpc.scheme == "https" else "ws")

    @property
    def subscription_supported(self) -> bool:
        """Monad testnet endpoints do not serve eth_subscribe reliably."""
        return self.enable_subscription and "monad.xyz" not in self.rpc_url

    # Head tracking
    poll_interval: float = 2.0
    error_poll_interval: float = 5.0
    max_consecutive_errors: int = 3
    enable_subscription: bool = True
    subscription_timeout: float = 10.0
    heartbeat_interval: float = 30.0

    # Retry governor
    min_request_interval: float = 1.0
    max_retries: int = 3
    retry_delay: float = 2.0

    # Result cache TTLs (seconds)
    latest_block_ttl: float = 2.0
    greeting_ttl: float = 5.0

    # Transactions
    transaction_timeout: float = 30.0
    gas_price: int = 1_000_000_000  # 1 gwei
    gas_limit: int = 100_000

    # Indexer API
    blockvision_api_key: Optional[str] = None
    blockvision_base_url: str = "https://api.blockvision.org/v2/monad"

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None
    log_rpc_timing: bool = False

    # Prometheus metrics on /metrics
    enable_metrics: bool = True

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="GATEWAY_",
        env_file_encoding="utf-8",
    )

    def validate_startup(self) -> None:
        """
        Check the settings the service cannot run without.

        Raises:
            ConfigurationError: If the contract address is missing or the RPC
                                URL is malformed.
        """
        _ = self.rpc_endpoint
        if not self.contract_address:
            raise ConfigurationError(
                "GATEWAY_CONTRACT_ADDRESS environment variable is not set",
            )


settings = Settings()
