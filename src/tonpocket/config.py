"""Application configuration using pydantic-settings.

Endpoints, timeouts, retry budget and cache lifetimes for the TON wallet core.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="TONPOCKET_",
        extra="ignore",
    )

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=False, description="Enable debug logging")
    network: str = Field(default="mainnet", description="TON network: mainnet or testnet")

    # ======================
    # Ledger API (toncenter JSON-RPC)
    # ======================
    toncenter_api_url: str = Field(
        default="https://toncenter.com/api/v2/jsonRPC", description="toncenter JSON-RPC endpoint"
    )
    toncenter_api_key: str = Field(default="", description="toncenter API key")

    # ======================
    # Indexer API (tonapi)
    # ======================
    tonapi_url: str = Field(default="https://tonapi.io", description="tonapi base URL")
    tonapi_key: str = Field(default="", description="tonapi bearer token")

    # ======================
    # Off-chain metadata
    # ======================
    ipfs_gateways: str = Field(
        default="https://ipfs.io/ipfs/,https://cloudflare-ipfs.com/ipfs/,https://gateway.pinata.cloud/ipfs/",
        description="Comma-separated IPFS gateway prefixes, tried in order",
    )

    # ======================
    # Timeouts (seconds)
    # ======================
    http_timeout: float = Field(default=15.0, description="Default HTTP timeout")
    events_timeout: float = Field(default=5.0, description="Time box for the events lookup")
    manifest_timeout: float = Field(default=10.0, description="Time box for dApp manifest fetch")
    events_window: int = Field(default=50, description="Number of events fetched for annotations")

    # ======================
    # Retry / rate limits
    # ======================
    fetch_max_attempts: int = Field(default=3, description="Total attempts for rate-limited calls")
    fetch_base_delay: float = Field(default=2.0, description="First backoff delay in seconds")
    send_window_seconds: float = Field(default=60.0, description="Sliding window for transfers")
    send_max_requests: int = Field(default=10, description="Transfers allowed per window")

    # ======================
    # Cache lifetimes (seconds)
    # ======================
    balance_ttl: float = Field(default=60.0, description="Balance cache TTL")
    transactions_ttl: float = Field(default=120.0, description="Transaction history cache TTL")
    jettons_ttl: float = Field(default=60.0, description="Jetton holdings cache TTL")

    # ======================
    # NFT discovery
    # ======================
    nft_opcode_scan_cap: int = Field(
        default=20, description="Max candidates added by payload opcode matching"
    )

    # ======================
    # Local state
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/tonpocket.db",
        description="Database URL for persisted key/value state",
    )

    # ======================
    # Telegram host
    # ======================
    telegram_bot_token: str = Field(default="", description="Telegram bot token from BotFather")
    telegram_chat_id: Optional[int] = Field(
        default=None, description="Chat that receives link-open buttons"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def is_testnet(self) -> bool:
        """Check if the wallet targets testnet."""
        return self.network.lower() == "testnet"

    @property
    def gateway_list(self) -> list[str]:
        """Parse IPFS gateway prefixes into a list."""
        gateways = []
        for gateway in self.ipfs_gateways.split(","):
            gateway = gateway.strip()
            if not gateway:
                continue
            if not gateway.endswith("/"):
                gateway += "/"
            gateways.append(gateway)
        return gateways

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "network": self.network,
            "toncenter": {
                "url": self.toncenter_api_url,
                "api_key": "***" if self.toncenter_api_key else "(not set)",
            },
            "tonapi": {
                "url": self.tonapi_url,
                "api_key": "***" if self.tonapi_key else "(not set)",
            },
            "ipfs_gateways": self.gateway_list,
            "retry": {
                "max_attempts": self.fetch_max_attempts,
                "base_delay": self.fetch_base_delay,
            },
            "cache": {
                "balance_ttl": self.balance_ttl,
                "transactions_ttl": self.transactions_ttl,
                "jettons_ttl": self.jettons_ttl,
            },
            "database_url": self._redact_url(self.database_url),
            "telegram_bot_token": "***" if self.telegram_bot_token else "(not set)",
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact sensitive parts of database URL."""
        if "://" in url and "@" in url:
            proto, rest = url.split("://", 1)
            if "@" in rest:
                creds, host = rest.rsplit("@", 1)
                if ":" in creds:
                    user, _ = creds.split(":", 1)
                    return f"{proto}://{user}:***@{host}"
        return url


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
