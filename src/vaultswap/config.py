"""Application configuration using pydantic-settings.

Chain endpoints, swap backend selection and timeout policy all come from the
environment (or a ``.env`` file); nothing chain-specific is hardcoded.
"""

import json
from enum import Enum
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class ChainFamily(str, Enum):
    """Transaction/addressing model of a blockchain."""

    EVM = "evm"          # account + nonce
    SOLANA = "solana"    # instruction + program


class SwapBackendKind(str, Enum):
    """Which liquidity backend executes swaps."""

    AGGREGATOR = "aggregator"
    AMM = "amm"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ======================
    # Database
    # ======================
    database_url: str = Field(
        default="sqlite+aiosqlite:///./data/vaultswap.db",
        description="Database connection URL",
    )

    # ======================
    # API
    # ======================
    api_host: str = Field(default="0.0.0.0", description="API server host")
    api_port: int = Field(default=8000, description="API server port")
    cors_origins: str = Field(default="*", description="Comma-separated CORS origins")

    # ======================
    # Environment
    # ======================
    environment: str = Field(default="development", description="Runtime environment")
    debug: bool = Field(default=True, description="Enable debug mode")

    # ======================
    # Custodial wallets
    # ======================
    wallet_chain: ChainFamily = Field(
        default=ChainFamily.EVM, description="Chain family used for newly issued wallets"
    )
    master_key: Optional[str] = Field(
        default=None, description="Fernet key used to seal key material at rest"
    )

    # ======================
    # Chain RPC Endpoints
    # ======================
    evm_rpc_url: str = Field(default="https://eth.llamarpc.com", description="EVM JSON-RPC URL")
    chain_id: int = Field(default=1, description="EVM chain ID")
    chain_explorer_url: str = Field(
        default="https://etherscan.io", description="EVM block explorer base URL"
    )
    sol_rpc_url: str = Field(
        default="https://api.mainnet-beta.solana.com", description="Solana RPC URL"
    )
    sol_explorer_url: str = Field(
        default="https://solscan.io", description="Solana block explorer base URL"
    )

    # ======================
    # Timeouts
    # ======================
    rpc_timeout_seconds: float = Field(default=30.0, description="Timeout for read RPC calls")
    broadcast_timeout_seconds: float = Field(
        default=30.0, description="Upper bound on a single broadcast call"
    )
    confirmation_timeout_seconds: float = Field(
        default=120.0, description="Upper bound on confirmation polling"
    )
    confirmation_poll_interval_seconds: float = Field(
        default=2.0, description="Delay between confirmation polls"
    )

    # ======================
    # Swap backend
    # ======================
    swap_backend: SwapBackendKind = Field(
        default=SwapBackendKind.AMM, description="Swap liquidity backend"
    )
    magpiefi_api_url: str = Field(
        default="https://api.magpiefi.xyz", description="Swap aggregator base URL"
    )
    magpie_network_name: str = Field(
        default="ethereum", description="Network name sent to the aggregator"
    )
    default_slippage: float = Field(
        default=0.005, description="Default slippage tolerance (0.5%)"
    )
    quote_ttl_seconds: int = Field(default=600, description="On-chain quote validity window")

    # ======================
    # On-chain AMM
    # ======================
    amm_fee_bps: int = Field(default=200, description="Proportional pool fee in basis points")
    amm_live_reserves: bool = Field(
        default=False, description="Price quotes from live reserve balances"
    )
    amm_hydrate_pools: bool = Field(
        default=True, description="Fetch pool accounts from chain at startup"
    )
    amm_pools: str = Field(
        default="", description="JSON list of pool definitions overriding the built-in registry"
    )

    # ======================
    # Login
    # ======================
    login_state_ttl_seconds: int = Field(
        default=600, description="Lifetime of a pending login attempt"
    )

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def cors_origin_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def pool_definitions(self) -> list[dict]:
        """Parse ``amm_pools`` into a list of pool dicts."""
        if not self.amm_pools:
            return []
        data = json.loads(self.amm_pools)
        if not isinstance(data, list):
            raise ValueError("AMM_POOLS must be a JSON list")
        return data

    def get_rpc_url(self, family: ChainFamily) -> str:
        """Get RPC URL for a chain family."""
        return self.evm_rpc_url if family == ChainFamily.EVM else self.sol_rpc_url

    def get_explorer_url(self, family: ChainFamily) -> str:
        return self.chain_explorer_url if family == ChainFamily.EVM else self.sol_explorer_url

    def get_safe_dict(self) -> dict:
        """Return settings dict with secrets redacted."""
        return {
            "environment": self.environment,
            "debug": self.debug,
            "api_host": self.api_host,
            "api_port": self.api_port,
            "database_url": self._redact_url(self.database_url),
            "wallet_chain": self.wallet_chain.value,
            "master_key": "***" if self.master_key else "(not set)",
            "chains": {
                "evm": {"rpc": self._redact_url(self.evm_rpc_url), "chain_id": self.chain_id},
                "solana": {"rpc": self._redact_url(self.sol_rpc_url)},
            },
            "swap": {
                "backend": self.swap_backend.value,
                "aggregator": self.magpiefi_api_url,
                "slippage": self.default_slippage,
                "amm_fee_bps": self.amm_fee_bps,
                "quote_ttl_seconds": self.quote_ttl_seconds,
            },
            "timeouts": {
                "broadcast": self.broadcast_timeout_seconds,
                "confirmation": self.confirmation_timeout_seconds,
            },
        }

    @staticmethod
    def _redact_url(url: str) -> str:
        """Redact credentials embedded in a URL."""
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
