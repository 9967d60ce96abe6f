"""Factory for chain adapters.

Adapters hold long-lived RPC clients, so one instance per chain family is
cached for the life of the process and closed on shutdown.
"""

import logging
from typing import Optional

from vaultswap.chains.base import ChainAdapter
from vaultswap.config import ChainFamily, Settings, get_settings

logger = logging.getLogger(__name__)

# Cache for adapter instances
_adapter_cache: dict[ChainFamily, ChainAdapter] = {}


def create_chain_adapter(
    family: ChainFamily, settings: Optional[Settings] = None
) -> ChainAdapter:
    """Build a new adapter for ``family`` from settings."""
    settings = settings or get_settings()
    timeouts = {
        "rpc_timeout": settings.rpc_timeout_seconds,
        "broadcast_timeout": settings.broadcast_timeout_seconds,
        "confirmation_timeout": settings.confirmation_timeout_seconds,
        "poll_interval": settings.confirmation_poll_interval_seconds,
    }

    if family == ChainFamily.EVM:
        from vaultswap.chains.evm import EVMChainAdapter

        return EVMChainAdapter(
            rpc_url=settings.evm_rpc_url,
            chain_id=settings.chain_id,
            explorer_url=settings.chain_explorer_url,
            **timeouts,
        )

    if family == ChainFamily.SOLANA:
        from vaultswap.chains.solana import SolanaChainAdapter

        return SolanaChainAdapter(
            rpc_url=settings.sol_rpc_url,
            explorer_url=settings.sol_explorer_url,
            **timeouts,
        )

    raise ValueError(f"Unsupported chain family: {family}")


def get_chain_adapter(family: ChainFamily) -> ChainAdapter:
    """Get the shared adapter for a chain family."""
    if family not in _adapter_cache:
        _adapter_cache[family] = create_chain_adapter(family)
        logger.info(f"Created {family.value} chain adapter")
    return _adapter_cache[family]


async def close_chain_adapters() -> None:
    """Close all cached adapters (called on shutdown)."""
    for adapter in list(_adapter_cache.values()):
        await adapter.aclose()
    _adapter_cache.clear()
