"""Factory for the configured swap backend."""

import logging
from typing import Optional

from vaultswap.chains.factory import get_chain_adapter
from vaultswap.config import ChainFamily, Settings, SwapBackendKind, get_settings
from vaultswap.routing.base import SwapBackend

logger = logging.getLogger(__name__)

_backend: Optional[SwapBackend] = None


async def create_swap_backend(settings: Optional[Settings] = None) -> SwapBackend:
    """Build the backend selected by ``SWAP_BACKEND``.

    The AMM variant builds its pool registry here, reading pool accounts
    from chain unless hydration is disabled.
    """
    settings = settings or get_settings()
    common = {
        "quote_ttl_seconds": settings.quote_ttl_seconds,
        "default_slippage": settings.default_slippage,
    }

    if settings.swap_backend == SwapBackendKind.AGGREGATOR:
        from vaultswap.routing.aggregator import MagpieAggregatorBackend

        backend = MagpieAggregatorBackend(
            adapter=get_chain_adapter(ChainFamily.EVM),
            base_url=settings.magpiefi_api_url,
            network_name=settings.magpie_network_name,
            timeout=settings.rpc_timeout_seconds,
            **common,
        )
    else:
        from vaultswap.routing.amm import OnChainAMMBackend
        from vaultswap.routing.pools import build_pool_registry

        adapter = get_chain_adapter(ChainFamily.SOLANA)
        registry = await build_pool_registry(
            adapter, settings.pool_definitions, hydrate=settings.amm_hydrate_pools
        )
        backend = OnChainAMMBackend(
            adapter=adapter,
            registry=registry,
            fee_bps=settings.amm_fee_bps,
            live_reserves=settings.amm_live_reserves,
            **common,
        )

    logger.info(f"Swap backend: {backend.name} ({backend.family.value})")
    return backend


async def init_swap_backend() -> SwapBackend:
    """Create the process-wide backend (called on startup)."""
    global _backend
    if _backend is None:
        _backend = await create_swap_backend()
    return _backend


def get_swap_backend() -> SwapBackend:
    if _backend is None:
        raise RuntimeError("Swap backend not initialized")
    return _backend


async def close_swap_backend() -> None:
    global _backend
    if _backend is not None:
        await _backend.aclose()
        _backend = None
