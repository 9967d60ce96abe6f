"""Swap liquidity backends: off-chain aggregator and on-chain AMM."""

from vaultswap.routing.base import (
    Distribution,
    Quote,
    QuoteBook,
    QuoteRequest,
    RouteLeg,
    SwapBackend,
    SwapDetails,
    SwapResult,
    SwapState,
    SwapStatusSummary,
)

__all__ = [
    "Distribution",
    "Quote",
    "QuoteBook",
    "QuoteRequest",
    "RouteLeg",
    "SwapBackend",
    "SwapDetails",
    "SwapResult",
    "SwapState",
    "SwapStatusSummary",
]
