"""Chain adapters for EVM and Solana."""

from vaultswap.chains.base import (
    ChainAdapter,
    TokenDelta,
    TransferOutcome,
    TransferReceipt,
    TxDetails,
    TxStatus,
)
from vaultswap.chains.factory import close_chain_adapters, create_chain_adapter, get_chain_adapter

__all__ = [
    "ChainAdapter",
    "TokenDelta",
    "TransferOutcome",
    "TransferReceipt",
    "TxDetails",
    "TxStatus",
    "create_chain_adapter",
    "get_chain_adapter",
    "close_chain_adapters",
]
