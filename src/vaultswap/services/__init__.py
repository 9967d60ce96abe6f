"""Application services."""

from vaultswap.services.swap_orchestrator import SwapOrchestrator
from vaultswap.services.wallet_service import WalletService

__all__ = ["SwapOrchestrator", "WalletService"]
