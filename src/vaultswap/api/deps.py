"""FastAPI dependencies resolving the services held on ``app.state``."""

from fastapi import Request

from vaultswap.auth.login_state import LoginStateStore
from vaultswap.services.swap_orchestrator import SwapOrchestrator
from vaultswap.services.wallet_service import WalletService


def get_wallet_service(request: Request) -> WalletService:
    return request.app.state.wallet_service


def get_orchestrator(request: Request) -> SwapOrchestrator:
    return request.app.state.orchestrator


def get_login_states(request: Request) -> LoginStateStore:
    return request.app.state.login_states
