"""Profile, login, balance and transfer endpoints."""

from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse

from vaultswap.api.contracts import TransferForm
from vaultswap.api.deps import get_login_states, get_wallet_service
from vaultswap.auth.login_state import LoginStateStore
from vaultswap.chains.base import TransferOutcome
from vaultswap.config import ChainFamily
from vaultswap.services.wallet_service import WalletService

router = APIRouter(tags=["Wallets"])


@router.get("/profile/{user_id}")
async def get_profile(user_id: str, wallets: WalletService = Depends(get_wallet_service)) -> dict:
    return await wallets.get_profile(user_id)


@router.get("/login/{user_id}")
async def login(user_id: str, states: LoginStateStore = Depends(get_login_states)) -> dict:
    """Start a login attempt; the client forwards state and challenge to the provider."""
    attempt = states.begin(user_id)
    return attempt.public_dict()


@router.get("/callback")
async def callback(
    state: str = Query(...),
    username: str = Query(default=""),
    display_name: str = Query(default=""),
    states: LoginStateStore = Depends(get_login_states),
    wallets: WalletService = Depends(get_wallet_service),
) -> dict:
    """Finish a login attempt and provision the user's profile and wallet."""
    attempt = states.complete(state)
    return await wallets.provision(attempt.user_id, username, display_name)


@router.get("/balance/{user_id}")
async def get_balance(user_id: str, wallets: WalletService = Depends(get_wallet_service)) -> dict:
    return await wallets.get_balance(user_id)


@router.post("/transfer")
async def execute_transfer(
    form: TransferForm, wallets: WalletService = Depends(get_wallet_service)
) -> JSONResponse:
    """Send native currency. Returns 202 when the outcome is not yet known."""
    result = await wallets.transfer(form.user_id, form.recipient, form.amount)
    status_code = 202 if result["status"] == TransferOutcome.CONFIRMATION_UNKNOWN.value else 200
    return JSONResponse(status_code=status_code, content=result)


@router.get("/transactions/{reference}/status")
async def transaction_status(
    reference: str,
    user_id: Optional[str] = Query(default=None),
    wallets: WalletService = Depends(get_wallet_service),
) -> dict:
    return await wallets.transaction_status(reference, user_id=user_id)


@router.get("/transactions/{reference}")
async def transaction_details(
    reference: str,
    chain: Optional[ChainFamily] = Query(default=None),
    wallets: WalletService = Depends(get_wallet_service),
) -> dict:
    return await wallets.transaction_details(reference, family=chain)
