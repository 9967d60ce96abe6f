"""FastAPI application factory."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from vaultswap import __version__
from vaultswap.auth.login_state import LoginStateStore
from vaultswap.chains.factory import close_chain_adapters
from vaultswap.config import get_settings
from vaultswap.crypto import get_secret_box
from vaultswap.errors import ErrorKind, VaultswapError
from vaultswap.routing.factory import close_swap_backend, init_swap_backend
from vaultswap.services.swap_orchestrator import SwapOrchestrator
from vaultswap.services.wallet_service import WalletService
from vaultswap.storage.database import close_db, init_db
from vaultswap.wallets.keys import KeyMaterialService

logger = logging.getLogger(__name__)

ERROR_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.INSUFFICIENT_FUNDS: 422,
    ErrorKind.QUOTE_EXPIRED: 410,
    ErrorKind.UNAVAILABLE: 503,
    ErrorKind.CONFIRMATION_UNKNOWN: 202,
    ErrorKind.BROADCAST_FAILED: 502,
    ErrorKind.SLIPPAGE_EXCEEDED: 409,
    ErrorKind.FATAL: 500,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    settings = get_settings()

    # Startup
    await init_db()
    keys = KeyMaterialService(get_secret_box())
    if not keys.secret_box.enabled:
        logger.warning("MASTER_KEY not set: wallet keys are stored unencrypted")

    backend = await init_swap_backend()
    app.state.orchestrator = SwapOrchestrator(backend, keys)
    app.state.wallet_service = WalletService(keys)
    app.state.login_states = LoginStateStore(settings.login_state_ttl_seconds)
    yield

    # Shutdown
    await close_swap_backend()
    await close_chain_adapters()
    await close_db()


async def handle_vaultswap_error(request: Request, exc: VaultswapError) -> JSONResponse:
    status_code = ERROR_STATUS.get(exc.kind, 500)
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.kind}: {exc.message}")
    return JSONResponse(status_code=status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Vaultswap API",
        description="Custodial wallet and swap orchestration API",
        version=__version__,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origin_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(VaultswapError, handle_vaultswap_error)

    # Register routes
    from vaultswap.api.routes import health, swaps, wallet

    app.include_router(health.router, tags=["Health"])
    app.include_router(wallet.router)
    app.include_router(swaps.router)

    return app


app = create_app()
