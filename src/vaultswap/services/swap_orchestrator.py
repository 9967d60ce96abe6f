"""Swap orchestration: user -> wallet -> signing key -> backend.

The decoded key lives only inside ``execute_swap`` and is zeroed as soon
as the backend call returns or raises.
"""

import logging
from dataclasses import dataclass
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from vaultswap.config import ChainFamily
from vaultswap.errors import ProfileNotFound, UnsupportedChain, WalletNotFound
from vaultswap.routing.base import (
    Distribution,
    Quote,
    QuoteRequest,
    SwapBackend,
    SwapDetails,
    SwapResult,
    SwapStatusSummary,
)
from vaultswap.storage.database import get_db
from vaultswap.storage.repository import ProfileRepository, WalletRepository
from vaultswap.wallets.keys import KeyMaterialService

logger = logging.getLogger(__name__)

DbContext = Callable[[], AsyncContextManager[AsyncSession]]


@dataclass
class CustodialWallet:
    """Wallet row detached from its session."""

    user_id: str
    address: str
    family: ChainFamily
    private_key_material: str

    def __repr__(self) -> str:
        return f"CustodialWallet(user_id={self.user_id}, address={self.address})"


async def load_user_wallet(db: DbContext, user_id: str) -> CustodialWallet:
    """Resolve a user's custodial wallet.

    Raises:
        ProfileNotFound: no profile for ``user_id``
        WalletNotFound: profile has no wallet, or the wallet row is missing
    """
    async with db() as session:
        profile = await ProfileRepository(session).get(user_id)
        if profile is None:
            raise ProfileNotFound(user_id=user_id)
        if not profile.wallet_address:
            raise WalletNotFound(user_id=user_id)

        wallet = await WalletRepository(session).get(profile.wallet_address)
        if wallet is None:
            logger.error(f"Profile {user_id} points at missing wallet {profile.wallet_address}")
            raise WalletNotFound(user_id=user_id)

        return CustodialWallet(
            user_id=user_id,
            address=wallet.address,
            family=wallet.family,
            private_key_material=wallet.private_key_material,
        )


class SwapOrchestrator:
    """Runs the swap lifecycle for custodial users against one backend."""

    def __init__(
        self,
        backend: SwapBackend,
        keys: Optional[KeyMaterialService] = None,
        db: DbContext = get_db,
    ):
        self.backend = backend
        self.keys = keys or KeyMaterialService()
        self._db = db

    async def get_quote(self, request: QuoteRequest) -> Quote:
        return await self.backend.get_quote(request)

    async def execute_swap(self, user_id: str, quote_id: str) -> SwapResult:
        """Execute ``quote_id`` with ``user_id``'s custodial key.

        Raises:
            ProfileNotFound, WalletNotFound, UnsupportedChain,
            InvalidKeyEncoding, plus any backend execution error
        """
        wallet = await load_user_wallet(self._db, user_id)

        if wallet.family != self.backend.family:
            raise UnsupportedChain(
                f"{self.backend.name} swaps need a {self.backend.family.value} wallet"
            )

        with self.keys.decode(
            wallet.family, wallet.private_key_material, expected_address=wallet.address
        ) as signing_key:
            result = await self.backend.execute_swap(quote_id, signing_key)

        logger.info(f"User {user_id} swap {result.swap_id}: {result.status.value}")
        return result

    async def get_swap_status(self, wallet_address: str) -> SwapStatusSummary:
        return await self.backend.get_swap_status(wallet_address)

    async def get_user_swap_status(self, user_id: str) -> SwapStatusSummary:
        wallet = await load_user_wallet(self._db, user_id)
        return await self.backend.get_swap_status(wallet.address)

    async def get_swap_status_for(self, reference: str) -> SwapStatusSummary:
        return await self.backend.get_swap_status_for(reference)

    async def get_swap_details(self, swap_id: str) -> SwapDetails:
        return await self.backend.get_swap_details(swap_id)

    async def get_distributions(self, quote_id: str) -> list[Distribution]:
        return await self.backend.get_distributions(quote_id)
