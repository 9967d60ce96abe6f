"""Repositories implementing the profile and wallet store contracts.

ProfileRepository: get(user_id) -> Profile?, upsert(profile) -> id
WalletRepository:  get(address) -> Wallet?, create(wallet) -> id, delete(address)

Keys are case-sensitive opaque strings. Repositories only flush; the
surrounding ``get_db()`` context commits or rolls back.
"""

from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from vaultswap.config import ChainFamily
from vaultswap.storage.models import Profile, Wallet


class ProfileRepository:
    """Profile store backed by SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: str) -> Optional[Profile]:
        """Get profile by external user ID."""
        stmt = select(Profile).where(Profile.user_id == user_id)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert(
        self,
        user_id: str,
        username: str = "",
        display_name: str = "",
        wallet_address: Optional[str] = None,
    ) -> int:
        """Insert or update a profile keyed by ``user_id``.

        A ``wallet_address`` of None keeps the existing address.

        Returns:
            Surrogate ID of the profile
        """
        profile = await self.get(user_id)

        if profile is None:
            profile = Profile(
                user_id=user_id,
                username=username,
                display_name=display_name,
                wallet_address=wallet_address,
            )
            self.session.add(profile)
        else:
            profile.username = username
            profile.display_name = display_name
            if wallet_address is not None:
                profile.wallet_address = wallet_address

        await self.session.flush()
        return profile.id

    async def list_all(self) -> list[Profile]:
        stmt = select(Profile).order_by(Profile.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class WalletRepository:
    """Wallet store backed by SQLAlchemy."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, address: str) -> Optional[Wallet]:
        """Get wallet by address."""
        stmt = select(Wallet).where(Wallet.address == address)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def create(
        self,
        address: str,
        private_key_material: str,
        chain_family: ChainFamily = ChainFamily.EVM,
    ) -> int:
        """Persist a new wallet. Raises IntegrityError on duplicate address."""
        wallet = Wallet(
            address=address,
            private_key_material=private_key_material,
            chain_family=chain_family.value,
        )
        self.session.add(wallet)
        await self.session.flush()
        return wallet.id

    async def delete(self, address: str) -> None:
        await self.session.execute(delete(Wallet).where(Wallet.address == address))
        await self.session.flush()
