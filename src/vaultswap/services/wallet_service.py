"""Custodial wallet operations: provisioning, balance, transfer, status."""

import logging
from typing import Callable, Optional

from vaultswap.chains.base import ChainAdapter, TransferOutcome
from vaultswap.chains.factory import get_chain_adapter
from vaultswap.config import ChainFamily, get_settings
from vaultswap.errors import InvalidRecipient, ProfileNotFound
from vaultswap.services.swap_orchestrator import DbContext, load_user_wallet
from vaultswap.storage.database import get_db
from vaultswap.storage.repository import ProfileRepository, WalletRepository
from vaultswap.units import parse_units
from vaultswap.wallets.keys import KeyMaterialService

logger = logging.getLogger(__name__)


class WalletService:
    """Wallet operations for users identified by their external user ID.

    Args:
        keys: Key generation/decoding service
        db: Async context manager factory yielding a session
        adapter_for: Chain family -> adapter lookup
        wallet_chain: Chain family used for newly provisioned wallets
    """

    def __init__(
        self,
        keys: Optional[KeyMaterialService] = None,
        db: DbContext = get_db,
        adapter_for: Callable[[ChainFamily], ChainAdapter] = get_chain_adapter,
        wallet_chain: Optional[ChainFamily] = None,
    ):
        self.keys = keys or KeyMaterialService()
        self._db = db
        self._adapter_for = adapter_for
        self.wallet_chain = wallet_chain or get_settings().wallet_chain

    async def get_profile(self, user_id: str) -> dict:
        async with self._db() as session:
            profile = await ProfileRepository(session).get(user_id)
            if profile is None:
                raise ProfileNotFound(user_id=user_id)
            return profile.to_dict()

    async def provision(self, user_id: str, username: str = "", display_name: str = "") -> dict:
        """Create (or refresh) the profile for a logged-in user.

        A new wallet is committed before the profile that references it. If
        the profile write fails, the new wallet is deleted again.
        """
        async with self._db() as session:
            profiles = ProfileRepository(session)
            existing = await profiles.get(user_id)
            if existing is not None and existing.wallet_address:
                await profiles.upsert(user_id, username, display_name)
                return (await profiles.get(user_id)).to_dict()

        address, material = self.keys.generate(self.wallet_chain)
        async with self._db() as session:
            await WalletRepository(session).create(address, material, self.wallet_chain)

        try:
            async with self._db() as session:
                profiles = ProfileRepository(session)
                current = await profiles.get(user_id)
                if current is not None and current.wallet_address:
                    # A concurrent login already attached a wallet
                    await profiles.upsert(user_id, username, display_name)
                    winner = None
                else:
                    await profiles.upsert(user_id, username, display_name, wallet_address=address)
                    winner = address
                profile = (await profiles.get(user_id)).to_dict()
        except Exception:
            logger.error(f"Profile write failed for {user_id}, removing wallet {address}")
            await self._delete_wallet(address)
            raise

        if winner is None:
            await self._delete_wallet(address)
        else:
            logger.info(f"Provisioned {self.wallet_chain.value} wallet {address} for {user_id}")
        return profile

    async def _delete_wallet(self, address: str) -> None:
        async with self._db() as session:
            await WalletRepository(session).delete(address)

    async def get_balance(self, user_id: str) -> dict:
        """Native balance of the user's wallet as a decimal string.

        Users without a profile get a zero balance.
        """
        async with self._db() as session:
            profile = await ProfileRepository(session).get(user_id)
        if profile is None:
            return {"balance": "0", "address": None, "chain": self.wallet_chain.value}

        wallet = await load_user_wallet(self._db, user_id)
        adapter = self._adapter_for(wallet.family)
        balance = await adapter.get_balance(wallet.address)
        return {
            "balance": adapter.format_amount(balance),
            "address": wallet.address,
            "chain": wallet.family.value,
        }

    async def transfer(self, user_id: str, recipient: str, amount: str) -> dict:
        """Send native currency from the user's wallet.

        ``amount`` is a human decimal string ("0.5"). The returned ``status``
        is ``confirmation_unknown`` when the broadcast went out but no
        confirmation was seen in time; the funds may still move.
        """
        wallet = await load_user_wallet(self._db, user_id)
        adapter = self._adapter_for(wallet.family)
        value = parse_units(amount, adapter.decimals)

        if not adapter.validate_address(recipient):
            raise InvalidRecipient(f"Invalid {wallet.family.value} recipient: {recipient}")

        with self.keys.decode(
            wallet.family, wallet.private_key_material, expected_address=wallet.address
        ) as signing_key:
            receipt = await adapter.transfer(signing_key, recipient, value)

        if receipt.outcome == TransferOutcome.FAILED:
            logger.warning(f"Transfer {receipt.reference} from {wallet.address} reverted")
        else:
            logger.info(f"Transfer {receipt.reference} from {wallet.address}: {receipt.outcome.value}")

        return {
            "trx": receipt.explorer_url or receipt.reference,
            "status": receipt.outcome.value,
            "tx_reference": receipt.reference,
            "amount": amount,
        }

    async def transaction_status(self, reference: str, user_id: Optional[str] = None) -> dict:
        family = self.wallet_chain
        if user_id is not None:
            family = (await load_user_wallet(self._db, user_id)).family

        status = await self._adapter_for(family).transaction_status(reference)
        return {"tx_reference": reference, "status": status.value, "chain": family.value}

    async def transaction_details(self, reference: str, family: Optional[ChainFamily] = None) -> dict:
        family = family or self.wallet_chain
        details = await self._adapter_for(family).transaction_details(reference)
        return {
            "tx_reference": details.reference,
            "status": details.status.value,
            "block_height": details.block_height,
            "block_time": details.block_time,
            "fee": None if details.fee is None else str(details.fee),
            "sender": details.sender,
            "recipient": details.recipient,
            "value": None if details.value is None else str(details.value),
        }
