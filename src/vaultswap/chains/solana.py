"""Solana (account/program model) chain adapter.

Uses solana-py's AsyncClient for RPC and solders for keys, messages and
instructions. Transfers return as soon as the cluster accepts the
transaction; confirmation is observed later through ``transaction_status``.
"""

import asyncio
import logging
from typing import Optional

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from solders.transaction_status import TransactionConfirmationStatus

from vaultswap.chains.base import (
    ChainAdapter,
    TokenDelta,
    TransferOutcome,
    TransferReceipt,
    TxDetails,
    TxStatus,
)
from vaultswap.config import ChainFamily
from vaultswap.errors import (
    BroadcastFailed,
    ChainUnavailable,
    InsufficientFunds,
    InvalidAddress,
    InvalidInputError,
    InvalidRecipient,
)
from vaultswap.wallets.keys import SigningKeyHandle

logger = logging.getLogger(__name__)

# Flat signature fee for a single-signer transaction
SIGNATURE_FEE_LAMPORTS = 5000

_INSUFFICIENT_MARKERS = (
    "insufficient lamports",
    "insufficient funds",
    "found no record of a prior credit",
)


class TransactionRejected(BroadcastFailed):
    """The cluster rejected a transaction (preflight or program error).

    ``detail`` holds the raw RPC message for callers that map specific
    program errors; it is never part of the public message.
    """

    def __init__(self, detail: str = "", message: Optional[str] = None):
        super().__init__(message)
        self.detail = detail


def parse_pubkey(address: str) -> Optional[Pubkey]:
    """Parse a base58 public key, returning None when malformed."""
    if not address:
        return None
    try:
        return Pubkey.from_string(address)
    except Exception:
        return None


class SolanaChainAdapter(ChainAdapter):
    """Solana adapter.

    ``transfer`` returns SUBMITTED after broadcast acceptance; recent-blockhash
    expiry gives replay protection.
    """

    family = ChainFamily.SOLANA

    def __init__(
        self,
        rpc_url: str,
        explorer_url: str = "",
        client: Optional[AsyncClient] = None,
        **timeouts: float,
    ):
        super().__init__(rpc_url, explorer_url, **timeouts)
        self.client = client or AsyncClient(
            rpc_url, commitment=Confirmed, timeout=self.rpc_timeout
        )

    async def aclose(self) -> None:
        await self.client.close()

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_address(self, address: str) -> bool:
        return parse_pubkey(address) is not None

    async def get_balance(self, address: str) -> int:
        pubkey = parse_pubkey(address)
        if pubkey is None:
            raise InvalidAddress(f"Invalid Solana address: {address}")

        try:
            resp = await self.client.get_balance(pubkey)
        except (SolanaRpcException, RPCException) as e:
            logger.error(f"getBalance failed for {address}: {e}")
            raise ChainUnavailable()

        return resp.value

    async def get_account(self, pubkey: Pubkey) -> Optional[tuple[bytes, Pubkey]]:
        """Raw data and owner program of an account, or None if it does not exist."""
        try:
            resp = await self.client.get_account_info(pubkey)
        except (SolanaRpcException, RPCException) as e:
            logger.error(f"getAccountInfo failed for {pubkey}: {e}")
            raise ChainUnavailable()

        if resp.value is None:
            return None
        return bytes(resp.value.data), resp.value.owner

    async def get_token_balance(self, token_account: Pubkey) -> int:
        """Balance of an SPL token account in base units."""
        try:
            resp = await self.client.get_token_account_balance(token_account)
        except (SolanaRpcException, RPCException) as e:
            logger.error(f"getTokenAccountBalance failed for {token_account}: {e}")
            raise ChainUnavailable()

        return int(resp.value.amount)

    async def get_latest_blockhash(self) -> Hash:
        try:
            resp = await self.client.get_latest_blockhash()
        except (SolanaRpcException, RPCException) as e:
            logger.error(f"getLatestBlockhash failed: {e}")
            raise ChainUnavailable()
        return resp.value.blockhash

    @staticmethod
    def _parse_signature(reference: str) -> Signature:
        try:
            return Signature.from_string(reference)
        except Exception:
            raise InvalidInputError(f"Invalid transaction signature: {reference}")

    async def transaction_status(self, reference: str) -> TxStatus:
        signature = self._parse_signature(reference)

        try:
            resp = await self.client.get_signature_statuses(
                [signature], search_transaction_history=True
            )
        except (SolanaRpcException, RPCException) as e:
            logger.warning(f"getSignatureStatuses failed for {reference}: {e}")
            return TxStatus.PENDING

        status = resp.value[0] if resp.value else None
        if status is None:
            return TxStatus.PENDING
        if status.err is not None:
            return TxStatus.FAILED
        if status.confirmation_status in (None, TransactionConfirmationStatus.Processed):
            return TxStatus.PENDING
        return TxStatus.SUCCESS

    async def transaction_details(self, reference: str) -> TxDetails:
        signature = self._parse_signature(reference)

        try:
            resp = await self.client.get_transaction(
                signature, encoding="json", max_supported_transaction_version=0
            )
        except (SolanaRpcException, RPCException) as e:
            logger.warning(f"getTransaction failed for {reference}: {e}")
            return TxDetails(reference=reference, status=TxStatus.PENDING)

        tx = resp.value
        if tx is None:
            return TxDetails(reference=reference, status=TxStatus.PENDING)

        details = TxDetails(
            reference=reference,
            status=TxStatus.SUCCESS,
            block_height=tx.slot,
            block_time=tx.block_time,
        )

        meta = tx.transaction.meta
        if meta is not None:
            details.fee = meta.fee
            if meta.err is not None:
                details.status = TxStatus.FAILED
            details.token_deltas = _token_deltas(
                meta.pre_token_balances or [], meta.post_token_balances or []
            )

        try:
            account_keys = tx.transaction.transaction.message.account_keys
            details.sender = str(account_keys[0])
        except (AttributeError, IndexError, TypeError):
            pass

        return details

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transfer(
        self, signing_key: SigningKeyHandle, recipient: str, amount: int
    ) -> TransferReceipt:
        to_pubkey = parse_pubkey(recipient)
        if to_pubkey is None:
            raise InvalidRecipient(f"Invalid Solana recipient: {recipient}")

        keypair = signing_key.solana_keypair()
        sender = keypair.pubkey()

        balance = await self.get_balance(str(sender))
        if balance < amount + SIGNATURE_FEE_LAMPORTS:
            raise InsufficientFunds(
                f"Insufficient balance: have {self.format_amount(balance)}, "
                f"need {self.format_amount(amount + SIGNATURE_FEE_LAMPORTS)} including fee"
            )

        ix = transfer(TransferParams(from_pubkey=sender, to_pubkey=to_pubkey, lamports=amount))
        tx = await self.build_transaction(signing_key, [ix])
        return await self.submit_transaction(tx, amount=amount)

    async def build_transaction(
        self, signing_key: SigningKeyHandle, instructions: list[Instruction]
    ) -> Transaction:
        """Sign a legacy transaction paid for by the handle's keypair."""
        keypair = signing_key.solana_keypair()
        blockhash = await self.get_latest_blockhash()
        message = Message.new_with_blockhash(instructions, keypair.pubkey(), blockhash)
        return Transaction([keypair], message, blockhash)

    async def submit_transaction(self, tx: Transaction, amount: int = 0) -> TransferReceipt:
        """Broadcast a signed transaction, bounded by ``broadcast_timeout``.

        Raises:
            InsufficientFunds: preflight found the payer underfunded
            TransactionRejected: any other preflight/program failure
            BroadcastFailed: the request never reached the cluster
        """
        reference = str(tx.signatures[0])
        opts = TxOpts(skip_confirmation=True, preflight_commitment=Confirmed)

        try:
            resp = await asyncio.wait_for(
                self.client.send_raw_transaction(bytes(tx), opts=opts),
                timeout=self.broadcast_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Broadcast of {reference} timed out, outcome unknown")
            return self._receipt(reference, TransferOutcome.CONFIRMATION_UNKNOWN, amount)
        except RPCException as e:
            detail = str(e)
            logger.error(f"Transaction {reference} rejected: {detail}")
            if any(marker in detail.lower() for marker in _INSUFFICIENT_MARKERS):
                raise InsufficientFunds()
            raise TransactionRejected(detail)
        except SolanaRpcException as e:
            if _delivery_unknown(e):
                logger.warning(f"Broadcast of {reference} got no response: {e}")
                return self._receipt(reference, TransferOutcome.CONFIRMATION_UNKNOWN, amount)
            logger.error(f"Broadcast of {reference} failed: {e}")
            raise BroadcastFailed()

        reference = str(resp.value)
        logger.info(f"Transaction sent! Signature: {reference}")
        return self._receipt(reference, TransferOutcome.SUBMITTED, amount)

    def _receipt(self, reference: str, outcome: TransferOutcome, amount: int) -> TransferReceipt:
        return TransferReceipt(
            reference=reference,
            outcome=outcome,
            amount=amount,
            explorer_url=self.explorer_url(reference),
        )


def _delivery_unknown(exc: SolanaRpcException) -> bool:
    cause = exc.__cause__
    if isinstance(cause, (httpx.ConnectError, httpx.ConnectTimeout)):
        return False
    return isinstance(cause, httpx.HTTPError)


def _token_deltas(pre: list, post: list) -> list[TokenDelta]:
    """Net token balance change per account index."""
    balances: dict[int, dict] = {}

    for entry in pre:
        balances[entry.account_index] = {
            "mint": str(entry.mint),
            "owner": str(entry.owner) if entry.owner else None,
            "decimals": entry.ui_token_amount.decimals,
            "pre": int(entry.ui_token_amount.amount),
            "post": 0,
        }

    for entry in post:
        row = balances.setdefault(
            entry.account_index,
            {
                "mint": str(entry.mint),
                "owner": str(entry.owner) if entry.owner else None,
                "decimals": entry.ui_token_amount.decimals,
                "pre": 0,
            },
        )
        row["post"] = int(entry.ui_token_amount.amount)

    deltas = []
    for index in sorted(balances):
        row = balances[index]
        if row["post"] != row["pre"]:
            deltas.append(
                TokenDelta(
                    token=row["mint"],
                    owner=row["owner"],
                    delta=row["post"] - row["pre"],
                    decimals=row["decimals"],
                )
            )
    return deltas
