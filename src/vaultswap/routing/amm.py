"""On-chain AMM backend (SPL token-swap pools on Solana).

Quotes are priced locally from the pool registry; execution sends one
atomic transaction:

1. create the user's destination token account (idempotent)
2. token-swap ``Swap`` with ``amount_in`` and ``minimum_amount_out``

Quote ids have the form ``spl-swap:<pool_address>:<nonce>``.
"""

import logging
import secrets
import struct
from typing import Optional

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey

from vaultswap.chains.solana import SolanaChainAdapter, TransactionRejected, parse_pubkey
from vaultswap.config import ChainFamily
from vaultswap.errors import (
    InvalidAmount,
    InvalidInputError,
    InvalidQuoteId,
    SlippageExceeded,
    UnsupportedChain,
)
from vaultswap.routing.base import (
    Distribution,
    Quote,
    QuoteRequest,
    RouteLeg,
    SwapBackend,
    SwapDetails,
    SwapResult,
    SwapStatusItem,
    SwapStatusSummary,
    min_amount_out,
)
from vaultswap.routing.pools import PoolInfo, PoolRegistry
from vaultswap.units import parse_base_units
from vaultswap.wallets.keys import SigningKeyHandle

logger = logging.getLogger(__name__)

QUOTE_ID_PREFIX = "spl-swap"
PROTOCOL_NAME = "SPL Token Swap"

ATA_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWH25efTNsLJA8knL")
SYSTEM_PROGRAM_ID = Pubkey.from_string("11111111111111111111111111111111")

# Token-swap instruction tag and the program's ExceededSlippage error code
_SWAP_INSTRUCTION = 1
_EXCEEDED_SLIPPAGE = "custom program error: 0x10"

# Associated-token-account program: CreateIdempotent
_ATA_CREATE_IDEMPOTENT = 1

# Swap amounts are encoded as little-endian u64
U64_MAX = 2**64 - 1

# Most recent swap references kept per wallet
MAX_TRACKED_SWAPS = 100


def parse_quote_id(quote_id: str) -> tuple[str, str]:
    """Split an AMM quote id into (pool_address, nonce).

    Raises:
        InvalidQuoteId: wrong prefix, bad pool address, or missing nonce
    """
    parts = quote_id.split(":")
    if len(parts) != 3 or parts[0] != QUOTE_ID_PREFIX or not parts[2]:
        raise InvalidQuoteId()
    if parse_pubkey(parts[1]) is None:
        raise InvalidQuoteId("Invalid pool address in quote ID")
    return parts[1], parts[2]


def flat_fee_output(amount: int, fee_bps: int) -> int:
    """Output after a proportional fee: floor(amount * (1 - fee))."""
    return amount * (10000 - fee_bps) // 10000


def constant_product_output(amount: int, reserve_in: int, reserve_out: int, fee_bps: int) -> int:
    """x*y=k output for ``amount`` in, fee taken from the input side."""
    amount_after_fee = flat_fee_output(amount, fee_bps)
    if amount_after_fee <= 0 or reserve_in <= 0 or reserve_out <= 0:
        return 0
    return reserve_out * amount_after_fee // (reserve_in + amount_after_fee)


def associated_token_address(owner: Pubkey, mint: Pubkey, token_program_id: Pubkey) -> Pubkey:
    address, _ = Pubkey.find_program_address(
        [bytes(owner), bytes(token_program_id), bytes(mint)], ATA_PROGRAM_ID
    )
    return address


def create_ata_idempotent_instruction(
    payer: Pubkey, owner: Pubkey, mint: Pubkey, token_program_id: Pubkey
) -> Instruction:
    ata = associated_token_address(owner, mint, token_program_id)
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(ata, is_signer=False, is_writable=True),
        AccountMeta(owner, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(token_program_id, is_signer=False, is_writable=False),
    ]
    return Instruction(ATA_PROGRAM_ID, bytes([_ATA_CREATE_IDEMPOTENT]), accounts)


def swap_instruction(
    pool: PoolInfo,
    user: Pubkey,
    source: Pubkey,
    destination: Pubkey,
    source_mint: Pubkey,
    amount_in: int,
    minimum_amount_out: int,
) -> Instruction:
    """Token-swap ``Swap`` instruction (no host fee account)."""
    if not 0 <= amount_in <= U64_MAX or not 0 <= minimum_amount_out <= U64_MAX:
        raise InvalidAmount("Swap amount does not fit in u64")
    swap_source, swap_destination = pool.reserves_for(source_mint)
    accounts = [
        AccountMeta(pool.pool_address, is_signer=False, is_writable=False),
        AccountMeta(pool.authority, is_signer=False, is_writable=False),
        AccountMeta(user, is_signer=True, is_writable=False),
        AccountMeta(source, is_signer=False, is_writable=True),
        AccountMeta(swap_source, is_signer=False, is_writable=True),
        AccountMeta(swap_destination, is_signer=False, is_writable=True),
        AccountMeta(destination, is_signer=False, is_writable=True),
        AccountMeta(pool.pool_mint, is_signer=False, is_writable=True),
        AccountMeta(pool.fee_account, is_signer=False, is_writable=True),
        AccountMeta(pool.token_program_id, is_signer=False, is_writable=False),
    ]
    data = struct.pack("<BQQ", _SWAP_INSTRUCTION, amount_in, minimum_amount_out)
    return Instruction(pool.program_id, data, accounts)


class OnChainAMMBackend(SwapBackend):
    """Swaps against SPL token-swap pools.

    By default quotes use the flat proportional fee
    (``out = in * (1 - fee_bps / 10000)``). With ``live_reserves`` the pool's
    reserve balances are read and the constant-product formula is applied.
    """

    name = "spl-token-swap"
    family = ChainFamily.SOLANA

    def __init__(
        self,
        adapter: SolanaChainAdapter,
        registry: PoolRegistry,
        fee_bps: int = 200,
        live_reserves: bool = False,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.adapter = adapter
        self.registry = registry
        self.fee_bps = fee_bps
        self.live_reserves = live_reserves
        # Swap references submitted per wallet, statuses always re-read from chain
        self._submitted: dict[str, list[str]] = {}

    async def get_quote(self, request: QuoteRequest) -> Quote:
        amount = parse_base_units(request.amount)
        if amount > U64_MAX:
            raise InvalidAmount(f"Amount exceeds the maximum of {U64_MAX}")
        slippage = self.resolve_slippage(request.slippage)
        if request.gasless:
            raise UnsupportedChain("Gasless swaps are not available on the on-chain AMM")

        pool = self.registry.find(request.from_token, request.to_token)
        to_amount = await self._price(pool, request.from_token, amount)
        if to_amount <= 0:
            raise InvalidAmount("Amount too small to produce any output")

        created_at, valid_until = self._stamp()
        quote = Quote(
            quote_id=f"{QUOTE_ID_PREFIX}:{pool.pool_address}:{secrets.token_hex(8)}",
            from_token=request.from_token,
            to_token=request.to_token,
            from_amount=amount,
            to_amount=to_amount,
            min_to_amount=min_amount_out(to_amount, slippage),
            slippage=slippage,
            route=[RouteLeg(PROTOCOL_NAME, 100.0, request.from_token, request.to_token)],
            created_at=created_at,
            valid_until=valid_until,
            backend=self.name,
            chain_family=self.family,
        )
        self.quote_book.add(quote)
        logger.debug(f"Quoted {amount} -> {to_amount} via pool {pool.pool_address}")
        return quote

    async def _price(self, pool: PoolInfo, from_token: str, amount: int) -> int:
        if not self.live_reserves:
            return flat_fee_output(amount, self.fee_bps)

        source_reserve, destination_reserve = pool.reserves_for(Pubkey.from_string(from_token))
        reserve_in = await self.adapter.get_token_balance(source_reserve)
        reserve_out = await self.adapter.get_token_balance(destination_reserve)
        fee_bps = pool.fee_bps if pool.fee_bps is not None else self.fee_bps
        return constant_product_output(amount, reserve_in, reserve_out, fee_bps)

    def validate_quote_id(self, quote_id: str) -> None:
        parse_quote_id(quote_id)

    async def _execute(self, quote: Quote, signing_key: SigningKeyHandle) -> SwapResult:
        pool_address, _ = parse_quote_id(quote.quote_id)
        pool = self.registry.get(pool_address)

        owner = signing_key.solana_keypair().pubkey()
        source_mint = Pubkey.from_string(quote.from_token)
        destination_mint = Pubkey.from_string(quote.to_token)
        user_source = associated_token_address(owner, source_mint, pool.token_program_id)
        user_destination = associated_token_address(owner, destination_mint, pool.token_program_id)

        instructions = [
            create_ata_idempotent_instruction(owner, owner, destination_mint, pool.token_program_id),
            swap_instruction(
                pool,
                user=owner,
                source=user_source,
                destination=user_destination,
                source_mint=source_mint,
                amount_in=quote.from_amount,
                minimum_amount_out=quote.min_to_amount,
            ),
        ]

        tx = await self.adapter.build_transaction(signing_key, instructions)
        try:
            receipt = await self.adapter.submit_transaction(tx)
        except TransactionRejected as e:
            if _EXCEEDED_SLIPPAGE in e.detail.lower():
                raise SlippageExceeded(quote_id=quote.quote_id)
            raise

        references = self._submitted.setdefault(str(owner), [])
        references.append(receipt.reference)
        del references[:-MAX_TRACKED_SWAPS]
        return SwapResult.from_receipt(receipt)

    async def get_swap_status(self, wallet_address: str) -> SwapStatusSummary:
        if not self.adapter.validate_address(wallet_address):
            raise InvalidInputError(f"Invalid Solana address: {wallet_address}")

        summary = SwapStatusSummary()
        for reference in self._submitted.get(wallet_address, []):
            status = await self.adapter.transaction_status(reference)
            summary.add(SwapStatusItem(reference, status, reference))
        return summary

    async def get_swap_status_for(self, reference: str) -> SwapStatusSummary:
        summary = SwapStatusSummary()
        status = await self.adapter.transaction_status(reference)
        summary.add(SwapStatusItem(reference, status, reference))
        return summary

    async def get_swap_details(self, reference: str) -> SwapDetails:
        tx = await self.adapter.transaction_details(reference)

        details = SwapDetails(
            swap_id=reference,
            status=tx.status,
            tx_reference=reference,
            timestamp=tx.block_time,
            block_height=tx.block_height,
            fee=tx.fee,
        )

        owner = tx.sender
        for delta in tx.token_deltas:
            details.tokens.append(
                {
                    "token": delta.token,
                    "owner": delta.owner,
                    "delta": str(delta.delta),
                    "decimals": delta.decimals,
                }
            )
            if owner is None or delta.owner != owner:
                continue
            if delta.delta < 0 and details.from_token is None:
                details.from_token, details.from_amount = delta.token, -delta.delta
            elif delta.delta > 0 and details.to_token is None:
                details.to_token, details.to_amount = delta.token, delta.delta

        return details

    async def get_distributions(self, quote_id: str) -> list[Distribution]:
        parse_quote_id(quote_id)
        amount: Optional[str] = None
        if quote_id in self.quote_book:
            amount = str(self.quote_book.get(quote_id).from_amount)
        return [Distribution(PROTOCOL_NAME, 100.0, amount)]
