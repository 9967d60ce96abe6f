"""SPL token-swap pool registry.

Pools are indexed by an unordered token-pair key, so (A, B) and (B, A)
resolve to the same pool. The registry is built once at startup from pool
accounts read on chain and is read-only afterwards.

Token-swap account layout (version byte + SwapV1, 324 bytes):

    offset  size  field
    0       1     version (1)
    1       1     is_initialized
    2       1     bump_seed
    3       32    token_program_id
    35      32    token_a           (pool reserve account)
    67      32    token_b           (pool reserve account)
    99      32    pool_mint
    131     32    token_a_mint
    163     32    token_b_mint
    195     32    pool_fee_account
    227     64    fees (8 x u64 LE)
    291     33    swap curve
"""

import logging
import struct
from dataclasses import dataclass
from typing import Iterator, Optional

from solders.pubkey import Pubkey

from vaultswap.chains.solana import SolanaChainAdapter, parse_pubkey
from vaultswap.errors import InvalidInputError, NoRouteFound, PoolNotFound, UnavailableError

logger = logging.getLogger(__name__)

TOKEN_SWAP_PROGRAM_ID = Pubkey.from_string("SwaPpA9LAaLfeLi3a68M4DjnLqgtticKg6CnyNwgAC8")
TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")

SWAP_STATE_LEN = 324
_SWAP_STATE_VERSION = 1

# (pool_address, token_a_mint, token_b_mint)
KNOWN_POOLS = [
    (
        "58oQChx4yWmvKdwLLZzBi4ChoCc2fqCUWBkwMihLYQo2",
        "So11111111111111111111111111111111111111112",  # SOL
        "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v",  # USDC
    ),
    (
        "9Md3QPJpwZkdqBBQSfczDZpZMSWxDQZRNdGG6XQJqbhK",
        "So11111111111111111111111111111111111111112",  # SOL
        "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So",  # mSOL
    ),
]


def pair_key(token_x: str, token_y: str) -> tuple[str, str]:
    """Order-independent key for a token pair."""
    return (token_x, token_y) if token_x <= token_y else (token_y, token_x)


@dataclass(frozen=True)
class PoolInfo:
    """A token-swap pool and the accounts its swap instruction needs."""

    pool_address: Pubkey
    token_a_mint: Pubkey
    token_b_mint: Pubkey
    token_a_account: Pubkey
    token_b_account: Pubkey
    authority: Pubkey
    fee_account: Pubkey
    pool_mint: Pubkey
    program_id: Pubkey = TOKEN_SWAP_PROGRAM_ID
    token_program_id: Pubkey = TOKEN_PROGRAM_ID
    fee_bps: Optional[int] = None

    @property
    def key(self) -> tuple[str, str]:
        return pair_key(str(self.token_a_mint), str(self.token_b_mint))

    def reserves_for(self, source_mint: Pubkey) -> tuple[Pubkey, Pubkey]:
        """Pool (source, destination) reserve accounts when swapping from ``source_mint``."""
        if source_mint == self.token_a_mint:
            return self.token_a_account, self.token_b_account
        if source_mint == self.token_b_mint:
            return self.token_b_account, self.token_a_account
        raise InvalidInputError(f"Token {source_mint} is not in pool {self.pool_address}")

    def to_dict(self) -> dict:
        return {
            "pool_address": str(self.pool_address),
            "token_a_mint": str(self.token_a_mint),
            "token_b_mint": str(self.token_b_mint),
            "reserve_accounts": [str(self.token_a_account), str(self.token_b_account)],
            "authority": str(self.authority),
            "fee_account": str(self.fee_account),
            "program_id": str(self.program_id),
        }


def decode_swap_state(pool_address: Pubkey, program_id: Pubkey, data: bytes) -> PoolInfo:
    """Decode a token-swap pool account.

    Raises:
        ValueError: wrong size, version, or an uninitialized pool
    """
    if len(data) < SWAP_STATE_LEN:
        raise ValueError(f"Pool account too short ({len(data)} bytes)")
    if data[0] != _SWAP_STATE_VERSION:
        raise ValueError(f"Unsupported swap state version {data[0]}")
    if data[1] != 1:
        raise ValueError("Pool is not initialized")

    bump_seed = data[2]

    def key_at(offset: int) -> Pubkey:
        return Pubkey.from_bytes(data[offset:offset + 32])

    fees = struct.unpack_from("<8Q", data, 227)
    trade_num, trade_den, owner_num, owner_den = fees[:4]
    fee_fraction = 0.0
    if trade_den:
        fee_fraction += trade_num / trade_den
    if owner_den:
        fee_fraction += owner_num / owner_den

    authority, bump = Pubkey.find_program_address([bytes(pool_address)], program_id)
    if bump != bump_seed:
        raise ValueError("Pool authority bump does not match program address")

    return PoolInfo(
        pool_address=pool_address,
        token_program_id=key_at(3),
        token_a_account=key_at(35),
        token_b_account=key_at(67),
        pool_mint=key_at(99),
        token_a_mint=key_at(131),
        token_b_mint=key_at(163),
        fee_account=key_at(195),
        authority=authority,
        program_id=program_id,
        fee_bps=round(fee_fraction * 10000),
    )


class PoolRegistry:
    """Token-pair -> pool lookup."""

    def __init__(self, pools: Optional[list[PoolInfo]] = None):
        self._by_pair: dict[tuple[str, str], PoolInfo] = {}
        self._by_address: dict[str, PoolInfo] = {}
        for pool in pools or []:
            self.add(pool)

    def add(self, pool: PoolInfo) -> None:
        if pool.key in self._by_pair:
            logger.warning(
                f"Pool {pool.pool_address} replaces {self._by_pair[pool.key].pool_address} "
                f"for pair {pool.key}"
            )
        self._by_pair[pool.key] = pool
        self._by_address[str(pool.pool_address)] = pool

    def find(self, token_x: str, token_y: str) -> PoolInfo:
        pool = self._by_pair.get(pair_key(token_x, token_y))
        if pool is None:
            raise NoRouteFound(from_token=token_x, to_token=token_y)
        return pool

    def get(self, pool_address: str) -> PoolInfo:
        pool = self._by_address.get(pool_address)
        if pool is None:
            raise PoolNotFound(pool_address=pool_address)
        return pool

    def __len__(self) -> int:
        return len(self._by_address)

    def __iter__(self) -> Iterator[PoolInfo]:
        return iter(self._by_address.values())


def pool_from_definition(definition: dict) -> PoolInfo:
    """Build a PoolInfo from a fully specified configuration entry."""

    def pk(name: str) -> Pubkey:
        key = parse_pubkey(definition[name])
        if key is None:
            raise ValueError(f"Invalid {name}: {definition[name]}")
        return key

    return PoolInfo(
        pool_address=pk("pool_address"),
        token_a_mint=pk("token_a_mint"),
        token_b_mint=pk("token_b_mint"),
        token_a_account=pk("token_a_account"),
        token_b_account=pk("token_b_account"),
        authority=pk("authority"),
        fee_account=pk("fee_account"),
        pool_mint=pk("pool_mint"),
        program_id=pk("program_id") if definition.get("program_id") else TOKEN_SWAP_PROGRAM_ID,
        fee_bps=definition.get("fee_bps"),
    )


_FULL_DEFINITION_FIELDS = (
    "token_a_mint",
    "token_b_mint",
    "token_a_account",
    "token_b_account",
    "authority",
    "fee_account",
    "pool_mint",
)


async def hydrate_pool(
    adapter: SolanaChainAdapter, pool_address: str, expected_pair: Optional[tuple[str, str]] = None
) -> Optional[PoolInfo]:
    """Fetch and decode one pool account. Returns None if it cannot be used."""
    address = parse_pubkey(pool_address)
    if address is None:
        logger.warning(f"Skipping pool with invalid address: {pool_address}")
        return None

    try:
        account = await adapter.get_account(address)
    except UnavailableError:
        logger.warning(f"Skipping pool {pool_address}: RPC unavailable")
        return None

    if account is None:
        logger.warning(f"Skipping pool {pool_address}: account not found")
        return None

    data, owner = account
    try:
        pool = decode_swap_state(address, owner, data)
    except ValueError as e:
        logger.warning(f"Skipping pool {pool_address}: {e}")
        return None

    if expected_pair and pool.key != pair_key(*expected_pair):
        logger.warning(
            f"Pool {pool_address} holds {pool.key}, expected {pair_key(*expected_pair)}; "
            f"using on-chain mints"
        )
    return pool


async def build_pool_registry(
    adapter: Optional[SolanaChainAdapter],
    definitions: Optional[list[dict]] = None,
    hydrate: bool = True,
) -> PoolRegistry:
    """Build the registry from config entries (or the built-in pool list).

    Fully specified entries are used as-is. Entries with only an address
    (and optionally the pair) are read from chain when ``hydrate`` is on and
    skipped otherwise.
    """
    if definitions is None or not definitions:
        definitions = [
            {"pool_address": addr, "token_a_mint": a, "token_b_mint": b}
            for addr, a, b in KNOWN_POOLS
        ]

    registry = PoolRegistry()

    for definition in definitions:
        pool_address = definition.get("pool_address", "")

        if all(definition.get(f) for f in _FULL_DEFINITION_FIELDS):
            try:
                registry.add(pool_from_definition(definition))
            except ValueError as e:
                logger.warning(f"Skipping misconfigured pool {pool_address}: {e}")
            continue

        if not hydrate or adapter is None:
            logger.warning(f"Skipping pool {pool_address}: not fully specified and hydration is off")
            continue

        expected = None
        if definition.get("token_a_mint") and definition.get("token_b_mint"):
            expected = (definition["token_a_mint"], definition["token_b_mint"])

        pool = await hydrate_pool(adapter, pool_address, expected)
        if pool is not None:
            registry.add(pool)

    logger.info(f"Pool registry ready with {len(registry)} pool(s)")
    return registry
