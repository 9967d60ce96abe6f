"""Tests for the token-swap pool registry."""

import struct
from unittest.mock import AsyncMock

import pytest
from solders.keypair import Keypair
from solders.pubkey import Pubkey

from vaultswap.errors import InvalidInputError, NoRouteFound, PoolNotFound, UnavailableError
from vaultswap.routing.pools import (
    KNOWN_POOLS,
    SWAP_STATE_LEN,
    TOKEN_PROGRAM_ID,
    TOKEN_SWAP_PROGRAM_ID,
    PoolInfo,
    PoolRegistry,
    build_pool_registry,
    decode_swap_state,
    hydrate_pool,
    pair_key,
)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
MSOL_MINT = "mSoLzYCxHdYgdzU16g5QSh3i5K3z3KZK7ytfqcJm7So"


def new_key() -> Pubkey:
    return Keypair().pubkey()


def make_pool(mint_a: str = SOL_MINT, mint_b: str = USDC_MINT, **overrides) -> PoolInfo:
    fields = dict(
        pool_address=new_key(),
        token_a_mint=Pubkey.from_string(mint_a),
        token_b_mint=Pubkey.from_string(mint_b),
        token_a_account=new_key(),
        token_b_account=new_key(),
        authority=new_key(),
        fee_account=new_key(),
        pool_mint=new_key(),
    )
    fields.update(overrides)
    return PoolInfo(**fields)


def swap_state_bytes(pool: PoolInfo, bump: int, version: int = 1) -> bytes:
    data = bytearray([version, 1, bump])
    for key in (
        TOKEN_PROGRAM_ID,
        pool.token_a_account,
        pool.token_b_account,
        pool.pool_mint,
        pool.token_a_mint,
        pool.token_b_mint,
        pool.fee_account,
    ):
        data += bytes(key)
    # 0.25% trade fee + 0.05% owner fee
    data += struct.pack("<8Q", 25, 10000, 5, 10000, 0, 0, 0, 0)
    data += bytes(SWAP_STATE_LEN - len(data))
    return bytes(data)


class TestPairKey:
    """Tests for unordered token-pair keys."""

    def test_order_independent(self):
        assert pair_key(SOL_MINT, USDC_MINT) == pair_key(USDC_MINT, SOL_MINT)

    def test_distinct_pairs(self):
        assert pair_key(SOL_MINT, USDC_MINT) != pair_key(SOL_MINT, MSOL_MINT)


class TestPoolRegistry:
    """Tests for pool lookup."""

    def test_find_either_direction(self):
        pool = make_pool()
        registry = PoolRegistry([pool])

        assert registry.find(SOL_MINT, USDC_MINT) is pool
        assert registry.find(USDC_MINT, SOL_MINT) is pool

    def test_find_unknown_pair(self):
        registry = PoolRegistry([make_pool()])
        with pytest.raises(NoRouteFound):
            registry.find(SOL_MINT, MSOL_MINT)

    def test_get_by_address(self):
        pool = make_pool()
        registry = PoolRegistry([pool])

        assert registry.get(str(pool.pool_address)) is pool
        with pytest.raises(PoolNotFound):
            registry.get(str(new_key()))

    def test_later_pool_replaces_pair(self):
        first, second = make_pool(), make_pool(USDC_MINT, SOL_MINT)
        registry = PoolRegistry([first, second])

        assert registry.find(SOL_MINT, USDC_MINT) is second

    def test_reserves_follow_direction(self):
        pool = make_pool()

        assert pool.reserves_for(pool.token_a_mint) == (pool.token_a_account, pool.token_b_account)
        assert pool.reserves_for(pool.token_b_mint) == (pool.token_b_account, pool.token_a_account)
        with pytest.raises(InvalidInputError):
            pool.reserves_for(Pubkey.from_string(MSOL_MINT))


class TestDecodeSwapState:
    """Tests for decoding pool accounts."""

    def test_decode(self):
        template = make_pool()
        authority, bump = Pubkey.find_program_address(
            [bytes(template.pool_address)], TOKEN_SWAP_PROGRAM_ID
        )

        pool = decode_swap_state(
            template.pool_address, TOKEN_SWAP_PROGRAM_ID, swap_state_bytes(template, bump)
        )

        assert pool.authority == authority
        assert pool.token_a_mint == template.token_a_mint
        assert pool.token_b_account == template.token_b_account
        assert pool.fee_account == template.fee_account
        assert pool.token_program_id == TOKEN_PROGRAM_ID
        assert pool.fee_bps == 30

    def test_short_account(self):
        with pytest.raises(ValueError):
            decode_swap_state(new_key(), TOKEN_SWAP_PROGRAM_ID, b"\x01\x01")

    def test_wrong_version(self):
        template = make_pool()
        _, bump = Pubkey.find_program_address([bytes(template.pool_address)], TOKEN_SWAP_PROGRAM_ID)

        with pytest.raises(ValueError):
            decode_swap_state(
                template.pool_address,
                TOKEN_SWAP_PROGRAM_ID,
                swap_state_bytes(template, bump, version=2),
            )

    def test_bump_mismatch(self):
        template = make_pool()
        _, bump = Pubkey.find_program_address([bytes(template.pool_address)], TOKEN_SWAP_PROGRAM_ID)

        with pytest.raises(ValueError):
            decode_swap_state(
                template.pool_address,
                TOKEN_SWAP_PROGRAM_ID,
                swap_state_bytes(template, (bump + 1) % 256),
            )


class TestHydration:
    """Tests for building the registry from chain data."""

    @pytest.mark.asyncio
    async def test_hydrate_pool(self):
        template = make_pool()
        _, bump = Pubkey.find_program_address([bytes(template.pool_address)], TOKEN_SWAP_PROGRAM_ID)
        adapter = AsyncMock()
        adapter.get_account.return_value = (
            swap_state_bytes(template, bump),
            TOKEN_SWAP_PROGRAM_ID,
        )

        pool = await hydrate_pool(adapter, str(template.pool_address), (USDC_MINT, SOL_MINT))

        assert pool is not None
        assert pool.key == pair_key(SOL_MINT, USDC_MINT)

    @pytest.mark.asyncio
    async def test_missing_account_is_skipped(self):
        adapter = AsyncMock()
        adapter.get_account.return_value = None

        assert await hydrate_pool(adapter, str(new_key())) is None

    @pytest.mark.asyncio
    async def test_unavailable_rpc_is_skipped(self):
        adapter = AsyncMock()
        adapter.get_account.side_effect = UnavailableError()

        assert await hydrate_pool(adapter, str(new_key())) is None

    @pytest.mark.asyncio
    async def test_invalid_address_is_skipped(self):
        adapter = AsyncMock()

        assert await hydrate_pool(adapter, "not a key") is None
        adapter.get_account.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_registry_from_full_definitions(self):
        pool = make_pool()
        definition = {k: str(v) for k, v in pool.__dict__.items() if isinstance(v, Pubkey)}
        definition["fee_bps"] = 30

        registry = await build_pool_registry(None, [definition], hydrate=False)

        assert len(registry) == 1
        assert registry.find(USDC_MINT, SOL_MINT).fee_bps == 30

    @pytest.mark.asyncio
    async def test_partial_definitions_skipped_without_hydration(self):
        registry = await build_pool_registry(None, None, hydrate=False)
        assert len(registry) == 0

    @pytest.mark.asyncio
    async def test_default_pools_hydrated(self):
        adapter = AsyncMock()
        adapter.get_account.return_value = None

        registry = await build_pool_registry(adapter)

        assert len(registry) == 0
        assert adapter.get_account.await_count == len(KNOWN_POOLS)
