"""Tests for the FastAPI endpoints."""

from types import SimpleNamespace
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from solana.rpc.core import RPCException
from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.transaction import Transaction

from vaultswap.api.app import create_app
from vaultswap.auth.login_state import LoginStateStore
from vaultswap.chains.solana import SolanaChainAdapter
from vaultswap.config import ChainFamily
from vaultswap.routing.amm import OnChainAMMBackend
from vaultswap.routing.pools import PoolInfo, PoolRegistry
from vaultswap.services.swap_orchestrator import SwapOrchestrator
from vaultswap.services.wallet_service import WalletService

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"


@pytest.fixture
def rpc_client():
    client = AsyncMock()
    client.get_balance.return_value = SimpleNamespace(value=10**9)
    client.get_latest_blockhash.return_value = SimpleNamespace(
        value=SimpleNamespace(blockhash=Hash.default())
    )

    async def send(raw: bytes, opts=None):
        return SimpleNamespace(value=Transaction.from_bytes(raw).signatures[0])

    client.send_raw_transaction.side_effect = send
    return client


@pytest.fixture
def test_app(db, keys, rpc_client):
    """Application wired to an in-memory database and a mocked Solana RPC."""
    adapter = SolanaChainAdapter("http://solana.test", client=rpc_client)
    pool = PoolInfo(
        pool_address=Keypair().pubkey(),
        token_a_mint=Pubkey.from_string(SOL_MINT),
        token_b_mint=Pubkey.from_string(USDC_MINT),
        token_a_account=Keypair().pubkey(),
        token_b_account=Keypair().pubkey(),
        authority=Keypair().pubkey(),
        fee_account=Keypair().pubkey(),
        pool_mint=Keypair().pubkey(),
    )
    backend = OnChainAMMBackend(adapter, PoolRegistry([pool]))

    app = create_app()
    app.state.wallet_service = WalletService(
        keys, db=db, adapter_for=lambda family: adapter, wallet_chain=ChainFamily.SOLANA
    )
    app.state.orchestrator = SwapOrchestrator(backend, keys, db=db)
    app.state.login_states = LoginStateStore()
    return app


@pytest_asyncio.fixture
async def client(test_app):
    """Create async test client."""
    transport = ASGITransport(app=test_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def login(client, user_id: str = "google-1") -> dict:
    attempt = (await client.get(f"/login/{user_id}")).json()
    response = await client.get(
        "/callback", params={"state": attempt["state"], "username": "alice"}
    )
    assert response.status_code == 200
    return response.json()


def sol_to_usdc(amount: str = "1000000000") -> dict:
    return {"from_token": SOL_MINT, "to_token": USDC_MINT, "amount": amount}


class TestHealthEndpoints:
    """Tests for health check endpoints."""

    @pytest.mark.asyncio
    async def test_health_check(self, client):
        """Test basic health check."""
        response = await client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "vaultswap"

    @pytest.mark.asyncio
    async def test_detailed_health_redacts_secrets(self, client):
        """Test detailed health check."""
        response = await client.get("/health/detailed")

        assert response.status_code == 200
        config = response.json()["config"]
        assert "environment" in config
        assert config["master_key"] == "(not set)"


class TestLoginEndpoints:
    """Tests for the login flow."""

    @pytest.mark.asyncio
    async def test_login_returns_challenge(self, client):
        response = await client.get("/login/google-1")

        assert response.status_code == 200
        data = response.json()
        assert data["code_challenge_method"] == "S256"
        assert "code_verifier" not in data

    @pytest.mark.asyncio
    async def test_callback_provisions_profile(self, client):
        profile = await login(client)

        assert profile["user_id"] == "google-1"
        assert profile["username"] == "alice"
        assert profile["wallet_address"]

        response = await client.get("/profile/google-1")
        assert response.json()["wallet_address"] == profile["wallet_address"]

    @pytest.mark.asyncio
    async def test_callback_state_is_single_use(self, client):
        attempt = (await client.get("/login/google-1")).json()

        first = await client.get("/callback", params={"state": attempt["state"]})
        second = await client.get("/callback", params={"state": attempt["state"]})

        assert first.status_code == 200
        assert second.status_code == 404
        assert second.json()["kind"] == "not_found"

    @pytest.mark.asyncio
    async def test_unknown_profile(self, client):
        response = await client.get("/profile/nobody")

        assert response.status_code == 404
        assert response.json() == {
            "kind": "not_found",
            "message": "Profile not found",
            "user_id": "nobody",
        }


class TestWalletEndpoints:
    """Tests for balance and transfer endpoints."""

    @pytest.mark.asyncio
    async def test_balance(self, client):
        profile = await login(client)

        response = await client.get("/balance/google-1")

        assert response.status_code == 200
        assert response.json() == {
            "balance": "1",
            "address": profile["wallet_address"],
            "chain": "solana",
        }

    @pytest.mark.asyncio
    async def test_balance_unknown_user(self, client):
        response = await client.get("/balance/nobody")

        assert response.status_code == 200
        assert response.json()["balance"] == "0"

    @pytest.mark.asyncio
    async def test_transfer(self, client):
        await login(client)

        response = await client.post(
            "/transfer",
            json={"user_id": "google-1", "recipient": str(Keypair().pubkey()), "amount": "0.1"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "submitted"

    @pytest.mark.asyncio
    async def test_transfer_insufficient_funds(self, client):
        await login(client)

        response = await client.post(
            "/transfer",
            json={"user_id": "google-1", "recipient": str(Keypair().pubkey()), "amount": "5"},
        )

        assert response.status_code == 422
        assert response.json()["kind"] == "insufficient_funds"

    @pytest.mark.asyncio
    async def test_transfer_invalid_recipient(self, client):
        await login(client)

        response = await client.post(
            "/transfer", json={"user_id": "google-1", "recipient": "nope", "amount": "0.1"}
        )

        assert response.status_code == 400
        assert response.json()["kind"] == "invalid_input"

    @pytest.mark.asyncio
    async def test_transfer_missing_fields(self, client):
        response = await client.post("/transfer", json={"user_id": "google-1"})
        assert response.status_code == 422


class TestSwapEndpoints:
    """Tests for the swap endpoints."""

    @pytest.mark.asyncio
    async def test_quote(self, client):
        response = await client.post("/swap/quote", json=sol_to_usdc())

        assert response.status_code == 200
        data = response.json()
        assert data["to_amount"] == "980000000"
        assert data["quote_id"].startswith("spl-swap:")

    @pytest.mark.asyncio
    async def test_quote_unknown_pair(self, client):
        response = await client.post(
            "/swap/quote", json={"from_token": SOL_MINT, "to_token": SOL_MINT, "amount": "10"}
        )
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_quote_rejects_bad_slippage(self, client):
        response = await client.post("/swap/quote", json={**sol_to_usdc(), "slippage": 2})
        assert response.status_code == 422

    @pytest.mark.asyncio
    async def test_execute_once(self, client):
        await login(client)
        quote = (await client.post("/swap/quote", json=sol_to_usdc())).json()
        body = {"user_id": "google-1", "quote_id": quote["quote_id"]}

        first = await client.post("/swap/execute", json=body)
        second = await client.post("/swap/execute", json=body)

        assert first.status_code == 200
        assert first.json()["status"] == "SUBMITTED"
        assert second.status_code == 404

    @pytest.mark.asyncio
    async def test_execute_invalid_quote_id(self, client):
        await login(client)

        response = await client.post(
            "/swap/execute", json={"user_id": "google-1", "quote_id": "garbage"}
        )

        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_execute_slippage_exceeded(self, client, rpc_client):
        await login(client)
        rpc_client.send_raw_transaction.side_effect = RPCException("custom program error: 0x10")
        quote = (await client.post("/swap/quote", json=sol_to_usdc())).json()

        response = await client.post(
            "/swap/execute", json={"user_id": "google-1", "quote_id": quote["quote_id"]}
        )

        assert response.status_code == 409
        assert response.json()["kind"] == "slippage_exceeded"

    @pytest.mark.asyncio
    async def test_distributions(self, client):
        quote = (await client.post("/swap/quote", json=sol_to_usdc())).json()

        response = await client.get("/swap/distributions", params={"quote_id": quote["quote_id"]})

        assert response.status_code == 200
        distributions = response.json()["distributions"]
        assert distributions == [
            {"protocol": "SPL Token Swap", "percent": 100.0, "amount": "1000000000"}
        ]
