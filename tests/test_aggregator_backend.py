"""Tests for the Magpie aggregator backend against a mocked REST API."""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest
from eth_account import Account
from eth_account.messages import encode_typed_data

from vaultswap.chains.base import TransferOutcome, TransferReceipt, TxStatus
from vaultswap.chains.evm import EVMChainAdapter
from vaultswap.config import ChainFamily
from vaultswap.errors import (
    AggregatorUnavailable,
    InvalidInputError,
    InvalidQuoteId,
    NoRouteFound,
    QuoteNotFound,
)
from vaultswap.routing.aggregator import MagpieAggregatorBackend
from vaultswap.routing.base import QuoteRequest, SwapState

WETH = "0xC02aaA39b223FE8D0A0e5C4F27eAD9083C756Cc2"
USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ROUTER = "0xba12222222228d8Ba445958a75a0704d566BF2C8"
TX_HASH = "0x" + "cd" * 32

SWAP_FIELDS = [
    {"name": "router", "type": "address"},
    {"name": "sender", "type": "address"},
    {"name": "amountIn", "type": "uint256"},
    {"name": "amountOut", "type": "uint256"},
    {"name": "deadline", "type": "uint256"},
]
DOMAIN = {"name": "Magpie Router", "version": "3", "chainId": 1, "verifyingContract": ROUTER}


class FakeAggregator:
    """Routes requests by path to canned responses."""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, httpx.Response] = {
            "/aggregator/quote": httpx.Response(
                200,
                json={
                    "quote_id": "q-123",
                    "to_amount": "2000",
                    "estimated_gas": "150000",
                    "route": [
                        {"protocol": "Uniswap V3", "percent": 100},
                    ],
                },
            ),
            "/aggregator/transaction": httpx.Response(
                200, json={"to": ROUTER.lower(), "data": "0xabcdef", "value": "0x0"}
            ),
        }

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        response = self.responses.get(request.url.path)
        if response is None:
            return httpx.Response(404, json={"error": "not found"})
        # Responses are single use, copy per request
        return httpx.Response(
            response.status_code, content=response.content, headers=response.headers
        )

    def last(self, path: str) -> httpx.Request:
        return [r for r in self.requests if r.url.path == path][-1]


@pytest.fixture
def aggregator() -> FakeAggregator:
    return FakeAggregator()


@pytest.fixture
def adapter() -> EVMChainAdapter:
    adapter = EVMChainAdapter("http://node.test", chain_id=1)
    adapter.send_transaction = AsyncMock(
        return_value=TransferReceipt(TX_HASH, TransferOutcome.CONFIRMED, 0)
    )
    return adapter


@pytest.fixture
def backend(aggregator, adapter, clock) -> MagpieAggregatorBackend:
    client = httpx.AsyncClient(transport=httpx.MockTransport(aggregator.handler))
    return MagpieAggregatorBackend(adapter, "https://api.magpie.test/", client=client, clock=clock)


def weth_to_usdc(**kwargs) -> QuoteRequest:
    return QuoteRequest(from_token=WETH, to_token=USDC, amount="1000000000000000000", **kwargs)


class TestGetQuote:
    """Tests for aggregator quotes."""

    @pytest.mark.asyncio
    async def test_quote(self, backend, aggregator, clock):
        quote = await backend.get_quote(weth_to_usdc(from_address=ROUTER))

        assert quote.quote_id == "q-123"
        assert quote.to_amount == 2000
        assert quote.min_to_amount == 1990
        assert quote.chain_family == ChainFamily.EVM
        assert quote.route[0].protocol == "Uniswap V3"
        assert quote.estimated_gas == "150000"
        assert (quote.valid_until - clock.now).total_seconds() == 600

        params = aggregator.last("/aggregator/quote").url.params
        assert params["fromTokenAddress"] == WETH
        assert params["toTokenAddress"] == USDC
        assert params["amount"] == "1000000000000000000"
        assert params["network"] == "ethereum"
        assert params["gasless"] == "false"
        assert "affiliateAddress" not in params

    @pytest.mark.asyncio
    async def test_provider_expiry_wins_when_earlier(self, backend, aggregator):
        aggregator.responses["/aggregator/quote"] = httpx.Response(
            200, json={"id": "q-9", "to_amount": "5", "valid_until": "2024-01-01T00:01:00Z"}
        )

        quote = await backend.get_quote(weth_to_usdc())

        assert quote.quote_id == "q-9"
        assert quote.valid_until == datetime(2024, 1, 1, 0, 1, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_route(self, backend, aggregator):
        aggregator.responses["/aggregator/quote"] = httpx.Response(404, json={})
        with pytest.raises(NoRouteFound):
            await backend.get_quote(weth_to_usdc())

    @pytest.mark.asyncio
    async def test_rejected_request(self, backend, aggregator):
        aggregator.responses["/aggregator/quote"] = httpx.Response(400, json={"error": "bad"})
        with pytest.raises(InvalidInputError):
            await backend.get_quote(weth_to_usdc())

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [
            httpx.Response(502, text="bad gateway"),
            httpx.Response(200, text="<html>"),
            httpx.Response(200, json={"route": []}),
            httpx.Response(200, json={"quote_id": "q-1", "to_amount": "1.5"}),
            httpx.Response(200, json={"quote_id": "q-1", "to_amount": "lots"}),
            httpx.Response(200, json={"quote_id": "q-1", "to_amount": "5", "route": ["x"]}),
            httpx.Response(200, json=["q-1", "5"]),
        ],
    )
    async def test_provider_failure(self, backend, aggregator, response):
        aggregator.responses["/aggregator/quote"] = response
        with pytest.raises(AggregatorUnavailable):
            await backend.get_quote(weth_to_usdc())

    @pytest.mark.asyncio
    async def test_unreachable(self, adapter):
        def refuse(request):
            raise httpx.ConnectError("refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        backend = MagpieAggregatorBackend(adapter, "https://api.magpie.test", client=client)

        with pytest.raises(AggregatorUnavailable):
            await backend.get_quote(weth_to_usdc())


class TestExecuteSwap:
    """Tests for aggregator execution."""

    @pytest.mark.asyncio
    async def test_execute_signs_aggregator_transaction(self, backend, adapter, keys):
        _, material = keys.generate(ChainFamily.EVM)
        quote = await backend.get_quote(weth_to_usdc())

        with keys.decode(ChainFamily.EVM, material) as handle:
            result = await backend.execute_swap(quote.quote_id, handle)

        assert result.status == SwapState.CONFIRMED
        assert result.tx_reference == TX_HASH
        kwargs = adapter.send_transaction.await_args.kwargs
        assert kwargs["to"] == ROUTER
        assert kwargs["data"] == "0xabcdef"
        assert kwargs["value"] == 0

    @pytest.mark.asyncio
    async def test_quote_executes_once(self, backend, aggregator, keys):
        _, material = keys.generate(ChainFamily.EVM)
        quote = await backend.get_quote(weth_to_usdc())

        with keys.decode(ChainFamily.EVM, material) as handle:
            await backend.execute_swap(quote.quote_id, handle)
            with pytest.raises(QuoteNotFound):
                await backend.execute_swap(quote.quote_id, handle)

        calls = [r for r in aggregator.requests if r.url.path == "/aggregator/transaction"]
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_invalid_quote_id(self, backend, keys):
        _, material = keys.generate(ChainFamily.EVM)
        with keys.decode(ChainFamily.EVM, material) as handle:
            with pytest.raises(InvalidQuoteId):
                await backend.execute_swap("not a valid id!", handle)

    @pytest.mark.asyncio
    async def test_unconfirmed_swap_stays_submitted(self, backend, adapter, keys):
        adapter.send_transaction.return_value = TransferReceipt(
            TX_HASH, TransferOutcome.CONFIRMATION_UNKNOWN, 0
        )
        _, material = keys.generate(ChainFamily.EVM)
        quote = await backend.get_quote(weth_to_usdc())

        with keys.decode(ChainFamily.EVM, material) as handle:
            result = await backend.execute_swap(quote.quote_id, handle)

        assert result.status == SwapState.SUBMITTED

    @pytest.mark.asyncio
    async def test_gasless_execution_signs_typed_data(self, backend, aggregator, adapter, keys):
        address, material = keys.generate(ChainFamily.EVM)
        message = {
            "router": ROUTER,
            "sender": address,
            "amountIn": "1000000000000000000",
            "amountOut": "1990",
            "deadline": "1700000000",
        }
        aggregator.responses["/aggregator/quote"] = httpx.Response(
            200,
            json={
                "quote_id": "q-gasless",
                "to_amount": "2000",
                "message": {"domain": DOMAIN, "types": {"Swap": SWAP_FIELDS}, "message": message},
            },
        )
        aggregator.responses["/user-manager/execute-swap"] = httpx.Response(
            200, json={"swap_id": "s-1", "status": "PENDING"}
        )

        quote = await backend.get_quote(weth_to_usdc(gasless=True))
        with keys.decode(ChainFamily.EVM, material) as handle:
            result = await backend.execute_swap(quote.quote_id, handle)

        assert result.swap_id == "s-1"
        assert result.status == SwapState.SUBMITTED
        adapter.send_transaction.assert_not_awaited()

        body = json.loads(aggregator.last("/user-manager/execute-swap").content)
        assert body["quoteId"] == "q-gasless"
        signable = encode_typed_data(
            domain_data=DOMAIN,
            message_types={"Swap": SWAP_FIELDS},
            message_data={
                **message,
                "amountIn": 10**18,
                "amountOut": 1990,
                "deadline": 1700000000,
            },
        )
        assert Account.recover_message(signable, signature=body["swapSignature"]) == address

    @pytest.mark.asyncio
    async def test_malformed_gasless_message_rejected_at_quote(self, backend, aggregator):
        aggregator.responses["/aggregator/quote"] = httpx.Response(
            200,
            json={"quote_id": "q-gasless", "to_amount": "2000", "message": {"domain": DOMAIN}},
        )

        with pytest.raises(AggregatorUnavailable):
            await backend.get_quote(weth_to_usdc(gasless=True))
        assert "q-gasless" not in backend.quote_book

    @pytest.mark.asyncio
    async def test_unsignable_gasless_message(self, backend, aggregator, keys):
        _, material = keys.generate(ChainFamily.EVM)
        message = {"router": ROUTER, "sender": "not-an-address", "amountIn": "1.5"}
        aggregator.responses["/aggregator/quote"] = httpx.Response(
            200,
            json={
                "quote_id": "q-gasless",
                "to_amount": "2000",
                "message": {"domain": DOMAIN, "types": {"Swap": SWAP_FIELDS}, "message": message},
            },
        )

        quote = await backend.get_quote(weth_to_usdc(gasless=True))
        with keys.decode(ChainFamily.EVM, material) as handle:
            with pytest.raises(AggregatorUnavailable):
                await backend.execute_swap(quote.quote_id, handle)

        assert not [r for r in aggregator.requests if r.url.path == "/user-manager/execute-swap"]


class TestSwapStatus:
    """Tests for status and metadata queries."""

    @pytest.mark.asyncio
    async def test_status_counts(self, backend, aggregator):
        aggregator.responses["/user-manager/status-counts"] = httpx.Response(
            200, json={"pending": 1, "error": 2, "completed": 3}
        )

        summary = await backend.get_swap_status(ROUTER)

        assert (summary.pending, summary.failed, summary.completed) == (1, 2, 3)
        params = aggregator.last("/user-manager/status-counts").url.params
        assert params["walletAddress"] == ROUTER

    @pytest.mark.asyncio
    async def test_status_invalid_wallet(self, backend):
        with pytest.raises(InvalidInputError):
            await backend.get_swap_status("nope")

    @pytest.mark.asyncio
    async def test_unknown_swap_is_pending(self, backend):
        summary = await backend.get_swap_status_for("s-unknown")

        assert summary.pending == 1
        assert summary.swaps[0].status == TxStatus.PENDING

    @pytest.mark.asyncio
    async def test_swap_details(self, backend, aggregator):
        aggregator.responses["/user-manager/swap"] = httpx.Response(
            200,
            json={
                "swap_id": "s-1",
                "status": "SUCCESS",
                "tx_hash": TX_HASH,
                "from_token": {"address": WETH},
                "to_token": {"address": USDC},
                "from_amount": "1000",
                "to_amount": "0x10",
                "timestamp": 1700000000,
                "gas_used": "21000",
                "gas_price": "1000000000",
            },
        )

        details = await backend.get_swap_details("s-1")

        assert details.status == TxStatus.SUCCESS
        assert details.from_token == WETH
        assert details.to_amount == 16
        assert details.fee == 21000 * 10**9

    @pytest.mark.asyncio
    async def test_swap_details_with_unparseable_amounts(self, backend, aggregator):
        aggregator.responses["/user-manager/swap"] = httpx.Response(
            200,
            json={
                "swap_id": "s-1",
                "status": "SUCCESS",
                "tx_hash": TX_HASH,
                "from_amount": "1.5",
                "to_amount": "n/a",
                "gas_used": "21000",
                "gas_price": "cheap",
                "block_number": "latest",
            },
        )

        details = await backend.get_swap_details("s-1")

        assert details.status == TxStatus.SUCCESS
        assert details.tx_reference == TX_HASH
        assert details.from_amount is None
        assert details.to_amount is None
        assert details.fee is None
        assert details.block_height is None

    @pytest.mark.asyncio
    async def test_status_counts_with_garbage_values(self, backend, aggregator):
        aggregator.responses["/user-manager/status-counts"] = httpx.Response(
            200, json={"pending": "2", "error": "?", "completed": 1.5}
        )

        summary = await backend.get_swap_status(ROUTER)

        assert (summary.pending, summary.failed, summary.completed) == (2, 0, 0)

    @pytest.mark.asyncio
    async def test_distributions_normalized(self, backend, aggregator):
        aggregator.responses["/aggregator/distributions"] = httpx.Response(
            200,
            json={
                "distributions": [
                    {"dex": "Uniswap", "percentage": 30},
                    {"dex": "Curve", "percentage": 30},
                ]
            },
        )

        distributions = await backend.get_distributions("q-123")

        assert [d.route_leg for d in distributions] == ["Uniswap", "Curve"]
        assert sum(d.share_percent for d in distributions) == pytest.approx(100.0)
        assert distributions[0].share_percent == pytest.approx(50.0)
        params = aggregator.last("/aggregator/distributions").url.params
        assert params["quote-id"] == "q-123"

    @pytest.mark.asyncio
    async def test_distributions_unknown_quote(self, backend):
        with pytest.raises(QuoteNotFound):
            await backend.get_distributions("q-missing")
