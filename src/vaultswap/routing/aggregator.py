"""Magpie swap aggregator backend (EVM).

REST endpoints used:
    GET  /aggregator/quote
    GET  /aggregator/transaction?quoteId=
    POST /user-manager/execute-swap          (gasless)
    GET  /user-manager/status-counts?walletAddress=
    GET  /user-manager/swap?swapId=
    GET  /aggregator/distributions?quote-id=

Non-gasless swaps sign the returned ``{to, data, value}`` call locally and
broadcast it through the EVM chain adapter. Gasless swaps sign the quote's
EIP-712 ``Swap`` message and hand the signature to the aggregator.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
from web3 import Web3

from vaultswap.chains.base import TxStatus
from vaultswap.chains.evm import EVMChainAdapter
from vaultswap.config import ChainFamily
from vaultswap.errors import (
    AggregatorUnavailable,
    InvalidInputError,
    InvalidQuoteId,
    NoRouteFound,
    NotFoundError,
    QuoteNotFound,
)
from vaultswap.routing.base import (
    Distribution,
    Quote,
    QuoteRequest,
    RouteLeg,
    SwapBackend,
    SwapDetails,
    SwapResult,
    SwapState,
    SwapStatusItem,
    SwapStatusSummary,
    min_amount_out,
    normalize_shares,
)
from vaultswap.units import parse_base_units
from vaultswap.wallets.keys import SigningKeyHandle

logger = logging.getLogger(__name__)

QUOTE_ID_RE = re.compile(r"^[A-Za-z0-9_.:\-]{1,256}$")

_COMPLETED = {"SUCCESS", "SUCCEEDED", "COMPLETED", "CONFIRMED", "EXECUTED"}
_FAILED = {"FAILED", "ERROR", "REVERTED", "CANCELLED"}


def _tx_status(value: Optional[str]) -> TxStatus:
    status = (value or "").upper()
    if status in _COMPLETED:
        return TxStatus.SUCCESS
    if status in _FAILED:
        return TxStatus.FAILED
    return TxStatus.PENDING


def _swap_state(value: Optional[str]) -> SwapState:
    status = _tx_status(value)
    if status == TxStatus.SUCCESS:
        return SwapState.CONFIRMED
    if status == TxStatus.FAILED:
        return SwapState.FAILED
    return SwapState.SUBMITTED


def _parse_int(value: Any) -> Optional[int]:
    """Parse decimal or 0x-hex integers as providers send either.

    Returns None for anything that is not a whole number (``"1.5"``, ``"n/a"``).
    """
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    text = str(value).strip()
    try:
        return int(text, 16) if text.startswith(("0x", "0X")) else int(text)
    except ValueError:
        return None


def _parse_percent(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _typed_swap_parts(typed: Any) -> tuple[dict, list[dict], dict]:
    """Split a provider EIP-712 payload into (domain, Swap fields, message).

    Raises:
        AggregatorUnavailable: the payload is not a usable ``Swap`` message
    """
    try:
        domain, fields, message = typed["domain"], typed["types"]["Swap"], typed["message"]
    except (KeyError, TypeError):
        logger.error("Aggregator returned a malformed gasless swap message")
        raise AggregatorUnavailable()
    valid_fields = isinstance(fields, list) and all(isinstance(f, dict) for f in fields)
    if not isinstance(domain, dict) or not isinstance(message, dict) or not valid_fields:
        logger.error("Aggregator returned a malformed gasless swap message")
        raise AggregatorUnavailable()
    return domain, fields, message


def _coerce_typed_values(fields: list[dict], message: dict) -> dict:
    """Convert numeric strings to int for (u)int fields of an EIP-712 struct."""
    coerced = dict(message)
    for spec in fields:
        name, field_type = spec.get("name"), str(spec.get("type") or "")
        if field_type.startswith(("uint", "int")) and isinstance(coerced.get(name), str):
            coerced[name] = _parse_int(coerced[name])
    return coerced


class MagpieAggregatorBackend(SwapBackend):
    """Aggregator backend speaking the Magpie REST API."""

    name = "magpie"
    family = ChainFamily.EVM

    def __init__(
        self,
        adapter: EVMChainAdapter,
        base_url: str,
        network_name: str = "ethereum",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        **kwargs,
    ):
        super().__init__(**kwargs)
        self.adapter = adapter
        self.base_url = base_url.rstrip("/")
        self.network_name = network_name
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    async def _request(
        self,
        method: str,
        path: str,
        params: Optional[dict] = None,
        json: Optional[dict] = None,
        allow_not_found: bool = False,
        not_found: type[NotFoundError] = NotFoundError,
    ) -> Optional[dict]:
        """Call the aggregator and return the decoded JSON body.

        Returns None for 404 when ``allow_not_found`` is set.

        Raises:
            AggregatorUnavailable: transport errors, 5xx, undecodable body
            NotFoundError / InvalidInputError: 404 / other 4xx
        """
        url = f"{self.base_url}{path}"
        if params:
            params = {k: v for k, v in params.items() if v is not None}

        try:
            response = await self._client.request(
                method, url, params=params, json=json, headers={"Accept": "application/json"}
            )
        except httpx.HTTPError as e:
            logger.error(f"Aggregator {method} {path} failed: {type(e).__name__}: {e}")
            raise AggregatorUnavailable()

        if response.status_code == 404:
            if allow_not_found:
                return None
            logger.warning(f"Aggregator {path} 404: {response.text[:200]}")
            raise not_found()

        if 400 <= response.status_code < 500:
            logger.warning(f"Aggregator {path} rejected request ({response.status_code}): "
                           f"{response.text[:200]}")
            raise InvalidInputError("Aggregator rejected the request")

        if response.status_code != 200:
            logger.error(f"Aggregator {path} error {response.status_code}: {response.text[:200]}")
            raise AggregatorUnavailable()

        try:
            return response.json()
        except ValueError:
            logger.error(f"Aggregator {path} returned non-JSON body")
            raise AggregatorUnavailable()

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def get_quote(self, request: QuoteRequest) -> Quote:
        amount = parse_base_units(request.amount)
        slippage = self.resolve_slippage(request.slippage)

        data = await self._request(
            "GET",
            "/aggregator/quote",
            params={
                "network": self.network_name,
                "fromTokenAddress": request.from_token,
                "toTokenAddress": request.to_token,
                "amount": str(amount),
                "slippage": slippage,
                "fromAddress": request.from_address,
                "toAddress": request.to_address,
                "gasless": str(request.gasless).lower(),
                "affiliateAddress": request.affiliate_address,
                "affiliateFee": request.affiliate_fee,
            },
            not_found=NoRouteFound,
        )

        if not isinstance(data, dict):
            logger.error("Aggregator quote body is not an object")
            raise AggregatorUnavailable()

        quote_id = data.get("quote_id") or data.get("id")
        to_amount = _parse_int(data.get("to_amount") or data.get("to_token_amount"))
        if not quote_id or to_amount is None or to_amount <= 0:
            logger.error(f"Aggregator quote missing id or amount: {list(data)}")
            raise AggregatorUnavailable()

        try:
            route = [
                RouteLeg(
                    protocol=step.get("protocol", ""),
                    percent=_parse_percent(step.get("percent", 0)),
                    from_token=step.get("from_token_address", request.from_token),
                    to_token=step.get("to_token_address", request.to_token),
                )
                for step in data.get("route") or []
            ]
        except AttributeError:
            logger.error("Aggregator quote has a malformed route")
            raise AggregatorUnavailable()

        created_at, valid_until = self._stamp()
        provider_expiry = _parse_timestamp(data.get("valid_until"))
        if provider_expiry is not None:
            valid_until = min(valid_until, provider_expiry)

        extra = {}
        if data.get("message"):
            if request.gasless:
                _typed_swap_parts(data["message"])
            extra["typed_data"] = data["message"]

        quote = Quote(
            quote_id=str(quote_id),
            from_token=request.from_token,
            to_token=request.to_token,
            from_amount=_parse_int(data.get("from_amount")) or amount,
            to_amount=to_amount,
            min_to_amount=min_amount_out(to_amount, slippage),
            slippage=slippage,
            route=route,
            created_at=created_at,
            valid_until=valid_until,
            backend=self.name,
            chain_family=self.family,
            gasless=request.gasless,
            estimated_gas=data.get("estimated_gas"),
            extra=extra,
        )
        self.quote_book.add(quote)
        return quote

    def validate_quote_id(self, quote_id: str) -> None:
        if not QUOTE_ID_RE.match(quote_id):
            raise InvalidQuoteId()

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def _execute(self, quote: Quote, signing_key: SigningKeyHandle) -> SwapResult:
        if quote.gasless:
            return await self._execute_gasless(quote, signing_key)

        tx = await self._request(
            "GET",
            "/aggregator/transaction",
            params={"quoteId": quote.quote_id},
            not_found=QuoteNotFound,
        )
        to = tx.get("to")
        if not to or not Web3.is_address(to):
            logger.error(f"Aggregator transaction for {quote.quote_id} has no valid target")
            raise AggregatorUnavailable()

        receipt = await self.adapter.send_transaction(
            signing_key,
            to=Web3.to_checksum_address(to),
            value=_parse_int(tx.get("value")) or 0,
            data=tx.get("data"),
        )
        return SwapResult.from_receipt(receipt)

    async def _execute_gasless(self, quote: Quote, signing_key: SigningKeyHandle) -> SwapResult:
        typed = quote.extra.get("typed_data")
        if not typed:
            raise InvalidInputError("Quote has no gasless swap message to sign")

        domain, swap_fields, message = _typed_swap_parts(typed)
        account = signing_key.evm_account()
        try:
            signed = account.sign_typed_data(
                domain_data=domain,
                message_types={"Swap": swap_fields},
                message_data=_coerce_typed_values(swap_fields, message),
            )
        except Exception as e:
            logger.error(f"Could not sign gasless swap {quote.quote_id}: {type(e).__name__}")
            raise AggregatorUnavailable()

        data = await self._request(
            "POST",
            "/user-manager/execute-swap",
            json={
                "networkName": self.network_name,
                "quoteId": quote.quote_id,
                "swapSignature": Web3.to_hex(signed.signature),
            },
            not_found=QuoteNotFound,
        )

        swap_id = data.get("swap_id") or data.get("id") or quote.quote_id
        error = data.get("error")
        if error:
            logger.warning(f"Gasless swap {swap_id} reported error: {error}")
        return SwapResult(
            swap_id=str(swap_id),
            status=_swap_state(data.get("status")),
            tx_reference=data.get("tx_hash"),
            error="Swap failed at the aggregator" if error else None,
        )

    # ------------------------------------------------------------------
    # Status and metadata
    # ------------------------------------------------------------------

    async def get_swap_status(self, wallet_address: str) -> SwapStatusSummary:
        if not self.adapter.validate_address(wallet_address):
            raise InvalidInputError(f"Invalid EVM address: {wallet_address}")

        data = await self._request(
            "GET", "/user-manager/status-counts", params={"walletAddress": wallet_address}
        )
        return SwapStatusSummary(
            pending=_parse_int(data.get("pending")) or 0,
            failed=_parse_int(data.get("error")) or 0,
            completed=_parse_int(data.get("completed")) or 0,
            swaps=[
                SwapStatusItem(
                    swap_id=str(item.get("swap_id", "")),
                    status=_tx_status(item.get("status")),
                    tx_reference=item.get("tx_hash"),
                )
                for item in data.get("swaps") or []
            ],
        )

    async def get_swap_status_for(self, reference: str) -> SwapStatusSummary:
        data = await self._request(
            "GET", "/user-manager/swap", params={"swapId": reference}, allow_not_found=True
        )
        summary = SwapStatusSummary()
        status = _tx_status(data.get("status")) if data else TxStatus.PENDING
        tx_hash = data.get("tx_hash") if data else None
        summary.add(SwapStatusItem(reference, status, tx_hash))
        return summary

    async def get_swap_details(self, reference: str) -> SwapDetails:
        data = await self._request(
            "GET", "/user-manager/swap", params={"swapId": reference}, allow_not_found=True
        )
        if not data:
            return SwapDetails(swap_id=reference, status=TxStatus.PENDING)

        from_token = data.get("from_token") or {}
        to_token = data.get("to_token") or {}
        return SwapDetails(
            swap_id=str(data.get("swap_id") or data.get("id") or reference),
            status=_tx_status(data.get("status")),
            tx_reference=data.get("tx_hash"),
            from_token=from_token.get("address") if isinstance(from_token, dict) else from_token,
            to_token=to_token.get("address") if isinstance(to_token, dict) else to_token,
            from_amount=_parse_int(data.get("from_amount")),
            to_amount=_parse_int(data.get("to_amount")),
            timestamp=data.get("timestamp"),
            block_height=_parse_int(data.get("block_number")),
            fee=_fee(data.get("gas_used"), data.get("gas_price")),
        )

    async def get_distributions(self, quote_id: str) -> list[Distribution]:
        self.validate_quote_id(quote_id)
        data = await self._request(
            "GET",
            "/aggregator/distributions",
            params={"quote-id": quote_id},
            not_found=QuoteNotFound,
        )
        distributions = [
            Distribution(
                route_leg=item.get("protocol") or item.get("dex", ""),
                share_percent=_parse_percent(item.get("percent", item.get("percentage", 0))),
                amount=item.get("amount"),
            )
            for item in data.get("distributions") or []
        ]
        return normalize_shares(distributions)


def _fee(gas_used: Any, gas_price: Any) -> Optional[int]:
    used, price = _parse_int(gas_used), _parse_int(gas_price)
    if used is None or price is None:
        return None
    return used * price
