"""EVM chain adapter.

Speaks plain JSON-RPC over a shared httpx client and signs locally with
eth-account. Works for Ethereum and any EVM-compatible chain selected by
RPC URL + chain ID. Replay protection comes from the account nonce.
"""

import itertools
import logging
import re
from typing import Any, Optional

import httpx
from web3 import Web3

from vaultswap.chains.base import (
    ChainAdapter,
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

# Standard gas limit for native transfers
TRANSFER_GAS = 21000

TX_HASH_RE = re.compile(r"^0x[0-9a-fA-F]{64}$")


class RpcError(Exception):
    """JSON-RPC error object returned by the node."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message
        super().__init__(f"RPC error {code}: {message}")


class DeliveryUnknown(ChainUnavailable):
    """The request was sent but no response arrived (timeout, reset)."""

    pass


class EVMChainAdapter(ChainAdapter):
    """Ethereum / EVM adapter.

    Transfers wait for one confirmation, bounded by ``confirmation_timeout``.
    """

    family = ChainFamily.EVM

    def __init__(
        self,
        rpc_url: str,
        chain_id: int,
        explorer_url: str = "",
        client: Optional[httpx.AsyncClient] = None,
        **timeouts: float,
    ):
        super().__init__(rpc_url, explorer_url, **timeouts)
        self.chain_id = chain_id
        self._client = client or httpx.AsyncClient(timeout=self.rpc_timeout)
        self._ids = itertools.count(1)

    async def aclose(self) -> None:
        await self._client.aclose()

    # ------------------------------------------------------------------
    # JSON-RPC
    # ------------------------------------------------------------------

    async def _rpc(self, method: str, params: list, timeout: Optional[float] = None) -> Any:
        """Call a JSON-RPC method and return its ``result``.

        Raises:
            ChainUnavailable: transport failure or non-200 response
            RpcError: the node returned an error object
        """
        payload = {"jsonrpc": "2.0", "method": method, "params": params, "id": next(self._ids)}

        try:
            response = await self._client.post(
                self.rpc_url, json=payload, timeout=timeout or self.rpc_timeout
            )
        except (httpx.ConnectError, httpx.ConnectTimeout) as e:
            logger.error(f"EVM RPC {method} unreachable: {type(e).__name__}: {e}")
            raise ChainUnavailable()
        except httpx.HTTPError as e:
            logger.error(f"EVM RPC {method} failed: {type(e).__name__}: {e}")
            raise DeliveryUnknown()

        if response.status_code != 200:
            logger.error(f"EVM RPC {method} HTTP {response.status_code}: {response.text[:200]}")
            raise ChainUnavailable()

        data = response.json()
        if data.get("error"):
            error = data["error"]
            raise RpcError(error.get("code", 0), error.get("message", ""))

        return data.get("result")

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def validate_address(self, address: str) -> bool:
        return bool(address) and Web3.is_address(address)

    async def get_balance(self, address: str) -> int:
        if not self.validate_address(address):
            raise InvalidAddress(f"Invalid EVM address: {address}")

        try:
            result = await self._rpc("eth_getBalance", [Web3.to_checksum_address(address), "latest"])
        except RpcError as e:
            logger.error(f"eth_getBalance error for {address}: {e}")
            raise ChainUnavailable()

        return int(result or "0x0", 16)

    async def get_nonce(self, address: str) -> int:
        result = await self._rpc("eth_getTransactionCount", [address, "pending"])
        return int(result or "0x0", 16)

    async def get_gas_price(self) -> int:
        result = await self._rpc("eth_gasPrice", [])
        return int(result or "0x0", 16)

    def _check_reference(self, reference: str) -> None:
        if not reference or not TX_HASH_RE.match(reference):
            raise InvalidInputError(f"Invalid transaction hash: {reference}")

    async def transaction_status(self, reference: str) -> TxStatus:
        self._check_reference(reference)

        try:
            receipt = await self._rpc("eth_getTransactionReceipt", [reference])
        except RpcError as e:
            logger.warning(f"Receipt lookup error for {reference}: {e}")
            return TxStatus.PENDING

        # No receipt: not mined yet, dropped, or pruned - all ambiguous
        if receipt is None:
            return TxStatus.PENDING

        status = int(receipt.get("status", "0x0"), 16)
        return TxStatus.SUCCESS if status == 1 else TxStatus.FAILED

    async def transaction_details(self, reference: str) -> TxDetails:
        self._check_reference(reference)

        try:
            tx = await self._rpc("eth_getTransactionByHash", [reference])
            receipt = await self._rpc("eth_getTransactionReceipt", [reference])
        except RpcError as e:
            logger.warning(f"Transaction lookup error for {reference}: {e}")
            return TxDetails(reference=reference, status=TxStatus.PENDING)

        details = TxDetails(reference=reference, status=TxStatus.PENDING)

        if tx:
            details.sender = tx.get("from")
            details.recipient = tx.get("to")
            details.value = int(tx.get("value", "0x0"), 16)

        if receipt:
            status = int(receipt.get("status", "0x0"), 16)
            details.status = TxStatus.SUCCESS if status == 1 else TxStatus.FAILED
            if receipt.get("blockNumber"):
                details.block_height = int(receipt["blockNumber"], 16)
            gas_used = receipt.get("gasUsed")
            gas_price = receipt.get("effectiveGasPrice") or (tx or {}).get("gasPrice")
            if gas_used and gas_price:
                details.fee = int(gas_used, 16) * int(gas_price, 16)

        if details.block_height is not None:
            try:
                block = await self._rpc(
                    "eth_getBlockByNumber", [hex(details.block_height), False]
                )
                if block and block.get("timestamp"):
                    details.block_time = int(block["timestamp"], 16)
            except (RpcError, ChainUnavailable) as e:
                logger.debug(f"Block time unavailable for {reference}: {e}")

        return details

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    async def transfer(
        self, signing_key: SigningKeyHandle, recipient: str, amount: int
    ) -> TransferReceipt:
        if not self.validate_address(recipient):
            raise InvalidRecipient(f"Invalid EVM recipient: {recipient}")

        return await self.send_transaction(
            signing_key,
            to=Web3.to_checksum_address(recipient),
            value=amount,
            gas=TRANSFER_GAS,
        )

    async def send_transaction(
        self,
        signing_key: SigningKeyHandle,
        to: str,
        value: int = 0,
        data: Optional[str] = None,
        gas: Optional[int] = None,
    ) -> TransferReceipt:
        """Sign, broadcast and wait for one confirmation.

        Used for native transfers and for aggregator-built contract calls.
        """
        account = signing_key.evm_account()
        sender = account.address

        try:
            nonce = await self.get_nonce(sender)
            gas_price = await self.get_gas_price()
            if gas is None:
                gas = await self._estimate_gas(sender, to, value, data)
            balance = await self.get_balance(sender)
        except RpcError as e:
            logger.error(f"Failed to prepare transaction from {sender}: {e}")
            raise BroadcastFailed()

        if balance < value + gas * gas_price:
            raise InsufficientFunds(
                f"Insufficient balance: have {self.format_amount(balance)}, "
                f"need {self.format_amount(value + gas * gas_price)} including gas"
            )

        tx = {
            "nonce": nonce,
            "gasPrice": gas_price,
            "gas": gas,
            "to": to,
            "value": value,
            "chainId": self.chain_id,
        }
        if data:
            tx["data"] = data

        signed = account.sign_transaction(tx)
        tx_hash = Web3.to_hex(signed.hash)

        await self._broadcast(Web3.to_hex(signed.raw_transaction), tx_hash)
        logger.info(f"Transaction sent! Tx Hash: {tx_hash}")

        status = await self.wait_for_confirmation(tx_hash)
        if status is None:
            outcome = TransferOutcome.CONFIRMATION_UNKNOWN
        elif status == TxStatus.SUCCESS:
            outcome = TransferOutcome.CONFIRMED
        else:
            outcome = TransferOutcome.FAILED

        return TransferReceipt(
            reference=tx_hash,
            outcome=outcome,
            amount=value,
            explorer_url=self.explorer_url(tx_hash),
        )

    async def _estimate_gas(self, sender: str, to: str, value: int, data: Optional[str]) -> int:
        call = {"from": sender, "to": to, "value": hex(value)}
        if data:
            call["data"] = data
        result = await self._rpc("eth_estimateGas", [call])
        # 20% headroom over the node's estimate
        return int(int(result, 16) * 1.2)

    async def _broadcast(self, raw_tx: str, tx_hash: str) -> None:
        """Send a signed transaction, bounded by ``broadcast_timeout``.

        A timeout is not a failure: the node may have accepted the
        transaction, so the caller proceeds to confirmation polling.
        """
        try:
            await self._rpc("eth_sendRawTransaction", [raw_tx], timeout=self.broadcast_timeout)
        except RpcError as e:
            message = e.message.lower()
            if "already known" in message:
                logger.info(f"Transaction {tx_hash} already in mempool")
                return
            logger.error(f"Broadcast error for {tx_hash}: {e}")
            if "insufficient funds" in message:
                raise InsufficientFunds()
            raise BroadcastFailed()
        except DeliveryUnknown:
            # The node may have accepted it; confirmation polling decides
            logger.warning(f"Broadcast of {tx_hash} timed out, polling for inclusion")
        except ChainUnavailable:
            raise BroadcastFailed()
