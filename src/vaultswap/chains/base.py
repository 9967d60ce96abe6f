"""Base interfaces for chain adapters.

Transfer flow:
1. Validate recipient and amount (base units)
2. Build the native value-transfer transaction
3. Sign with a scope-bound key handle
4. Broadcast (bounded wait)
5. EVM: poll for one confirmation (bounded); Solana: return after acceptance

A broadcast that was accepted but whose confirmation could not be observed in
time is reported as CONFIRMATION_UNKNOWN, never as a failure.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from vaultswap.config import ChainFamily
from vaultswap.errors import UnavailableError
from vaultswap.units import format_units, native_decimals
from vaultswap.wallets.keys import SigningKeyHandle

logger = logging.getLogger(__name__)


class TxStatus(str, Enum):
    """Confirmation state of a transaction, recomputed on every query."""

    PENDING = "pending"
    SUCCESS = "success"
    FAILED = "failed"


class TransferOutcome(str, Enum):
    """Result of submitting a transfer."""

    CONFIRMED = "confirmed"                        # Included and succeeded
    SUBMITTED = "submitted"                        # Accepted by node, poll status
    FAILED = "failed"                              # Included but reverted
    CONFIRMATION_UNKNOWN = "confirmation_unknown"  # Broadcast, outcome undetermined


@dataclass
class TransferReceipt:
    """Outcome of a native transfer."""

    reference: str
    outcome: TransferOutcome
    amount: int
    explorer_url: Optional[str] = None
    block_number: Optional[int] = None

    def to_dict(self) -> dict:
        return {
            "tx_reference": self.reference,
            "status": self.outcome.value,
            "amount": str(self.amount),
            "explorer_url": self.explorer_url,
            "block_number": self.block_number,
        }


@dataclass
class TokenDelta:
    """Net change of one token balance inside a transaction."""

    token: str
    owner: Optional[str]
    delta: int
    decimals: Optional[int] = None


@dataclass
class TxDetails:
    """Transaction metadata; every field except reference/status is optional
    because chains prune history and RPC nodes differ in what they keep."""

    reference: str
    status: TxStatus
    block_height: Optional[int] = None
    block_time: Optional[int] = None
    fee: Optional[int] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    value: Optional[int] = None
    token_deltas: list[TokenDelta] = field(default_factory=list)


class ChainAdapter(ABC):
    """Abstract base class for chain adapters.

    Each chain family has one implementation. Adapters own a long-lived RPC
    client shared by all concurrent requests; call ``aclose()`` on shutdown.
    """

    family: ChainFamily

    def __init__(
        self,
        rpc_url: str,
        explorer_url: str = "",
        rpc_timeout: float = 30.0,
        broadcast_timeout: float = 30.0,
        confirmation_timeout: float = 120.0,
        poll_interval: float = 2.0,
    ):
        self.rpc_url = rpc_url
        self.explorer_base = explorer_url.rstrip("/")
        self.rpc_timeout = rpc_timeout
        self.broadcast_timeout = broadcast_timeout
        self.confirmation_timeout = confirmation_timeout
        self.poll_interval = poll_interval

    @property
    def decimals(self) -> int:
        return native_decimals(self.family)

    @abstractmethod
    def validate_address(self, address: str) -> bool:
        """Check the chain-specific address format."""
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """Get native balance in base units (0 for unknown addresses).

        Raises:
            InvalidAddress: malformed address
            ChainUnavailable: RPC endpoint unreachable
        """
        pass

    @abstractmethod
    async def transfer(
        self, signing_key: SigningKeyHandle, recipient: str, amount: int
    ) -> TransferReceipt:
        """Send ``amount`` base units of the native asset to ``recipient``.

        Raises:
            InvalidRecipient, InsufficientFunds, BroadcastFailed
        """
        pass

    @abstractmethod
    async def transaction_status(self, reference: str) -> TxStatus:
        """Get the confirmation state of a transaction.

        Unknown or pruned references are PENDING, never FAILED.
        """
        pass

    @abstractmethod
    async def transaction_details(self, reference: str) -> TxDetails:
        """Get transaction metadata, tolerating missing fields."""
        pass

    async def aclose(self) -> None:
        """Release the RPC client."""
        pass

    def explorer_url(self, reference: str) -> Optional[str]:
        if not self.explorer_base:
            return None
        return f"{self.explorer_base}/tx/{reference}"

    def format_amount(self, value: int) -> str:
        return format_units(value, self.decimals)

    async def wait_for_confirmation(self, reference: str) -> Optional[TxStatus]:
        """Poll until the transaction leaves PENDING or the timeout elapses.

        Returns:
            SUCCESS / FAILED, or None if still undetermined at the deadline
        """
        deadline = time.monotonic() + self.confirmation_timeout

        while True:
            try:
                status = await self.transaction_status(reference)
                if status != TxStatus.PENDING:
                    return status
            except UnavailableError as e:
                # Broadcast already happened; keep polling, do not fail
                logger.warning(f"Status poll for {reference} failed: {e.message}")

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                logger.warning(
                    f"No confirmation for {reference} after {self.confirmation_timeout}s"
                )
                return None
            await asyncio.sleep(min(self.poll_interval, remaining))

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(family={self.family.value})"
