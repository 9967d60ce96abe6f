"""Abstract swap backend interface and shared quote types.

Swap lifecycle:
    QUOTED -> SUBMITTED -> CONFIRMED | FAILED | SUBMITTED (outcome unknown)

Every quote a backend issues is recorded in a QuoteBook. Executing a quote
removes it from the book first, so the same quote can never be executed
twice, even by concurrent requests.
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import ROUND_FLOOR, Decimal
from enum import Enum
from typing import Any, Callable, Optional

from vaultswap.chains.base import TransferOutcome, TransferReceipt, TxStatus
from vaultswap.config import ChainFamily
from vaultswap.errors import (
    InvalidInputError,
    InvalidQuoteId,
    QuoteExpired,
    QuoteNotFound,
)
from vaultswap.wallets.keys import SigningKeyHandle

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SwapState(str, Enum):
    """Where a swap is in its lifecycle."""

    QUOTED = "QUOTED"
    SUBMITTED = "SUBMITTED"
    CONFIRMED = "CONFIRMED"
    FAILED = "FAILED"


_OUTCOME_STATES = {
    TransferOutcome.CONFIRMED: SwapState.CONFIRMED,
    TransferOutcome.SUBMITTED: SwapState.SUBMITTED,
    TransferOutcome.FAILED: SwapState.FAILED,
    # Broadcast happened; the caller re-polls the reference
    TransferOutcome.CONFIRMATION_UNKNOWN: SwapState.SUBMITTED,
}


@dataclass
class QuoteRequest:
    """Canonical quote request, shared by every backend."""

    from_token: str
    to_token: str
    amount: str  # Smallest units of from_token
    slippage: Optional[float] = None
    gasless: bool = False
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    affiliate_address: Optional[str] = None
    affiliate_fee: Optional[float] = None


@dataclass
class RouteLeg:
    """One hop (or split) of a swap route."""

    protocol: str
    percent: float
    from_token: str
    to_token: str

    def to_dict(self) -> dict:
        return {
            "protocol": self.protocol,
            "percent": self.percent,
            "from_token_address": self.from_token,
            "to_token_address": self.to_token,
        }


@dataclass
class Quote:
    """An issued swap quote. Treated as immutable once recorded."""

    quote_id: str
    from_token: str
    to_token: str
    from_amount: int
    to_amount: int
    min_to_amount: int
    slippage: float
    route: list[RouteLeg]
    created_at: datetime
    valid_until: datetime
    backend: str
    chain_family: ChainFamily
    gasless: bool = False
    estimated_gas: Optional[str] = None
    # Provider payload needed at execution (e.g. EIP-712 typed data)
    extra: dict = field(default_factory=dict)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.valid_until

    def to_dict(self) -> dict:
        return {
            "quote_id": self.quote_id,
            "from_token": self.from_token,
            "to_token": self.to_token,
            "from_amount": str(self.from_amount),
            "to_amount": str(self.to_amount),
            "min_to_amount": str(self.min_to_amount),
            "slippage": self.slippage,
            "route": [leg.to_dict() for leg in self.route],
            "created_at": self.created_at.isoformat(),
            "valid_until": self.valid_until.isoformat(),
            "backend": self.backend,
            "chain": self.chain_family.value,
            "gasless": self.gasless,
            "estimated_gas": self.estimated_gas,
        }


@dataclass
class SwapResult:
    """Result of executing a quote."""

    swap_id: str
    status: SwapState
    tx_reference: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def from_receipt(cls, receipt: TransferReceipt) -> "SwapResult":
        return cls(
            swap_id=receipt.reference,
            status=_OUTCOME_STATES[receipt.outcome],
            tx_reference=receipt.reference,
        )

    def to_dict(self) -> dict:
        return {
            "swap_id": self.swap_id,
            "status": self.status.value,
            "tx_hash": self.tx_reference,
            "error": self.error,
        }


@dataclass
class SwapStatusItem:
    swap_id: str
    status: TxStatus
    tx_reference: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "swap_id": self.swap_id,
            "status": self.status.value,
            "tx_hash": self.tx_reference,
        }


@dataclass
class SwapStatusSummary:
    """Aggregate swap counts for a wallet (or a single swap)."""

    pending: int = 0
    failed: int = 0
    completed: int = 0
    swaps: list[SwapStatusItem] = field(default_factory=list)

    def add(self, item: SwapStatusItem) -> None:
        self.swaps.append(item)
        if item.status == TxStatus.SUCCESS:
            self.completed += 1
        elif item.status == TxStatus.FAILED:
            self.failed += 1
        else:
            self.pending += 1

    def to_dict(self) -> dict:
        return {
            "pending": self.pending,
            "failed": self.failed,
            "completed": self.completed,
            "swaps": [s.to_dict() for s in self.swaps],
        }


@dataclass
class SwapDetails:
    """Swap metadata. Chains and providers drop history, so most fields
    are optional."""

    swap_id: str
    status: TxStatus
    tx_reference: Optional[str] = None
    from_token: Optional[str] = None
    to_token: Optional[str] = None
    from_amount: Optional[int] = None
    to_amount: Optional[int] = None
    timestamp: Optional[int] = None
    block_height: Optional[int] = None
    fee: Optional[int] = None
    tokens: list[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "swap_id": self.swap_id,
            "status": self.status.value,
            "tx_hash": self.tx_reference,
            "from_token": self.from_token,
            "to_token": self.to_token,
            "from_amount": None if self.from_amount is None else str(self.from_amount),
            "to_amount": None if self.to_amount is None else str(self.to_amount),
            "timestamp": self.timestamp,
            "block_height": self.block_height,
            "fee": None if self.fee is None else str(self.fee),
            "tokens": self.tokens,
        }


@dataclass
class Distribution:
    """Share of a quote routed through one leg."""

    route_leg: str
    share_percent: float
    amount: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "protocol": self.route_leg,
            "percent": self.share_percent,
            "amount": self.amount,
        }


def normalize_shares(distributions: list[Distribution]) -> list[Distribution]:
    """Rescale shares so they sum to exactly 100, keeping order."""
    total = sum(d.share_percent for d in distributions)
    if total <= 0 or abs(total - 100.0) < 1e-9:
        return distributions

    scaled = [
        Distribution(d.route_leg, round(d.share_percent * 100.0 / total, 6), d.amount)
        for d in distributions
    ]
    # Put the rounding remainder on the last leg
    drift = 100.0 - sum(d.share_percent for d in scaled)
    scaled[-1].share_percent = round(scaled[-1].share_percent + drift, 6)
    return scaled


def min_amount_out(to_amount: int, slippage: float) -> int:
    """floor(to_amount * (1 - slippage)) in exact decimal arithmetic."""
    value = Decimal(to_amount) * (Decimal(1) - Decimal(str(slippage)))
    return int(value.to_integral_value(rounding=ROUND_FLOOR))


class QuoteBook:
    """Process-local record of issued quotes.

    ``consume`` is a single dict pop with no await in between, so on one
    event loop exactly one caller can take a given quote.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._quotes: dict[str, Quote] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._quotes)

    def __contains__(self, quote_id: str) -> bool:
        return quote_id in self._quotes

    def add(self, quote: Quote) -> None:
        self.prune()
        self._quotes[quote.quote_id] = quote

    def get(self, quote_id: str) -> Quote:
        """Look up a quote without consuming it."""
        quote = self._quotes.get(quote_id)
        if quote is None:
            raise QuoteNotFound(quote_id=quote_id)
        return quote

    def consume(self, quote_id: str) -> Quote:
        """Remove and return a quote for execution.

        Raises:
            QuoteNotFound: never issued, or already executed
            QuoteExpired: past its ``valid_until``
        """
        quote = self._quotes.pop(quote_id, None)
        self.prune()
        if quote is None:
            raise QuoteNotFound(quote_id=quote_id)
        if quote.is_expired(self._clock()):
            logger.info(f"Rejected expired quote {quote_id}")
            raise QuoteExpired(quote_id=quote_id)
        return quote

    def prune(self) -> int:
        """Drop expired quotes. Returns how many were removed."""
        now = self._clock()
        expired = [qid for qid, q in self._quotes.items() if q.is_expired(now)]
        for qid in expired:
            del self._quotes[qid]
        return len(expired)


class SwapBackend(ABC):
    """Abstract base class for swap liquidity backends.

    Subclasses implement pricing (``get_quote``) and the chain side of
    execution (``_execute``); quote bookkeeping lives here.
    """

    name: str
    family: ChainFamily

    def __init__(
        self,
        quote_book: Optional[QuoteBook] = None,
        quote_ttl_seconds: int = 600,
        default_slippage: float = 0.005,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.quote_book = quote_book or QuoteBook(clock)
        self.quote_ttl = timedelta(seconds=quote_ttl_seconds)
        self.default_slippage = default_slippage
        self._clock = clock

    def resolve_slippage(self, slippage: Optional[float]) -> float:
        value = self.default_slippage if slippage is None else slippage
        if not 0 <= value < 1:
            raise InvalidInputError("Slippage must be between 0 and 1")
        return value

    @abstractmethod
    async def get_quote(self, request: QuoteRequest) -> Quote:
        """Price a swap and record the quote.

        Raises:
            NoRouteFound: no pool/route for the token pair
            InvalidAmount: amount not a positive integer string
        """
        pass

    @abstractmethod
    def validate_quote_id(self, quote_id: str) -> None:
        """Reject malformed quote ids with InvalidQuoteId."""
        pass

    @abstractmethod
    async def _execute(self, quote: Quote, signing_key: SigningKeyHandle) -> SwapResult:
        """Sign and submit the swap for an already-consumed quote."""
        pass

    async def execute_swap(self, quote_id: str, signing_key: SigningKeyHandle) -> SwapResult:
        """Execute a previously issued quote.

        Raises:
            InvalidQuoteId, QuoteNotFound, QuoteExpired, PoolNotFound,
            SlippageExceeded, InsufficientFunds, BroadcastFailed
        """
        if not quote_id or not quote_id.strip():
            raise InvalidQuoteId()
        self.validate_quote_id(quote_id)

        quote = self.quote_book.consume(quote_id)
        logger.info(
            f"Executing {self.name} swap {quote.from_amount} {quote.from_token} -> "
            f"{quote.to_token} (min {quote.min_to_amount})"
        )
        result = await self._execute(quote, signing_key)
        logger.info(f"Swap {quote_id} -> {result.status.value} ({result.tx_reference})")
        return result

    @abstractmethod
    async def get_swap_status(self, wallet_address: str) -> SwapStatusSummary:
        """Aggregate pending/failed/completed swaps for a wallet."""
        pass

    @abstractmethod
    async def get_swap_status_for(self, reference: str) -> SwapStatusSummary:
        """Status of one swap. Unresolvable references are pending."""
        pass

    @abstractmethod
    async def get_swap_details(self, reference: str) -> SwapDetails:
        """Tokens, amounts and timestamps of one swap."""
        pass

    @abstractmethod
    async def get_distributions(self, quote_id: str) -> list[Distribution]:
        """Route legs with shares summing to 100."""
        pass

    async def aclose(self) -> None:
        """Release any HTTP/RPC clients."""
        pass

    def _stamp(self) -> tuple[datetime, datetime]:
        created_at = self._clock()
        return created_at, created_at + self.quote_ttl

    def describe(self) -> dict[str, Any]:
        return {"backend": self.name, "chain": self.family.value}
