"""Error taxonomy for wallet and swap operations.

Every error carries a ``kind`` from a small closed set and a human-readable
message. Raw provider/RPC errors are logged where they occur and never put
into the message returned to callers.
"""

from typing import Any, Optional


class ErrorKind:
    NOT_FOUND = "not_found"
    INVALID_INPUT = "invalid_input"
    UNAVAILABLE = "unavailable"
    CONFIRMATION_UNKNOWN = "confirmation_unknown"
    QUOTE_EXPIRED = "quote_expired"
    INSUFFICIENT_FUNDS = "insufficient_funds"
    BROADCAST_FAILED = "broadcast_failed"
    SLIPPAGE_EXCEEDED = "slippage_exceeded"
    FATAL = "fatal"


class VaultswapError(Exception):
    """Base class for all structured errors."""

    kind: str = ErrorKind.FATAL
    default_message: str = "Internal error"

    def __init__(self, message: Optional[str] = None, **context: Any):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        data = {"kind": self.kind, "message": self.message}
        data.update({k: v for k, v in self.context.items() if v is not None})
        return data


# Not found

class NotFoundError(VaultswapError):
    kind = ErrorKind.NOT_FOUND
    default_message = "Not found"


class ProfileNotFound(NotFoundError):
    default_message = "Profile not found"


class WalletNotFound(NotFoundError):
    default_message = "Wallet not found for user"


class PoolNotFound(NotFoundError):
    default_message = "Pool not found"


class NoRouteFound(NotFoundError):
    default_message = "No pool found for token pair"


class QuoteNotFound(NotFoundError):
    default_message = "Quote not found or already used"


class TransactionNotFound(NotFoundError):
    default_message = "Transaction not found"


# Invalid input

class InvalidInputError(VaultswapError):
    kind = ErrorKind.INVALID_INPUT
    default_message = "Invalid input"


class InvalidAddress(InvalidInputError):
    default_message = "Invalid address"


class InvalidRecipient(InvalidInputError):
    default_message = "Invalid recipient address"


class InvalidAmount(InvalidInputError):
    default_message = "Invalid amount"


class InvalidQuoteId(InvalidInputError):
    default_message = "Invalid quote ID format"


class UnsupportedChain(InvalidInputError):
    default_message = "Operation not supported for this chain"


# Unavailable

class UnavailableError(VaultswapError):
    kind = ErrorKind.UNAVAILABLE
    default_message = "Service unavailable"


class ChainUnavailable(UnavailableError):
    default_message = "Chain RPC endpoint unavailable"


class AggregatorUnavailable(UnavailableError):
    default_message = "Swap aggregator unavailable"


# Execution outcomes

class ConfirmationUnknown(VaultswapError):
    """Broadcast was accepted but the outcome could not be determined.

    The funds may have moved; callers must re-poll ``tx_reference``.
    """

    kind = ErrorKind.CONFIRMATION_UNKNOWN
    default_message = "Transaction broadcast, confirmation pending"


class QuoteExpired(VaultswapError):
    kind = ErrorKind.QUOTE_EXPIRED
    default_message = "Quote has expired, request a new quote"


class InsufficientFunds(VaultswapError):
    kind = ErrorKind.INSUFFICIENT_FUNDS
    default_message = "Insufficient funds"


class BroadcastFailed(VaultswapError):
    kind = ErrorKind.BROADCAST_FAILED
    default_message = "Failed to broadcast transaction"


class SlippageExceeded(VaultswapError):
    kind = ErrorKind.SLIPPAGE_EXCEEDED
    default_message = "Swap output below minimum, slippage tolerance exceeded"


# Fatal

class FatalError(VaultswapError):
    kind = ErrorKind.FATAL


class InvalidKeyEncoding(FatalError):
    default_message = "Stored key material could not be decoded"


class EntropyFailure(FatalError):
    default_message = "Secure random source unavailable"
