"""Request models for the HTTP surface.

Amounts are strings: human decimals for transfers, smallest-unit integers
for swap quotes.
"""

from typing import Optional

from pydantic import BaseModel, Field


class TransferForm(BaseModel):
    """Native transfer from a user's custodial wallet."""
    user_id: str
    recipient: str
    amount: str  # Decimal as string, e.g. "0.25"


class GetQuoteRequest(BaseModel):
    """Swap quote request."""
    from_token: str
    to_token: str
    amount: str  # Smallest units of from_token
    slippage: Optional[float] = Field(default=None, ge=0, lt=1)
    from_address: Optional[str] = None
    to_address: Optional[str] = None
    gasless: bool = False
    affiliate_address: Optional[str] = None
    affiliate_fee: Optional[float] = None


class ExecuteSwapRequest(BaseModel):
    """Execute a previously issued quote for a user."""
    user_id: str
    quote_id: str
