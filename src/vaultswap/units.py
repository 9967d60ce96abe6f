"""Conversion between human decimal strings and integer base units.

All arithmetic on amounts happens on integers in the chain's smallest unit
(wei, lamports, token base units); decimals only appear at the boundary.
"""

from decimal import Decimal, InvalidOperation, localcontext

from vaultswap.config import ChainFamily
from vaultswap.errors import InvalidAmount

NATIVE_DECIMALS = {
    ChainFamily.EVM: 18,
    ChainFamily.SOLANA: 9,
}


def native_decimals(family: ChainFamily) -> int:
    return NATIVE_DECIMALS[family]


def parse_units(amount: str, decimals: int) -> int:
    """Parse a decimal string such as ``"1.25"`` into base units.

    Raises:
        InvalidAmount: not a finite positive number, or more fractional
            digits than the unit supports
    """
    if isinstance(amount, float):
        raise InvalidAmount("Amount must be given as a decimal string")

    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount!r}")

    if not value.is_finite() or value <= 0:
        raise InvalidAmount("Amount must be a positive number")

    with localcontext() as ctx:
        ctx.prec = 100
        scaled = value.scaleb(decimals)
    if scaled != scaled.to_integral_value():
        raise InvalidAmount(f"Amount has more than {decimals} decimal places")

    return int(scaled)


def parse_base_units(amount: str) -> int:
    """Parse an integer string already expressed in base units."""
    text = str(amount).strip()
    if not (text.isascii() and text.isdigit()):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    value = int(text)
    if value <= 0:
        raise InvalidAmount("Amount must be a positive number")
    return value


def format_units(value: int, decimals: int) -> str:
    """Format base units as a plain decimal string without trailing zeros."""
    whole, frac = divmod(value, 10**decimals)
    frac_text = str(frac).rjust(decimals, "0").rstrip("0") if decimals else ""
    return f"{whole}.{frac_text}" if frac_text else str(whole)
