"""
Conversion between a chain's integer base unit and its decimal main unit.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_CEILING, Decimal, InvalidOperation, localcontext

from paycore.constants import (
    BITCOIN_DECIMAL_PLACES,
    ETHEREUM_DECIMAL_PLACES,
    RIPPLE_DECIMAL_PLACES,
)

# Enough digits for 18 decimal places on amounts far beyond any total supply
DECIMAL_PRECISION = 60


def to_decimal(value: str | int | Decimal) -> Decimal:
    """Parse a numeric value without ever going through float."""
    if isinstance(value, float):
        raise TypeError("Floats are not accepted for amounts, use str or Decimal")
    try:
        result = Decimal(value)
    except InvalidOperation as e:
        raise ValueError(f"Invalid numeric value: {value!r}") from e
    if not result.is_finite():
        raise ValueError(f"Invalid numeric value: {value!r}")
    return result


def format_decimal(value: Decimal) -> str:
    """Plain decimal string: no exponent, no trailing zeros, "0" for zero."""
    if value.is_zero():
        return "0"
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def ceil_decimal(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


@dataclass(frozen=True)
class Denomination:
    """A chain's main unit with a fixed number of decimal places."""

    symbol: str
    decimals: int

    @property
    def base_per_main(self) -> int:
        return 10**self.decimals

    def to_base(self, main: str | int | Decimal, rounding: str | None = None) -> int:
        """
        Convert a main denomination amount to base units.

        Raises ValueError when the amount has more precision than the chain
        supports, unless a decimal rounding mode is given.
        """
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            scaled = to_decimal(main) * self.base_per_main
            if scaled == scaled.to_integral_value():
                return int(scaled)
            if rounding is None:
                raise ValueError(
                    f"{main} {self.symbol} has more than {self.decimals} decimal places"
                )
            return int(scaled.to_integral_value(rounding=rounding))

    def to_main(self, base: str | int | Decimal) -> str:
        with localcontext() as ctx:
            ctx.prec = DECIMAL_PRECISION
            value = to_decimal(base)
            if value != value.to_integral_value():
                raise ValueError(f"Base unit amount must be integral: {base}")
            return format_decimal(value / self.base_per_main)

    def to_main_decimal(self, base: str | int | Decimal) -> Decimal:
        return Decimal(self.to_main(base))


BTC = Denomination("BTC", BITCOIN_DECIMAL_PLACES)
LTC = Denomination("LTC", BITCOIN_DECIMAL_PLACES)
DASH = Denomination("DASH", BITCOIN_DECIMAL_PLACES)
ETH = Denomination("ETH", ETHEREUM_DECIMAL_PLACES)
XRP = Denomination("XRP", RIPPLE_DECIMAL_PLACES)
