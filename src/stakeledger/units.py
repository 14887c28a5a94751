"""Fixed-point constants and unit conversion.

All on-ledger quantities are integers in the ledger's smallest unit, which
has 18 decimals (the "wei" of the token). The reward accumulator is scaled
by the same PRECISION so that fractional reward-per-unit survives integer
truncation. No floats anywhere in finance.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation, localcontext
from typing import Union

from web3 import Web3

from stakeledger.errors import ValidationError

DECIMALS = 18
PRECISION = 10 ** DECIMALS
SECONDS_PER_PERIOD = 86_400  # one day

AmountLike = Union[str, int, Decimal]


def to_units(amount: AmountLike) -> int:
    """Convert a whole-token amount ("1.5", Decimal, int) to smallest units.

    Raises ValidationError for unparseable input or sub-unit precision.
    """
    try:
        value = Decimal(str(amount))
    except InvalidOperation:
        raise ValidationError(f"Not a valid token amount: {amount!r}")
    if not value.is_finite():
        raise ValidationError(f"Not a valid token amount: {amount!r}")
    with localcontext() as ctx:
        ctx.prec = 999
        scaled = value.scaleb(DECIMALS)
        fractional = scaled != scaled.to_integral_value()
    if fractional:
        raise ValidationError(
            f"Token amount {amount!r} is finer than one smallest unit (10**-{DECIMALS})"
        )
    try:
        return int(Web3.to_wei(value, "ether"))
    except ValueError as e:
        raise ValidationError(f"Not a valid token amount: {amount!r} ({e})")


def from_units(units: int) -> Decimal:
    """Convert smallest units to a whole-token Decimal."""
    return Decimal(Web3.from_wei(int(units), "ether"))


def format_units(units: int) -> str:
    """Human-readable token amount, trailing zeros trimmed."""
    value = from_units(units)
    if value == value.to_integral_value():
        return str(value.quantize(Decimal("1")))
    return format(value.normalize(), "f")
