"""
WAD fixed-point helpers.

All prices and sizes travel as integers scaled by 10**18. Results truncate
toward zero like the on-chain UD60x18 math.
"""
from decimal import Decimal, localcontext
from typing import Union

from ..constants import WAD, WAD_DECIMALS

Numeric = Union[int, str, float, Decimal]


def to_int(value: Numeric) -> int:
    """Coerce an already-scaled integer value (int or decimal string) to int"""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith("0x") else int(value)
    return int(value)


def parse_wad(value: Numeric, decimals: int = WAD_DECIMALS) -> int:
    """'1.5' -> 1.5 * 10**decimals. Floats go through str() to avoid binary noise."""
    with localcontext() as ctx:
        ctx.prec = 78
        scaled = Decimal(str(value)) * (Decimal(10) ** decimals)
    return int(scaled)


def format_wad(value: int, decimals: int = WAD_DECIMALS) -> Decimal:
    with localcontext() as ctx:
        ctx.prec = 78
        return Decimal(value) / (Decimal(10) ** decimals)


def _trunc_div(a: int, b: int) -> int:
    q = abs(a) // abs(b)
    return q if (a >= 0) == (b > 0) else -q


def wmul(a: int, b: int) -> int:
    return _trunc_div(a * b, WAD)


def wdiv(a: int, b: int) -> int:
    if b == 0:
        raise ZeroDivisionError("wdiv by zero")
    return _trunc_div(a * WAD, b)


def convert_decimals(value: int, from_decimals: int, to_decimals: int) -> int:
    if from_decimals == to_decimals:
        return value
    if from_decimals > to_decimals:
        return _trunc_div(value, 10 ** (from_decimals - to_decimals))
    return value * 10 ** (to_decimals - from_decimals)
