"""
Quote ranking.

`better` ranks two quotes of the same trade direction for a target fill size.
Stages are applied in order and the first one that discriminates wins:

1. expiry: an RFQ quote whose deadline has passed loses (pool and vault
   quotes are re-derived from chain state and never expire here)
2. minimum size: a quote smaller than the minimum fill size loses
3. price: lower wins for buys, higher wins for sells
4. origin: pool and vault liquidity wins over RFQ
5. FIFO: between two RFQ quotes the earlier `created_at` wins
6. otherwise the first argument is returned

The comparison is not commutative on exact ties.
"""
import time
import warnings
from functools import cmp_to_key
from typing import Iterable, List, Optional, TypeVar, Union
from decimal import Decimal

from loguru import logger

from ..fixed import parse_wad, wmul
from ..models import QuoteOrigin
from ...exceptions import IncompatibleDirection, InvalidConfiguration, PoolKeyMismatchWarning

# Anything carrying pool_key, price, size, is_buy, deadline, origin and created_at
Q = TypeVar("Q")

POOL_KEY_MISMATCH = "Pool keys for quotes compared are not identical"


def _now() -> int:
    return int(time.time())


def _is_expired(quote, now: int) -> bool:
    return quote.origin == QuoteOrigin.RFQ and quote.deadline <= now


def _check_sizes(size: int, minimum_size: Optional[int]):
    if minimum_size is not None and minimum_size > size:
        raise InvalidConfiguration("Minimum size cannot be greater than size")


def _warn_pool_key_mismatch():
    logger.warning(POOL_KEY_MISMATCH)
    warnings.warn(POOL_KEY_MISMATCH, PoolKeyMismatchWarning, stacklevel=3)


def better(
    quote_a: Optional[Q],
    quote_b: Optional[Q],
    size: int,
    minimum_size: Optional[int] = None,
    ignore_warnings: bool = False,
) -> Optional[Q]:
    """
    Return the better of two quotes, or None when neither is acceptable.

    Raises InvalidConfiguration when minimum_size > size and
    IncompatibleDirection when the quotes trade in opposite directions.
    """
    _check_sizes(size, minimum_size)

    if quote_a is None:
        return quote_b
    if quote_b is None:
        return quote_a

    if quote_a.is_buy != quote_b.is_buy:
        raise IncompatibleDirection("Cannot compare quotes with opposite direction")

    if quote_a.pool_key != quote_b.pool_key and not ignore_warnings:
        _warn_pool_key_mismatch()

    now = _now()
    min_size = size if minimum_size is None else minimum_size

    # 1) expiry, RFQ only
    a_expired = _is_expired(quote_a, now)
    b_expired = _is_expired(quote_b, now)
    if a_expired and b_expired:
        return None
    if a_expired:
        return quote_b if quote_b.size >= min_size else None
    if b_expired:
        return quote_a if quote_a.size >= min_size else None

    # 2) minimum size
    a_too_small = quote_a.size < min_size
    b_too_small = quote_b.size < min_size
    if a_too_small and b_too_small:
        return None
    if b_too_small:
        return quote_a
    if a_too_small:
        return quote_b

    # 3) price
    if quote_a.price != quote_b.price:
        a_cheaper = quote_a.price < quote_b.price
        if quote_a.is_buy:
            return quote_a if a_cheaper else quote_b
        return quote_b if a_cheaper else quote_a

    # 4) origin: pool and vault liquidity over RFQ
    a_is_rfq = quote_a.origin == QuoteOrigin.RFQ
    b_is_rfq = quote_b.origin == QuoteOrigin.RFQ
    if b_is_rfq and not a_is_rfq:
        return quote_a
    if a_is_rfq and not b_is_rfq:
        return quote_b

    # 5) FIFO between RFQ quotes; unknown creation time sorts last
    if a_is_rfq and b_is_rfq:
        a_created = quote_a.created_at if quote_a.created_at is not None else float("inf")
        b_created = quote_b.created_at if quote_b.created_at is not None else float("inf")
        return quote_b if b_created < a_created else quote_a

    # 6) economically equivalent
    return quote_a


def best(
    quotes: Iterable[Optional[Q]],
    size: int,
    minimum_size: Optional[int] = None,
    ignore_warnings: bool = False,
) -> Optional[Q]:
    """Best acceptable quote of the collection, or None"""
    _check_sizes(size, minimum_size)

    candidates = [quote for quote in quotes if quote is not None]
    if not candidates:
        return None

    pool_key = candidates[0].pool_key
    if not ignore_warnings and any(quote.pool_key != pool_key for quote in candidates):
        _warn_pool_key_mismatch()

    now = _now()
    min_size = size if minimum_size is None else minimum_size
    candidates = [q for q in candidates if not _is_expired(q, now) and q.size >= min_size]

    winner: Optional[Q] = None
    for quote in candidates:
        winner = better(quote, winner, size, minimum_size, ignore_warnings=True)
    return winner


def sort_quotes(quotes: Iterable[Optional[Q]], size: int, minimum_size: Optional[int] = None) -> List[Optional[Q]]:
    """Order quotes best first using `better`; None entries go last"""
    _check_sizes(size, minimum_size)

    def compare(a, b) -> int:
        if a is None or b is None:
            return (a is None) - (b is None)
        return -1 if better(a, b, size, minimum_size, ignore_warnings=True) is a else 1

    return sorted(quotes, key=cmp_to_key(compare))


def premium_limit(premium: int, max_slippage_percent: Union[float, str, Decimal], is_buy: bool) -> int:
    """Worst acceptable premium: pay up to premium * (1 + slippage) or receive premium * (1 - slippage)"""
    offset = wmul(premium, parse_wad(max_slippage_percent))
    return premium + offset if is_buy else premium - offset
