"""
Shared fixtures for premia-quotes tests
"""

import time

import pytest

from premia_quotes.constants import WAD
from premia_quotes.data.models import FillableQuote, OrderbookQuote, PoolInfo, PoolKey, QuoteOrigin, Signature

POOL_ADDRESS = "0x" + "11" * 20
PROVIDER = "0x" + "22" * 20
TAKER = "0x" + "33" * 20
ROUTER = "0x" + "44" * 20
BASE = "0x" + "aa" * 20
QUOTE_TOKEN = "0x" + "bb" * 20
ORACLE = "0x" + "cc" * 20


@pytest.fixture
def pool_key():
    return PoolKey(
        base=BASE,
        quote=QUOTE_TOKEN,
        oracle_adapter=ORACLE,
        strike=1500 * WAD,
        maturity=1_700_000_000,
        is_call_pool=True,
    )


@pytest.fixture
def put_pool_key(pool_key):
    return pool_key.model_copy(update={"is_call_pool": False})


@pytest.fixture
def signature():
    return Signature(r="0x" + "01" * 32, s="0x" + "02" * 32, v=27)


@pytest.fixture
def make_fillable(pool_key):
    """Factory for fillable quotes with sensible defaults"""

    def factory(price, size=10 * WAD, is_buy=True, origin=QuoteOrigin.POOL, deadline=None,
                created_at=None, key=None, provider=PROVIDER):
        return FillableQuote(
            pool_key=key or pool_key,
            provider=provider,
            taker=TAKER,
            price=price,
            size=size,
            is_buy=is_buy,
            deadline=deadline if deadline is not None else int(time.time()) + 3600,
            origin=origin,
            created_at=created_at,
            pool_address=POOL_ADDRESS,
            approval_target=ROUTER,
            approval_amount=0,
            to=POOL_ADDRESS,
            data="0x",
        )

    return factory


@pytest.fixture
def make_orderbook_quote(pool_key, signature):
    """Factory for relay quotes"""
    counter = {"n": 0}

    def factory(price=WAD // 10, size=10 * WAD, fillable_size=None, is_buy=False, deadline=None,
                ts=100, key=None, pool_address=POOL_ADDRESS):
        counter["n"] += 1
        return OrderbookQuote(
            pool_key=key or pool_key,
            provider=PROVIDER,
            taker=TAKER,
            price=price,
            size=size,
            is_buy=is_buy,
            deadline=deadline if deadline is not None else int(time.time()) + 3600,
            salt=counter["n"],
            chain_id="42161",
            signature=signature,
            quote_id=f"quote-{counter['n']}",
            pool_address=pool_address,
            fillable_size=fillable_size if fillable_size is not None else size,
            ts=ts,
        )

    return factory


@pytest.fixture
def pool_info(pool_key):
    return PoolInfo(address=POOL_ADDRESS, pool_key=pool_key, collateral_decimals=18)
