"""
RFQ, pool and vault quote source tests
"""

import asyncio
from unittest.mock import AsyncMock, Mock

import pytest

from premia_quotes.constants import WAD, ZERO_ADDRESS
from premia_quotes.data.cache import MemoryCache
from premia_quotes.data.models import AmmQuote, Channel, QuoteOrigin
from premia_quotes.data.onchain.calldata import POOL_TRADE, VAULT_TRADE, compute_function_selector
from premia_quotes.data.sources.base import Generation, QuoteRequest
from premia_quotes.data.sources.pool import PoolQuoteSource
from premia_quotes.data.sources.rfq import RfqQuoteSource
from premia_quotes.data.sources.vault import VaultQuoteSource
from premia_quotes.exceptions import RelayError

from conftest import POOL_ADDRESS, ROUTER, TAKER

VAULT_A = "0x" + "5a" * 20
VAULT_B = "0x" + "5b" * 20


async def settle():
    for _ in range(5):
        await asyncio.sleep(0)


async def next_quote(stream):
    return await stream.__anext__()


@pytest.fixture
def request_buy():
    return QuoteRequest(pool_address=POOL_ADDRESS, size=10 * WAD, is_buy=True, taker=TAKER)


@pytest.fixture
def pool_service(pool_info):
    service = Mock()
    service.get_pool = AsyncMock(return_value=pool_info)
    service.get_quote_amm = AsyncMock(return_value=AmmQuote(premium_net=2 * WAD, taker_fee=100))
    service.taker_fee = AsyncMock(return_value=WAD // 10)
    service.unwatch_trades = AsyncMock()
    return service


class TestPoolQuoteSource:
    @pytest.mark.asyncio
    async def test_buy_quote(self, pool_service, request_buy):
        source = PoolQuoteSource(pool_service, ROUTER)
        quote = await source.quote(request_buy)

        pool_service.get_quote_amm.assert_awaited_once_with(POOL_ADDRESS, 10 * WAD, True, TAKER)
        assert quote.origin == QuoteOrigin.POOL
        assert quote.provider == POOL_ADDRESS
        assert quote.taker == ZERO_ADDRESS
        assert quote.is_buy is False
        assert quote.price == WAD // 5
        assert quote.taker_fee == 100
        assert quote.approval_amount == 2 * WAD
        assert quote.approval_target == ROUTER
        assert quote.data.startswith("0x" + compute_function_selector(POOL_TRADE).hex())

    @pytest.mark.asyncio
    async def test_sell_quote_with_slippage(self, pool_service):
        request = QuoteRequest(pool_address=POOL_ADDRESS, size=10 * WAD, is_buy=False, max_slippage_percent=0.01)
        quote = await PoolQuoteSource(pool_service, ROUTER).quote(request)

        limit = 2 * WAD - 2 * WAD // 100
        assert quote.is_buy is True
        assert quote.approval_amount == 10 * WAD - limit + 100

    @pytest.mark.asyncio
    async def test_stream_requotes_on_activity(self, pool_service, request_buy):
        async def watch(pool_address):
            yield None
            yield None

        pool_service.watch_trades = watch
        pool_service.get_quote_amm.side_effect = [
            AmmQuote(premium_net=premium, taker_fee=0) for premium in (WAD, 2 * WAD, 3 * WAD)
        ]
        source = PoolQuoteSource(pool_service, ROUTER)

        quotes = [quote async for quote in source.stream(request_buy, Generation())]

        assert [quote.price for quote in quotes] == [WAD // 10, WAD // 5, 3 * WAD // 10]

    @pytest.mark.asyncio
    async def test_stream_stops_when_stale(self, pool_service, request_buy):
        async def watch(pool_address):
            while True:
                yield None

        pool_service.watch_trades = watch
        generation = Generation()
        stream = PoolQuoteSource(pool_service, ROUTER).stream(request_buy, generation)

        assert await stream.__anext__() is not None
        generation.advance()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()

    @pytest.mark.asyncio
    async def test_stream_failure_yields_none(self, pool_service, request_buy):
        async def watch(pool_address):
            return
            yield

        pool_service.watch_trades = watch
        pool_service.get_quote_amm.side_effect = RuntimeError("reverted")
        quotes = [q async for q in PoolQuoteSource(pool_service, ROUTER).stream(request_buy, Generation())]
        assert quotes == [None]

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_watcher(self, pool_service):
        await PoolQuoteSource(pool_service, ROUTER).unsubscribe(POOL_ADDRESS)
        pool_service.unwatch_trades.assert_awaited_once_with(POOL_ADDRESS)


class TestVaultQuoteSource:
    @pytest.fixture
    def vault_service(self):
        service = Mock()
        service.get_vaults = AsyncMock(return_value=[VAULT_A, VAULT_B])
        service.get_quote = AsyncMock(side_effect=lambda vault, *args: 3 * WAD if vault == VAULT_A else None)
        return service

    @pytest.mark.asyncio
    async def test_quote_skips_declining_vaults(self, vault_service, pool_service, pool_key, request_buy):
        source = VaultQuoteSource(vault_service, pool_service)
        quote = await source.quote(request_buy)

        vault_service.get_vaults.assert_awaited_once_with(pool_key, True)
        pool_service.taker_fee.assert_awaited_with(POOL_ADDRESS, 10 * WAD, 0, True, False, TAKER)
        assert quote.provider == VAULT_A
        assert quote.origin == QuoteOrigin.VAULT
        assert quote.price == (3 * WAD - WAD // 10) * WAD // (10 * WAD)
        assert quote.approval_target == VAULT_A
        assert quote.approval_amount == 3 * WAD
        assert quote.to == VAULT_A
        assert quote.data.startswith("0x" + compute_function_selector(VAULT_TRADE).hex())

    @pytest.mark.asyncio
    async def test_vault_errors_are_absorbed(self, vault_service, pool_service, request_buy):
        vault_service.get_quote.side_effect = RuntimeError("execution reverted")
        assert await VaultQuoteSource(vault_service, pool_service).quote(request_buy) is None

    @pytest.mark.asyncio
    async def test_stream_polls_until_stale(self, vault_service, pool_service, request_buy):
        generation = Generation()
        stream = VaultQuoteSource(vault_service, pool_service, poll_interval=0).stream(request_buy, generation)

        first = await stream.__anext__()
        second = await stream.__anext__()
        assert first.provider == second.provider == VAULT_A
        vault_service.get_vaults.assert_awaited_once()

        generation.advance()
        with pytest.raises(StopAsyncIteration):
            await stream.__anext__()


class TestRfqQuoteSource:
    @pytest.fixture
    def orderbook(self):
        client = Mock()
        client.publish_rfq = AsyncMock()
        client.get_quotes = AsyncMock(return_value=[])
        client.subscribe_quotes = AsyncMock()
        client.unsubscribe = AsyncMock()
        client.publish_quotes = AsyncMock()
        return client

    @pytest.fixture
    def builder(self):
        builder = Mock()
        builder.best_quote = AsyncMock(side_effect=lambda quotes, *args: quotes[0])
        builder.to_fillable = AsyncMock()
        return builder

    @pytest.mark.asyncio
    async def test_quote_flow(self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy):
        posted = make_orderbook_quote(ts=55)
        orderbook.get_quotes.return_value = [posted]
        builder.to_fillable.return_value = make_fillable(WAD, is_buy=False, origin=QuoteOrigin.RFQ)

        result = await RfqQuoteSource(orderbook, builder).quote(request_buy)

        orderbook.publish_rfq.assert_awaited_once_with(POOL_ADDRESS, 10 * WAD, "bid", TAKER)
        orderbook.get_quotes.assert_awaited_once_with(POOL_ADDRESS, 10 * WAD, "ask", taker=TAKER)
        builder.best_quote.assert_awaited_once_with([posted], 10 * WAD, None, TAKER)
        builder.to_fillable.assert_awaited_once_with(POOL_ADDRESS, 10 * WAD, posted, 55, None)
        assert result is builder.to_fillable.return_value

    @pytest.mark.asyncio
    async def test_no_quotes(self, orderbook, builder, request_buy):
        assert await RfqQuoteSource(orderbook, builder).quote(request_buy) is None
        builder.best_quote.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rfq_broadcast_failure_is_absorbed(self, orderbook, builder, request_buy):
        orderbook.publish_rfq.side_effect = RelayError("No relay transport configured for streaming")
        assert await RfqQuoteSource(orderbook, builder).quote(request_buy) is None
        orderbook.get_quotes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_quote_is_memoized(self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy):
        orderbook.get_quotes.return_value = [make_orderbook_quote()]
        builder.to_fillable.return_value = make_fillable(WAD, is_buy=False, origin=QuoteOrigin.RFQ)
        source = RfqQuoteSource(orderbook, builder, cache=MemoryCache())

        await source.quote(request_buy)
        await source.quote(request_buy)

        orderbook.get_quotes.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stream_emits_improving_quotes(self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy):
        initial = make_fillable(100, is_buy=False, origin=QuoteOrigin.RFQ, created_at=1)
        worse = make_fillable(50, is_buy=False, origin=QuoteOrigin.RFQ, created_at=2)
        improved = make_fillable(200, is_buy=False, origin=QuoteOrigin.RFQ, created_at=3)
        orderbook.get_quotes.return_value = [make_orderbook_quote()]
        builder.to_fillable.side_effect = [initial, worse, improved]

        stream = RfqQuoteSource(orderbook, builder).stream(request_buy, Generation())
        assert await stream.__anext__() is initial

        pending = asyncio.create_task(next_quote(stream))
        await settle()
        pool, side, handler = orderbook.subscribe_quotes.await_args.args
        assert (pool, side) == (POOL_ADDRESS, "ask")

        await handler({"type": "POST_QUOTE", "body": make_orderbook_quote().to_wire()})
        await handler({"type": "DELETE_QUOTE", "body": make_orderbook_quote().to_wire()})
        await handler({"type": "POST_QUOTE", "body": make_orderbook_quote().to_wire()})

        assert await asyncio.wait_for(pending, 1) is improved
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_stream_ignores_other_pools(self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy):
        builder.to_fillable.return_value = make_fillable(100, is_buy=False, origin=QuoteOrigin.RFQ)
        source = RfqQuoteSource(orderbook, builder)
        generation = Generation()
        stream = source.stream(request_buy, generation)
        assert await stream.__anext__() is None

        pending = asyncio.create_task(next_quote(stream))
        await settle()
        handler = orderbook.subscribe_quotes.await_args.args[2]
        await handler({"type": "POST_QUOTE", "body": make_orderbook_quote(pool_address="0x" + "ee" * 20).to_wire()})
        await settle()

        assert not pending.done()
        builder.to_fillable.assert_not_awaited()

        generation.advance()
        await source.unsubscribe()
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(pending, 1)

    @pytest.mark.asyncio
    async def test_stream_drops_malformed_messages(self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy):
        fresh = make_fillable(100, is_buy=False, origin=QuoteOrigin.RFQ)
        builder.to_fillable.return_value = fresh
        stream = RfqQuoteSource(orderbook, builder).stream(request_buy, Generation())
        assert await stream.__anext__() is None

        pending = asyncio.create_task(next_quote(stream))
        await settle()
        handler = orderbook.subscribe_quotes.await_args.args[2]
        await handler({"type": "POST_QUOTE", "body": {"price": "not a number"}})
        await handler({"type": "DELETE_QUOTE", "body": None})
        await handler({"type": "INFO", "message": "subscribed"})
        await settle()

        assert not pending.done()
        builder.best_quote.assert_not_awaited()

        await handler({"type": "POST_QUOTE", "body": make_orderbook_quote().to_wire()})
        assert await asyncio.wait_for(pending, 1) is fresh
        await stream.aclose()

    @pytest.mark.asyncio
    async def test_unsubscribe_spares_streams_started_after_cancel(
        self, orderbook, builder, make_orderbook_quote, make_fillable, request_buy
    ):
        release = asyncio.Event()

        async def blocked(channel):
            await release.wait()

        orderbook.unsubscribe = AsyncMock(side_effect=blocked)
        fresh = make_fillable(100, is_buy=False, origin=QuoteOrigin.RFQ)
        builder.to_fillable.return_value = fresh
        source = RfqQuoteSource(orderbook, builder)
        generation = Generation()

        old = source.stream(request_buy, generation)
        assert await old.__anext__() is None
        old_pending = asyncio.create_task(next_quote(old))
        await settle()

        generation.advance()
        cancel = asyncio.create_task(source.unsubscribe())
        await settle()
        assert not cancel.done()

        new = source.stream(request_buy, generation)
        assert await new.__anext__() is None
        new_pending = asyncio.create_task(next_quote(new))
        await settle()

        release.set()
        await asyncio.wait_for(cancel, 1)
        with pytest.raises(StopAsyncIteration):
            await asyncio.wait_for(old_pending, 1)
        await settle()
        assert not new_pending.done()

        handler = orderbook.subscribe_quotes.await_args.args[2]
        await handler({"type": "POST_QUOTE", "body": make_orderbook_quote().to_wire()})
        assert await asyncio.wait_for(new_pending, 1) is fresh
        await new.aclose()

    @pytest.mark.asyncio
    async def test_delete_quotes(self, orderbook, builder):
        orderbook.delete_quotes = AsyncMock(return_value={"deleted": ["q1"]})
        result = await RfqQuoteSource(orderbook, builder).delete_quotes(["q1"])
        orderbook.delete_quotes.assert_awaited_once_with(["q1"])
        assert result == {"deleted": ["q1"]}

    @pytest.mark.asyncio
    async def test_unsubscribe_releases_channels(self, orderbook, builder):
        await RfqQuoteSource(orderbook, builder).unsubscribe()
        channels = [call.args[0] for call in orderbook.unsubscribe.await_args_list]
        assert channels == [Channel.QUOTES, Channel.RFQ]

    @pytest.mark.asyncio
    async def test_publish_unsigned_quotes(self, orderbook, builder):
        signer = Mock()
        signer.sign = AsyncMock(side_effect=lambda pool, quote: f"signed-{quote}")
        source = RfqQuoteSource(orderbook, builder, signer=signer)

        await source.publish_unsigned_quotes(POOL_ADDRESS, ["a", "b"])

        orderbook.publish_quotes.assert_awaited_once_with(["signed-a", "signed-b"])

    @pytest.mark.asyncio
    async def test_publish_unsigned_requires_signer(self, orderbook, builder):
        with pytest.raises(RelayError):
            await RfqQuoteSource(orderbook, builder).publish_unsigned_quotes(POOL_ADDRESS, [])
