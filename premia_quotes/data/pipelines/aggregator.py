"""
Best-quote aggregation across the RFQ, pool and vault sources.

Streams run one producer task per source feeding a queue and a single
consumer task per subscription. Every subscription captures the aggregator's
generation when it starts; cancelling advances the generation, after which
nothing captured under the old value reaches a callback.
"""
import asyncio
import inspect
from contextlib import aclosing
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from loguru import logger

from .comparator import best, sort_quotes
from ..cache import MemoryCache, cache_key
from ..models import FillableQuote, PoolInfo, QuoteOrigin
from ..sources.base import Generation, PoolDirectory, QuoteRequest, QuoteSource, SeriesRequest
from ...constants import CacheTTL
from ...exceptions import ConfigurationError

QuoteCallback = Callable[[Optional[FillableQuote]], Any]
UpdateHandler = Callable[[QuoteOrigin, Optional[FillableQuote], int], Awaitable[None]]

_DONE = object()


@dataclass
class StreamState:
    generation: int
    quotes: Dict[QuoteOrigin, Optional[FillableQuote]] = field(default_factory=dict)

    def others(self, origin: QuoteOrigin) -> List[Optional[FillableQuote]]:
        return [quote for key, quote in self.quotes.items() if key != origin]


class QuoteSubscription:
    """Handle on a running stream"""

    def __init__(self, generation: int, tasks: Sequence[asyncio.Task]):
        self.generation = generation
        self.tasks = list(tasks)

    @classmethod
    def merge(cls, generation: int, subscriptions: Iterable["QuoteSubscription"]) -> "QuoteSubscription":
        return cls(generation, [task for sub in subscriptions for task in sub.tasks])

    @property
    def done(self) -> bool:
        return all(task.done() for task in self.tasks)

    async def wait(self):
        await asyncio.gather(*self.tasks, return_exceptions=True)

    def close(self):
        """Hard stop: cancel the tasks instead of letting them drain"""
        for task in self.tasks:
            task.cancel()


def filter_pools(
    pools: List[PoolInfo],
    maturity: Optional[int] = None,
    strike: Optional[int] = None,
    price_oracle: Optional[str] = None,
    quote_tokens: Optional[Iterable[str]] = None,
) -> List[PoolInfo]:
    if maturity:
        pools = [pool for pool in pools if pool.maturity == int(maturity)]
    if strike:
        pools = [pool for pool in pools if pool.strike == int(strike)]
    if price_oracle:
        pools = [pool for pool in pools if pool.pool_key.oracle_adapter.lower() == price_oracle.lower()]
    if quote_tokens:
        allowed = {token.lower() for token in quote_tokens}
        pools = [pool for pool in pools if pool.pool_key.quote.lower() in allowed]
    return pools


class StreamAggregator:
    def __init__(
        self,
        sources: Sequence[QuoteSource],
        pool_directory: Optional[PoolDirectory] = None,
        cache: Optional[MemoryCache] = None,
        quote_ttl: int = CacheTTL.SECOND,
    ):
        self.sources = list(sources)
        self.pool_directory = pool_directory
        self.cache = cache
        self.quote_ttl = quote_ttl
        self.generation = Generation()

    async def _cached(self, key: str, factory):
        if self.cache is None:
            return await factory()
        return await self.cache.get_or_set(key, factory, self.quote_ttl)

    async def _source_quote(self, source: QuoteSource, request: QuoteRequest) -> Optional[FillableQuote]:
        try:
            return await source.quote(request)
        except Exception as e:
            logger.warning(f"Error getting {source.origin.value} quote for {request.pool_address}: {e}")
            return None

    # One-shot

    async def quote(
        self,
        pool_address: str,
        size: int,
        is_buy: bool,
        minimum_size: Optional[int] = None,
        referrer: Optional[str] = None,
        taker: Optional[str] = None,
        max_slippage_percent: Optional[float] = None,
    ) -> Optional[FillableQuote]:
        """Best quote across every source for one pool"""
        request = QuoteRequest(pool_address, size, is_buy, minimum_size, referrer, taker, max_slippage_percent)

        async def load():
            quotes = await asyncio.gather(*(self._source_quote(source, request) for source in self.sources))
            return best(quotes, size, minimum_size)

        return await self._cached(cache_key(type(self).__name__, "quote", request), load)

    async def _series_pools(self, series: SeriesRequest) -> List[PoolInfo]:
        if self.pool_directory is None:
            raise ConfigurationError("Multi-pool quoting needs a pool directory")
        pools = await self.pool_directory.get_quote_pools(series.token, series.strike, series.maturity, series.is_call)
        pools = filter_pools(pools, series.maturity, series.strike, series.price_oracle, series.quote_tokens)
        logger.debug(f"{len(pools)} pools match {series.token} strike={series.strike} maturity={series.maturity}")
        return pools

    async def multi_quote(self, series: SeriesRequest) -> List[Optional[FillableQuote]]:
        """Best quote per matching pool, best first"""

        async def load():
            pools = await self._series_pools(series)
            quotes = await asyncio.gather(*(
                self.quote(pool.address, series.size, series.is_buy, series.minimum_size,
                           series.referrer, series.taker, series.max_slippage_percent)
                for pool in pools
            ))
            return sort_quotes(quotes, series.size, series.minimum_size)

        return await self._cached(cache_key(type(self).__name__, "multi_quote", series), load)

    async def quotes_by_provider(self, series: SeriesRequest) -> Dict[str, List[Optional[FillableQuote]]]:
        """Each source's quote for every matching pool, keyed by origin, best first"""

        async def load():
            pools = await self._series_pools(series)

            async def per_source(source: QuoteSource):
                quotes = await asyncio.gather(*(
                    self._source_quote(source, series.for_pool(pool.address)) for pool in pools
                ))
                return source.origin.value, sort_quotes(quotes, series.size, series.minimum_size)

            return dict(await asyncio.gather(*(per_source(source) for source in self.sources)))

        return await self._cached(cache_key(type(self).__name__, "quotes_by_provider", series), load)

    # Streaming

    async def _deliver(self, callback: Callable, payload: Any, captured: int):
        if not self.generation.is_current(captured):
            return
        try:
            result = callback(payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Quote stream callback failed: {e}")

    async def _produce(self, source: QuoteSource, request: QuoteRequest, queue: asyncio.Queue, captured: int):
        initial = True
        try:
            async with aclosing(source.stream(request, self.generation)) as quotes:
                async for quote in quotes:
                    if not self.generation.is_current(captured):
                        break
                    await queue.put((source.origin, quote, initial))
                    initial = False
        except Exception as e:
            logger.error(f"{source.origin.value} stream for {request.pool_address} failed: {e}")
            await queue.put((source.origin, None, initial))
            initial = False
        finally:
            if initial:
                queue.put_nowait((source.origin, None, True))

    async def _consume(self, queue: asyncio.Queue, on_update: UpdateHandler, captured: int, ready: asyncio.Event, pending: set):
        while True:
            item = await queue.get()
            if item is _DONE:
                break
            origin, quote, initial = item
            if not self.generation.is_current(captured):
                break
            try:
                await on_update(origin, quote, captured)
            except Exception as e:
                logger.error(f"Error handling {origin.value} update: {e}")
            if initial:
                pending.discard(origin)
                if not pending:
                    ready.set()
        ready.set()

    async def _subscribe(self, request: QuoteRequest, sources: Sequence[QuoteSource], on_update: UpdateHandler) -> QuoteSubscription:
        captured = self.generation.value
        queue: asyncio.Queue = asyncio.Queue()
        ready = asyncio.Event()

        producers = [
            asyncio.create_task(self._produce(source, request, queue, captured))
            for source in sources
        ]
        consumer = asyncio.create_task(
            self._consume(queue, on_update, captured, ready, {source.origin for source in sources})
        )

        async def finish():
            await asyncio.gather(*producers, return_exceptions=True)
            queue.put_nowait(_DONE)

        closer = asyncio.create_task(finish())
        await ready.wait()
        logger.info(f"Streaming {request.pool_address} from {', '.join(s.origin.value for s in sources)}")
        return QuoteSubscription(captured, [*producers, consumer, closer])

    async def stream_quotes(self, request: QuoteRequest, callback: QuoteCallback) -> QuoteSubscription:
        """
        Stream the best quote for one pool.

        The callback fires when an update from a source is itself the best
        quote across sources. Updates that lose to another source's cached
        quote are recorded but not delivered.
        """
        state = StreamState(generation=self.generation.value)

        async def on_update(origin: QuoteOrigin, quote: Optional[FillableQuote], captured: int):
            state.quotes[origin] = quote
            try:
                winner = best([quote, *state.others(origin)], request.size, request.minimum_size)
            except Exception as e:
                logger.error(f"Error ranking {origin.value} update for {request.pool_address}: {e}")
                await self._deliver(callback, None, captured)
                return
            if winner is quote:
                await self._deliver(callback, quote, captured)

        return await self._subscribe(request, self.sources, on_update)

    async def stream_multi_quotes(self, series: SeriesRequest, callback: Callable[[List[Optional[FillableQuote]]], Any]) -> QuoteSubscription:
        """Stream the best quote of every matching pool, delivered as a list sorted best first"""
        pools = await self._series_pools(series)
        quotes_by_pool: Dict[str, Optional[FillableQuote]] = {}
        captured = self.generation.value

        def for_pool(address: str):
            async def on_quote(quote: Optional[FillableQuote]):
                quotes_by_pool[address] = quote
                ranked = sort_quotes(list(quotes_by_pool.values()), series.size, series.minimum_size)
                await self._deliver(callback, ranked, captured)
            return on_quote

        subscriptions = await asyncio.gather(*(
            self.stream_quotes(series.for_pool(pool.address), for_pool(pool.address)) for pool in pools
        ))
        return QuoteSubscription.merge(captured, subscriptions)

    async def stream_quotes_by_provider(
        self, series: SeriesRequest, callback: Callable[[Dict[str, List[Optional[FillableQuote]]]], Any]
    ) -> QuoteSubscription:
        """Stream every source's quote for every matching pool, unranked, keyed by origin"""
        pools = await self._series_pools(series)
        quotes_by_pool: Dict[str, Dict[QuoteOrigin, Optional[FillableQuote]]] = {pool.address: {} for pool in pools}
        captured = self.generation.value

        def by_provider() -> Dict[str, List[Optional[FillableQuote]]]:
            flat: Dict[str, List[Optional[FillableQuote]]] = {}
            for quotes in quotes_by_pool.values():
                for origin, quote in quotes.items():
                    flat.setdefault(origin.value, []).append(quote)
            return flat

        def for_pool(address: str) -> UpdateHandler:
            async def on_update(origin: QuoteOrigin, quote: Optional[FillableQuote], captured: int):
                quotes_by_pool[address][origin] = quote
                await self._deliver(callback, by_provider(), captured)
            return on_update

        subscriptions = await asyncio.gather(*(
            self._subscribe(series.for_pool(pool.address), self.sources, for_pool(pool.address)) for pool in pools
        ))
        return QuoteSubscription.merge(captured, subscriptions)

    # Cancellation

    async def _unsubscribe_sources(self, pool_address: Optional[str] = None):
        results = await asyncio.gather(
            *(source.unsubscribe(pool_address) for source in self.sources), return_exceptions=True
        )
        for source, result in zip(self.sources, results):
            if isinstance(result, Exception):
                logger.warning(f"Failed to unsubscribe {source.origin.value} source: {result}")

    async def cancel_streams(self, pool_address: str, is_call: bool, is_buy: bool):
        """Invalidate running streams, then release the pool's source subscriptions"""
        generation = self.generation.advance()
        side = "buy" if is_buy else "sell"
        logger.info(f"Cancelled {'call' if is_call else 'put'} {side} streams for {pool_address} (generation {generation})")
        await self._unsubscribe_sources(pool_address)

    async def cancel_all_streams(self):
        generation = self.generation.advance()
        logger.info(f"Cancelled all quote streams (generation {generation})")
        await self._unsubscribe_sources()
