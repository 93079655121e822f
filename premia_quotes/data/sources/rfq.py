import asyncio
from typing import AsyncIterator, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from .base import Generation, QuoteRequest, QuoteSource
from .orderbook import OrderbookClient
from ..cache import MemoryCache, cache_key
from ..models import (
    Channel,
    DeleteQuoteMessage,
    FillableQuote,
    OrderbookQuote,
    PostQuoteMessage,
    PublishQuotesResponse,
    QuoteOrigin,
    RawQuote,
)
from ..pipelines.comparator import better
from ...constants import CacheTTL
from ...exceptions import RelayError


def _sides(is_buy: bool):
    """(side the RFQ is broadcast on, side of the quotes that fill it)"""
    return ("bid", "ask") if is_buy else ("ask", "bid")


class RfqQuoteSource(QuoteSource):
    """Signed quotes from market makers on the orderbook relay"""
    origin = QuoteOrigin.RFQ

    def __init__(
        self,
        orderbook: OrderbookClient,
        builder,
        signer=None,
        cache: Optional[MemoryCache] = None,
        quote_ttl: int = CacheTTL.SECOND,
    ):
        self.orderbook = orderbook
        self.builder = builder
        self.signer = signer
        self.cache = cache
        self.quote_ttl = quote_ttl
        # inbox -> (generation, value captured when its stream started)
        self._inboxes: Dict[asyncio.Queue, Tuple[Generation, int]] = {}

    async def quote(self, request: QuoteRequest) -> Optional[FillableQuote]:
        if self.cache is None:
            return await self._quote(request)
        key = cache_key(type(self).__name__, "quote", request)
        return await self.cache.get_or_set(key, lambda: self._quote(request), self.quote_ttl)

    async def _quote(self, request: QuoteRequest) -> Optional[FillableQuote]:
        rfq_side, quote_side = _sides(request.is_buy)

        try:
            await self.orderbook.publish_rfq(request.pool_address, request.size, rfq_side, request.taker)
        except RelayError as e:
            logger.debug(f"RFQ not broadcast for {request.pool_address}: {e}")

        quotes = await self.orderbook.get_quotes(request.pool_address, request.size, quote_side, taker=request.taker)
        if not quotes:
            return None

        best_quote = await self.builder.best_quote(quotes, request.size, request.minimum_size, request.taker)
        if best_quote is None:
            return None

        return await self.builder.to_fillable(
            request.pool_address, request.size, best_quote, best_quote.created_at, request.referrer
        )

    async def stream(self, request: QuoteRequest, generation: Generation) -> AsyncIterator[Optional[FillableQuote]]:
        captured = generation.value
        _, quote_side = _sides(request.is_buy)
        inbox: asyncio.Queue = asyncio.Queue()

        try:
            current = await self._quote(request)
        except Exception as e:
            logger.warning(f"Error streaming orderbook quote for {request.pool_address}: {e}")
            current = None
        yield current

        async def on_message(message):
            kind = message.get("type")
            try:
                if kind == "POST_QUOTE":
                    inbox.put_nowait(PostQuoteMessage.model_validate(message).body)
                elif kind == "DELETE_QUOTE":
                    deleted = DeleteQuoteMessage.model_validate(message).body
                    logger.debug(f"Quote {deleted.quote_id} deleted on {deleted.pool_address}")
                else:
                    logger.debug(f"Ignoring {kind} for {request.pool_address}")
            except ValidationError as e:
                logger.warning(f"Malformed {kind} message for {request.pool_address}: {e}")

        self._inboxes[inbox] = (generation, captured)
        try:
            await self.orderbook.subscribe_quotes(request.pool_address, quote_side, on_message)

            while generation.is_current(captured):
                posted = await inbox.get()
                if posted is None or not generation.is_current(captured):
                    break

                candidate = await self._posted_quote(request, posted, current)
                if candidate is not None:
                    current = candidate
                    yield current
        finally:
            self._inboxes.pop(inbox, None)

    async def _posted_quote(
        self, request: QuoteRequest, quote: OrderbookQuote, current: Optional[FillableQuote]
    ) -> Optional[FillableQuote]:
        """Fillable form of a freshly posted quote if it is valid and beats `current`"""
        if quote.pool_address.lower() != request.pool_address.lower():
            return None

        try:
            valid = await self.builder.best_quote([quote], request.size, request.minimum_size, request.taker)
            if valid is None:
                return None

            candidate = await self.builder.to_fillable(
                request.pool_address, request.size, valid, valid.created_at, request.referrer
            )
        except Exception as e:
            logger.warning(f"Dropping posted quote for {request.pool_address}: {e}")
            return None

        if current is None:
            return candidate
        if better(candidate, current, request.size, request.minimum_size, ignore_warnings=True) is candidate:
            return candidate
        return None

    async def unsubscribe(self, pool_address: Optional[str] = None) -> None:
        # Streams started after the cancel that called us stay open
        stale = [
            inbox for inbox, (generation, captured) in self._inboxes.items()
            if not generation.is_current(captured)
        ]
        # The relay multiplexes every pool over one QUOTES channel
        await self.orderbook.unsubscribe(Channel.QUOTES)
        await self.orderbook.unsubscribe(Channel.RFQ)
        for inbox in stale:
            inbox.put_nowait(None)

    async def publish_quotes(self, quotes) -> PublishQuotesResponse:
        return await self.orderbook.publish_quotes(quotes)

    async def delete_quotes(self, quote_ids: List[str]):
        return await self.orderbook.delete_quotes(quote_ids)

    async def publish_unsigned_quotes(self, pool_address: str, quotes: List[RawQuote]) -> PublishQuotesResponse:
        if self.signer is None:
            raise RelayError("A quote signer is required to publish unsigned quotes")
        signed = await asyncio.gather(*(self.signer.sign(pool_address, quote) for quote in quotes))
        return await self.orderbook.publish_quotes(list(signed))
