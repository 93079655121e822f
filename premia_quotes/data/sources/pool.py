import asyncio
import time
from typing import AsyncIterator, Optional, Set

from loguru import logger

from .base import Generation, PoolService, QuoteRequest, QuoteSource
from ..models import FillableQuote, QuoteOrigin
from ..onchain.calldata import encode_pool_trade, to_referrer
from ..pipelines.comparator import premium_limit
from ...constants import QUOTE_DEADLINE_SECONDS, WAD, ZERO_ADDRESS


class PoolQuoteSource(QuoteSource):
    """Quotes from the pool's own AMM, re-priced whenever the pool trades"""
    origin = QuoteOrigin.POOL

    def __init__(self, pool_service: PoolService, approval_target: str, default_referrer: Optional[str] = None):
        self.pool_service = pool_service
        self.approval_target = approval_target
        self.default_referrer = default_referrer
        self._watched: Set[str] = set()

    async def quote(self, request: QuoteRequest) -> Optional[FillableQuote]:
        size = request.size
        amm, pool = await asyncio.gather(
            self.pool_service.get_quote_amm(request.pool_address, size, request.is_buy, request.taker),
            self.pool_service.get_pool(request.pool_address),
        )

        limit = amm.premium_net
        if request.max_slippage_percent:
            limit = premium_limit(amm.premium_net, request.max_slippage_percent, request.is_buy)

        # The pool takes the other side of the taker's trade
        return FillableQuote(
            pool_key=pool.pool_key,
            provider=request.pool_address,
            taker=ZERO_ADDRESS,
            price=amm.premium_net * WAD // size,
            size=size,
            is_buy=not request.is_buy,
            deadline=int(time.time()) + QUOTE_DEADLINE_SECONDS,
            origin=QuoteOrigin.POOL,
            pool_address=request.pool_address,
            taker_fee=amm.taker_fee,
            approval_target=self.approval_target,
            approval_amount=limit if request.is_buy else size - limit + amm.taker_fee,
            to=request.pool_address,
            data=encode_pool_trade(size, request.is_buy, limit, to_referrer(request.referrer, self.default_referrer)),
        )

    async def _safe_quote(self, request: QuoteRequest) -> Optional[FillableQuote]:
        try:
            return await self.quote(request)
        except Exception as e:
            logger.warning(f"Error streaming pool quote for {request.pool_address}: {e}")
            return None

    async def stream(self, request: QuoteRequest, generation: Generation) -> AsyncIterator[Optional[FillableQuote]]:
        captured = generation.value
        yield await self._safe_quote(request)

        self._watched.add(request.pool_address)
        async for _ in self.pool_service.watch_trades(request.pool_address):
            if not generation.is_current(captured):
                break
            logger.debug(f"Pool activity on {request.pool_address}, re-quoting")
            quote = await self._safe_quote(request)
            if not generation.is_current(captured):
                break
            yield quote

    async def unsubscribe(self, pool_address: Optional[str] = None) -> None:
        pools = [pool_address] if pool_address else list(self._watched)
        for address in pools:
            await self.pool_service.unwatch_trades(address)
            self._watched.discard(address)
