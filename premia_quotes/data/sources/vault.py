import asyncio
import time
from typing import AsyncIterator, List, Optional

from loguru import logger

from .base import Generation, PoolService, QuoteRequest, QuoteSource, VaultService
from ..models import FillableQuote, PoolKey, QuoteOrigin
from ..onchain.calldata import encode_vault_trade, to_referrer
from ..pipelines.comparator import best, premium_limit
from ...constants import QUOTE_DEADLINE_SECONDS, VAULT_POLL_INTERVAL, WAD, ZERO_ADDRESS


class VaultQuoteSource(QuoteSource):
    """
    Quotes from vaults underwriting the pool's pair.

    Vault prices move on several unrelated events, so streams poll instead of
    watching logs.
    """
    origin = QuoteOrigin.VAULT

    def __init__(
        self,
        vault_service: VaultService,
        pool_service: PoolService,
        default_referrer: Optional[str] = None,
        poll_interval: float = VAULT_POLL_INTERVAL,
    ):
        self.vault_service = vault_service
        self.pool_service = pool_service
        self.default_referrer = default_referrer
        self.poll_interval = poll_interval

    async def quote(self, request: QuoteRequest, vaults: Optional[List[str]] = None) -> Optional[FillableQuote]:
        pool = await self.pool_service.get_pool(request.pool_address)
        if vaults is None:
            vaults = await self.vault_service.get_vaults(pool.pool_key, request.is_buy)

        taker = request.taker or ZERO_ADDRESS
        quotes = await asyncio.gather(
            *(self._vault_quote(vault, request, pool.pool_key, taker) for vault in vaults)
        )
        return best(quotes, request.size, request.minimum_size)

    async def _vault_quote(self, vault: str, request: QuoteRequest, pool_key: PoolKey, taker: str) -> Optional[FillableQuote]:
        size = request.size
        try:
            premium = await self.vault_service.get_quote(vault, pool_key, size, request.is_buy, taker)
        except Exception as e:
            logger.debug(f"Vault {vault} declined quote for {request.pool_address}: {e}")
            return None
        if not premium:
            return None

        # Vault premiums already include the taker fee
        limit = premium
        if request.max_slippage_percent:
            limit = premium_limit(premium, request.max_slippage_percent, request.is_buy)

        taker_fee = await self.pool_service.taker_fee(request.pool_address, size, 0, True, False, taker)

        return FillableQuote(
            pool_key=pool_key,
            provider=vault,
            taker=taker,
            price=(premium - taker_fee) * WAD // size,
            size=size,
            is_buy=not request.is_buy,
            deadline=int(time.time()) + QUOTE_DEADLINE_SECONDS,
            origin=QuoteOrigin.VAULT,
            pool_address=request.pool_address,
            taker_fee=taker_fee,
            approval_target=vault,
            approval_amount=limit,
            to=vault,
            data=encode_vault_trade(
                pool_key, size, request.is_buy, limit, to_referrer(request.referrer, self.default_referrer)
            ),
        )

    async def _safe_quote(self, request: QuoteRequest, vaults: Optional[List[str]]) -> Optional[FillableQuote]:
        try:
            return await self.quote(request, vaults)
        except Exception as e:
            logger.warning(f"Error streaming vault quote for {request.pool_address}: {e}")
            return None

    async def stream(self, request: QuoteRequest, generation: Generation) -> AsyncIterator[Optional[FillableQuote]]:
        captured = generation.value

        vaults: Optional[List[str]] = None
        try:
            pool = await self.pool_service.get_pool(request.pool_address)
            vaults = await self.vault_service.get_vaults(pool.pool_key, request.is_buy)
        except Exception as e:
            logger.warning(f"Could not resolve vaults for {request.pool_address}: {e}")

        yield await self._safe_quote(request, vaults)

        while generation.is_current(captured):
            await asyncio.sleep(self.poll_interval)
            if not generation.is_current(captured):
                break
            quote = await self._safe_quote(request, vaults)
            if not generation.is_current(captured):
                break
            yield quote

    async def unsubscribe(self, pool_address: Optional[str] = None) -> None:
        # Polling loops observe the generation, nothing to tear down
        return None
