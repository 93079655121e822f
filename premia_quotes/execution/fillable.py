"""
Orderbook quote selection and conversion into executable fills.
"""
import asyncio
from typing import List, Optional

from loguru import logger

from ..constants import WAD, WAD_DECIMALS
from ..data.fixed import convert_decimals
from ..data.models import FillableQuote, OrderbookQuote, QuoteOrigin, SignedQuote
from ..data.onchain.calldata import encode_fill_quote_ob, to_referrer
from ..data.pipelines.comparator import sort_quotes
from ..data.sources.base import PoolService
from ..exceptions import InvalidQuote
from .validator import QuoteValidator


class FillableQuoteBuilder:
    def __init__(
        self,
        pool_service: PoolService,
        validator: QuoteValidator,
        approval_target: str,
        default_referrer: Optional[str] = None,
    ):
        self.pool_service = pool_service
        self.validator = validator
        self.approval_target = approval_target
        self.default_referrer = default_referrer

    def referrer(self, referrer: Optional[str] = None) -> str:
        return to_referrer(referrer, self.default_referrer)

    async def to_fillable(
        self,
        pool_address: str,
        size: int,
        quote: SignedQuote,
        created_at: Optional[int] = None,
        referrer: Optional[str] = None,
    ) -> FillableQuote:
        """
        Price, fee and calldata for filling `quote` with up to `size` contracts.

        The returned price and premium are in the collateral token's decimals:
        call pools are collateralized in the base token, put pools in the quote
        token at strike.
        """
        available = quote.fillable_size if isinstance(quote, OrderbookQuote) else quote.size
        size = min(size, available)
        normalized_premium = size * quote.price // WAD

        pool, taker_fee = await asyncio.gather(
            self.pool_service.get_pool(pool_address),
            self.pool_service.taker_fee(pool_address, size, normalized_premium, True, True, quote.taker),
        )

        denormalized_price = quote.price if pool.is_call else quote.price * pool.strike // WAD
        price = convert_decimals(denormalized_price, WAD_DECIMALS, pool.collateral_decimals)
        premium = convert_decimals(size * denormalized_price // WAD, WAD_DECIMALS, pool.collateral_decimals)

        approval_amount = size - premium + taker_fee if quote.is_buy else premium + taker_fee

        return FillableQuote(
            pool_key=quote.pool_key,
            provider=quote.provider,
            taker=quote.taker,
            price=price,
            size=size,
            is_buy=quote.is_buy,
            deadline=quote.deadline,
            salt=quote.salt,
            origin=QuoteOrigin.RFQ,
            created_at=created_at,
            pool_address=pool_address,
            taker_fee=taker_fee,
            approval_target=self.approval_target,
            approval_amount=approval_amount,
            to=pool_address,
            data=encode_fill_quote_ob(quote, size, quote.signature, self.referrer(referrer)),
            signature=quote.signature,
            chain_id=quote.chain_id,
        )

    async def best_quote(
        self,
        candidates: List[OrderbookQuote],
        size: int,
        minimum_size: Optional[int] = None,
        taker: Optional[str] = None,
    ) -> Optional[OrderbookQuote]:
        """First quote, in ranking order, that passes the on-chain validity check"""
        resized = [quote.model_copy(update={"size": quote.fillable_size}) for quote in candidates]

        for quote in sort_quotes(resized, size, minimum_size):
            try:
                if await self.validator.is_valid(quote, quote.fillable_size, taker, throw_error=True):
                    return quote
                logger.warning(f"Invalid quote {quote.quote_id}")
            except InvalidQuote as e:
                logger.warning(f"Invalid quote {quote.quote_id}: {e}")
            except Exception as e:
                logger.error(f"Quote validation error for {quote.quote_id}: {e}")

        return None
