from typing import Optional

from loguru import logger

from ..data.models import SignedQuote
from ..data.sources.base import PoolService
from ..exceptions import InvalidQuote


class QuoteValidator:
    """
    Fillability policy over the pool's on-chain quote check
    (signature, deadline, balances, allowances, remaining size).
    """

    def __init__(self, pool_service: PoolService):
        self.pool_service = pool_service

    async def is_valid(
        self,
        quote: SignedQuote,
        size: Optional[int] = None,
        taker: Optional[str] = None,
        throw_error: bool = False,
    ) -> bool:
        validity = await self.pool_service.is_quote_valid(quote, quote.signature, size=size, taker=taker)

        if not validity.is_valid:
            logger.debug(f"Quote from {quote.provider} failed validation: {validity.error}")
            if throw_error:
                raise InvalidQuote(validity.error)

        return validity.is_valid
