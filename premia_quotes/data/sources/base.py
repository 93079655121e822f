from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Dict, Any, List, Optional, Tuple

from ..models import AmmQuote, FillableQuote, PoolInfo, PoolKey, QuoteOrigin, QuoteValidity, RawQuote, Signature


@dataclass(frozen=True)
class QuoteRequest:
    """What a caller wants priced on one pool"""
    pool_address: str
    size: int
    is_buy: bool
    minimum_size: Optional[int] = None
    referrer: Optional[str] = None
    taker: Optional[str] = None
    max_slippage_percent: Optional[float] = None


@dataclass(frozen=True)
class SeriesRequest:
    """An option series priced across every pool that lists it"""
    token: str
    strike: int
    maturity: int
    is_call: bool
    is_buy: bool
    size: int
    minimum_size: Optional[int] = None
    referrer: Optional[str] = None
    taker: Optional[str] = None
    price_oracle: Optional[str] = None
    quote_tokens: Optional[Tuple[str, ...]] = None
    max_slippage_percent: Optional[float] = None

    def for_pool(self, pool_address: str) -> QuoteRequest:
        return QuoteRequest(
            pool_address=pool_address,
            size=self.size,
            is_buy=self.is_buy,
            minimum_size=self.minimum_size,
            referrer=self.referrer,
            taker=self.taker,
            max_slippage_percent=self.max_slippage_percent,
        )


class Generation:
    """Monotonic stream generation. Deliveries captured under an older value are stale."""

    def __init__(self):
        self.value = 0

    def advance(self) -> int:
        self.value += 1
        return self.value

    def is_current(self, captured: int) -> bool:
        return captured == self.value


class QuoteSource(ABC):
    """One liquidity source: a one-shot quote plus a live stream of its best quote"""
    origin: QuoteOrigin

    @abstractmethod
    async def quote(self, request: QuoteRequest) -> Optional[FillableQuote]:
        ...

    @abstractmethod
    def stream(self, request: QuoteRequest, generation: Generation) -> AsyncIterator[Optional[FillableQuote]]:
        """Yield the source's best quote initially and whenever it changes, until the generation goes stale"""
        ...

    @abstractmethod
    async def unsubscribe(self, pool_address: Optional[str] = None) -> None:
        ...


class PoolService(ABC):
    """On-chain pool reads the quote pipeline depends on"""

    @abstractmethod
    async def get_pool(self, pool_address: str) -> PoolInfo:
        ...

    @abstractmethod
    async def taker_fee(
        self,
        pool_address: str,
        size: int,
        premium: int,
        is_premium_normalized: bool = False,
        is_orderbook: bool = False,
        taker: Optional[str] = None,
    ) -> int:
        ...

    @abstractmethod
    async def is_quote_valid(
        self, quote: RawQuote, signature: Signature, size: Optional[int] = None, taker: Optional[str] = None
    ) -> QuoteValidity:
        ...

    @abstractmethod
    async def get_quote_amm(self, pool_address: str, size: int, is_buy: bool, taker: Optional[str] = None) -> AmmQuote:
        ...

    @abstractmethod
    def watch_trades(self, pool_address: str) -> AsyncIterator[None]:
        """Yield once per observed pool activity"""
        ...

    @abstractmethod
    async def unwatch_trades(self, pool_address: str) -> None:
        ...


class VaultService(ABC):
    @abstractmethod
    async def get_vaults(self, pool_key: PoolKey, is_buy: bool) -> List[str]:
        """Vaults trading the pool's pair on the side opposite to the taker"""
        ...

    @abstractmethod
    async def get_quote(self, vault: str, pool_key: PoolKey, size: int, is_buy: bool, taker: str) -> Optional[int]:
        """Premium (fee inclusive, collateral decimals) the vault charges or pays"""
        ...


class PoolDirectory(ABC):
    """Resolves the pools matching an option series"""

    @abstractmethod
    async def get_quote_pools(self, token: str, strike: int, maturity: int, is_call: bool) -> List[PoolInfo]:
        ...


MessageHandler = Callable[[Dict[str, Any]], Awaitable[None]]


class RelayTransport(ABC):
    """Ordered message delivery per relay subscription"""

    @abstractmethod
    async def send(self, message: Dict[str, Any]) -> None:
        ...

    @abstractmethod
    async def subscribe(self, message: Dict[str, Any], handler: MessageHandler) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self, channel: str) -> None:
        ...
