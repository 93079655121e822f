from typing import Optional

from .cache import MemoryCache, cache
from .config import ConfigManager
from .onchain.contracts import Web3PoolService, Web3VaultService
from .onchain.web3_client import get_w3
from .pipelines.aggregator import StreamAggregator
from .sources.orderbook import OrderbookClient, WebSocketTransport
from .sources.pool import PoolQuoteSource
from .sources.rfq import RfqQuoteSource
from .sources.thegraph import SubgraphPoolDirectory
from .sources.vault import VaultQuoteSource
from ..exceptions import ConfigurationError
from ..execution.fillable import FillableQuoteBuilder
from ..execution.signing import QuoteSigner
from ..execution.validator import QuoteValidator


class DataRegistry:
    """Wires sources and services for the configured chain"""

    def __init__(self, config: Optional[ConfigManager] = None, memo: Optional[MemoryCache] = None, signer=None):
        self.config = config or ConfigManager()
        self.cache = memo or cache
        chain_id = self.config.chain_id

        if not self.config.orderbook_url:
            raise ConfigurationError("No orderbook url configured, set PREMIA_ORDERBOOK_URL")

        self.w3 = get_w3(self.config.rpc_url)
        self.pool_service = Web3PoolService(self.w3, cache=self.cache)
        self.vault_service = Web3VaultService(self.w3, self.config.address("VAULT_REGISTRY"), cache=self.cache)

        transport = None
        if self.config.orderbook_ws_url:
            transport = WebSocketTransport(self.config.orderbook_ws_url, self.config.api_key)
        self.transport = transport
        self.orderbook = OrderbookClient(self.config.orderbook_url, chain_id, self.config.api_key, transport)

        router = self.config.address("ERC20_ROUTER")
        referrer = self.config.addresses.get("DEFAULT_REFERRER")

        self.validator = QuoteValidator(self.pool_service)
        self.builder = FillableQuoteBuilder(self.pool_service, self.validator, router, referrer)
        self.signer = QuoteSigner(signer, chain_id) if signer is not None else None

        self.rfq = RfqQuoteSource(self.orderbook, self.builder, self.signer, self.cache, self.config.quote_ttl)
        self.pools = PoolQuoteSource(self.pool_service, router, referrer)
        self.vaults = VaultQuoteSource(
            self.vault_service, self.pool_service, referrer, self.config.vault_poll_interval
        )

        directory = SubgraphPoolDirectory(self.config.subgraph_url) if self.config.subgraph_url else None
        self.aggregator = StreamAggregator(
            [self.rfq, self.pools, self.vaults], directory, self.cache, self.config.quote_ttl
        )

    async def close(self):
        if self.transport is not None:
            await self.transport.close()
