from typing import Any, Dict, List, Optional

from loguru import logger

from .base import PoolDirectory
from ..http_client import post_json
from ..models import PoolInfo, PoolKey

QUOTE_POOLS_QUERY = """
query QuotePools($base: String!, $strike: BigInt!, $maturity: BigInt!, $optionType: String!) {
  pools(where: {base: $base, strike: $strike, maturity: $maturity, optionType: $optionType}) {
    address name isCall strike maturity
    pair { base { address } quote { address } priceOracleAddress }
    collateralAsset { address decimals }
  }
}
"""


async def graph_query(url: str, query: str, variables: Optional[Dict[str, Any]] = None):
    data = await post_json(url, {"query": query, "variables": variables or {}})
    if data.get("errors"):
        raise RuntimeError(f"Subgraph query failed: {data['errors']}")
    return data


def _pool_info(pool: Dict[str, Any]) -> PoolInfo:
    pair = pool["pair"]
    return PoolInfo(
        address=pool["address"],
        name=pool.get("name"),
        collateral_decimals=int(pool["collateralAsset"]["decimals"]),
        pool_key=PoolKey(
            base=pair["base"]["address"],
            quote=pair["quote"]["address"],
            oracle_adapter=pair["priceOracleAddress"],
            strike=int(pool["strike"]),
            maturity=int(pool["maturity"]),
            is_call_pool=pool["isCall"],
        ),
    )


class SubgraphPoolDirectory(PoolDirectory):
    """Option series lookup against the protocol subgraph"""

    def __init__(self, url: str):
        self.url = url

    async def get_quote_pools(self, token: str, strike: int, maturity: int, is_call: bool) -> List[PoolInfo]:
        variables = {
            "base": token.lower(),
            "strike": str(strike),
            "maturity": str(maturity),
            "optionType": "CALL" if is_call else "PUT",
        }
        data = await graph_query(self.url, QUOTE_POOLS_QUERY, variables)
        pools = data.get("data", {}).get("pools", [])
        logger.debug(f"Subgraph returned {len(pools)} pools for {token} {strike} {maturity}")
        return [_pool_info(pool) for pool in pools]
