from functools import lru_cache
from typing import Optional

from web3 import Web3

from ..config import ConfigManager
from ...exceptions import ConfigurationError


@lru_cache(maxsize=16)
def get_w3(rpc_url: Optional[str] = None) -> Web3:
    url = rpc_url or ConfigManager().rpc_url
    if not url:
        raise ConfigurationError("No RPC configured, set PREMIA_RPC_URL or rpc_url in config.json")
    return Web3(Web3.HTTPProvider(url, request_kwargs={"timeout": 15}))
