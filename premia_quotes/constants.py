from enum import IntEnum
from typing import Dict

WAD_DECIMALS = 18
WAD = 10 ** WAD_DECIMALS
ZERO_ADDRESS = "0x0000000000000000000000000000000000000000"


class SupportedChainId(IntEnum):
    ARBITRUM_GOERLI = 421613
    ARBITRUM = 42161
    ARBITRUM_NOVA = 42170


class CacheTTL:
    """Memoization lifetimes in seconds"""
    SECOND = 1
    MINUTE = 60
    HOURLY = 60 * 60
    DAILY = 60 * 60 * 24


# Fee percentages, WAD scaled
class Fees:
    PREMIUM_FEE_PERCENT = 3 * 10 ** 16           # 3%
    NOTIONAL_FEE_PERCENT = 3 * 10 ** 15          # 0.3%
    ORDERBOOK_NOTIONAL_FEE_PERCENT = 8 * 10 ** 14  # 0.08%
    MAX_PREMIUM_FEE_PERCENT = 125 * 10 ** 15     # 12.5%


DEFAULT_REFERRER = "0x3e4906976Cd967c99FbF0B32823e59aB96DDBE3F"

# Defaults only; deployment addresses (ERC20_ROUTER, VAULT_REGISTRY, ...) come from config.json
ADDRESSES: Dict[int, Dict[str, str]] = {
    SupportedChainId.ARBITRUM: {"DEFAULT_REFERRER": DEFAULT_REFERRER},
    SupportedChainId.ARBITRUM_GOERLI: {"DEFAULT_REFERRER": DEFAULT_REFERRER},
    SupportedChainId.ARBITRUM_NOVA: {},
}

QUOTE_DEADLINE_SECONDS = 60 * 60
VAULT_POLL_INTERVAL = 15

# EIP-712 typed data
DOMAIN_NAME = "Premia"
DOMAIN_VERSION = "1"
EIP712_DOMAIN_TYPE = "EIP712Domain(string name,string version,uint256 chainId,address verifyingContract)"
FILL_QUOTE_OB_TYPE = (
    "FillQuoteOB(address provider,address taker,uint256 price,uint256 size,"
    "bool isBuy,uint256 deadline,uint256 salt)"
)
