"""
web3 backed pool and vault services.

Calls are synchronous in web3.py, so every contract read is moved off the
event loop with asyncio.to_thread.
"""
import asyncio
from typing import AsyncIterator, Dict, List, Optional, Set

from eth_utils import to_checksum_address
from loguru import logger
from web3 import Web3

from .calldata import pool_key_tuple, quote_ob_tuple
from ..cache import MemoryCache, cache_key
from ..fixed import convert_decimals, wmul
from ..models import AmmQuote, InvalidQuoteError, PoolInfo, PoolKey, QuoteValidity, RawQuote, Signature
from ..sources.base import PoolService, VaultService
from ...constants import CacheTTL, Fees, WAD_DECIMALS, ZERO_ADDRESS


def _component(name, type_, components=None):
    entry = {"name": name, "type": type_}
    if components:
        entry["components"] = components
    return entry


POOL_KEY_COMPONENTS = [
    _component("base", "address"),
    _component("quote", "address"),
    _component("oracleAdapter", "address"),
    _component("strike", "uint256"),
    _component("maturity", "uint256"),
    _component("isCallPool", "bool"),
]

QUOTE_OB_COMPONENTS = [
    _component("provider", "address"),
    _component("taker", "address"),
    _component("price", "uint256"),
    _component("size", "uint256"),
    _component("isBuy", "bool"),
    _component("deadline", "uint256"),
    _component("salt", "uint256"),
]

SIGNATURE_COMPONENTS = [
    _component("v", "uint8"),
    _component("r", "bytes32"),
    _component("s", "bytes32"),
]

POOL_ABI = [
    {
        "name": "getPoolSettings",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [
            _component("base", "address"),
            _component("quote", "address"),
            _component("oracleAdapter", "address"),
            _component("strike", "uint256"),
            _component("maturity", "uint256"),
            _component("isCallPool", "bool"),
        ],
    },
    {
        "name": "takerFee",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            _component("taker", "address"),
            _component("size", "uint256"),
            _component("premium", "uint256"),
            _component("isPremiumNormalized", "bool"),
            _component("isOrderbook", "bool"),
        ],
        "outputs": [_component("", "uint256")],
    },
    {
        "name": "getQuoteAMM",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            _component("taker", "address"),
            _component("size", "uint256"),
            _component("isBuy", "bool"),
        ],
        "outputs": [_component("premiumNet", "uint256"), _component("takerFee", "uint256")],
    },
    {
        "name": "isQuoteOBValid",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            _component("user", "address"),
            _component("quoteOB", "tuple", QUOTE_OB_COMPONENTS),
            _component("size", "uint256"),
            _component("sig", "tuple", SIGNATURE_COMPONENTS),
        ],
        "outputs": [_component("", "bool"), _component("", "uint8")],
    },
]

ERC20_ABI = [
    {
        "name": "decimals",
        "type": "function",
        "stateMutability": "view",
        "inputs": [],
        "outputs": [_component("", "uint8")],
    },
]

VAULT_REGISTRY_ABI = [
    {
        "name": "getVaultsByFilter",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            _component("assets", "address[]"),
            _component("side", "uint8"),
            _component("optionType", "uint8"),
        ],
        "outputs": [_component("", "tuple[]", [
            _component("vault", "address"),
            _component("asset", "address"),
            _component("vaultType", "bytes32"),
            _component("side", "uint8"),
            _component("optionType", "uint8"),
        ])],
    },
    {
        "name": "getSupportedTokenPairs",
        "type": "function",
        "stateMutability": "view",
        "inputs": [_component("vault", "address")],
        "outputs": [_component("", "tuple[]", [
            _component("base", "address"),
            _component("quote", "address"),
            _component("oracleAdapter", "address"),
        ])],
    },
]

VAULT_ABI = [
    {
        "name": "getQuote",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            _component("poolKey", "tuple", POOL_KEY_COMPONENTS),
            _component("size", "uint256"),
            _component("isBuy", "bool"),
            _component("taker", "address"),
        ],
        "outputs": [_component("premium", "uint256")],
    },
]


def taker_fee_estimate(size: int, premium: int, is_orderbook: bool = False) -> int:
    """Protocol taker fee from the published fee schedule, WAD scaled, without taker discounts"""
    if is_orderbook:
        return min(wmul(Fees.ORDERBOOK_NOTIONAL_FEE_PERCENT, size), wmul(Fees.MAX_PREMIUM_FEE_PERCENT, premium))

    size_based = wmul(size, Fees.NOTIONAL_FEE_PERCENT)
    premium_based = wmul(premium, Fees.PREMIUM_FEE_PERCENT)
    max_fee = size_based if premium == 0 else wmul(Fees.MAX_PREMIUM_FEE_PERCENT, premium)
    return min(max(size_based, premium_based), max_fee)


def trade_side(is_buy: bool) -> int:
    return 0 if is_buy else 1


def option_type(is_call: bool) -> int:
    return 0 if is_call else 1


class Web3PoolService(PoolService):
    def __init__(self, w3: Web3, cache: Optional[MemoryCache] = None, poll_interval: float = 2.0):
        self.w3 = w3
        self.cache = cache or MemoryCache()
        self.poll_interval = poll_interval
        self._watching: Set[str] = set()

    def _pool(self, pool_address: str):
        return self.w3.eth.contract(address=to_checksum_address(pool_address), abi=POOL_ABI)

    def _token(self, token_address: str):
        return self.w3.eth.contract(address=to_checksum_address(token_address), abi=ERC20_ABI)

    async def get_pool(self, pool_address: str) -> PoolInfo:
        key = cache_key(type(self).__name__, "get_pool", pool_address.lower())
        return await self.cache.get_or_set(key, lambda: self._load_pool(pool_address), CacheTTL.DAILY)

    async def _load_pool(self, pool_address: str) -> PoolInfo:
        base, quote, oracle_adapter, strike, maturity, is_call_pool = await asyncio.to_thread(
            self._pool(pool_address).functions.getPoolSettings().call
        )
        pool_key = PoolKey(
            base=base,
            quote=quote,
            oracle_adapter=oracle_adapter,
            strike=strike,
            maturity=maturity,
            is_call_pool=is_call_pool,
        )
        collateral = base if is_call_pool else quote
        decimals = await asyncio.to_thread(self._token(collateral).functions.decimals().call)
        return PoolInfo(address=pool_address, pool_key=pool_key, collateral_decimals=decimals)

    async def taker_fee(
        self,
        pool_address: str,
        size: int,
        premium: int,
        is_premium_normalized: bool = False,
        is_orderbook: bool = False,
        taker: Optional[str] = None,
    ) -> int:
        call = self._pool(pool_address).functions.takerFee(
            to_checksum_address(taker or ZERO_ADDRESS), size, premium, is_premium_normalized, is_orderbook
        ).call
        try:
            return await asyncio.to_thread(call)
        except Exception as e:
            logger.warning(f"takerFee call failed for {pool_address}, using fee schedule: {e}")

        fee = taker_fee_estimate(size, premium, is_orderbook)
        try:
            pool = await self.get_pool(pool_address)
        except Exception:
            return fee
        return convert_decimals(fee, WAD_DECIMALS, pool.collateral_decimals)

    async def is_quote_valid(
        self, quote: RawQuote, signature: Signature, size: Optional[int] = None, taker: Optional[str] = None
    ) -> QuoteValidity:
        pool_address = getattr(quote, "pool_address", None)
        if pool_address is None:
            raise ValueError("Quote validation needs the quote's pool address")

        sig = (signature.v, bytes.fromhex(signature.r[2:]), bytes.fromhex(signature.s[2:]))
        call = self._pool(pool_address).functions.isQuoteOBValid(
            to_checksum_address(taker or ZERO_ADDRESS), quote_ob_tuple(quote), size or quote.size, sig
        ).call
        try:
            is_valid, error = await asyncio.to_thread(call)
        except Exception as e:
            logger.error(f"Couldn't validate quote on {pool_address}: {e}")
            return QuoteValidity(is_valid=False, error=InvalidQuoteError.NONE.name)

        return QuoteValidity(is_valid=is_valid, error=InvalidQuoteError(error).name)

    async def get_quote_amm(self, pool_address: str, size: int, is_buy: bool, taker: Optional[str] = None) -> AmmQuote:
        premium_net, taker_fee = await asyncio.to_thread(
            self._pool(pool_address).functions.getQuoteAMM(to_checksum_address(taker or ZERO_ADDRESS), size, is_buy).call
        )
        return AmmQuote(premium_net=premium_net, taker_fee=taker_fee)

    async def watch_trades(self, pool_address: str) -> AsyncIterator[None]:
        """Yield whenever the pool emits logs, polling from the current block"""
        address = to_checksum_address(pool_address)
        self._watching.add(address)
        from_block = await asyncio.to_thread(lambda: self.w3.eth.block_number) + 1
        logger.info(f"Watching pool activity on {address}")

        while address in self._watching:
            await asyncio.sleep(self.poll_interval)
            if address not in self._watching:
                break
            try:
                latest = await asyncio.to_thread(lambda: self.w3.eth.block_number)
                if latest < from_block:
                    continue
                logs = await asyncio.to_thread(
                    self.w3.eth.get_logs, {"address": address, "fromBlock": from_block, "toBlock": latest}
                )
            except Exception as e:
                logger.warning(f"Error polling logs for {address}: {e}")
                continue

            from_block = latest + 1
            if logs:
                yield None

    async def unwatch_trades(self, pool_address: str) -> None:
        self._watching.discard(to_checksum_address(pool_address))


class Web3VaultService(VaultService):
    def __init__(self, w3: Web3, vault_registry: str, cache: Optional[MemoryCache] = None):
        self.w3 = w3
        self.registry = w3.eth.contract(address=to_checksum_address(vault_registry), abi=VAULT_REGISTRY_ABI)
        self.cache = cache or MemoryCache()

    async def _supported_pairs(self, vault: str) -> List[Dict[str, str]]:
        async def load():
            pairs = await asyncio.to_thread(self.registry.functions.getSupportedTokenPairs(vault).call)
            return [{"base": base, "quote": quote, "oracle_adapter": oracle} for base, quote, oracle in pairs]

        return await self.cache.get_or_set(cache_key(type(self).__name__, "pairs", vault), load, CacheTTL.HOURLY)

    async def get_vaults(self, pool_key: PoolKey, is_buy: bool) -> List[str]:
        asset = pool_key.base if pool_key.is_call_pool else pool_key.quote
        vaults = await asyncio.to_thread(
            self.registry.functions.getVaultsByFilter(
                [to_checksum_address(asset)], trade_side(not is_buy), option_type(pool_key.is_call_pool)
            ).call
        )

        supported = []
        for vault in (entry[0] for entry in vaults):
            pairs = await self._supported_pairs(vault)
            if any(
                pair["base"].lower() == pool_key.base.lower()
                and pair["quote"].lower() == pool_key.quote.lower()
                and pair["oracle_adapter"].lower() == pool_key.oracle_adapter.lower()
                for pair in pairs
            ):
                supported.append(vault)
        return supported

    async def get_quote(self, vault: str, pool_key: PoolKey, size: int, is_buy: bool, taker: str) -> Optional[int]:
        contract = self.w3.eth.contract(address=to_checksum_address(vault), abi=VAULT_ABI)
        premium = await asyncio.to_thread(
            contract.functions.getQuote(pool_key_tuple(pool_key), size, is_buy, to_checksum_address(taker)).call
        )
        return premium or None
