"""
Calldata for the contract calls a fillable quote points at.
"""
from typing import Any, List, Optional

from eth_abi import encode
from eth_utils import keccak, to_checksum_address

from ..models import PoolKey, RawQuote, Signature
from ...constants import ZERO_ADDRESS

QUOTE_OB_TUPLE = "(address,address,uint256,uint256,bool,uint256,uint256)"
SIGNATURE_TUPLE = "(uint8,bytes32,bytes32)"
POOL_KEY_TUPLE = "(address,address,address,uint256,uint256,bool)"

FILL_QUOTE_OB = f"fillQuoteOB({QUOTE_OB_TUPLE},uint256,{SIGNATURE_TUPLE},address)"
POOL_TRADE = "trade(uint256,bool,uint256,address)"
VAULT_TRADE = f"trade({POOL_KEY_TUPLE},uint256,bool,uint256,address)"


def compute_function_selector(function_signature: str) -> bytes:
    """First 4 bytes of keccak256 of the canonical signature"""
    return keccak(text=function_signature)[:4]


def _argument_types(function_signature: str) -> List[str]:
    # Split top-level arguments only, tuples keep their commas
    inner = function_signature[function_signature.index("(") + 1:-1]
    types, depth, current = [], 0, ""
    for char in inner:
        if char == "," and depth == 0:
            types.append(current)
            current = ""
            continue
        depth += char == "("
        depth -= char == ")"
        current += char
    if current:
        types.append(current)
    return types


def encode_function_call(function_signature: str, *args: Any) -> str:
    selector = compute_function_selector(function_signature)
    encoded = encode(_argument_types(function_signature), list(args))
    return "0x" + (selector + encoded).hex()


def _address(value: str) -> str:
    return to_checksum_address(value)


def _bytes32(value: str) -> bytes:
    return bytes.fromhex(value[2:] if value.startswith("0x") else value).rjust(32, b"\0")


def quote_ob_tuple(quote: RawQuote) -> tuple:
    return (
        _address(quote.provider),
        _address(quote.taker),
        quote.price,
        quote.size,
        quote.is_buy,
        quote.deadline,
        quote.salt or 0,
    )


def pool_key_tuple(pool_key: PoolKey) -> tuple:
    return (
        _address(pool_key.base),
        _address(pool_key.quote),
        _address(pool_key.oracle_adapter),
        pool_key.strike,
        pool_key.maturity,
        pool_key.is_call_pool,
    )


def encode_fill_quote_ob(quote: RawQuote, size: int, signature: Signature, referrer: str) -> str:
    return encode_function_call(
        FILL_QUOTE_OB,
        quote_ob_tuple(quote),
        size,
        (signature.v, _bytes32(signature.r), _bytes32(signature.s)),
        _address(referrer),
    )


def encode_pool_trade(size: int, is_buy: bool, premium_limit: int, referrer: str) -> str:
    return encode_function_call(POOL_TRADE, size, is_buy, premium_limit, _address(referrer))


def encode_vault_trade(pool_key: PoolKey, size: int, is_buy: bool, premium_limit: int, referrer: str) -> str:
    return encode_function_call(
        VAULT_TRADE, pool_key_tuple(pool_key), size, is_buy, premium_limit, _address(referrer)
    )


def to_referrer(referrer: Optional[str], default: Optional[str] = None) -> str:
    return referrer or default or ZERO_ADDRESS
