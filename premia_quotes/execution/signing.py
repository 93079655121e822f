"""
EIP-712 signing and hashing of orderbook quotes.

`quote_hash` reproduces byte for byte the digest the pool contract recovers
the quote signer from:

    keccak256(0x1901 || domainSeparator || structHash)

Any change to field order, type widths or encoding breaks on-chain recovery.
"""
import asyncio
import json
import time
from abc import ABC, abstractmethod
from typing import Any, Dict

from eth_abi import encode
from eth_account.messages import encode_typed_data
from eth_account.signers.local import LocalAccount
from eth_utils import keccak, to_checksum_address
from loguru import logger

from ..constants import DOMAIN_NAME, DOMAIN_VERSION, EIP712_DOMAIN_TYPE, FILL_QUOTE_OB_TYPE
from ..data.models import RawQuote, SignedQuote, Signature

EIP712_TYPE_HASH = keccak(text=EIP712_DOMAIN_TYPE)
FILL_QUOTE_TYPE_HASH = keccak(text=FILL_QUOTE_OB_TYPE)

EIP712_DOMAIN_FIELDS = [
    {"name": "name", "type": "string"},
    {"name": "version", "type": "string"},
    {"name": "chainId", "type": "uint256"},
    {"name": "verifyingContract", "type": "address"},
]

FILL_QUOTE_OB_FIELDS = [
    {"name": "provider", "type": "address"},
    {"name": "taker", "type": "address"},
    {"name": "price", "type": "uint256"},
    {"name": "size", "type": "uint256"},
    {"name": "isBuy", "type": "bool"},
    {"name": "deadline", "type": "uint256"},
    {"name": "salt", "type": "uint256"},
]


def domain_separator(pool_address: str, chain_id: int) -> bytes:
    return keccak(encode(
        ["bytes32", "bytes32", "bytes32", "uint256", "address"],
        [
            EIP712_TYPE_HASH,
            keccak(text=DOMAIN_NAME),
            keccak(text=DOMAIN_VERSION),
            int(chain_id),
            to_checksum_address(pool_address),
        ],
    ))


def struct_hash(quote: RawQuote) -> bytes:
    if quote.salt is None:
        raise ValueError("Quote salt must be set before hashing")
    return keccak(encode(
        ["bytes32", "address", "address", "uint256", "uint256", "bool", "uint256", "uint256"],
        [
            FILL_QUOTE_TYPE_HASH,
            to_checksum_address(quote.provider),
            to_checksum_address(quote.taker),
            quote.price,
            quote.size,
            quote.is_buy,
            quote.deadline,
            quote.salt,
        ],
    ))


def quote_hash(quote: RawQuote, pool_address: str, chain_id: int) -> str:
    """Digest the pool contract verifies the quote signature against"""
    digest = keccak(b"\x19\x01" + domain_separator(pool_address, chain_id) + struct_hash(quote))
    return "0x" + digest.hex()


def build_typed_data(quote: RawQuote, pool_address: str, chain_id: int) -> Dict[str, Any]:
    return {
        "types": {
            "EIP712Domain": EIP712_DOMAIN_FIELDS,
            "FillQuoteOB": FILL_QUOTE_OB_FIELDS,
        },
        "primaryType": "FillQuoteOB",
        "domain": {
            "name": DOMAIN_NAME,
            "version": DOMAIN_VERSION,
            "chainId": int(chain_id),
            "verifyingContract": to_checksum_address(pool_address),
        },
        "message": {
            "provider": to_checksum_address(quote.provider),
            "taker": to_checksum_address(quote.taker),
            "price": quote.price,
            "size": quote.size,
            "isBuy": quote.is_buy,
            "deadline": quote.deadline,
            "salt": quote.salt,
        },
    }


class TypedDataSigner(ABC):
    """Produces an EIP-712 signature on behalf of an address"""

    @abstractmethod
    async def sign_typed_data(self, address: str, typed_data: Dict[str, Any]) -> Signature:
        ...


class AccountSigner(TypedDataSigner):
    """Signs with an eth-account LocalAccount supplied by the caller"""

    def __init__(self, account: LocalAccount):
        self.account = account

    async def sign_typed_data(self, address: str, typed_data: Dict[str, Any]) -> Signature:
        if address.lower() != self.account.address.lower():
            raise ValueError(f"Signer {self.account.address} cannot sign for {address}")
        signed = self.account.sign_message(encode_typed_data(full_message=typed_data))
        return Signature.from_bytes(bytes(signed.signature))


class Web3Signer(TypedDataSigner):
    """Delegates to the node or wallet behind a Web3 provider (eth_signTypedData_v4)"""

    def __init__(self, w3):
        self.w3 = w3

    async def sign_typed_data(self, address: str, typed_data: Dict[str, Any]) -> Signature:
        # uint256 values as strings, wallets parse JSON numbers as doubles
        payload = json.dumps(_stringify_uints(typed_data))
        response = await asyncio.to_thread(
            self.w3.provider.make_request, "eth_signTypedData_v4", [address, payload]
        )
        if "error" in response:
            raise RuntimeError(f"eth_signTypedData_v4 failed: {response['error']}")
        return Signature.from_bytes(response["result"])


def _stringify_uints(typed_data: Dict[str, Any]) -> Dict[str, Any]:
    message = {
        key: str(value) if isinstance(value, int) and not isinstance(value, bool) else value
        for key, value in typed_data["message"].items()
    }
    return {**typed_data, "message": message}


class QuoteSigner:
    """Salts, signs and hashes quotes for a single chain"""

    def __init__(self, signer: TypedDataSigner, chain_id: int):
        self.signer = signer
        self.chain_id = int(chain_id)

    async def sign(self, pool_address: str, quote: RawQuote) -> SignedQuote:
        salt = quote.salt if quote.salt is not None else int(time.time() * 1000)
        quote = quote.model_copy(update={"salt": salt})

        typed_data = build_typed_data(quote, pool_address, self.chain_id)
        signature = await self.signer.sign_typed_data(quote.provider, typed_data)
        logger.debug(f"Signed quote {self.hash(quote, pool_address)} for provider {quote.provider}")

        return SignedQuote(
            **quote.model_dump(include=set(RawQuote.model_fields)),
            chain_id=str(self.chain_id),
            signature=signature,
        )

    def hash(self, quote: RawQuote, pool_address: str) -> str:
        return quote_hash(quote, pool_address, self.chain_id)
