from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Literal, Optional, Union
from enum import Enum, IntEnum

from ..constants import ZERO_ADDRESS

# Integer fields the relay exchanges as JSON numbers; every other int is a decimal string
_PLAIN_INT_KEYS = {"v", "deadline", "salt", "ts", "createdAt", "maturity"}


def _stringify(value: Any, key: Optional[str] = None) -> Any:
    if isinstance(value, dict):
        return {k: _stringify(v, k) for k, v in value.items()}
    if isinstance(value, list):
        return [_stringify(v) for v in value]
    if isinstance(value, int) and not isinstance(value, bool) and key not in _PLAIN_INT_KEYS:
        return str(value)
    return value


class WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> Dict[str, Any]:
        """camelCase dict with big integers as decimal strings"""
        return _stringify(self.model_dump(by_alias=True, mode="json", exclude_none=True))


class PoolKey(WireModel):
    base: str
    quote: str
    oracle_adapter: str
    strike: int
    maturity: int
    is_call_pool: bool

    def as_tuple(self):
        return (self.base, self.quote, self.oracle_adapter, self.strike, self.maturity, self.is_call_pool)


class Signature(WireModel):
    r: str
    s: str
    v: int

    @classmethod
    def from_bytes(cls, signature: Union[bytes, str]) -> "Signature":
        if isinstance(signature, str):
            signature = bytes.fromhex(signature[2:] if signature.startswith("0x") else signature)
        if len(signature) != 65:
            raise ValueError(f"Expected 65 byte signature, got {len(signature)}")
        v = signature[64]
        if v < 27:
            v += 27
        return cls(r="0x" + signature[:32].hex(), s="0x" + signature[32:64].hex(), v=v)


class QuoteOrigin(str, Enum):
    """Liquidity source a quote came from"""
    RFQ = "orderbook"
    POOL = "pool"
    VAULT = "vault"


class RawQuote(WireModel):
    pool_key: PoolKey
    provider: str
    taker: str = ZERO_ADDRESS
    price: int
    size: int
    is_buy: bool
    deadline: int
    salt: Optional[int] = None

    @field_validator("taker", mode="before")
    @classmethod
    def _default_taker(cls, v):
        return v or ZERO_ADDRESS

    @field_validator("price", "size")
    @classmethod
    def _positive(cls, v: int, info):
        if v <= 0:
            raise ValueError(f"{info.field_name} must be positive")
        return v


class SignedQuote(RawQuote):
    salt: int
    chain_id: str
    signature: Signature

    @field_validator("chain_id", mode="before")
    @classmethod
    def _chain_id_str(cls, v):
        return str(v)


class SourcedQuote(SignedQuote):
    """Signed quote tagged with the liquidity source it was ingested from"""
    origin: QuoteOrigin
    created_at: Optional[int] = None


class OrderbookQuote(SourcedQuote):
    """Quote as indexed by the orderbook relay"""
    origin: QuoteOrigin = QuoteOrigin.RFQ
    quote_id: str
    pool_address: str
    fillable_size: int
    ts: int = 0

    @model_validator(mode="before")
    @classmethod
    def _created_at_from_ts(cls, data: Any):
        if not isinstance(data, dict):
            return data
        data = dict(data)
        data["origin"] = QuoteOrigin.RFQ
        created_at = data.pop("createdAt", None)
        if created_at is None:
            created_at = data.pop("created_at", None)
        else:
            data.pop("created_at", None)
        data["created_at"] = created_at if created_at is not None else data.get("ts")
        return data


class FillableQuote(WireModel):
    """Winning quote converted into a ready-to-submit execution descriptor"""
    pool_key: PoolKey
    provider: str
    taker: str
    price: int               # collateral asset decimals
    size: int
    is_buy: bool
    deadline: int
    salt: Optional[int] = None
    origin: QuoteOrigin
    created_at: Optional[int] = None
    pool_address: str
    taker_fee: int = 0
    approval_target: str
    approval_amount: int
    to: str
    data: str
    signature: Optional[Signature] = None
    chain_id: Optional[str] = None


class PoolInfo(BaseModel):
    """Pool metadata needed to price and encode a fill"""
    address: str
    pool_key: PoolKey
    collateral_decimals: int
    name: Optional[str] = None

    @property
    def is_call(self) -> bool:
        return self.pool_key.is_call_pool

    @property
    def strike(self) -> int:
        return self.pool_key.strike

    @property
    def maturity(self) -> int:
        return self.pool_key.maturity


class InvalidQuoteError(IntEnum):
    NONE = 0
    QUOTE_EXPIRED = 1
    QUOTE_CANCELLED = 2
    QUOTE_OVERFILLED = 3
    OUT_OF_BOUNDS_PRICE = 4
    INVALID_QUOTE_TAKER = 5
    INVALID_QUOTE_SIGNATURE = 6
    INVALID_ASSET_UPDATE = 7
    INSUFFICIENT_COLLATERAL_ALLOWANCE = 8
    INSUFFICIENT_COLLATERAL_BALANCE = 9
    INSUFFICIENT_LONG_BALANCE = 10
    INSUFFICIENT_SHORT_BALANCE = 11


class QuoteValidity(BaseModel):
    is_valid: bool
    error: str = InvalidQuoteError.NONE.name


class AmmQuote(BaseModel):
    premium_net: int
    taker_fee: int


# Orderbook relay messages

class Channel(str, Enum):
    QUOTES = "QUOTES"
    RFQ = "RFQ"


Side = Literal["bid", "ask"]


class FilterBody(WireModel):
    chain_id: str
    pool_address: Optional[str] = None
    pool_key: Optional[PoolKey] = None
    side: Optional[Side] = None
    size: Optional[int] = None
    taker: Optional[str] = None
    provider: Optional[str] = None


class FilterMessage(WireModel):
    type: Literal["FILTER"] = "FILTER"
    channel: Channel
    body: FilterBody


class UnsubscribeMessage(WireModel):
    type: Literal["UNSUBSCRIBE"] = "UNSUBSCRIBE"
    channel: Channel
    body: None = None

    def to_wire(self) -> Dict[str, Any]:
        return {"type": self.type, "channel": self.channel.value, "body": None}


class RfqBody(WireModel):
    chain_id: str
    side: Side
    size: int
    taker: str = ZERO_ADDRESS
    pool_address: Optional[str] = None
    pool_key: Optional[PoolKey] = None


class RfqMessage(WireModel):
    type: Literal["RFQ"] = "RFQ"
    body: RfqBody


class PostQuoteMessage(WireModel):
    type: Literal["POST_QUOTE"] = "POST_QUOTE"
    body: OrderbookQuote


class DeleteQuoteMessage(WireModel):
    type: Literal["DELETE_QUOTE"] = "DELETE_QUOTE"
    body: OrderbookQuote


class InfoMessage(WireModel):
    type: Literal["INFO"] = "INFO"
    message: str = ""
    body: Optional[Any] = None


class ErrorMessage(WireModel):
    type: Literal["ERROR"] = "ERROR"
    message: str = ""
    body: Optional[Any] = None


class PublishQuotesResponse(BaseModel):
    created: List[OrderbookQuote] = Field(default_factory=list)
    failed: List[Dict[str, Any]] = Field(default_factory=list)
    exists: List[Dict[str, Any]] = Field(default_factory=list)
