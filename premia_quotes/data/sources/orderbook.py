import asyncio
import json
from typing import Any, Dict, List, Optional

import aiohttp
from loguru import logger
from pydantic import ValidationError

from .base import MessageHandler, RelayTransport
from ..http_client import delete_json, get_json, post_json
from ..models import (
    Channel,
    ErrorMessage,
    FilterBody,
    FilterMessage,
    InfoMessage,
    OrderbookQuote,
    PublishQuotesResponse,
    RfqBody,
    RfqMessage,
    SignedQuote,
    UnsubscribeMessage,
)
from ...constants import ZERO_ADDRESS
from ...exceptions import RelayError

# Relay message type -> channel whose subscribers receive it
MESSAGE_CHANNELS = {
    "POST_QUOTE": Channel.QUOTES,
    "DELETE_QUOTE": Channel.QUOTES,
    "RFQ": Channel.RFQ,
}

# Relay notices that are logged rather than routed
NOTICE_MESSAGES = {
    "INFO": InfoMessage,
    "ERROR": ErrorMessage,
}


class WebSocketTransport(RelayTransport):
    """Single websocket to the relay, messages dispatched to channel subscribers in arrival order"""

    def __init__(self, ws_url: str, api_key: Optional[str] = None):
        self.ws_url = ws_url
        self.api_key = api_key
        self.handlers: Dict[str, List[MessageHandler]] = {}
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader: Optional[asyncio.Task] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self):
        async with self._lock:
            if self.connected:
                return
            if self._session is None or self._session.closed:
                self._session = aiohttp.ClientSession()
            self._ws = await self._session.ws_connect(self.ws_url, heartbeat=30)
            await self._ws.send_json({"type": "AUTH", "apiKey": self.api_key, "body": None})
            self._reader = asyncio.create_task(self._read_loop(self._ws))
            logger.info(f"Connected to orderbook relay {self.ws_url}")

    async def _read_loop(self, ws: aiohttp.ClientWebSocketResponse):
        async for msg in ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                await self.dispatch(json.loads(msg.data))
            elif msg.type == aiohttp.WSMsgType.ERROR:
                logger.error(f"Orderbook relay socket error: {ws.exception()}")
                break
        logger.info("Orderbook relay connection closed")

    async def dispatch(self, message: Dict[str, Any]):
        kind = message.get("type")
        if kind in NOTICE_MESSAGES:
            try:
                notice = NOTICE_MESSAGES[kind].model_validate(message)
            except ValidationError as e:
                logger.warning(f"Malformed relay {kind} message: {e}")
                return
            if kind == "ERROR":
                logger.error(f"Orderbook relay error: {notice.message}")
            else:
                logger.debug(f"Orderbook relay info: {notice.message}")
            return
        channel = MESSAGE_CHANNELS.get(kind)
        if channel is None:
            logger.debug(f"Ignoring relay message of type {kind}")
            return

        for handler in list(self.handlers.get(channel.value, [])):
            try:
                await handler(message)
            except Exception as e:
                logger.error(f"Relay handler for {channel.value} failed: {e}")

    async def send(self, message: Dict[str, Any]):
        await self.connect()
        await self._ws.send_json(message)

    async def subscribe(self, message: Dict[str, Any], handler: MessageHandler):
        self.handlers.setdefault(message["channel"], []).append(handler)
        await self.send(message)

    async def unsubscribe(self, channel: str):
        self.handlers.pop(channel, None)
        if self.connected:
            await self._ws.send_json(UnsubscribeMessage(channel=Channel(channel)).to_wire())

    async def close(self):
        if self._ws is not None:
            await self._ws.close()
        if self._session is not None:
            await self._session.close()
        if self._reader is not None:
            await asyncio.gather(self._reader, return_exceptions=True)


class OrderbookClient:
    """REST and streaming access to the orderbook relay"""

    def __init__(self, url: str, chain_id: int, api_key: Optional[str] = None, transport: Optional[RelayTransport] = None):
        self.url = url.rstrip("/")
        self.chain_id = int(chain_id)
        self.api_key = api_key
        self.transport = transport

    @property
    def headers(self) -> Dict[str, str]:
        return {"x-apikey": self.api_key} if self.api_key else {}

    def _require_transport(self) -> RelayTransport:
        if self.transport is None:
            raise RelayError("No relay transport configured for streaming")
        return self.transport

    async def get_quotes(
        self,
        pool_address: str,
        size: int,
        side: str,
        provider: Optional[str] = None,
        taker: Optional[str] = None,
    ) -> List[OrderbookQuote]:
        params = {"poolAddress": pool_address, "size": str(size), "side": side, "chainId": str(self.chain_id)}
        if provider:
            params["provider"] = provider
        if taker:
            params["taker"] = taker

        try:
            data = await get_json(f"{self.url}/quotes", params=params, headers=self.headers)
        except aiohttp.ClientError as e:
            logger.error(f"Error fetching orderbook quotes: {e}")
            return []

        return [OrderbookQuote.model_validate(quote) for quote in data or []]

    async def get_rfq_quotes(self, pool_address: str, side: str, taker: Optional[str] = None) -> List[OrderbookQuote]:
        params = {"poolAddress": pool_address, "side": side, "chainId": str(self.chain_id), "taker": taker or ZERO_ADDRESS}
        try:
            data = await get_json(f"{self.url}/rfq_quotes", params=params, headers=self.headers)
        except aiohttp.ClientError as e:
            logger.error(f"Error fetching RFQ quotes: {e}")
            return []
        return [OrderbookQuote.model_validate(quote) for quote in data or []]

    async def publish_quotes(self, quotes: List[SignedQuote]) -> PublishQuotesResponse:
        payload = [{**quote.to_wire(), "chainId": str(self.chain_id)} for quote in quotes]
        try:
            data = await post_json(f"{self.url}/quotes", payload, headers=self.headers)
        except aiohttp.ClientError as e:
            raise RelayError(f"Failed to publish quotes: {e}") from e

        if isinstance(data, list):
            return PublishQuotesResponse(created=data)
        return PublishQuotesResponse.model_validate(data)

    async def delete_quotes(self, quote_ids: List[str]):
        try:
            return await delete_json(f"{self.url}/quotes", {"quoteIds": quote_ids}, headers=self.headers)
        except aiohttp.ClientError as e:
            raise RelayError(f"Failed to delete quotes: {e}") from e

    async def publish_rfq(self, pool_address: str, size: int, side: str, taker: Optional[str] = None):
        message = RfqMessage(body=RfqBody(
            pool_address=pool_address,
            side=side,
            chain_id=str(self.chain_id),
            size=size,
            taker=taker or ZERO_ADDRESS,
        ))
        await self._require_transport().send(message.to_wire())

    async def subscribe_quotes(
        self,
        pool_address: str,
        side: str,
        handler: MessageHandler,
        size: Optional[int] = None,
        taker: Optional[str] = None,
    ):
        message = FilterMessage(channel=Channel.QUOTES, body=FilterBody(
            pool_address=pool_address,
            side=side,
            chain_id=str(self.chain_id),
            size=size,
            taker=taker,
        ))
        await self._require_transport().subscribe(message.to_wire(), handler)

    async def unsubscribe(self, channel: Channel):
        if self.transport is not None:
            await self.transport.unsubscribe(channel.value)
