"""Market-data feed adapters.

A feed provides a historical candle fetch plus two push subscriptions
(closed candles and live price ticks). ``MarketFeed.subscribe`` wires both
streams through their own StreamSupervisor so every concrete feed only has to
open connections and decode its wire format.
"""
import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Awaitable, Callable, List, Optional

import aiohttp
from pydantic import BaseModel, ConfigDict, Field

from .candles import Candle
from .config import FeedConfig
from .logging_setup import logger
from .stream_supervisor import FeedError, FeedSubscription, StreamConnection, StreamSupervisor

CANDLE_STREAM = "candles"
PRICE_STREAM = "prices"


class MarketFeed(ABC):
    """Abstract market-data feed."""

    def __init__(self, config: Optional[FeedConfig] = None, *, sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.config = config or FeedConfig()
        self._sleep = sleep

    @abstractmethod
    async def fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        """Return up to ``limit`` candles ordered by open_time (last may be open)."""

    @abstractmethod
    async def open_candle_stream(self, symbol: str, interval: str) -> StreamConnection:
        pass

    @abstractmethod
    async def open_price_stream(self, symbol: str) -> StreamConnection:
        pass

    @abstractmethod
    def parse_candle(self, payload: Any) -> Optional[Candle]:
        """Decode a candle event; None when it is not a closed bar."""

    @abstractmethod
    def parse_price(self, payload: Any, symbol: str) -> Optional[float]:
        """Decode a ticker event; None when it carries no price for ``symbol``."""

    def _supervisor(self, name: str, connect, on_message, on_terminal=None) -> StreamSupervisor:
        return StreamSupervisor(
            name,
            connect,
            on_message,
            on_terminal=on_terminal,
            keepalive_seconds=self.config.keepalive_seconds,
            reconnect_step_seconds=self.config.reconnect_step_seconds,
            reconnect_max_seconds=self.config.reconnect_max_seconds,
            sleep=self._sleep,
        )

    async def subscribe(
        self,
        on_candle_close: Callable[[Candle], Any],
        on_price_tick: Callable[[float], Any],
        *,
        symbol: Optional[str] = None,
        interval: Optional[str] = None,
        on_candle_gap: Optional[Callable[[str], Any]] = None,
    ) -> FeedSubscription:
        """Start the candle and price streams.

        Args:
            on_candle_close: Called with each closed candle; returning False
                reports a delivery failure and forces a resubscribe
            on_price_tick: Called with each live price for ``symbol``
            on_candle_gap: Awaited whenever the candle stream terminates

        Returns:
            FeedSubscription owning both supervisors
        """
        symbol = symbol or self.config.symbol
        interval = interval or self.config.interval

        def handle_candle(payload):
            candle = self.parse_candle(payload)
            if candle is None:
                return None
            return on_candle_close(candle)

        def handle_price(payload):
            price = self.parse_price(payload, symbol)
            if price is None:
                return None
            return on_price_tick(price)

        subscription = FeedSubscription()
        await subscription.replace(self._supervisor(
            CANDLE_STREAM,
            lambda: self.open_candle_stream(symbol, interval),
            handle_candle,
            on_terminal=on_candle_gap,
        ))
        await subscription.replace(self._supervisor(
            PRICE_STREAM,
            lambda: self.open_price_stream(symbol),
            handle_price,
        ))
        return subscription


class AiohttpStreamConnection(StreamConnection):
    """StreamConnection over an aiohttp websocket."""

    def __init__(self, session: aiohttp.ClientSession, ws: aiohttp.ClientWebSocketResponse, *, owns_session: bool = True):
        self._session = session
        self._ws = ws
        self._owns_session = owns_session

    @classmethod
    async def open(cls, url: str, *, timeout: float = 10.0, session: Optional[aiohttp.ClientSession] = None) -> "AiohttpStreamConnection":
        owns_session = session is None
        session = session or aiohttp.ClientSession()
        try:
            ws = await asyncio.wait_for(session.ws_connect(url, autoping=True), timeout=timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            if owns_session:
                await session.close()
            raise FeedError(f"Websocket connect failed for {url}: {e}")
        return cls(session, ws, owns_session=owns_session)

    async def messages(self) -> AsyncIterator[str]:
        async for msg in self._ws:
            if msg.type == aiohttp.WSMsgType.TEXT:
                yield msg.data
            elif msg.type == aiohttp.WSMsgType.BINARY:
                # ignoring binary
                continue
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise FeedError(f"Websocket error: {self._ws.exception()}")
            elif msg.type in (aiohttp.WSMsgType.CLOSE, aiohttp.WSMsgType.CLOSING, aiohttp.WSMsgType.CLOSED):
                break

    async def send_str(self, data: str) -> None:
        await self._ws.send_str(data)

    async def ping(self) -> None:
        await self._ws.ping()

    async def close(self) -> None:
        if not self._ws.closed:
            await self._ws.close()
        if self._owns_session and not self._session.closed:
            await self._session.close()

    @property
    def closed(self) -> bool:
        return self._ws.closed


class KlineData(BaseModel):
    """The ``k`` object of a Binance kline event."""
    model_config = ConfigDict(extra="ignore")

    open_time: int = Field(alias="t")
    close_time: int = Field(alias="T")
    open_price: float = Field(alias="o")
    close_price: float = Field(alias="c")
    high_price: float = Field(alias="h")
    low_price: float = Field(alias="l")
    is_closed: bool = Field(alias="x")


class KlineEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    event_type: str = Field(default="kline", alias="e")
    symbol: Optional[str] = Field(default=None, alias="s")
    kline: KlineData = Field(alias="k")


class TickerEvent(BaseModel):
    model_config = ConfigDict(extra="ignore")

    symbol: str = Field(alias="s")
    last_price: float = Field(alias="c")


def candle_from_rest_row(row: List[Any]) -> Candle:
    """Build a Candle from a ``/api/v3/klines`` row.

    Row layout: [open_time, open, high, low, close, volume, close_time, ...]
    """
    return Candle(
        open_time=int(row[0]),
        close_time=int(row[6]),
        open_price=float(row[1]),
        close_price=float(row[4]),
        high_price=float(row[2]),
        low_price=float(row[3]),
    )


class BinanceMarketFeed(MarketFeed):
    """Binance spot public market data over REST + websocket."""

    async def fetch_history(self, symbol: str, interval: str, limit: int) -> List[Candle]:
        url = f"{self.config.rest_url.rstrip('/')}/api/v3/klines"
        params = {"symbol": symbol, "interval": interval, "limit": str(limit)}
        try:
            async with aiohttp.ClientSession() as session:
                async with session.get(url, params=params, timeout=aiohttp.ClientTimeout(total=self.config.timeout)) as resp:
                    if not (200 <= resp.status < 300):
                        text = await resp.text()
                        raise FeedError(f"{resp.status}: {text}")
                    rows = await resp.json()
        except asyncio.TimeoutError as e:
            raise FeedError(f"Request timeout: {e}")
        except aiohttp.ClientError as e:
            raise FeedError(f"Request failed: {e}")

        try:
            candles = [candle_from_rest_row(row) for row in rows]
        except (IndexError, TypeError, ValueError) as e:
            raise FeedError(f"Malformed kline history: {e}")
        logger.debug(f"Fetched candle history | symbol={symbol} interval={interval} count={len(candles)}")
        return candles

    def candle_stream_url(self, symbol: str, interval: str) -> str:
        return f"{self.config.ws_url.rstrip('/')}/ws/{symbol.lower()}@kline_{interval}"

    def price_stream_url(self, symbol: str) -> str:
        return f"{self.config.ws_url.rstrip('/')}/ws/{symbol.lower()}@ticker"

    async def open_candle_stream(self, symbol: str, interval: str) -> StreamConnection:
        return await AiohttpStreamConnection.open(self.candle_stream_url(symbol, interval), timeout=self.config.timeout)

    async def open_price_stream(self, symbol: str) -> StreamConnection:
        return await AiohttpStreamConnection.open(self.price_stream_url(symbol), timeout=self.config.timeout)

    def parse_candle(self, payload: Any) -> Optional[Candle]:
        if not isinstance(payload, dict) or "k" not in payload:
            return None
        event = KlineEvent.model_validate(payload)
        if not event.kline.is_closed:
            return None
        k = event.kline
        return Candle(
            open_time=k.open_time,
            close_time=k.close_time,
            open_price=k.open_price,
            close_price=k.close_price,
            high_price=k.high_price,
            low_price=k.low_price,
        )

    def parse_price(self, payload: Any, symbol: str) -> Optional[float]:
        # single-symbol ticker stream sends an object, the all-market stream an array
        events = payload if isinstance(payload, list) else [payload]
        price = None
        for raw in events:
            if not isinstance(raw, dict) or "s" not in raw:
                continue
            ticker = TickerEvent.model_validate(raw)
            if ticker.symbol == symbol:
                price = ticker.last_price
        return price
