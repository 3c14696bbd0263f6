"""Per-trader market data: candle buffer and live price fed by the feed streams."""
import asyncio
from typing import Optional

from .candles import Candle, CandleBuffer
from .config import FeedConfig
from .logging_setup import logger
from .market_feed import MarketFeed
from .price_state import PriceState
from .stream_supervisor import FeedError, FeedSubscription


class MarketData:
    """Own the CandleBuffer and PriceState and the subscription writing them.

    The candle stream is the buffer's only writer and the tick stream the
    price's only writer; everything else reads.
    """

    def __init__(self, feed: MarketFeed, config: Optional[FeedConfig] = None):
        self.feed = feed
        self.config = config or feed.config
        self.buffer = CandleBuffer(capacity=self.config.buffer_capacity)
        self.price_state = PriceState()
        self.subscription: Optional[FeedSubscription] = None
        self.rejected_candles = 0
        self._price_event: Optional[asyncio.Event] = None

    async def seed(self) -> int:
        """Fetch history and seed (or backfill) the buffer."""
        candles = await self.feed.fetch_history(
            self.config.symbol, self.config.interval, self.config.history_limit
        )
        added = self.buffer.seed(candles)
        logger.info(
            f"Candle history loaded | symbol={self.config.symbol} interval={self.config.interval} "
            f"added={added} buffered={len(self.buffer)}"
        )
        return added

    def on_candle_close(self, candle: Candle) -> bool:
        accepted = self.buffer.append(candle)
        if not accepted:
            self.rejected_candles += 1
            tail = self.buffer.last
            logger.warning(
                f"Candle rejected, open_time not after tail | open_time={candle.open_time} "
                f"tail_open_time={tail.open_time if tail else None}"
            )
        return accepted

    def on_price_tick(self, price: float) -> None:
        self.price_state.update(price)
        if self._price_event is not None:
            self._price_event.set()

    async def wait_for_price(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for the first live price."""
        if self.price_state.has_price:
            return True
        self._price_event = asyncio.Event()
        try:
            await asyncio.wait_for(self._price_event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True

    async def on_candle_gap(self, reason: str) -> None:
        """Backfill candles missed while the candle stream was down."""
        if not self.buffer.seeded and len(self.buffer) == 0:
            return
        try:
            await self.seed()
        except FeedError as e:
            logger.error(f"Failed to backfill candlesticks after {reason}: {e}")

    async def start(self) -> None:
        """Seed history and start both streams."""
        try:
            await self.seed()
        except FeedError as e:
            logger.error(f"Failed to fetch candlesticks: {e}")

        if self.subscription is not None:
            await self.subscription.close()
        self.subscription = await self.feed.subscribe(
            self.on_candle_close,
            self.on_price_tick,
            symbol=self.config.symbol,
            interval=self.config.interval,
            on_candle_gap=self.on_candle_gap,
        )

    async def close(self) -> None:
        if self.subscription is not None:
            await self.subscription.close()
