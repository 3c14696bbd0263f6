"""Test concurrent per-trader sessions and bootstrap fault isolation."""
import asyncio
import math

import pytest

from rsitrader.candles import Candle
from rsitrader.config import BotConfig, FeedConfig
from rsitrader.execution import MarketNotFoundError, PaperExchangeAdapter
from rsitrader.market_feed import MarketFeed
from rsitrader.price_state import PriceState
from rsitrader.runner import BotRunner, TraderSession, paper_venue
from rsitrader.secrets import TraderIdentity
from rsitrader.stream_supervisor import StreamConnection


class IdleConnection(StreamConnection):
    def __init__(self):
        self.queue = asyncio.Queue()
        self._closed = False

    async def messages(self):
        while True:
            frame = await self.queue.get()
            if frame is None:
                return
            yield frame

    async def send_str(self, data):
        pass

    async def ping(self):
        pass

    async def close(self):
        self._closed = True
        self.queue.put_nowait(None)

    @property
    def closed(self):
        return self._closed


class IdleFeed(MarketFeed):
    """Serves flat history, one price tick, and no closed candles."""

    def __init__(self, config=None, price_frames=('{"price": 100.0}',)):
        super().__init__(config)
        self.connections = []
        self.price_frames = price_frames

    async def fetch_history(self, symbol, interval, limit):
        return [Candle(t * 60, t * 60 + 59, 100.0, 100.0, 100.0, 100.0) for t in range(limit)]

    async def _open(self):
        conn = IdleConnection()
        self.connections.append(conn)
        return conn

    async def open_candle_stream(self, symbol, interval):
        return await self._open()

    async def open_price_stream(self, symbol):
        conn = await self._open()
        for frame in self.price_frames:
            conn.queue.put_nowait(frame)
        return conn

    def parse_candle(self, payload):
        return None

    def parse_price(self, payload, symbol):
        return payload.get("price")


async def no_sleep(delay):
    await asyncio.sleep(0)


def test_paper_venue_funds_trader_from_config():
    config = BotConfig()
    trader = TraderIdentity.from_secret("k")
    adapter = paper_venue(config, trader, PriceState())

    balances = adapter.accounts[trader.label].balances
    assert balances.native_gas == config.venue.paper_native_balance
    assert balances.quote_wallet == config.venue.paper_quote_balance


@pytest.mark.asyncio
async def test_session_bootstrap_unknown_market_raises():
    trader = TraderIdentity.from_secret("k")
    session = TraderSession(
        BotConfig(),
        trader,
        feed_factory=lambda config: IdleFeed(config.feed),
        adapter_factory=lambda config, t, price: PaperExchangeAdapter(config.venue, markets=[]),
        sleep=no_sleep,
    )

    with pytest.raises(MarketNotFoundError):
        await session.bootstrap()


@pytest.mark.asyncio
async def test_traders_run_concurrently_and_faults_are_isolated():
    good = TraderIdentity.from_secret("good-key")
    other = TraderIdentity.from_secret("other-key")
    bad = TraderIdentity.from_secret("bad-key")

    def adapter_factory(config, trader, price_state):
        if trader == bad:
            return PaperExchangeAdapter(config.venue, markets=["OTHER/USDC"])
        return paper_venue(config, trader, price_state)

    runner = BotRunner(
        BotConfig(),
        [good, other, bad],
        feed_factory=lambda config: IdleFeed(config.feed),
        adapter_factory=adapter_factory,
        sleep=no_sleep,
    )

    failures = await asyncio.wait_for(runner.run(max_iterations=2), timeout=5.0)

    assert list(failures) == [bad.label]
    assert isinstance(failures[bad.label], MarketNotFoundError)
    assert runner.sessions[good.label].cycle.iterations == 2
    assert runner.sessions[other.label].cycle.iterations == 2
    assert runner.sessions[bad.label].cycle.iterations == 0

    good_data = runner.sessions[good.label].market_data
    assert len(good_data.buffer) == 199
    for session in (runner.sessions[good.label], runner.sessions[other.label]):
        supervisors = session.market_data.subscription.supervisors.values()
        assert supervisors and not any(s.running for s in supervisors)
        assert all(conn.closed for conn in session.market_data.feed.connections)
    assert runner.sessions[bad.label].market_data.feed.connections == []
    for label in (good.label, other.label):
        starting = runner.sessions[label].starting_balances
        assert starting is not None
        assert starting.mid_price == 100.0
        assert math.isfinite(starting.total_base_value)


@pytest.mark.asyncio
async def test_starting_balances_wait_for_first_price_then_give_up():
    trader = TraderIdentity.from_secret("k")
    config = BotConfig(feed=FeedConfig(first_price_timeout=0.05))
    session = TraderSession(
        config,
        trader,
        feed_factory=lambda config: IdleFeed(config.feed, price_frames=()),
        adapter_factory=paper_venue,
        sleep=no_sleep,
    )

    await session.bootstrap()
    await session.market_data.start()
    try:
        starting = await session.report_balances()
    finally:
        await session.market_data.close()

    assert session.starting_balances is starting
    assert math.isnan(starting.mid_price)


@pytest.mark.asyncio
async def test_wait_for_price_returns_once_a_tick_arrives():
    trader = TraderIdentity.from_secret("k")
    session = TraderSession(
        BotConfig(),
        trader,
        feed_factory=lambda config: IdleFeed(config.feed, price_frames=()),
        adapter_factory=paper_venue,
        sleep=no_sleep,
    )
    data = session.market_data

    waiter = asyncio.ensure_future(data.wait_for_price(5.0))
    await asyncio.sleep(0)
    data.on_price_tick(101.5)

    assert await asyncio.wait_for(waiter, timeout=1.0) is True
    assert await data.wait_for_price(0.01) is True
