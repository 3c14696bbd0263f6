"""Run one independent trading session per trader, concurrently.

Each session owns its market data (candle + price streams, each under its
own StreamSupervisor) and its TradingCycle. A bootstrap fault stops only the
session it happened in.
"""
import asyncio
from typing import Awaitable, Callable, Dict, List, Optional

from .balances import BalanceSnapshot
from .config import BotConfig
from .execution import ExchangeAdapter, PaperExchangeAdapter
from .indicators import IndicatorEngine
from .logging_setup import logger
from .market_data import MarketData
from .market_feed import BinanceMarketFeed, MarketFeed
from .price_state import PriceState
from .secrets import TraderIdentity
from .trading_cycle import TradingCycle

FeedFactory = Callable[[BotConfig], MarketFeed]
AdapterFactory = Callable[[BotConfig, TraderIdentity, PriceState], ExchangeAdapter]


def binance_feed(config: BotConfig) -> MarketFeed:
    return BinanceMarketFeed(config.feed)


def paper_venue(config: BotConfig, trader: TraderIdentity, price_state: PriceState) -> ExchangeAdapter:
    adapter = PaperExchangeAdapter(config.venue, price_source=lambda: price_state.last_price)
    adapter.fund(
        trader,
        native=config.venue.paper_native_balance,
        base=config.venue.paper_base_balance,
        quote=config.venue.paper_quote_balance,
    )
    return adapter


class TraderSession:
    """Bootstrap and run one trader's streams and trading cycle."""

    def __init__(
        self,
        config: BotConfig,
        trader: TraderIdentity,
        *,
        feed_factory: FeedFactory = binance_feed,
        adapter_factory: AdapterFactory = paper_venue,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.trader = trader
        self.market_data = MarketData(feed_factory(config), config.feed)
        self.adapter = adapter_factory(config, trader, self.market_data.price_state)
        strategy = config.strategy
        self.engine = IndicatorEngine(
            self.market_data.buffer,
            self.market_data.price_state,
            rsi_period=strategy.rsi_period,
            wma_period=strategy.wma_period,
            ema_period=strategy.ema_period,
        )
        self.cycle = TradingCycle(
            trader,
            self.adapter,
            self.engine,
            self.market_data.price_state,
            strategy,
            symbol=config.feed.symbol,
            sleep=sleep,
        )
        self.starting_balances: Optional[BalanceSnapshot] = None
        self.log = logger.bind(trader=trader.label)

    async def bootstrap(self) -> None:
        """Resolve the configured market.

        Raises:
            MarketNotFoundError: If the configured market does not exist
        """
        self.log.info(f"Loading market | market={self.config.venue.market}")
        await self.adapter.load_market(self.config.venue.market)

    async def report_balances(self) -> BalanceSnapshot:
        """Log starting balances once the first live price is in."""
        timeout = self.config.feed.first_price_timeout
        if not await self.market_data.wait_for_price(timeout):
            self.log.warning(f"No live price after {timeout}s, valuing balances at the venue mid")
        self.starting_balances = await self.cycle.accountant.snapshot(self.trader)
        self.log.info(f"Starting balances | {self.starting_balances}")
        return self.starting_balances

    async def run(self, max_iterations: Optional[int] = None) -> None:
        await self.bootstrap()
        await self.market_data.start()
        try:
            await self.report_balances()
            await self.cycle.run_forever(max_iterations=max_iterations)
        finally:
            await self.market_data.close()


class BotRunner:
    """Start every trader's session as its own task and wait for all of them."""

    def __init__(
        self,
        config: BotConfig,
        traders: List[TraderIdentity],
        *,
        feed_factory: FeedFactory = binance_feed,
        adapter_factory: AdapterFactory = paper_venue,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.config = config
        self.sessions: Dict[str, TraderSession] = {
            trader.label: TraderSession(
                config,
                trader,
                feed_factory=feed_factory,
                adapter_factory=adapter_factory,
                sleep=sleep,
            )
            for trader in traders
        }
        self.failures: Dict[str, BaseException] = {}

    async def run(self, max_iterations: Optional[int] = None) -> Dict[str, BaseException]:
        """Run all sessions concurrently.

        Returns:
            Mapping of trader label to the fault that stopped its session
        """
        labels = list(self.sessions)
        results = await asyncio.gather(
            *(self.sessions[label].run(max_iterations=max_iterations) for label in labels),
            return_exceptions=True,
        )
        for label, result in zip(labels, results):
            if isinstance(result, asyncio.CancelledError):
                continue
            if isinstance(result, BaseException):
                self.failures[label] = result
                logger.bind(trader=label).error(f"Trader session stopped: {result!r}")
        return self.failures
