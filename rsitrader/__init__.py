"""
RSI limit-order trading engine.

A real-time decision engine that keeps a resting limit order on an order-book
venue in line with momentum signals:
- Bounded, time-ordered candle buffer fed by self-healing websocket streams
- Live price ticks for intrabar indicator updates
- RSI with WMA/EMA smoothing of the RSI series
- Trading-cycle state machine: reconcile, evaluate, size, fund-check, submit
- Balance normalization and native-asset wrap fallback
- One concurrent session per trader
- Structured logging via loguru
- Configuration-driven (YAML)

Core Modules:
    candles: Candle model and bounded CandleBuffer
    price_state: Live price scalar
    stream_supervisor: Reconnecting subscriptions with keepalive/backoff
    market_feed: Feed adapter contract and Binance implementation
    market_data: Per-trader buffer/price ownership
    indicators: RSI, WMA, EMA and the IndicatorEngine
    execution: Venue adapter contract and paper venue
    balances: Balance snapshot normalization
    sizing: Notional to lot conversion
    signal_policy: Decision table
    trading_cycle: Per-trader state machine
    runner: Concurrent per-trader sessions
    config: Configuration loading
    secrets: Trader key management

Example:
    >>> from rsitrader.config import BotConfig
    >>> from rsitrader.runner import BotRunner
    >>> from rsitrader.secrets import load_traders
    >>>
    >>> config = BotConfig.from_yaml("config.yaml")
    >>> runner = BotRunner(config, load_traders())
    >>> asyncio.run(runner.run())
"""

__version__ = "0.1.0"
__all__ = [
    "candles",
    "price_state",
    "stream_supervisor",
    "market_feed",
    "market_data",
    "indicators",
    "execution",
    "balances",
    "sizing",
    "signal_policy",
    "trading_cycle",
    "runner",
    "config",
    "secrets",
]
