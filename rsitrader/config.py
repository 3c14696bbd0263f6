"""Configuration loader for the trading engine.

Supports YAML format with environment variable interpolation. Every section
is a frozen dataclass: the engine reads configuration, it never mutates it.
"""
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Optional

import yaml


@dataclass(frozen=True)
class FeedConfig:
    """Market-data feed settings (Binance public endpoints by default)."""
    rest_url: str = "https://api.binance.com"
    ws_url: str = "wss://stream.binance.com:9443"
    symbol: str = "SOLUSDC"
    interval: str = "5m"
    history_limit: int = 200
    buffer_capacity: int = 200
    timeout: int = 10
    keepalive_seconds: float = 180.0
    reconnect_step_seconds: float = 1.0
    reconnect_max_seconds: float = 30.0
    first_price_timeout: float = 10.0


@dataclass(frozen=True)
class VenueConfig:
    """Order-book venue settings.

    Lot and tick sizes describe the venue quantization used by the paper
    venue; a live adapter reads them from the market itself.
    """
    market: str = "SOL/USDC"
    base_lot_size: float = 0.001
    quote_lot_size: float = 0.000001
    tick_size: float = 0.001
    paper_native_balance: float = 1.0
    paper_base_balance: float = 0.0
    paper_quote_balance: float = 100.0


@dataclass(frozen=True)
class StrategyConfig:
    """Signal policy and cycle cadence parameters."""
    volume: float = 10.0  # quote-currency notional per order
    price_offset_pct: float = 0.5  # 0.5% away from mid
    range_bound_mode: bool = True
    cancel_interval_seconds: float = 60.0
    insufficient_data_seconds: float = 30.0
    stale_price_seconds: float = 120.0  # warn when the last tick is older
    wma_buy_limit: float = 45.0
    wma_sell_limit: float = 55.0
    overbought: float = 75.0
    oversold: float = 25.0
    rsi_period: int = 14
    wma_period: int = 45
    ema_period: int = 9
    min_notional_margin: float = 0.05


@dataclass(frozen=True)
class LoggingConfig:
    """Log sink settings."""
    log_file: Optional[str] = "rsitrader.log"
    log_level: str = "INFO"


@dataclass(frozen=True)
class BotConfig:
    """Complete engine configuration."""
    feed: FeedConfig = field(default_factory=FeedConfig)
    venue: VenueConfig = field(default_factory=VenueConfig)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_yaml(cls, config_path: str) -> "BotConfig":
        """Load configuration from YAML file with env var interpolation.

        Args:
            config_path: Path to YAML config file

        Returns:
            BotConfig instance

        Raises:
            FileNotFoundError: If the file does not exist
            TypeError: If a section contains an unknown key

        Example YAML:
            feed:
              symbol: SOLUSDC
              interval: 5m
            strategy:
              volume: 25
              range_bound_mode: false
            logging:
              log_file: "${LOG_DIR}/rsitrader.log"
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")

        with config_file.open("r") as f:
            raw = f.read()

        # Interpolate environment variables: ${VAR_NAME}
        for key, value in os.environ.items():
            raw = raw.replace(f"${{{key}}}", value)

        data = yaml.safe_load(raw) or {}

        return cls(
            feed=FeedConfig(**(data.get("feed") or {})),
            venue=VenueConfig(**(data.get("venue") or {})),
            strategy=StrategyConfig(**(data.get("strategy") or {})),
            logging=LoggingConfig(**(data.get("logging") or {})),
        )

    def to_yaml(self, output_path: str) -> None:
        """Save configuration to YAML file."""
        data = {
            "feed": asdict(self.feed),
            "venue": asdict(self.venue),
            "strategy": asdict(self.strategy),
            "logging": asdict(self.logging),
        }

        output_file = Path(output_path)
        output_file.parent.mkdir(parents=True, exist_ok=True)
        with output_file.open("w") as f:
            yaml.dump(data, f, default_flow_style=False, sort_keys=False)
