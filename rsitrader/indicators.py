"""
Momentum indicators derived from the candle buffer and the live price.

RSI is computed over the buffer's closing prices with the current live price
appended as a synthetic final value, so the indicator follows intrabar moves.
WMA and EMA are then computed over the RSI series itself.

NaN is the insufficient-history sentinel. It is propagated as-is (never
coerced to 0) so the trading cycle can skip a decision.
"""

import math
from dataclasses import dataclass
from typing import List, Sequence

import numpy as np
import pandas as pd

from .candles import CandleBuffer
from .logging_setup import logger
from .price_state import PriceState

NAN = float("nan")


@dataclass(frozen=True)
class IndicatorSnapshot:
    """RSI plus its smoothed derivatives; any field may be NaN."""

    rsi: float = NAN
    wma: float = NAN
    ema: float = NAN

    @classmethod
    def empty(cls) -> "IndicatorSnapshot":
        return cls()

    @property
    def is_complete(self) -> bool:
        return not any(math.isnan(v) for v in (self.rsi, self.wma, self.ema))


def rsi_series(values: Sequence[float], period: int = 14) -> List[float]:
    """Wilder RSI over ``values``.

    The first average gain/loss is the simple mean of the first ``period``
    changes; later averages use Wilder smoothing. One RSI value is produced
    per value after the first ``period`` changes, so ``len(values) - period``
    values in total (empty when there is not enough data).
    """
    if period <= 0:
        raise ValueError("RSI period must be > 0")
    if len(values) <= period:
        return []

    delta = pd.Series(values, dtype=float).diff().iloc[1:]
    gain = delta.clip(lower=0.0)
    loss = (-delta).clip(lower=0.0)

    # Wilder smoothing is an EWM with alpha = 1 / period
    avg_gain = _sma_seeded(gain, period).ewm(alpha=1.0 / period, adjust=False).mean()
    avg_loss = _sma_seeded(loss, period).ewm(alpha=1.0 / period, adjust=False).mean()

    rsi = 100.0 - 100.0 / (1.0 + avg_gain / avg_loss)
    rsi = rsi.where(avg_loss != 0, 100.0)

    # ewm carries the last average across a gap; a NaN change poisons every later value
    tainted = delta.isna().cummax().to_numpy()[period - 1:]
    return rsi.mask(tainted, NAN).tolist()


def _sma_seeded(series: pd.Series, period: int) -> pd.Series:
    """Replace the first ``period`` values with their mean."""
    seed = pd.Series([series.iloc[:period].mean()])
    return pd.concat([seed, series.iloc[period:]], ignore_index=True)


def wma(values: Sequence[float], period: int) -> float:
    """Linearly weighted moving average of the last ``period`` values."""
    if period <= 0 or len(values) < period:
        return NAN
    weights = np.arange(1, period + 1, dtype=float)
    weighted = pd.Series(values, dtype=float).rolling(period).apply(
        lambda window: np.dot(window, weights) / weights.sum(), raw=True
    )
    return float(weighted.iloc[-1])


def ema(values: Sequence[float], period: int) -> float:
    """Exponential moving average seeded with the SMA of the first window."""
    if period <= 0 or len(values) < period:
        return NAN
    series = pd.Series(values, dtype=float)
    if series.isna().any():
        return NAN
    return float(_sma_seeded(series, period).ewm(span=period, adjust=False).mean().iloc[-1])


class IndicatorEngine:
    """Turn the candle buffer plus the live price into an IndicatorSnapshot.

    Readers only: the engine never touches price fields of buffered candles,
    it only writes the ``rsi`` annotation.
    """

    def __init__(
        self,
        buffer: CandleBuffer,
        price_state: PriceState,
        *,
        rsi_period: int = 14,
        wma_period: int = 45,
        ema_period: int = 9,
    ):
        self.buffer = buffer
        self.price_state = price_state
        self.rsi_period = rsi_period
        self.wma_period = wma_period
        self.ema_period = ema_period

    def compute_rsi(self) -> List[float]:
        """Return the RSI series for the buffer plus the live price.

        Raises:
            ValueError: If the buffer holds fewer than ``rsi_period`` candles
        """
        candles = self.buffer.snapshot()
        if len(candles) < self.rsi_period:
            raise ValueError(
                f"Not enough data to calculate RSI ({len(candles)}/{self.rsi_period} candles)"
            )
        closes = [c.close_price for c in candles]
        live_price = self.price_state.last_price
        values = rsi_series(closes + [live_price], self.rsi_period)

        for i in range(self.rsi_period, len(candles)):
            candles[i].rsi = values[i - self.rsi_period]
        return values

    def compute_snapshot(self) -> IndicatorSnapshot:
        """Compute RSI, WMA(RSI) and EMA(RSI); never raises."""
        try:
            values = self.compute_rsi()
            return IndicatorSnapshot(
                rsi=values[-1],
                wma=wma(values, self.wma_period),
                ema=ema(values, self.ema_period),
            )
        except Exception as e:
            logger.warning(f"Error calculating indicators: {e}")
            return IndicatorSnapshot.empty()
