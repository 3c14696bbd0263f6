"""
Signal policy: map an indicator snapshot to an order side.

Decision table (first match wins):
    RSI > overbought                      -> ASK
    RSI < oversold                        -> BID
    range-bound mode:
        min(WMA, EMA) <= RSI <= max(...)  -> BID if WMA < buy limit, else none
        RSI > max(WMA, EMA), WMA > sell   -> ASK
        otherwise                         -> none
    trending mode:
        WMA < buy limit and RSI < WMA     -> BID
        WMA > sell limit and RSI > WMA    -> ASK
        otherwise                         -> none
"""
from dataclasses import dataclass
from typing import Optional

from .config import StrategyConfig
from .execution import Side
from .indicators import IndicatorSnapshot
from .sizing import OrderSize


@dataclass(frozen=True)
class Decision:
    side: Optional[Side]
    reason: str

    @property
    def is_action(self) -> bool:
        return self.side is not None


@dataclass(frozen=True)
class OrderIntent:
    """Order produced and consumed within one cycle iteration."""

    side: Side
    price: float
    size: OrderSize


def evaluate_signal(snapshot: IndicatorSnapshot, strategy: StrategyConfig) -> Decision:
    """Apply the decision table to a complete snapshot."""
    rsi, wma, ema = snapshot.rsi, snapshot.wma, snapshot.ema

    if rsi > strategy.overbought:
        return Decision(Side.ASK, f"RSI above {strategy.overbought}")
    if rsi < strategy.oversold:
        return Decision(Side.BID, f"RSI below {strategy.oversold}")

    if strategy.range_bound_mode:
        low, high = min(wma, ema), max(wma, ema)
        if low <= rsi <= high:
            if wma < strategy.wma_buy_limit:
                return Decision(Side.BID, "RSI within range and WMA below buy limit")
            return Decision(None, "RSI within range but WMA not below buy limit")
        if rsi > high and wma > strategy.wma_sell_limit:
            return Decision(Side.ASK, "RSI above range and WMA above sell limit")
        return Decision(None, "RSI outside range, no conditions met")

    if wma < strategy.wma_buy_limit and rsi < wma:
        return Decision(Side.BID, "WMA below buy limit and RSI below WMA")
    if wma > strategy.wma_sell_limit and rsi > wma:
        return Decision(Side.ASK, "WMA above sell limit and RSI above WMA")
    return Decision(None, "No conditions met")


def limit_price(side: Side, mid: float, offset_pct: float) -> float:
    """Limit price ``offset_pct`` percent away from ``mid`` on the passive side."""
    if side is Side.ASK:
        return mid * (1 + offset_pct / 100)
    return mid * (1 - offset_pct / 100)
