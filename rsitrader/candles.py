"""
Candle model and the bounded, time-ordered candle buffer.

The buffer is the single source of historical price context for the
indicator pipeline. It has exactly one writer (the candle stream consumer)
and any number of synchronous readers.

Invariants:
    - open_time is strictly increasing from head to tail
    - len(buffer) <= capacity; the oldest candle is evicted first
    - an append whose open_time is <= the tail's open_time is rejected and
      leaves the buffer unchanged

Examples:
    >>> buf = CandleBuffer(capacity=5)
    >>> buf.seed([Candle(t, t + 59, 1.0, 1.0, 1.0, 1.0) for t in range(1, 7)])
    5
    >>> buf.append(Candle(7, 66, 1.0, 2.0, 2.0, 1.0))
    True
    >>> buf.append(Candle(7, 66, 1.0, 2.0, 2.0, 1.0))
    False
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Iterable, Iterator, List, Optional


@dataclass
class Candle:
    """OHLC summary of one closed interval.

    Attributes:
        open_time: Interval start (exchange timestamp, ms)
        close_time: Interval end (exchange timestamp, ms)
        open_price: First trade price of the interval
        close_price: Last trade price of the interval
        high_price: Highest trade price of the interval
        low_price: Lowest trade price of the interval
        rsi: RSI annotation written by the indicator engine (None until set)

    Price fields are never modified once the candle is inserted in a buffer.
    """

    open_time: int
    close_time: int
    open_price: float
    close_price: float
    high_price: float
    low_price: float
    rsi: Optional[float] = None


class CandleBuffer:
    """Bounded sequence of closed candles ordered by open_time."""

    def __init__(self, capacity: int = 200) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = capacity
        self._candles: Deque[Candle] = deque()
        self._seeded = False

    def __len__(self) -> int:
        return len(self._candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(list(self._candles))

    @property
    def seeded(self) -> bool:
        return self._seeded

    @property
    def first(self) -> Optional[Candle]:
        return self._candles[0] if self._candles else None

    @property
    def last(self) -> Optional[Candle]:
        return self._candles[-1] if self._candles else None

    def snapshot(self) -> List[Candle]:
        """Return an ordered copy of the buffered candles."""
        return list(self._candles)

    def open_times(self) -> List[int]:
        return [c.open_time for c in self._candles]

    def closes(self) -> List[float]:
        """Return the ordered closing-price series."""
        return [c.close_price for c in self._candles]

    def seed(self, candles: Iterable[Candle]) -> int:
        """Seed or backfill the buffer from a historical fetch.

        The final fetched bar may still be open, so it is always dropped.
        On the first seed the remaining history is adopted verbatim. On later
        seeds only candles strictly newer than the earliest retained candle
        are merged in, keyed by open_time; retained candles win on a tie.

        Args:
            candles: Historical candles ordered by open_time

        Returns:
            Number of candles added to the buffer
        """
        fetched = list(candles)[:-1]

        if not self._seeded:
            earliest = None
        else:
            earliest = self._candles[0].open_time if self._candles else None
        self._seeded = True

        if not self._candles:
            self._candles = deque(fetched[-self.capacity:])
            return len(self._candles)

        existing = {c.open_time for c in self._candles}
        fresh = [
            c for c in fetched
            if c.open_time not in existing and (earliest is None or c.open_time > earliest)
        ]
        merged = sorted(list(self._candles) + fresh, key=lambda c: c.open_time)
        self._candles = deque(merged[-self.capacity:])
        return len(fresh)

    def append(self, candle: Candle) -> bool:
        """Append a closed candle if it is strictly newer than the tail.

        Returns:
            True if accepted, False on an ordering violation (stale or
            duplicate delivery). A rejected append leaves the buffer unchanged.
        """
        if self._candles and candle.open_time <= self._candles[-1].open_time:
            return False
        self._candles.append(candle)
        if len(self._candles) > self.capacity:
            self._candles.popleft()
        return True
