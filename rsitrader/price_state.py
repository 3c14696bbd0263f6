"""Latest live price, written by the tick stream and read by everyone else."""
import math
import time
from typing import Optional


class PriceState:
    """Single mutable scalar holding the last traded/mid price.

    A read may be stale by at most one tick; no locking is needed because the
    tick stream consumer is the only writer.
    """

    def __init__(self, last_price: float = math.nan) -> None:
        self.last_price = last_price
        self.updated_at: Optional[float] = None
        self.ticks = 0

    def update(self, price: float) -> None:
        if not math.isfinite(price) or price <= 0:
            raise ValueError(f"Invalid price tick: {price}")
        self.last_price = price
        self.updated_at = time.time()
        self.ticks += 1

    @property
    def has_price(self) -> bool:
        return math.isfinite(self.last_price)

    def age(self, now: Optional[float] = None) -> Optional[float]:
        """Seconds since the last tick, or None before the first one."""
        if self.updated_at is None:
            return None
        return (now if now is not None else time.time()) - self.updated_at
