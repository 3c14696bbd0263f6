"""Convert a quote-currency notional into venue lots.

Amounts are carried as Decimal while sizing so lot flooring and the
required-balance figures are exact; the result is handed back as floats,
which is what the venue adapter consumes.
"""
import math
from dataclasses import dataclass
from decimal import ROUND_HALF_EVEN, Decimal

from .execution import ExchangeAdapter


class SizingError(Exception):
    """The requested order cannot be sized into a viable venue order."""
    pass


@dataclass(frozen=True)
class OrderSize:
    """Venue-native size of one order.

    Attributes:
        notional: Requested quote-currency notional
        price: Reference price used for the conversion
        base_lots: Base lots (the size submitted for either side)
        quote_lots: Quote lots equivalent to the notional
        required_base: Base units needed to back an ask
        required_quote: Quote units needed to back a bid
    """

    notional: float
    price: float
    base_lots: int
    quote_lots: int
    required_base: float
    required_quote: float


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


class OrderSizer:
    def __init__(self, adapter: ExchangeAdapter, *, safety_margin: float = 0.05, precision: int = 8):
        self.adapter = adapter
        self.safety_margin = safety_margin
        self.precision = precision
        self._step = Decimal(1).scaleb(-precision)

    def _quantize(self, value: Decimal) -> Decimal:
        return value.quantize(self._step, rounding=ROUND_HALF_EVEN)

    def minimum_order_notional(self, price: float) -> float:
        """One base lot valued at ``price``, plus the safety margin."""
        minimum = _dec(self.adapter.base_lot_size) * _dec(price) * (1 + _dec(self.safety_margin))
        return float(minimum)

    def size(self, notional: float, price: float) -> OrderSize:
        """Size an order of ``notional`` quote units at ``price``.

        Raises:
            SizingError: Non-positive price, notional below the minimum order
                notional, or zero lots on both legs
        """
        if not math.isfinite(price) or price <= 0:
            raise SizingError(f"Invalid reference price: {price}")
        minimum = self.minimum_order_notional(price)
        if notional < minimum:
            raise SizingError(f"Order notional {notional} below minimum {minimum:.8f}")

        base_amount = self._quantize(_dec(notional) / _dec(price))
        base_lots = self.adapter.to_base_lots(float(base_amount))
        quote_lots = self.adapter.to_quote_lots(notional)
        if base_lots == 0 and quote_lots == 0:
            raise SizingError("Either base lots or quote lots must be nonzero")

        return OrderSize(
            notional=notional,
            price=price,
            base_lots=base_lots,
            quote_lots=quote_lots,
            required_base=float(self._quantize(base_lots * _dec(self.adapter.base_lot_size))),
            required_quote=float(self._quantize(quote_lots * _dec(self.adapter.quote_lot_size))),
        )
