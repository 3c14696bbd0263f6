"""
Execution adapter contract for the order-book venue.

The trading cycle talks to the venue only through ``ExchangeAdapter``:
order placement and cancellation, open-order and balance queries, account
provisioning, native-asset wrapping, and the venue's lot/tick quantization.

``PaperExchangeAdapter`` is an in-process venue implementing the same
contract. It rests orders without matching them and keeps wallet and locked
balances per trader, which is enough for dry runs and for tests.
"""

import itertools
import math
from decimal import ROUND_FLOOR, Decimal
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional

from .config import VenueConfig
from .logging_setup import logger
from .secrets import TraderIdentity

LOT_EPSILON = 1e-9


def _floor_lots(amount: float, lot_size: float) -> int:
    """Whole lots in `amount`, floored in decimal arithmetic."""
    lots = Decimal(str(amount)) / Decimal(str(lot_size))
    return int(lots.to_integral_value(rounding=ROUND_FLOOR))


class Side(Enum):
    """Order side: BID buys base, ASK sells base."""

    BID = "Bid"
    ASK = "Ask"


class ExecutionError(Exception):
    pass


class MarketNotFoundError(ExecutionError):
    """The configured market does not exist on the venue (bootstrap fault)."""
    pass


class TransientSubmissionError(ExecutionError):
    """The action expired before confirmation (e.g. validity window passed)."""
    pass


class SimulationRejectedError(ExecutionError):
    """The venue rejected the action in simulation; ``logs`` holds diagnostics."""

    def __init__(self, message: str, logs: Optional[List[str]] = None):
        super().__init__(message)
        self.logs = list(logs or [])


class InsufficientFundsError(ExecutionError):
    pass


@dataclass
class Order:
    """A resting order owned by a trader.

    Attributes:
        order_id: Venue-assigned sequence number
        side: BID or ASK
        price_ticks: Limit price in venue ticks
        size_lots: Size in base lots
    """

    order_id: str
    side: Side
    price_ticks: int
    size_lots: int


@dataclass
class OrderReceipt:
    """Outcome of a confirmed venue action."""

    tx_id: str
    action: str
    order_id: Optional[str] = None


@dataclass
class VenueBalances:
    """Raw balances as reported by the venue, in asset units.

    ``base_locked``/``quote_locked`` back resting orders; ``base_free``/
    ``quote_free`` are deposited on the venue but not committed.
    """

    native_gas: float = 0.0
    base_wallet: float = 0.0
    quote_wallet: float = 0.0
    base_locked: float = 0.0
    base_free: float = 0.0
    quote_locked: float = 0.0
    quote_free: float = 0.0


class ExchangeAdapter(ABC):
    """Abstract venue adapter; one instance serves one trading pair."""

    @property
    @abstractmethod
    def base_lot_size(self) -> float:
        """Base-asset units in one base lot."""

    @property
    @abstractmethod
    def quote_lot_size(self) -> float:
        """Quote-asset units in one quote lot."""

    @abstractmethod
    async def load_market(self, market: str) -> None:
        """Resolve the configured market.

        Raises:
            MarketNotFoundError: If the venue has no such market
        """

    @abstractmethod
    async def place_order(self, trader: TraderIdentity, side: Side, size_lots: int, price_ticks: int) -> OrderReceipt:
        """Place a resting limit order.

        Raises:
            TransientSubmissionError: The action expired before confirmation
            SimulationRejectedError: The venue rejected the action
            ExecutionError: Any other venue failure
        """

    @abstractmethod
    async def cancel_all_orders(self, trader: TraderIdentity) -> OrderReceipt:
        pass

    @abstractmethod
    async def cancel_order(self, trader: TraderIdentity, order_id: str) -> OrderReceipt:
        """Cancel a single resting order by id.

        Raises:
            ExecutionError: If the order is unknown or the cancel fails
        """

    @abstractmethod
    async def current_orders(self, trader: TraderIdentity) -> List[Order]:
        pass

    @abstractmethod
    async def balances(self, trader: TraderIdentity) -> VenueBalances:
        pass

    @abstractmethod
    async def ensure_accounts(self, trader: TraderIdentity) -> bool:
        """Create the trader's holding accounts if missing; True if any were created."""

    @abstractmethod
    async def wrap_native(self, trader: TraderIdentity, amount: float) -> OrderReceipt:
        """Convert ``amount`` of native gas balance into the wrapped base asset."""

    @abstractmethod
    async def current_mid_price(self) -> float:
        pass

    def to_base_lots(self, base_amount: float) -> int:
        return _floor_lots(base_amount, self.base_lot_size)

    def to_quote_lots(self, quote_amount: float) -> int:
        return _floor_lots(quote_amount, self.quote_lot_size)

    @abstractmethod
    def to_price_ticks(self, price: float) -> int:
        pass

    @abstractmethod
    def from_price_ticks(self, ticks: int) -> float:
        pass


@dataclass
class PaperAccount:
    balances: VenueBalances = field(default_factory=VenueBalances)
    orders: Dict[str, Order] = field(default_factory=dict)


class PaperExchangeAdapter(ExchangeAdapter):
    """In-process venue that rests orders and tracks balances per trader.

    Orders lock the funds they need (base for asks, quote for bids) and
    cancellation releases them back to the wallet. Nothing ever matches.
    """

    def __init__(
        self,
        config: Optional[VenueConfig] = None,
        *,
        price_source: Optional[Callable[[], float]] = None,
        mid_price: float = math.nan,
        markets: Optional[List[str]] = None,
    ):
        self.config = config or VenueConfig()
        self._price_source = price_source
        self.mid_price = mid_price
        self.markets = markets if markets is not None else [self.config.market]
        self.market: Optional[str] = None
        self.accounts: Dict[str, PaperAccount] = {}
        self.calls: List[str] = []
        self._ids = itertools.count(1)

    @property
    def base_lot_size(self) -> float:
        return self.config.base_lot_size

    @property
    def quote_lot_size(self) -> float:
        return self.config.quote_lot_size

    def _next_id(self, prefix: str) -> str:
        return f"{prefix}{next(self._ids)}"

    def _account(self, trader: TraderIdentity) -> PaperAccount:
        account = self.accounts.get(trader.label)
        if account is None:
            raise ExecutionError(f"No venue accounts for trader {trader.label}")
        return account

    def fund(self, trader: TraderIdentity, *, native: float = 0.0, base: float = 0.0, quote: float = 0.0) -> None:
        """Credit wallet balances, creating the trader's accounts if needed."""
        account = self.accounts.setdefault(trader.label, PaperAccount())
        account.balances.native_gas += native
        account.balances.base_wallet += base
        account.balances.quote_wallet += quote

    async def load_market(self, market: str) -> None:
        if market not in self.markets:
            raise MarketNotFoundError(f"Market config not found: {market}")
        self.market = market

    async def ensure_accounts(self, trader: TraderIdentity) -> bool:
        self.calls.append("ensure_accounts")
        if trader.label in self.accounts:
            return False
        self.accounts[trader.label] = PaperAccount()
        logger.info(f"Created venue accounts | trader={trader.label}")
        return True

    async def current_mid_price(self) -> float:
        if self._price_source is not None:
            price = self._price_source()
            if math.isfinite(price):
                return price
        return self.mid_price

    def to_price_ticks(self, price: float) -> int:
        return int(round(price / self.config.tick_size))

    def from_price_ticks(self, ticks: int) -> float:
        return ticks * self.config.tick_size

    async def place_order(self, trader: TraderIdentity, side: Side, size_lots: int, price_ticks: int) -> OrderReceipt:
        self.calls.append("place_order")
        if size_lots <= 0 or price_ticks <= 0:
            raise SimulationRejectedError(
                "Order rejected in simulation",
                logs=[f"invalid order size_lots={size_lots} price_ticks={price_ticks}"],
            )
        account = self._account(trader)
        bal = account.balances
        base_needed = size_lots * self.base_lot_size
        if side is Side.ASK:
            if bal.base_wallet + LOT_EPSILON < base_needed:
                raise SimulationRejectedError(
                    "Order rejected in simulation",
                    logs=[f"insufficient base: have={bal.base_wallet} need={base_needed}"],
                )
            bal.base_wallet -= base_needed
            bal.base_locked += base_needed
        else:
            quote_needed = base_needed * self.from_price_ticks(price_ticks)
            if bal.quote_wallet + LOT_EPSILON < quote_needed:
                raise SimulationRejectedError(
                    "Order rejected in simulation",
                    logs=[f"insufficient quote: have={bal.quote_wallet} need={quote_needed}"],
                )
            bal.quote_wallet -= quote_needed
            bal.quote_locked += quote_needed

        order_id = self._next_id("o")
        account.orders[order_id] = Order(order_id=order_id, side=side, price_ticks=price_ticks, size_lots=size_lots)
        return OrderReceipt(tx_id=self._next_id("tx"), action="place_order", order_id=order_id)

    async def cancel_all_orders(self, trader: TraderIdentity) -> OrderReceipt:
        self.calls.append("cancel_all_orders")
        account = self._account(trader)
        if not account.orders:
            raise ExecutionError("No open orders to cancel")
        for order in account.orders.values():
            self._release(account, order)
        account.orders.clear()
        return OrderReceipt(tx_id=self._next_id("tx"), action="cancel_all_orders")

    async def cancel_order(self, trader: TraderIdentity, order_id: str) -> OrderReceipt:
        self.calls.append("cancel_order")
        account = self._account(trader)
        order = account.orders.pop(order_id, None)
        if order is None:
            raise ExecutionError(f"Order not found: {order_id}")
        self._release(account, order)
        return OrderReceipt(tx_id=self._next_id("tx"), action="cancel_order", order_id=order_id)

    def _release(self, account: PaperAccount, order: Order) -> None:
        bal = account.balances
        base_amount = order.size_lots * self.base_lot_size
        if order.side is Side.ASK:
            bal.base_locked -= base_amount
            bal.base_wallet += base_amount
        else:
            quote_amount = base_amount * self.from_price_ticks(order.price_ticks)
            bal.quote_locked -= quote_amount
            bal.quote_wallet += quote_amount

    async def current_orders(self, trader: TraderIdentity) -> List[Order]:
        self.calls.append("current_orders")
        return list(self._account(trader).orders.values())

    async def balances(self, trader: TraderIdentity) -> VenueBalances:
        self.calls.append("balances")
        bal = self._account(trader).balances
        return VenueBalances(**vars(bal))

    async def wrap_native(self, trader: TraderIdentity, amount: float) -> OrderReceipt:
        self.calls.append("wrap_native")
        bal = self._account(trader).balances
        if amount <= 0:
            raise ExecutionError(f"Invalid wrap amount: {amount}")
        if bal.native_gas + LOT_EPSILON < amount:
            raise InsufficientFundsError(
                f"Insufficient native balance to wrap {amount}. Available balance: {bal.native_gas}"
            )
        bal.native_gas -= amount
        bal.base_wallet += amount
        return OrderReceipt(tx_id=self._next_id("tx"), action="wrap_native")
