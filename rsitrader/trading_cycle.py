"""
Trading-cycle state machine for one trader.

State Transitions:
    RECONCILE -> EVALUATE -> SIZE -> FUND_CHECK -> SUBMIT -> COOLDOWN -> RECONCILE ...

Every early exit (insufficient data, no signal, sizing fault, fund shortfall,
submission fault) goes through a sleep and restarts the loop; none of them
are fatal. The only state carried across iterations is ``CycleState``.

Typical Flow:
    1. Reconcile: cancel resting orders (bulk, then one by one if any survive)
    2. Evaluate: indicator snapshot -> signal policy -> side or no action
    3. Size: configured quote notional -> base/quote lots
    4. Fund-check: balance sufficiency, one native wrap on a base shortfall
    5. Submit: place the limit order; faults are logged, retried next cycle
    6. Cooldown: sleep the configured interval
"""

import asyncio
import math
from dataclasses import dataclass
from enum import Enum, auto
from typing import Awaitable, Callable, List, Optional

from .balances import BalanceAccountant, BalanceSnapshot
from .config import StrategyConfig
from .execution import (
    ExchangeAdapter,
    ExecutionError,
    Order,
    Side,
    SimulationRejectedError,
    TransientSubmissionError,
)
from .indicators import IndicatorEngine
from .logging_setup import logger
from .price_state import PriceState
from .secrets import TraderIdentity
from .signal_policy import OrderIntent, evaluate_signal, limit_price
from .sizing import OrderSizer, SizingError

BALANCE_EPSILON = 1e-9
CANCEL_SPACING_SECONDS = 2.5


class CycleOutcome(Enum):
    """How one iteration ended."""

    INSUFFICIENT_DATA = auto()  # an indicator is still NaN
    NO_SIGNAL = auto()  # policy says hold
    ORDERS_OUTSTANDING = auto()  # reconcile could not clear resting orders
    SIZING_REJECTED = auto()  # below minimum notional or zero lots
    INSUFFICIENT_FUNDS = auto()  # shortfall after the wrap fallback
    SUBMITTED = auto()  # order accepted by the venue
    SUBMISSION_FAILED = auto()  # transient or rejected submission


@dataclass
class CycleState:
    """State carried between iterations.

    ``previous_open_order_count`` is the number of orders left resting after
    the last reconcile; non-zero means the bulk cancel did not clear them.
    """

    previous_open_order_count: int = 0


def _covers(have: float, need: float) -> bool:
    return have + BALANCE_EPSILON >= need


class TradingCycle:
    """Run the reconcile/evaluate/size/fund/submit/cooldown loop for one trader.

    Args:
        trader: Identity whose orders and balances are managed
        adapter: Venue adapter for the configured market
        engine: Indicator engine reading the trader's candle buffer
        price_state: Live price written by the tick stream
        strategy: Immutable strategy configuration
        accountant: Balance reader (defaults to one over ``adapter``)
        sizer: Order sizer (defaults to one over ``adapter``)
        sleep: Awaitable sleep for cooldowns (injectable for tests)
    """

    def __init__(
        self,
        trader: TraderIdentity,
        adapter: ExchangeAdapter,
        engine: IndicatorEngine,
        price_state: PriceState,
        strategy: StrategyConfig,
        *,
        symbol: str = "",
        accountant: Optional[BalanceAccountant] = None,
        sizer: Optional[OrderSizer] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.trader = trader
        self.adapter = adapter
        self.engine = engine
        self.price_state = price_state
        self.strategy = strategy
        self.symbol = symbol
        self.accountant = accountant or BalanceAccountant(adapter)
        self.sizer = sizer or OrderSizer(adapter, safety_margin=strategy.min_notional_margin)
        self.state = CycleState()
        self.iterations = 0
        self._sleep = sleep
        self.log = logger.bind(trader=trader.label)

    async def cooldown(self) -> None:
        await self._sleep(self.strategy.cancel_interval_seconds)

    async def reconcile(self) -> Optional[int]:
        """Cancel every resting order before a new one is considered.

        A bulk cancel is tried first. Orders that survive it are cancelled one
        by one. If the previous pass already ended with orders resting, the
        bulk cancel has proven ineffective and this pass goes straight to the
        one-by-one path.

        Returns:
            Number of orders still open afterwards, or None if the venue
            could not be queried
        """
        try:
            orders = await self.adapter.current_orders(self.trader)
        except ExecutionError as e:
            self.log.error(f"Error checking orders: {e}")
            return None

        count = len(orders)
        if count == 0:
            self.log.info("No orders to cancel")
            self.state.previous_open_order_count = 0
            return 0

        if self.state.previous_open_order_count > 0:
            self.log.warning(
                f"Orders survived the last cancel, cancelling one by one | open_orders={count} "
                f"previous_open_orders={self.state.previous_open_order_count}"
            )
            remaining = await self.cancel_one_by_one(orders)
        else:
            try:
                receipt = await self.adapter.cancel_all_orders(self.trader)
                self.log.info(f"All orders canceled | tx_id={receipt.tx_id} cancelled={count}")
                leftover = await self.adapter.current_orders(self.trader)
            except SimulationRejectedError as e:
                self.log.error(f"Cancel rejected: {e} | logs={e.logs}")
                return count
            except ExecutionError as e:
                self.log.error(f"Error canceling orders: {e}")
                return count

            remaining = len(leftover)
            if remaining > 0:
                self.log.error(f"Some orders were not canceled | remaining={remaining}")
                remaining = await self.cancel_one_by_one(leftover)

        if remaining > 0:
            self.log.error(f"Orders still resting after reconcile, retrying next pass | remaining={remaining}")
        self.state.previous_open_order_count = remaining
        return remaining

    async def cancel_one_by_one(self, orders: List[Order]) -> int:
        """Cancel ``orders`` individually, then return how many are still open."""
        self.log.info(f"Attempting to cancel {len(orders)} orders one by one")
        for order in orders:
            try:
                await self.adapter.cancel_order(self.trader, order.order_id)
                self.log.info(f"Canceled order | order_id={order.order_id}")
            except ExecutionError as e:
                self.log.error(f"Failed to cancel order | order_id={order.order_id} error={e}")
            await self._sleep(CANCEL_SPACING_SECONDS)

        try:
            return len(await self.adapter.current_orders(self.trader))
        except ExecutionError as e:
            self.log.error(f"Error checking orders after one-by-one cancel: {e}")
            return len(orders)

    async def fund_check(self, intent: OrderIntent) -> bool:
        """Check that the wallet backs ``intent``, wrapping native gas once if short."""
        try:
            balances = await self.accountant.snapshot(self.trader)
        except ExecutionError as e:
            self.log.error(f"Error reading balances: {e}")
            return False
        self.log.info(f"Balances | {balances}")

        if intent.side is Side.BID:
            required = intent.size.required_quote
            if _covers(balances.quote_wallet, required):
                return True
            self.log.error(
                f"Insufficient quote balance to place the order | quote_wallet={balances.quote_wallet} required={required}"
            )
            return False

        required = intent.size.required_base
        if _covers(balances.base_wallet, required):
            return True
        return await self._cover_base_shortfall(balances, required)

    async def _cover_base_shortfall(self, balances: BalanceSnapshot, required: float) -> bool:
        shortfall = round(required - balances.base_wallet, 9)
        self.log.warning(
            f"Insufficient base balance to place the order | base_wallet={balances.base_wallet} required={required}"
        )
        if not _covers(balances.native_gas, shortfall):
            self.log.error(
                f"Insufficient native balance to wrap | native={balances.native_gas} required={shortfall}"
            )
            return False

        self.log.info(f"Wrapping native balance into base asset | amount={shortfall}")
        try:
            receipt = await self.adapter.wrap_native(self.trader, shortfall)
            refreshed = await self.accountant.snapshot(self.trader)
        except ExecutionError as e:
            self.log.error(f"Error wrapping native balance: {e}")
            return False
        self.log.info(f"Wrap confirmed | tx_id={receipt.tx_id} base_wallet={refreshed.base_wallet}")

        if _covers(refreshed.base_wallet, required):
            return True
        self.log.error(
            f"Still insufficient base balance after wrap, skipping order | base_wallet={refreshed.base_wallet} required={required}"
        )
        return False

    async def submit(self, intent: OrderIntent) -> CycleOutcome:
        """Place the order. Faults are logged and left to the next cycle."""
        price_ticks = self.adapter.to_price_ticks(intent.price)
        self.log.info(
            f"Placing order | side={intent.side.value} price={intent.price:.6f} price_ticks={price_ticks} "
            f"base_lots={intent.size.base_lots} notional={intent.size.notional}"
        )
        try:
            receipt = await self.adapter.place_order(self.trader, intent.side, intent.size.base_lots, price_ticks)
        except TransientSubmissionError as e:
            self.log.warning(f"Order submission expired, retrying next cycle: {e}")
            return CycleOutcome.SUBMISSION_FAILED
        except SimulationRejectedError as e:
            self.log.error(f"Order rejected: {e}")
            for line in e.logs:
                self.log.error(f"  simulation log | {line}")
            return CycleOutcome.SUBMISSION_FAILED
        except ExecutionError as e:
            self.log.error(f"Error placing order: {e}")
            return CycleOutcome.SUBMISSION_FAILED

        self.log.info(f"Order placed | tx_id={receipt.tx_id} order_id={receipt.order_id}")
        try:
            open_orders = await self.adapter.current_orders(self.trader)
            self.log.info(f"Current orders | open_orders={len(open_orders)}")
        except ExecutionError as e:
            self.log.warning(f"Could not list orders after submit: {e}")
        return CycleOutcome.SUBMITTED

    async def run_once(self) -> CycleOutcome:
        """Run one full pass, including its closing sleep."""
        self.iterations += 1
        remaining = await self.reconcile()

        snapshot = self.engine.compute_snapshot()
        price = self.price_state.last_price
        self.log.info(
            f"Indicators | pair={self.symbol} rsi={snapshot.rsi:.2f} wma={snapshot.wma:.2f} "
            f"ema={snapshot.ema:.2f} price={price} wma_buy_limit={self.strategy.wma_buy_limit} "
            f"wma_sell_limit={self.strategy.wma_sell_limit}"
        )
        price_age = self.price_state.age()
        if price_age is not None and price_age > self.strategy.stale_price_seconds:
            self.log.warning(f"Live price is stale | age={price_age:.0f}s ticks={self.price_state.ticks}")
        if not snapshot.is_complete:
            self.log.info("Not enough data to calculate indicators, skipping this iteration")
            await self._sleep(self.strategy.insufficient_data_seconds)
            return CycleOutcome.INSUFFICIENT_DATA

        decision = evaluate_signal(snapshot, self.strategy)
        if not decision.is_action:
            self.log.info(f"No order this cycle | reason={decision.reason}")
            await self.cooldown()
            return CycleOutcome.NO_SIGNAL
        self.log.info(f"Signal | side={decision.side.value} reason={decision.reason}")

        if remaining is None or remaining > 0:
            self.log.warning(f"Resting orders not cleared, skipping submission | open_orders={remaining}")
            await self.cooldown()
            return CycleOutcome.ORDERS_OUTSTANDING

        if not math.isfinite(price):
            price = await self.adapter.current_mid_price()
        try:
            size = self.sizer.size(self.strategy.volume, price)
        except SizingError as e:
            self.log.error(f"Order sizing rejected: {e}")
            await self.cooldown()
            return CycleOutcome.SIZING_REJECTED

        intent = OrderIntent(
            side=decision.side,
            price=limit_price(decision.side, price, self.strategy.price_offset_pct),
            size=size,
        )
        if not await self.fund_check(intent):
            await self.cooldown()
            return CycleOutcome.INSUFFICIENT_FUNDS

        outcome = await self.submit(intent)
        await self.cooldown()
        return outcome

    async def run_forever(self, max_iterations: Optional[int] = None) -> None:
        """Loop until cancelled (or ``max_iterations`` passes have run)."""
        while max_iterations is None or self.iterations < max_iterations:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception:
                self.log.exception("Unexpected error in trading cycle")
                await self.cooldown()
