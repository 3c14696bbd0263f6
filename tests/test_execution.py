"""Test the paper venue against the ExchangeAdapter contract."""
import pytest

from rsitrader.config import VenueConfig
from rsitrader.execution import (
    ExecutionError,
    InsufficientFundsError,
    MarketNotFoundError,
    PaperExchangeAdapter,
    Side,
    SimulationRejectedError,
)
from rsitrader.secrets import TraderIdentity


@pytest.fixture
def trader():
    return TraderIdentity.from_secret("paper-key")


@pytest.fixture
def adapter(trader):
    adapter = PaperExchangeAdapter(VenueConfig(), mid_price=100.0)
    adapter.fund(trader, native=1.0, base=0.5, quote=100.0)
    return adapter


def test_lot_conversion_floors():
    adapter = PaperExchangeAdapter(VenueConfig(base_lot_size=0.01, quote_lot_size=0.5))
    assert adapter.to_base_lots(0.1) == 10
    assert adapter.to_base_lots(0.0999) == 9
    assert adapter.to_quote_lots(1.74) == 3

    # 0.3 / 0.1 is 2.9999999999999996 in binary floating point
    coarse = PaperExchangeAdapter(VenueConfig(base_lot_size=0.1))
    assert coarse.to_base_lots(0.3) == 3


def test_price_ticks_round_trip():
    adapter = PaperExchangeAdapter(VenueConfig(tick_size=0.01))
    assert adapter.to_price_ticks(99.504) == 9950
    assert adapter.from_price_ticks(9950) == pytest.approx(99.5)


@pytest.mark.asyncio
async def test_load_market_unknown_raises():
    adapter = PaperExchangeAdapter(VenueConfig(market="SOL/USDC"))
    await adapter.load_market("SOL/USDC")
    assert adapter.market == "SOL/USDC"

    with pytest.raises(MarketNotFoundError, match="Market config not found: BONK/USDC"):
        await adapter.load_market("BONK/USDC")


@pytest.mark.asyncio
async def test_ensure_accounts_creates_once(trader):
    adapter = PaperExchangeAdapter()
    assert await adapter.ensure_accounts(trader) is True
    assert await adapter.ensure_accounts(trader) is False


@pytest.mark.asyncio
async def test_ask_locks_base_and_cancel_releases(adapter, trader):
    receipt = await adapter.place_order(trader, Side.ASK, size_lots=200, price_ticks=101_000)

    orders = await adapter.current_orders(trader)
    assert [o.order_id for o in orders] == [receipt.order_id]
    bal = await adapter.balances(trader)
    assert bal.base_wallet == pytest.approx(0.3)
    assert bal.base_locked == pytest.approx(0.2)

    await adapter.cancel_all_orders(trader)
    bal = await adapter.balances(trader)
    assert await adapter.current_orders(trader) == []
    assert bal.base_wallet == pytest.approx(0.5)
    assert bal.base_locked == pytest.approx(0.0)


@pytest.mark.asyncio
async def test_bid_locks_quote(adapter, trader):
    await adapter.place_order(trader, Side.BID, size_lots=100, price_ticks=99_500)

    bal = await adapter.balances(trader)
    assert bal.quote_locked == pytest.approx(9.95)
    assert bal.quote_wallet == pytest.approx(90.05)


@pytest.mark.asyncio
async def test_insufficient_funds_rejected_in_simulation(adapter, trader):
    with pytest.raises(SimulationRejectedError) as exc_info:
        await adapter.place_order(trader, Side.ASK, size_lots=1000, price_ticks=100_000)
    assert "insufficient base" in exc_info.value.logs[0]
    assert await adapter.current_orders(trader) == []


@pytest.mark.asyncio
async def test_zero_size_rejected(adapter, trader):
    with pytest.raises(SimulationRejectedError):
        await adapter.place_order(trader, Side.BID, size_lots=0, price_ticks=100_000)


@pytest.mark.asyncio
async def test_cancel_without_orders_raises(adapter, trader):
    with pytest.raises(ExecutionError, match="No open orders"):
        await adapter.cancel_all_orders(trader)


@pytest.mark.asyncio
async def test_cancel_order_releases_only_that_order(adapter, trader):
    ask = await adapter.place_order(trader, Side.ASK, size_lots=200, price_ticks=101_000)
    bid = await adapter.place_order(trader, Side.BID, size_lots=100, price_ticks=99_500)

    receipt = await adapter.cancel_order(trader, bid.order_id)

    assert receipt.action == "cancel_order"
    assert receipt.order_id == bid.order_id
    assert [o.order_id for o in await adapter.current_orders(trader)] == [ask.order_id]
    bal = await adapter.balances(trader)
    assert bal.quote_wallet == pytest.approx(100.0)
    assert bal.quote_locked == pytest.approx(0.0)
    assert bal.base_locked == pytest.approx(0.2)


@pytest.mark.asyncio
async def test_cancel_unknown_order_raises(adapter, trader):
    with pytest.raises(ExecutionError, match="Order not found: ord-missing"):
        await adapter.cancel_order(trader, "ord-missing")


@pytest.mark.asyncio
async def test_unknown_trader_raises():
    adapter = PaperExchangeAdapter()
    with pytest.raises(ExecutionError):
        await adapter.current_orders(TraderIdentity.from_secret("nobody"))


@pytest.mark.asyncio
async def test_wrap_native(adapter, trader):
    await adapter.wrap_native(trader, 0.25)
    bal = await adapter.balances(trader)
    assert bal.native_gas == pytest.approx(0.75)
    assert bal.base_wallet == pytest.approx(0.75)

    with pytest.raises(InsufficientFundsError):
        await adapter.wrap_native(trader, 5.0)


@pytest.mark.asyncio
async def test_balances_returns_copy(adapter, trader):
    bal = await adapter.balances(trader)
    bal.quote_wallet = 0.0
    assert (await adapter.balances(trader)).quote_wallet == 100.0


@pytest.mark.asyncio
async def test_mid_price_prefers_live_source():
    prices = [float("nan")]
    adapter = PaperExchangeAdapter(price_source=lambda: prices[0], mid_price=99.0)

    assert await adapter.current_mid_price() == 99.0
    prices[0] = 101.0
    assert await adapter.current_mid_price() == 101.0
