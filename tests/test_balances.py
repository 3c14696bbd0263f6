import pytest

from rsitrader.balances import BalanceAccountant
from rsitrader.execution import PaperExchangeAdapter, Side
from rsitrader.secrets import TraderIdentity


@pytest.mark.asyncio
async def test_snapshot_values_holdings_in_quote():
    trader = TraderIdentity.from_secret("k1")
    adapter = PaperExchangeAdapter(mid_price=150.0)
    adapter.fund(trader, native=2.0, base=1.0, quote=50.0)
    await adapter.place_order(trader, Side.ASK, size_lots=400, price_ticks=160_000)

    snap = await BalanceAccountant(adapter).snapshot(trader)

    assert snap.native_gas == 2.0
    assert snap.base_wallet == pytest.approx(0.6)
    assert snap.base_locked == pytest.approx(60.0)  # 0.4 base at 150
    assert snap.total_base_value == pytest.approx(150.0)
    assert snap.quote_wallet == 50.0
    assert snap.total_quote_value == pytest.approx(50.0)
    assert snap.mid_price == 150.0


@pytest.mark.asyncio
async def test_snapshot_provisions_missing_accounts():
    trader = TraderIdentity.from_secret("fresh")
    adapter = PaperExchangeAdapter(mid_price=10.0)

    snap = await BalanceAccountant(adapter).snapshot(trader)

    assert adapter.calls[:2] == ["ensure_accounts", "balances"]
    assert snap.base_wallet == 0.0
    assert snap.total_quote_value == 0.0


@pytest.mark.asyncio
async def test_snapshot_rounds_to_precision():
    trader = TraderIdentity.from_secret("k2")
    adapter = PaperExchangeAdapter(mid_price=1.0)
    adapter.fund(trader, quote=1.123456789)

    snap = await BalanceAccountant(adapter, precision=4).snapshot(trader)

    assert snap.quote_wallet == 1.1235
    assert "quote_wallet=1.1235" in str(snap)
