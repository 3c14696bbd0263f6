"""Wallet and venue balances normalized to a quote-currency view."""
from dataclasses import dataclass

from .execution import ExchangeAdapter
from .logging_setup import logger
from .secrets import TraderIdentity


@dataclass(frozen=True)
class BalanceSnapshot:
    """Balances of one trader at one mid price.

    Attributes:
        native_gas: Native fee-token balance (native units)
        base_wallet: Base asset in the wallet (base units)
        quote_wallet: Quote asset in the wallet (quote units)
        base_locked: Base held by the venue (locked + free), valued in quote
        quote_locked: Quote held by the venue (locked + free), in quote
        total_base_value: All base holdings valued in quote
        total_quote_value: All quote holdings in quote
        mid_price: Mid price used for the valuation
    """

    native_gas: float
    base_wallet: float
    quote_wallet: float
    base_locked: float
    quote_locked: float
    total_base_value: float
    total_quote_value: float
    mid_price: float

    def __str__(self) -> str:
        return (
            f"native={self.native_gas} base_wallet={self.base_wallet} quote_wallet={self.quote_wallet} "
            f"base_locked={self.base_locked} quote_locked={self.quote_locked} "
            f"total_base_value={self.total_base_value} total_quote_value={self.total_quote_value}"
        )


class BalanceAccountant:
    """Query the venue for balances and value them in quote currency."""

    def __init__(self, adapter: ExchangeAdapter, *, precision: int = 8):
        self.adapter = adapter
        self.precision = precision

    async def snapshot(self, trader: TraderIdentity) -> BalanceSnapshot:
        """Provision accounts if needed, then read and normalize balances."""
        if await self.adapter.ensure_accounts(trader):
            logger.bind(trader=trader.label).info("Holding accounts created before balance read")

        raw = await self.adapter.balances(trader)
        mid = await self.adapter.current_mid_price()

        p = self.precision
        base_venue_value = (raw.base_locked + raw.base_free) * mid
        quote_venue = raw.quote_locked + raw.quote_free
        return BalanceSnapshot(
            native_gas=round(raw.native_gas, p),
            base_wallet=round(raw.base_wallet, p),
            quote_wallet=round(raw.quote_wallet, p),
            base_locked=round(base_venue_value, p),
            quote_locked=round(quote_venue, p),
            total_base_value=round(raw.base_wallet * mid + base_venue_value, p),
            total_quote_value=round(raw.quote_wallet + quote_venue, p),
            mid_price=mid,
        )
