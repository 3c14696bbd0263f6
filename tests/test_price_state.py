import math

import pytest

from rsitrader.price_state import PriceState


def test_price_starts_unknown():
    state = PriceState()
    assert math.isnan(state.last_price)
    assert not state.has_price
    assert state.updated_at is None


def test_update_sets_price_and_counts_ticks():
    state = PriceState()
    state.update(101.5)
    state.update(102.0)

    assert state.last_price == 102.0
    assert state.has_price
    assert state.ticks == 2
    assert state.updated_at is not None


@pytest.mark.parametrize("bad", [0.0, -1.0, float("nan"), float("inf")])
def test_update_rejects_invalid_price(bad):
    state = PriceState(last_price=10.0)
    with pytest.raises(ValueError, match="Invalid price tick"):
        state.update(bad)
    assert state.last_price == 10.0


def test_age_measures_time_since_last_tick():
    state = PriceState()
    assert state.age() is None

    state.update(101.5)
    state.updated_at = 1_000.0

    assert state.age(now=1_090.0) == 90.0
