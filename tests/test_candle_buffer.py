"""Test the bounded, time-ordered candle buffer."""
import pytest

from rsitrader.candles import Candle, CandleBuffer


def make_candle(open_time: int, close: float = 1.0) -> Candle:
    return Candle(
        open_time=open_time,
        close_time=open_time + 59_999,
        open_price=close,
        close_price=close,
        high_price=close,
        low_price=close,
    )


def candles(*open_times):
    return [make_candle(t) for t in open_times]


def test_capacity_must_be_positive():
    with pytest.raises(ValueError):
        CandleBuffer(capacity=0)


def test_seed_drops_final_bar():
    """The last fetched bar may still be open and is never buffered."""
    buf = CandleBuffer(capacity=5)
    added = buf.seed(candles(1, 2, 3, 4, 5, 6))

    assert added == 5
    assert buf.open_times() == [1, 2, 3, 4, 5]
    assert buf.seeded


def test_first_seed_keeps_most_recent_when_over_capacity():
    buf = CandleBuffer(capacity=3)
    buf.seed(candles(1, 2, 3, 4, 5, 6))

    assert buf.open_times() == [3, 4, 5]


def test_append_evicts_oldest_at_capacity():
    buf = CandleBuffer(capacity=5)
    buf.seed(candles(1, 2, 3, 4, 5, 6))

    assert buf.append(make_candle(6)) is True
    assert buf.open_times() == [2, 3, 4, 5, 6]
    assert len(buf) == 5


def test_append_rejects_duplicate_and_stale():
    """An ordering violation leaves the buffer unchanged."""
    buf = CandleBuffer(capacity=5)
    buf.seed(candles(1, 2, 3, 4, 5, 6))
    buf.append(make_candle(6))

    assert buf.append(make_candle(6, close=9.0)) is False
    assert buf.append(make_candle(4)) is False
    assert buf.open_times() == [2, 3, 4, 5, 6]
    assert buf.last.close_price == 1.0


def test_append_to_empty_buffer():
    buf = CandleBuffer(capacity=2)
    assert buf.append(make_candle(10)) is True
    assert buf.first is buf.last
    assert not buf.seeded


def test_reseed_merges_missing_candles_in_order():
    """Backfill after a gap adds only newer, missing candles."""
    buf = CandleBuffer(capacity=5)
    buf.seed(candles(1, 2, 3, 4, 5, 6))
    buf.append(make_candle(6))
    buf.append(make_candle(7))
    assert buf.open_times() == [3, 4, 5, 6, 7]

    added = buf.seed(candles(3, 4, 5, 6, 7, 8, 9, 10))

    assert added == 2
    assert buf.open_times() == [5, 6, 7, 8, 9]


def test_reseed_keeps_retained_candle_on_tie():
    buf = CandleBuffer(capacity=10)
    buf.seed([make_candle(1, close=1.0), make_candle(2, close=2.0), make_candle(3)])

    buf.seed([make_candle(1, close=50.0), make_candle(2, close=60.0), make_candle(4, close=4.0), make_candle(5)])

    assert buf.open_times() == [1, 2, 4]
    assert buf.closes() == [1.0, 2.0, 4.0]


def test_reseed_ignores_candles_older_than_earliest():
    buf = CandleBuffer(capacity=10)
    buf.seed(candles(5, 6, 7, 8))

    added = buf.seed(candles(1, 2, 3, 9, 10))

    assert added == 1
    assert buf.open_times() == [5, 6, 7, 9]


def test_snapshot_is_a_copy():
    buf = CandleBuffer(capacity=5)
    buf.seed(candles(1, 2, 3))
    snap = buf.snapshot()
    snap.clear()

    assert len(buf) == 2
    assert [c.open_time for c in buf] == [1, 2]


def test_seed_of_exactly_capacity_bars_drops_the_open_one():
    buf = CandleBuffer(capacity=5)
    buf.seed(candles(1, 2, 3, 4, 5))

    assert buf.open_times() == [1, 2, 3, 4]
    assert buf.append(make_candle(5)) is True
    assert buf.append(make_candle(6)) is True
    assert buf.open_times() == [2, 3, 4, 5, 6]
