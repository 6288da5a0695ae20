import pytest

from zone_reversion.indicators import (
    adx_series,
    annotate,
    atr_series,
    bps_distance,
    ema_next,
    ema_series,
    rsi_series,
    true_range,
)
from zone_reversion.models import Candle


def _c(idx: int, o: float, h: float, l: float, c: float) -> Candle:
    return Candle(time_ms=idx * 3_600_000, open=o, high=h, low=l, close=c)


def test_ema_seeds_with_first_value():
    assert ema_next(None, 5.0, 10) == 5.0
    out = ema_series([1.0, 2.0], 3)
    assert out[0] == 1.0
    assert out[1] == pytest.approx(0.5 * 2.0 + 0.5 * 1.0)


def test_rsi_warmup_and_extremes():
    rising = [1.0 + 0.01 * i for i in range(20)]
    out = rsi_series(rising, 14)
    assert all(v is None for v in out[:14])
    assert out[14] == 100.0
    assert out[-1] == 100.0

    falling = list(reversed(rising))
    assert rsi_series(falling, 14)[-1] == pytest.approx(0.0)


def test_rsi_balanced_moves_near_fifty():
    closes = [1.0 + (0.01 if i % 2 else 0.0) for i in range(30)]
    out = rsi_series(closes, 14)
    assert 40.0 < out[-1] < 60.0


def test_atr_constant_range():
    highs = [1.1] * 20
    lows = [1.0] * 20
    closes = [1.05] * 20
    out = atr_series(highs, lows, closes, 14)
    assert out[13] is None
    assert out[14] == pytest.approx(0.1)
    assert out[-1] == pytest.approx(0.1)


def test_true_range_uses_gap():
    assert true_range(1.2, 1.1, 1.0) == pytest.approx(0.2)


def test_adx_first_value_and_trend_strength():
    n = 40
    highs = [1.0 + 0.01 * i + 0.005 for i in range(n)]
    lows = [1.0 + 0.01 * i - 0.005 for i in range(n)]
    closes = [1.0 + 0.01 * i for i in range(n)]
    out = adx_series(highs, lows, closes, 14)
    assert out[26] is None
    assert out[27] is not None
    # one-way market: +DI dominates, DX pinned at 100
    assert out[-1] == pytest.approx(100.0)


def test_adx_short_series_is_all_none():
    assert adx_series([1.0] * 10, [0.9] * 10, [0.95] * 10, 14) == [None] * 10


def test_bps_distance():
    assert bps_distance(1.1011, 1.1) == pytest.approx(10.0)
    assert bps_distance(1.0989, 1.1) == pytest.approx(10.0)


def test_annotate_fills_fields_and_keeps_prices():
    candles = [_c(i, 1.0, 1.0 + 0.002 * (i % 3) + 0.001, 0.999, 1.0 + 0.001 * (i % 3)) for i in range(40)]
    out = annotate(candles)

    assert len(out) == 40
    assert out[0].rsi14 is None and out[0].atr14 is None and out[0].adx14 is None
    assert out[-1].rsi14 is not None and out[-1].atr14 is not None and out[-1].adx14 is not None
    assert out[-1].ema20 is not None and out[-1].ema50 is not None
    assert [(c.time_ms, c.high, c.low) for c in out] == [(c.time_ms, c.high, c.low) for c in candles]
