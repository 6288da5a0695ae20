from __future__ import annotations
from dataclasses import replace
from typing import List, Optional, Sequence

from .models import Candle


def ema_next(prev_ema: Optional[float], x: float, length: int) -> float:
    if length <= 1:
        return x
    alpha = 2.0 / (length + 1.0)
    return x if prev_ema is None else (alpha * x + (1.0 - alpha) * prev_ema)


def rma_next(prev: Optional[float], x: float, length: int) -> float:
    """Wilder's RMA step."""
    if length <= 1 or prev is None:
        return x
    return (prev * (length - 1) + x) / float(length)


def true_range(high: float, low: float, prev_close: float) -> float:
    return max(high - low, abs(high - prev_close), abs(low - prev_close))


def bps_distance(a: float, b: float) -> float:
    """Absolute distance of a from b in basis points of b."""
    if b == 0:
        return float("inf")
    return abs((a - b) / b) * 10000.0


def ema_series(values: Sequence[float], length: int) -> List[float]:
    out: List[float] = []
    prev: Optional[float] = None
    for v in values:
        prev = ema_next(prev, float(v), length)
        out.append(prev)
    return out


def rsi_series(closes: Sequence[float], length: int = 14) -> List[Optional[float]]:
    """Wilder RSI: SMA seed over the first `length` changes, then RMA."""
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n <= length:
        return out

    def _rsi(g: float, l: float) -> float:
        if l == 0:
            return 100.0
        return 100.0 - (100.0 / (1.0 + g / l))

    gains = 0.0
    losses = 0.0
    for i in range(1, length + 1):
        ch = closes[i] - closes[i - 1]
        if ch > 0:
            gains += ch
        else:
            losses -= ch
    avg_gain = gains / length
    avg_loss = losses / length
    out[length] = _rsi(avg_gain, avg_loss)

    for i in range(length + 1, n):
        ch = closes[i] - closes[i - 1]
        avg_gain = rma_next(avg_gain, ch if ch > 0 else 0.0, length)
        avg_loss = rma_next(avg_loss, -ch if ch < 0 else 0.0, length)
        out[i] = _rsi(avg_gain, avg_loss)
    return out


def atr_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14
) -> List[Optional[float]]:
    """Wilder ATR with SMA seed at the first full window of true ranges."""
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n <= length:
        return out
    trs = [true_range(highs[i], lows[i], closes[i - 1]) for i in range(1, n)]
    atr = sum(trs[:length]) / float(length)
    out[length] = atr
    for i in range(length + 1, n):
        atr = rma_next(atr, trs[i - 1], length)
        out[i] = atr
    return out


def adx_series(
    highs: Sequence[float], lows: Sequence[float], closes: Sequence[float], length: int = 14
) -> List[Optional[float]]:
    """Wilder ADX. First value lands at index 2*length - 1."""
    n = len(closes)
    out: List[Optional[float]] = [None] * n
    if length <= 0 or n < 2 * length:
        return out

    plus_dm = [0.0] * n
    minus_dm = [0.0] * n
    tr = [0.0] * n
    for i in range(1, n):
        up = highs[i] - highs[i - 1]
        down = lows[i - 1] - lows[i]
        plus_dm[i] = up if (up > down and up > 0) else 0.0
        minus_dm[i] = down if (down > up and down > 0) else 0.0
        tr[i] = true_range(highs[i], lows[i], closes[i - 1])

    s_tr = sum(tr[1 : length + 1])
    s_p = sum(plus_dm[1 : length + 1])
    s_m = sum(minus_dm[1 : length + 1])

    dx: List[float] = []
    for i in range(length, n):
        if i > length:
            s_tr = s_tr - s_tr / length + tr[i]
            s_p = s_p - s_p / length + plus_dm[i]
            s_m = s_m - s_m / length + minus_dm[i]
        if s_tr <= 0:
            p_di = m_di = 0.0
        else:
            p_di = 100.0 * s_p / s_tr
            m_di = 100.0 * s_m / s_tr
        di_sum = p_di + m_di
        dx.append(0.0 if di_sum == 0 else 100.0 * abs(p_di - m_di) / di_sum)

    adx = sum(dx[:length]) / float(length)
    out[2 * length - 1] = adx
    for k in range(length, len(dx)):
        adx = rma_next(adx, dx[k], length)
        out[length + k] = adx
    return out


def annotate(candles: Sequence[Candle], length: int = 14) -> List[Candle]:
    """Return copies of candles with rsi14/atr14/adx14/ema20/ema50 filled in."""
    highs = [c.high for c in candles]
    lows = [c.low for c in candles]
    closes = [c.close for c in candles]

    rsi = rsi_series(closes, length)
    atr = atr_series(highs, lows, closes, length)
    adx = adx_series(highs, lows, closes, length)
    e20 = ema_series(closes, 20)
    e50 = ema_series(closes, 50)

    return [
        replace(c, rsi14=rsi[i], atr14=atr[i], adx14=adx[i], ema20=e20[i], ema50=e50[i])
        for i, c in enumerate(candles)
    ]
