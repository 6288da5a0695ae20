from __future__ import annotations

import logging
from typing import List, Optional, Sequence

from .indicators import ema_series
from .models import Candle, ZoneSnapshot
from .zones import build_zones

log = logging.getLogger("timeline")


def _slope_bps(ema: Sequence[float], i: int, lookback: int) -> Optional[float]:
    j = i - lookback
    if j < 0 or ema[j] == 0:
        return None
    return abs(ema[i] - ema[j]) / abs(ema[j]) * 10000.0


def _avg_adx(window: Sequence[Candle]) -> Optional[float]:
    vals = [c.adx14 for c in window if c.adx14 is not None]
    if not vals:
        return None
    return sum(vals) / float(len(vals))


def build_zone_timeline(
    series: Sequence[Candle],
    window_size: int,
    cluster_bps: float,
    slope_max_bps: float,
    adx_max: float,
    *,
    ema_length: int = 20,
    slope_lookback: int = 5,
) -> List[ZoneSnapshot]:
    """One zone snapshot per higher-TF bar once `window_size` bars are available.

    trend_ok is False while the EMA slope or the window's ADX is still warming up.
    """
    out: List[ZoneSnapshot] = []
    if window_size <= 0 or len(series) < window_size:
        return out

    ema = ema_series([c.close for c in series], ema_length)

    for i in range(window_size - 1, len(series)):
        window = series[i - window_size + 1 : i + 1]
        zones = build_zones(window, cluster_bps)
        slope = _slope_bps(ema, i, slope_lookback)
        avg_adx = _avg_adx(window)
        trend_ok = (
            slope is not None
            and avg_adx is not None
            and slope <= slope_max_bps
            and avg_adx <= adx_max
        )
        out.append(
            ZoneSnapshot(
                time_ms=series[i].time_ms,
                highs=zones.highs,
                lows=zones.lows,
                trend_ok=trend_ok,
                slope_bps=slope,
                avg_adx=avg_adx,
            )
        )

    log.debug(
        "timeline_built bars=%d snapshots=%d trend_ok=%d",
        len(series),
        len(out),
        sum(1 for s in out if s.trend_ok),
    )
    return out
