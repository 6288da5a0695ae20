from __future__ import annotations
from typing import List, Sequence, Tuple

from .models import Candle, Zone, ZoneSet

MIN_WINDOW = 5


def _is_swing_high(window: Sequence[Candle], i: int) -> bool:
    h = window[i].high
    return (
        h > window[i - 2].high
        and h > window[i - 1].high
        and h > window[i + 1].high
        and h > window[i + 2].high
    )


def _is_swing_low(window: Sequence[Candle], i: int) -> bool:
    lo = window[i].low
    return (
        lo < window[i - 2].low
        and lo < window[i - 1].low
        and lo < window[i + 1].low
        and lo < window[i + 2].low
    )


def cluster_levels(levels: Sequence[float], cluster_bps: float) -> Tuple[Zone, ...]:
    """Merge sorted price levels into weighted centroids.

    A level joins the running cluster while it sits within `cluster_bps` of the
    cluster centroid; otherwise a new cluster starts. Zones come back ordered by
    touches, most touched first.
    """
    if not levels:
        return ()
    ordered = sorted(levels)
    tol_frac = float(cluster_bps) / 10000.0

    out: List[Zone] = []
    price = ordered[0]
    touches = 1
    for px in ordered[1:]:
        if abs(px - price) <= tol_frac * price:
            price = (price * touches + px) / (touches + 1)
            touches += 1
        else:
            out.append(Zone(price=price, touches=touches))
            price, touches = px, 1
    out.append(Zone(price=price, touches=touches))

    # stable: equal touches keep ascending price order
    out.sort(key=lambda z: -z.touches)
    return tuple(out)


def build_zones(window: Sequence[Candle], cluster_bps: float) -> ZoneSet:
    if len(window) < MIN_WINDOW:
        return ZoneSet()

    highs: List[float] = []
    lows: List[float] = []
    for i in range(2, len(window) - 2):
        if _is_swing_high(window, i):
            highs.append(window[i].high)
        if _is_swing_low(window, i):
            lows.append(window[i].low)

    return ZoneSet(highs=cluster_levels(highs, cluster_bps), lows=cluster_levels(lows, cluster_bps))
