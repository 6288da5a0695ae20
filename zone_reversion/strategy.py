from __future__ import annotations

import hashlib
import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .config import StrategyConfig
from .indicators import bps_distance
from .models import BUY, SELL, Candle, PendingSetup, Signal, Zone, ZoneSnapshot

log = logging.getLogger("detector")


def nearest_zone(zones: Sequence[Zone], price: float) -> Optional[Tuple[Zone, float]]:
    """Zone closest to price by relative bps distance; first wins on ties."""
    best: Optional[Tuple[Zone, float]] = None
    for z in zones:
        d = bps_distance(price, z.price)
        if best is None or d < best[1]:
            best = (z, d)
    return best


def pin_reject_high(c: Candle, max_body_frac: float, min_wick_frac: float) -> bool:
    rng = c.high - c.low
    if rng <= 0:
        return False
    body = abs(c.close - c.open)
    upper_wick = c.high - max(c.open, c.close)
    return body <= max_body_frac * rng and upper_wick >= min_wick_frac * rng


def pin_reject_low(c: Candle, max_body_frac: float, min_wick_frac: float) -> bool:
    rng = c.high - c.low
    if rng <= 0:
        return False
    body = abs(c.close - c.open)
    lower_wick = min(c.open, c.close) - c.low
    return body <= max_body_frac * rng and lower_wick >= min_wick_frac * rng


class SignalDetector:
    """Retest-confirmed zone mean-reversion detector for one (symbol, timeframe).

    A pin-bar (or relaxed) setup near a zone is queued; it turns into a Signal
    only if a later bar, within `retest_bars`, revisits the zone and closes back
    on the rejection side. State lives for a single `scan` call.
    """

    def __init__(
        self,
        symbol: str,
        timeframe: str,
        cfg: StrategyConfig,
        *,
        ignore_trend: bool = False,
        strategy_sig: Optional[str] = None,
    ):
        self.symbol = symbol
        self.timeframe = timeframe
        self.cfg = cfg
        self.ignore_trend = ignore_trend
        self.strategy_sig = strategy_sig

        self._reset()

    def _reset(self) -> None:
        self.zone_idx: int = -1
        self.last_fired: Dict[str, Optional[int]] = {BUY: None, SELL: None}
        self.pending: List[PendingSetup] = []

        self.stats: Dict[str, int] = {
            "bars": 0,
            "warming_up": 0,
            "vol_guard": 0,
            "no_zones": 0,
            "setups": 0,
            "expired": 0,
            "signals": 0,
        }

    def scan(self, candles: Sequence[Candle], timeline: Sequence[ZoneSnapshot]) -> List[Signal]:
        self._reset()
        out: List[Signal] = []
        if not candles or not timeline:
            return out

        for i in range(int(self.cfg.warmup_bars), len(candles)):
            out.extend(self._on_candle(candles, i, timeline))

        log.info(
            "scan_done symbol=%s tf=%s bars=%d setups=%d expired=%d signals=%d vol_guard=%d warming_up=%d",
            self.symbol,
            self.timeframe,
            self.stats["bars"],
            self.stats["setups"],
            self.stats["expired"],
            self.stats["signals"],
            self.stats["vol_guard"],
            self.stats["warming_up"],
        )
        return out

    def _on_candle(self, candles: Sequence[Candle], i: int, timeline: Sequence[ZoneSnapshot]) -> List[Signal]:
        c = candles[i]
        self.stats["bars"] += 1
        if c.rsi14 is None or c.adx14 is None or c.atr14 is None:
            self.stats["warming_up"] += 1
            return []

        if self._vol_guard_blocks(candles, i):
            self.stats["vol_guard"] += 1
            return []

        self._advance_zones(timeline, c.time_ms)
        if self.zone_idx < 0:
            self.stats["no_zones"] += 1
            return []
        snap = timeline[self.zone_idx]
        trend_pass = self.ignore_trend or snap.trend_ok

        if trend_pass:
            self._create_setups(c, i, snap)

        return self._consume_retests(c, i, trend_pass)

    def _vol_guard_blocks(self, candles: Sequence[Candle], i: int) -> bool:
        cfg = self.cfg
        if not cfg.use_vol_guard or i < cfg.atr_lookback:
            return False
        window = candles[i - cfg.atr_lookback : i]
        avg_atr = sum((x.atr14 or 0.0) for x in window) / float(len(window))
        return avg_atr > 0 and candles[i].atr14 > cfg.max_atr_multiple * avg_atr

    def _advance_zones(self, timeline: Sequence[ZoneSnapshot], time_ms: int) -> None:
        # forward only: never revisit an older snapshot
        n = len(timeline)
        while self.zone_idx + 1 < n and timeline[self.zone_idx + 1].time_ms <= time_ms:
            self.zone_idx += 1

    def _can_fire(self, direction: str, bar_idx: int) -> bool:
        last = self.last_fired[direction]
        if last is None:
            return True
        return (bar_idx - last) >= int(self.cfg.cooldown_bars)

    def _create_setups(self, c: Candle, i: int, snap: ZoneSnapshot) -> None:
        cfg = self.cfg

        nh = nearest_zone(snap.highs, c.close)
        if nh is not None:
            zone, dist = nh
            sell_ok = (
                dist <= cfg.level_tol_bps
                and zone.touches >= cfg.min_touches
                and c.rsi14 >= cfg.rsi_high
                and c.adx14 < cfg.adx_max
                and self._can_fire(SELL, i)
            )
            if sell_ok and cfg.use_confirmation:
                sell_ok = (
                    pin_reject_high(c, cfg.max_body_frac, cfg.min_wick_frac)
                    and (not cfg.require_touch or c.high >= zone.price)
                    and bps_distance(c.high, c.close) >= cfg.min_rejection_bps
                    and bps_distance(c.close, zone.price) >= cfg.confirm_close_away_bps
                )
            if sell_ok:
                self._queue(SELL, zone, i, c.atr14)

        nl = nearest_zone(snap.lows, c.close)
        if nl is not None:
            zone, dist = nl
            buy_ok = (
                dist <= cfg.level_tol_bps
                and zone.touches >= cfg.min_touches
                and c.rsi14 <= cfg.rsi_low
                and c.adx14 < cfg.adx_max
                and self._can_fire(BUY, i)
            )
            if buy_ok and cfg.use_confirmation:
                buy_ok = (
                    pin_reject_low(c, cfg.max_body_frac, cfg.min_wick_frac)
                    and (not cfg.require_touch or c.low <= zone.price)
                    and bps_distance(c.close, c.low) >= cfg.min_rejection_bps
                    and bps_distance(c.close, zone.price) >= cfg.confirm_close_away_bps
                )
            if buy_ok:
                self._queue(BUY, zone, i, c.atr14)

    def _queue(self, direction: str, zone: Zone, i: int, atr: float) -> None:
        self.pending.append(
            PendingSetup(
                direction=direction,
                zone_price=zone.price,
                zone_touches=zone.touches,
                created_index=i,
                expires_index=i + int(self.cfg.retest_bars),
                atr_at_creation=atr,
            )
        )
        self.stats["setups"] += 1
        log.debug("setup_created symbol=%s dir=%s zone=%.5f idx=%d", self.symbol, direction, zone.price, i)

    def _retest_ok(self, p: PendingSetup, c: Candle) -> bool:
        tol = self.cfg.retest_tol_bps
        if p.direction == SELL:
            return c.high >= p.zone_price and bps_distance(c.high, p.zone_price) <= tol and c.close < p.zone_price
        return c.low <= p.zone_price and bps_distance(p.zone_price, c.low) <= tol and c.close > p.zone_price

    def _consume_retests(self, c: Candle, i: int, trend_pass: bool) -> List[Signal]:
        signals: List[Signal] = []
        keep: List[PendingSetup] = []
        for p in self.pending:
            if i > p.expires_index:
                self.stats["expired"] += 1
                continue
            if p.created_index >= i or not trend_pass:
                keep.append(p)
                continue
            if self._retest_ok(p, c) and self._can_fire(p.direction, i):
                signals.append(self._make_signal(p, c, i))
                self.last_fired[p.direction] = i
                continue
            keep.append(p)
        self.pending = keep
        return signals

    def _make_signal(self, p: PendingSetup, c: Candle, i: int) -> Signal:
        cfg = self.cfg
        entry = c.close
        if p.direction == SELL:
            stop = p.zone_price + cfg.atr_sl * c.atr14
            target = entry - cfg.rr * (stop - entry)
        else:
            stop = p.zone_price - cfg.atr_sl * c.atr14
            target = entry + cfg.rr * (entry - stop)

        self.stats["signals"] += 1
        log.debug(
            "signal symbol=%s dir=%s idx=%d entry=%.5f sl=%.5f tp=%.5f",
            self.symbol,
            p.direction,
            i,
            entry,
            stop,
            target,
        )
        return Signal(
            symbol=self.symbol,
            timeframe=self.timeframe,
            time_ms=c.time_ms,
            direction=p.direction,
            entry=entry,
            stop_loss=stop,
            take_profit=target,
            bar_index=i,
            context={
                "zone": p.zone_price,
                "touches": p.zone_touches,
                "created_index": p.created_index,
                "atr_at_creation": p.atr_at_creation,
                "atr_at_entry": c.atr14,
                "rsi14": c.rsi14,
                "adx14": c.adx14,
                "retest": True,
                "ignore_trend": self.ignore_trend,
            },
            signal_id=self._signal_id(p.direction, c.time_ms),
        )

    def _signal_id(self, direction: str, time_ms: int) -> Optional[str]:
        if not self.strategy_sig:
            return None
        base = f"{self.symbol}:{self.timeframe}:{direction}:{time_ms}:{self.strategy_sig}"
        return hashlib.sha256(base.encode("utf-8")).hexdigest()
