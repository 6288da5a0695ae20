from __future__ import annotations

from bisect import bisect_left
import logging
from typing import Dict, List, Sequence, Tuple

from .models import (
    BUY,
    OUTCOME_SL,
    OUTCOME_TIMEOUT,
    OUTCOME_TP,
    BacktestResult,
    BacktestSummary,
    Candle,
    Signal,
    Trade,
)

log = logging.getLogger("backtest")


def signal_risk(sig: Signal) -> float:
    """Entry-to-stop distance on the losing side; <= 0 means the signal is malformed."""
    if sig.direction == BUY:
        return sig.entry - sig.stop_loss
    return sig.stop_loss - sig.entry


def realized_r(direction: str, entry: float, exit_price: float, risk: float) -> float:
    if direction == BUY:
        return (exit_price - entry) / risk
    return (entry - exit_price) / risk


def summarize(trades: Sequence[Trade]) -> BacktestSummary:
    n = len(trades)
    if n == 0:
        return BacktestSummary(
            total=0, wins=0, losses=0, timeouts=0, win_rate=0.0, avg_r=0.0, expectancy=0.0, avg_hold_bars=0.0
        )
    wins = sum(1 for t in trades if t.outcome == OUTCOME_TP)
    losses = sum(1 for t in trades if t.outcome == OUTCOME_SL)
    timeouts = sum(1 for t in trades if t.outcome == OUTCOME_TIMEOUT)
    return BacktestSummary(
        total=n,
        wins=wins,
        losses=losses,
        timeouts=timeouts,
        win_rate=wins / n * 100.0,
        avg_r=sum(t.realized_r for t in trades) / n,
        # fixed payoff proxy: TP = +1R, SL = -1R, TIMEOUT = 0
        expectancy=(wins / n) - (losses / n),
        avg_hold_bars=sum(t.hold_bars for t in trades) / n,
    )


class Backtester:
    """One-position-at-a-time SL/TP replay of signals over a candle series."""

    def __init__(self, max_hold_bars: int):
        if int(max_hold_bars) < 1:
            raise ValueError("max_hold_bars must be >= 1")
        self.max_hold_bars = int(max_hold_bars)

    def run(self, series: Sequence[Candle], signals: Sequence[Signal]) -> BacktestResult:
        times = [c.time_ms for c in series]
        skipped: Dict[str, int] = {"out_of_range": 0, "invalid_risk": 0, "overlap": 0, "no_forward_bars": 0}
        trades: List[Trade] = []
        pointer = 0  # earliest bar eligible for a new position

        for sig in sorted(signals, key=lambda s: s.time_ms):
            entry_idx = bisect_left(times, sig.time_ms)
            if entry_idx >= len(series):
                skipped["out_of_range"] += 1
                continue

            risk = signal_risk(sig)
            if not risk > 0:
                skipped["invalid_risk"] += 1
                log.debug("signal_dropped reason=invalid_risk time_ms=%s dir=%s", sig.time_ms, sig.direction)
                continue

            if entry_idx < pointer:
                skipped["overlap"] += 1
                continue

            if entry_idx + 1 >= len(series):
                skipped["no_forward_bars"] += 1
                continue

            exit_idx, exit_price, outcome = self._simulate(series, sig, entry_idx)
            trades.append(
                Trade(
                    time_ms=sig.time_ms,
                    direction=sig.direction,
                    entry=sig.entry,
                    stop_loss=sig.stop_loss,
                    take_profit=sig.take_profit,
                    exit=exit_price,
                    outcome=outcome,
                    realized_r=realized_r(sig.direction, sig.entry, exit_price, risk),
                    hold_bars=exit_idx - entry_idx,
                    entry_index=entry_idx,
                    exit_index=exit_idx,
                    exit_time_ms=series[exit_idx].time_ms,
                    signal_id=sig.signal_id,
                )
            )
            pointer = exit_idx + 1

        summary = summarize(trades)
        log.info(
            "backtest_done signals=%d trades=%d wins=%d losses=%d timeouts=%d avg_r=%.3f skipped=%s",
            len(signals),
            summary.total,
            summary.wins,
            summary.losses,
            summary.timeouts,
            summary.avg_r,
            skipped,
        )
        return BacktestResult(trades=tuple(trades), summary=summary, skipped=skipped)

    def _simulate(self, series: Sequence[Candle], sig: Signal, entry_idx: int) -> Tuple[int, float, str]:
        is_buy = sig.direction == BUY
        last_idx = min(len(series) - 1, entry_idx + self.max_hold_bars)

        for k in range(entry_idx + 1, last_idx + 1):
            c = series[k]
            if is_buy:
                hit_sl = c.low <= sig.stop_loss
                hit_tp = c.high >= sig.take_profit
            else:
                hit_sl = c.high >= sig.stop_loss
                hit_tp = c.low <= sig.take_profit
            # conservative: both touched on one bar counts as SL
            if hit_sl:
                return k, sig.stop_loss, OUTCOME_SL
            if hit_tp:
                return k, sig.take_profit, OUTCOME_TP

        return last_idx, series[last_idx].close, OUTCOME_TIMEOUT
