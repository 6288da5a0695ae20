from __future__ import annotations

from collections import OrderedDict
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Dict, List, Sequence

from .models import BUY, BacktestSummary, Signal, Trade

if TYPE_CHECKING:
    from .runner import SymbolReport


def _fmt_ms(ts_ms: int) -> str:
    dt = datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M")


def _month(ts_ms: int) -> str:
    return datetime.fromtimestamp(ts_ms / 1000.0, tz=timezone.utc).strftime("%Y-%m")


def format_signal(sig: Signal) -> str:
    zone = sig.context.get("zone")
    zone_s = f" zone:{zone:.5f}" if zone is not None else ""
    return (
        f"{_fmt_ms(sig.time_ms)} {sig.direction} @{sig.entry:.5f} "
        f"SL:{sig.stop_loss:.5f} TP:{sig.take_profit:.5f}{zone_s}"
    )


def format_trade(t: Trade) -> str:
    return (
        f"{_fmt_ms(t.time_ms)} {t.direction} entry={t.entry:.5f} exit={t.exit:.5f} "
        f"outcome={t.outcome} R={t.realized_r:.2f} bars={t.hold_bars}"
    )


def format_summary(s: BacktestSummary) -> str:
    return (
        f"trades={s.total}, wins={s.wins}, losses={s.losses}, timeouts={s.timeouts}, "
        f"winRate={s.win_rate:.1f}%\n"
        f"avgR={s.avg_r:.2f}, expectancy(R)={s.expectancy:.2f}, avgHoldBars={s.avg_hold_bars:.1f}"
    )


def monthly_breakdown(signals: Sequence[Signal]) -> Dict[str, Dict[str, int]]:
    """Per-month signal counts, months ascending."""
    by_month: Dict[str, Dict[str, int]] = {}
    for s in signals:
        row = by_month.setdefault(_month(s.time_ms), {"total": 0, "BUY": 0, "SELL": 0})
        row["total"] += 1
        row["BUY" if s.direction == BUY else "SELL"] += 1
    return OrderedDict(sorted(by_month.items()))


def format_report(report: "SymbolReport", *, last_n: int = 5) -> str:
    lines: List[str] = [f"{report.symbol} {report.timeframe}: snapshots={report.snapshots}, signals={len(report.signals)}"]

    months = monthly_breakdown(report.signals)
    for month, row in months.items():
        lines.append(f"  {month}: total={row['total']}, BUY={row['BUY']}, SELL={row['SELL']}")

    if report.result is None:
        if report.signals:
            lines.append(f"Last {min(last_n, len(report.signals))} signals:")
            lines.extend(format_signal(s) for s in report.signals[-last_n:])
        return "\n".join(lines)

    res = report.result
    lines.append(format_summary(res.summary))
    dropped = {k: v for k, v in res.skipped.items() if v}
    if dropped:
        lines.append("skipped: " + ", ".join(f"{k}={v}" for k, v in sorted(dropped.items())))
    if report.health:
        lines.append(f"health: {report.health}")
    if res.trades:
        lines.append(f"Last {min(last_n, len(res.trades))} trades:")
        lines.extend(format_trade(t) for t in res.trades[-last_n:])
    return "\n".join(lines)
