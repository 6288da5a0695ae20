from __future__ import annotations

from zone_reversion.backtest import Backtester
from zone_reversion.formatters import format_summary, format_trade
from zone_reversion.models import Candle, Signal

HOUR_MS = 3_600_000


def candle(idx: int, open_p: float, high: float, low: float, close: float) -> Candle:
    return Candle(time_ms=idx * HOUR_MS, open=open_p, high=high, low=low, close=close)


def flat_series(n: int, px: float = 1.1000) -> list:
    return [candle(i, px, px + 0.0005, px - 0.0005, px) for i in range(n)]


def buy(idx: int, entry: float, sl: float, tp: float) -> Signal:
    return Signal(symbol="EUR-USD", timeframe="1H", time_ms=idx * HOUR_MS, direction="BUY", entry=entry, stop_loss=sl, take_profit=tp)


def run_case(name: str, series, signals, max_hold: int = 5):
    res = Backtester(max_hold).run(series, signals)
    print(f"{name}: skipped={res.skipped}")
    for t in res.trades:
        print("  " + format_trade(t))
    print("  " + format_summary(res.summary).replace("\n", "\n  "))


def main():
    # Case 1: one bar spans both stop and target -> SL
    series = flat_series(10)
    series[3] = candle(3, 1.1000, 1.1050, 1.0950, 1.1000)
    run_case("same_bar_tie", series, [buy(1, 1.1000, 1.0980, 1.1030)])

    # Case 2: nothing touched inside the hold window -> TIMEOUT at last close
    run_case("timeout", flat_series(12), [buy(1, 1.1000, 1.0900, 1.1100)])

    # Case 3: overlapping signal dropped while a position is open
    run_case("overlap", flat_series(20), [buy(1, 1.1000, 1.0900, 1.1100), buy(3, 1.1000, 1.0900, 1.1100)])

    # Case 4: malformed risk
    run_case("invalid_risk", flat_series(10), [buy(1, 1.1000, 1.1010, 1.1100)])


if __name__ == "__main__":
    main()
