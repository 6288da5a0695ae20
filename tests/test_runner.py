import asyncio
import math
from datetime import datetime, timedelta, timezone

import pytest

from zone_reversion.config import AppConfig, Config, DataConfig, RunnerConfig, StrategyConfig, ZonesConfig
from zone_reversion.data import SeriesValidationError
from zone_reversion.indicators import annotate
from zone_reversion.models import BacktestSummary, Candle
from zone_reversion.runner import BacktestRunner, classify_health, run_symbol

H1 = 3_600_000
T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _price(i: int, step_h: int) -> float:
    h = i * step_h
    return 1.10 + 0.004 * math.sin(h / 9.0) + 0.0015 * math.sin(h / 2.3)


def _series(n: int, step_h: int):
    out = []
    prev = _price(0, step_h)
    for i in range(n):
        c = _price(i, step_h)
        out.append(
            Candle(
                time_ms=i * step_h * H1,
                open=prev,
                high=max(prev, c) + 0.0004,
                low=min(prev, c) - 0.0004,
                close=c,
            )
        )
        prev = c
    return out


def _strategy(**kw) -> StrategyConfig:
    base = dict(
        rsi_low=45,
        rsi_high=55,
        adx_max=60,
        adx_trend_max=60,
        slope_bps_max=200,
        level_tol_bps=40,
        min_touches=1,
        use_confirmation=False,
        require_touch=False,
        min_rejection_bps=1.0,
        max_body_frac=0.75,
        min_wick_frac=0.3,
        confirm_close_away_bps=0,
        use_vol_guard=True,
        atr_lookback=20,
        max_atr_multiple=2.4,
        retest_bars=3,
        retest_tol_bps=30,
        atr_sl=1.5,
        rr=1.0,
        timeout_bars=24,
        cooldown_bars=4,
        warmup_bars=50,
    )
    base.update(kw)
    return StrategyConfig(**base)


def _summary(total: int, wins: int) -> BacktestSummary:
    return BacktestSummary(
        total=total,
        wins=wins,
        losses=total - wins,
        timeouts=0,
        win_rate=(wins / total * 100.0) if total else 0.0,
        avg_r=0.0,
        expectancy=0.0,
        avg_hold_bars=0.0,
    )


def test_classify_health():
    assert classify_health(_summary(12, 7)) == "OK"
    assert classify_health(_summary(8, 6)) == "BORDERLINE"
    assert classify_health(_summary(20, 11)) == "OK"
    assert classify_health(_summary(20, 10)) == "BORDERLINE"
    assert classify_health(_summary(3, 1)) == "PAUSE-SYMBOL"
    assert classify_health(_summary(20, 5)) == "PAUSE-SYMBOL"


def test_run_symbol_pipeline_invariants():
    htf = annotate(_series(120, 4))
    ltf = annotate(_series(480, 1))
    cfg = _strategy()
    zones = ZonesConfig(window_size=30)

    report = run_symbol("EUR-USD", htf, ltf, cfg, zones, ignore_trend=True)

    assert report.snapshots == 120 - 30 + 1
    assert report.result is not None
    assert report.extra["detector"]["bars"] == 480 - 50

    times = [s.time_ms for s in report.signals]
    assert times == sorted(times)
    for s in report.signals:
        created = s.context["created_index"]
        assert created < s.bar_index <= created + cfg.retest_bars
    for direction in ("BUY", "SELL"):
        idx = [s.bar_index for s in report.signals if s.direction == direction]
        assert all(b - a >= cfg.cooldown_bars for a, b in zip(idx, idx[1:]))

    trades = report.result.trades
    assert len(trades) <= len(report.signals)
    for a, b in zip(trades, trades[1:]):
        assert b.entry_index > a.exit_index
    for t in trades:
        assert math.isfinite(t.realized_r)
        assert 1 <= t.hold_bars <= cfg.timeout_bars


def test_run_symbol_is_deterministic():
    htf = annotate(_series(120, 4))
    ltf = annotate(_series(480, 1))
    a = run_symbol("EUR-USD", htf, ltf, _strategy(), ZonesConfig(window_size=30), ignore_trend=True)
    b = run_symbol("EUR-USD", htf, ltf, _strategy(), ZonesConfig(window_size=30), ignore_trend=True)
    assert a.signals == b.signals
    assert a.result == b.result


def test_run_symbol_rejects_unordered_input():
    htf = _series(50, 4)
    ltf = list(reversed(_series(50, 1)))
    with pytest.raises(SeriesValidationError):
        run_symbol("EUR-USD", htf, ltf, _strategy(), ZonesConfig(window_size=30))


def test_scan_only_skips_backtest():
    htf = annotate(_series(120, 4))
    ltf = annotate(_series(200, 1))
    report = run_symbol("EUR-USD", htf, ltf, _strategy(), ZonesConfig(window_size=30), backtest=False)
    assert report.result is None


def _write_csv(path, candles):
    lines = ["time,open,high,low,close"]
    for c in candles:
        ts = (T0 + timedelta(milliseconds=c.time_ms)).strftime("%Y-%m-%dT%H:%M:%SZ")
        lines.append(f"{ts},{c.open},{c.high},{c.low},{c.close}")
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")


def _config(tmp_path) -> Config:
    return Config(
        app=AppConfig(),
        data=DataConfig(dir=str(tmp_path), symbols=["EUR-USD", "GBP-USD"]),
        zones=ZonesConfig(window_size=30),
        strategy=_strategy(),
        runner=RunnerConfig(concurrency=2, ignore_trend=True),
    )


def test_run_all_reports_missing_symbol_as_failure(tmp_path):
    _write_csv(tmp_path / "EUR-USD_4H.csv", _series(120, 4))
    _write_csv(tmp_path / "EUR-USD_1H.csv", _series(480, 1))

    runner = BacktestRunner(_config(tmp_path))
    reports, failures = asyncio.run(runner.run_all(["eur-usd", "gbp-usd"]))

    assert [r.symbol for r in reports] == ["EUR-USD"]
    assert reports[0].health in ("OK", "BORDERLINE", "PAUSE-SYMBOL")
    assert reports[0].snapshots == 91
    assert failures[0][0] == "GBP-USD"
    assert "FileNotFoundError" in failures[0][1]


def test_run_all_needs_symbols(tmp_path):
    runner = BacktestRunner(_config(tmp_path))
    with pytest.raises(ValueError):
        asyncio.run(runner.run_all([]))
