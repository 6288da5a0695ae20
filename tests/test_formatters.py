import asyncio
from datetime import datetime, timezone

from zone_reversion.backtest import summarize
from zone_reversion.formatters import format_report, format_summary, monthly_breakdown
from zone_reversion.models import BacktestResult, Signal, Trade
from zone_reversion.notifier.webhook import WebhookNotifier, build_payload, format_price
from zone_reversion.runner import SymbolReport


def _ms(y: int, m: int, d: int) -> int:
    return int(datetime(y, m, d, tzinfo=timezone.utc).timestamp() * 1000)


def _sig(time_ms: int, direction: str) -> Signal:
    return Signal(
        symbol="EUR-USD",
        timeframe="1H",
        time_ms=time_ms,
        direction=direction,
        entry=1.1,
        stop_loss=1.098 if direction == "BUY" else 1.102,
        take_profit=1.1022 if direction == "BUY" else 1.0978,
        bar_index=0,
        context={"zone": 1.0995},
        signal_id="abc",
    )


def _trade(outcome: str, r: float) -> Trade:
    return Trade(
        time_ms=_ms(2024, 3, 1),
        direction="BUY",
        entry=1.1,
        stop_loss=1.098,
        take_profit=1.1022,
        exit=1.1,
        outcome=outcome,
        realized_r=r,
        hold_bars=4,
        entry_index=10,
        exit_index=14,
        exit_time_ms=_ms(2024, 3, 1),
    )


def test_monthly_breakdown_sorted_by_month():
    sigs = [_sig(_ms(2024, 3, 2), "SELL"), _sig(_ms(2024, 1, 5), "BUY"), _sig(_ms(2024, 3, 9), "BUY")]
    out = monthly_breakdown(sigs)
    assert list(out) == ["2024-01", "2024-03"]
    assert out["2024-03"] == {"total": 2, "BUY": 1, "SELL": 1}


def test_format_summary_fields():
    s = summarize([_trade("TP", 1.1), _trade("SL", -1.0), _trade("TIMEOUT", 0.2)])
    text = format_summary(s)
    assert "trades=3" in text
    assert "winRate=33.3%" in text
    assert "expectancy(R)=0.00" in text
    assert "avgR=0.10" in text


def test_format_report_with_result():
    trades = (_trade("TP", 1.1),)
    report = SymbolReport(
        symbol="EUR-USD",
        timeframe="1H",
        snapshots=10,
        signals=[_sig(_ms(2024, 3, 1), "BUY")],
        result=BacktestResult(trades=trades, summary=summarize(trades), skipped={"overlap": 2, "out_of_range": 0}),
        health="PAUSE-SYMBOL",
    )
    text = format_report(report)
    assert text.startswith("EUR-USD 1H: snapshots=10, signals=1")
    assert "skipped: overlap=2" in text
    assert "out_of_range" not in text
    assert "health: PAUSE-SYMBOL" in text
    assert "outcome=TP" in text


def test_format_price_strips_zeros():
    assert format_price(1.10000) == "1.1"
    assert format_price(1.123456) == "1.12346"
    assert format_price(0.0) == "0"


def test_build_payload():
    trades = (_trade("SL", -1.0),)
    report = SymbolReport(
        symbol="EUR-USD",
        timeframe="1H",
        snapshots=1,
        signals=[_sig(_ms(2024, 3, 1), "SELL")],
        result=BacktestResult(trades=trades, summary=summarize(trades), skipped={}),
        health="PAUSE-SYMBOL",
    )
    p = build_payload(report, "s3cret")
    assert p["secret"] == "s3cret"
    assert p["signals"][0]["sl"] == "1.102"
    assert p["stats"]["losses"] == 1
    assert p["stats"]["expectancy_r"] == -1.0
    assert p["health"] == "PAUSE-SYMBOL"

    scan_only = SymbolReport(symbol="EUR-USD", timeframe="1H", snapshots=1, signals=[])
    p = build_payload(scan_only)
    assert "stats" not in p and "secret" not in p and "health" not in p


def test_notifier_without_url_is_disabled():
    n = WebhookNotifier(enabled=True, url="", secret="", timeout_s=5, headers={})
    assert n.enabled is False
    report = SymbolReport(symbol="EUR-USD", timeframe="1H", snapshots=0, signals=[])
    assert asyncio.run(n.send_report(report)) is None
