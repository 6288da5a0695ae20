from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import logging
from typing import List, Optional, Sequence, Tuple

from .backtest import Backtester
from .config import Config, StrategyConfig, ZonesConfig, strategy_signature
from .data import filter_range, load_candles, series_path, validate_series, validate_timeframes
from .indicators import annotate
from .models import BacktestResult, BacktestSummary, Candle, Signal
from .notifier.webhook import WebhookNotifier
from .strategy import SignalDetector
from .timeline import build_zone_timeline

log = logging.getLogger("runner")

HEALTH_OK = "OK"
HEALTH_BORDERLINE = "BORDERLINE"
HEALTH_PAUSE = "PAUSE-SYMBOL"


@dataclass
class SymbolReport:
    symbol: str
    timeframe: str
    snapshots: int
    signals: List[Signal]
    result: Optional[BacktestResult] = None
    health: Optional[str] = None
    extra: dict = field(default_factory=dict)


def classify_health(summary: BacktestSummary, *, min_trades: int = 10, min_win_rate: float = 55.0) -> str:
    """Weekly health rule: enough trades at a good win rate, else borderline or pause."""
    trades = summary.total
    win = summary.win_rate
    if trades >= min_trades and win >= min_win_rate:
        return HEALTH_OK
    if (trades >= 6 and trades < min_trades) or (win >= min_win_rate - 5.0 and win < min_win_rate):
        return HEALTH_BORDERLINE
    return HEALTH_PAUSE


def run_symbol(
    symbol: str,
    htf: Sequence[Candle],
    ltf: Sequence[Candle],
    strategy: StrategyConfig,
    zones: ZonesConfig,
    *,
    ltf_name: str = "1H",
    ignore_trend: bool = False,
    backtest: bool = True,
    strategy_sig: Optional[str] = None,
) -> SymbolReport:
    """Timeline -> detector -> backtester for one symbol. Stages run strictly in order."""
    validate_series(htf, f"{symbol} higher-TF")
    validate_series(ltf, f"{symbol} lower-TF")

    timeline = build_zone_timeline(
        htf,
        zones.window_size,
        zones.cluster_bps,
        strategy.slope_bps_max,
        strategy.adx_trend_max,
        ema_length=zones.ema_length,
        slope_lookback=zones.slope_lookback,
    )
    detector = SignalDetector(symbol, ltf_name, strategy, ignore_trend=ignore_trend, strategy_sig=strategy_sig)
    signals = detector.scan(ltf, timeline)

    report = SymbolReport(
        symbol=symbol,
        timeframe=ltf_name,
        snapshots=len(timeline),
        signals=signals,
        extra={"detector": dict(detector.stats)},
    )
    if backtest:
        report.result = Backtester(strategy.timeout_bars).run(ltf, signals)
    return report


class BacktestRunner:
    def __init__(self, cfg: Config, *, ignore_trend: Optional[bool] = None, backtest: bool = True):
        self.cfg = cfg
        self.ignore_trend = cfg.runner.ignore_trend if ignore_trend is None else bool(ignore_trend)
        self.backtest = backtest
        self._strategy_sig = strategy_signature(cfg.strategy)
        self.webhook = WebhookNotifier(
            enabled=cfg.webhook.enabled,
            url=cfg.webhook.url,
            secret=cfg.webhook.secret,
            timeout_s=cfg.webhook.timeout_s,
            headers=cfg.webhook.headers or {},
        )
        validate_timeframes(cfg.data.htf, cfg.data.ltf)

    def load_symbol(self, symbol: str) -> Tuple[List[Candle], List[Candle]]:
        d = self.cfg.data
        htf = load_candles(series_path(d.dir, symbol, d.htf), d.htf)
        ltf = load_candles(series_path(d.dir, symbol, d.ltf), d.ltf)
        htf = filter_range(htf, d.date_from, d.date_to)
        ltf = filter_range(ltf, d.date_from, d.date_to)
        if d.compute_indicators:
            htf = annotate(htf)
            ltf = annotate(ltf)
        return htf, ltf

    def run_one(self, symbol: str) -> SymbolReport:
        htf, ltf = self.load_symbol(symbol)
        report = run_symbol(
            symbol,
            htf,
            ltf,
            self.cfg.strategy,
            self.cfg.zones,
            ltf_name=self.cfg.data.ltf,
            ignore_trend=self.ignore_trend,
            backtest=self.backtest,
            strategy_sig=self._strategy_sig,
        )
        if report.result is not None:
            report.health = classify_health(
                report.result.summary,
                min_trades=self.cfg.runner.min_trades,
                min_win_rate=self.cfg.runner.min_win_rate,
            )
        return report

    async def run_all(self, symbols: Sequence[str]) -> Tuple[List[SymbolReport], List[Tuple[str, str]]]:
        symbols = [s.upper() for s in symbols]
        if not symbols:
            raise ValueError("No symbols configured.")
        log.info(
            "run_start symbols=%s htf=%s ltf=%s ignore_trend=%s backtest=%s",
            symbols,
            self.cfg.data.htf,
            self.cfg.data.ltf,
            self.ignore_trend,
            self.backtest,
        )

        sem = asyncio.Semaphore(max(1, int(self.cfg.runner.concurrency)))

        async def _one(sym: str):
            try:
                async with sem:
                    report = await asyncio.to_thread(self.run_one, sym)
                if self.webhook.enabled:
                    await self.webhook.send_report(report)
                return report
            except Exception as e:
                return (sym, repr(e))

        results = await asyncio.gather(*[_one(sym) for sym in symbols])
        reports = [r for r in results if isinstance(r, SymbolReport)]
        failures = [r for r in results if not isinstance(r, SymbolReport)]
        for sym, err in failures:
            log.warning("symbol_failed symbol=%s err=%s", sym, err)
        log.info("run_done ok=%d failed=%d", len(reports), len(failures))
        return reports, failures
