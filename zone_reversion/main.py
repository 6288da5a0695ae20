from __future__ import annotations

import argparse
import asyncio
import logging
from dataclasses import replace

from .config import ConfigError, load_config
from .formatters import format_report
from .runner import BacktestRunner


def _setup_logging(level: str) -> None:
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logging.basicConfig(
        level=lvl,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Zone Reversion - zone/retest mean-reversion scan and backtest")
    p.add_argument("--config", required=True, help="Path to YAML config")
    p.add_argument("--mode", choices=("scan", "backtest"), default="backtest")
    p.add_argument("--symbols", help="Comma separated symbols (overrides config)")
    p.add_argument("--from", dest="date_from", help="Start date (UTC, inclusive)")
    p.add_argument("--to", dest="date_to", help="End date (UTC, inclusive)")
    p.add_argument("--no-trend", action="store_true", help="Bypass the zone trend guard")
    p.add_argument("--timeout-bars", type=int, help="Override strategy.timeout_bars")
    p.add_argument("--last", type=int, default=5, help="Trades/signals listed per symbol")
    return p


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)

    try:
        cfg = load_config(args.config)
    except ConfigError as e:
        _setup_logging("INFO")
        logging.getLogger("main").error("config_invalid err=%s", e)
        return 1
    _setup_logging(cfg.app.log_level)

    if args.symbols:
        cfg.data.symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]
    if args.date_from:
        cfg.data.date_from = args.date_from
    if args.date_to:
        cfg.data.date_to = args.date_to
    if args.timeout_bars is not None:
        if args.timeout_bars < 1:
            logging.getLogger("main").error("timeout_bars must be >= 1")
            return 1
        cfg.strategy = replace(cfg.strategy, timeout_bars=args.timeout_bars)

    try:
        runner = BacktestRunner(
            cfg,
            ignore_trend=True if args.no_trend else None,
            backtest=args.mode == "backtest",
        )
        reports, failures = asyncio.run(runner.run_all(cfg.data.symbols))
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.getLogger("main").exception("fatal err=%s", e)
        return 1

    trend = "OFF" if runner.ignore_trend else "ON"
    print(
        f"{cfg.app.name} {args.mode} {cfg.data.date_from or ''}..{cfg.data.date_to or ''} "
        f"(timeout={cfg.strategy.timeout_bars} bars, trend={trend})"
    )
    for report in reports:
        print()
        print(format_report(report, last_n=args.last))
    for sym, err in failures:
        print(f"\n{sym}: FAILED {err}")

    return 1 if failures and not reports else 0


if __name__ == "__main__":
    raise SystemExit(main())
