from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import pandas as pd

from .models import Candle

log = logging.getLogger("data")

TF_FREQ = {"1H": "1h", "4H": "4h", "1D": "1D"}
TF_STEP_MS = {"1H": 3_600_000, "4H": 14_400_000, "1D": 86_400_000}

_TIME_COLUMNS = ("time", "timestamp", "date", "datetime")
_INDICATOR_COLUMNS = ("rsi14", "adx14", "atr14", "ema20", "ema50")


class SeriesValidationError(ValueError):
    """Raised once per symbol when an input series cannot be used."""


def _tf_key(tf: str) -> str:
    key = (tf or "").strip().upper()
    if key not in TF_FREQ:
        raise ValueError(f"Unsupported timeframe: {tf} (use 1H, 4H or 1D)")
    return key


def series_path(data_dir: str, symbol: str, tf: str) -> Path:
    """<dir>/<SYMBOL>_<TF>.json, falling back to .csv."""
    stem = f"{symbol.upper()}_{_tf_key(tf)}"
    for ext in (".json", ".csv"):
        p = Path(data_dir) / (stem + ext)
        if p.exists():
            return p
    raise FileNotFoundError(f"no candle file for {symbol} {tf} under {data_dir}")


def read_frame(path: Path) -> pd.DataFrame:
    path = Path(path)
    if path.suffix.lower() == ".json":
        with open(path, "r", encoding="utf-8") as f:
            raw = json.load(f)
        rows = raw.get("candles", []) if isinstance(raw, dict) else raw
        return pd.DataFrame(rows)
    return pd.read_csv(path)


def align_frame(df: pd.DataFrame, tf: str) -> pd.DataFrame:
    """Floor times to clean UTC timeframe boundaries, keep the last row per bucket."""
    freq = TF_FREQ[_tf_key(tf)]
    df = df.rename(columns={c: c.lower() for c in df.columns})
    time_col = next((c for c in _TIME_COLUMNS if c in df.columns), None)
    if time_col is None:
        raise SeriesValidationError(f"no time column in {list(df.columns)}")
    missing = [c for c in ("open", "high", "low", "close") if c not in df.columns]
    if missing:
        raise SeriesValidationError(f"missing OHLC columns: {missing}")

    out = df.copy()
    if pd.api.types.is_numeric_dtype(out[time_col]):
        # epoch milliseconds
        times = pd.to_datetime(out[time_col], unit="ms", utc=True)
    else:
        times = pd.to_datetime(out[time_col], utc=True)
    out["time"] = times.dt.floor(freq)
    if time_col != "time":
        out = out.drop(columns=[time_col])
    out = out.drop_duplicates(subset="time", keep="last").sort_values("time").reset_index(drop=True)
    return out


def frame_to_candles(df: pd.DataFrame) -> List[Candle]:
    epoch = pd.Timestamp(0, tz="UTC")
    time_ms = ((df["time"] - epoch) // pd.Timedelta(milliseconds=1)).tolist()
    extras = [c for c in ("volume",) + _INDICATOR_COLUMNS if c in df.columns]

    def _opt(v) -> Optional[float]:
        return None if pd.isna(v) else float(v)

    out: List[Candle] = []
    for i, row in enumerate(df.itertuples(index=False)):
        rec = row._asdict()
        out.append(
            Candle(
                time_ms=int(time_ms[i]),
                open=float(rec["open"]),
                high=float(rec["high"]),
                low=float(rec["low"]),
                close=float(rec["close"]),
                **{k: _opt(rec[k]) for k in extras},
            )
        )
    return out


def load_candles(path: Path, tf: str) -> List[Candle]:
    df = align_frame(read_frame(path), tf)
    candles = frame_to_candles(df)
    gaps = find_gaps(candles, tf)
    if gaps:
        log.info("gaps_found path=%s tf=%s gaps=%d missing_bars=%d", path, tf, len(gaps), sum(g[1] for g in gaps))
    log.debug("loaded path=%s tf=%s bars=%d", path, tf, len(candles))
    return candles


def find_gaps(candles: Sequence[Candle], tf: str) -> List[Tuple[int, int]]:
    """(time_ms of the bar before the gap, number of missing bars)."""
    step = TF_STEP_MS[_tf_key(tf)]
    gaps: List[Tuple[int, int]] = []
    for prev, cur in zip(candles, candles[1:]):
        miss = (cur.time_ms - prev.time_ms) // step - 1
        if miss > 0:
            gaps.append((prev.time_ms, int(miss)))
    return gaps


def _to_ms(date_str: Optional[str]) -> Optional[int]:
    if not date_str:
        return None
    ts = pd.Timestamp(date_str)
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return int((ts - pd.Timestamp(0, tz="UTC")) // pd.Timedelta(milliseconds=1))


def filter_range(candles: Sequence[Candle], date_from: Optional[str], date_to: Optional[str]) -> List[Candle]:
    lo = _to_ms(date_from)
    hi = _to_ms(date_to)
    return [c for c in candles if (lo is None or c.time_ms >= lo) and (hi is None or c.time_ms <= hi)]


def validate_series(candles: Sequence[Candle], name: str) -> None:
    if not candles:
        raise SeriesValidationError(f"{name}: empty series")
    for prev, cur in zip(candles, candles[1:]):
        if cur.time_ms <= prev.time_ms:
            raise SeriesValidationError(f"{name}: times not strictly increasing at {cur.time_ms}")
    for c in candles:
        if not (c.high >= max(c.open, c.close) and c.low <= min(c.open, c.close) and c.high >= c.low):
            raise SeriesValidationError(f"{name}: inconsistent OHLC at {c.time_ms}")


def validate_timeframes(htf: str, ltf: str) -> None:
    if TF_STEP_MS[_tf_key(htf)] <= TF_STEP_MS[_tf_key(ltf)]:
        raise SeriesValidationError(f"higher timeframe {htf} must be longer than {ltf}")
