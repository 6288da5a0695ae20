from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Optional, Tuple

BUY = "BUY"
SELL = "SELL"

OUTCOME_TP = "TP"
OUTCOME_SL = "SL"
OUTCOME_TIMEOUT = "TIMEOUT"


@dataclass(frozen=True)
class Candle:
    time_ms: int  # bar open time, UTC epoch ms
    open: float
    high: float
    low: float
    close: float
    volume: Optional[float] = None
    rsi14: Optional[float] = None
    adx14: Optional[float] = None
    atr14: Optional[float] = None
    ema20: Optional[float] = None
    ema50: Optional[float] = None


@dataclass(frozen=True)
class Zone:
    price: float
    touches: int


@dataclass(frozen=True)
class ZoneSet:
    highs: Tuple[Zone, ...] = ()
    lows: Tuple[Zone, ...] = ()


@dataclass(frozen=True)
class ZoneSnapshot:
    time_ms: int
    highs: Tuple[Zone, ...]
    lows: Tuple[Zone, ...]
    trend_ok: bool
    slope_bps: Optional[float] = None
    avg_adx: Optional[float] = None


@dataclass(frozen=True)
class PendingSetup:
    direction: str  # BUY or SELL
    zone_price: float
    zone_touches: int
    created_index: int
    expires_index: int
    atr_at_creation: float


@dataclass(frozen=True)
class Signal:
    symbol: str
    timeframe: str
    time_ms: int
    direction: str  # BUY or SELL
    entry: float
    stop_loss: float
    take_profit: float
    bar_index: Optional[int] = None
    context: dict = field(default_factory=dict)
    signal_id: Optional[str] = None


@dataclass(frozen=True)
class Trade:
    time_ms: int
    direction: str
    entry: float
    stop_loss: float
    take_profit: float
    exit: float
    outcome: str  # TP | SL | TIMEOUT
    realized_r: float
    hold_bars: int
    entry_index: int
    exit_index: int
    exit_time_ms: int
    signal_id: Optional[str] = None


@dataclass(frozen=True)
class BacktestSummary:
    total: int
    wins: int
    losses: int
    timeouts: int
    win_rate: float  # percent
    avg_r: float
    expectancy: float  # fixed +-1R proxy, not avg_r
    avg_hold_bars: float


@dataclass(frozen=True)
class BacktestResult:
    trades: Tuple[Trade, ...]
    summary: BacktestSummary
    skipped: Dict[str, int] = field(default_factory=dict)
